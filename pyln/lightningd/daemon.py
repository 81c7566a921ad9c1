from concurrent import futures
from enum import Enum
from pyln.client import LightningRpc, RpcError
from pyln.lightningd.conf import Conf, build
from pyln.lightningd.download import downloaded_exe_path
from pyln.lightningd.errors import (
    LightningdError,
    ProcessExitedEarly,
    ShutdownError,
    StartupTimeout,
)
from pyln.lightningd.exe import exe_path, resolve_exe
from pyln.lightningd.proc import TailableProc

import logging
import os
import time
import weakref

# Logged once lightningd has finished initializing and is fully usable.
READY_LOG = "Server started with public key"


def call_with_timeout(func, timeout):
    """Run `func` in a worker thread and wait at most `timeout` seconds.

    `pyln.client` sockets have no timeout, so a wedged daemon would block
    us forever. Raises `concurrent.futures.TimeoutError` if no answer came
    in time; the worker is left to finish once the process is gone.
    """
    executor = futures.ThreadPoolExecutor(max_workers=1)
    try:
        return executor.submit(func).result(timeout=timeout)
    finally:
        executor.shutdown(wait=False)


class State(Enum):
    SPAWNED = "spawned"
    POLLING = "polling"
    READY = "ready"
    TIMED_OUT = "timed_out"
    EXITED_EARLY = "exited_early"
    STOPPED = "stopped"


class _Guard(object):
    """Owns what a launch creates and tears it down exactly once.

    It must not reference the `LightningD` it guards, otherwise the
    finalizer would keep the handle alive forever.
    """
    def __init__(self, daemon, launch, rpc, grace_timeout):
        self.daemon = daemon
        self.launch = launch
        self.rpc = rpc
        self.grace_timeout = grace_timeout
        self.ready = False
        self.rc = None

    def release(self):
        try:
            if self.daemon.proc is not None:
                self.rc = self._stop_process()
        finally:
            self.daemon.close()
        # Only now that the process is gone nothing holds files in there.
        self.launch.release()
        return self.rc

    def _stop_process(self):
        daemon = self.daemon
        if not daemon.is_running():
            return daemon.wait()

        graceful = False
        if self.ready:
            try:
                call_with_timeout(self.rpc.stop, self.grace_timeout)
                graceful = True
            except futures.TimeoutError:
                logging.warning("lightningd (pid {}) did not answer stop within {}s".format(
                    daemon.pid, self.grace_timeout))
            except Exception as e:
                # May fail if the process is already on its way out
                logging.debug("stop RPC to pid {} failed: {}".format(daemon.pid, e))
        if not graceful:
            daemon.terminate()

        rc = daemon.wait(self.grace_timeout)
        if rc is None:
            logging.warning("lightningd (pid {}) still running after {}s, killing it".format(
                daemon.pid, self.grace_timeout))
            daemon.kill()
            rc = daemon.wait(self.grace_timeout)
            if rc is None:
                raise ShutdownError(daemon.pid)
        return rc


class LightningD(object):
    """A regtest `lightningd` process with its own working directory.

    The constructor only returns once the node answered `getinfo`, `rpc`
    is then ready for use. The process is stopped and an owned working
    directory removed on `stop()`, when leaving a `with` block, when the
    handle is garbage collected, or at interpreter exit, whichever comes
    first.
    """

    def __init__(self, exe=None, conf=None):
        if conf is None:
            conf = Conf()
        if exe is None:
            exe = exe_path()
        self.exe = resolve_exe(exe)
        self.conf = conf
        self.state = None

        attempts = conf.attempts
        while True:
            try:
                self._launch()
                break
            except ProcessExitedEarly as e:
                if attempts <= 0:
                    logging.error("early exit with: {}".format(e.returncode))
                    raise
                attempts -= 1
                logging.warning(
                    "early exit with: {}. Trying to launch again ({} attempts "
                    "remaining), maybe some other process used our available port".format(
                        e.returncode, attempts))

        logging.info("LightningD started")

    @classmethod
    def from_downloaded(cls, conf=None):
        """Launch the previously downloaded executable of the pinned version."""
        return cls(downloaded_exe_path(), conf)

    def _launch(self):
        launch = build(self.conf, self.exe)
        self.daemon = TailableProc(launch.datadir.path, verbose=self.conf.view_stdout)
        self.rpc = LightningRpc(launch.socket_path)
        self._launch_conf = launch
        self._guard = _Guard(self.daemon, launch, self.rpc, self.conf.grace_timeout)

        try:
            self.daemon.start(launch.cmd_line)
        except LightningdError:
            self._guard.release()
            raise
        self.state = State.SPAWNED
        self._finalizer = weakref.finalize(self, self._guard.release)

        try:
            self.info = self._wait_ready()
        except BaseException as e:
            try:
                self._finalizer()
            except ShutdownError as shutdown_error:
                raise e from shutdown_error
            raise
        self._guard.ready = True

        self.rpc_port = launch.rpc_port
        self.port = launch.port
        # The answer came over our own socket, so these are bound by our process.
        ports = [b['port'] for b in self.info.get('binding', []) if 'port' in b]
        if ports and launch.port not in ports:
            logging.warning("Asked lightningd to listen on {} but it bound {}".format(
                launch.port, ports))
            self.port = ports[0]

    def _wait_ready(self):
        conf = self.conf
        daemon = self.daemon
        socket_path = self._launch_conf.socket_path
        self.state = State.POLLING
        deadline = time.monotonic() + conf.timeout
        i = 0
        while True:
            rc = daemon.returncode
            if rc is not None:
                self.state = State.EXITED_EARLY
                stdout_tail, stderr_tail = daemon.tail()
                raise ProcessExitedEarly(daemon.pid, rc, stdout_tail, stderr_tail)

            if time.monotonic() >= deadline:
                self.state = State.TIMED_OUT
                raise StartupTimeout(daemon.pid, conf.timeout)

            time.sleep(conf.poll_interval)
            info = None
            remaining = deadline - time.monotonic()
            if remaining > 0 and os.path.exists(socket_path):
                try:
                    info = call_with_timeout(self.rpc.getinfo, remaining)
                except futures.TimeoutError:
                    logging.debug("lightning client for process {} got no answer within {:.1f}s".format(
                        daemon.pid, remaining))
                except (OSError, RpcError, ValueError) as e:
                    logging.debug("lightning client for process {} not ready ({}): {}".format(
                        daemon.pid, i, e))

            if info is not None:
                if not conf.wait_for_initialized or daemon.is_in_log(READY_LOG):
                    self.state = State.READY
                    return info
            i += 1

    @property
    def workdir(self):
        """Return the current workdir path of the running node"""
        return self._launch_conf.datadir.path

    @property
    def pid(self):
        return self.daemon.pid

    def is_running(self):
        return self.daemon.is_running()

    def stop(self):
        """Stop the node, waiting for the process to terminate.

        Tries the `stop` RPC first, then escalates to signals. Returns the
        exit code; calling it again does nothing and returns the same code.
        """
        self._finalizer()
        self.state = State.STOPPED
        return self._guard.rc

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.stop()

    def __repr__(self):
        return "<LightningD pid={} workdir={} state={}>".format(
            self.pid, self.workdir, self.state.value if self.state else None)
