from dataclasses import dataclass, field
from pyln.lightningd.errors import (
    BothDirsSpecified,
    ConfigWriteError,
    InvalidArgument,
)
from pyln.lightningd.utils import (
    GRACE_TIMEOUT,
    POLL_INTERVAL,
    TEST_NETWORK,
    TIMEOUT,
    drop_unused_port,
    env,
    reserve_unused_port,
    write_config,
)
from typing import List, Optional

import logging
import os
import shutil
import tempfile

LIGHTNINGD_CONFIG = {
    "log-level": "debug",
}

# Options we can't supervise a daemon with.
INVALID_ARGS = {
    "--daemon": "lightningd would detach and look like an early exit",
}


@dataclass
class Conf:
    """The node configuration parameters.

    `args` are extra command line arguments like `["--log-level=io"]`,
    appended after the generated ones so they win on conflict.

    `tmpdir` and `staticdir` select the working directory:

     - neither set: a temporary directory in `TEMPDIR_ROOT` or the OS
       default temporary directory (eg /tmp), removed on stop,
     - `tmpdir` set: a temporary directory inside `tmpdir`, removed on stop,
     - `staticdir` set: that directory, which must already exist, is
       used as-is and left alone on stop,
     - both set: error.

    `port` is the peer listen port, reserved automatically when left as
    `None`. `rpc_port` is the grpc port; the grpc plugin is optional in
    lightningd builds, so `grpc-port` is only configured when `rpc_port`
    is given or `grpc` is set (defaults to `CLN_TEST_GRPC=1`), in which
    case a port is reserved if needed.

    `attempts` is how many times the process gets relaunched, with fresh
    ports, when it exits during startup. Ports are only reserved, not
    booked, so some other process may rarely grab one in between.
    """
    args: List[str] = field(default_factory=list)
    view_stdout: bool = False
    network: str = TEST_NETWORK
    tmpdir: Optional[str] = None
    staticdir: Optional[str] = None
    port: Optional[int] = None
    rpc_port: Optional[int] = None
    grpc: bool = field(default_factory=lambda: env("CLN_TEST_GRPC") == "1")
    wait_for_initialized: bool = True
    attempts: int = 0
    timeout: float = TIMEOUT
    poll_interval: float = POLL_INTERVAL
    grace_timeout: float = GRACE_TIMEOUT


class DataDir(object):
    """The working directory of a node, either borrowed or owned.

    Only owned (temporary) directories are ever removed.
    """
    def __init__(self, path, temporary):
        self.path = str(path)
        self.temporary = temporary

    @classmethod
    def persistent(cls, path):
        path = str(path)
        if not os.path.isdir(path):
            raise ConfigWriteError("staticdir {} does not exist".format(path))
        if not os.access(path, os.W_OK | os.X_OK):
            raise ConfigWriteError("staticdir {} is not writable".format(path))
        return cls(path, temporary=False)

    @classmethod
    def temporary_in(cls, root=None):
        try:
            path = tempfile.mkdtemp(prefix='lightningd-', dir=root)
        except OSError as e:
            raise ConfigWriteError("Cannot create a working directory in {}: {}".format(
                root or tempfile.gettempdir(), e))
        return cls(path, temporary=True)

    def cleanup(self):
        if self.temporary and os.path.exists(self.path):
            logging.debug("Removing working directory {}".format(self.path))
            shutil.rmtree(self.path)

    def __repr__(self):
        kind = "Temporary" if self.temporary else "Persistent"
        return "DataDir.{}({!r})".format(kind, self.path)


@dataclass
class LaunchConf:
    """Everything the supervisor needs to start one process."""
    datadir: DataDir
    conf_file: str
    cmd_line: List[str]
    port: int
    rpc_port: Optional[int]
    reserved_ports: List[int]

    @property
    def network_dir(self):
        return os.path.join(self.datadir.path, TEST_NETWORK)

    @property
    def socket_path(self):
        return os.path.join(self.network_dir, "lightning-rpc")

    def release(self):
        """Return reserved ports and remove an owned working directory."""
        for p in self.reserved_ports:
            drop_unused_port(p)
        self.reserved_ports = []
        self.datadir.cleanup()


def validate_args(args):
    """Reject any argument we can't supervise a daemon with."""
    for arg in args:
        name = arg.split("=", 1)[0]
        if name in INVALID_ARGS:
            raise InvalidArgument(arg, INVALID_ARGS[name])
    return list(args)


def make_datadir(conf):
    tmpdir = conf.tmpdir
    if tmpdir is None and conf.staticdir is None:
        tmpdir = env("TEMPDIR_ROOT")

    if tmpdir is not None and conf.staticdir is not None:
        raise BothDirsSpecified()
    if conf.staticdir is not None:
        return DataDir.persistent(conf.staticdir)
    return DataDir.temporary_in(tmpdir)


def _reserve_distinct(taken):
    while True:
        port = reserve_unused_port()
        if port not in taken:
            return port
        drop_unused_port(port)


def build(conf, exe):
    """Materialize `conf` on disk and compute the command line for `exe`.

    On failure nothing is left behind: reserved ports are returned and an
    owned working directory is removed.
    """
    if conf.network != TEST_NETWORK:
        raise InvalidArgument("network={}".format(conf.network),
                              "only {} is supported".format(TEST_NETWORK))
    if conf.port is not None and conf.port == conf.rpc_port:
        raise InvalidArgument("port={}".format(conf.port), "same as rpc_port")
    conf_args = validate_args(conf.args)

    datadir = make_datadir(conf)
    reserved = []
    try:
        port = conf.port
        if port is None:
            port = _reserve_distinct({conf.rpc_port})
            reserved.append(port)
        rpc_port = conf.rpc_port
        if rpc_port is None and conf.grpc:
            rpc_port = _reserve_distinct({port})
            reserved.append(rpc_port)

        opts = dict(LIGHTNINGD_CONFIG)
        opts['addr'] = '127.0.0.1:{}'.format(port)
        if rpc_port is not None:
            opts['grpc-port'] = rpc_port

        conf_file = os.path.join(datadir.path, "config")
        os.makedirs(os.path.join(datadir.path, conf.network), exist_ok=True)
        write_config(conf_file, opts)
    except OSError as e:
        launch = LaunchConf(datadir, "", [], 0, 0, reserved)
        launch.release()
        raise ConfigWriteError("Cannot write config in {}: {}".format(datadir.path, e))

    cmd_line = [
        str(exe),
        '--lightning-dir={}'.format(datadir.path),
        '--conf={}'.format(conf_file),
        '--network={}'.format(conf.network),
    ] + conf_args

    logging.debug("work_dir: {}".format(datadir.path))
    return LaunchConf(
        datadir=datadir,
        conf_file=conf_file,
        cmd_line=cmd_line,
        port=port,
        rpc_port=rpc_port,
        reserved_ports=reserved,
    )
