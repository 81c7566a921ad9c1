from concurrent import futures
from pyln.lightningd import (
    Conf,
    LightningD,
    NotFound,
    ProcessExitedEarly,
    ShutdownError,
    SpawnError,
    StartupTimeout,
    State,
)
from pyln.lightningd.proc import TailableProc
from utils import pid_running, wait_for_exit

import logging
import os
import pytest
import signal
import time


def test_launch_and_stop(stub_exe, tmp_root):
    node = LightningD(stub_exe(), Conf())
    assert node.state == State.READY
    assert node.is_running()
    assert node.rpc.getinfo()['alias'] == 'STUB'
    assert node.info['binding'][0]['port'] == node.port

    workdir = node.workdir
    assert os.path.dirname(workdir) == str(tmp_root)
    assert os.path.isfile(os.path.join(workdir, 'config'))
    assert os.path.isfile(os.path.join(workdir, 'stdout.log'))
    assert os.path.isfile(os.path.join(workdir, 'stderr.log'))
    assert node.daemon.is_in_log('Server started with public key')

    pid = node.pid
    assert node.stop() == 0
    assert node.state == State.STOPPED
    assert not os.path.exists(workdir)
    assert not pid_running(pid)


def test_context_manager(stub_exe, tmp_root):
    with LightningD(stub_exe()) as node:
        pid = node.pid
        workdir = node.workdir
        assert os.path.isdir(workdir)

    assert not os.path.exists(workdir)
    assert not pid_running(pid)
    assert os.listdir(str(tmp_root)) == []


def test_context_manager_on_error(stub_exe, tmp_root):
    with pytest.raises(RuntimeError):
        with LightningD(stub_exe()) as node:
            pid = node.pid
            raise RuntimeError("test body failed")

    assert not pid_running(pid)
    assert os.listdir(str(tmp_root)) == []


def test_stop_twice(stub_exe, tmp_root):
    node = LightningD(stub_exe())
    rc = node.stop()
    assert node.stop() == rc
    assert node.state == State.STOPPED
    assert os.listdir(str(tmp_root)) == []


def test_dropped_handle_cleans_up(stub_exe, tmp_root):
    node = LightningD(stub_exe())
    pid = node.pid
    workdir = node.workdir
    del node

    assert not os.path.exists(workdir)
    assert not pid_running(pid)


def test_staticdir_survives(stub_exe, tmp_path):
    staticdir = tmp_path / "static"
    staticdir.mkdir()
    node = LightningD(stub_exe(), Conf(staticdir=str(staticdir)))
    assert node.workdir == str(staticdir)
    node.stop()

    assert staticdir.is_dir()
    assert (staticdir / 'config').is_file()
    assert (staticdir / 'stdout.log').is_file()


def test_missing_exe(tmp_root, tmp_path):
    with pytest.raises(NotFound):
        LightningD(str(tmp_path / "no-such-lightningd"))

    # Nothing was spawned, so no working directory either.
    assert os.listdir(str(tmp_root)) == []


def test_not_executable(tmp_root, tmp_path):
    exe = tmp_path / "lightningd"
    exe.write_text("not a program\n")
    exe.chmod(0o644)
    with pytest.raises(NotFound):
        LightningD(str(exe))
    assert os.listdir(str(tmp_root)) == []


def test_spawn_error(tmp_root, tmp_path):
    # Executable bit set, but the kernel can't run it.
    exe = tmp_path / "lightningd"
    exe.write_bytes(b"\x7fELF garbage")
    exe.chmod(0o755)
    with pytest.raises(SpawnError):
        LightningD(str(exe))
    assert os.listdir(str(tmp_root)) == []


def test_exited_early(stub_exe, tmp_root):
    start = time.monotonic()
    with pytest.raises(ProcessExitedEarly) as excinfo:
        LightningD(stub_exe("exit"), Conf(timeout=30))

    # Reported as soon as it happens, well before the timeout.
    assert time.monotonic() - start < 10
    err = excinfo.value
    assert err.returncode == 3
    assert 'stub: failing on purpose' in err.stderr_tail
    assert 'failing on purpose' in str(err)
    assert not pid_running(err.pid)
    assert os.listdir(str(tmp_root)) == []


def test_exited_early_attempts(stub_exe, tmp_root, caplog):
    caplog.set_level(logging.WARNING)
    with pytest.raises(ProcessExitedEarly):
        LightningD(stub_exe("exit"), Conf(attempts=2))

    relaunches = [r for r in caplog.records if 'Trying to launch again' in r.getMessage()]
    assert len(relaunches) == 2
    assert os.listdir(str(tmp_root)) == []


def test_startup_timeout(stub_exe, tmp_root):
    start = time.monotonic()
    with pytest.raises(StartupTimeout) as excinfo:
        LightningD(stub_exe("hang"), Conf(timeout=1))

    assert time.monotonic() - start >= 1
    assert excinfo.value.timeout == 1
    assert not pid_running(excinfo.value.pid)
    assert os.listdir(str(tmp_root)) == []


def test_wait_for_initialized(stub_exe, tmp_root):
    # Answers getinfo, but never logs it's done initializing.
    with pytest.raises(StartupTimeout):
        LightningD(stub_exe("noinit"), Conf(timeout=1))

    with LightningD(stub_exe("noinit"), Conf(wait_for_initialized=False)) as node:
        assert node.rpc.getinfo()['id'] == node.info['id']


def test_slow_startup(stub_exe, tmp_root):
    with LightningD(stub_exe("slow", STUB_DELAY=1), Conf(timeout=30)) as node:
        assert node.state == State.READY


def test_stubborn_process_gets_killed(stub_exe, tmp_root):
    node = LightningD(stub_exe("stubborn"), Conf(grace_timeout=1))
    pid = node.pid
    assert node.stop() == -signal.SIGKILL
    assert not pid_running(pid)
    assert os.listdir(str(tmp_root)) == []


def test_startup_timeout_unanswered_rpc(stub_exe, tmp_root):
    # The socket accepts connections but nothing ever answers on it.
    start = time.monotonic()
    with pytest.raises(StartupTimeout) as excinfo:
        LightningD(stub_exe("wedged"), Conf(timeout=2))

    assert time.monotonic() - start < 15
    assert not pid_running(excinfo.value.pid)
    assert os.listdir(str(tmp_root)) == []


def test_stop_unanswered(stub_exe, tmp_root):
    node = LightningD(stub_exe("mutestop"), Conf(grace_timeout=1))
    pid = node.pid

    start = time.monotonic()
    assert node.stop() == -signal.SIGTERM
    assert time.monotonic() - start < 15
    assert not pid_running(pid)
    assert os.listdir(str(tmp_root)) == []


def test_shutdown_error(stub_exe, tmp_root, monkeypatch):
    node = LightningD(stub_exe("stubborn"), Conf(grace_timeout=0.5))
    pid = node.pid
    workdir = node.workdir
    monkeypatch.setattr(TailableProc, "kill", lambda self: None)
    try:
        with pytest.raises(ShutdownError) as excinfo:
            node.stop()
        assert excinfo.value.pid == pid
        assert pid_running(pid)
        # The process may still be using it.
        assert os.path.isdir(workdir)

        # Already released, nothing more happens.
        assert node.stop() is None
    finally:
        os.kill(pid, signal.SIGKILL)


def test_shutdown_error_keeps_launch_error(stub_exe, tmp_root, monkeypatch):
    monkeypatch.setattr(TailableProc, "kill", lambda self: None)
    exe = stub_exe("hang", STUB_IGNORE_TERM=1)
    with pytest.raises(StartupTimeout) as excinfo:
        LightningD(exe, Conf(timeout=1, grace_timeout=0.5))

    pid = excinfo.value.pid
    try:
        assert isinstance(excinfo.value.__cause__, ShutdownError)
        assert excinfo.value.__cause__.pid == pid
    finally:
        os.kill(pid, signal.SIGKILL)


def test_stop_after_crash(stub_exe, tmp_root):
    node = LightningD(stub_exe())
    os.kill(node.pid, signal.SIGKILL)
    wait_for_exit(node)

    assert node.stop() == -signal.SIGKILL
    assert os.listdir(str(tmp_root)) == []


def test_concurrent_ports(stub_exe, tmp_root):
    exe = stub_exe()
    executor = futures.ThreadPoolExecutor(max_workers=4)
    jobs = [executor.submit(LightningD, exe, Conf(grpc=True)) for _ in range(4)]
    nodes = [j.result() for j in jobs]
    executor.shutdown()

    try:
        ports = [n.port for n in nodes] + [n.rpc_port for n in nodes]
        assert len(set(ports)) == len(ports)
        assert len(set(n.workdir for n in nodes)) == len(nodes)
    finally:
        for n in nodes:
            n.stop()


def test_explicit_ports(stub_exe, tmp_root):
    with LightningD(stub_exe()) as other:
        taken = other.port

    with LightningD(stub_exe(), Conf(port=taken, grpc=True)) as node:
        assert node.port == taken
        assert node.rpc_port != taken
        assert node.info['grpc-port'] == node.rpc_port


def test_view_stdout(stub_exe, tmp_root, capsys):
    with LightningD(stub_exe(), Conf(view_stdout=True)):
        pass
    out = capsys.readouterr().out
    assert 'lightningd: Server started with public key' in out


def test_fixture(lightningd, directory):
    assert lightningd.workdir.startswith(directory)
    assert lightningd.rpc.getinfo()['network'] == 'regtest'
