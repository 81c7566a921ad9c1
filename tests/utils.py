from pathlib import Path
from pyln.lightningd.utils import wait_for

import os
import shlex
import stat
import sys

STUB = Path(__file__).parent / "stub_lightningd.py"


def write_stub(path, mode="ok", extra_env=None):
    """Write an executable that runs the stub daemon in `mode`."""
    env = {"STUB_MODE": mode}
    env.update(extra_env or {})
    assignments = " ".join("{}={}".format(k, shlex.quote(str(v))) for k, v in env.items())
    path = Path(path)
    path.write_text("#!/bin/sh\n{} exec {} {} \"$@\"\n".format(
        assignments, shlex.quote(sys.executable), shlex.quote(str(STUB))))
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


def pid_running(pid):
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True


def wait_for_exit(node, timeout=10):
    wait_for(lambda: not node.is_running(), timeout=timeout)
