from typing import List, Optional


class LightningdError(Exception):
    """Base class for everything that can go wrong while running lightningd"""


class NotFound(LightningdError):
    """No usable `lightningd` executable could be located.

    Provide one by setting `LIGHTNINGD_EXE`, by fetching a release with
    `pyln-lightningd-download`, or by putting `lightningd` in the `PATH`.
    """


class BothDirsSpecified(LightningdError):
    def __init__(self):
        super().__init__(
            "tmpdir and staticdir cannot be set at the same time in Conf"
        )


class InvalidArgument(LightningdError):
    def __init__(self, arg: str, reason: str):
        super().__init__("Invalid lightningd argument {}: {}".format(arg, reason))
        self.arg = arg


class ConfigWriteError(LightningdError):
    """The working directory or its config file could not be materialized"""


class SpawnError(LightningdError):
    """The OS refused to start the process"""


class StartupTimeout(LightningdError):
    def __init__(self, pid: int, timeout: float):
        super().__init__(
            "lightningd (pid {}) did not become ready within {}s".format(pid, timeout)
        )
        self.pid = pid
        self.timeout = timeout


class ProcessExitedEarly(LightningdError):
    """The process exited before answering its first `getinfo`.

    Carries the exit status and the last lines of the captured output,
    which usually say why.
    """

    def __init__(self, pid: int, returncode: int,
                 stdout_tail: Optional[List[str]] = None,
                 stderr_tail: Optional[List[str]] = None):
        self.pid = pid
        self.returncode = returncode
        self.stdout_tail = stdout_tail or []
        self.stderr_tail = stderr_tail or []
        msg = "lightningd (pid {}) terminated early with exit code {}".format(
            pid, returncode
        )
        if self.stdout_tail:
            msg += "\nstdout:\n" + "\n".join(self.stdout_tail)
        if self.stderr_tail:
            msg += "\nstderr:\n" + "\n".join(self.stderr_tail)
        super().__init__(msg)


class ShutdownError(LightningdError):
    """Neither the graceful nor the forceful stop made the process exit"""

    def __init__(self, pid: int):
        super().__init__("lightningd (pid {}) could not be stopped".format(pid))
        self.pid = pid


class DownloadError(LightningdError):
    """Fetching, verifying or extracting a release archive failed"""
