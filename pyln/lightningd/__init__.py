from .conf import Conf, DataDir, validate_args
from .daemon import LightningD, State
from .download import downloaded_exe_path, fetch
from .errors import (
    BothDirsSpecified,
    ConfigWriteError,
    DownloadError,
    InvalidArgument,
    LightningdError,
    NotFound,
    ProcessExitedEarly,
    ShutdownError,
    SpawnError,
    StartupTimeout,
)
from .exe import exe_path, resolve_exe

__version__ = "0.1.0"

__all__ = [
    "LightningD",
    "State",
    "Conf",
    "DataDir",
    "validate_args",
    "exe_path",
    "resolve_exe",
    "downloaded_exe_path",
    "fetch",
    "LightningdError",
    "NotFound",
    "BothDirsSpecified",
    "InvalidArgument",
    "ConfigWriteError",
    "SpawnError",
    "StartupTimeout",
    "ProcessExitedEarly",
    "ShutdownError",
    "DownloadError",
    "__version__",
]
