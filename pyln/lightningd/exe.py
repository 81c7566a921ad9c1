from pyln.lightningd.download import downloaded_exe_path
from pyln.lightningd.errors import NotFound
from pyln.lightningd.utils import env

import logging
import os
import shutil

EXE_NAME = 'lightningd'


def is_executable(path):
    return os.path.isfile(path) and os.access(path, os.X_OK)


def resolve_exe(exe):
    """Check that `exe` names an existing executable and make it absolute.

    A bare name without a directory part is looked up in the `PATH`.
    """
    path = str(exe)
    if os.path.dirname(path) == '':
        found = shutil.which(path)
        if found is None:
            raise NotFound("{} not found in PATH".format(path))
        path = found
    if not is_executable(path):
        raise NotFound("{} does not exist or is not executable".format(path))
    return os.path.abspath(path)


def exe_path():
    """Returns the `lightningd` executable with the following precedence:

    1) the path in the `LIGHTNINGD_EXE` env var; if it's set but wrong we
       fail right here rather than picking some other binary,
    2) the previously downloaded executable of the pinned version,
    3) `lightningd` in the `PATH`.
    """
    override = env('LIGHTNINGD_EXE')
    if override is not None:
        if not is_executable(override):
            raise NotFound(
                "LIGHTNINGD_EXE is set to {} which is not an executable file".format(override)
            )
        return os.path.abspath(override)

    downloaded = downloaded_exe_path()
    if is_executable(str(downloaded)):
        logging.debug("Using downloaded lightningd at {}".format(downloaded))
        return str(downloaded)

    found = shutil.which(EXE_NAME)
    if found is None:
        raise NotFound(
            "`lightningd` executable is required, provide it with one of the "
            "following: set env var `LIGHTNINGD_EXE`, run "
            "`pyln-lightningd-download`, or have `lightningd` in the `PATH`"
        )
    return os.path.abspath(found)
