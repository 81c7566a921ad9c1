from pyln.lightningd.conf import Conf
from pyln.lightningd.daemon import LightningD
from pyln.lightningd.exe import exe_path
from pyln.lightningd.utils import TEST_DEBUG, env

import logging
import os
import pytest  # type: ignore
import shutil
import tempfile


@pytest.fixture(scope="session")
def test_base_dir():
    directory = tempfile.mkdtemp(prefix='lnd-tests-', dir=env("TEST_DIR"))
    yield directory
    # Only directories of failed tests are left in there.
    if not os.listdir(directory):
        os.rmdir(directory)
    else:
        print("Leaving base_dir {} intact, it has failed test directories".format(directory))


@pytest.fixture(autouse=True)
def setup_logging(caplog):
    if TEST_DEBUG:
        caplog.set_level(logging.DEBUG)
    yield


@pytest.fixture
def directory(request, test_base_dir):
    """A fresh directory for this test, left behind if the test failed."""
    directory = tempfile.mkdtemp(prefix=request.function.__name__ + '_', dir=test_base_dir)

    yield directory

    # `rep_call` is set by a `pytest_runtest_makereport` hook in conftest.py,
    # it's missing if the failure happened during setup.
    rep_call = getattr(request.node, 'rep_call', None)
    if rep_call is not None and rep_call.outcome == 'passed':
        shutil.rmtree(directory)
    else:
        logging.debug("Test execution failed, leaving the test directory {} intact.".format(directory))


@pytest.fixture(scope="session")
def lightningd_exe():
    """The executable to test against, override to pin a specific one."""
    return exe_path()


@pytest.fixture
def lightningd_conf(directory):
    return Conf(tmpdir=directory)


@pytest.fixture
def lightningd(lightningd_exe, lightningd_conf):
    node = LightningD(lightningd_exe, lightningd_conf)

    yield node

    node.stop()
