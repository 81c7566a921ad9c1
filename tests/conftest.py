from pyln.lightningd.fixtures import directory, test_base_dir, setup_logging, lightningd_conf, lightningd  # noqa: F401,F403
from utils import write_stub

import pytest


# This function is based upon the example of how to
# "[make] test result information available in fixtures" at:
#  https://pytest.org/latest/example/simple.html#making-test-result-information-available-in-fixtures
# and:
#  https://github.com/pytest-dev/pytest/issues/288
@pytest.hookimpl(tryfirst=True, hookwrapper=True)
def pytest_runtest_makereport(item, call):
    # execute all other hooks to obtain the report object
    outcome = yield
    rep = outcome.get_result()

    # set a report attribute for each phase of a call, which can
    # be "setup", "call", "teardown"

    setattr(item, "rep_" + rep.when, rep)


@pytest.fixture
def stub_exe(tmp_path):
    """Factory for stub executables, one per mode."""
    def make(mode="ok", **extra_env):
        return write_stub(tmp_path / "lightningd-{}".format(mode), mode, extra_env)
    return make


@pytest.fixture
def tmp_root(tmp_path, monkeypatch):
    """A private TEMPDIR_ROOT, so we can see what's left behind."""
    root = tmp_path / "root"
    root.mkdir()
    monkeypatch.setenv("TEMPDIR_ROOT", str(root))
    return root


@pytest.fixture(scope="session")
def lightningd_exe(tmp_path_factory):
    return write_stub(tmp_path_factory.mktemp("bin") / "lightningd")
