import os
import subprocess
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import conduitctl  # noqa: E402


def completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(["docker"], returncode, stdout, stderr)


@pytest.fixture(autouse=True)
def fresh_errors():
    conduitctl.clear_errors()
    yield
    conduitctl.clear_errors()


@pytest.fixture
def paths(tmp_path):
    return conduitctl.Paths.from_home(str(tmp_path))


@pytest.fixture(autouse=True)
def reset_logger():
    yield
    for handler in conduitctl.logger.handlers:
        handler.close()
    conduitctl.logger.handlers.clear()
