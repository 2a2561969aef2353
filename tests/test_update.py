import os
import stat
from unittest import mock

import requests

import conduitctl
from conduitctl import fetch_remote_script, install_update, is_newer, parse_version

GOOD_SCRIPT = '#!/usr/bin/env python3\nVERSION = "1.4.0"\nprint("hi")\n'


def test_parse_version():
    assert parse_version(GOOD_SCRIPT) == "1.4.0"
    assert parse_version('x = 1\n  VERSION = "9.9.9"\n') is None
    assert parse_version("") is None


def test_is_newer():
    assert is_newer("1.4.0", "1.3.0")
    assert is_newer("1.10.0", "1.9.9")
    assert not is_newer("1.3.0", "1.3.0")
    assert not is_newer("1.2.9", "1.3.0")
    assert is_newer("2.0", "1.3.0")


def test_fetch_remote_script():
    response = mock.Mock(text=GOOD_SCRIPT)
    with mock.patch("conduitctl.requests.get", return_value=response) as get:
        assert fetch_remote_script("https://example.invalid/conduitctl.py") == GOOD_SCRIPT
    get.assert_called_once_with("https://example.invalid/conduitctl.py", timeout=10)
    response.raise_for_status.assert_called_once()


def test_fetch_remote_script_network_error():
    with mock.patch("conduitctl.requests.get", side_effect=requests.ConnectionError("offline")):
        assert fetch_remote_script() is None
    assert "update.fetch" in conduitctl.get_errors_by_category()


def test_fetch_remote_script_http_error():
    response = mock.Mock()
    response.raise_for_status.side_effect = requests.HTTPError("404")
    with mock.patch("conduitctl.requests.get", return_value=response):
        assert fetch_remote_script() is None


def test_install_update_replaces_target(tmp_path):
    target = tmp_path / "conduitctl.py"
    target.write_text("old")
    assert install_update(GOOD_SCRIPT, str(target))
    assert target.read_text() == GOOD_SCRIPT
    assert stat.S_IMODE(os.stat(target).st_mode) == 0o755
    assert os.listdir(tmp_path) == ["conduitctl.py"]


def test_install_update_rejects_non_script(tmp_path):
    target = tmp_path / "conduitctl.py"
    target.write_text("old")
    assert not install_update("<html>404</html>", str(target))
    assert target.read_text() == "old"


def test_install_update_rejects_syntax_errors(tmp_path):
    target = tmp_path / "conduitctl.py"
    target.write_text("old")
    assert not install_update("#!/usr/bin/env python3\ndef broken(:\n", str(target))
    assert target.read_text() == "old"
    assert "update.verify" in conduitctl.get_errors_by_category()
