import base64
import json
import os
import stat
from datetime import datetime
from unittest import mock

import conduitctl
from conduitctl import backup_key, list_backups, node_id_from_key, read_node_key, restore_key

from conftest import completed

RAW_KEY = bytes(range(64))
KEY_JSON = json.dumps({"privateKeyBase64": base64.b64encode(RAW_KEY).decode()})
EXPECTED_ID = base64.b64encode(RAW_KEY[32:]).decode().rstrip("=")


def test_node_id_is_last_32_bytes_unpadded():
    node_id = node_id_from_key(KEY_JSON)
    assert node_id == EXPECTED_ID
    assert "=" not in node_id
    assert base64.b64decode(node_id + "=") == RAW_KEY[32:]


def test_node_id_rejects_bad_keys():
    assert node_id_from_key("not json") is None
    assert node_id_from_key("{}") is None
    assert node_id_from_key(json.dumps({"privateKeyBase64": "@@@"})) is None
    short = base64.b64encode(b"x" * 16).decode()
    assert node_id_from_key(json.dumps({"privateKeyBase64": short})) is None


def test_read_node_key_no_volume():
    with mock.patch.object(conduitctl.Docker, "volume_mountpoint", return_value=None), \
         mock.patch.object(conduitctl.Docker, "run_helper") as helper:
        assert read_node_key() is None
    helper.assert_not_called()


def test_read_node_key_from_mountpoint(tmp_path):
    (tmp_path / "conduit_key.json").write_text(KEY_JSON)
    with mock.patch.object(conduitctl.Docker, "volume_mountpoint", return_value=str(tmp_path)), \
         mock.patch.object(conduitctl.Docker, "run_helper") as helper:
        assert read_node_key() == KEY_JSON
    helper.assert_not_called()


def test_read_node_key_through_helper(tmp_path):
    with mock.patch.object(conduitctl.Docker, "volume_mountpoint", return_value="/var/lib/docker/volumes/x"), \
         mock.patch.object(conduitctl.Docker, "run_helper", return_value=completed(0, KEY_JSON)) as helper:
        assert read_node_key() == KEY_JSON
    mounts, command = helper.call_args[0]
    assert mounts == ["conduit-data:/data"]
    assert command == ["cat", "/data/conduit_key.json"]


def test_read_node_key_missing_in_volume():
    with mock.patch.object(conduitctl.Docker, "volume_mountpoint", return_value=""), \
         mock.patch.object(conduitctl.Docker, "run_helper", return_value=completed(1, "", "No such file")):
        assert read_node_key() is None


def test_backup_key(paths):
    with mock.patch("conduitctl.read_node_key", return_value=KEY_JSON):
        backup_file = backup_key(paths, now=datetime(2025, 1, 12, 9, 30, 5))
    assert backup_file == os.path.join(paths.backup_dir, "conduit_key_20250112_093005.json")
    with open(backup_file) as f:
        assert f.read() == KEY_JSON
    assert stat.S_IMODE(os.stat(backup_file).st_mode) == 0o600
    assert stat.S_IMODE(os.stat(paths.backup_dir).st_mode) == 0o700


def test_backup_key_without_key(paths):
    with mock.patch("conduitctl.read_node_key", return_value=None):
        assert backup_key(paths) is None
    assert not os.path.exists(paths.backup_dir)
    assert "backup.no_key" in conduitctl.get_errors_by_category()


def test_list_backups_sorted(paths):
    assert list_backups(paths) == []
    os.makedirs(paths.backup_dir)
    for name in ("conduit_key_20250102_000000.json", "conduit_key_20250101_000000.json", "notes.txt"):
        (open(os.path.join(paths.backup_dir, name), "w")).close()
    assert [os.path.basename(p) for p in list_backups(paths)] == [
        "conduit_key_20250101_000000.json",
        "conduit_key_20250102_000000.json",
    ]


def test_restore_key_pipes_file_into_volume(tmp_path):
    backup = tmp_path / "conduit_key_20250101_000000.json"
    backup.write_text(KEY_JSON)
    container = conduitctl.Container(ID="abc", Names="conduit-mac", Image="img", Status="Up 1 hour", State="running")
    with mock.patch.object(conduitctl.Docker, "stop", return_value=True) as stop, \
         mock.patch.object(conduitctl.Docker, "start", return_value=True) as start, \
         mock.patch.object(conduitctl.Docker, "find_container", return_value=container), \
         mock.patch.object(conduitctl.Docker, "run_helper", return_value=completed(0)) as helper:
        assert restore_key(str(backup))
    stop.assert_called_once_with("conduit-mac")
    start.assert_called_once_with("conduit-mac")
    mounts, command = helper.call_args[0]
    assert mounts == ["conduit-data:/data"]
    assert command[:2] == ["sh", "-c"]
    assert "chmod 600 /data/conduit_key.json" in command[2]
    assert "chown -R 1000:1000 /data" in command[2]
    assert helper.call_args[1]["input_text"] == KEY_JSON


def test_restore_key_rejects_invalid_backup(tmp_path):
    backup = tmp_path / "broken.json"
    backup.write_text("{}")
    with mock.patch.object(conduitctl.Docker, "stop") as stop:
        assert not restore_key(str(backup))
    stop.assert_not_called()


def test_restore_key_missing_file(tmp_path):
    assert not restore_key(str(tmp_path / "nope.json"))
    assert "restore.read" in conduitctl.get_errors_by_category()


def test_restore_key_copy_failure_still_restarts(tmp_path):
    backup = tmp_path / "k.json"
    backup.write_text(KEY_JSON)
    container = conduitctl.Container(ID="abc", Names="conduit-mac", Image="img", Status="Exited", State="exited")
    with mock.patch.object(conduitctl.Docker, "stop", return_value=True), \
         mock.patch.object(conduitctl.Docker, "start", return_value=True) as start, \
         mock.patch.object(conduitctl.Docker, "find_container", return_value=container), \
         mock.patch.object(conduitctl.Docker, "run_helper", return_value=completed(1, "", "denied")):
        assert not restore_key(str(backup))
    start.assert_called_once()
