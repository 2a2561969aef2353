import logging
import os
import stat

import conduitctl
from conduitctl import Config, Paths, is_valid_cpus, is_valid_memory


def test_paths_from_home(tmp_path):
    paths = Paths.from_home(str(tmp_path))
    assert paths.config_file == str(tmp_path / ".conduit-config")
    assert paths.log_file == str(tmp_path / ".conduit-manager.log")
    assert paths.backup_dir == str(tmp_path / ".conduit-backups")
    assert paths.seccomp_file == str(tmp_path / ".conduit-seccomp.json")


def test_missing_file_gives_defaults(paths):
    config = Config.load(paths.config_file)
    assert config == Config()
    assert config.max_memory == "2g"
    assert config.max_cpus == "2"
    assert config.memory_swap == "2g"


def test_save_then_load(paths):
    Config(max_memory="4g", max_cpus="1.5", max_clients=300, bandwidth=-1).save(paths.config_file)
    assert stat.S_IMODE(os.stat(paths.config_file).st_mode) == 0o600
    loaded = Config.load(paths.config_file)
    assert loaded == Config(max_memory="4g", max_cpus="1.5", max_clients=300, bandwidth=-1)


def test_save_writes_shell_assignments(paths):
    Config(max_memory="512m").save(paths.config_file)
    with open(paths.config_file) as f:
        text = f.read()
    assert 'SAVED_MAX_MEMORY="512m"' in text
    assert 'SAVED_MAX_CPUS="2"' in text
    assert "SAVED_MAX_CLIENTS" not in text


def test_load_ignores_invalid_values(paths):
    with open(paths.config_file, "w") as f:
        f.write('SAVED_MAX_MEMORY="lots"\n')
        f.write('SAVED_MAX_CPUS="0"\n')
        f.write('SAVED_MAX_CLIENTS="-1"\n')
        f.write("SAVED_BANDWIDTH=9999\n")
        f.write("$(touch /tmp/pwned)\n")
    config = Config.load(paths.config_file)
    assert config == Config()


def test_load_lowercases_memory_and_reads_unquoted(paths):
    with open(paths.config_file, "w") as f:
        f.write("# comment\n\nSAVED_MAX_MEMORY=3G\nSAVED_BANDWIDTH=\"10\"\n")
    config = Config.load(paths.config_file)
    assert config.max_memory == "3g"
    assert config.bandwidth == 10


def test_memory_and_cpu_validators():
    assert is_valid_memory("512m")
    assert is_valid_memory("2G")
    assert not is_valid_memory("2")
    assert not is_valid_memory("2gb")
    assert is_valid_cpus("2")
    assert is_valid_cpus("0.5")
    assert not is_valid_cpus("0")
    assert not is_valid_cpus("-1")
    assert not is_valid_cpus("two")


def test_setup_logging_writes_file(paths):
    conduitctl.setup_logging(paths.log_file)
    conduitctl.logger.info("hello log")
    for handler in conduitctl.logger.handlers:
        handler.flush()
    with open(paths.log_file) as f:
        line = f.read().strip()
    assert line.endswith("[INFO] hello log")
    assert line.startswith("[")
    conduitctl.logger.handlers.clear()


def test_console_formatter_labels():
    formatter = conduitctl.ConsoleFormatter()
    record = logging.LogRecord("conduitctl", logging.WARNING, __file__, 1, "careful", None, None)
    assert "[WARN]" in formatter.format(record)
    assert formatter.format(record).endswith("careful")


def test_error_registry_grouping():
    conduitctl.log_error("docker.stop", "one")
    conduitctl.log_error("docker.stop", "two")
    conduitctl.log_error("backup.write", "three", {"path": "/x"})
    grouped = conduitctl.get_errors_by_category()
    assert [e["msg"] for e in grouped["docker.stop"]] == ["one", "two"]
    assert grouped["backup.write"][0]["ctx"] == {"path": "/x"}
    assert conduitctl.clear_errors("docker.stop") == 2
    assert len(conduitctl.get_errors()) == 1
