from unittest import mock

from conduitctl import ConduitStats, SystemStats, format_bytes, latest_stats, parse_stats_line

SAMPLE = "2025-01-12 10:00:00 [STATS] Connecting: 2 | Connected: 15 | Up: 1.5 GB | Down: 12.3 GB | Uptime: 3h25m"


def test_parse_full_line():
    stats = parse_stats_line(SAMPLE)
    assert stats == ConduitStats(connected=15, connecting=2, up="1.5GB", down="12.3GB")


def test_connected_not_confused_with_connecting():
    stats = parse_stats_line("[STATS] Connecting: 7")
    assert stats.connecting == 7
    assert stats.connected == 0


def test_uptime_not_read_as_up():
    stats = parse_stats_line("[STATS] Connected: 1 | Uptime: 5m")
    assert stats.up == "0B"


def test_missing_fields_default():
    assert parse_stats_line("[STATS]") == ConduitStats()


def test_latest_stats_uses_last_stats_line():
    output = "\n".join([
        "[STATS] Connecting: 0 | Connected: 1 | Up: 1 KB | Down: 2 KB",
        "some other line",
        "[STATS] Connecting: 3 | Connected: 4 | Up: 5 MB | Down: 6 MB",
        "[INFO] trailing noise",
    ])
    stats = latest_stats(output)
    assert (stats.connected, stats.connecting, stats.up, stats.down) == (4, 3, "5MB", "6MB")


def test_latest_stats_without_stats_lines():
    assert latest_stats("starting\nready\n") == ConduitStats()
    assert latest_stats("") == ConduitStats()


def test_format_bytes():
    assert format_bytes(0) == "0 B"
    assert format_bytes(None) == "0 B"
    assert format_bytes(512) == "512 B"
    assert format_bytes(1536) == "1.50 KB"
    assert format_bytes(5 * 1024 ** 2) == "5.00 MB"
    assert format_bytes(16 * 1024 ** 3) == "16.00 GB"


def test_system_stats_collect():
    mem = mock.Mock(total=8 * 1024 ** 3, available=3 * 1024 ** 3)
    with mock.patch("conduitctl.psutil.virtual_memory", return_value=mem), \
         mock.patch("conduitctl.psutil.cpu_percent", return_value=12.5), \
         mock.patch("conduitctl.psutil.cpu_count", return_value=4):
        stats = SystemStats.collect()
    assert stats.cpu_percent == 12.5
    assert stats.ram_used == 5 * 1024 ** 3
    assert stats.ram_total == 8 * 1024 ** 3
    assert stats.cores == 4
