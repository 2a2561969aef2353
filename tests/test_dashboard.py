import re
from unittest import mock

import conduitctl
from conduitctl import ConduitStats, ContainerStats, DashboardSnapshot, SystemStats, dashboard_lines

ANSI = re.compile(r"\033\[[0-9;?]*[a-zA-Z]")


def plain(lines):
    return "\n".join(ANSI.sub("", line) for line in lines)


def test_offline_frame():
    text = plain(dashboard_lines(DashboardSnapshot(running=False)))
    assert "OFFLINE" in text
    assert "Press 1 from main menu to Start" in text
    assert "CLIENTS" not in text


def test_online_frame():
    snap = DashboardSnapshot(
        running=True,
        uptime="Up 3 hours",
        node_id="NODEID123",
        conduit=ConduitStats(connected=15, connecting=2, up="1.5GB", down="12.3GB"),
        container=ContainerStats(CPUPerc="3.21%", MemUsage="80MiB / 2GiB"),
        system=SystemStats(cpu_percent=12.5, ram_used=4 * 1024 ** 3, ram_total=8 * 1024 ** 3, cores=4),
    )
    text = plain(dashboard_lines(snap))
    assert "ONLINE" in text
    assert "Up 3 hours" in text
    assert "NODEID123" in text
    assert "Connected:  15" in text
    assert "Connecting: 2" in text
    assert "Upload:     1.5GB" in text
    assert "Download: 12.3GB" in text
    assert "3.21%" in text
    assert "12.5%" in text
    assert "4.00 GB / 8.00 GB" in text


def test_online_frame_without_docker_stats():
    text = plain(dashboard_lines(DashboardSnapshot(running=True)))
    assert "N/A" in text
    assert "NODE ID" not in text
    assert "Connected:  0" in text


def test_collect_snapshot_offline():
    with mock.patch.object(conduitctl.Docker, "find_container", return_value=None), \
         mock.patch.object(conduitctl.Docker, "logs") as logs:
        snap = conduitctl.collect_snapshot()
    assert not snap.running
    logs.assert_not_called()


def test_collect_snapshot_online():
    container = conduitctl.Container(ID="abc", Names="conduit-mac", Image="img", Status="Up 5 minutes", State="running")
    system = SystemStats(cpu_percent=1.0, ram_used=1, ram_total=2, cores=1)
    with mock.patch.object(conduitctl.Docker, "find_container", return_value=container), \
         mock.patch.object(conduitctl.Docker, "logs", return_value="[STATS] Connected: 9 | Up: 1 MB\n") as logs, \
         mock.patch.object(conduitctl.Docker, "stats", return_value=None), \
         mock.patch.object(conduitctl.SystemStats, "collect", return_value=system):
        snap = conduitctl.collect_snapshot(node_id="cached")
    logs.assert_called_once_with("conduit-mac", tail=50)
    assert snap.running
    assert snap.uptime == "Up 5 minutes"
    assert snap.node_id == "cached"
    assert snap.conduit.connected == 9
    assert snap.conduit.up == "1MB"


def test_dashboard_caches_node_id():
    with mock.patch("conduitctl.psutil.cpu_percent"):
        dash = conduitctl.Dashboard(interval=0)
    with mock.patch("conduitctl.collect_snapshot", side_effect=lambda node_id: DashboardSnapshot(running=True, node_id=node_id)), \
         mock.patch("conduitctl.get_node_id", return_value="NODE") as get_node_id:
        assert dash.refresh().node_id == "NODE"
        assert dash.refresh().node_id == "NODE"
    get_node_id.assert_called_once()


def test_dashboard_run_exits_on_key(capsys):
    with mock.patch("conduitctl.psutil.cpu_percent"):
        dash = conduitctl.Dashboard(interval=0)
    with mock.patch("conduitctl.collect_snapshot", return_value=DashboardSnapshot(running=False)), \
         mock.patch("conduitctl.Term.getch", side_effect=[None, "q"]) as getch:
        dash.run()
    assert getch.call_count == 2
    out = capsys.readouterr().out
    assert out.endswith(conduitctl.Term.SHOW_CURSOR + conduitctl.Term.MAIN_SCREEN)
    assert "OFFLINE" in out


def test_dashboard_run_exits_on_interrupt():
    with mock.patch("conduitctl.psutil.cpu_percent"):
        dash = conduitctl.Dashboard(interval=0)
    with mock.patch("conduitctl.collect_snapshot", return_value=DashboardSnapshot(running=False)), \
         mock.patch("conduitctl.Term.getch", side_effect=KeyboardInterrupt):
        dash.run()
