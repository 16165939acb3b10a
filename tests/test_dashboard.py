"""Tests for the TUI dashboard."""

import json
import sys
from pathlib import Path

import pytest
from textual.widgets import DataTable

from farm import dashboard
from farm.config import Config, Defaults
from farm.dashboard import Dashboard, StatusBar, farm_argv


def printing_farm(records: list[dict], stderr: str = "") -> list[str]:
    """Stand-in for headless farm that prints the given result lines."""
    script = (
        "import sys\n"
        f"sys.stderr.write({stderr!r})\n"
        f"for line in {[json.dumps(r) for r in records]!r}:\n"
        "    print(line, flush=True)\n"
    )
    return [sys.executable, "-c", script]


def record(host: str, exit_code: int = 0) -> dict:
    return {"host": host, "mesg": f"{host} says hi\n", "exit": exit_code, "start": 1.0, "end": 2.5}


class TestFarmArgv:
    def test_forwards_settings(self, tmp_path: Path) -> None:
        config = Config(
            hosts=["web1", "web2"],
            max_jobs=4,
            tick=0.5,
            transport="asyncssh",
            defaults=Defaults(user="ops", port=2222, ssh_key=Path("/keys/id"), connect_timeout=3),
            source_path=tmp_path / "farm.yaml",
        )
        argv = farm_argv(config, "uptime; df -h")

        assert argv[:3] == [sys.executable, "-m", "farm"]
        assert "--no-logs" in argv
        assert argv[argv.index("-H") + 1] == "web1,web2"
        assert argv[argv.index("-j") + 1] == "4"
        assert argv[argv.index("--tick") + 1] == "0.5"
        assert argv[argv.index("--transport") + 1] == "asyncssh"
        assert argv[argv.index("--connect-timeout") + 1] == "3"
        assert argv[argv.index("-c") + 1] == str(tmp_path / "farm.yaml")
        assert argv[argv.index("--user") + 1] == "ops"
        assert argv[argv.index("--port") + 1] == "2222"
        assert argv[argv.index("--key") + 1] == "/keys/id"
        assert argv[-2:] == ["--", "uptime; df -h"]

    def test_minimal(self) -> None:
        argv = farm_argv(Config(hosts=["web1"]), "true")
        assert "-c" not in argv
        assert "--user" not in argv
        assert argv[-2:] == ["--", "true"]


@pytest.mark.asyncio
async def test_dashboard_shows_results(monkeypatch: pytest.MonkeyPatch) -> None:
    records = [record("web1"), record("down", 255), record("web1")]
    monkeypatch.setattr(dashboard, "farm_argv", lambda config, command: printing_farm(records, "warning\n"))
    config = Config(hosts=["web1", "down", "web1"], max_jobs=1, log_dir=None)
    app = Dashboard(config, "uptime")

    async with app.run_test() as pilot:
        await app.workers.wait_for_complete()
        await pilot.pause()

        table = app.query_one("#hosts", DataTable)
        assert table.row_count == 3
        assert "done" in table.get_cell("job-0", "status")
        assert "failed" in table.get_cell("job-1", "status")
        assert "done" in table.get_cell("job-2", "status")
        assert table.get_cell("job-1", "exit") == "255"
        assert table.get_cell("job-0", "duration") == "1.5s"

        status_bar = app.query_one("#status-bar", StatusBar)
        assert status_bar.completed == 3
        assert status_bar.total == 3
        assert status_bar.running is False

    assert [r.host for r in app.records] == ["web1", "down", "web1"]
    assert app.returncode == 0


@pytest.mark.asyncio
async def test_dashboard_marks_first_slots_running(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(dashboard, "farm_argv", lambda config, command: printing_farm([]))
    config = Config(hosts=["h1", "h2", "h3"], max_jobs=2, log_dir=None)
    app = Dashboard(config, "uptime")

    async with app.run_test() as pilot:
        await app.workers.wait_for_complete()
        await pilot.pause()

        table = app.query_one("#hosts", DataTable)
        assert "running" in table.get_cell("job-0", "status")
        assert "running" in table.get_cell("job-1", "status")
        assert "pending" in table.get_cell("job-2", "status")
    assert app.records == []
