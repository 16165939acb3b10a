"""TUI Dashboard for farm.

The dashboard does not fork workers itself. It runs the headless `farm`
command as a child process, so the coordinator stays single-threaded, and
reads the JSON result lines it prints.
"""

import asyncio
import sys
from collections import defaultdict, deque
from dataclasses import dataclass

from rich.markup import escape
from textual.app import App, ComposeResult
from textual.message import Message
from textual.reactive import reactive
from textual.widgets import DataTable, Footer, Header, RichLog, Static
from textual.worker import Worker

from .config import Config
from .results import ResultRecord

PENDING = "pending"
RUNNING = "running"
DONE = "done"
FAILED = "failed"

STATUS_STYLES = {
    PENDING: "dim",
    RUNNING: "yellow",
    DONE: "green",
    FAILED: "red",
}


class StatusBar(Static):
    """Bottom status bar showing overall progress."""

    completed: reactive[int] = reactive(0)
    total: reactive[int] = reactive(0)
    running: reactive[bool] = reactive(True)

    def render(self) -> str:
        status = "Running..." if self.running else "Complete"
        return f"Progress: {self.completed}/{self.total} hosts complete | {status} | Press 'q' to quit"


@dataclass
class HostFinished(Message):
    """Message for a host whose result came back."""
    record: ResultRecord


def farm_argv(config: Config, command: str) -> list[str]:
    """Headless `farm` invocation equivalent to ``config``."""
    argv = [
        sys.executable, "-m", "farm",
        "--no-logs",
        "-H", ",".join(config.hosts),
        "-j", str(config.max_jobs),
        "--tick", str(config.tick),
        "--transport", config.transport,
        "--connect-timeout", str(config.defaults.connect_timeout),
    ]
    # The shell setting only exists in the file
    if config.source_path is not None:
        argv.extend(["-c", str(config.source_path)])
    if config.defaults.user:
        argv.extend(["--user", config.defaults.user])
    if config.defaults.port:
        argv.extend(["--port", str(config.defaults.port)])
    if config.defaults.ssh_key:
        argv.extend(["--key", str(config.defaults.ssh_key)])
    argv.extend(["--", command])
    return argv


class Dashboard(App):
    """Main TUI Dashboard application."""

    CSS = """
    DataTable {
        height: 1fr;
    }

    RichLog {
        height: 1fr;
        border: solid $primary;
        padding: 0 1;
    }

    StatusBar {
        dock: bottom;
        height: 1;
        background: $surface;
        padding: 0 1;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("escape", "quit", "Quit"),
    ]

    def __init__(self, config: Config, command: str, **kwargs) -> None:
        super().__init__(**kwargs)
        self.config = config
        self.command = command
        self.records: list[ResultRecord] = []
        self.returncode: int | None = None
        self._worker: Worker | None = None
        self._rows: deque[tuple[str, str]] = deque()  # (host, row key) not yet started
        self._pending: dict[str, deque[str]] = defaultdict(deque)
        self._running_rows: dict[str, deque[str]] = defaultdict(deque)

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        yield DataTable(id="hosts", cursor_type="row")
        yield RichLog(id="output", highlight=True, markup=True, wrap=True, auto_scroll=True)
        yield StatusBar(id="status-bar")
        yield Footer()

    def on_mount(self) -> None:
        """Start execution when the app mounts."""
        table = self.query_one("#hosts", DataTable)
        for label in ("Host", "Status", "Exit", "Duration"):
            table.add_column(label, key=label.lower())
        for index, host in enumerate(self.config.hosts):
            key = f"job-{index}"
            table.add_row(host, self._status_cell(PENDING), "", "", key=key)
            self._rows.append((host, key))
            self._pending[host].append(key)

        status_bar = self.query_one("#status-bar", StatusBar)
        status_bar.total = len(self.config.hosts)

        # Hosts are dispatched in order, one more each time a slot frees up
        for _ in range(min(self.config.max_jobs, len(self._rows))):
            self._start_next()

        self._worker = self.run_worker(self._run_farm(), exclusive=True)

    @staticmethod
    def _status_cell(status: str) -> str:
        return f"[{STATUS_STYLES[status]}]{status}[/]"

    def _start_next(self) -> None:
        if not self._rows:
            return
        host, key = self._rows.popleft()
        self._pending[host].remove(key)
        self._running_rows[host].append(key)
        table = self.query_one("#hosts", DataTable)
        table.update_cell(key, "status", self._status_cell(RUNNING), update_width=True)

    async def _run_farm(self) -> None:
        """Run headless farm and turn its output into messages."""
        process = await asyncio.create_subprocess_exec(
            *farm_argv(self.config, self.command),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

        async def read_results(stream: asyncio.StreamReader) -> None:
            while True:
                line = await stream.readline()
                if not line:
                    break
                if line.strip():
                    self.post_message(HostFinished(ResultRecord.from_json(line)))

        async def read_diagnostics(stream: asyncio.StreamReader) -> None:
            log = self.query_one("#output", RichLog)
            while True:
                line = await stream.readline()
                if not line:
                    break
                text = line.decode("utf-8", errors="replace").rstrip("\n\r")
                log.write(f"[dim]{escape(text)}[/dim]")

        await asyncio.gather(
            read_results(process.stdout),
            read_diagnostics(process.stderr),
        )
        self.returncode = await process.wait()

    def on_worker_state_changed(self, event: Worker.StateChanged) -> None:
        """Handle worker completion."""
        if event.worker == self._worker and event.state == event.worker.state.SUCCESS:
            status_bar = self.query_one("#status-bar", StatusBar)
            status_bar.running = False
            if self.returncode:
                log = self.query_one("#output", RichLog)
                log.write(f"[bold red]farm exited with status {self.returncode}[/]")

    def on_host_finished(self, message: HostFinished) -> None:
        record = message.record
        self.records.append(record)

        queue = self._running_rows[record.host] or self._pending[record.host]
        if queue:
            key = queue.popleft()
            if queue is self._pending[record.host]:
                self._rows.remove((record.host, key))
            status = DONE if record.exit == 0 and not record.error else FAILED
            table = self.query_one("#hosts", DataTable)
            table.update_cell(key, "status", self._status_cell(status), update_width=True)
            table.update_cell(key, "exit", str(record.exit), update_width=True)
            table.update_cell(key, "duration", f"{record.end - record.start:.1f}s", update_width=True)
        self._start_next()

        log = self.query_one("#output", RichLog)
        color = "green" if record.exit == 0 else "red"
        log.write(f"[bold {color}]{escape(record.host)}[/] exit {record.exit}")
        if record.error:
            log.write(f"[bold red]ERROR: {escape(record.error)}[/]")
        for line in record.mesg.splitlines():
            log.write(escape(line))

        status_bar = self.query_one("#status-bar", StatusBar)
        status_bar.completed += 1

    async def action_quit(self) -> None:
        """Quit once every job has finished; running jobs cannot be cancelled."""
        if self._worker and self._worker.is_running:
            self.notify("Waiting for running jobs to finish", severity="warning")
            return
        self.exit()
