"""TUI Dashboard for gsh."""

from __future__ import annotations

from dataclasses import dataclass

from textual.app import App, ComposeResult
from textual.containers import ScrollableContainer
from textual.message import Message
from textual.reactive import reactive
from textual.widgets import Footer, Header, Label, RichLog, Static
from textual.worker import Worker

from .config import Config
from .dispatcher import TIMEOUT_INDICATOR, BatchOutcome, run_batch
from .errors import GshError
from .executor import HostStatus, parse_host

STATUS_ICONS = {
    HostStatus.PENDING: ("·", "dim"),
    HostStatus.CONNECTING: ("…", "yellow"),
    HostStatus.RUNNING: ("▶", "yellow"),
    HostStatus.SUCCESS: ("✔", "green"),
    HostStatus.FAILED: ("✘", "red"),
}


class HostPanel(Static):
    """A panel displaying output for a single host."""

    status: reactive[HostStatus] = reactive(HostStatus.PENDING)

    def __init__(self, host: str, user: str, address: str, index: int, **kwargs) -> None:
        super().__init__(**kwargs)
        self.host = host
        self.user = user
        self.address = address
        self.index = index

    def compose(self) -> ComposeResult:
        yield Label(self._get_header(), id=f"header-{self.index}")
        yield RichLog(
            id=f"log-{self.index}",
            highlight=False,
            markup=False,
            wrap=True,
            auto_scroll=True,
        )

    def _get_header(self) -> str:
        icon, color = STATUS_ICONS.get(self.status, ("?", "white"))
        return f"[{color}]{icon}[/] [{color}][bold]{self.address}[/bold][/] [dim]{self.user}[/]"

    def watch_status(self, status: HostStatus) -> None:
        """Update header when status changes."""
        if not self.is_mounted:
            return
        header = self.query_one(f"#header-{self.index}", Label)
        header.update(self._get_header())

    def append_output(self, line: str) -> None:
        """Append a line of output to this panel."""
        log = self.query_one(f"#log-{self.index}", RichLog)
        log.write(line)


class StatusBar(Static):
    """Bottom status bar showing overall progress."""

    completed: reactive[int] = reactive(0)
    errors: reactive[int] = reactive(0)
    total: reactive[int] = reactive(0)
    running: reactive[bool] = reactive(True)
    timed_out: reactive[bool] = reactive(False)

    def render(self) -> str:
        if self.timed_out:
            status = "Timed out"
        else:
            status = "Running..." if self.running else "Complete"
        return (
            f"Progress: {self.completed}/{self.total} hosts | "
            f"Errors: {self.errors} | {status} | Press 'q' to quit"
        )


@dataclass
class HostOutput(Message):
    """Message for a line printed by the collector."""
    host: str | None
    line: str


@dataclass
class HostStatusChange(Message):
    """Message for host status change."""
    host: str
    status: HostStatus


class Dashboard(App):
    """Live view of one batch."""

    CSS = """
    HostPanel {
        border: solid $primary;
        height: auto;
        min-height: 5;
        max-height: 20;
    }

    HostPanel Label {
        padding: 0 1;
        background: $surface;
    }

    HostPanel RichLog {
        height: auto;
        max-height: 16;
        padding: 0 1;
    }

    StatusBar {
        dock: bottom;
        height: 1;
        background: $surface;
        padding: 0 1;
    }

    #host-container {
        height: 1fr;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("escape", "quit", "Quit"),
    ]

    def __init__(self, config: Config, agent_path: str | None = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.config = config
        self.agent_path = agent_path
        self.panels: dict[str, HostPanel] = {}
        self.statuses: dict[str, HostStatus] = {}
        self.outcome: BatchOutcome | None = None
        self.error: str | None = None
        self.timed_out = False
        self._worker: Worker | None = None

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)

        with ScrollableContainer(id="host-container"):
            # Duplicate hosts share one panel
            for i, host in enumerate(dict.fromkeys(self.config.hosts)):
                user, address = parse_host(host, self.config.user)
                panel = HostPanel(host, user, address, i, id=f"panel-{i}")
                self.panels[host] = panel
                yield panel

        yield StatusBar(id="status-bar")
        yield Footer()

    def on_mount(self) -> None:
        """Start the batch when the app mounts."""
        status_bar = self.query_one("#status-bar", StatusBar)
        status_bar.total = len(self.config.hosts)

        # Start execution using Textual's worker system
        self._worker = self.run_worker(self._run_execution(), exclusive=True, thread=True)

    async def _run_execution(self) -> None:
        """Run the batch and keep its outcome for the exit code."""
        try:
            self.outcome = await run_batch(
                self.config,
                on_output=self._on_output,
                on_status=self._on_status,
                agent_path=self.agent_path,
            )
        except GshError as e:
            self.error = str(e)
            self.call_from_thread(self.exit)

    @property
    def failed_hosts(self) -> list[str]:
        return [host for host, status in self.statuses.items() if status is HostStatus.FAILED]

    def on_worker_state_changed(self, event: Worker.StateChanged) -> None:
        """Handle worker completion."""
        if event.worker == self._worker and event.state == event.worker.state.SUCCESS:
            status_bar = self.query_one("#status-bar", StatusBar)
            status_bar.running = False

    def _on_output(self, host: str | None, line: str) -> None:
        """Handle output from the collector - posts message to main thread."""
        self.post_message(HostOutput(host, line))

    def _on_status(self, host: str, status: HostStatus) -> None:
        """Handle status change for a host - posts message to main thread."""
        self.post_message(HostStatusChange(host, status))

    def on_host_output(self, message: HostOutput) -> None:
        """Handle HostOutput message in main thread."""
        if message.host is None and message.line == TIMEOUT_INDICATOR:
            status_bar = self.query_one("#status-bar", StatusBar)
            status_bar.timed_out = True
            self.timed_out = True
            self.notify(TIMEOUT_INDICATOR, severity="warning")
            return
        if message.host in self.panels:
            self.panels[message.host].append_output(message.line)

    def on_host_status_change(self, message: HostStatusChange) -> None:
        """Handle HostStatusChange message in main thread."""
        # Hosts abandoned at the deadline no longer count toward the batch
        if self.timed_out:
            return
        self.statuses[message.host] = message.status
        if message.host in self.panels:
            self.panels[message.host].status = message.status

        if message.status in (HostStatus.SUCCESS, HostStatus.FAILED):
            status_bar = self.query_one("#status-bar", StatusBar)
            status_bar.completed += 1
            if message.status is HostStatus.FAILED:
                status_bar.errors += 1

    async def action_quit(self) -> None:
        """Quit the application."""
        if self._worker and self._worker.is_running:
            self._worker.cancel()
        self.exit()
