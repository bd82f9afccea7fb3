"""TUI Dashboard for sshtail."""

from __future__ import annotations

import signal
from typing import MutableMapping

from textual.app import App, ComposeResult
from textual.containers import Horizontal
from textual.message import Message
from textual.reactive import reactive
from textual.widgets import Footer, Header, RichLog, Static
from textual.worker import Worker

from .config import SpecData, TailOptions
from .errors import TailError
from .keys import Credential
from .multiplexer import ConsolidatedWriter, RunResult, prepare_log_dir
from .session import SessionState

CONNECTING = "connecting"

STATUS_STYLES = {
    CONNECTING: ("…", "yellow"),
    SessionState.CREATED.value: ("○", "dim"),
    SessionState.STARTED.value: ("●", "green"),
    SessionState.CLOSED.value: ("■", "red"),
}


class HostBadge(Static):
    """Compact status badge for a single host."""

    status: reactive[str] = reactive(CONNECTING)

    def __init__(self, host_tag: str, target: str, **kwargs) -> None:
        super().__init__(**kwargs)
        self.host_tag = host_tag
        self.target = target

    def render(self) -> str:
        icon, color = STATUS_STYLES.get(self.status, ("?", "white"))
        return f"[{color}]{icon} [bold]{self.host_tag}[/bold] {self.target}[/]"


class StatusBar(Static):
    """Bottom status bar showing how many hosts are tailing."""

    tailing: reactive[int] = reactive(0)
    total: reactive[int] = reactive(0)
    message: reactive[str] = reactive("Connecting...")

    def render(self) -> str:
        return f"Tailing: {self.tailing}/{self.total} hosts | {self.message} | Press 'q' to quit"


class StreamOutput(Message):
    """Message carrying a chunk of the merged stream."""

    def __init__(self, text: str) -> None:
        super().__init__()
        self.text = text


class HostStateChange(Message):
    """Message for a tail session state change."""

    def __init__(self, host_tag: str, state: SessionState) -> None:
        super().__init__()
        self.host_tag = host_tag
        self.state = state


class DashboardSink:
    """Destination that forwards the merged stream to the dashboard."""

    def __init__(self, app: App) -> None:
        self.app = app

    def write(self, data: bytes) -> int:
        self.app.post_message(StreamOutput(data.decode("utf-8", errors="replace")))
        return len(data)


class Dashboard(App):
    """Shows host status badges above the merged tail stream."""

    CSS = """
    #hosts {
        height: auto;
        padding: 0 1;
        background: $surface;
    }

    HostBadge {
        width: auto;
        margin-right: 3;
    }

    #stream {
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

    def __init__(
        self,
        spec: SpecData,
        credentials: MutableMapping[str, Credential],
        options: TailOptions | None = None,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.spec = spec
        self.credentials = credentials
        self.options = options or TailOptions()
        self.badges: dict[str, HostBadge] = {}
        self.writer: ConsolidatedWriter | None = None
        self.run_result: RunResult | None = None
        self.setup_error: TailError | None = None
        self._worker: Worker | None = None
        self._partial = ""

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)

        with Horizontal(id="hosts"):
            for endpoint in self.spec.hosts:
                badge = HostBadge(
                    endpoint.host_tag,
                    f"{endpoint.username}@{endpoint.target}:{endpoint.remote_file}",
                    id=f"badge-{endpoint.host_tag}",
                )
                self.badges[endpoint.host_tag] = badge
                yield badge

        yield RichLog(id="stream", highlight=False, markup=False, wrap=True, auto_scroll=True)
        yield StatusBar(id="status-bar")
        yield Footer()

    def on_mount(self) -> None:
        """Start tailing when the app mounts."""
        self.query_one("#status-bar", StatusBar).total = len(self.spec.hosts)
        # Runs on the app's own loop so close() can be awaited from key handlers
        self._worker = self.run_worker(self._run_tail(), exclusive=True)

    async def _run_tail(self) -> None:
        log_dir = None
        log_base = self.options.log_dir or self.spec.log_dir
        if log_base:
            log_dir = prepare_log_dir(log_base, self.spec.source_path)

        status_bar = self.query_one("#status-bar", StatusBar)
        try:
            try:
                self.writer = await ConsolidatedWriter.build(
                    self.spec.hosts,
                    self.credentials,
                    DashboardSink(self),
                    options=self.options,
                    log_dir=log_dir,
                    on_state=self._on_state,
                )
            finally:
                # Decrypted keys are only needed to connect
                self.credentials.clear()
            for badge in self.badges.values():
                badge.status = SessionState.CREATED.value
            status_bar.message = "Running..."
            # Textual owns SIGINT while the dashboard is up
            self.run_result = await self.writer.start(signals=(signal.SIGTERM,))
        except TailError as e:
            self.setup_error = e
            self.query_one("#stream", RichLog).write(f"ERROR: {e}")
            status_bar.message = "Failed"
            return

        status_bar.message = "Complete"
        if self.run_result.interrupted:
            self.exit()

    def _on_state(self, host_tag: str, state: SessionState) -> None:
        self.post_message(HostStateChange(host_tag, state))

    def on_stream_output(self, message: StreamOutput) -> None:
        """Write complete lines of the merged stream to the log."""
        log = self.query_one("#stream", RichLog)
        text = self._partial + message.text
        *lines, self._partial = text.split("\n")
        for line in lines:
            log.write(line)

    def on_host_state_change(self, message: HostStateChange) -> None:
        if message.host_tag in self.badges:
            self.badges[message.host_tag].status = message.state.value

        status_bar = self.query_one("#status-bar", StatusBar)
        status_bar.tailing = sum(
            1 for badge in self.badges.values() if badge.status == SessionState.STARTED.value
        )

    async def action_quit(self) -> None:
        """Close every session, then quit the application."""
        if self.writer is not None:
            await self.writer.close()
        elif self._worker and self._worker.is_running:
            self._worker.cancel()
        self.exit()
