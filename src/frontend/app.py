"""Textual dashboard for the group relay.

The dashboard runs the relay as a background worker on its own event loop and
talks to it only through ``ControlSurface``.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional

from rich.table import Table
from rich.text import Text
from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal, Vertical
from textual.widgets import Footer, Static

from core.control import ControlSurface

from .constants import REFRESH_SECONDS, TELEGRAM_BLUE
from .modals import ChannelPairScreen

STAT_LABELS = (
    ("forwarded", "Text forwarded"),
    ("media_forwarded", "Media forwarded"),
    ("filtered", "Filtered"),
    ("errors", "Errors"),
    ("start_time", "Running since"),
)


class DashboardApp(App):
    """Live statistics, connection state and pairing QR for one relay."""

    BINDINGS = [
        ("ctrl+r", "reload_policy", "Reload config"),
        ("ctrl+t", "test_pair", "Test channels"),
        ("ctrl+x", "restart", "Restart"),
        ("q", "request_quit", "Quit"),
    ]

    CSS = """
    Screen {
        background: #0f1a21;
        color: #e8eef5;
    }

    #header {
        height: 4;
        padding: 0 4;
        border-bottom: solid #2a3a46;
    }

    #title {
        text-style: bold;
    }

    .subtle {
        color: #c6d2dd;
    }

    #body {
        height: 1fr;
        padding: 1 4;
    }

    #left {
        width: 1fr;
    }

    #pairing {
        width: auto;
        min-width: 30;
    }

    #status, #stats {
        margin-bottom: 1;
    }

    .status-connected {
        color: #4caf50;
    }

    .status-disconnected {
        color: #e57373;
    }

    .status-connecting {
        color: #ffb74d;
    }

    #message {
        height: 3;
        padding: 0 4;
        border-top: solid #2a3a46;
    }

    .modal-dialog {
        width: 60;
        height: auto;
        padding: 1 2;
        border: round #2a3a46;
        background: #13222c;
    }

    ChannelPairScreen {
        align: center middle;
    }

    .modal-title {
        text-style: bold;
    }

    .modal-error {
        color: #e57373;
    }

    .modal-actions {
        height: auto;
        margin-top: 1;
    }
    """

    def __init__(
        self,
        control: ControlSurface,
        runner: Optional[Callable[[], Awaitable[Any]]] = None,
        shutdown: Optional[Callable[[], Awaitable[Any]]] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.control = control
        self._runner = runner
        self._shutdown_cb = shutdown
        self.last_result: dict[str, Any] = {}

    def compose(self) -> ComposeResult:
        with Container(id="header"):
            yield Static(self._title_text(), id="title")
            yield Static("relay: starting", id="status-line", classes="subtle")
        with Horizontal(id="body"):
            with Vertical(id="left"):
                yield Static("", id="status")
                yield Static("", id="stats")
            yield Static("", id="pairing")
        yield Static("", id="message")
        yield Footer()

    def on_mount(self) -> None:
        self.refresh_panels()
        self.set_interval(REFRESH_SECONDS, self.refresh_panels)
        if self._runner is not None:
            self.run_worker(self._runner(), name="relay", exclusive=True)

    def refresh_panels(self) -> None:
        status = self.control.get_connection_status()
        state = status["state"]
        status_widget = self.query_one("#status", Static)
        status_widget.remove_class(
            "status-connected", "status-connecting", "status-disconnected"
        )
        status_widget.add_class(f"status-{state}")
        status_widget.update(
            Text.assemble(
                ("Connection: ", "bold"),
                state,
                f"  (since {status['last_transition_time']})",
            )
        )
        self.query_one("#status-line", Static).update(f"relay: {state}")
        self.query_one("#stats", Static).update(self._stats_table())

        rendered = self.control.get_rendered_pairing_challenge()
        pairing = self.query_one("#pairing", Static)
        if rendered:
            pairing.update(Text(f"Scan to link this session\n\n{rendered}"))
        elif self.control.get_pending_pairing_challenge():
            pairing.update("Pairing challenge pending")
        else:
            pairing.update("")

    def _stats_table(self) -> Table:
        stats = self.control.get_statistics()
        table = Table(title="Statistics", show_header=False, expand=False)
        table.add_column("metric", style="bold")
        table.add_column("value", justify="right")
        for key, label in STAT_LABELS:
            table.add_row(label, str(stats.get(key, "")))
        return table

    def _show_result(self, result: dict[str, Any]) -> None:
        self.last_result = result
        message = self.query_one("#message", Static)
        if "error" in result:
            message.update(Text(f"Error: {result['error']}", style="bold red"))
        else:
            message.update(Text(result.get("message") or "OK", style="green"))

    def action_reload_policy(self) -> None:
        result = self.control.reload_policy()
        if "success" in result:
            result = dict(result)
            result["message"] = (
                f"{result['message']}: {result['source']} -> {result['destination']}"
            )
        self._show_result(result)

    def action_test_pair(self) -> None:
        self.push_screen(ChannelPairScreen(), self._handle_pair_choice)

    def _handle_pair_choice(self, choice: dict[str, str] | None) -> None:
        if choice is None:
            return
        result = self.control.test_channel_pair(choice["source"], choice["target"])
        if "success" in result:
            result = {
                "message": f"Channel pair looks valid: {result['source']['id']} -> "
                f"{result['target']['id']}"
            }
        self._show_result(result)

    async def action_restart(self) -> None:
        await self.control.request_restart()
        self._show_result({"message": "Restart requested"})
        self.refresh_panels()

    async def action_request_quit(self) -> None:
        if self._shutdown_cb is not None:
            await self._shutdown_cb()
        self.exit()

    @staticmethod
    def _title_text() -> Text:
        return Text.assemble(
            ("GROUP", TELEGRAM_BLUE),
            ("RELAY > Dashboard", "bold"),
        )
