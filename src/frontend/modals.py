"""Modal dialogs for the Textual dashboard."""

from __future__ import annotations

from textual.app import ComposeResult
from textual.containers import Container, Horizontal
from textual.screen import ModalScreen
from textual.widgets import Button, Input, Static


class ChannelPairScreen(ModalScreen[dict[str, str] | None]):
    """Modal form asking for a source/target pair to check."""

    def __init__(self, source: str = "", target: str = "") -> None:
        super().__init__()
        self._source = source
        self._target = target

    def compose(self) -> ComposeResult:
        yield Container(
            Static("Test channel pair", classes="modal-title"),
            Static("", id="pair-error", classes="modal-error"),
            Static("source", classes="form-label"),
            Input(value=self._source, placeholder="chat_id:-100123", id="pair-source"),
            Static("target", classes="form-label"),
            Input(value=self._target, placeholder="chat_id:-100456", id="pair-target"),
            Horizontal(
                Button("Check", id="pair-confirm", variant="success"),
                Button("Cancel", id="pair-cancel"),
                classes="modal-actions",
            ),
            classes="modal-dialog modal-dialog--form",
        )

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "pair-cancel":
            self.dismiss(None)
            return
        if event.button.id != "pair-confirm":
            return
        source = self.query_one("#pair-source", Input).value.strip()
        target = self.query_one("#pair-target", Input).value.strip()
        if not source or not target:
            self.query_one("#pair-error", Static).update("both channels are required")
            return
        self.dismiss({"source": source, "target": target})
