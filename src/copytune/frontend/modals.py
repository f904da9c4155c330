"""Modal dialogs for the review panel."""

from __future__ import annotations

from textual.app import ComposeResult
from textual.containers import Container, Horizontal
from textual.screen import ModalScreen
from textual.widgets import Button, Input, Static


class UnsavedDocumentScreen(ModalScreen[str]):
    """Ask what to do with applied edits that are not written to disk yet."""

    def __init__(self, path: str | None, applied: int) -> None:
        super().__init__()
        self.heading = f"{applied} applied rewrites not saved"
        self.question = f"Write them to {path or 'the source document'}?"

    def compose(self) -> ComposeResult:
        yield Container(
            Static(self.heading, classes="modal-title"),
            Static(self.question, classes="modal-body"),
            Horizontal(
                Button("Save and quit", id="document-save", variant="success"),
                Button("Quit without saving", id="document-discard", variant="error"),
                Button("Keep reviewing", id="document-keep"),
                classes="modal-actions",
            ),
            classes="modal-dialog",
        )

    def on_button_pressed(self, event: Button.Pressed) -> None:
        choices = {"document-save": "save", "document-discard": "discard"}
        self.dismiss(choices.get(event.button.id or "", "keep"))


class RefineScreen(ModalScreen[str | None]):
    """Ask for a follow-up instruction for the selected rewrite."""

    def __init__(self, text: str) -> None:
        super().__init__()
        self._text = text

    def compose(self) -> ComposeResult:
        yield Container(
            Static("Refine rewrite", classes="modal-title"),
            Static(self._text, classes="modal-body"),
            Input(placeholder="例如：更简短一些", id="refine-message"),
            Horizontal(
                Button("Send", id="refine-send", variant="primary"),
                Button("Cancel", id="refine-cancel"),
                classes="modal-actions",
            ),
            classes="modal-dialog",
        )

    def on_input_submitted(self, event: Input.Submitted) -> None:
        self._submit(event.value)

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "refine-send":
            self._submit(self.query_one("#refine-message", Input).value)
        else:
            self.dismiss(None)

    def _submit(self, value: str) -> None:
        message = value.strip()
        self.dismiss(message or None)
