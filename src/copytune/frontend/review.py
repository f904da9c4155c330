"""Textual review panel: scan, rewrite, edit and apply text in one place."""

from __future__ import annotations

from typing import Any, Optional

from rich.text import Text
from textual import work
from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal, Vertical
from textual.widgets import Button, DataTable, Footer, Static, TextArea

from copytune import __version__
from copytune.adapters.export_formatting import export_filename, format_export
from copytune.adapters.json_document import JsonDocumentHost
from copytune.core.classifier import category_label, category_tips
from copytune.core.errors import CopytuneError
from copytune.core.models import TextItem
from copytune.core.session import OptimizationSession

from .modals import RefineScreen, UnsavedDocumentScreen
from .state import ReviewState

ACCENT = "#18A0FB"


class ReviewApp(App):
    """Review panel over one JSON design document."""

    BINDINGS = [
        ("o", "optimize", "Optimize"),
        ("a", "optimize_all", "Optimize all"),
        ("p", "apply", "Apply"),
        ("x", "apply_all", "Apply all"),
        ("c", "refine", "Refine"),
        ("r", "use_reference", "Reference"),
        ("i", "ignore", "Ignore"),
        ("e", "export", "Export"),
        ("ctrl+s", "save_document", "Save"),
        ("q", "request_quit", "Quit"),
    ]

    CSS = """
    Screen {
        background: #14181c;
        color: #e8eef5;
    }

    #header {
        height: 4;
        padding: 0 2;
        border-bottom: solid #2a3a46;
    }

    #status.status-error {
        color: #ff6b6b;
    }

    #body {
        height: 1fr;
    }

    #items {
        width: 3fr;
    }

    #detail-pane {
        width: 2fr;
        padding: 0 1;
    }

    #edit {
        height: 8;
    }

    .subtle {
        color: #c6d2dd;
    }

    .modal-dialog {
        width: 60;
        height: auto;
        padding: 1 2;
        border: round #2a3a46;
        background: #1c2228;
    }

    .modal-title {
        text-style: bold;
    }
    """

    def __init__(self, host: JsonDocumentHost, session: OptimizationSession, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._host = host
        self._session = session
        self._selected_id: Optional[str] = None
        self.review_state = ReviewState()

    def compose(self) -> ComposeResult:
        with Container(id="header"):
            yield Static(self._title_text(), id="title")
            yield Static("", id="status", classes="subtle")
        with Horizontal(id="body"):
            yield DataTable(id="items", cursor_type="row")
            with Vertical(id="detail-pane"):
                yield Static("", id="detail")
                yield Static("rewrite", classes="subtle")
                yield TextArea(id="edit")
                yield Button("Keep edit", id="keep-edit", variant="primary")
        yield Footer()

    def on_mount(self) -> None:
        table = self.query_one("#items", DataTable)
        table.add_column("category", key="category", width=10)
        table.add_column("context", key="context", width=24)
        table.add_column("text", key="text", width=30)
        table.add_column("rewrite", key="optimized", width=30)
        table.add_column("state", key="state", width=8)
        table.zebra_stripes = True
        self.scan_document()

    # Workers

    @work(exclusive=True)
    async def scan_document(self) -> None:
        self._set_status("scanning...")
        try:
            items = await self._session.scan()
        except CopytuneError as exc:
            self._set_error(str(exc))
            return
        self._reload_table()
        self._set_status(f"{len(items)} texts")

    @work(exclusive=True)
    async def optimize_item(self, item_id: str) -> None:
        self._set_status("optimizing...")
        try:
            await self._session.optimize(item_id)
        except CopytuneError as exc:
            self._set_error(str(exc))
            return
        self._reload_table()
        self._set_status("done")

    @work(exclusive=True)
    async def optimize_everything(self) -> None:
        def on_progress(done: int, total: int) -> None:
            self._set_status(f"optimizing {done}/{total}")

        try:
            report = await self._session.optimize_all(on_progress=on_progress)
        except CopytuneError as exc:
            self._set_error(str(exc))
            return
        self._reload_table()
        if report.failures:
            self._set_error(f"{len(report.failures)} of {report.total} failed")
        else:
            self._set_status(f"optimized {report.total} texts")

    @work(exclusive=True)
    async def apply_item(self, item_id: str) -> None:
        try:
            applied = await self._session.apply(item_id)
        except CopytuneError as exc:
            self._set_error(str(exc))
            return
        self._reload_table()
        if applied:
            self._set_status("applied")
        else:
            self._set_error("the document rejected this edit")

    @work(exclusive=True)
    async def apply_everything(self) -> None:
        count = await self._session.apply_all()
        self._reload_table()
        self._set_status(f"applied {count} rewrites")

    @work(exclusive=True)
    async def refine_item(self, item_id: str, message: str) -> None:
        self._set_status("refining...")
        try:
            await self._session.refine(item_id, message)
        except CopytuneError as exc:
            self._set_error(str(exc))
            return
        self._reload_table()
        self._set_status("refined")

    @work(exclusive=True)
    async def store_reference(self, item_id: str) -> None:
        try:
            example = await self._session.use_as_reference(item_id)
        except CopytuneError as exc:
            self._set_error(str(exc))
            return
        self._set_status(f"reference set for {category_label(example.category)}")

    # Actions

    def action_optimize(self) -> None:
        if self._selected_id:
            self.optimize_item(self._selected_id)

    def action_optimize_all(self) -> None:
        self.optimize_everything()

    def action_apply(self) -> None:
        if self._selected_id:
            self.apply_item(self._selected_id)

    def action_apply_all(self) -> None:
        self.apply_everything()

    def action_refine(self) -> None:
        item = self._selected_item()
        if item is None:
            return

        def handle(message: str | None) -> None:
            if message:
                self.refine_item(item.id, message)

        self.push_screen(RefineScreen(item.optimized or item.text), handle)

    def action_use_reference(self) -> None:
        if self._selected_id:
            self.store_reference(self._selected_id)

    def action_ignore(self) -> None:
        if self._selected_id:
            self._session.ignore(self._selected_id)
            self._selected_id = None
            self._reload_table()

    def action_export(self) -> None:
        path = export_filename(self._host.project_name, "markdown")
        try:
            with open(path, "w", encoding="utf-8") as handle:
                handle.write(format_export(self._session.items, "markdown", self._host.project_name))
        except OSError as exc:
            self._set_error(f"export failed: {exc.strerror or exc}")
            return
        self._set_status(f"exported to {path}")

    def action_save_document(self) -> None:
        self._save_document()

    def action_request_quit(self) -> None:
        if self._host.dirty:
            applied = sum(1 for item in self._session.items if item.applied)
            self.push_screen(UnsavedDocumentScreen(self._host.path, applied), self._handle_exit_choice)
        else:
            self.exit()

    def _handle_exit_choice(self, choice: str | None) -> None:
        if choice == "save":
            if self._save_document():
                self.exit()
        elif choice == "discard":
            self.exit()

    def _save_document(self) -> bool:
        try:
            self._host.save()
        except (OSError, ValueError) as exc:
            self._set_error(f"save failed: {exc}")
            return False
        self._set_status("document saved")
        return True

    # Events

    def on_data_table_row_highlighted(self, event: DataTable.RowHighlighted) -> None:
        self._selected_id = event.row_key.value if event.row_key else None
        self._show_detail()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "keep-edit" and self._selected_id:
            text = self.query_one("#edit", TextArea).text.strip()
            if text:
                self._session.edit(self._selected_id, text)
                self._reload_table()

    # Rendering

    def _selected_item(self) -> Optional[TextItem]:
        if self._selected_id is None:
            return None
        try:
            return self._session.get(self._selected_id)
        except KeyError:
            return None

    def _reload_table(self) -> None:
        table = self.query_one("#items", DataTable)
        table.clear()
        for item in self._session.items:
            table.add_row(
                category_label(item.category),
                item.context,
                item.text,
                item.optimized or "-",
                "applied" if item.applied else "",
                key=item.id,
            )
        self._show_detail()

    def _show_detail(self) -> None:
        detail = self.query_one("#detail", Static)
        editor = self.query_one("#edit", TextArea)
        item = self._selected_item()
        if item is None:
            detail.update("")
            editor.text = ""
            return
        tips = "\n".join(f"- {tip}" for tip in category_tips(item.category))
        detail.update(
            Text.assemble(
                (f"{item.name}\n", "bold"),
                (f"{item.context} · {category_label(item.category)}\n\n", "dim"),
                f"{item.text}\n\n",
                (tips, "dim"),
            )
        )
        editor.text = item.optimized or ""

    def _set_status(self, message: str) -> None:
        self.review_state.message = message
        self.review_state.error = None
        self._refresh_status()

    def _set_error(self, message: str) -> None:
        self.review_state.error = message
        self._refresh_status()

    def _refresh_status(self) -> None:
        status = self.query_one("#status", Static)
        status.remove_class("status-error")
        if self.review_state.error:
            status.update(f"error: {self.review_state.error}")
            status.add_class("status-error")
        else:
            status.update(self.review_state.message)

    def _title_text(self) -> Text:
        return Text.assemble(
            ("COPY", ACCENT),
            (f"TUNE > {self._host.project_name}", "bold"),
            (f"  v{__version__}", "dim"),
        )
