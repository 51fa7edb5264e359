"""Shared TUI components for ralph commands."""

from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Container
from textual.screen import ModalScreen
from textual.widgets import Static


class ConfirmModal(ModalScreen[bool]):
    """Yes/no confirmation for a destructive action on one item.

    The subject (e.g. an epic title) comes from generated text and is
    shown without markup.
    """

    CSS = """
    ConfirmModal {
        align: center middle;
    }

    #confirm-dialog {
        width: 60;
        height: auto;
        padding: 1 2;
        background: $surface;
        border: solid $warning;
    }

    #confirm-question {
        text-style: bold;
    }

    #confirm-subject {
        color: $text-muted;
        margin-bottom: 1;
    }

    #confirm-hint {
        color: $text-muted;
    }
    """

    BINDINGS = [
        Binding("y", "confirm", "Yes"),
        Binding("n", "cancel", "No"),
        Binding("escape", "cancel", "Cancel"),
    ]

    def __init__(self, question: str, subject: str = "") -> None:
        super().__init__()
        self.question = question
        self.subject = subject

    def compose(self) -> ComposeResult:
        yield Container(
            Static(self.question, id="confirm-question", markup=False),
            Static(self.subject, id="confirm-subject", markup=False),
            Static("[y]es / [n]o", id="confirm-hint", markup=False),
            id="confirm-dialog",
        )

    def action_confirm(self) -> None:
        self.dismiss(True)

    def action_cancel(self) -> None:
        self.dismiss(False)


class DraftPromptModal(ModalScreen[bool]):
    """Resume-or-discard choice for a saved draft. Dismisses True to resume."""

    CSS = """
    DraftPromptModal {
        align: center middle;
    }

    #draft-dialog {
        width: 60;
        height: auto;
        padding: 1 2;
        background: $surface;
        border: thick $primary;
    }

    #draft-message {
        margin-bottom: 1;
    }

    #draft-hint {
        color: $text-muted;
    }
    """

    BINDINGS = [
        Binding("r", "resume", "Resume Draft"),
        Binding("enter", "resume", "Resume Draft", show=False),
        Binding("f", "fresh", "Start Fresh"),
    ]

    def compose(self) -> ComposeResult:
        yield Container(
            Static("A draft epic was found.", id="draft-message"),
            Static("[r] Resume Draft / [f] Start Fresh", id="draft-hint", markup=False),
            id="draft-dialog",
        )

    def action_resume(self) -> None:
        self.dismiss(True)

    def action_fresh(self) -> None:
        self.dismiss(False)
