"""
ralph create - Epic creation wizard.

Interactive TUI over EpicWizard. The screen only renders wizard state and
forwards keys; all step logic lives in ralph.wizard.
"""

import logging
from pathlib import Path
from typing import Optional

from rich.markup import escape
from textual import on
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container, VerticalScroll
from textual.widgets import Footer, Header, Input, OptionList, Static, TextArea
from textual.widgets.option_list import Option

from ralph.agents.claude import ClaudeAgent
from ralph.db.drafts import EpicDraftRepository
from ralph.db.epics import EpicRepository
from ralph.db.session import StorageError, open_database
from ralph.lib.config import RalphConfig
from ralph.lib.specparse import extract_title_from_spec
from ralph.lib.tui import ConfirmModal, DraftPromptModal
from ralph.wizard.drafts import DraftCheck, DraftController
from ralph.wizard.engine import EpicWizard
from ralph.wizard.fsm import StepType

logger = logging.getLogger(__name__)

# Lines of streamed spec shown while generating
STREAM_TAIL_LINES = 20
SPINNER = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"
SPINNER_INTERVAL_SECONDS = 0.1

STEP_TITLES = {
    StepType.DESCRIPTION: "Describe the epic",
    StepType.GENERATING: "Generating",
    StepType.QUESTIONS: "Open questions",
    StepType.PATCHING: "Updating specification",
    StepType.REVIEW: "Review",
    StepType.FEEDBACK: "Feedback",
    StepType.SAVING: "Saving",
    StepType.SUCCESS: "Saved",
    StepType.ERROR: "Error",
}


def _format_status(wizard: EpicWizard, frame: int) -> str:
    """Status line for the generating and patching steps."""
    status = wizard.status
    if status.is_error:
        lines = [f"[red]✗ {escape(status.message)}[/red]"]
        for detail in status.details or ():
            lines.append(f"  [dim]{escape(detail)}[/dim]")
        return "\n".join(lines)
    if status.is_complete:
        return f"[green]✓ Done[/green] [dim]({status.token_count} tokens)[/dim]"
    spinner = SPINNER[frame % len(SPINNER)]
    return f"[cyan]{spinner}[/cyan] {escape(status.current_activity)} [dim]({status.token_count} tokens)[/dim]"


def _tail(text: str, lines: int = STREAM_TAIL_LINES) -> str:
    return "\n".join(text.splitlines()[-lines:])


class WizardApp(App):
    """Epic creation wizard TUI."""

    CSS = """
    #main-container {
        layout: vertical;
        padding: 1;
    }

    #step-header {
        height: auto;
        margin-bottom: 1;
    }

    #body-scroll {
        height: 1fr;
        border: solid blue;
        padding: 0 1;
    }

    #text-area {
        height: 1fr;
    }

    #custom-input {
        margin-top: 1;
    }

    #options {
        height: auto;
        max-height: 12;
        margin-top: 1;
    }

    #action-bar {
        dock: bottom;
        height: 1;
        background: $surface;
        padding: 0 1;
    }
    """

    BINDINGS = [
        Binding("ctrl+s", "submit", "Submit", show=False),
        Binding("escape", "back", "Back", show=False),
        Binding("r", "retry", "Retry", show=False),
        Binding("s", "save", "Save", show=False),
        Binding("f", "feedback", "Feedback", show=False),
        Binding("e", "edit", "Edit", show=False),
        Binding("d", "discard", "Discard", show=False),
        Binding("n", "new", "New", show=False),
        Binding("q", "quit", "Quit"),
    ]

    def __init__(self, wizard: EpicWizard, drafts: DraftController) -> None:
        super().__init__()
        self.wizard = wizard
        self.drafts = drafts
        self.drafts.on_error = self._on_draft_error
        self._rendered_step: Optional[StepType] = None
        self._rendered_question: Optional[tuple[int, bool]] = None
        self._frame = 0

    def compose(self) -> ComposeResult:
        yield Header()
        yield Container(
            Static(id="step-header"),
            VerticalScroll(Static(id="body"), id="body-scroll"),
            TextArea(id="text-area"),
            OptionList(id="options"),
            Input(placeholder="Your answer...", id="custom-input"),
            id="main-container",
        )
        yield Static(id="action-bar")
        yield Footer()

    def on_mount(self) -> None:
        self.title = "ralph: new epic"
        self.wizard.subscribe(lambda _wizard: self.refresh_view())
        self.drafts.attach()
        self.set_interval(SPINNER_INTERVAL_SECONDS, self._tick)

        if self.drafts.check_exists():
            self.push_screen(DraftPromptModal(), self._on_draft_choice)
        self.refresh_view()

    def _on_draft_choice(self, resume: bool) -> None:
        try:
            if resume:
                self.drafts.load()
                self.notify("Draft restored", severity="information")
            else:
                self.drafts.clear_and_reset()
        except StorageError as e:
            self.drafts.check_state = DraftCheck.EMPTY
            self.notify(f"Database error: {e}", severity="error")
        # Restored text must be reloaded into the editor widgets
        self._rendered_step = None
        self.refresh_view()

    def _on_draft_error(self, error: Exception) -> None:
        self.notify(f"Draft not saved: {error}", severity="error")

    def _tick(self) -> None:
        if self.wizard.status.is_generating:
            self._frame += 1
            self.refresh_view()

    # --- Rendering -----------------------------------------------------------

    def refresh_view(self) -> None:
        wizard = self.wizard
        step = wizard.step.type
        entering = step != self._rendered_step

        header = self.query_one("#step-header", Static)
        body = self.query_one("#body", Static)
        text_area = self.query_one("#text-area", TextArea)
        options = self.query_one("#options", OptionList)
        custom_input = self.query_one("#custom-input", Input)

        header.update(f"[bold]{STEP_TITLES[step]}[/bold]")
        self.sub_title = step.value

        text_area.display = step in (StepType.DESCRIPTION, StepType.FEEDBACK)
        options.display = step == StepType.QUESTIONS and not wizard.custom_input_mode
        custom_input.display = step == StepType.QUESTIONS and wizard.custom_input_mode
        self.query_one("#body-scroll").display = step != StepType.DESCRIPTION

        if step == StepType.DESCRIPTION:
            if entering:
                text_area.load_text(wizard.description)
                text_area.focus()
        elif step == StepType.FEEDBACK:
            if entering:
                text_area.load_text(wizard.feedback)
                text_area.focus()
            body.update(f"[dim]{escape(_tail(wizard.spec_content))}[/dim]")
        elif step in (StepType.GENERATING, StepType.PATCHING):
            status = _format_status(wizard, self._frame)
            preview = _tail(wizard.spec_content) if step == StepType.GENERATING else ""
            body.update(status + ("\n\n" + escape(preview) if preview else ""))
        elif step == StepType.QUESTIONS:
            self._render_question(body, options, custom_input)
        elif step == StepType.REVIEW:
            body.update(self._review_markup())
        elif step == StepType.SAVING:
            body.update("[cyan]Saving epic...[/cyan]")
        elif step == StepType.SUCCESS:
            body.update(f"[green]✓ Epic #{wizard.step.epic_id} saved[/green]")
        elif step == StepType.ERROR:
            body.update(f"[red]✗ {escape(wizard.step.message or 'Unknown error')}[/red]")

        if step != StepType.QUESTIONS:
            self._rendered_question = None
        self._rendered_step = step
        self.query_one("#action-bar", Static).update(escape(self._action_bar()))

    def _review_markup(self) -> str:
        parts = []
        if self.wizard.error_message:
            parts.append(f"[red]{escape(self.wizard.error_message)}[/red]\n")
        parts.append(escape(self.wizard.spec_content))
        return "\n".join(parts)

    def _render_question(self, body: Static, options: OptionList, custom_input: Input) -> None:
        wizard = self.wizard
        question = wizard.current_question
        if question is None:
            body.update("[dim]No questions[/dim]")
            return

        total = len(wizard.open_questions)
        lines = [
            f"[bold]Question {wizard.current_question_index + 1} of {total}[/bold]",
            "",
            escape(question.text),
            "",
            f"[dim]{escape(question.context)}[/dim]",
        ]
        if wizard.status.is_error:
            lines += ["", _format_status(wizard, self._frame)]
        body.update("\n".join(lines))

        key = (wizard.current_question_index, wizard.custom_input_mode)
        if key == self._rendered_question:
            return
        self._rendered_question = key

        if wizard.custom_input_mode:
            custom_input.value = ""
            custom_input.focus()
            return

        options.clear_options()
        for opt in question.options:
            label = f"{opt.label} (recommended)" if opt.recommended else opt.label
            # Option text comes from the agent; brackets are literal
            options.add_option(Option(f"{escape(label)}\n  {escape(opt.description)}", id=opt.id))
        options.highlighted = 0
        options.focus()

    def _action_bar(self) -> str:
        wizard = self.wizard
        step = wizard.step.type
        if step == StepType.DESCRIPTION:
            actions = ["ctrl+s submit", "esc quit"]
        elif step == StepType.GENERATING:
            actions = ["[r]etry", "esc back"] if wizard.status.is_error else ["esc cancel"]
        elif step == StepType.PATCHING:
            actions = ["esc cancel"]
        elif step == StepType.QUESTIONS:
            if wizard.custom_input_mode:
                actions = ["enter submit", "esc options"]
            elif wizard.current_question_index == 0:
                actions = ["enter select", "esc skip questions"]
            else:
                actions = ["enter select", "esc previous"]
        elif step == StepType.REVIEW:
            actions = ["[s]ave", "[f]eedback", "[e]dit", "[d]iscard", "[q]uit"]
        elif step == StepType.FEEDBACK:
            actions = ["ctrl+s submit", "esc cancel"]
        elif step == StepType.SUCCESS:
            actions = ["[n]ew epic", "[q]uit"]
        elif step == StepType.ERROR:
            actions = ["esc back to review"]
        else:
            actions = []
        return " | ".join(actions)

    # --- Input events --------------------------------------------------------

    @on(TextArea.Changed, "#text-area")
    def on_text_changed(self, event: TextArea.Changed) -> None:
        text = event.text_area.text
        step = self.wizard.step.type
        if step == StepType.DESCRIPTION and text != self.wizard.description:
            self.wizard.set_description(text)
        elif step == StepType.FEEDBACK and text != self.wizard.feedback:
            self.wizard.set_feedback(text)

    @on(OptionList.OptionSelected, "#options")
    def on_option_selected(self, event: OptionList.OptionSelected) -> None:
        if self.wizard.step.type == StepType.QUESTIONS and event.option.id:
            self.wizard.select_option(event.option.id)

    @on(Input.Submitted, "#custom-input")
    def on_custom_submitted(self, event: Input.Submitted) -> None:
        if not self.wizard.submit_custom(event.value):
            self.notify("Enter an answer or press Escape", severity="warning")

    # --- Actions -------------------------------------------------------------

    def action_submit(self) -> None:
        step = self.wizard.step.type
        if step == StepType.DESCRIPTION:
            if not self.wizard.submit_description():
                self.notify("Describe what you want to build first", severity="warning")
        elif step == StepType.FEEDBACK:
            if not self.wizard.submit_feedback():
                self.notify("Feedback is empty", severity="warning")

    def action_back(self) -> None:
        step = self.wizard.step.type
        if step in (StepType.GENERATING, StepType.PATCHING):
            self.wizard.cancel()
        elif step == StepType.QUESTIONS:
            self.wizard.cancel_question()
        elif step == StepType.FEEDBACK:
            self.wizard.cancel_feedback()
        elif step == StepType.ERROR:
            self.wizard.recover()
        elif step == StepType.DESCRIPTION:
            self.action_quit()

    def action_retry(self) -> None:
        if self.wizard.step.type == StepType.GENERATING and not self.wizard.retry():
            self.notify("Nothing to retry", severity="warning")

    def _in_review(self) -> bool:
        return self.wizard.step.type == StepType.REVIEW

    def action_save(self) -> None:
        if not self._in_review():
            return
        epic_id = self.wizard.save_epic()
        if epic_id is not None:
            self.notify(f"Epic #{epic_id} saved", severity="information")

    def action_feedback(self) -> None:
        if self._in_review():
            self.wizard.open_feedback()

    def action_edit(self) -> None:
        if not self._in_review():
            return
        if self.wizard.edit_in_editor(suspend=self.suspend()):
            self.notify("Specification updated", severity="information")
        self.refresh()

    def action_discard(self) -> None:
        if not self._in_review():
            return

        def handle_confirm(confirmed: bool) -> None:
            if confirmed:
                self.wizard.discard()
                self.notify("Draft discarded", severity="warning")

        title = extract_title_from_spec(self.wizard.spec_content)
        self.push_screen(ConfirmModal("Discard this specification?", title), handle_confirm)

    def action_new(self) -> None:
        if self.wizard.step.type == StepType.SUCCESS:
            self.wizard.reset()

    def action_quit(self) -> None:
        """Save the draft and leave."""
        try:
            self.drafts.save_immediate()
        except StorageError as e:
            logger.error(f"Draft not saved on exit: {e}")
        self.drafts.detach()
        if self.wizard.is_running:
            self.wizard.cancel()
        self.exit()


def cmd_create(args, config: RalphConfig) -> int:
    """Run the epic creation wizard."""
    db = open_database(config.db_url, disable_wal=config.disable_wal)
    try:
        wizard = EpicWizard(
            agent=ClaudeAgent(
                command=config.agent.command,
                permission_mode=config.agent.permission_mode,
            ),
            epics=EpicRepository(db),
            drafts=EpicDraftRepository(db),
            agent_config=config.agent,
            cwd=Path.cwd(),
        )
        drafts = DraftController(wizard, wizard.drafts, debounce_ms=config.debounce_ms)
        app = WizardApp(wizard, drafts)
        app.run()
    finally:
        db.dispose()

    if wizard.saved_epic_id is not None:
        print(f"Saved epic #{wizard.saved_epic_id}")
    return 0
