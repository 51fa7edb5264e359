"""Tests for TUI components (modals and wizard screen helpers)."""

import asyncio
from unittest import mock

from rich.text import Text
from textual.widgets import OptionList

from ralph.commands.create import STEP_TITLES, WizardApp, _format_status, _tail
from ralph.db.drafts import EpicDraftState
from ralph.lib.questions import OpenQuestion, QuestionOption
from ralph.lib.tui import ConfirmModal, DraftPromptModal
from ralph.wizard.drafts import DraftController
from ralph.wizard.engine import EpicWizard
from ralph.wizard.fsm import StepType, WizardStep
from ralph.wizard.status import GenerationStatus


class TestFormatStatus:
    """_format_status() must always produce valid Rich markup."""

    def test_generating(self):
        wizard = mock.Mock(status=GenerationStatus.generating(12, "Using tool: [Read]", 0.0))
        result = _format_status(wizard, 3)
        # Will raise MarkupError if invalid
        plain = Text.from_markup(result).plain
        assert "Using tool: [Read]" in plain
        assert "12 tokens" in plain

    def test_error_with_details(self):
        wizard = mock.Mock(status=GenerationStatus.error("Generation failed", ("[bold] broke",)))
        plain = Text.from_markup(_format_status(wizard, 0)).plain
        assert "Generation failed" in plain
        assert "[bold] broke" in plain

    def test_complete(self):
        wizard = mock.Mock(status=GenerationStatus.complete("spec", 40))
        assert "40 tokens" in Text.from_markup(_format_status(wizard, 0)).plain


class TestTail:
    def test_keeps_last_lines(self):
        text = "\n".join(str(i) for i in range(30))
        assert _tail(text, 3) == "27\n28\n29"

    def test_short_text(self):
        assert _tail("one line") == "one line"


class TestWizardApp:
    """Static checks on the wizard screen."""

    def test_every_step_has_title(self):
        assert set(STEP_TITLES) == set(StepType)

    def test_bindings(self):
        keys = [b.key for b in WizardApp.BINDINGS]
        for key in ("ctrl+s", "escape", "r", "s", "f", "e", "d", "n", "q"):
            assert key in keys


class TestConfirmModal:
    """Tests for ConfirmModal."""

    def test_composes(self):
        modal = ConfirmModal("Discard this specification?", "Dark mode")
        children = list(modal.compose())
        assert len(children) == 1  # Container
        assert modal.question == "Discard this specification?"
        assert modal.subject == "Dark mode"

    def test_bindings(self):
        keys = [b.key for b in ConfirmModal.BINDINGS]
        assert keys == ["y", "n", "escape"]


class TestDraftPromptModal:
    """Tests for DraftPromptModal."""

    def test_composes(self):
        children = list(DraftPromptModal().compose())
        assert len(children) == 1

    def test_bindings(self):
        actions = {b.key: b.action for b in DraftPromptModal.BINDINGS}
        assert actions == {"r": "resume", "enter": "resume", "f": "fresh"}

    def test_css(self):
        assert "align: center middle" in DraftPromptModal.CSS
        assert "#draft-dialog" in DraftPromptModal.CSS


class TestGeneratedText:
    """Agent-written text must show literally in the running app."""

    def test_bracketed_option_text(self, epics, drafts):
        wizard = EpicWizard(mock.Mock(), epics, drafts)
        controller = DraftController(wizard, drafts, debounce_ms=60_000)
        app = WizardApp(wizard, controller)
        question = OpenQuestion(
            id="cache",
            text="Cache [policy]?",
            context="Keep [red]stale[/] data?",
            options=(
                QuestionOption("a", "[/] Use cache [b]", "Keep [red]stale[/] data", recommended=True),
                QuestionOption("custom", "Custom response", "Return List[str]"),
            ),
        )

        async def scenario():
            async with app.run_test() as pilot:
                wizard.restore(EpicDraftState(
                    wizard_step=WizardStep(StepType.QUESTIONS),
                    description="Add caching",
                    spec_content="<name>Caching</name>",
                    open_questions=[question],
                ))
                await pilot.pause()
                options = app.query_one("#options", OptionList)
                prompts = [
                    Text.from_markup(str(options.get_option_at_index(i).prompt)).plain
                    for i in range(options.option_count)
                ]
                controller.detach()
                return prompts

        prompts = asyncio.run(scenario())

        assert wizard.step.type == StepType.QUESTIONS
        assert prompts == [
            "[/] Use cache [b] (recommended)\n  Keep [red]stale[/] data",
            "Custom response\n  Return List[str]",
        ]

    def test_discard_confirm_shows_title(self, epics, drafts):
        wizard = EpicWizard(mock.Mock(), epics, drafts)
        controller = DraftController(wizard, drafts, debounce_ms=60_000)
        app = WizardApp(wizard, controller)

        async def scenario():
            async with app.run_test() as pilot:
                wizard.restore(EpicDraftState(
                    wizard_step=WizardStep(StepType.REVIEW),
                    description="Add dark mode",
                    spec_content="<name>Dark [mode]</name>",
                ))
                await pilot.pause()
                app.action_discard()
                await pilot.pause()
                modal = app.screen
                await pilot.press("n")
                await pilot.pause()
                controller.detach()
                return modal

        modal = asyncio.run(scenario())

        assert isinstance(modal, ConfirmModal)
        assert modal.question == "Discard this specification?"
        assert modal.subject == "Dark [mode]"
        assert wizard.step.type == StepType.REVIEW
