"""
Epic creation wizard.

EpicWizard owns the whole wizard state (description, spec text, feedback,
open questions and answers, generation status) and is the only thing that
mutates it. Step changes go through WizardFSM; agent runs are consumed by
a single asyncio task owned by the wizard.

Listeners registered with subscribe() are called after every mutation.
The TUI re-renders from them and the draft controller schedules autosaves.
"""

import asyncio
import logging
import time
from contextlib import aclosing
from pathlib import Path
from typing import Callable, ContextManager, Optional, Protocol

from ralph.agents.claude import AgentClientError, AgentQueryOptions
from ralph.agents.events import AgentEvent
from ralph.db.drafts import EpicDraftRepository, EpicDraftState
from ralph.db.epics import EpicRepository
from ralph.db.session import StorageError
from ralph.lib.config import AgentConfig
from ralph.lib.editor import EditorError, open_editor
from ralph.lib.prompts import load_prompt, render_prompt
from ralph.lib.questions import (
    CUSTOM_OPTION_ID,
    OpenQuestion,
    QuestionAnswer,
    apply_patches,
    format_answers_for_prompt,
    has_open_questions,
    parse_open_questions,
    parse_patch_response,
    remove_answered_questions,
)
from ralph.lib.specparse import extract_title_from_spec
from ralph.wizard.fsm import InvalidTransition, StepType, WizardFSM, WizardStep
from ralph.wizard.status import GenerationStatus, StreamReducer

logger = logging.getLogger(__name__)

# Activity labels and failure messages per run
GENERATE_LABEL = "Generating specification..."
REGENERATE_LABEL = "Regenerating specification..."
PATCH_LABEL = "Generating patches..."
APPLYING_PATCHES = "Applying patches..."
FEEDBACK_START = "Incorporating feedback..."

GENERATION_FAILED = "Generation failed"
REGENERATION_FAILED = "Regeneration failed"
PATCHING_FAILED = "Patching failed"


class AgentRunner(Protocol):
    def run_query(self, prompt: str, options: AgentQueryOptions): ...


Listener = Callable[["EpicWizard"], None]
Editor = Callable[[str, Optional[ContextManager]], str]


class EpicWizard:
    def __init__(
        self,
        agent: AgentRunner,
        epics: EpicRepository,
        drafts: EpicDraftRepository,
        agent_config: Optional[AgentConfig] = None,
        cwd: Optional[Path] = None,
        editor: Editor = open_editor,
        clock: Callable[[], float] = time.time,
    ):
        self.agent = agent
        self.epics = epics
        self.drafts = drafts
        self.agent_config = agent_config or AgentConfig()
        self.cwd = cwd or Path.cwd()
        self.editor = editor
        self.clock = clock

        self.fsm = WizardFSM()
        self._listeners: list[Listener] = []

        # Agent run bookkeeping
        self._task: Optional[asyncio.Task] = None
        self._run_id = 0
        self._retry: Optional[Callable[[int], object]] = None

        self._reset_fields()

    def _reset_fields(self) -> None:
        self.description = ""
        self.spec_content = ""
        self.session_id: Optional[str] = None
        self.feedback = ""
        self.open_questions: list[OpenQuestion] = []
        self.question_answers: dict[str, QuestionAnswer] = {}
        self.current_question_index = 0
        self.custom_input_mode = False
        self.status = GenerationStatus.idle()
        self.error_message: Optional[str] = None
        self.saved_epic_id: Optional[int] = None

    # --- Observers ---------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener. Returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    # --- State -------------------------------------------------------------

    @property
    def step(self) -> WizardStep:
        return self.fsm.step

    @property
    def current_question(self) -> Optional[OpenQuestion]:
        if 0 <= self.current_question_index < len(self.open_questions):
            return self.open_questions[self.current_question_index]
        return None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def snapshot(self) -> EpicDraftState:
        """Serializable copy of the current state."""
        return EpicDraftState(
            wizard_step=self.step,
            description=self.description,
            spec_content=self.spec_content,
            session_id=self.session_id,
            feedback=self.feedback,
            open_questions=list(self.open_questions),
            question_answers=dict(self.question_answers),
            current_question_index=self.current_question_index,
            custom_input_mode=self.custom_input_mode,
        )

    def restore(self, state: EpicDraftState) -> None:
        """Replace the whole state with a saved draft."""
        self._stop_run()
        self._reset_fields()
        self.description = state.description
        self.spec_content = state.spec_content
        self.session_id = state.session_id
        self.feedback = state.feedback
        self.open_questions = list(state.open_questions)
        self.question_answers = dict(state.question_answers)
        self.current_question_index = state.current_question_index
        self.custom_input_mode = state.custom_input_mode
        self.fsm.restore(state.wizard_step)
        logger.info(f"[WIZARD] Restored draft at step {state.wizard_step.type.value}")
        self._notify()

    def reset_state(self) -> None:
        """Back to an empty description step, whatever the current step."""
        self._stop_run()
        self._reset_fields()
        self.fsm.restore(WizardStep.description())
        self._notify()

    # --- Text input --------------------------------------------------------

    def set_description(self, text: str) -> None:
        if self.step.type != StepType.DESCRIPTION:
            return
        self.description = text
        self._notify()

    def set_feedback(self, text: str) -> None:
        if self.step.type != StepType.FEEDBACK:
            return
        self.feedback = text
        self._notify()

    # --- Description -> generating ----------------------------------------

    def submit_description(self, text: Optional[str] = None) -> bool:
        """Start generating a spec. Returns False for an empty description.

        Raises:
            InvalidTransition: If the wizard isn't on the description step
        """
        if not self.fsm.can("submit_description"):
            raise InvalidTransition(self.fsm.state, "submit_description")
        if text is not None:
            self.description = text
        if not self.description.strip():
            return False

        self.fsm.fire("submit_description")
        self.error_message = None
        self._retry = self._generate
        self._start_run(self._generate)
        return True

    def _options(self, run: str, system_prompt: str) -> AgentQueryOptions:
        return AgentQueryOptions(
            cwd=self.cwd,
            model=self.agent_config.model,
            max_turns=self.agent_config.max_turns.get(run),
            max_budget_usd=self.agent_config.max_budget_usd,
            system_prompt_append=load_prompt(system_prompt),
        )

    async def _generate(self, run_id: int) -> None:
        prompt = render_prompt("spec", description=self.description)
        await self._run_spec(run_id, prompt, self._options("generate", "spec_system"),
                             GENERATE_LABEL, GENERATION_FAILED, ask_questions=True)

    def _make_regenerate(self, description: str, previous_spec: str, feedback: str):
        async def regenerate(run_id: int) -> None:
            prompt = render_prompt("feedback", description=description,
                                   previous_spec=previous_spec, feedback=feedback)
            await self._run_spec(run_id, prompt, self._options("feedback", "spec_system"),
                                 REGENERATE_LABEL, REGENERATION_FAILED,
                                 start_label=FEEDBACK_START, ask_questions=False)
        return regenerate

    async def _run_spec(
        self,
        run_id: int,
        prompt: str,
        options: AgentQueryOptions,
        token_label: str,
        failure_message: str,
        start_label: str = "Starting...",
        ask_questions: bool = True,
    ) -> None:
        reducer = StreamReducer(token_label, failure_message, start_label=start_label, clock=self.clock)
        self.spec_content = ""
        self.status = reducer.status
        self._notify()

        def on_event(event: AgentEvent) -> None:
            if event.type == "token":
                self.spec_content = reducer.text

        if not await self._consume(run_id, prompt, options, reducer, on_event):
            return

        if not self.status.is_complete:
            logger.warning(f"[WIZARD] {failure_message}: {self.status.message}")
            self.fsm.fire("generation_failed")
            self._notify()
            return

        questions = []
        if ask_questions and has_open_questions(self.spec_content):
            questions = parse_open_questions(self.spec_content)
        if questions:
            self.open_questions = questions
            self.question_answers = {}
            self.current_question_index = 0
            self.custom_input_mode = False
            self.fsm.fire("questions_found")
            logger.info(f"[WIZARD] Spec has {len(questions)} open question(s)")
        else:
            self.fsm.fire("generation_complete")
        self._notify()

    # --- Stream consumption ------------------------------------------------

    def _start_run(self, run: Callable[[int], object]) -> None:
        self._stop_run()
        self._run_id += 1
        run_id = self._run_id
        self._task = asyncio.get_running_loop().create_task(run(run_id))
        self._task.add_done_callback(self._on_run_done)

    def _stop_run(self) -> None:
        """Invalidate the current run; its remaining events are ignored."""
        self._run_id += 1
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    @staticmethod
    def _on_run_done(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"[WIZARD] Agent run crashed: {exc!r}", exc_info=exc)

    async def wait(self) -> None:
        """Wait for the current agent run to finish (or be cancelled).

        Re-raises an exception that escaped the run.
        """
        task = self._task
        if task is None:
            return
        await asyncio.wait({task})
        if not task.cancelled() and task.exception() is not None:
            raise task.exception()

    async def _consume(
        self,
        run_id: int,
        prompt: str,
        options: AgentQueryOptions,
        reducer: StreamReducer,
        on_event: Callable[[AgentEvent], None],
    ) -> bool:
        """Feed the agent stream through reducer.

        Returns False if the run was superseded (cancelled); the caller must
        not touch state then. Transport errors become an error status.
        """
        try:
            async with aclosing(self.agent.run_query(prompt, options)) as stream:
                async for event in stream:
                    if run_id != self._run_id:
                        return False
                    self.status = reducer.apply(event)
                    if event.type == "session_init":
                        self.session_id = reducer.session_id
                    on_event(event)
                    self._notify()
        except AgentClientError as e:
            if run_id != self._run_id:
                return False
            logger.warning(f"[WIZARD] Agent error: {e}")
            self.status = GenerationStatus.error(e.message, (str(e.cause),) if e.cause else None)
            return True

        if run_id != self._run_id:
            return False

        if self.status.is_generating:
            # Stream ended without a result or error event
            self.status = GenerationStatus.error("Agent stream ended without a result")
        elif reducer.last_result is not None:
            result = reducer.last_result
            logger.info(
                f"[WIZARD] Run finished: {result.num_turns} turn(s), "
                f"${result.total_cost_usd:.4f}, {result.duration_ms}ms"
            )
        return True

    # --- Cancel / retry ----------------------------------------------------

    def cancel(self) -> None:
        """Interrupt the in-flight agent run.

        generating -> description, patching -> questions (answers kept).
        """
        step = self.step.type
        if step == StepType.GENERATING:
            self._stop_run()
            self.spec_content = ""
            self.status = GenerationStatus.idle()
            self.fsm.fire("cancel_generation")
        elif step == StepType.PATCHING:
            self._stop_run()
            self.status = GenerationStatus.idle()
            self.fsm.fire("cancel_patching")
        else:
            raise InvalidTransition(self.fsm.state, "cancel")
        logger.info("[WIZARD] Run cancelled")
        self._notify()

    def retry(self) -> bool:
        """Re-run the failed generation. Returns False if nothing to retry."""
        if not self.status.is_error or self._retry is None or self.is_running:
            return False
        self.fsm.fire("retry")
        self._start_run(self._retry)
        return True

    # --- Questions ---------------------------------------------------------

    def select_option(self, option_id: str) -> None:
        """Pick an option for the current question.

        The custom option only switches to free-text input.
        """
        question = self.current_question
        if self.step.type != StepType.QUESTIONS or question is None:
            raise InvalidTransition(self.fsm.state, "select_option")
        if question.option(option_id) is None:
            raise ValueError(f"Question {question.id!r} has no option {option_id!r}")

        if option_id == CUSTOM_OPTION_ID:
            self.custom_input_mode = True
            self._notify()
            return

        self._answer(QuestionAnswer(question_id=question.id, selected_option_id=option_id))

    def submit_custom(self, text: str) -> bool:
        """Answer the current question with free text. Empty text is ignored."""
        question = self.current_question
        if not self.custom_input_mode or question is None or not text.strip():
            return False
        self.custom_input_mode = False
        self._answer(QuestionAnswer(
            question_id=question.id,
            selected_option_id=CUSTOM_OPTION_ID,
            custom_response=text.strip(),
        ))
        return True

    def _answer(self, answer: QuestionAnswer) -> None:
        self.question_answers[answer.question_id] = answer
        if self.current_question_index < len(self.open_questions) - 1:
            self.current_question_index += 1
            self.fsm.fire("next_question")
            self._notify()
            return

        self.fsm.fire("submit_answers")
        self._start_run(self._patch)

    def cancel_question(self) -> None:
        """Escape on the questions step.

        Leaves custom input first; on the first question skips to review,
        otherwise steps back one question.
        """
        if self.custom_input_mode:
            self.custom_input_mode = False
        elif self.current_question_index == 0:
            self.fsm.fire("skip_questions")
        else:
            self.current_question_index -= 1
            self.fsm.fire("previous_question")
        self._notify()

    async def _patch(self, run_id: int) -> None:
        reducer = StreamReducer(PATCH_LABEL, PATCHING_FAILED, start_label=PATCH_LABEL, clock=self.clock)
        self.status = reducer.status
        self._notify()

        prompt = render_prompt(
            "patch",
            spec_content=self.spec_content,
            answers=format_answers_for_prompt(self.open_questions, self.question_answers),
        )
        if not await self._consume(run_id, prompt, self._options("patch", "patch_system"),
                                   reducer, lambda event: None):
            return

        if not self.status.is_complete:
            logger.warning(f"[WIZARD] {PATCHING_FAILED}: {self.status.message}")
            self.fsm.fire("patching_failed")
            self._notify()
            return

        self.status = reducer.with_activity(APPLYING_PATCHES)
        self._notify()

        # Partial messages may be off; the result carries the full text then
        response = reducer.text or (reducer.last_result.result if reducer.last_result else "")
        spec = self.spec_content
        patch = parse_patch_response(response)
        if patch and patch.patches:
            spec = apply_patches(spec, patch)
            logger.info(f"[WIZARD] Applied {len(patch.patches)} patch(es)")
        elif patch is None:
            logger.warning("[WIZARD] No usable patches in response, only removing answered questions")
        self.spec_content = remove_answered_questions(spec, list(self.question_answers))

        self.status = GenerationStatus.complete("Patches applied", reducer.token_count)
        self.open_questions = []
        self.question_answers = {}
        self.current_question_index = 0
        self.custom_input_mode = False
        self.fsm.fire("patching_complete")
        self._notify()

    # --- Review ------------------------------------------------------------

    def save_epic(self) -> Optional[int]:
        """Persist the spec as an epic and clear the draft.

        Returns the epic id, or None if saving failed (error_message set).
        """
        self.fsm.fire("start_save")
        self.error_message = None
        self._notify()

        title = extract_title_from_spec(self.spec_content)
        try:
            epic_id = self.epics.create(title, self.spec_content)
        except StorageError as e:
            logger.warning(f"[WIZARD] Saving epic failed: {e}")
            self.error_message = f"Database error: {e}"
            self.fsm.fire("save_failed")
            self._notify()
            return None
        except (ValueError, RuntimeError) as e:
            logger.exception("[WIZARD] Unexpected failure while saving epic")
            self.fsm.fire("fail", message=str(e))
            self._notify()
            return None

        try:
            self.drafts.clear()
        except StorageError as e:
            logger.warning(f"[WIZARD] Epic {epic_id} saved but draft not cleared: {e}")
            self.error_message = f"Database error: {e}"

        self.saved_epic_id = epic_id
        self.fsm.fire("save_succeeded", epic_id=epic_id)
        self._notify()
        return epic_id

    def recover(self) -> None:
        """Leave the error step and go back to review."""
        self.error_message = self.step.message
        self.fsm.fire("recover")
        self._notify()

    def open_feedback(self) -> None:
        self.fsm.fire("open_feedback")
        self.feedback = ""
        self.error_message = None
        self._notify()

    def cancel_feedback(self) -> None:
        self.fsm.fire("cancel_feedback")
        self.feedback = ""
        self._notify()

    def submit_feedback(self, text: Optional[str] = None) -> bool:
        """Regenerate the spec with feedback. Returns False for empty feedback."""
        if text is not None:
            self.feedback = text
        if not self.feedback.strip():
            return False

        regenerate = self._make_regenerate(self.description, self.spec_content, self.feedback)
        self.fsm.fire("submit_feedback")
        self.feedback = ""
        self._retry = regenerate
        self._start_run(regenerate)
        return True

    def edit_in_editor(self, suspend: Optional[ContextManager] = None) -> bool:
        """Hand the spec to the external editor. Returns True if it changed."""
        self.fsm.fire("edit")
        try:
            edited = self.editor(self.spec_content, suspend)
        except EditorError as e:
            logger.warning(f"[WIZARD] Editor failed: {e}")
            self.error_message = f"Editor error: {e}"
            self._notify()
            return False

        self.error_message = None
        changed = edited != self.spec_content
        self.spec_content = edited
        self._notify()
        return changed

    def discard(self) -> None:
        """Drop the spec and the draft; start over."""
        self.fsm.fire("discard")
        try:
            self.drafts.clear()
        except StorageError as e:
            logger.warning(f"[WIZARD] Could not clear draft: {e}")
            self._reset_fields()
            self.error_message = f"Database error: {e}"
            self._notify()
            return
        self._reset_fields()
        self._notify()

    def reset(self) -> None:
        """From success, start a new epic."""
        self.fsm.fire("reset")
        self._reset_fields()
        self._notify()
