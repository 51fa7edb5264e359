"""Wizard step state machine using transitions library.

Steps of the epic creation wizard and the named triggers that move
between them. Every step change goes through WizardFSM.fire(); a trigger
that isn't legal for the current step raises InvalidTransition.

Usage:
    from ralph.wizard.fsm import WizardFSM

    fsm = WizardFSM()
    fsm.fire("submit_description")        # description -> generating
    fsm.fire("generation_complete")       # generating -> review
    fsm.fire("start_save")                # review -> saving
    fsm.fire("save_succeeded", epic_id=3) # saving -> success
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from transitions import Machine

logger = logging.getLogger(__name__)


class StepType(str, Enum):
    DESCRIPTION = "description"
    GENERATING = "generating"
    QUESTIONS = "questions"
    PATCHING = "patching"
    REVIEW = "review"
    FEEDBACK = "feedback"
    SAVING = "saving"
    SUCCESS = "success"
    ERROR = "error"


# Steps with an agent stream or a save in flight; never persisted as a draft
TRANSIENT_STEPS = frozenset({
    StepType.GENERATING,
    StepType.PATCHING,
    StepType.SAVING,
    StepType.SUCCESS,
})


@dataclass(frozen=True)
class WizardStep:
    """The active wizard step. epic_id is set for success, message for error."""
    type: StepType
    epic_id: Optional[int] = None
    message: Optional[str] = None

    @classmethod
    def description(cls) -> "WizardStep":
        return cls(StepType.DESCRIPTION)

    @classmethod
    def success(cls, epic_id: int) -> "WizardStep":
        return cls(StepType.SUCCESS, epic_id=epic_id)

    @classmethod
    def error(cls, message: str) -> "WizardStep":
        return cls(StepType.ERROR, message=message)

    @property
    def is_transient(self) -> bool:
        return self.type in TRANSIENT_STEPS

    def to_dict(self) -> dict:
        data = {"type": self.type.value}
        if self.type == StepType.SUCCESS:
            data["epicId"] = self.epic_id
        elif self.type == StepType.ERROR:
            data["message"] = self.message or ""
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "WizardStep":
        step_type = StepType(data["type"])
        if step_type == StepType.SUCCESS:
            return cls.success(int(data["epicId"]))
        if step_type == StepType.ERROR:
            return cls.error(data.get("message", ""))
        return cls(step_type)


STATES = [s.value for s in StepType]

TRANSITIONS = [
    # Initial generation
    {"trigger": "submit_description", "source": "description", "dest": "generating"},
    {"trigger": "questions_found", "source": "generating", "dest": "questions"},
    {"trigger": "generation_complete", "source": "generating", "dest": "review"},
    {"trigger": "generation_failed", "source": "generating", "dest": "generating"},  # status=error, step unchanged
    {"trigger": "retry", "source": "generating", "dest": "generating"},
    {"trigger": "cancel_generation", "source": "generating", "dest": "description"},

    # Open questions
    {"trigger": "next_question", "source": "questions", "dest": "questions"},
    {"trigger": "previous_question", "source": "questions", "dest": "questions"},
    {"trigger": "skip_questions", "source": "questions", "dest": "review"},
    {"trigger": "submit_answers", "source": "questions", "dest": "patching"},

    # Patching the spec with answers
    {"trigger": "patching_complete", "source": "patching", "dest": "review"},
    {"trigger": "patching_failed", "source": "patching", "dest": "questions"},
    {"trigger": "cancel_patching", "source": "patching", "dest": "questions"},

    # Review actions
    {"trigger": "edit", "source": "review", "dest": "review"},
    {"trigger": "open_feedback", "source": "review", "dest": "feedback"},
    {"trigger": "discard", "source": "review", "dest": "description"},
    {"trigger": "start_save", "source": "review", "dest": "saving"},

    # Feedback
    {"trigger": "submit_feedback", "source": "feedback", "dest": "generating"},
    {"trigger": "cancel_feedback", "source": "feedback", "dest": "review"},

    # Saving
    {"trigger": "save_succeeded", "source": "saving", "dest": "success"},
    {"trigger": "save_failed", "source": "saving", "dest": "review"},
    {"trigger": "fail", "source": "saving", "dest": "error"},
    {"trigger": "recover", "source": "error", "dest": "review"},

    # Start over
    {"trigger": "reset", "source": "success", "dest": "description"},
]


class InvalidTransition(Exception):
    """Raised when a trigger isn't legal for the current step."""

    def __init__(self, from_state: str, trigger: str):
        self.from_state = from_state
        self.trigger_name = trigger
        super().__init__(f"Invalid transition: '{trigger}' from step '{from_state}'")


class WizardFSM:
    """Step machine for one wizard session.

    Wraps the transitions library with wizard-specific logic:
    - Carries the success/error payload alongside the state name
    - Logs all transitions
    - Restores an arbitrary step when a draft is resumed
    """

    def __init__(
        self,
        initial: WizardStep = None,
        on_transition: Callable[[str, str, str], None] | None = None,
    ):
        """Initialize the step machine.

        Args:
            initial: Starting step (default: description)
            on_transition: Optional callback(from_state, to_state, trigger) called after transitions
        """
        initial = initial or WizardStep.description()
        self.on_transition = on_transition
        self._epic_id = initial.epic_id
        self._message = initial.message

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=initial.type.value,
            auto_transitions=False,  # Only explicit transitions
            send_event=True,  # Pass EventData to callbacks
            after_state_change="on_state_change",
        )

    @property
    def step(self) -> WizardStep:
        return WizardStep(StepType(self.state), epic_id=self._epic_id, message=self._message)

    def fire(self, trigger: str, **kwargs) -> WizardStep:
        """Run a trigger and return the new step.

        Keyword arguments epic_id and message set the success/error payload.

        Raises:
            InvalidTransition: If trigger isn't available in the current step
        """
        if not self.can(trigger):
            raise InvalidTransition(self.state, trigger)
        self.trigger(trigger, **kwargs)
        return self.step

    def on_state_change(self, event) -> None:
        """Callback after any state transition. Updates payload and logs."""
        from_state = event.transition.source
        to_state = event.transition.dest
        trigger = event.event.name

        self._epic_id = event.kwargs.get("epic_id") if to_state == "success" else None
        self._message = event.kwargs.get("message") if to_state == "error" else None

        if from_state != to_state:
            logger.info(f"[FSM] {from_state} -> {to_state} ({trigger})")
        else:
            logger.debug(f"[FSM] {from_state} ({trigger})")

        if self.on_transition:
            self.on_transition(from_state, to_state, trigger)

    def restore(self, step: WizardStep) -> None:
        """Jump to a step without a trigger (resuming a draft, resetting)."""
        logger.info(f"[FSM] restore {self.state} -> {step.type.value}")
        self._epic_id = step.epic_id
        self._message = step.message
        self.machine.set_state(step.type.value, model=self)

    def can(self, trigger: str) -> bool:
        """Check if a trigger can be executed in current state."""
        return trigger in self.machine.get_triggers(self.state)
