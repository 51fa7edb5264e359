"""
Draft repository.

The epic_drafts table holds at most one row (id 1): the autosaved state of
the wizard. Saving replaces that row; the serialized form is checked
against schemas/draft.schema.json before every write and after every read.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import delete, select

from ralph.db.models import EpicDraft
from ralph.db.session import Database, StorageError
from ralph.lib.questions import OpenQuestion, QuestionAnswer
from ralph.lib.validate import ValidationError, validate, validate_before_write
from ralph.wizard.fsm import WizardStep

logger = logging.getLogger(__name__)

DRAFT_ID = 1


@dataclass
class EpicDraftState:
    """Serializable snapshot of the wizard."""
    wizard_step: WizardStep = field(default_factory=WizardStep.description)
    description: str = ""
    spec_content: str = ""
    session_id: Optional[str] = None
    feedback: str = ""
    open_questions: list[OpenQuestion] = field(default_factory=list)
    question_answers: dict[str, QuestionAnswer] = field(default_factory=dict)
    current_question_index: int = 0
    custom_input_mode: bool = False

    def to_dict(self) -> dict:
        return {
            "wizardStep": self.wizard_step.to_dict(),
            "description": self.description,
            "specContent": self.spec_content,
            "sessionId": self.session_id,
            "feedback": self.feedback,
            "openQuestions": [q.to_dict() for q in self.open_questions],
            "questionAnswers": {qid: a.to_dict() for qid, a in self.question_answers.items()},
            "currentQuestionIndex": self.current_question_index,
            "customInputMode": self.custom_input_mode,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EpicDraftState":
        return cls(
            wizard_step=WizardStep.from_dict(data["wizardStep"]),
            description=data["description"],
            spec_content=data["specContent"],
            session_id=data["sessionId"],
            feedback=data["feedback"],
            open_questions=[OpenQuestion.from_dict(q) for q in data["openQuestions"]],
            question_answers={
                qid: QuestionAnswer.from_dict(a) for qid, a in data["questionAnswers"].items()
            },
            current_question_index=data["currentQuestionIndex"],
            custom_input_mode=data["customInputMode"],
        )


class EpicDraftRepository:
    def __init__(self, db: Database):
        self.db = db

    def save(self, state: EpicDraftState) -> None:
        """Replace the draft with state.

        Raises:
            ValidationError: If the snapshot doesn't match the draft schema
            StorageError: If the write fails
        """
        data = state.to_dict()
        validate_before_write(data, "draft", "epic_drafts")

        with self.db.session() as session:
            session.execute(delete(EpicDraft).where(EpicDraft.id == DRAFT_ID))
            session.add(EpicDraft(
                id=DRAFT_ID,
                wizard_step=json.dumps(data["wizardStep"]),
                description=data["description"],
                spec_content=data["specContent"],
                session_id=data["sessionId"],
                feedback=data["feedback"],
                open_questions=json.dumps(data["openQuestions"]),
                question_answers=json.dumps(data["questionAnswers"]),
                current_question_index=data["currentQuestionIndex"],
                custom_input_mode=data["customInputMode"],
            ))
        logger.debug(f"[DRAFT] Saved draft at step {state.wizard_step.type.value}")

    def load(self) -> Optional[EpicDraftState]:
        """Return the saved draft, or None if there is none.

        Raises:
            StorageError: If the read fails or the stored row is corrupt
        """
        with self.db.session() as session:
            row = session.get(EpicDraft, DRAFT_ID)
            if row is None:
                return None
            try:
                data = {
                    "wizardStep": json.loads(row.wizard_step),
                    "description": row.description,
                    "specContent": row.spec_content,
                    "sessionId": row.session_id,
                    "feedback": row.feedback,
                    "openQuestions": json.loads(row.open_questions),
                    "questionAnswers": json.loads(row.question_answers),
                    "currentQuestionIndex": row.current_question_index,
                    "customInputMode": bool(row.custom_input_mode),
                }
            except json.JSONDecodeError as e:
                raise StorageError("Stored draft is not valid JSON", e) from e

        try:
            validate(data, "draft")
            return EpicDraftState.from_dict(data)
        except (ValidationError, ValueError) as e:
            raise StorageError("Stored draft is invalid", e) from e

    def exists(self) -> bool:
        with self.db.session() as session:
            return session.scalar(select(EpicDraft.id).where(EpicDraft.id == DRAFT_ID)) is not None

    def clear(self) -> None:
        with self.db.session() as session:
            session.execute(delete(EpicDraft).where(EpicDraft.id == DRAFT_ID))
        logger.debug("[DRAFT] Cleared draft")
