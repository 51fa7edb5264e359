"""
Draft autosave for the epic wizard.

DraftController watches the wizard and keeps the single draft row in sync:

- every change outside a transient step (re)schedules one save after the
  debounce delay; a newer change replaces the pending save
- leaving the screen saves immediately and drops the pending save
- entering the screen checks for a draft (pending -> checking -> exists|empty)
  so the resume-or-discard prompt can be shown first
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, Optional

from ralph.db.drafts import EpicDraftRepository
from ralph.db.session import StorageError
from ralph.lib.config import DEFAULT_DEBOUNCE_MS
from ralph.lib.validate import ValidationError
from ralph.wizard.engine import EpicWizard
from ralph.wizard.fsm import StepType

logger = logging.getLogger(__name__)

ErrorHandler = Callable[[Exception], None]


class DraftCheck(str, Enum):
    PENDING = "pending"
    CHECKING = "checking"
    EXISTS = "exists"
    EMPTY = "empty"


class DraftController:
    def __init__(
        self,
        wizard: EpicWizard,
        repo: EpicDraftRepository,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        on_error: Optional[ErrorHandler] = None,
    ):
        self.wizard = wizard
        self.repo = repo
        self.delay = debounce_ms / 1000
        self.on_error = on_error
        self.check_state = DraftCheck.PENDING

        # At most one scheduled save
        self._pending: Optional[asyncio.TimerHandle] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    def attach(self) -> None:
        """Start autosaving on wizard changes."""
        if self._unsubscribe is None:
            self._unsubscribe = self.wizard.subscribe(self._on_change)

    def detach(self) -> None:
        self.cancel_pending()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    @property
    def has_pending_save(self) -> bool:
        return self._pending is not None

    def _should_save(self) -> bool:
        wizard = self.wizard
        if wizard.step.is_transient:
            return False
        # Nothing typed yet; don't leave an empty draft behind
        if (wizard.step.type == StepType.DESCRIPTION
                and not wizard.description.strip() and not wizard.spec_content):
            return False
        return True

    def _on_change(self, wizard: EpicWizard) -> None:
        if self.check_state in (DraftCheck.PENDING, DraftCheck.CHECKING, DraftCheck.EXISTS):
            # Prompt not resolved yet; the wizard state isn't the user's
            return
        if wizard.step.is_transient:
            return
        if self._should_save():
            self.schedule_save()
        else:
            self.cancel_pending()

    def cancel_pending(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def schedule_save(self) -> None:
        """Replace any pending save with a new one after the debounce delay."""
        self.cancel_pending()
        loop = asyncio.get_running_loop()
        self._pending = loop.call_later(self.delay, self._save_pending)

    def _save_pending(self) -> None:
        self._pending = None
        if not self._should_save():
            return
        try:
            self.repo.save(self.wizard.snapshot())
        except (StorageError, ValidationError) as e:
            logger.error(f"[DRAFT] Autosave failed: {e}")
            if self.on_error:
                self.on_error(e)

    def save_immediate(self) -> None:
        """Save now (leaving the screen). The next entry re-checks for a draft.

        Raises:
            StorageError: If the write fails
        """
        self.cancel_pending()
        try:
            if self._should_save():
                self.repo.save(self.wizard.snapshot())
                logger.info(f"[DRAFT] Saved draft at step {self.wizard.step.type.value}")
        finally:
            self.check_state = DraftCheck.PENDING

    def check_exists(self) -> bool:
        """Look for a saved draft. A failed lookup counts as no draft."""
        self.check_state = DraftCheck.CHECKING
        try:
            exists = self.repo.exists()
        except StorageError as e:
            logger.error(f"[DRAFT] Draft lookup failed: {e}")
            self.check_state = DraftCheck.EMPTY
            if self.on_error:
                self.on_error(e)
            return False
        self.check_state = DraftCheck.EXISTS if exists else DraftCheck.EMPTY
        return exists

    def load(self) -> bool:
        """Restore the saved draft into the wizard. Returns False if there was none.

        Raises:
            StorageError: If the draft can't be read
        """
        try:
            state = self.repo.load()
            if state is not None:
                self.wizard.restore(state)
        finally:
            self.check_state = DraftCheck.EMPTY
        self.cancel_pending()
        return state is not None

    def clear(self) -> None:
        self.cancel_pending()
        self.repo.clear()

    def clear_and_reset(self) -> None:
        """Discard the draft and start the wizard from scratch."""
        self.clear()
        self.wizard.reset_state()
        self.check_state = DraftCheck.EMPTY
        self.cancel_pending()
