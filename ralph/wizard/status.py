"""
Generation status and the stream reducer.

A StreamReducer folds one agent run's events, in arrival order, into
accumulated text and a GenerationStatus. It makes no step decisions; the
wizard inspects the final status for that.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from ralph.agents.events import AgentEvent, ResultEvent

logger = logging.getLogger(__name__)

STARTING = "Starting..."
SESSION_INITIALIZED = "Session initialized"
PROCESSING_TURN = "Processing turn..."


@dataclass(frozen=True)
class GenerationStatus:
    """Progress of the current agent run.

    type is one of idle, generating, complete, error. Fields that don't
    apply to the type keep their defaults.
    """
    type: str = "idle"
    token_count: int = 0
    current_activity: str = ""
    last_update: float = 0.0
    result: str = ""
    message: str = ""
    details: Optional[tuple[str, ...]] = None

    @classmethod
    def idle(cls) -> "GenerationStatus":
        return cls()

    @classmethod
    def generating(cls, token_count: int, current_activity: str, last_update: float) -> "GenerationStatus":
        return cls("generating", token_count=token_count, current_activity=current_activity, last_update=last_update)

    @classmethod
    def complete(cls, result: str, token_count: int) -> "GenerationStatus":
        return cls("complete", token_count=token_count, result=result)

    @classmethod
    def error(cls, message: str, details: Optional[tuple[str, ...]] = None) -> "GenerationStatus":
        return cls("error", message=message, details=tuple(details) if details else None)

    @property
    def is_generating(self) -> bool:
        return self.type == "generating"

    @property
    def is_complete(self) -> bool:
        return self.type == "complete"

    @property
    def is_error(self) -> bool:
        return self.type == "error"


class StreamReducer:
    """Fold one agent stream into text and status.

    Args:
        token_label: Activity shown while tokens arrive
        failure_message: Status message when the run reports failure
        start_label: Activity shown before the first event
        clock: Timestamp source for last_update
    """

    def __init__(
        self,
        token_label: str,
        failure_message: str,
        start_label: str = STARTING,
        clock: Callable[[], float] = time.time,
    ):
        self.token_label = token_label
        self.failure_message = failure_message
        self.clock = clock
        self._text = ""
        self._token_count = 0
        self._session_id: Optional[str] = None
        self._last_result: Optional[ResultEvent] = None
        self._status = GenerationStatus.generating(0, start_label, clock())

    @property
    def text(self) -> str:
        return self._text

    @property
    def token_count(self) -> int:
        return self._token_count

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    @property
    def status(self) -> GenerationStatus:
        return self._status

    @property
    def last_result(self) -> Optional[ResultEvent]:
        return self._last_result

    def _activity(self, label: str) -> GenerationStatus:
        return GenerationStatus.generating(self._token_count, label, self.clock())

    def with_activity(self, label: str) -> GenerationStatus:
        """Keep generating but show a different activity."""
        self._status = self._activity(label)
        return self._status

    def apply(self, event: AgentEvent) -> GenerationStatus:
        """Apply one event and return the new status."""
        if event.type == "token":
            self._text += event.content
            self._token_count += 1
            self._status = self._activity(self.token_label)

        elif event.type == "session_init":
            self._session_id = event.session_id
            self._status = self._activity(SESSION_INITIALIZED)

        elif event.type == "tool_start":
            self._status = self._activity(f"Using tool: {event.tool}")

        elif event.type == "tool_end":
            self._status = self._activity(f"Tool completed: {event.tool}")

        elif event.type == "turn_complete":
            self._status = self._activity(PROCESSING_TURN)

        elif event.type == "result":
            self._last_result = event
            if event.success:
                self._status = GenerationStatus.complete(event.result, self._token_count)
            else:
                self._status = GenerationStatus.error(self.failure_message, (event.result,))

        elif event.type == "error":
            self._status = GenerationStatus.error(event.message, event.errors)

        else:
            logger.debug(f"Ignoring unknown event type {event.type!r}")

        return self._status
