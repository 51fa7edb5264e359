"""
Agent event types.

Domain events produced by an agent stream. Every stream is an ordered
sequence of these, ended by exactly one ResultEvent or ErrorEvent.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Union


@dataclass(frozen=True)
class TokenEvent:
    content: str
    type: str = field(default="token", init=False)


@dataclass(frozen=True)
class SessionInitEvent:
    session_id: str
    model: str = ""
    tools: tuple[str, ...] = ()
    type: str = field(default="session_init", init=False)


@dataclass(frozen=True)
class ToolStartEvent:
    tool: str
    tool_use_id: str
    input: Any = None
    type: str = field(default="tool_start", init=False)


@dataclass(frozen=True)
class ToolEndEvent:
    tool: str
    tool_use_id: str
    result: Any = None
    type: str = field(default="tool_end", init=False)


@dataclass(frozen=True)
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_input_tokens: int = 0
    cache_creation_input_tokens: int = 0


@dataclass(frozen=True)
class TurnCompleteEvent:
    usage: Usage = field(default_factory=Usage)
    type: str = field(default="turn_complete", init=False)


@dataclass(frozen=True)
class ResultEvent:
    success: bool
    result: str
    total_cost_usd: float = 0.0
    duration_ms: int = 0
    num_turns: int = 0
    type: str = field(default="result", init=False)


@dataclass(frozen=True)
class ErrorEvent:
    message: str
    errors: Optional[tuple[str, ...]] = None
    type: str = field(default="error", init=False)


AgentEvent = Union[
    TokenEvent,
    SessionInitEvent,
    ToolStartEvent,
    ToolEndEvent,
    TurnCompleteEvent,
    ResultEvent,
    ErrorEvent,
]

TERMINAL_EVENT_TYPES = ("result", "error")


def is_terminal(event: AgentEvent) -> bool:
    """True for the event that ends a stream."""
    return event.type in TERMINAL_EVENT_TYPES
