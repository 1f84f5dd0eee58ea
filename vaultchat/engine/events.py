"""Semantic events reconstructed from the agent's stream-json output.

Each event is a small dataclass with a fixed ``event_type`` so callers
can switch on it without knowing anything about the wire format.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

SYSTEM_INIT = "system_init"
ASSISTANT_TEXT = "assistant_text"
THINKING = "thinking"
TOOL_CALL = "tool_call"
TOOL_RESULT = "tool_result"
FINAL_RESULT = "final_result"


@dataclass
class StreamEvent:
    """Base event. Used bare for records with no richer mapping."""
    event_type: str = ""
    session_id: str | None = None


@dataclass
class SystemInit(StreamEvent):
    event_type: str = SYSTEM_INIT


@dataclass
class AssistantText(StreamEvent):
    event_type: str = ASSISTANT_TEXT
    text: str = ""


@dataclass
class Thinking(StreamEvent):
    event_type: str = THINKING
    text: str = ""


@dataclass
class ToolCallEvent(StreamEvent):
    event_type: str = TOOL_CALL
    call_id: str = ""
    name: str = ""
    input: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolResultEvent(StreamEvent):
    event_type: str = TOOL_RESULT
    call_id: str = ""
    # None when the result arrived without a matching tool call.
    name: str | None = None
    input: dict[str, Any] | None = None
    output: str = ""
    is_error: bool = False


@dataclass
class FinalResult(StreamEvent):
    event_type: str = FINAL_RESULT
    text: str = ""


_EVENT_CLASSES: dict[str, type[StreamEvent]] = {
    SYSTEM_INIT: SystemInit,
    ASSISTANT_TEXT: AssistantText,
    THINKING: Thinking,
    TOOL_CALL: ToolCallEvent,
    TOOL_RESULT: ToolResultEvent,
    FINAL_RESULT: FinalResult,
}


def event_text(event: StreamEvent) -> str | None:
    """Return the user-facing text carried by an assistant/result event."""
    if isinstance(event, (AssistantText, FinalResult)):
        return event.text
    return None


def event_to_dict(event: StreamEvent) -> dict[str, Any]:
    return asdict(event)


def dict_to_event(data: dict[str, Any]) -> StreamEvent:
    """Rebuild an event from ``event_to_dict`` output.

    Unknown ``event_type`` values become a bare StreamEvent; unknown
    keys are dropped.
    """
    event_type = str(data.get("event_type", ""))
    cls = _EVENT_CLASSES.get(event_type, StreamEvent)
    allowed = cls.__dataclass_fields__.keys()
    kwargs = {k: v for k, v in data.items() if k in allowed}
    if cls is StreamEvent:
        kwargs["event_type"] = event_type
    return cls(**kwargs)
