"""Chat message and tool call models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
import uuid


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _gen_id() -> str:
    return f"msg-{uuid.uuid4().hex[:12]}"


class MessageRole(Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass
class ToolCall:
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    output: str | None = None
    is_error: bool = False
    duration: float | None = None  # seconds


@dataclass
class ChatMessage:
    role: MessageRole
    content: str
    id: str = field(default_factory=_gen_id)
    timestamp: datetime = field(default_factory=_utcnow)
    tool_calls: list[ToolCall] = field(default_factory=list)
    # True while the reply is still being streamed in
    streaming: bool = False
    error: str | None = None
