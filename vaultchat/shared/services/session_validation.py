"""Structural validation for session records read from disk.

Session files live inside the user's vault and may be edited, synced or
truncated by other tools. Nothing from a record is trusted until it
passes this check; a record that fails is skipped whole.
"""

from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from typing import Any

VALID_ROLES = frozenset({"user", "assistant", "system"})

# Ids name the record file, so they stay inside one path component
_SESSION_ID_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9._-]*")


def _is_number(value: Any) -> bool:
    # bool is an int subclass; True is not a timestamp
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_optional_str(value: Any) -> bool:
    return value is None or isinstance(value, str)


def _is_timestamp(value: Any) -> bool:
    """Epoch milliseconds that a datetime can represent."""
    if not _is_number(value):
        return False
    try:
        seconds = value / 1000
        if not math.isfinite(seconds):
            return False
        datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, ValueError, OSError):
        return False
    return True


def is_safe_session_id(value: Any) -> bool:
    """True when *value* can name a record file inside the storage folder."""
    return (
        isinstance(value, str)
        and _SESSION_ID_RE.fullmatch(value) is not None
        and ".." not in value
    )


def validate_session_record(obj: Any) -> str | None:
    """Return a description of the first structural problem, or None."""
    if not isinstance(obj, dict):
        return "record is not an object"

    session_id = obj.get("id")
    if not isinstance(session_id, str) or not session_id:
        return "missing or empty 'id'"
    if not is_safe_session_id(session_id):
        return f"'id' {session_id!r} cannot name a session file"
    if not isinstance(obj.get("messages"), list):
        return "'messages' is not a list"
    if not _is_timestamp(obj.get("createdAt")):
        return "'createdAt' is not a valid timestamp"
    if not _is_timestamp(obj.get("updatedAt")):
        return "'updatedAt' is not a valid timestamp"
    if not _is_optional_str(obj.get("name")):
        return "'name' is not a string"
    if not _is_optional_str(obj.get("claudeSessionId")):
        return "'claudeSessionId' is not a string"
    if "context" in obj and not isinstance(obj["context"], list):
        return "'context' is not a list"

    seen_ids: set[str] = set()
    for index, msg in enumerate(obj["messages"]):
        if not isinstance(msg, dict):
            return f"message {index} is not an object"
        if not isinstance(msg.get("id"), str):
            return f"message {index} has no string 'id'"
        if msg["id"] in seen_ids:
            return f"message {index} repeats id {msg['id']!r}"
        seen_ids.add(msg["id"])
        if msg.get("role") not in VALID_ROLES:
            return f"message {index} has invalid role {msg.get('role')!r}"
        if not _is_optional_str(msg.get("content")):
            return f"message {index} 'content' is not a string"
        if "timestamp" in msg and not _is_timestamp(msg["timestamp"]):
            return f"message {index} 'timestamp' is not a valid timestamp"
        tool_calls = msg.get("toolCalls")
        if tool_calls is not None and not isinstance(tool_calls, list):
            return f"message {index} 'toolCalls' is not a list"
        for call in tool_calls or ():
            if not isinstance(call, dict) or not isinstance(call.get("id"), str):
                return f"message {index} has a malformed tool call"
    return None


def is_valid_session_record(obj: Any) -> bool:
    return validate_session_record(obj) is None
