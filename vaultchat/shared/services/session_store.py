"""Session store: in-memory sessions backed by one JSON file each.

Storage layout:
    <storage_dir>/<session_id>.json

Records use the camelCase shape shared with the vault plugin
(``id, name, claudeSessionId, messages, context, createdAt, updatedAt,
notePath``) with epoch-millisecond timestamps. Every record is
validated before it is loaded; invalid ones are skipped with a warning.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from vaultchat.engine.errors import (
    DuplicateMessageError,
    MessageNotFoundError,
    SessionNotFoundError,
    SessionPersistError,
)
from vaultchat.shared.models.message import ChatMessage, MessageRole, ToolCall
from vaultchat.shared.models.session import ContextReference, Session
from vaultchat.shared.services.durable_write import atomic_write_json, durable_unlink
from vaultchat.shared.services.session_validation import (
    is_safe_session_id,
    validate_session_record,
)

logger = logging.getLogger(__name__)


class SessionStore:
    """Owns every Session for the process lifetime.

    Callers hold session ids only. With ``auto_save`` enabled, each
    mutation (message append, finalization, external id assignment)
    rewrites that session's record before returning. Streaming text
    updates stay in memory until the message is finalized.
    """

    def __init__(
        self,
        storage_dir: Path,
        *,
        auto_save: bool = True,
        max_sessions: int = 0,
    ) -> None:
        self._dir = Path(storage_dir)
        self._auto_save = auto_save
        self._max_sessions = max_sessions
        self._sessions: dict[str, Session] = {}
        self._active_id: str | None = None

    @property
    def storage_dir(self) -> Path:
        return self._dir

    @property
    def active_id(self) -> str | None:
        return self._active_id

    def _path_for(self, session_id: str) -> Path:
        if not is_safe_session_id(session_id):
            raise SessionPersistError(
                session_id, str(self._dir), "id cannot name a file in the storage folder",
            )
        return self._dir / f"{session_id}.json"

    def _require(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    # ── loading ──

    def initialize(self) -> int:
        """Create the storage folder and load every valid record.

        Returns the number of sessions loaded. A bad record never stops
        the others from loading.
        """
        self._dir.mkdir(parents=True, exist_ok=True)
        loaded = 0
        for path in sorted(self._dir.glob("*.json")):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
                logger.warning("Failed to read session file %s: %s", path, exc)
                continue

            problem = validate_session_record(data)
            if problem is not None:
                logger.warning("Invalid session structure in %s, skipping: %s", path, problem)
                continue

            if path.stem != data["id"]:
                logger.warning(
                    "Session file %s does not match its id %r, skipping", path, data["id"],
                )
                continue
            try:
                session = _dict_to_session(data)
            except (KeyError, TypeError, ValueError, OverflowError, OSError) as exc:
                logger.warning("Cannot load session from %s, skipping: %s", path, exc)
                continue
            self._sessions[session.id] = session
            loaded += 1
            logger.debug("Loaded session %s", session.id)

        logger.info("Loaded %d sessions from %s", loaded, self._dir)
        return loaded

    # ── queries ──

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def get_active(self) -> Session | None:
        if self._active_id is None:
            return None
        return self._sessions.get(self._active_id)

    def list(self) -> list[Session]:
        """All sessions, most recently updated first."""
        return sorted(
            self._sessions.values(), key=lambda s: s.updated_at, reverse=True,
        )

    def most_recent(self) -> Session | None:
        sessions = self.list()
        return sessions[0] if sessions else None

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    # ── mutations ──

    def create(self, name: str | None = None) -> Session:
        """Start a new session and make it active."""
        session = Session(name=name) if name else Session()
        self._sessions[session.id] = session
        self._active_id = session.id
        logger.info("Created session %s (%s)", session.id, session.name)
        if self._max_sessions > 0:
            self.prune(self._max_sessions)
        return session

    def set_active(self, session_id: str) -> None:
        self._require(session_id)
        self._active_id = session_id

    def append_message(self, session_id: str, message: ChatMessage) -> None:
        session = self._require(session_id)
        if session.has_message(message.id):
            raise DuplicateMessageError(session_id, message.id)
        session.messages.append(message)
        session.touch()
        self._autosave(session)

    def _require_message(self, session_id: str, message_id: str) -> tuple[Session, ChatMessage]:
        session = self._require(session_id)
        message = session.find_message(message_id)
        if message is None:
            raise MessageNotFoundError(session_id, message_id)
        return session, message

    def update_message(self, session_id: str, message_id: str, content: str) -> None:
        """Replace a message's text while it streams. Not persisted."""
        _, message = self._require_message(session_id, message_id)
        message.content = content
        message.streaming = True

    def finalize_message(
        self,
        session_id: str,
        message_id: str,
        *,
        content: str | None = None,
        tool_calls: list[ToolCall] | None = None,
        error: str | None = None,
    ) -> ChatMessage:
        """Settle a streamed message and persist the session."""
        session, message = self._require_message(session_id, message_id)
        if content is not None:
            message.content = content
        if tool_calls is not None:
            message.tool_calls = tool_calls
        message.error = error
        message.streaming = False
        session.touch()
        self._autosave(session)
        return message

    def set_external_session_id(self, session_id: str, external_id: str | None) -> None:
        """Record the agent's resumable id. An empty value never clears it."""
        session = self._require(session_id)
        if not external_id:
            return
        if session.external_session_id == external_id:
            return
        if session.external_session_id:
            logger.info(
                "Session %s external id %s -> %s",
                session_id, session.external_session_id, external_id,
            )
        session.external_session_id = external_id
        self._autosave(session)

    def delete(self, session_id: str) -> bool:
        """Remove a session from memory and disk.

        Deleting the active session leaves no session active; starting
        a replacement is up to the caller.
        """
        if not is_safe_session_id(session_id):
            logger.warning("Refusing to delete session with unsafe id %r", session_id)
            return False
        session = self._sessions.pop(session_id, None)
        if self._active_id == session_id:
            self._active_id = None
        path = self._path_for(session_id)
        try:
            removed = durable_unlink(path)
        except OSError as exc:
            raise SessionPersistError(session_id, str(path), str(exc)) from exc
        if session is not None or removed:
            logger.info("Deleted session %s", session_id)
        return session is not None or removed

    def prune(self, max_sessions: int) -> list[str]:
        """Delete the oldest sessions beyond *max_sessions*, sparing the active one."""
        victims = [s.id for s in self.list() if s.id != self._active_id]
        excess = len(self._sessions) - max_sessions
        if excess <= 0:
            return []
        removed = victims[len(victims) - excess:] if excess < len(victims) else victims
        for session_id in removed:
            self.delete(session_id)
        if removed:
            logger.info("Pruned %d old sessions", len(removed))
        return removed

    # ── persistence ──

    def save(self, session: Session) -> Path:
        path = self._path_for(session.id)
        try:
            atomic_write_json(path, _session_to_dict(session))
        except OSError as exc:
            logger.error("Failed to save session %s: %s", session.id, exc)
            raise SessionPersistError(session.id, str(path), str(exc)) from exc
        logger.debug("Session saved to %s", path)
        return path

    def save_all(self) -> int:
        for session in self._sessions.values():
            self.save(session)
        return len(self._sessions)

    def _autosave(self, session: Session) -> None:
        if self._auto_save:
            self.save(session)


def _to_millis(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def _from_millis(value: float) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def _tool_call_to_dict(call: ToolCall) -> dict[str, Any]:
    d: dict[str, Any] = {"id": call.id, "name": call.name, "input": call.input}
    if call.output is not None:
        d["output"] = call.output
    if call.is_error:
        d["isError"] = True
    if call.duration is not None:
        d["duration"] = int(call.duration * 1000)
    return d


def _dict_to_tool_call(data: dict[str, Any]) -> ToolCall:
    duration = data.get("duration")
    return ToolCall(
        id=data["id"],
        name=str(data.get("name") or ""),
        input=data.get("input") if isinstance(data.get("input"), dict) else {},
        output=data.get("output"),
        is_error=bool(data.get("isError", False)),
        duration=duration / 1000 if isinstance(duration, (int, float)) else None,
    )


def _message_to_dict(msg: ChatMessage) -> dict[str, Any]:
    d: dict[str, Any] = {
        "id": msg.id,
        "role": msg.role.value,
        "content": msg.content,
        "timestamp": _to_millis(msg.timestamp),
    }
    if msg.tool_calls:
        d["toolCalls"] = [_tool_call_to_dict(tc) for tc in msg.tool_calls]
    if msg.streaming:
        d["isStreaming"] = True
    if msg.error is not None:
        d["error"] = msg.error
    return d


def _dict_to_message(data: dict[str, Any]) -> ChatMessage:
    timestamp = data.get("timestamp")
    msg = ChatMessage(
        role=MessageRole(data["role"]),
        content=data.get("content") or "",
        id=data["id"],
        tool_calls=[_dict_to_tool_call(tc) for tc in data.get("toolCalls") or ()],
        streaming=bool(data.get("isStreaming", False)),
        error=data.get("error"),
    )
    if timestamp is not None:
        msg.timestamp = _from_millis(timestamp)
    return msg


def _context_to_dict(ref: ContextReference) -> dict[str, Any]:
    d: dict[str, Any] = {"type": ref.type, "content": ref.content}
    for key in ("path", "title", "url"):
        value = getattr(ref, key)
        if value is not None:
            d[key] = value
    return d


def _dict_to_context(data: Any) -> ContextReference | None:
    if not isinstance(data, dict) or not isinstance(data.get("type"), str):
        return None
    return ContextReference(
        type=data["type"],
        content=str(data.get("content") or ""),
        path=data.get("path"),
        title=data.get("title"),
        url=data.get("url"),
    )


def _session_to_dict(session: Session) -> dict[str, Any]:
    d: dict[str, Any] = {
        "id": session.id,
        "name": session.name,
        "messages": [_message_to_dict(m) for m in session.messages],
        "context": [_context_to_dict(c) for c in session.context],
        "createdAt": _to_millis(session.created_at),
        "updatedAt": _to_millis(session.updated_at),
    }
    if session.external_session_id:
        d["claudeSessionId"] = session.external_session_id
    if session.note_path:
        d["notePath"] = session.note_path
    return d


def _dict_to_session(data: dict[str, Any]) -> Session:
    """Build a Session from a record that passed validation."""
    context = [ref for ref in map(_dict_to_context, data.get("context") or ()) if ref]
    session = Session(
        id=data["id"],
        external_session_id=data.get("claudeSessionId") or None,
        messages=[_dict_to_message(m) for m in data["messages"]],
        context=context,
        created_at=_from_millis(data["createdAt"]),
        updated_at=_from_millis(data["updatedAt"]),
        note_path=data.get("notePath"),
    )
    if data.get("name"):
        session.name = data["name"]
    return session
