"""Caller-side turn loop tying the supervisor to the session store.

One ``send()`` per user message:

* while a run is in flight the text is parked in the supervisor's
  input queue and recorded in the transcript;
* otherwise the text is recorded, an assistant reply is opened and
  streamed into as partial text arrives, a run is started resuming the
  session's external id, the reply is settled with its tool calls (or
  the failure), and any input queued during the run is replayed as a
  new resumed run.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from vaultchat.shared.models.message import ChatMessage, MessageRole

from .config import EngineConfig
from .errors import VaultChatError
from .events import StreamEvent, ToolCallEvent, ToolResultEvent
from .supervisor import ProcessSupervisor, RunOutcome, RunRequest

if TYPE_CHECKING:
    from vaultchat.shared.models.session import Session
    from vaultchat.shared.services.session_store import SessionStore

logger = logging.getLogger(__name__)

CONTEXT_LIMIT_PHRASES = (
    "context",
    "token",
    "too long",
    "max_tokens",
    "length_exceeded",
)


def is_context_limit_error(detail: str | None) -> bool:
    """True when a failure looks like the conversation outgrew the model.

    Resuming such a session fails again, so the caller should offer a
    new session instead of a retry.
    """
    if not detail:
        return False
    lowered = detail.lower()
    return any(phrase in lowered for phrase in CONTEXT_LIMIT_PHRASES)


@dataclass
class TurnResult:
    """What happened to one user message."""
    session_id: str
    queued: bool = False
    outcome: RunOutcome | None = None
    reply: ChatMessage | None = None
    follow_ups: list[TurnResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        if self.queued:
            return True
        return self.outcome is not None and self.outcome.success

    @property
    def error(self) -> str | None:
        return self.outcome.error if self.outcome is not None else None

    @property
    def context_limit(self) -> bool:
        return not self.success and is_context_limit_error(self.error)


class ChatController:
    """Drives conversations for a single supervisor and store."""

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        store: SessionStore,
        config: EngineConfig,
    ) -> None:
        self._supervisor = supervisor
        self._store = store
        self._config = config
        # (session id, message id) of the reply being streamed
        self._live: tuple[str, str] | None = None
        self._tool_started: dict[str, float] = {}
        self._tool_durations: dict[str, float] = {}
        self._subscriptions = [
            supervisor.on("partial", self._on_partial),
            supervisor.on("message", self._on_event),
        ]

    @property
    def supervisor(self) -> ProcessSupervisor:
        return self._supervisor

    @property
    def store(self) -> SessionStore:
        return self._store

    def close(self) -> None:
        """Stop listening to the supervisor."""
        for sub in self._subscriptions:
            sub.cancel()
        self._subscriptions.clear()

    def ensure_session(self) -> Session:
        """Return the active session, resuming the latest or starting one."""
        session = self._store.get_active()
        if session is not None:
            return session
        session = self._store.most_recent()
        if session is not None:
            self._store.set_active(session.id)
            return session
        return self._store.create()

    def new_session(self, name: str | None = None) -> Session:
        return self._store.create(name)

    async def send(
        self,
        prompt: str,
        *,
        append_system_prompt: str | None = None,
    ) -> TurnResult:
        session = self.ensure_session()
        user_msg = ChatMessage(role=MessageRole.USER, content=prompt)

        if self._supervisor.is_running():
            if self._supervisor.queue_input(prompt):
                self._store.append_message(session.id, user_msg)
                return TurnResult(session_id=session.id, queued=True)
            # Run finished between the check and the offer; fall through.

        self._store.append_message(session.id, user_msg)
        result = await self._run_turn(session, prompt, append_system_prompt)

        queued = self._supervisor.get_and_clear_queued_input()
        while queued:
            logger.info("Sending queued follow-up for session %s", session.id)
            follow_up = await self._run_turn(session, queued, append_system_prompt)
            result.follow_ups.append(follow_up)
            queued = self._supervisor.get_and_clear_queued_input()
        return result

    # ── run listeners ──

    def _on_partial(self, text: str) -> None:
        if self._live is not None:
            self._store.update_message(*self._live, text)

    def _on_event(self, event: StreamEvent) -> None:
        if isinstance(event, ToolCallEvent) and event.call_id:
            self._tool_started.setdefault(event.call_id, time.monotonic())
        elif isinstance(event, ToolResultEvent):
            started = self._tool_started.pop(event.call_id, None)
            if started is not None:
                self._tool_durations[event.call_id] = time.monotonic() - started

    async def _run_turn(
        self,
        session: Session,
        prompt: str,
        append_system_prompt: str | None,
    ) -> TurnResult:
        request = RunRequest(
            prompt=prompt,
            resume_session_id=session.external_session_id,
            allowed_tools=tuple(self._config.default_allowed_tools),
            max_turns=self._config.max_turns,
            append_system_prompt=append_system_prompt,
        )
        reply = ChatMessage(role=MessageRole.ASSISTANT, content="", streaming=True)
        self._store.append_message(session.id, reply)
        self._live = (session.id, reply.id)
        self._tool_started.clear()
        self._tool_durations.clear()
        try:
            outcome = await self._supervisor.execute(request)
        except VaultChatError as exc:
            self._live = None
            self._store.finalize_message(session.id, reply.id, error=str(exc))
            raise
        self._live = None
        logger.debug(
            "Run for session %s: success=%s final=%.50s",
            session.id, outcome.success, outcome.final_text,
        )

        if outcome.session_id:
            self._store.set_external_session_id(session.id, outcome.session_id)

        tool_calls = outcome.tool_calls()
        for call in tool_calls:
            call.duration = self._tool_durations.get(call.id)
        if not outcome.success:
            logger.warning("Run failed for session %s: %s", session.id, outcome.error)
        self._store.finalize_message(
            session.id,
            reply.id,
            content=outcome.final_text,
            tool_calls=tool_calls,
            error=None if outcome.success else (outcome.error or "Run failed"),
        )
        return TurnResult(session_id=session.id, outcome=outcome, reply=reply)
