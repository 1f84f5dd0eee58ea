"""Normalizer for ``claude -p --output-format stream-json`` lines.

The CLI emits one JSON record per line. Narration, tool invocations
and tool completions are nested inside generic ``assistant`` / ``user``
message envelopes; ``StreamParser`` flattens them into the closed set
of events in :mod:`vaultchat.engine.events`.

Record shapes handled:
  system: ``subtype == "init"`` marks session bootstrap
  assistant: ``message.content`` holds thinking / text / tool_use blocks
  user: ``message.content`` holds tool_result blocks
  result: ``result`` holds the final answer text
  tool_use: standalone tool invocation (older CLI builds)
"""
from __future__ import annotations

import json
import logging
from typing import Any

from .events import (
    AssistantText,
    FinalResult,
    StreamEvent,
    SystemInit,
    Thinking,
    ToolCallEvent,
    ToolResultEvent,
)

logger = logging.getLogger(__name__)


class ToolCallCorrelator:
    """Remembers tool calls until their results arrive.

    Maps call id → (name, input). A call id is registered at most once
    between resets, so a replayed ``tool_use`` block cannot resurrect
    an entry whose result was already consumed.
    """

    def __init__(self) -> None:
        self._active: dict[str, tuple[str, dict[str, Any]]] = {}
        self._seen: set[str] = set()

    def register(self, call_id: str, name: str, tool_input: dict[str, Any]) -> bool:
        if not call_id or call_id in self._seen:
            return False
        self._seen.add(call_id)
        self._active[call_id] = (name, tool_input)
        return True

    def resolve(self, call_id: str) -> tuple[str, dict[str, Any]] | None:
        """Pop and return the entry for *call_id*, or None if unknown."""
        return self._active.pop(call_id, None)

    def reset(self) -> None:
        self._active.clear()
        self._seen.clear()

    def __contains__(self, call_id: object) -> bool:
        return call_id in self._active

    def __len__(self) -> int:
        return len(self._active)


def _content_blocks(raw: dict[str, Any]) -> list[dict[str, Any]] | None:
    message = raw.get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    if not isinstance(content, list):
        return None
    return [block for block in content if isinstance(block, dict)]


def _tool_output_text(content: Any) -> str:
    """Flatten a tool_result ``content`` payload to plain text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict):
                text = item.get("text")
                if isinstance(text, str):
                    parts.append(text)
            elif isinstance(item, str):
                parts.append(item)
        return "\n".join(parts)
    return json.dumps(content)


def _as_input(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


class StreamParser:
    """Turns one raw protocol line into zero or more semantic events.

    Never raises for bad input: blank lines, non-JSON text and JSON
    values that are not typed records all yield an empty list.
    """

    def __init__(self) -> None:
        self.correlator = ToolCallCorrelator()

    def reset(self) -> None:
        """Forget all pending tool calls. Called at the start of each run."""
        self.correlator.reset()

    def parse(self, line: str) -> list[StreamEvent]:
        stripped = line.strip()
        if not stripped:
            return []
        try:
            raw = json.loads(stripped)
        except (json.JSONDecodeError, ValueError):
            logger.debug("Skipping non-JSON line: %.80s", stripped)
            return []
        if not isinstance(raw, dict) or not isinstance(raw.get("type"), str):
            logger.debug("Skipping untyped record: %.80s", stripped)
            return []
        return self._normalize(raw)

    def _normalize(self, raw: dict[str, Any]) -> list[StreamEvent]:
        rtype = raw["type"]
        session_id = raw.get("session_id") or None

        if rtype == "assistant":
            blocks = _content_blocks(raw)
            if blocks is not None:
                events = self._assistant_blocks(blocks, session_id)
                if events:
                    return events
            return [StreamEvent(event_type=rtype, session_id=session_id)]

        if rtype == "user":
            blocks = _content_blocks(raw)
            if blocks is None:
                return []
            return self._tool_results(blocks, raw, session_id)

        if rtype == "result":
            result = raw.get("result")
            if isinstance(result, str) and result:
                return [FinalResult(session_id=session_id, text=result)]

        if rtype == "system" and raw.get("subtype") == "init":
            return [SystemInit(session_id=session_id)]

        if rtype == "tool_use":
            call_id = str(raw.get("id") or "")
            name = str(raw.get("name") or raw.get("tool_name") or "")
            tool_input = _as_input(raw.get("input"))
            self.correlator.register(call_id, name, tool_input)
            return [ToolCallEvent(
                session_id=session_id,
                call_id=call_id,
                name=name,
                input=tool_input,
            )]

        return [StreamEvent(event_type=rtype, session_id=session_id)]

    def _assistant_blocks(
        self,
        blocks: list[dict[str, Any]],
        session_id: str | None,
    ) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        for block in blocks:
            btype = block.get("type")
            if btype == "thinking":
                thinking = block.get("thinking")
                if isinstance(thinking, str) and thinking:
                    events.append(Thinking(session_id=session_id, text=thinking))
            elif btype == "text":
                text = block.get("text")
                if isinstance(text, str) and text:
                    events.append(AssistantText(session_id=session_id, text=text))
            elif btype == "tool_use":
                call_id = str(block.get("id") or "")
                name = str(block.get("name") or "")
                tool_input = _as_input(block.get("input"))
                if call_id and name:
                    if not self.correlator.register(call_id, name, tool_input):
                        logger.debug("Tool call %s already registered", call_id)
                events.append(ToolCallEvent(
                    session_id=session_id,
                    call_id=call_id,
                    name=name,
                    input=tool_input,
                ))
        return events

    def _tool_results(
        self,
        blocks: list[dict[str, Any]],
        raw: dict[str, Any],
        session_id: str | None,
    ) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        for block in blocks:
            if block.get("type") != "tool_result":
                continue
            call_id = block.get("tool_use_id")
            if not call_id:
                continue
            call_id = str(call_id)
            entry = self.correlator.resolve(call_id)
            if entry is None:
                logger.debug("Tool result for unknown call id %s", call_id)
                name, tool_input = None, None
            else:
                name, tool_input = entry
            is_error = block.get("is_error", raw.get("is_error", False))
            events.append(ToolResultEvent(
                session_id=session_id,
                call_id=call_id,
                name=name,
                input=tool_input,
                output=_tool_output_text(block.get("content")),
                is_error=bool(is_error),
            ))
        return events
