"""Unit tests for stream-json normalization and tool call correlation."""
from __future__ import annotations

import json

from vaultchat.engine.events import (
    AssistantText,
    FinalResult,
    StreamEvent,
    SystemInit,
    Thinking,
    ToolCallEvent,
    ToolResultEvent,
    dict_to_event,
    event_text,
    event_to_dict,
)
from vaultchat.engine.stream_parser import StreamParser, ToolCallCorrelator


def _line(record: dict) -> str:
    return json.dumps(record)


def _assistant(*blocks: dict, session_id: str = "s1") -> str:
    return _line({
        "type": "assistant",
        "session_id": session_id,
        "message": {"content": list(blocks)},
    })


def _tool_result(call_id: str, content, *, is_error=None, session_id: str = "s1") -> str:
    block = {"type": "tool_result", "tool_use_id": call_id, "content": content}
    if is_error is not None:
        block["is_error"] = is_error
    return _line({
        "type": "user",
        "session_id": session_id,
        "message": {"content": [block]},
    })


# ── malformed input ──


class TestMalformedLines:
    def test_blank_lines_yield_nothing(self) -> None:
        parser = StreamParser()
        assert parser.parse("") == []
        assert parser.parse("   \t ") == []

    def test_non_json_yields_nothing(self) -> None:
        assert StreamParser().parse("not json at all {") == []

    def test_json_without_type_yields_nothing(self) -> None:
        parser = StreamParser()
        assert parser.parse(_line({"session_id": "s1"})) == []
        assert parser.parse(_line({"type": 3})) == []
        assert parser.parse("[1, 2, 3]") == []
        assert parser.parse('"assistant"') == []

    def test_surrounding_whitespace_is_ignored(self) -> None:
        events = StreamParser().parse("  " + _line({"type": "result", "result": "ok"}) + "\r")
        assert events == [FinalResult(text="ok")]


# ── record types ──


class TestRecordTypes:
    def test_system_init(self) -> None:
        events = StreamParser().parse(
            _line({"type": "system", "subtype": "init", "session_id": "abc"})
        )
        assert events == [SystemInit(session_id="abc")]

    def test_system_without_init_is_bare(self) -> None:
        events = StreamParser().parse(_line({"type": "system", "subtype": "other"}))
        assert len(events) == 1
        assert type(events[0]) is StreamEvent
        assert events[0].event_type == "system"

    def test_assistant_blocks_in_order(self) -> None:
        events = StreamParser().parse(_assistant(
            {"type": "thinking", "thinking": "let me look"},
            {"type": "text", "text": "Reading the note."},
            {"type": "tool_use", "id": "t1", "name": "Read", "input": {"file_path": "a.md"}},
        ))
        assert [type(e) for e in events] == [Thinking, AssistantText, ToolCallEvent]
        assert events[0].text == "let me look"
        assert events[1].text == "Reading the note."
        assert events[2].call_id == "t1"
        assert events[2].name == "Read"
        assert events[2].input == {"file_path": "a.md"}
        assert all(e.session_id == "s1" for e in events)

    def test_assistant_with_no_mapped_blocks_is_bare(self) -> None:
        events = StreamParser().parse(_assistant(
            {"type": "text", "text": ""},
            {"type": "image"},
        ))
        assert len(events) == 1
        assert events[0].event_type == "assistant"
        assert events[0].session_id == "s1"

    def test_assistant_without_content_list_is_bare(self) -> None:
        events = StreamParser().parse(
            _line({"type": "assistant", "message": {"content": "plain"}})
        )
        assert [e.event_type for e in events] == ["assistant"]

    def test_result_with_text(self) -> None:
        events = StreamParser().parse(
            _line({"type": "result", "result": "Done.", "session_id": "s9"})
        )
        assert events == [FinalResult(session_id="s9", text="Done.")]

    def test_result_without_text_is_bare(self) -> None:
        events = StreamParser().parse(_line({"type": "result", "subtype": "error_max_turns"}))
        assert [e.event_type for e in events] == ["result"]
        assert event_text(events[0]) is None

    def test_unknown_type_is_bare(self) -> None:
        events = StreamParser().parse(_line({"type": "rate_limit", "session_id": "x"}))
        assert events == [StreamEvent(event_type="rate_limit", session_id="x")]

    def test_empty_session_id_becomes_none(self) -> None:
        events = StreamParser().parse(_line({"type": "result", "result": "a", "session_id": ""}))
        assert events[0].session_id is None

    def test_user_without_tool_results_yields_nothing(self) -> None:
        parser = StreamParser()
        record = {"type": "user", "message": {"content": [{"type": "text", "text": "hi"}]}}
        assert parser.parse(_line(record)) == []
        assert parser.parse(_line({"type": "user", "message": {"content": "hi"}})) == []


# ── correlation ──


class TestToolCorrelation:
    def test_result_carries_name_and_input(self) -> None:
        parser = StreamParser()
        parser.parse(_assistant(
            {"type": "tool_use", "id": "t1", "name": "Read", "input": {"file_path": "a.md"}},
        ))
        assert "t1" in parser.correlator

        events = parser.parse(_tool_result("t1", "file body"))
        assert events == [ToolResultEvent(
            session_id="s1",
            call_id="t1",
            name="Read",
            input={"file_path": "a.md"},
            output="file body",
            is_error=False,
        )]
        assert "t1" not in parser.correlator

    def test_second_result_for_same_id_is_uncorrelated(self) -> None:
        parser = StreamParser()
        parser.parse(_assistant({"type": "tool_use", "id": "t1", "name": "Read", "input": {}}))
        parser.parse(_tool_result("t1", "first"))
        events = parser.parse(_tool_result("t1", "second"))
        assert events[0].name is None
        assert events[0].input is None
        assert events[0].output == "second"

    def test_unknown_id_still_yields_result(self) -> None:
        events = StreamParser().parse(_tool_result("ghost", "out"))
        assert len(events) == 1
        assert events[0].call_id == "ghost"
        assert events[0].name is None

    def test_replayed_tool_use_is_not_reregistered(self) -> None:
        parser = StreamParser()
        block = {"type": "tool_use", "id": "t1", "name": "Read", "input": {}}
        parser.parse(_assistant(block))
        parser.parse(_tool_result("t1", "done"))
        replayed = parser.parse(_assistant(block))
        assert isinstance(replayed[0], ToolCallEvent)
        assert "t1" not in parser.correlator

    def test_block_is_error_wins_over_record(self) -> None:
        parser = StreamParser()
        record = {
            "type": "user",
            "is_error": True,
            "message": {"content": [
                {"type": "tool_result", "tool_use_id": "a", "content": "x", "is_error": False},
                {"type": "tool_result", "tool_use_id": "b", "content": "y"},
            ]},
        }
        events = parser.parse(_line(record))
        assert [e.is_error for e in events] == [False, True]

    def test_error_result(self) -> None:
        parser = StreamParser()
        parser.parse(_assistant({"type": "tool_use", "id": "t2", "name": "Bash", "input": {}}))
        events = parser.parse(_tool_result("t2", "command not found", is_error=True))
        assert events[0].is_error is True
        assert events[0].name == "Bash"

    def test_list_content_is_flattened(self) -> None:
        events = StreamParser().parse(_tool_result("t1", [
            {"type": "text", "text": "line one"},
            {"type": "text", "text": "line two"},
            {"type": "image", "source": {}},
        ]))
        assert events[0].output == "line one\nline two"

    def test_missing_content_is_empty_output(self) -> None:
        events = StreamParser().parse(_tool_result("t1", None))
        assert events[0].output == ""

    def test_result_block_without_id_is_skipped(self) -> None:
        record = {"type": "user", "message": {"content": [
            {"type": "tool_result", "content": "orphan"},
        ]}}
        assert StreamParser().parse(_line(record)) == []

    def test_standalone_tool_use_registers(self) -> None:
        parser = StreamParser()
        events = parser.parse(_line({
            "type": "tool_use", "id": "t5", "tool_name": "Grep", "input": {"pattern": "x"},
        }))
        assert events == [ToolCallEvent(call_id="t5", name="Grep", input={"pattern": "x"})]
        result = parser.parse(_tool_result("t5", "match"))
        assert result[0].name == "Grep"

    def test_non_dict_input_becomes_empty(self) -> None:
        events = StreamParser().parse(_assistant(
            {"type": "tool_use", "id": "t1", "name": "Read", "input": "oops"},
        ))
        assert events[0].input == {}

    def test_reset_forgets_pending_calls(self) -> None:
        parser = StreamParser()
        parser.parse(_assistant({"type": "tool_use", "id": "t1", "name": "Read", "input": {}}))
        parser.reset()
        assert len(parser.correlator) == 0
        assert parser.parse(_tool_result("t1", "late"))[0].name is None


class TestCorrelator:
    def test_register_resolve(self) -> None:
        table = ToolCallCorrelator()
        assert table.register("a", "Read", {"file_path": "x"})
        assert len(table) == 1
        assert table.resolve("a") == ("Read", {"file_path": "x"})
        assert table.resolve("a") is None
        assert len(table) == 0

    def test_register_refuses_empty_and_repeated_ids(self) -> None:
        table = ToolCallCorrelator()
        assert not table.register("", "Read", {})
        assert table.register("a", "Read", {})
        assert not table.register("a", "Edit", {})
        assert table.resolve("a") == ("Read", {})

    def test_reset_allows_reuse(self) -> None:
        table = ToolCallCorrelator()
        table.register("a", "Read", {})
        table.resolve("a")
        table.reset()
        assert table.register("a", "Write", {})


# ── event dicts ──


class TestEventDicts:
    def test_round_trip_for_tool_result(self) -> None:
        event = ToolResultEvent(
            session_id="s", call_id="t1", name="Read", input={"a": 1},
            output="x", is_error=True,
        )
        assert dict_to_event(event_to_dict(event)) == event

    def test_unknown_event_type_is_bare(self) -> None:
        event = dict_to_event({"event_type": "weird", "session_id": "s", "extra": 1})
        assert type(event) is StreamEvent
        assert event.event_type == "weird"

    def test_event_text(self) -> None:
        assert event_text(AssistantText(text="a")) == "a"
        assert event_text(FinalResult(text="b")) == "b"
        assert event_text(Thinking(text="c")) is None
