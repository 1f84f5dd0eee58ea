from __future__ import annotations

import pytest

from vaultchat.shared.services.session_validation import (
    is_safe_session_id,
    is_valid_session_record,
    validate_session_record,
)


def _valid() -> dict:
    return {
        "id": "session-1",
        "name": "Chat",
        "messages": [{"id": "m1", "role": "user", "content": "hi", "timestamp": 1}],
        "createdAt": 1,
        "updatedAt": 2.5,
    }


def test_minimal_record_is_valid() -> None:
    assert validate_session_record(_valid()) is None
    assert is_valid_session_record({
        "id": "s", "messages": [], "createdAt": 0, "updatedAt": 0,
    })


@pytest.mark.parametrize("value", [None, "string", 3, [], True])
def test_non_object_is_invalid(value) -> None:
    assert not is_valid_session_record(value)


@pytest.mark.parametrize(
    "field, value",
    [
        ("id", ""),
        ("id", 7),
        ("messages", "nope"),
        ("messages", None),
        ("createdAt", "2026-01-01"),
        ("createdAt", True),
        ("updatedAt", None),
        ("name", 4),
        ("claudeSessionId", 12),
        ("context", {}),
    ],
)
def test_bad_top_level_field(field: str, value) -> None:
    record = _valid()
    record[field] = value
    assert validate_session_record(record) is not None


def test_missing_required_field() -> None:
    for field in ("id", "messages", "createdAt", "updatedAt"):
        record = _valid()
        del record[field]
        assert not is_valid_session_record(record), field


@pytest.mark.parametrize(
    "message",
    [
        "not a dict",
        {"role": "user", "content": "x"},
        {"id": "m", "role": "tool", "content": "x"},
        {"id": "m", "role": "user", "content": 5},
        {"id": "m", "role": "user", "content": "x", "timestamp": "later"},
        {"id": "m", "role": "user", "content": "x", "toolCalls": {}},
        {"id": "m", "role": "user", "content": "x", "toolCalls": [{"name": "Read"}]},
    ],
)
def test_bad_message(message) -> None:
    record = _valid()
    record["messages"] = [message]
    assert not is_valid_session_record(record)


def test_system_role_is_allowed() -> None:
    record = _valid()
    record["messages"].append({"id": "m2", "role": "system", "content": "note"})
    assert is_valid_session_record(record)


def test_problem_names_the_message() -> None:
    record = _valid()
    record["messages"].append({"id": "m2", "role": "bot"})
    assert "message 1" in validate_session_record(record)


@pytest.mark.parametrize("field", ["createdAt", "updatedAt"])
@pytest.mark.parametrize("value", [float("inf"), float("nan"), 1e20, 10**400])
def test_unrepresentable_timestamps(field: str, value) -> None:
    record = _valid()
    record[field] = value
    assert "timestamp" in validate_session_record(record)


def test_unrepresentable_message_timestamp() -> None:
    record = _valid()
    record["messages"][0]["timestamp"] = 1e300
    assert "message 0" in validate_session_record(record)


@pytest.mark.parametrize("session_id", ["../x", "a/b", ".hidden", "a\\b", "..", "a..b"])
def test_unsafe_ids(session_id: str) -> None:
    assert not is_safe_session_id(session_id)
    record = _valid()
    record["id"] = session_id
    assert not is_valid_session_record(record)


def test_generated_style_ids_are_safe() -> None:
    assert is_safe_session_id("session-1767600000000-a1b2c3d4e")
    assert is_safe_session_id("chat_2.backup")


def test_duplicate_message_ids() -> None:
    record = _valid()
    record["messages"].append({"id": "m1", "role": "assistant", "content": "again"})
    assert "repeats id" in validate_session_record(record)
