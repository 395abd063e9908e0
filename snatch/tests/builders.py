"""Record builders shared by the test modules."""
from __future__ import annotations

import json
from typing import Any, Optional

SESSION_ID = "session-0001"
VERSION = "1.0.42"


def ts(second: int) -> str:
    minutes, seconds = divmod(second, 60)
    return f"2026-02-16T10:{minutes:02d}:{seconds:02d}Z"


def user_record(
    uuid: str,
    parent: Optional[str] = None,
    *,
    content: Any = "hello",
    second: int = 0,
    sidechain: Optional[bool] = None,
    tool_use_result: Any = None,
    **extra: Any,
) -> dict[str, Any]:
    record: dict[str, Any] = {
        "type": "user",
        "uuid": uuid,
        "parentUuid": parent,
        "sessionId": SESSION_ID,
        "timestamp": ts(second),
        "version": VERSION,
        "cwd": "/tmp/project",
        "message": {"role": "user", "content": content},
    }
    if sidechain is not None:
        record["isSidechain"] = sidechain
    if tool_use_result is not None:
        record["toolUseResult"] = tool_use_result
    record.update(extra)
    return record


def assistant_record(
    uuid: str,
    parent: Optional[str],
    *,
    content: Optional[list[dict[str, Any]]] = None,
    text: str = "ok",
    model: str = "claude-sonnet-4",
    usage: Optional[dict[str, Any]] = None,
    second: int = 1,
    sidechain: Optional[bool] = None,
    **extra: Any,
) -> dict[str, Any]:
    record: dict[str, Any] = {
        "type": "assistant",
        "uuid": uuid,
        "parentUuid": parent,
        "sessionId": SESSION_ID,
        "timestamp": ts(second),
        "version": VERSION,
        "requestId": f"req_{uuid}",
        "message": {
            "id": f"msg_{uuid}",
            "type": "message",
            "role": "assistant",
            "model": model,
            "content": content if content is not None else [{"type": "text", "text": text}],
            "stop_reason": "end_turn",
            "stop_sequence": None,
            "usage": usage if usage is not None else {"input_tokens": 10, "output_tokens": 5},
        },
    }
    if sidechain is not None:
        record["isSidechain"] = sidechain
    record.update(extra)
    return record


def system_record(
    uuid: str,
    parent: Optional[str],
    *,
    content: str = "Conversation compacted",
    second: int = 2,
    **extra: Any,
) -> dict[str, Any]:
    record: dict[str, Any] = {
        "type": "system",
        "uuid": uuid,
        "parentUuid": parent,
        "sessionId": SESSION_ID,
        "timestamp": ts(second),
        "version": VERSION,
        "subtype": "informational",
        "content": content,
        "level": "info",
    }
    record.update(extra)
    return record


def summary_record(summary: str, leaf_uuid: Optional[str] = None) -> dict[str, Any]:
    record: dict[str, Any] = {"type": "summary", "summary": summary}
    if leaf_uuid is not None:
        record["leafUuid"] = leaf_uuid
    return record


def tool_use(tool_id: str, name: str = "Read", **arguments: Any) -> dict[str, Any]:
    return {"type": "tool_use", "id": tool_id, "name": name, "input": arguments or {"file_path": "/tmp/x"}}


def tool_result(tool_id: str, content: Any = "done", is_error: Optional[bool] = None) -> dict[str, Any]:
    block: dict[str, Any] = {"type": "tool_result", "tool_use_id": tool_id, "content": content}
    if is_error is not None:
        block["is_error"] = is_error
    return block


def to_jsonl(records: list[dict[str, Any]]) -> str:
    return "\n".join(json.dumps(record, ensure_ascii=False) for record in records) + "\n"


def linear_session() -> list[dict[str, Any]]:
    """user, assistant (tool call), user (tool result), assistant, user, assistant."""
    return [
        user_record("u0", None, content="Read the README", second=0),
        assistant_record("a1", "u0", content=[{"type": "text", "text": "Reading it."}, tool_use("toolu_1")], second=1),
        user_record(
            "u2",
            "a1",
            content=[tool_result("toolu_1", "# README")],
            tool_use_result={"type": "text", "file": {"filePath": "/tmp/x"}},
            second=2,
        ),
        assistant_record("a3", "u2", text="It is a README.", second=3),
        user_record("u4", "a3", content="Thanks", second=4),
        assistant_record("a5", "u4", text="You're welcome.", second=5),
    ]


def thinking_session() -> list[dict[str, Any]]:
    return [
        user_record("u0", None, content="What is 2 + 2?", second=0),
        assistant_record(
            "a1",
            "u0",
            content=[
                {"type": "thinking", "thinking": "Adding two and two gives four.", "signature": "sig"},
                {"type": "text", "text": "4"},
            ],
            second=1,
        ),
    ]


def branching_session() -> list[dict[str, Any]]:
    """Two assistant replies to u0; the second opens a sidechain."""
    return [
        user_record("u0", None, content="Plan the change", second=0),
        assistant_record("a1", "u0", text="Main answer", second=1),
        assistant_record("a1b", "u0", text="Sub-agent answer", second=2, sidechain=True),
        user_record("u2", "a1", content="Go on", second=3),
        assistant_record("a3", "u2", text="Done", second=4),
        user_record("u4", "a1b", content="Sub-agent follow up", second=5),
    ]


def system_summary_session() -> list[dict[str, Any]]:
    return [
        summary_record("Refactoring the parser", leaf_uuid="a1"),
        user_record("u0", None, content="Start", second=0),
        assistant_record("a1", "u0", text="Started", second=1),
        system_record("s2", "a1", second=2),
        user_record("u3", "s2", content="Continue", second=3),
    ]
