from __future__ import annotations

import json
import sys
from io import BytesIO
from pathlib import Path
from typing import Any

import pytest

from profix.llm import StaticClient
from profix.server import _read_message, _send_message, run_stdio_server, uri_to_path

_TEXT = '#include <stdio.h>\nint x\nprintf("%d", x)\n'


def _frame(payload: dict[str, object]) -> bytes:
    body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    return f"Content-Length: {len(body)}\r\n\r\n".encode("ascii") + body


class _DummyStdin:
    def __init__(self, data: bytes) -> None:
        self.buffer = BytesIO(data)


class _DummyStdout:
    def __init__(self) -> None:
        self.buffer = BytesIO()


def _unframe_all(data: bytes) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    cursor = 0
    while cursor < len(data):
        header_end = data.find(b"\r\n\r\n", cursor)
        if header_end == -1:
            break
        header = data[cursor:header_end].decode("ascii", errors="replace")
        length = None
        for line in header.splitlines():
            if line.lower().startswith("content-length:"):
                length = int(line.split(":", 1)[1].strip())
                break
        if length is None:
            break
        body_start = header_end + 4
        body_end = body_start + length
        payload = json.loads(data[body_start:body_end].decode("utf-8"))
        if isinstance(payload, dict):
            out.append(payload)
        cursor = body_end
    return out


def _run(monkeypatch: pytest.MonkeyPatch, frames: list[dict[str, object]], *, client: object = None) -> list[dict[str, Any]]:
    out = _DummyStdout()
    monkeypatch.setattr(sys, "stdin", _DummyStdin(b"".join(_frame(f) for f in frames)))
    monkeypatch.setattr(sys, "stdout", out)
    run_stdio_server(client=client)  # type: ignore[arg-type]
    return _unframe_all(out.buffer.getvalue())


def _result(messages: list[dict[str, Any]], msg_id: int) -> Any:
    return next(m for m in messages if m.get("id") == msg_id)["result"]


def _notices(messages: list[dict[str, Any]]) -> list[str]:
    return [m["params"]["message"] for m in messages if m.get("method") == "window/showMessage"]


def _open(uri: str, text: str = _TEXT) -> dict[str, object]:
    return {"jsonrpc": "2.0", "method": "textDocument/didOpen", "params": {"textDocument": {"uri": uri, "text": text}}}


def _analyze(msg_id: int, uri: str, start: int, end: int, **extra: object) -> dict[str, object]:
    params: dict[str, object] = {
        "textDocument": {"uri": uri},
        "range": {"start": {"line": start, "character": 0}, "end": {"line": end, "character": 0}},
        **extra,
    }
    return {"jsonrpc": "2.0", "id": msg_id, "method": "profix/analyzeSelection", "params": params}


def _apply(msg_id: int, uri: str, **params: object) -> dict[str, object]:
    return {
        "jsonrpc": "2.0",
        "id": msg_id,
        "method": "profix/applyFix",
        "params": {"textDocument": {"uri": uri}, **params},
    }


def _warning_reply() -> str:
    return json.dumps([{"relativeLine": 1, "severity": "Warning", "finding": "uninitialized", "fix": "int x = 0;"}])


def test_read_message_parses_framed_json(monkeypatch: pytest.MonkeyPatch) -> None:
    msg = {"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {"rootPath": "/tmp"}}
    monkeypatch.setattr(sys, "stdin", _DummyStdin(_frame(msg)))
    parsed = _read_message()
    assert parsed is not None
    assert parsed.get("method") == "initialize"


def test_read_message_returns_none_on_eof_or_garbage(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(sys, "stdin", _DummyStdin(b""))
    assert _read_message() is None
    monkeypatch.setattr(sys, "stdin", _DummyStdin(b"Content-Length: 3\r\n\r\n[1]"))
    assert _read_message() is None


def test_send_message_writes_content_length(monkeypatch: pytest.MonkeyPatch) -> None:
    out = _DummyStdout()
    monkeypatch.setattr(sys, "stdout", out)
    _send_message({"jsonrpc": "2.0", "id": 1, "result": {"ok": True}})
    raw = out.buffer.getvalue()
    assert raw.startswith(b"Content-Length: ")
    assert b'"ok":true' in raw


def test_uri_to_path_rejects_non_file_uris() -> None:
    assert uri_to_path("file:///tmp/a%20b.c") == Path("/tmp/a b.c")
    with pytest.raises(ValueError):
        uri_to_path("untitled:Untitled-1")


def test_analyze_then_apply_fix_round_trip(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    uri = (tmp_path / "main.c").as_uri()
    messages = _run(
        monkeypatch,
        [
            {"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {"rootUri": tmp_path.as_uri()}},
            _open(uri),
            _analyze(2, uri, 1, 2, response=_warning_reply()),
            _apply(3, uri, row=0, relativeLine=1, fixText="int x = 0;"),
            _apply(4, uri, row=0, relativeLine=1, fixText="int x = 0;"),
            {"jsonrpc": "2.0", "id": 5, "method": "shutdown", "params": {}},
            {"jsonrpc": "2.0", "method": "exit", "params": {}},
        ],
    )

    init = _result(messages, 1)
    assert init["serverInfo"]["name"] == "profix"

    analysis = _result(messages, 2)
    assert analysis["reused"] is False
    assert analysis["error"] is None
    assert analysis["summary"]["total"] == 1
    assert analysis["presented"][0]["relativeLine"] == 1

    applied = _result(messages, 3)
    assert applied["command"] == "fixSucceeded"
    assert applied["message"] == "Fix applied to line 1"
    assert applied["edit"] == {
        "range": {"start": {"line": 1, "character": 0}, "end": {"line": 1, "character": 5}},
        "newText": "int x = 0;",
    }
    assert applied["summary"]["fixed"] == 1
    assert applied["summary"]["remaining"] == 0

    # A repeated acknowledgment never counts twice or edits again.
    again = _result(messages, 4)
    assert again["command"] == "fixSucceeded"
    assert "edit" not in again
    assert again["summary"]["fixed"] == 1

    assert "Fix applied to line 1" in _notices(messages)


def test_apply_fix_failure_returns_row_to_unfixed(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    uri = (tmp_path / "main.c").as_uri()
    reply = json.dumps([{"relativeLine": 2, "severity": "Error", "finding": "bad", "fix": "x"}])
    messages = _run(
        monkeypatch,
        [
            _open(uri),
            _analyze(1, uri, 1, 2, response=reply),
            # The document shrank since the analysis; line 2 of the selection is gone.
            {
                "jsonrpc": "2.0",
                "method": "textDocument/didChange",
                "params": {"textDocument": {"uri": uri}, "contentChanges": [{"text": "#include <stdio.h>\n"}]},
            },
            _apply(2, uri, row=0, relativeLine=2, fixText="x"),
        ],
    )

    failed = _result(messages, 2)
    assert failed["command"] == "fixFailed"
    assert failed["error"] == "TargetLineNotFound"
    assert failed["reason"] == "Cannot find target line 2"
    assert failed["summary"]["rows"][0]["state"] == "unfixed"
    assert failed["summary"]["fixed"] == 0
    assert "Cannot find target line 2" in _notices(messages)


def test_apply_fix_rejects_invalid_message(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    uri = (tmp_path / "main.c").as_uri()
    messages = _run(
        monkeypatch,
        [
            _open(uri),
            _analyze(1, uri, 1, 2, response=_warning_reply()),
            _apply(2, uri, relativeLine="one", fixText=3),
            _apply(3, (tmp_path / "other.c").as_uri(), relativeLine=1, fixText="x"),
        ],
    )
    assert _result(messages, 2)["error"] == "InvalidMessage"
    assert _result(messages, 3)["error"] == "NoSession"


def test_reanalysis_reuses_session_and_resets_state(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    uri = (tmp_path / "main.c").as_uri()
    messages = _run(
        monkeypatch,
        [
            _open(uri),
            _analyze(1, uri, 1, 2, response=_warning_reply()),
            _apply(2, uri, row=0, relativeLine=1, fixText="int x = 0;"),
            _analyze(3, uri, 1, 2, response=_warning_reply()),
            {"jsonrpc": "2.0", "id": 4, "method": "profix/closeResults", "params": {"textDocument": {"uri": uri}}},
            {"jsonrpc": "2.0", "id": 5, "method": "profix/closeResults", "params": {"textDocument": {"uri": uri}}},
        ],
    )
    second = _result(messages, 3)
    assert second["reused"] is True
    assert second["summary"]["fixed"] == 0
    assert second["summary"]["rows"][0]["state"] == "unfixed"
    assert _result(messages, 4) == {"closed": True}
    assert _result(messages, 5) == {"closed": False}


def test_analyze_uses_model_client_and_reports_notices(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    uri = (tmp_path / "main.c").as_uri()
    client = StaticClient(reply="[]")
    messages = _run(
        monkeypatch,
        [
            _open(uri),
            _analyze(1, uri, 1, 2),
            _analyze(2, uri, 1, 2, response="not json"),
            _analyze(3, (tmp_path / "missing.c").as_uri(), 0, 0),
            _open(uri, "\n\n"),
            _analyze(4, uri, 0, 1),
            _analyze(5, uri, 1, 0),
            _analyze(6, uri, 0, 0, profile="nitpick"),
        ],
        client=client,
    )
    assert "1: int x" in client.requests[0].text
    assert _result(messages, 1)["summary"]["total"] == 0
    assert _result(messages, 2)["error"].startswith("Failed to parse AI response")
    assert _result(messages, 3) == {"error": "NoDocument"}
    assert _result(messages, 4)["error"] == "EmptySelection"
    assert _result(messages, 5) == {"error": "InvalidRange"}
    assert _result(messages, 6)["error"] == "InvalidProfile"

    notices = _notices(messages)
    assert "No issues found in the selected text." in notices
    assert "No active editor found." in notices
    assert "No text selected." in notices


def test_unknown_request_gets_method_not_found(monkeypatch: pytest.MonkeyPatch) -> None:
    messages = _run(
        monkeypatch,
        [
            {"jsonrpc": "2.0", "method": "$/cancelRequest", "params": {"id": 1}},
            {"jsonrpc": "2.0", "id": 7, "method": "textDocument/hover", "params": {}},
        ],
    )
    assert len(messages) == 1
    assert messages[0]["error"]["code"] == -32601


def test_apply_fix_without_matching_row_never_edits(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    uri = (tmp_path / "main.c").as_uri()
    text = "l1\nl2\nl3\nl4\nl5\n"
    messages = _run(
        monkeypatch,
        [
            _open(uri, text),
            _analyze(1, uri, 0, 1, response=_warning_reply()),
            _apply(2, uri, relativeLine=5, fixText="ZZZ"),
            _apply(3, uri, row=0, relativeLine=2, fixText="ZZZ"),
        ],
    )
    for msg_id in (2, 3):
        reply = _result(messages, msg_id)
        assert reply["command"] == "fixFailed"
        assert reply["error"] == "UnknownRow"
        assert "edit" not in reply
        assert reply["summary"]["fixed"] == 0
    assert "No result row for line 5" in _notices(messages)
