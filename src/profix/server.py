from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, cast
from urllib.parse import unquote, urlparse

from profix.config import ProFixConfig, load_config
from profix.engine.types import AnalysisResult
from profix.errors import ConfigError, EmptySelection, ModelError
from profix.fixer import TextDocument
from profix.llm import ModelClient, load_client
from profix.pipeline import analyze_selection, evaluate_response, get_profile
from profix.reporters.json_reporter import finding_to_dict
from profix.session import APPLY_FIX, FIX_FAILED, FIX_SUCCEEDED, AnalysisSession, SessionRegistry

logger = logging.getLogger(__name__)

# LSP MessageType
_MESSAGE_ERROR = 1
_MESSAGE_INFO = 3


def _read_message() -> dict[str, Any] | None:
    """
    Read a single JSON-RPC message from stdin.

    Messages use the LSP `Content-Length: N` header framing.
    """

    stdin = sys.stdin.buffer
    headers: dict[str, str] = {}
    while True:
        line = stdin.readline()
        if not line:
            return None
        if line in {b"\r\n", b"\n"}:
            break
        decoded = line.decode("ascii", errors="replace").strip()
        if not decoded or ":" not in decoded:
            continue
        key, value = decoded.split(":", 1)
        headers[key.strip().lower()] = value.strip()

    raw_len = headers.get("content-length")
    if raw_len is None:
        return None
    try:
        length = int(raw_len)
    except ValueError:
        return None

    body = stdin.read(length)
    try:
        payload = json.loads(body.decode("utf-8", errors="replace"))
    except json.JSONDecodeError:
        return None

    if not isinstance(payload, dict):
        return None
    return cast(dict[str, Any], payload)


def _send_message(payload: dict[str, Any]) -> None:
    raw = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    sys.stdout.buffer.write(f"Content-Length: {len(raw)}\r\n\r\n".encode("ascii") + raw)
    sys.stdout.buffer.flush()


def _respond(msg_id: Any, result: Any) -> None:
    _send_message({"jsonrpc": "2.0", "id": msg_id, "result": result})


def _show_message(kind: int, text: str) -> None:
    _send_message({"jsonrpc": "2.0", "method": "window/showMessage", "params": {"type": kind, "message": text}})


def uri_to_path(uri: str) -> Path:
    parsed = urlparse(uri)
    if parsed.scheme != "file":
        raise ValueError(f"Unsupported URI scheme: {parsed.scheme!r}")
    return Path(unquote(parsed.path))


@dataclass
class _ServerState:
    client: ModelClient | None = None
    config: ProFixConfig = field(default_factory=ProFixConfig)
    docs: dict[str, TextDocument] = field(default_factory=dict)
    sessions: SessionRegistry = field(default_factory=SessionRegistry)

    def model_client(self) -> ModelClient:
        if self.client is None:
            self.client = load_client(self.config.model)
        return self.client


def _session_payload(session: AnalysisSession, *, reused: bool) -> dict[str, Any]:
    result = session.result
    return {
        "reused": reused,
        "profile": result.profile,
        "error": result.error,
        "findings": [finding_to_dict(f) for f in result.findings],
        "presented": [finding_to_dict(f) for f in result.presented],
        "rejected": [{"index": r.index, "reason": r.reason} for r in result.rejected],
        "summary": session.surface.snapshot(),
    }


def _initialize(state: _ServerState, params: dict[str, Any]) -> dict[str, Any]:
    root_uri = params.get("rootUri")
    root_path = params.get("rootPath")
    project_root: Path | None = None
    if isinstance(root_uri, str) and root_uri.startswith("file:"):
        try:
            project_root = uri_to_path(root_uri)
        except ValueError:
            project_root = None
    elif isinstance(root_path, str) and root_path:
        project_root = Path(root_path)

    try:
        state.config = load_config(project_root or Path.cwd())
    except ConfigError as exc:
        logger.warning("ignoring invalid configuration: %s", exc)
        _show_message(_MESSAGE_ERROR, f"ProFix configuration error: {exc}")

    return {
        "capabilities": {"textDocumentSync": 1},  # Full sync
        "serverInfo": {"name": "profix"},
    }


def _analyze(state: _ServerState, params: dict[str, Any]) -> dict[str, Any]:
    td = params.get("textDocument") or {}
    uri = td.get("uri")
    doc = state.docs.get(uri) if isinstance(uri, str) else None
    if doc is None or not isinstance(uri, str):
        _show_message(_MESSAGE_INFO, "No active editor found.")
        return {"error": "NoDocument"}

    rng = params.get("range") or {}
    start = (rng.get("start") or {}).get("line")
    end = (rng.get("end") or {}).get("line", start)
    if not isinstance(start, int) or not isinstance(end, int) or start < 0 or end < start:
        return {"error": "InvalidRange"}

    profile_name = params.get("profile") or state.config.profile
    try:
        profile = get_profile(str(profile_name))
    except ValueError as exc:
        return {"error": "InvalidProfile", "message": str(exc)}

    selection = doc.selection(start, end)
    hide = state.config.display.hide_severities
    canned = params.get("response")
    try:
        if isinstance(canned, str):
            if not selection.text.strip():
                raise EmptySelection()
            result: AnalysisResult = evaluate_response(selection, canned, profile=profile, hide_severities=hide)
        else:
            result = analyze_selection(selection, state.model_client(), profile=profile, hide_severities=hide)
    except EmptySelection as exc:
        _show_message(_MESSAGE_INFO, str(exc))
        return {"error": "EmptySelection", "message": str(exc)}
    except ModelError as exc:
        _show_message(_MESSAGE_ERROR, f"Analysis failed: {exc}")
        return {"error": "ModelError", "message": str(exc)}

    if result.error is not None:
        _show_message(_MESSAGE_ERROR, result.error)
    elif not result.findings:
        _show_message(_MESSAGE_INFO, "No issues found in the selected text.")

    session, reused = state.sessions.open(uri, result, doc)
    return _session_payload(session, reused=reused)


def _apply(state: _ServerState, params: dict[str, Any]) -> dict[str, Any]:
    td = params.get("textDocument") or {}
    uri = td.get("uri")
    session = state.sessions.get(uri) if isinstance(uri, str) else None
    if session is None:
        return {"command": FIX_FAILED, "error": "NoSession", "reason": "No open analysis results."}

    message = {"command": APPLY_FIX, **{k: params[k] for k in ("relativeLine", "fixText", "row") if k in params}}
    row = session.surface.resolve(message) if "relativeLine" in message else None
    line = message.get("relativeLine")
    if row is None and isinstance(line, int) and not isinstance(line, bool):
        # Only lines with a result row may be edited.
        reason = f"No result row for line {line}"
        _show_message(_MESSAGE_ERROR, reason)
        return {
            "command": FIX_FAILED,
            "relativeLine": line,
            "error": "UnknownRow",
            "reason": reason,
            "summary": session.surface.snapshot(),
        }
    if row is not None and row.state == "fixed":
        # Already written; acknowledge again without touching the document.
        return {
            "command": FIX_SUCCEEDED,
            "row": row.row_id,
            "relativeLine": row.relative_line,
            "summary": session.surface.snapshot(),
        }
    if row is not None:
        row.state = "applying"
        message["row"] = row.row_id

    reply = session.host.handle(message) or {}
    session.surface.receive(reply)
    if reply.get("command") == FIX_SUCCEEDED:
        outcome = session.host.outcomes[-1]
        previous = outcome.previous_text or ""
        reply["edit"] = {
            "range": {
                "start": {"line": outcome.absolute_line, "character": 0},
                "end": {"line": outcome.absolute_line, "character": len(previous)},
            },
            "newText": outcome.new_text,
        }
        _show_message(_MESSAGE_INFO, str(reply.get("message")))
    else:
        _show_message(_MESSAGE_ERROR, str(reply.get("reason") or "Failed to apply fix"))
    reply["summary"] = session.surface.snapshot()
    return reply


def _sync_document(state: _ServerState, method: str, params: dict[str, Any]) -> None:
    td = params.get("textDocument") or {}
    uri = td.get("uri")
    if not isinstance(uri, str):
        return
    if method == "textDocument/didClose":
        state.docs.pop(uri, None)
        state.sessions.close(uri)
        return

    if method == "textDocument/didOpen":
        text = td.get("text")
    else:
        changes = params.get("contentChanges") or []
        change0 = changes[0] if changes else None
        text = change0.get("text") if isinstance(change0, dict) else None
    if not isinstance(text, str):
        return
    existing = state.docs.get(uri)
    if existing is None:
        state.docs[uri] = TextDocument(text, uri=uri)
    else:
        # Same object: open sessions keep editing the live buffer.
        existing.set_text(text)


def run_stdio_server(*, client: ModelClient | None = None) -> None:
    """
    Run the ProFix host over stdio.

    Supports initialize/shutdown/exit, full-sync document notifications and
    the `profix/analyzeSelection`, `profix/applyFix` and
    `profix/closeResults` requests.
    """

    state = _ServerState(client=client)

    while True:
        msg = _read_message()
        if msg is None:
            return

        method = msg.get("method")
        msg_id = msg.get("id")
        params = msg.get("params") or {}
        if not isinstance(params, dict):
            params = {}

        if method == "initialize":
            _respond(msg_id, _initialize(state, params))
            continue

        if method == "shutdown":
            _respond(msg_id, None)
            continue

        if method == "exit":
            return

        if method in {"textDocument/didOpen", "textDocument/didChange", "textDocument/didClose"}:
            _sync_document(state, method, params)
            continue

        if method == "profix/analyzeSelection":
            _respond(msg_id, _analyze(state, params))
            continue

        if method == "profix/applyFix":
            _respond(msg_id, _apply(state, params))
            continue

        if method == "profix/closeResults":
            td = params.get("textDocument") or {}
            uri = td.get("uri")
            _respond(msg_id, {"closed": state.sessions.close(uri) if isinstance(uri, str) else False})
            continue

        if msg_id is not None:
            _send_message(
                {"jsonrpc": "2.0", "id": msg_id, "error": {"code": -32601, "message": f"Method not found: {method}"}}
            )

        # Unknown notification: ignore.

