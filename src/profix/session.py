from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from typing import Any, Literal

from profix.engine.types import AnalysisResult, Finding, FixOutcome, Selection
from profix.fixer import Document, apply_fix

logger = logging.getLogger(__name__)

RowState = Literal["unfixed", "applying", "fixed"]

APPLY_FIX = "applyFix"
FIX_SUCCEEDED = "fixSucceeded"
FIX_FAILED = "fixFailed"


@dataclass(slots=True)
class ResultRow:
    row_id: int
    finding: Finding
    state: RowState = "unfixed"
    # Set exactly once, the first time a success acknowledgment is counted.
    counted: bool = False

    @property
    def relative_line(self) -> int:
        return self.finding.relative_line

    @property
    def can_apply(self) -> bool:
        return self.state == "unfixed" and self.finding.fixable


class ResultsSurface:
    """
    Surface side of the fix protocol: rows, their states and the counters.

    Rows move `unfixed -> applying -> fixed`. A failed apply moves the row back
    to `unfixed`; nothing ever leaves `fixed`.
    """

    def __init__(self, findings: Sequence[Finding] = ()) -> None:
        self.rows: list[ResultRow] = []
        self.reset(findings)

    def reset(self, findings: Sequence[Finding]) -> None:
        self.rows = [ResultRow(row_id=i, finding=f) for i, f in enumerate(findings)]

    @property
    def total(self) -> int:
        return len(self.rows)

    @property
    def fixed(self) -> int:
        return sum(1 for row in self.rows if row.counted)

    @property
    def remaining(self) -> int:
        return self.total - self.fixed

    @property
    def progress(self) -> float:
        if self.total == 0:
            return 1.0
        return min(1.0, self.fixed / self.total)

    def row(self, row_id: int) -> ResultRow | None:
        if 0 <= row_id < len(self.rows):
            return self.rows[row_id]
        return None

    def request_fix(self, row_id: int) -> dict[str, Any] | None:
        """
        Start applying the fix of one row and return the `applyFix` message.

        Returns None when the row cannot be applied (unknown, no fix, already
        applying or fixed); the row's control is disabled in those states.
        """

        row = self.row(row_id)
        if row is None or not row.can_apply:
            return None
        row.state = "applying"
        return {
            "command": APPLY_FIX,
            "row": row.row_id,
            "relativeLine": row.relative_line,
            "fixText": row.finding.proposed_fix,
        }

    def resolve(self, message: dict[str, Any]) -> ResultRow | None:
        line = message.get("relativeLine")
        row_id = message.get("row")
        if isinstance(row_id, int) and not isinstance(row_id, bool):
            row = self.row(row_id)
            if row is not None and (line is None or row.relative_line == line):
                return row
        if not isinstance(line, int) or isinstance(line, bool):
            return None
        candidates = [row for row in self.rows if row.relative_line == line]
        for row in candidates:
            if row.state == "applying":
                return row
        return candidates[0] if candidates else None

    def receive(self, message: dict[str, Any]) -> ResultRow | None:
        """Handle a host reply; returns the affected row, if any."""

        command = message.get("command")
        if command not in {FIX_SUCCEEDED, FIX_FAILED}:
            return None
        row = self.resolve(message)
        if row is None:
            logger.debug("reply %r matches no result row", message)
            return None

        if command == FIX_SUCCEEDED:
            if row.state == "fixed":
                # Repeated acknowledgment; already counted.
                return row
            if row.state != "applying":
                logger.debug("ignoring unsolicited success for row %d", row.row_id)
                return None
            row.state = "fixed"
            row.counted = True
            return row

        if row.state == "applying":
            row.state = "unfixed"
        return row

    def snapshot(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "fixed": self.fixed,
            "remaining": self.remaining,
            "progress": self.progress,
            "rows": [
                {"row": row.row_id, "relativeLine": row.relative_line, "state": row.state} for row in self.rows
            ],
        }


class FixHost:
    """Host side of the fix protocol: performs edits for `applyFix` messages."""

    def __init__(self, document: Document, selection: Selection) -> None:
        self.document = document
        self.selection = selection
        self.outcomes: list[FixOutcome] = []

    def handle(self, message: dict[str, Any]) -> dict[str, Any] | None:
        if message.get("command") != APPLY_FIX:
            return None

        line = message.get("relativeLine")
        fix_text = message.get("fixText")
        reply: dict[str, Any] = {"relativeLine": line}
        if "row" in message:
            reply["row"] = message["row"]

        if not isinstance(line, int) or isinstance(line, bool) or not isinstance(fix_text, str):
            reply.update(
                command=FIX_FAILED,
                error="InvalidMessage",
                reason="applyFix requires an integer relativeLine and a string fixText.",
            )
            return reply

        outcome = apply_fix(
            self.document,
            start_line=self.selection.start_line,
            relative_line=line,
            fix_text=fix_text,
            line_count=self.selection.line_count,
        )
        self.outcomes.append(outcome)
        if outcome.ok:
            reply.update(command=FIX_SUCCEEDED, message=f"Fix applied to line {line}")
        else:
            reply.update(command=FIX_FAILED, error=outcome.error, reason=outcome.reason)
        return reply


class AnalysisSession:
    """
    One open results surface bound to a document region.

    The session owns its `ResultsSurface` (the application state) and the
    `FixHost` that edits the document; both are dropped on close.
    """

    def __init__(self, key: str, result: AnalysisResult, document: Document) -> None:
        self.key = key
        self.result = result
        self.surface = ResultsSurface(result.presented)
        self.host = FixHost(document, result.selection)
        self.is_open = True

    def replace(self, result: AnalysisResult, document: Document) -> None:
        self.result = result
        self.surface.reset(result.presented)
        self.host = FixHost(document, result.selection)

    def dispatch(self, row_id: int) -> dict[str, Any] | None:
        """Run one full `applyFix` round trip for a row and return the reply."""

        if not self.is_open:
            raise RuntimeError(f"Session {self.key!r} is closed.")
        message = self.surface.request_fix(row_id)
        if message is None:
            return None
        reply = self.host.handle(message)
        if reply is not None:
            self.surface.receive(reply)
        return reply

    def close(self) -> None:
        self.is_open = False


class SessionRegistry:
    """Open results sessions, at most one per key (typically a document URI)."""

    def __init__(self) -> None:
        self._sessions: dict[str, AnalysisSession] = {}

    def open(self, key: str, result: AnalysisResult, document: Document) -> tuple[AnalysisSession, bool]:
        """
        Open a session for `key`, or refocus the existing one.

        Returns `(session, reused)`. A reused session gets the new results and
        a fresh application state.
        """

        existing = self._sessions.get(key)
        if existing is not None and existing.is_open:
            existing.replace(result, document)
            return existing, True
        session = AnalysisSession(key, result, document)
        self._sessions[key] = session
        return session, False

    def get(self, key: str) -> AnalysisSession | None:
        return self._sessions.get(key)

    def close(self, key: str) -> bool:
        session = self._sessions.pop(key, None)
        if session is None:
            return False
        session.close()
        return True

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[AnalysisSession]:
        return iter(list(self._sessions.values()))
