from __future__ import annotations

import difflib
import logging
from pathlib import Path
from typing import Protocol

from profix.engine.types import Finding, FixOutcome, Selection
from profix.errors import EditRejected, TargetLineNotFound
from profix.utils import has_newline, line_ending, split_lines, split_lines_keepends

logger = logging.getLogger(__name__)


class Document(Protocol):
    """
    The host editor's text buffer, as seen by the fix applicator.

    Line indices are 0-based. `replace_line` replaces the text of one line
    (without its terminator) and returns False when the host refuses the edit.
    """

    def line_count(self) -> int: ...

    def line_at(self, index: int) -> str: ...

    def replace_line(self, index: int, text: str) -> bool: ...


class TextDocument:
    """
    In-memory document used by the CLI and the stdio server.

    Line terminators are kept per line so a replacement never changes the
    file's newline style.
    """

    def __init__(self, text: str, *, read_only: bool = False, uri: str | None = None) -> None:
        self._lines = split_lines_keepends(text)
        self.read_only = read_only
        self.uri = uri
        self.version = 0

    @classmethod
    def from_path(cls, path: Path, *, read_only: bool = False) -> TextDocument:
        # newline="" keeps CRLF terminators intact.
        with path.open("r", encoding="utf-8", errors="replace", newline="") as fh:
            text = fh.read()
        return cls(text, read_only=read_only, uri=path.resolve().as_uri())

    @property
    def text(self) -> str:
        return "".join(self._lines)

    def set_text(self, text: str) -> None:
        self._lines = split_lines_keepends(text)
        self.version += 1

    def line_count(self) -> int:
        return len(self._lines)

    def line_at(self, index: int) -> str:
        if index < 0 or index >= len(self._lines):
            raise IndexError(index)
        line = self._lines[index]
        return line[: len(line) - len(line_ending(line))]

    def replace_line(self, index: int, text: str) -> bool:
        if self.read_only:
            return False
        if index < 0 or index >= len(self._lines):
            raise IndexError(index)
        if has_newline(text):
            raise ValueError("Replacement text must be a single line.")
        self._lines[index] = text + line_ending(self._lines[index])
        self.version += 1
        return True

    def selection(self, start_line: int, end_line: int) -> Selection:
        """Build a selection over document lines `start_line..end_line` (0-based, inclusive)."""

        if start_line < 0 or end_line < start_line:
            raise ValueError(f"Invalid line range {start_line}..{end_line}.")
        chunk = self._lines[start_line : end_line + 1]
        if not chunk:
            return Selection(text="", start_line=start_line)
        text = "".join(chunk)
        return Selection(text=text[: len(text) - len(line_ending(chunk[-1]))], start_line=start_line)

    def write_to(self, path: Path, *, backup: bool = False) -> None:
        if backup:
            backup_path = path.with_suffix(path.suffix + ".profix.bak")
            if not backup_path.exists():
                backup_path.write_bytes(path.read_bytes())
        with path.open("w", encoding="utf-8", newline="") as fh:
            fh.write(self.text)


def flatten_fix(fix_text: str) -> str:
    """
    Collapse a multi-line fix into one line, joining segments with a space.

    The applicator only ever replaces a line, never inserts one, so content the
    model meant as a new line (e.g. a missing `#include`) ends up in front of
    the original text on the same line.
    """

    if not has_newline(fix_text):
        return fix_text
    segments = split_lines(fix_text)
    if not segments:
        return ""
    parts = [segments[0].rstrip(), *(s.strip() for s in segments[1:])]
    return " ".join(p for p in parts if p.strip())


def replace_target_line(
    document: Document,
    *,
    absolute_line: int,
    relative_line: int,
    text: str,
    line_count: int | None = None,
) -> str:
    """
    Replace one document line and return its previous text.

    `line_count` is the selection's line count; lines past it belong to the
    rest of the document and are never targets.

    Raises `TargetLineNotFound` or `EditRejected`; the document is untouched
    in both cases.
    """

    if relative_line < 1 or (line_count is not None and relative_line > line_count):
        raise TargetLineNotFound(relative_line, absolute_line)
    if absolute_line < 0 or absolute_line >= document.line_count():
        raise TargetLineNotFound(relative_line, absolute_line)
    try:
        previous = document.line_at(absolute_line)
    except IndexError as exc:
        raise TargetLineNotFound(relative_line, absolute_line) from exc

    if not document.replace_line(absolute_line, text):
        raise EditRejected("Failed to apply fix")
    return previous


def apply_fix(
    document: Document,
    *,
    start_line: int,
    relative_line: int,
    fix_text: str,
    line_count: int | None = None,
) -> FixOutcome:
    """
    Apply a fix for `relative_line` of a selection starting at `start_line`.

    Exactly one line is replaced, so the line mapping of every other finding
    of the same selection stays valid after the edit.
    """

    absolute_line = start_line + relative_line - 1
    new_text = flatten_fix(fix_text)
    try:
        previous = replace_target_line(
            document,
            absolute_line=absolute_line,
            relative_line=relative_line,
            text=new_text,
            line_count=line_count,
        )
    except (TargetLineNotFound, EditRejected) as exc:
        logger.warning("fix for line %d not applied: %s", relative_line, exc)
        return FixOutcome(
            relative_line=relative_line,
            absolute_line=absolute_line,
            ok=False,
            reason=str(exc),
            error=type(exc).__name__,
        )

    logger.debug("replaced document line %d (selection line %d)", absolute_line + 1, relative_line)
    return FixOutcome(
        relative_line=relative_line,
        absolute_line=absolute_line,
        ok=True,
        new_text=new_text,
        previous_text=previous,
    )


def apply_finding(document: Document, selection: Selection, finding: Finding) -> FixOutcome:
    if not finding.fixable:
        return FixOutcome(
            relative_line=finding.relative_line,
            absolute_line=selection.absolute_line(finding.relative_line),
            ok=False,
            reason="Finding has no proposed fix.",
            error="NoFix",
        )
    return apply_fix(
        document,
        start_line=selection.start_line,
        relative_line=finding.relative_line,
        fix_text=finding.proposed_fix or "",
        line_count=selection.line_count,
    )


def unified_diff(before: str, after: str, *, path: Path) -> str:
    if before == after:
        return ""
    diff = difflib.unified_diff(
        split_lines(before),
        split_lines(after),
        fromfile=str(path),
        tofile=str(path),
        lineterm="",
    )
    return "\n".join(diff)
