from __future__ import annotations

import re

# Editors and LSP line numbers break only on these; `str.splitlines` also
# breaks on form feeds, `\x85` and the Unicode line separators.
_NEWLINE_RE = re.compile(r"\r\n|\r|\n")
_TRAILING_NEWLINE_RE = re.compile(r"(?:\r\n|\r|\n)\Z")


def split_lines_keepends(text: str) -> list[str]:
    lines: list[str] = []
    start = 0
    for match in _NEWLINE_RE.finditer(text):
        lines.append(text[start : match.end()])
        start = match.end()
    if start < len(text):
        lines.append(text[start:])
    return lines


def line_ending(line: str) -> str:
    match = _TRAILING_NEWLINE_RE.search(line)
    return match.group(0) if match else ""


def split_lines(text: str) -> list[str]:
    """Split like `str.splitlines()`, but only on `\\r\\n`, `\\r` and `\\n`."""

    return [line[: len(line) - len(line_ending(line))] for line in split_lines_keepends(text)]


def has_newline(text: str) -> bool:
    return _NEWLINE_RE.search(text) is not None
