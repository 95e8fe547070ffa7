from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from profix.utils import split_lines

Severity = Literal["Error", "Warning", "Info"]
SEVERITIES: tuple[Severity, ...] = ("Error", "Warning", "Info")


@dataclass(frozen=True, slots=True)
class Selection:
    """
    A contiguous block of text chosen for analysis.

    `start_line` is the 0-based document line index of the selection's first
    line, so relative line 1 maps to document line `start_line`.
    """

    text: str
    start_line: int = 0

    @property
    def lines(self) -> list[str]:
        return split_lines(self.text)

    @property
    def line_count(self) -> int:
        return len(self.lines)

    def absolute_line(self, relative_line: int) -> int:
        return self.start_line + relative_line - 1


@dataclass(frozen=True, slots=True)
class Finding:
    relative_line: int  # 1-based, within the selection
    severity: Severity
    description: str
    original_text: str = ""
    proposed_fix: str | None = None
    rationale: str | None = None

    @property
    def fixable(self) -> bool:
        return self.proposed_fix is not None and self.proposed_fix != ""


@dataclass(frozen=True, slots=True)
class RejectedElement:
    index: int
    element: Any
    reason: str


@dataclass(frozen=True, slots=True)
class AnalysisResult:
    """
    Outcome of one analysis request.

    `findings` is the full validated collection (sorted, `Info` included);
    `presented` is the subset offered in the interactive list. `error` is set
    when the request failed closed (e.g. a malformed model reply).
    """

    selection: Selection
    profile: str
    findings: tuple[Finding, ...] = ()
    presented: tuple[Finding, ...] = ()
    rejected: tuple[RejectedElement, ...] = ()
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def no_issues(self) -> bool:
        return self.ok and not self.findings


@dataclass(frozen=True, slots=True)
class FixOutcome:
    relative_line: int
    absolute_line: int
    ok: bool
    new_text: str | None = None
    previous_text: str | None = None
    reason: str | None = None
    error: str | None = None  # error class name, e.g. "TargetLineNotFound"
