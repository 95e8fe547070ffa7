from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Any, cast

from profix.engine.types import SEVERITIES, Finding, RejectedElement, Severity
from profix.errors import SchemaViolation

logger = logging.getLogger(__name__)

# Accepted spellings per field, in lookup order. The first name is canonical.
_LINE_KEYS = ("relativeLine", "lineNumber", "line")
_DESCRIPTION_KEYS = ("finding", "description")
_ORIGINAL_KEYS = ("original", "originalText")
_FIX_KEYS = ("fix", "proposedFix")
_RATIONALE_KEYS = ("explanation", "rationale")

_SEVERITY_BY_KEY = {s.lower(): s for s in SEVERITIES}

DEFAULT_HIDDEN_SEVERITIES: frozenset[Severity] = frozenset({"Info"})


def normalize_severity(value: Any) -> Severity | None:
    if not isinstance(value, str):
        return None
    return _SEVERITY_BY_KEY.get(value.strip().lower())


def _lookup(element: dict[str, Any], keys: tuple[str, ...]) -> tuple[bool, Any]:
    for key in keys:
        if key in element:
            return True, element[key]
    return False, None


def _coerce_line(value: Any) -> int | None:
    # bool is an int subclass; `true` is never a line number.
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        digits = value.strip()
        # `isdigit` also accepts superscripts like "²", which `int` rejects.
        if digits.isascii() and digits.isdecimal():
            return int(digits)
    return None


def _optional_text(element: dict[str, Any], keys: tuple[str, ...], *, field_name: str) -> str | None:
    present, value = _lookup(element, keys)
    if not present or value is None:
        return None
    if not isinstance(value, str):
        raise SchemaViolation(f"`{field_name}` must be a string, got {type(value).__name__}.")
    return value


def parse_finding(element: Any, *, line_count: int | None = None) -> Finding:
    """
    Validate one parsed element against the finding schema.

    Raises `SchemaViolation` describing the first problem found.
    """

    if not isinstance(element, dict):
        raise SchemaViolation(f"Expected an object, got {type(element).__name__}.")
    element = cast(dict[str, Any], element)

    present, raw_line = _lookup(element, _LINE_KEYS)
    if not present:
        raise SchemaViolation("Missing required field `relativeLine`.")
    line = _coerce_line(raw_line)
    if line is None:
        raise SchemaViolation(f"`relativeLine` must be an integer, got {raw_line!r}.")
    if line < 1:
        raise SchemaViolation(f"`relativeLine` must be positive, got {line}.")
    if line_count is not None and line > line_count:
        raise SchemaViolation(f"`relativeLine` {line} is outside the selection ({line_count} line(s)).")

    if "severity" not in element:
        raise SchemaViolation("Missing required field `severity`.")
    severity = normalize_severity(element["severity"])
    if severity is None:
        raise SchemaViolation(f"Unrecognized severity {element['severity']!r}.")

    description = _optional_text(element, _DESCRIPTION_KEYS, field_name="finding")
    if description is None or not description.strip():
        raise SchemaViolation("Missing required field `finding`.")

    return Finding(
        relative_line=line,
        severity=severity,
        description=description.strip(),
        original_text=_optional_text(element, _ORIGINAL_KEYS, field_name="original") or "",
        proposed_fix=_optional_text(element, _FIX_KEYS, field_name="fix"),
        rationale=_optional_text(element, _RATIONALE_KEYS, field_name="explanation"),
    )


def validate_elements(
    elements: Sequence[Any],
    *,
    line_count: int | None = None,
) -> tuple[tuple[Finding, ...], tuple[RejectedElement, ...]]:
    """
    Split parsed elements into sorted findings and rejected elements.

    Findings are ordered by `relative_line`; ties keep their input order.
    """

    accepted: list[Finding] = []
    rejected: list[RejectedElement] = []
    for index, element in enumerate(elements):
        try:
            accepted.append(parse_finding(element, line_count=line_count))
        except SchemaViolation as exc:
            logger.warning("dropped model finding #%d: %s", index, exc)
            rejected.append(RejectedElement(index=index, element=element, reason=str(exc)))
    return sort_findings(accepted), tuple(rejected)


def sort_findings(findings: Iterable[Finding]) -> tuple[Finding, ...]:
    # `sorted` is stable, which keeps same-line findings in input order.
    return tuple(sorted(findings, key=lambda f: f.relative_line))


def presentable(
    findings: Iterable[Finding],
    *,
    hidden_severities: Iterable[Severity] = DEFAULT_HIDDEN_SEVERITIES,
) -> tuple[Finding, ...]:
    hidden = frozenset(hidden_severities)
    return tuple(f for f in findings if f.severity not in hidden)
