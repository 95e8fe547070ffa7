from __future__ import annotations

import json
from typing import Any

from profix import __version__
from profix.engine.types import AnalysisResult, Finding, FixOutcome
from profix.session import ResultsSurface

REPORT_SCHEMA_VERSION = 1


def finding_to_dict(finding: Finding) -> dict[str, Any]:
    # Same keys the model is asked to produce.
    return {
        "relativeLine": finding.relative_line,
        "severity": finding.severity,
        "finding": finding.description,
        "original": finding.original_text,
        "fix": finding.proposed_fix,
        "explanation": finding.rationale,
    }


def outcome_to_dict(outcome: FixOutcome) -> dict[str, Any]:
    return {
        "relativeLine": outcome.relative_line,
        "documentLine": outcome.absolute_line + 1,
        "ok": outcome.ok,
        "text": outcome.new_text,
        "error": outcome.error,
        "reason": outcome.reason,
    }


def render_json(
    result: AnalysisResult,
    *,
    surface: ResultsSurface | None = None,
    outcomes: list[FixOutcome] | None = None,
) -> str:
    surface = surface if surface is not None else ResultsSurface(result.presented)
    payload: dict[str, Any] = {
        "schema_version": REPORT_SCHEMA_VERSION,
        "tool": {"name": "ProFix", "version": __version__},
        "profile": result.profile,
        "selection": {
            "start_line": result.selection.start_line + 1,
            "line_count": result.selection.line_count,
        },
        "error": result.error,
        "findings": [finding_to_dict(f) for f in result.findings],
        "rejected": [{"index": r.index, "reason": r.reason} for r in result.rejected],
        "summary": surface.snapshot(),
    }
    if outcomes is not None:
        payload["fixes"] = [outcome_to_dict(o) for o in outcomes]
    return json.dumps(payload, indent=2, ensure_ascii=False)
