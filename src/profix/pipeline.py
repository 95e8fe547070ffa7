from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from profix.engine.types import AnalysisResult, Selection, Severity
from profix.errors import MalformedResponse, ModelError
from profix.findings import DEFAULT_HIDDEN_SEVERITIES, presentable, validate_elements
from profix.llm import ModelClient
from profix.normalize import parse_response
from profix.prompts import EDGE_CASES_TEMPLATE, REVIEW_TEMPLATE, PromptTemplate, build_prompt

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AnalysisProfile:
    """A prompt template plus the presentation filter applied to its findings."""

    name: str
    title: str
    template: PromptTemplate
    hidden_severities: frozenset[Severity] = DEFAULT_HIDDEN_SEVERITIES


PROFILES: Mapping[str, AnalysisProfile] = {
    "review": AnalysisProfile(
        name="review",
        title="Analyzing selection",
        template=REVIEW_TEMPLATE,
    ),
    "edge-cases": AnalysisProfile(
        name="edge-cases",
        title="Analyzing edge cases",
        template=EDGE_CASES_TEMPLATE,
        hidden_severities=frozenset(),
    ),
}


def get_profile(name: str) -> AnalysisProfile:
    try:
        return PROFILES[name.strip().lower()]
    except KeyError:
        raise ValueError(f"Unknown profile {name!r}. Use: {', '.join(sorted(PROFILES))}.") from None


def evaluate_response(
    selection: Selection,
    raw: str,
    *,
    profile: AnalysisProfile,
    hide_severities: Iterable[Severity] | None = None,
) -> AnalysisResult:
    """
    Turn a raw model reply into an `AnalysisResult`.

    Never raises for bad replies: a malformed reply yields an empty result
    carrying the error, and invalid elements are dropped individually.
    """

    try:
        elements = parse_response(raw)
    except MalformedResponse as exc:
        logger.warning("discarding model reply: %s", exc)
        return AnalysisResult(selection=selection, profile=profile.name, error=str(exc))

    findings, rejected = validate_elements(elements, line_count=selection.line_count)
    hidden = profile.hidden_severities if hide_severities is None else frozenset(hide_severities)
    presented = presentable(findings, hidden_severities=hidden)
    logger.info(
        "analysis finished: %d finding(s), %d shown, %d rejected",
        len(findings),
        len(presented),
        len(rejected),
    )
    return AnalysisResult(
        selection=selection,
        profile=profile.name,
        findings=findings,
        presented=presented,
        rejected=rejected,
    )


def analyze_selection(
    selection: Selection,
    client: ModelClient,
    *,
    profile: AnalysisProfile | str = "review",
    hide_severities: Iterable[Severity] | None = None,
) -> AnalysisResult:
    """
    Run the full pipeline: prompt, model call, normalization, validation.

    Raises `EmptySelection` before any model call when there is nothing to
    analyze. Model failures and malformed replies are reported on the result.
    """

    resolved = get_profile(profile) if isinstance(profile, str) else profile
    request = build_prompt(selection.text, resolved.template)

    try:
        raw = client.generate(request)
    except ModelError as exc:
        logger.error("model call failed: %s", exc)
        return AnalysisResult(selection=selection, profile=resolved.name, error=f"Analysis failed: {exc}")

    return evaluate_response(selection, raw, profile=resolved, hide_severities=hide_severities)
