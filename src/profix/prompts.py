from __future__ import annotations

from dataclasses import dataclass

from profix.errors import EmptySelection
from profix.utils import split_lines

_RESPONSE_SCHEMA = """[
  {
    "relativeLine": number,
    "severity": "Error" | "Warning" | "Info",
    "finding": "Description",
    "original": "Original line text",
    "fix": "Corrected line text",
    "explanation": "Why"
  }
]"""

_SHARED_RULES = (
    "1. Ignore errors whose correctness depends on values only known at runtime "
    "(for example variable-length array sizes).\n"
    '2. For missing headers or imports: flag it on line 1. The fix should be: "#include <header.h>\\n<original line 1>".\n'
    '3. Multi-line fixes: use "\\n" for line breaks inside the "fix" string.\n'
    "4. Return ONLY a JSON array of objects matching the response format. "
    "Do not include comments in the fixed code.\n"
    '5. "relativeLine" is the number shown before each line of the code below.\n'
)


@dataclass(frozen=True, slots=True)
class PromptTemplate:
    name: str
    preamble: str
    extra_rules: str = ""


REVIEW_TEMPLATE = PromptTemplate(
    name="review",
    preamble="Analyze the following code for potential issues, edge cases, vulnerabilities, or improvements.",
)

EDGE_CASES_TEMPLATE = PromptTemplate(
    name="edge-cases",
    preamble=(
        "Act as a Senior Software QA Engineer and Lead Developer.\n"
        "Analyze the following code for logic flaws, boundary conditions, and performance bottlenecks.\n"
        "Consider null or undefined input, empty strings, extremely large numbers, negative values "
        "and special characters."
    ),
    extra_rules=(
        "6. Only fix the lines which are incorrect, never the whole program.\n"
        "7. If the code is already correct, return an empty JSON array [].\n"
        '8. Put the failing input and the expected output in "explanation"; keep it short.\n'
    ),
)


@dataclass(frozen=True, slots=True)
class PromptRequest:
    template: str
    text: str
    line_count: int
    response_mime_type: str = "application/json"


def number_lines(text: str) -> str:
    """Prefix every line with its 1-based index: `"1: int x"`."""

    return "\n".join(f"{idx}: {line}" for idx, line in enumerate(split_lines(text), start=1))


def build_prompt(selection_text: str, template: PromptTemplate = REVIEW_TEMPLATE) -> PromptRequest:
    if not selection_text.strip():
        raise EmptySelection()

    body = (
        f"{template.preamble}\n"
        "\n"
        "STRICT RULES:\n"
        f"{_SHARED_RULES}"
        f"{template.extra_rules}"
        "\n"
        "Response Format:\n"
        f"{_RESPONSE_SCHEMA}\n"
        "\n"
        "Code to analyze:\n"
        f"{number_lines(selection_text)}\n"
        "\n"
        "Respond with valid JSON only."
    )
    return PromptRequest(template=template.name, text=body, line_count=len(split_lines(selection_text)))
