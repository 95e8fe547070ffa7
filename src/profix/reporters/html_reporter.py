from __future__ import annotations

import html
import math

from profix import __version__
from profix.engine.types import AnalysisResult
from profix.session import ResultRow, ResultsSurface
from profix.utils import split_lines

RING_RADIUS = 26


def ring_circumference(radius: int = RING_RADIUS) -> float:
    return 2 * math.pi * radius


def ring_offset(fraction: float, radius: int = RING_RADIUS) -> float:
    """Stroke dash offset drawing `fraction` (clamped to 0..1) of the progress ring."""

    clamped = max(0.0, min(1.0, fraction))
    circumference = ring_circumference(radius)
    return circumference - clamped * circumference


def fix_display(text: str) -> str:
    """Escaped fix text with the model's line breaks kept as visual `<br>` only."""

    return "<br>".join(html.escape(part) for part in split_lines(text))


def render_html(result: AnalysisResult, *, surface: ResultsSurface | None = None) -> str:
    """
    Render the interactive results page.

    Fix buttons post `applyFix` messages to the hosting frame; the host answers
    with `fixSucceeded` or `fixFailed` and the page updates its counters.
    This reporter is dependency-free (stdlib only).
    """

    surface = surface if surface is not None else ResultsSurface(result.presented)
    total = surface.total
    circumference = ring_circumference()

    out: list[str] = []
    out.append("<!doctype html>")
    out.append('<html lang="en">')
    out.append("<head>")
    out.append('  <meta charset="utf-8">')
    out.append("  <title>ProFix analysis</title>")
    out.append("  <style>")
    out.append(_CSS)
    out.append("  </style>")
    out.append("</head>")
    out.append("<body>")
    out.append('  <div class="header-container">')
    out.append("    <h2>ProFix Analysis Results</h2>")
    out.append('    <div class="stats-and-chart">')
    out.append('      <div class="stats-wrapper">')
    out.append(
        f'        <div class="errors-found">Errors Found: <span id="remaining-count">{surface.remaining}</span>/{total}</div>'
    )
    out.append(f'        <div class="errors-fixed">Errors Fixed: <span id="fixed-count">{surface.fixed}</span>/{total}</div>')
    out.append("      </div>")
    out.append('      <svg class="progress-ring" width="60" height="60">')
    out.append(
        f'        <circle class="progress-ring__circle" stroke="#f14c4c" stroke-width="6" fill="transparent" r="{RING_RADIUS}" cx="30" cy="30"/>'
    )
    out.append(
        f'        <circle id="progress-bar" class="progress-ring__circle" stroke="#4ec9b0" stroke-width="6" '
        f'stroke-dasharray="{circumference:.2f}" stroke-dashoffset="{ring_offset(surface.progress):.2f}" '
        f'fill="transparent" r="{RING_RADIUS}" cx="30" cy="30"/>'
    )
    out.append("      </svg>")
    out.append("    </div>")
    out.append("  </div>")

    if result.error is not None:
        out.append(f'  <p class="error">{html.escape(result.error)}</p>')

    out.append("  <table>")
    out.append("    <thead>")
    out.append("      <tr><th>Line</th><th>Severity</th><th>Finding</th><th>Fixed Code</th><th>Action</th></tr>")
    out.append("    </thead>")
    out.append("    <tbody>")
    if surface.rows:
        for row in surface.rows:
            out.extend(_render_row(row))
    else:
        out.append('      <tr><td colspan="5" class="empty">No issues found</td></tr>')
    out.append("    </tbody>")
    out.append("  </table>")
    out.append(f'  <footer>ProFix {html.escape(__version__)}</footer>')
    out.append("  <script>")
    out.append(_SCRIPT.replace("__TOTAL__", str(total)).replace("__FIXED__", str(surface.fixed)))
    out.append("  </script>")
    out.append("</body>")
    out.append("</html>")
    return "\n".join(out) + "\n"


def _render_row(row: ResultRow) -> list[str]:
    finding = row.finding
    severity_class = "fixed-tick" if row.state == "fixed" else finding.severity.lower()
    severity_label = "&#10003;" if row.state == "fixed" else html.escape(finding.severity)
    fix = finding.proposed_fix or ""

    if not finding.fixable:
        button = "-"
    else:
        disabled = " disabled" if row.state != "unfixed" else ""
        counted = " already-counted" if row.counted else ""
        label = {"unfixed": "Fix", "applying": "Applying...", "fixed": "Fixed"}[row.state]
        # The attribute value carries the raw fix; the applicator flattens it.
        button = (
            f'<button class="fix-btn{counted}" data-row="{row.row_id}" data-line="{finding.relative_line}" '
            f'data-fix="{html.escape(fix, quote=True)}"{disabled} onclick="handleFix(this)">{label}</button>'
        )

    return [
        f'      <tr data-row="{row.row_id}" data-line="{finding.relative_line}">',
        f"        <td>{finding.relative_line}</td>",
        f'        <td class="severity-cell {severity_class}">{severity_label}</td>',
        f"        <td>{html.escape(finding.description)}</td>",
        f"        <td><code>{fix_display(fix)}</code></td>",
        f"        <td>{button}</td>",
        "      </tr>",
    ]


_CSS = """
    body { font-family: system-ui, sans-serif; padding: 16px; }
    .header-container { display: flex; justify-content: space-between; align-items: center; margin-bottom: 24px; }
    .stats-and-chart { display: flex; align-items: center; gap: 15px; }
    .stats-wrapper { display: flex; flex-direction: column; align-items: flex-end; gap: 2px; font-weight: bold; }
    .errors-found { color: #fa0000; }
    .errors-fixed { color: #4ec9b0; }
    .progress-ring { transform: rotate(-90deg); }
    .progress-ring__circle { transition: stroke-dashoffset 0.35s; transform-origin: 50% 50%; stroke-linecap: round; }
    table { width: 100%; border-collapse: collapse; }
    th, td { border: 1px solid #444; padding: 10px; text-align: left; }
    .error { color: #f14c4c; font-weight: bold; }
    .empty { text-align: center; }
    .fixed-tick { color: #4ec9b0; text-align: center; font-weight: bold; }
    .fix-btn { border: none; padding: 6px 12px; cursor: pointer; border-radius: 3px; }
    .fix-btn:disabled { background: #4ec9b0; color: white; cursor: default; }
    code { padding: 2px 4px; border-radius: 3px; white-space: pre-wrap; }
""".rstrip("\n")


_SCRIPT = """
    const host = typeof acquireVsCodeApi === "function" ? acquireVsCodeApi() : window.parent;
    const total = __TOTAL__;
    let fixed = __FIXED__;
    const circle = document.getElementById("progress-bar");
    const circumference = 2 * Math.PI * 26;
    function setProgress(currentFixed) {
        const percent = total > 0 ? Math.min(1, currentFixed / total) : 1;
        circle.style.strokeDashoffset = circumference - percent * circumference;
    }
    function handleFix(btn) {
        if (btn.disabled) return;
        btn.disabled = true;
        btn.textContent = "Applying...";
        host.postMessage({
            command: "applyFix",
            row: parseInt(btn.dataset.row),
            relativeLine: parseInt(btn.dataset.line),
            fixText: btn.dataset.fix
        }, "*");
    }
    window.addEventListener("message", event => {
        const msg = event.data;
        const row = document.querySelector(`tr[data-row="${msg.row}"]`)
            || document.querySelector(`tr[data-line="${msg.relativeLine}"]`);
        if (!row) return;
        const btn = row.querySelector(".fix-btn");
        if (!btn) return;
        if (msg.command === "fixFailed" && btn.textContent === "Applying...") {
            btn.disabled = false;
            btn.textContent = "Fix";
            return;
        }
        if (msg.command !== "fixSucceeded") return;
        if (btn.textContent !== "Applying..." && !btn.classList.contains("already-counted")) return;
        if (!btn.classList.contains("already-counted")) {
            fixed++;
            btn.classList.add("already-counted");
            document.getElementById("fixed-count").textContent = fixed;
            document.getElementById("remaining-count").textContent = total - fixed;
            setProgress(fixed);
        }
        const cell = row.querySelector(".severity-cell");
        if (cell) { cell.className = "severity-cell fixed-tick"; cell.innerHTML = "&#10003;"; }
        btn.disabled = true;
        btn.textContent = "Fixed";
    });
""".strip("\n")
