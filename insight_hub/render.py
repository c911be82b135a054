"""
Server-side rendering of the four page states.

Everything here is derived from the session state; no business logic beyond
formatting dispatch. All user and model supplied text goes through escape().
Charts are emitted as Plotly figure JSON and drawn client-side.
"""

import json
from html import escape
from typing import Any, Dict, List, Optional

from . import config
from .schemas import AnalysisResult, ChartSuggestion
from .session import Failure, Idle, Loading, State, Success

SEVERITY_CLASSES = {
    "critical": "severity-critical",
    "high": "severity-high",
    "medium": "severity-medium",
    "low": "severity-low",
}
NEUTRAL_SEVERITY_CLASS = "severity-neutral"

PIE_COLORS = ["#0ea5e9", "#6366f1", "#a855f7", "#ec4899", "#f97316"]

PLOTLY_CDN = "https://cdn.plot.ly/plotly-2.35.2.min.js"
LOADING_REFRESH_S = 2


def severity_class(severity: Optional[str]) -> str:
    if not severity:
        return NEUTRAL_SEVERITY_CLASS
    return SEVERITY_CLASSES.get(severity.strip().lower(), NEUTRAL_SEVERITY_CLASS)


def chart_figure(suggestion: ChartSuggestion) -> Optional[Dict[str, Any]]:
    """
    DETERMINISTICALLY convert a chart suggestion to a Plotly figure.

    Returns None for chart types other than bar, line and pie.
    """
    names = [d.name for d in suggestion.data]
    values = [d.value for d in suggestion.data]
    layout: Dict[str, Any] = {
        "autosize": True,
        "height": 320,
        "margin": {"l": 50, "r": 20, "t": 20, "b": 50, "pad": 4},
        "paper_bgcolor": "rgba(0,0,0,0)",
        "plot_bgcolor": "rgba(248,249,250,1)",
        "font": {"family": "system-ui, -apple-system, sans-serif", "size": 12},
        "xaxis": {"gridcolor": "rgba(0,0,0,0.1)"},
        "yaxis": {"gridcolor": "rgba(0,0,0,0.1)"},
    }

    chart_type = suggestion.chart_type.strip().lower()
    if chart_type == "bar":
        trace = {"type": "bar", "x": names, "y": values, "name": "value", "marker": {"color": "#3b82f6"}}
    elif chart_type == "line":
        trace = {
            "type": "scatter",
            "mode": "lines+markers",
            "x": names,
            "y": values,
            "name": "value",
            "line": {"color": "#3b82f6", "width": 2, "shape": "spline"},
        }
    elif chart_type == "pie":
        trace = {
            "type": "pie",
            "labels": names,
            "values": values,
            "textinfo": "label+percent",
            "hoverinfo": "label+percent+value",
            "marker": {"colors": [PIE_COLORS[i % len(PIE_COLORS)] for i in range(len(values))]},
        }
        layout.pop("xaxis")
        layout.pop("yaxis")
    else:
        return None

    return {"data": [trace], "layout": layout}


def render_chart(suggestion: ChartSuggestion) -> str:
    figure = chart_figure(suggestion)
    if figure is None:
        body = f"<p class=\"chart-fallback\">Unsupported chart type: {escape(suggestion.chart_type)}</p>"
    else:
        body = (
            "<div class=\"plotly-chart\" data-figure=\""
            f"{escape(json.dumps(figure), quote=True)}\"></div>"
        )
    return (
        "<div class=\"chart\">"
        f"<h4>{escape(suggestion.title)}</h4>"
        f"<p class=\"muted\">{escape(suggestion.description)}</p>"
        f"{body}"
        "</div>"
    )


def render_preview_table(rows: Optional[List[List[str]]]) -> str:
    if not rows:
        return "<p>No data to display.</p>"
    headers = "".join(f"<th scope=\"col\">{escape(h)}</th>" for h in rows[0])
    body = "".join(
        "<tr>" + "".join(f"<td>{escape(cell)}</td>" for cell in row) + "</tr>"
        for row in rows[1:]
    )
    return (
        "<div class=\"table-scroll\">"
        f"<table><thead><tr>{headers}</tr></thead><tbody>{body}</tbody></table>"
        "</div>"
    )


def _card(title: str, inner: str) -> str:
    return f"<section class=\"card\"><h3>{escape(title)}</h3>{inner}</section>"


def render_dashboard(result: AnalysisResult, preview: Optional[List[List[str]]], file_name: str) -> str:
    parts = [_card("Executive Summary", f"<p>{escape(result.summary)}</p>")]

    grid = []
    if result.chart_suggestion is not None:
        grid.append(_card("Visualized Trend", render_chart(result.chart_suggestion)))
    if preview is not None:
        grid.append(_card(f"Data Preview: {file_name or 'Uploaded Data'}", render_preview_table(preview)))
    if grid:
        parts.append("<div class=\"grid\">" + "".join(grid) + "</div>")

    anomalies = "".join(
        f"<div class=\"anomaly {severity_class(a.severity)}\">"
        f"<div class=\"row\"><p class=\"strong\">{escape(a.description)}</p>"
        f"<span class=\"badge\">{escape(a.severity)}</span></div>"
        f"<p class=\"small\"><strong>Implication:</strong> {escape(a.implication)}</p>"
        "</div>"
        for a in result.anomalies
    )
    parts.append(_card("Detected Anomalies", f"<div class=\"stack\">{anomalies}</div>"))

    causes = "".join(
        "<div class=\"root-cause\">"
        f"<p class=\"strong accent\">{escape(c.anomaly)}</p>"
        f"<p class=\"small\"><strong>Suspected Cause:</strong> {escape(c.cause)}</p>"
        f"<p class=\"small\"><strong>Recommendation:</strong> {escape(c.recommendation)}</p>"
        "</div>"
        for c in result.root_causes
    )
    parts.append(_card("Root Cause Analysis & Recommendations", f"<div class=\"stack\">{causes}</div>"))

    return "<div id=\"analysis-dashboard\">" + "".join(parts) + "</div>"


def render_upload_form() -> str:
    max_mb = config.get_max_file_size_bytes() / (1024 * 1024)
    return (
        "<div id=\"file-upload\" class=\"center\">"
        "<h2>Unlock Insights from Your Support Data</h2>"
        "<p class=\"muted\">Upload user logs, usage dumps, or any CSV data. Our AI agent will automatically "
        "surface anomalies, uncover root causes, and summarize patterns.</p>"
        "<form id=\"upload-form\" method=\"post\" action=\"/upload\" enctype=\"multipart/form-data\">"
        "<label for=\"file-input\" id=\"file-upload-area\" class=\"dropzone\">"
        "<span class=\"strong\">Upload a CSV file or drag and drop</span>"
        f"<span class=\"small muted\">Max file size {max_mb:g}MB</span>"
        "<input id=\"file-input\" name=\"file\" type=\"file\" accept=\".csv\" class=\"sr-only\">"
        "</label>"
        "</form>"
        "</div>"
    )


def render_loader() -> str:
    return (
        "<div id=\"loader\" class=\"center\">"
        "<div class=\"spinner\"></div>"
        "<p class=\"strong\">Analyzing Data...</p>"
        "<p class=\"muted\">The AI is surfacing insights, please wait a moment.</p>"
        "</div>"
    )


def render_error(message: str) -> str:
    return f"<div id=\"error-message\" class=\"error\"><p><strong>Error:</strong> {escape(message)}</p></div>"


def render_page(state: State) -> str:
    if isinstance(state, Success):
        main = render_dashboard(state.result, state.preview, state.file_name)
    elif isinstance(state, Loading):
        main = render_loader()
    elif isinstance(state, Failure):
        main = render_error(state.message)
    else:
        main = render_upload_form()

    show_reset = not isinstance(state, Idle)
    refresh = (
        f"<meta http-equiv=\"refresh\" content=\"{LOADING_REFRESH_S}\">" if isinstance(state, Loading) else ""
    )
    reset = (
        "<form method=\"post\" action=\"/reset\"><button type=\"submit\">Analyze New File</button></form>"
        if show_reset
        else ""
    )
    return _PAGE_TEMPLATE.format(refresh=refresh, reset=reset, main=main, plotly=PLOTLY_CDN)


_PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
{refresh}
<title>Support Intelligence Hub</title>
<script src="{plotly}"></script>
<style>
body {{ font-family: system-ui, -apple-system, sans-serif; background: #f9fafb; color: #0f172a; margin: 0; }}
header {{ display: flex; justify-content: space-between; align-items: center; padding: 1.5rem; }}
main {{ max-width: 72rem; margin: 0 auto; padding: 1rem; }}
.center {{ text-align: center; }}
.muted {{ color: #64748b; }}
.small {{ font-size: 0.875rem; }}
.strong {{ font-weight: 600; }}
.accent {{ color: #2563eb; }}
.card {{ background: #fff; border: 1px solid #e2e8f0; border-radius: 0.5rem; padding: 1.25rem; margin-bottom: 2rem; }}
.grid {{ display: grid; grid-template-columns: repeat(auto-fit, minmax(24rem, 1fr)); gap: 2rem; }}
.stack > div {{ border-radius: 0.375rem; border: 1px solid; padding: 1rem; margin-bottom: 1rem; }}
.row {{ display: flex; justify-content: space-between; align-items: center; }}
.badge {{ font-size: 0.75rem; border-radius: 9999px; padding: 0.1rem 0.5rem; }}
.severity-critical {{ border-color: #f87171; background: #fee2e2; color: #991b1b; }}
.severity-high {{ border-color: #fb923c; background: #ffedd5; color: #9a3412; }}
.severity-medium {{ border-color: #facc15; background: #fef9c3; color: #854d0e; }}
.severity-low {{ border-color: #60a5fa; background: #dbeafe; color: #1e40af; }}
.severity-neutral {{ border-color: #cbd5e1; background: #f1f5f9; color: #334155; }}
.root-cause {{ border-color: #e2e8f0; background: #f8fafc; }}
.table-scroll {{ max-height: 16rem; overflow: auto; border: 1px solid #e2e8f0; border-radius: 0.5rem; }}
table {{ border-collapse: collapse; min-width: 100%; font-size: 0.875rem; }}
th {{ position: sticky; top: 0; background: #f1f5f9; text-align: left; padding: 0.5rem 0.75rem; }}
td {{ white-space: nowrap; padding: 0.5rem 0.75rem; border-top: 1px solid #e2e8f0; }}
.dropzone {{ display: block; max-width: 36rem; margin: 2.5rem auto; border: 2px dashed #cbd5e1; border-radius: 0.5rem; padding: 3rem; cursor: pointer; }}
.dropzone.dragging {{ border-color: #3b82f6; background: #eff6ff; }}
.dropzone span {{ display: block; }}
.sr-only {{ position: absolute; width: 1px; height: 1px; overflow: hidden; clip: rect(0, 0, 0, 0); }}
.spinner {{ margin: 5rem auto 1rem; width: 4rem; height: 4rem; border: 4px dashed #3b82f6; border-radius: 50%; animation: spin 1s linear infinite; }}
@keyframes spin {{ to {{ transform: rotate(360deg); }} }}
.error {{ margin: 1rem 0; border: 1px solid #fca5a5; background: #fee2e2; color: #b91c1c; border-radius: 0.5rem; padding: 1rem; text-align: center; }}
</style>
</head>
<body>
<header>
<div><h1>Support Intelligence Hub</h1><p class="muted small">AI-Powered Log &amp; Data Analysis</p></div>
{reset}
</header>
<main>
{main}
</main>
<script>
document.querySelectorAll(".plotly-chart").forEach(function (el) {{
  var fig = JSON.parse(el.dataset.figure);
  Plotly.newPlot(el, fig.data, fig.layout, {{responsive: true, displayModeBar: false}});
}});
var form = document.getElementById("upload-form");
if (form) {{
  var input = document.getElementById("file-input");
  var zone = document.getElementById("file-upload-area");
  input.addEventListener("change", function () {{ if (input.files.length) form.submit(); }});
  ["dragenter", "dragover"].forEach(function (evt) {{
    zone.addEventListener(evt, function (e) {{ e.preventDefault(); zone.classList.add("dragging"); }});
  }});
  zone.addEventListener("dragleave", function () {{ zone.classList.remove("dragging"); }});
  zone.addEventListener("drop", function (e) {{
    e.preventDefault();
    zone.classList.remove("dragging");
    if (e.dataTransfer.files.length) {{ input.files = e.dataTransfer.files; form.submit(); }}
  }});
}}
</script>
</body>
</html>
"""
