"""
Markdown audit report — rendered via Jinja2 from the report payload.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, select_autoescape

TEMPLATE_DIR = Path(__file__).parent / "templates"
TEMPLATE_NAME = "audit_report.md.j2"

_SEVERITY_ICONS = {
    "critical": "🔴",
    "high":     "🟠",
    "medium":   "🟡",
    "low":      "🟢",
}


def export_markdown(
    report: dict[str, Any],
    output_dir: Path,
    audit_id: str,
) -> Path:
    """Generate the Markdown audit report."""
    output_dir.mkdir(parents=True, exist_ok=True)
    filepath = output_dir / f"role_audit_report_{audit_id}.md"

    with open(filepath, "w", encoding="utf-8") as fh:
        fh.write(render_markdown(report, audit_id))

    return filepath


def render_markdown(report: dict[str, Any], audit_id: str = "") -> str:
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATE_DIR)),
        autoescape=select_autoescape([]),
        trim_blocks=True,
        lstrip_blocks=True,
    )
    template = env.get_template(TEMPLATE_NAME)
    return template.render(
        audit_id=audit_id,
        report=report,
        metadata=report["metadata"],
        summary=report["summary"],
        alerts=report["securityAlerts"],
        compliance=report["complianceAnalysis"],
        severity_icons=_SEVERITY_ICONS,
    )
