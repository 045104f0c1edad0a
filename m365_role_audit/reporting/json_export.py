"""
JSON exporter — Writes the full audit report payload.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any


def export_json(
    report: dict[str, Any],
    output_dir: Path,
    audit_id: str,
) -> Path:
    """
    Write the report to a JSON file.

    Returns:
        Path to the created JSON file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    filepath = output_dir / f"role_audit_{audit_id}.json"
    with open(filepath, "w", encoding="utf-8") as fh:
        json.dump(report, fh, indent=2, default=str, ensure_ascii=False)

    return filepath
