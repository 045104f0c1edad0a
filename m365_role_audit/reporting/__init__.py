"""Reporting package — report assembly and multi-format output generation."""

from .builder import build_report
from .json_export import export_json
from .csv_export import export_csv
from .markdown_report import export_markdown, render_markdown

__all__ = [
    "build_report",
    "export_json",
    "export_csv",
    "export_markdown",
    "render_markdown",
]
