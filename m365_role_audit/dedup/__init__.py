"""Deduplication package — cross-service and source-level duplicate removal."""

from .engine import (
    DeduplicationMode,
    DeduplicationModeError,
    DuplicateAction,
    deduplicate,
    outranks,
    prefer_azure_ad_source,
)
from .source import merge_source_assignments

__all__ = [
    "DeduplicationMode",
    "DeduplicationModeError",
    "DuplicateAction",
    "deduplicate",
    "outranks",
    "prefer_azure_ad_source",
    "merge_source_assignments",
]
