"""
Audit pipeline — deduplication, statistics, analysis and report assembly
over one collected record set.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional, Union

from .analyzers import SecurityAnalysis, run_analysis
from .dedup import DeduplicationMode, deduplicate
from .models import AssignmentRecord, DuplicateDescriptor, OrganizationMetadata
from .reporting import build_report
from .stats import StatisticsSnapshot, compute_statistics

logger = logging.getLogger("m365_role_audit.pipeline")


@dataclass(frozen=True)
class AuditOutcome:
    records: tuple[AssignmentRecord, ...]
    removed: tuple[DuplicateDescriptor, ...]
    stats: StatisticsSnapshot
    analysis: SecurityAnalysis
    report: dict[str, Any]


def run_audit(
    records: Iterable[AssignmentRecord],
    organization: Optional[OrganizationMetadata] = None,
    mode: Union[DeduplicationMode, str] = DeduplicationMode.STRICT,
    prefer_authoritative_source: bool = False,
    detailed: bool = True,
    now: Optional[datetime] = None,
) -> AuditOutcome:
    """
    Run the in-memory part of an audit.

    `now` is used both as the PIM expiry reference time and as the report
    timestamp, so a fixed value gives a reproducible report.
    """
    organization = organization or OrganizationMetadata()

    unique, removed = deduplicate(records, mode, prefer_authoritative_source)
    stats = compute_statistics(unique, detailed=detailed, now=now)
    analysis = run_analysis(stats, unique, organization)
    report = build_report(stats, unique, organization, removed=removed, generated_at=now, analysis=analysis)

    logger.info(
        f"Audit of {organization.organization_name}: {len(unique)} assignments kept, "
        f"{len(removed)} duplicates removed"
    )
    return AuditOutcome(
        records=tuple(unique),
        removed=tuple(removed),
        stats=stats,
        analysis=analysis,
        report=report,
    )
