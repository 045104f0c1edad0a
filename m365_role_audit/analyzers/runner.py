"""
Analysis runner — executes every analyzer over one statistics snapshot and
merges their output into a single SecurityAnalysis.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

from ..config import SEVERITY_ORDER
from ..models import AssignmentRecord, OrganizationMetadata
from ..stats.models import StatisticsSnapshot
from .base import ALERT_SEVERITIES, ComplianceCheck, ComplianceGap, Recommendation

logger = logging.getLogger("m365_role_audit.analyzers.runner")

_PRIORITY_ORDER = {p: i for i, p in enumerate(("High", "Medium", "Low"))}


@dataclass
class SecurityAnalysis:
    """Merged output of all analyzers."""
    alerts: dict[str, list[str]] = field(
        default_factory=lambda: {sev: [] for sev in ALERT_SEVERITIES}
    )
    gaps: list[ComplianceGap] = field(default_factory=list)
    checks: dict[str, ComplianceCheck] = field(default_factory=dict)
    recommendations: list[Recommendation] = field(default_factory=list)
    sections: dict[str, Any] = field(default_factory=dict)

    @property
    def compliance_score(self) -> float:
        """Share of compliance checks that pass, as a percentage."""
        if not self.checks:
            return 100.0
        passed = sum(1 for c in self.checks.values() if c.compliant)
        return round(passed / len(self.checks) * 100, 2)

    def sorted_gaps(self) -> list[ComplianceGap]:
        order = {s: i for i, s in enumerate(SEVERITY_ORDER)}
        return sorted(self.gaps, key=lambda g: order.get(g.severity, len(order)))

    def sorted_recommendations(self) -> list[Recommendation]:
        return sorted(
            self.recommendations,
            key=lambda r: _PRIORITY_ORDER.get(r.priority, len(_PRIORITY_ORDER)),
        )


def run_analysis(
    stats: StatisticsSnapshot,
    records: Sequence[AssignmentRecord],
    organization: OrganizationMetadata,
    analyzers: Sequence[type] | None = None,
) -> SecurityAnalysis:
    """Run all analyzers against the snapshot and merge their output."""
    from . import ALL_ANALYZERS

    merged = SecurityAnalysis()
    for cls in analyzers or ALL_ANALYZERS:
        output = cls().analyze(stats, records, organization)
        for severity, messages in output.alerts.items():
            merged.alerts.setdefault(severity, []).extend(messages)
        merged.gaps.extend(output.gaps)
        for check in output.checks:
            merged.checks[check.name] = check
        merged.recommendations.extend(output.recommendations)
        merged.sections.update(output.sections)

    logger.info(
        f"Analysis complete: {sum(len(v) for v in merged.alerts.values())} alerts, "
        f"{len(merged.gaps)} compliance gaps, {len(merged.checks)} checks"
    )
    return merged
