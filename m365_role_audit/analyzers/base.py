"""
Base analyzer class — Abstract interface for all analysis rules.
Defines the ComplianceGap, ComplianceCheck and Recommendation models and
the analyzer contract.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Sequence

from ..models import AssignmentRecord, OrganizationMetadata
from ..stats.models import StatisticsSnapshot

logger = logging.getLogger("m365_role_audit.analyzers")

ALERT_SEVERITIES = ("critical", "high", "medium", "low")


@dataclass(frozen=True)
class ComplianceGap:
    """
    A compliance finding produced by an analysis rule.
    Immutable once created.
    """
    category: str                        # Service or control area
    issue: str                           # Short title
    details: str                         # What was observed
    severity: str = "Medium"             # Critical, High, Medium, Low
    recommendation: str = ""
    affected_users: tuple[str, ...] = ()
    compliance_frameworks: tuple[str, ...] = ()
    remediation_steps: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "issue": self.issue,
            "details": self.details,
            "severity": self.severity,
            "recommendation": self.recommendation,
            "affectedUsers": list(self.affected_users),
            "complianceFrameworks": list(self.compliance_frameworks),
            "remediationSteps": list(self.remediation_steps),
        }


@dataclass(frozen=True)
class ComplianceCheck:
    """Binary compliance flag for one rule with its observed value."""
    name: str
    compliant: bool
    current: Any
    threshold: Any

    def to_dict(self) -> dict:
        return {
            "compliant": self.compliant,
            "current": self.current,
            "threshold": self.threshold,
        }


@dataclass(frozen=True)
class Recommendation:
    priority: str                        # High, Medium, Low
    category: str
    recommendation: str

    def to_dict(self) -> dict:
        return {
            "priority": self.priority,
            "category": self.category,
            "recommendation": self.recommendation,
        }


@dataclass
class AnalyzerOutput:
    """Everything one analyzer run contributes to the report."""
    alerts: dict[str, list[str]] = field(
        default_factory=lambda: {sev: [] for sev in ALERT_SEVERITIES}
    )
    gaps: list[ComplianceGap] = field(default_factory=list)
    checks: list[ComplianceCheck] = field(default_factory=list)
    recommendations: list[Recommendation] = field(default_factory=list)
    sections: dict[str, Any] = field(default_factory=dict)


class BaseAnalyzer(ABC):
    """
    Abstract base class for all analyzers.
    Analyzers receive the statistics snapshot and the deduplicated records
    and produce alerts, gaps, compliance checks and recommendations.
    """

    name: str = "base"
    category: str = "General"

    def __init__(self):
        self.output = AnalyzerOutput()

    def analyze(
        self,
        stats: StatisticsSnapshot,
        records: Sequence[AssignmentRecord],
        organization: OrganizationMetadata,
    ) -> AnalyzerOutput:
        """
        Execute analysis and return this analyzer's output.
        Subclasses implement _analyze().
        """
        self.output = AnalyzerOutput()

        try:
            self._analyze(stats, records, organization)
        except Exception as e:
            logger.exception(f"[{self.name}] Analysis failed: {e}")
            self.add_gap(
                issue=f"{self.name} Analysis Error",
                details=f"Analyzer raised {type(e).__name__}: {e}",
                severity="Low",
                recommendation="Review the audit log; results for this area are incomplete",
            )

        logger.info(
            f"[{self.name}] {sum(len(v) for v in self.output.alerts.values())} alerts, "
            f"{len(self.output.gaps)} gaps"
        )
        return self.output

    @abstractmethod
    def _analyze(
        self,
        stats: StatisticsSnapshot,
        records: Sequence[AssignmentRecord],
        organization: OrganizationMetadata,
    ):
        """Implement rules. Record results via the add_* helpers."""
        raise NotImplementedError

    def add_alert(self, severity: str, message: str):
        self.output.alerts[severity.lower()].append(message)

    def add_gap(self, **kwargs) -> ComplianceGap:
        kwargs.setdefault("category", self.category)
        for key in ("affected_users", "compliance_frameworks", "remediation_steps"):
            if key in kwargs:
                kwargs[key] = tuple(kwargs[key])
        gap = ComplianceGap(**kwargs)
        self.output.gaps.append(gap)
        return gap

    def add_check(self, name: str, compliant: bool, current: Any, threshold: Any):
        self.output.checks.append(ComplianceCheck(name, compliant, current, threshold))

    def recommend(self, priority: str, recommendation: str):
        self.output.recommendations.append(
            Recommendation(priority=priority, category=self.category, recommendation=recommendation)
        )


def affected_users(records: Sequence[AssignmentRecord], limit: int = 25) -> list[str]:
    """Distinct UPNs (or display names) in first-seen order."""
    seen: dict[str, None] = {}
    for r in records:
        label = r.user_principal_name or r.display_name
        if label:
            seen.setdefault(label, None)
    return list(seen)[:limit]
