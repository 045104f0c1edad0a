"""
Privileged Access Analyzer
Analyzes: global administrator sprawl, disabled accounts holding roles,
PIM adoption, hybrid (on-premises synchronized) privileged identities.
"""

from __future__ import annotations

import logging
from typing import Sequence

from ..config import GLOBAL_ADMIN_LIMIT
from ..models import AssignmentRecord, OrganizationMetadata
from ..stats.aggregator import pim_adoption_rate
from ..stats.models import StatisticsSnapshot
from .base import BaseAnalyzer, affected_users

logger = logging.getLogger("m365_role_audit.analyzers.privilege")


class PrivilegeAnalyzer(BaseAnalyzer):
    name = "privilege_analyzer"
    category = "Privileged Access"

    def _analyze(
        self,
        stats: StatisticsSnapshot,
        records: Sequence[AssignmentRecord],
        organization: OrganizationMetadata,
    ):
        self._analyze_global_admins(stats)
        self._analyze_disabled_users(stats)
        self._analyze_pim_adoption(stats)
        self._analyze_hybrid_identities(stats)

    def _analyze_global_admins(self, stats: StatisticsSnapshot):
        count = len(stats.global_admins)
        self.add_check("globalAdminLimit", count <= GLOBAL_ADMIN_LIMIT, count, GLOBAL_ADMIN_LIMIT)
        if count <= GLOBAL_ADMIN_LIMIT:
            return

        self.add_alert(
            "critical",
            f"Excessive Global Administrators: {count} assignments "
            f"(recommended maximum {GLOBAL_ADMIN_LIMIT})",
        )
        self.add_gap(
            issue="Excessive Global Administrators",
            details=f"{count} Global Administrator assignments exceed the limit of {GLOBAL_ADMIN_LIMIT}",
            severity="Critical",
            recommendation="Reduce Global Administrators to 2-4 break-glass and operational accounts",
            affected_users=affected_users(stats.global_admins),
            compliance_frameworks=["CIS M365 1.1.3", "NIST 800-53 AC-6"],
            remediation_steps=[
                "Review every Global Administrator assignment with its owner",
                "Move day-to-day tasks to least-privileged workload roles",
                "Convert the remaining assignments to PIM-eligible",
            ],
        )
        self.recommend("High", "Reduce the number of Global Administrators to 5 or fewer")

    def _analyze_disabled_users(self, stats: StatisticsSnapshot):
        count = len(stats.disabled_users)
        self.add_check("disabledUsersWithRoles", count == 0, count, 0)
        if count == 0:
            return

        self.add_alert("high", f"{count} role assignments are held by disabled user accounts")
        self.add_gap(
            issue="Disabled Accounts Holding Roles",
            details=f"{count} assignments belong to accounts with accountEnabled=false",
            severity="High",
            recommendation="Remove role assignments from disabled accounts",
            affected_users=affected_users(stats.disabled_users),
            compliance_frameworks=["NIST 800-53 AC-2", "ISO 27001 A.9.2.6"],
            remediation_steps=[
                "Confirm the accounts are decommissioned",
                "Remove their directory and workload role assignments",
            ],
        )
        self.recommend("High", "Remove role assignments held by disabled accounts")

    def _analyze_pim_adoption(self, stats: StatisticsSnapshot):
        eligible = len(stats.pim_eligible)
        permanent = len(stats.permanent_active)
        no_pim = eligible == 0 and stats.total_assignments > 0

        self.add_check("pimAdoption", not no_pim, pim_adoption_rate(eligible, permanent), 1)
        if not no_pim:
            return

        self.add_alert(
            "medium",
            "No PIM-eligible assignments found; adopt Privileged Identity Management "
            "for just-in-time access",
        )
        self.recommend("Medium", "Convert standing privileged assignments to PIM-eligible assignments")

    def _analyze_hybrid_identities(self, stats: StatisticsSnapshot):
        synced = stats.on_prem_synced
        if not synced:
            return

        self.add_alert(
            "low",
            f"{len(synced)} privileged assignments are held by on-premises synchronized identities",
        )
        self.recommend("Low", "Use cloud-only accounts for privileged roles in hybrid environments")
