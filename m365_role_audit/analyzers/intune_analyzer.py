"""
Intune Analyzer
Analyzes: Intune Service Administrator sprawl, reliance on directory roles
over Intune RBAC, policy ownership tracking.
"""

from __future__ import annotations

import logging
from typing import Sequence

from ..config import INTUNE_ASSIGNMENT_VOLUME, INTUNE_SERVICE_ADMIN_LIMIT
from ..models import AssignmentRecord, AssignmentType, OrganizationMetadata, Service
from ..stats.models import StatisticsSnapshot
from .base import BaseAnalyzer, affected_users

logger = logging.getLogger("m365_role_audit.analyzers.intune")

INTUNE_SERVICE_ADMIN_ROLES = frozenset({
    "Intune Service Administrator",
    "Intune Administrator",
})


class IntuneAnalyzer(BaseAnalyzer):
    name = "intune_analyzer"
    category = "Microsoft Intune"

    def _analyze(
        self,
        stats: StatisticsSnapshot,
        records: Sequence[AssignmentRecord],
        organization: OrganizationMetadata,
    ):
        intune = stats.service_records(Service.INTUNE.value)
        service_admins = [r for r in intune if r.role_name in INTUNE_SERVICE_ADMIN_ROLES]

        self.add_check(
            "intuneServiceAdministrators",
            len(service_admins) <= INTUNE_SERVICE_ADMIN_LIMIT,
            len(service_admins),
            INTUNE_SERVICE_ADMIN_LIMIT,
        )
        if not intune:
            logger.debug("No Intune assignments, skipping Intune rules")
            return

        self._analyze_service_admins(service_admins)
        self._analyze_rbac_usage(intune)
        self._analyze_policy_ownership(intune)

    def _analyze_service_admins(self, service_admins: list[AssignmentRecord]):
        if len(service_admins) <= INTUNE_SERVICE_ADMIN_LIMIT:
            return

        self.add_gap(
            issue="Excessive Intune Service Administrators",
            details=(
                f"{len(service_admins)} Intune Service Administrator assignments "
                f"(recommended maximum {INTUNE_SERVICE_ADMIN_LIMIT})"
            ),
            severity="Medium",
            recommendation="Delegate device management through scoped Intune RBAC roles",
            affected_users=affected_users(service_admins),
            compliance_frameworks=["NIST 800-53 AC-6"],
            remediation_steps=[
                "Identify administrators who only manage a subset of devices",
                "Assign them scoped Intune RBAC roles",
                "Remove the tenant-wide Intune Service Administrator role",
            ],
        )
        self.recommend("Medium", "Limit Intune Service Administrators and use scoped Intune RBAC roles")

    def _analyze_rbac_usage(self, intune: tuple[AssignmentRecord, ...]):
        directory_roles = sum(1 for r in intune if r.assignment_type == AssignmentType.AZURE_AD_ROLE)
        rbac_roles = sum(1 for r in intune if r.assignment_type == AssignmentType.INTUNE_RBAC)

        if directory_roles > rbac_roles and len(intune) > INTUNE_ASSIGNMENT_VOLUME:
            self.add_gap(
                issue="Intune Administration Relies on Directory Roles",
                details=(
                    f"{directory_roles} directory role assignments versus "
                    f"{rbac_roles} Intune RBAC assignments"
                ),
                severity="Low",
                recommendation="Prefer Intune RBAC roles with scope tags over directory roles",
                compliance_frameworks=["NIST 800-53 AC-6"],
            )

    def _analyze_policy_ownership(self, intune: tuple[AssignmentRecord, ...]):
        owners = [r for r in intune if r.assignment_type == AssignmentType.POLICY_OWNER]
        if owners:
            return

        self.add_gap(
            issue="No Intune Policy Ownership Tracking",
            details="No Intune policy has a tracked owner",
            severity="Low",
            recommendation="Record an accountable owner for each Intune policy",
        )
