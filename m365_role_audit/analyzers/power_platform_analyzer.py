"""
Power Platform Analyzer
Analyzes: service principals holding Power Platform roles and
Power Platform Administrator sprawl.
"""

from __future__ import annotations

from typing import Sequence

from ..config import POWER_PLATFORM_ADMIN_LIMIT
from ..models import AssignmentRecord, OrganizationMetadata, PrincipalType, Service
from ..stats.models import StatisticsSnapshot
from .base import BaseAnalyzer, affected_users

POWER_PLATFORM_ADMIN = "Power Platform Administrator"


class PowerPlatformAnalyzer(BaseAnalyzer):
    name = "power_platform_analyzer"
    category = "Power Platform"

    def _analyze(
        self,
        stats: StatisticsSnapshot,
        records: Sequence[AssignmentRecord],
        organization: OrganizationMetadata,
    ):
        power_platform = stats.service_records(Service.POWER_PLATFORM.value)
        admins = [r for r in power_platform if r.role_name == POWER_PLATFORM_ADMIN]

        self.add_check(
            "powerPlatformAdministrators",
            len(admins) <= POWER_PLATFORM_ADMIN_LIMIT,
            len(admins),
            POWER_PLATFORM_ADMIN_LIMIT,
        )

        apps = [r for r in power_platform if r.principal_type == PrincipalType.SERVICE_PRINCIPAL.value]
        if apps:
            self.add_gap(
                issue="Service Principals with Power Platform Roles",
                details=f"{len(apps)} Power Platform assignments are held by applications",
                severity="Medium",
                recommendation="Review application permissions and replace role assignments with scoped API permissions",
                affected_users=affected_users(apps),
                compliance_frameworks=["NIST 800-53 AC-6", "NIST 800-53 IA-9"],
            )

        if len(admins) > POWER_PLATFORM_ADMIN_LIMIT:
            self.add_gap(
                issue="Excessive Power Platform Administrators",
                details=(
                    f"{len(admins)} Power Platform Administrator assignments "
                    f"(recommended maximum {POWER_PLATFORM_ADMIN_LIMIT})"
                ),
                severity="Medium",
                recommendation="Use environment-level admin roles instead of the tenant-wide role",
                affected_users=affected_users(admins),
                compliance_frameworks=["NIST 800-53 AC-6"],
            )
            self.recommend("Medium", "Reduce Power Platform Administrators to 5 or fewer")
