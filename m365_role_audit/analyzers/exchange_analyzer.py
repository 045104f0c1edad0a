"""
Exchange Online Analyzer
Analyzes: Organization Management role group size, role group membership
and disabled members of Exchange role groups.
"""

from __future__ import annotations

from typing import Sequence

from ..config import EXCHANGE_ORG_MANAGEMENT_LIMIT
from ..models import AssignmentRecord, AssignmentType, OrganizationMetadata, Service
from ..stats.models import StatisticsSnapshot
from .base import BaseAnalyzer

ORGANIZATION_MANAGEMENT = "Organization Management"


class ExchangeAnalyzer(BaseAnalyzer):
    name = "exchange_analyzer"
    category = "Exchange Online"

    def _analyze(
        self,
        stats: StatisticsSnapshot,
        records: Sequence[AssignmentRecord],
        organization: OrganizationMetadata,
    ):
        exchange = stats.service_records(Service.EXCHANGE.value)
        org_management = {
            r.principal_id or r.user_principal_name
            for r in exchange
            if r.role_name == ORGANIZATION_MANAGEMENT
        }
        members = len(org_management)

        self.add_check(
            "exchangeOrganizationManagement",
            members <= EXCHANGE_ORG_MANAGEMENT_LIMIT,
            members,
            EXCHANGE_ORG_MANAGEMENT_LIMIT,
        )
        if not exchange:
            return

        role_group_records = [r for r in exchange if r.assignment_type == AssignmentType.ROLE_GROUP_MEMBER]
        exchange_alerts = []
        if members > EXCHANGE_ORG_MANAGEMENT_LIMIT:
            message = (
                f"Exchange Organization Management role group has {members} members "
                f"(recommended maximum {EXCHANGE_ORG_MANAGEMENT_LIMIT})"
            )
            self.add_alert("medium", message)
            exchange_alerts.append(message)
            self.recommend("Medium", "Reduce Organization Management membership to dedicated Exchange administrators")

        disabled = [r for r in exchange if r.user_enabled is False]
        if disabled:
            exchange_alerts.append(f"{len(disabled)} Exchange role assignments belong to disabled accounts")

        self.output.sections["exchangeSecurityAlerts"] = {
            "organizationManagementMembers": members,
            "roleGroupAssignments": len(role_group_records),
            "roleGroups": sorted({r.role_name for r in role_group_records if r.role_name}),
            "disabledMembers": len(disabled),
            "alerts": exchange_alerts,
        }
