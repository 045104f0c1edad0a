"""
Workload collectors — SharePoint Online, Microsoft Teams, Microsoft
Defender, Microsoft Purview and Power Platform.

These workloads are administered through directory roles. Each collector
reports the directory roles that belong to its workload and, when enabled,
the overarching roles that also grant control over it.
"""

from __future__ import annotations

import dataclasses
import logging

from ..models import (
    AssignmentRecord,
    AssignmentType,
    OVERARCHING_ROLES,
    RoleScope,
    Service,
)
from .base import BaseCollector, CollectorResult

logger = logging.getLogger("m365_role_audit.collectors.services")


class DirectoryRoleCollector(BaseCollector):
    """Reports the directory roles named in `service_roles`."""

    service_roles: frozenset[str] = frozenset()

    async def collect(self, result: CollectorResult):
        result.add_records(self.project(await self.directory_records(result)))

    def project(self, records: list[AssignmentRecord]) -> list[AssignmentRecord]:
        """Re-label directory records as this service's assignments."""
        projected = []
        for r in records:
            if r.role_name in self.service_roles:
                scope = RoleScope.SERVICE_SPECIFIC.value
            elif r.role_name in OVERARCHING_ROLES and self.wants_overarching():
                scope = RoleScope.OVERARCHING.value
            else:
                continue
            assignment_type = r.assignment_type
            if assignment_type == AssignmentType.ACTIVE:
                assignment_type = AssignmentType.AZURE_AD_ROLE
            projected.append(dataclasses.replace(
                r,
                service=self.service.value,
                assignment_type=assignment_type,
                role_scope=scope,
            ))
        logger.debug(f"[{self.name}] {len(projected)} of {len(records)} directory records apply")
        return projected


class SharePointCollector(DirectoryRoleCollector):
    name = "sharepoint"
    service = Service.SHAREPOINT
    service_key = "SharePoint"
    service_roles = frozenset({
        "SharePoint Administrator",
        "SharePoint Embedded Administrator",
    })


class PurviewCollector(DirectoryRoleCollector):
    name = "purview"
    service = Service.PURVIEW
    service_key = "Purview"
    service_roles = frozenset({
        "Compliance Data Administrator",
        "Information Protection Administrator",
        "Insights Administrator",
    })


class TeamsCollector(DirectoryRoleCollector):
    name = "teams"
    service = Service.TEAMS
    service_key = "Teams"
    service_roles = frozenset({
        "Teams Administrator",
        "Teams Communications Administrator",
        "Teams Communications Support Engineer",
        "Teams Communications Support Specialist",
        "Teams Devices Administrator",
        "Teams Telephony Administrator",
    })


class DefenderCollector(DirectoryRoleCollector):
    name = "defender"
    service = Service.DEFENDER
    service_key = "Defender"
    service_roles = frozenset({
        "Security Operator",
        "Cloud App Security Administrator",
    })


class PowerPlatformCollector(DirectoryRoleCollector):
    name = "power_platform"
    service = Service.POWER_PLATFORM
    service_key = "PowerPlatform"
    service_roles = frozenset({
        "Power Platform Administrator",
        "Dynamics 365 Administrator",
        "Fabric Administrator",
    })
