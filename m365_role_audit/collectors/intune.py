"""
Microsoft Intune Collector
Directory roles for Intune, Intune RBAC role assignments (one record per
member group of each assignment), and policy owners: the principal that
created each compliance policy or configuration profile, taken from the
Intune audit log.
"""

from __future__ import annotations

import asyncio
import logging

from ..models import (
    AssignmentRecord,
    AssignmentType,
    PrincipalType,
    Service,
    UNKNOWN_PRINCIPAL,
    parse_graph_datetime,
    role_scope_for,
)
from .base import CollectorResult
from .principals import PrincipalInfo
from .services import DirectoryRoleCollector

logger = logging.getLogger("m365_role_audit.collectors.intune")

INTUNE_ROLE_ASSIGNMENTS = "deviceManagement/roleAssignments"
INTUNE_AUDIT_EVENTS = "deviceManagement/auditEvents"
INTUNE_POLICY_ENDPOINTS = (
    ("deviceManagement/deviceCompliancePolicies", "Compliance Policy"),
    ("deviceManagement/deviceConfigurations", "Configuration Profile"),
)


class IntuneCollector(DirectoryRoleCollector):
    name = "intune"
    service = Service.INTUNE
    service_key = "Intune"
    service_roles = frozenset({
        "Intune Administrator",
        "Intune Service Administrator",
    })

    async def collect(self, result: CollectorResult):
        await super().collect(result)
        result.add_records(await self._collect_rbac(result))
        result.add_records(await self._collect_policy_owners(result))

    async def _collect_rbac(self, result: CollectorResult) -> list[AssignmentRecord]:
        assignments = await self.safe_get_all(
            INTUNE_ROLE_ASSIGNMENTS,
            result,
            params={"$expand": "roleDefinition"},
            skip_top=True,
        )
        if not assignments:
            return []

        group_ids = list(dict.fromkeys(
            gid for a in assignments for gid in (a.get("members") or []) if gid
        ))
        principals, counts = await asyncio.gather(
            self.resolver.resolve(group_ids),
            self._member_counts(group_ids, result),
        )

        records = []
        for a in assignments:
            definition = a.get("roleDefinition") or {}
            role_name = definition.get("displayName") or a.get("displayName") or "Unknown Intune Role"
            is_built_in = definition.get("isBuiltIn")
            role_type = None
            if is_built_in is not None:
                role_type = "BuiltIn" if is_built_in else "Custom"

            for gid in a.get("members") or []:
                info = principals.get(gid) or PrincipalInfo(
                    principal_id=gid, principal_type=PrincipalType.GROUP.value,
                )
                records.append(AssignmentRecord(
                    service=self.service.value,
                    role_name=role_name,
                    user_principal_name=info.user_principal_name,
                    display_name=info.display_name,
                    principal_id=gid,
                    role_scope=role_scope_for(role_name),
                    assignment_type=AssignmentType.INTUNE_RBAC,
                    principal_type=info.principal_type,
                    on_premises_sync_enabled=info.on_premises_sync_enabled,
                    role_definition_id=definition.get("id"),
                    group_member_count=counts.get(gid),
                    role_type=role_type,
                    is_built_in=is_built_in,
                ))

        logger.info(f"[{self.name}] {len(records)} Intune RBAC group assignments")
        return records

    async def _member_counts(self, group_ids: list[str], result: CollectorResult) -> dict[str, int]:
        members = await asyncio.gather(*(
            self.safe_get_all(f"groups/{gid}/members", result, params={"$select": "id"})
            for gid in group_ids
        ))
        return {gid: len(m) for gid, m in zip(group_ids, members)}

    async def _collect_policy_owners(self, result: CollectorResult) -> list[AssignmentRecord]:
        """One Policy Owner record per principal that created a current policy."""
        policy_lists = await asyncio.gather(*(
            self.safe_get_all(endpoint, result, params={"$select": "id,displayName"})
            for endpoint, _ in INTUNE_POLICY_ENDPOINTS
        ))
        policies = {}
        for (_, kind), items in zip(INTUNE_POLICY_ENDPOINTS, policy_lists):
            for p in items:
                if p.get("id"):
                    policies[p["id"]] = f"{kind}: {p.get('displayName') or p['id']}"
        if not policies:
            return []

        events = await self.safe_get_all(
            INTUNE_AUDIT_EVENTS,
            result,
            params={"$filter": "activityOperationType eq 'Create'"},
        )

        # Earliest create event per policy names its owner
        owners: dict[str, dict] = {}
        for event in sorted(events, key=lambda e: e.get("activityDateTime") or ""):
            actor = event.get("actor") or {}
            owner_key = actor.get("userPrincipalName") or actor.get("applicationId")
            if not owner_key:
                continue
            for resource in event.get("resources") or []:
                label = policies.pop(resource.get("resourceId"), None)
                if label is None:
                    continue
                owner = owners.setdefault(owner_key, {
                    "actor": actor,
                    "first_created": event.get("activityDateTime"),
                    "policies": [],
                })
                owner["policies"].append(label)

        if policies:
            logger.debug(f"[{self.name}] {len(policies)} Intune policies have no creation event in the audit log")

        records = []
        for owner_key, owner in owners.items():
            actor = owner["actor"]
            if actor.get("userPrincipalName"):
                principal_type = PrincipalType.USER.value
                display_name = actor["userPrincipalName"]
            else:
                principal_type = PrincipalType.SERVICE_PRINCIPAL.value
                display_name = actor.get("applicationDisplayName") or UNKNOWN_PRINCIPAL
            records.append(AssignmentRecord(
                service=self.service.value,
                role_name=AssignmentType.POLICY_OWNER,
                user_principal_name=owner_key,
                display_name=display_name,
                principal_id=actor.get("userId") or actor.get("applicationId"),
                role_scope=role_scope_for(AssignmentType.POLICY_OWNER),
                assignment_type=AssignmentType.POLICY_OWNER,
                assigned_date_time=parse_graph_datetime(owner["first_created"]),
                principal_type=principal_type,
                management_scope="; ".join(sorted(owner["policies"])),
            ))

        logger.info(f"[{self.name}] {len(records)} Intune policy owners")
        return records
