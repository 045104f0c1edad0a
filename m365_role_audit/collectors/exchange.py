"""
Exchange Online Collector
Directory roles for Exchange plus native Exchange RBAC role assignments
from the unified role management API (beta).
"""

from __future__ import annotations

import asyncio
import logging

from ..models import AssignmentRecord, AssignmentType, Service, role_scope_for
from .base import CollectorResult
from .principals import PrincipalInfo
from .services import DirectoryRoleCollector

logger = logging.getLogger("m365_role_audit.collectors.exchange")

EXCHANGE_ROLE_DEFINITIONS = "roleManagement/exchange/roleDefinitions"
EXCHANGE_ROLE_ASSIGNMENTS = "roleManagement/exchange/roleAssignments"


class ExchangeCollector(DirectoryRoleCollector):
    name = "exchange"
    service = Service.EXCHANGE
    service_key = "Exchange"
    service_roles = frozenset({
        "Exchange Administrator",
        "Exchange Recipient Administrator",
    })

    async def collect(self, result: CollectorResult):
        await super().collect(result)
        result.metadata["exchange_data_enhanced"] = False

        if not self.config.enable_beta_endpoints:
            result.add_warning("Beta endpoints disabled; native Exchange RBAC not collected")
            return

        native = await self._collect_native_rbac(result)
        if native:
            result.add_records(native)
            result.metadata["exchange_data_enhanced"] = True

    async def _collect_native_rbac(self, result: CollectorResult) -> list[AssignmentRecord]:
        """Exchange role assignments as role group membership records."""
        definitions, assignments = await asyncio.gather(
            self.safe_get_all(EXCHANGE_ROLE_DEFINITIONS, result, beta=True, skip_top=True),
            self.safe_get_all(EXCHANGE_ROLE_ASSIGNMENTS, result, beta=True, skip_top=True),
        )
        if not assignments:
            return []

        by_id = {d.get("id"): d for d in definitions}
        principals = await self.resolver.resolve(a.get("principalId") for a in assignments)

        records = []
        for a in assignments:
            definition = by_id.get(a.get("roleDefinitionId"), {})
            role_name = definition.get("displayName") or "Unknown Exchange Role"
            principal_id = a.get("principalId")
            info = principals.get(principal_id) or PrincipalInfo(principal_id=principal_id or "")
            scope = a.get("appScopeId") or a.get("directoryScopeId")

            records.append(AssignmentRecord(
                service=self.service.value,
                role_name=role_name,
                user_principal_name=info.user_principal_name,
                display_name=info.display_name,
                principal_id=principal_id,
                role_scope=role_scope_for(role_name),
                assignment_type=AssignmentType.ROLE_GROUP_MEMBER,
                user_enabled=info.user_enabled,
                principal_type=info.principal_type,
                on_premises_sync_enabled=info.on_premises_sync_enabled,
                last_sign_in=info.last_sign_in,
                role_definition_id=a.get("roleDefinitionId"),
                directory_scope_id=a.get("directoryScopeId"),
                role_group_description=definition.get("description"),
                management_scope=scope if scope and scope != "/" else None,
            ))

        logger.info(f"[{self.name}] {len(records)} native Exchange RBAC assignments")
        return records
