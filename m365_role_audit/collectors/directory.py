"""
Directory role source — loads Entra ID role definitions, standing role
assignments and PIM schedule instances once per audit and shares the
resolved records with every service collector.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from ..dedup import merge_source_assignments
from ..graph.client import GraphAPIError, GraphClient
from ..models import (
    AssignmentRecord,
    AssignmentType,
    Service,
    parse_graph_datetime,
    role_scope_for,
)
from .principals import PrincipalInfo, PrincipalResolver

logger = logging.getLogger("m365_role_audit.collectors.directory")

ROLE_DEFINITIONS = "roleManagement/directory/roleDefinitions"
ROLE_ASSIGNMENTS = "roleManagement/directory/roleAssignments"
ELIGIBILITY_INSTANCES = "roleManagement/directory/roleEligibilityScheduleInstances"
ASSIGNMENT_INSTANCES = "roleManagement/directory/roleAssignmentScheduleInstances"

UNKNOWN_ROLE = "Unknown Role"


class DirectoryRoleSource:
    """
    Per-audit cache of directory role records. The first caller triggers
    the load; concurrent callers wait on the same lock and reuse it.
    """

    def __init__(self, graph: GraphClient, resolver: PrincipalResolver):
        self.graph = graph
        self.resolver = resolver
        self.warnings: list[str] = []
        self._records: Optional[list[AssignmentRecord]] = None
        self._lock = asyncio.Lock()

    async def load(self) -> list[AssignmentRecord]:
        async with self._lock:
            if self._records is None:
                self._records = await self._fetch()
        return list(self._records)

    async def _fetch(self) -> list[AssignmentRecord]:
        definitions, assignments, eligible, scheduled = await asyncio.gather(
            self.graph.get_all_pages(ROLE_DEFINITIONS, skip_top=True),
            self.graph.get_all_pages(ROLE_ASSIGNMENTS),
            self._optional(ELIGIBILITY_INSTANCES),
            self._optional(ASSIGNMENT_INSTANCES),
        )
        role_names = {d.get("id"): d.get("displayName") or UNKNOWN_ROLE for d in definitions}

        # Only activations; "Assigned" instances duplicate roleAssignments
        activated = [s for s in scheduled if (s.get("assignmentType") or "") == "Activated"]

        principals = await self.resolver.resolve(
            item.get("principalId") for item in (*assignments, *eligible, *activated)
        )

        records = [
            *(self._record(a, role_names, principals, AssignmentType.ACTIVE) for a in assignments),
            *(self._record(e, role_names, principals, AssignmentType.ELIGIBLE_PIM) for e in eligible),
            *(self._record(s, role_names, principals, AssignmentType.ACTIVE_PIM) for s in activated),
        ]
        merged = merge_source_assignments(records)

        logger.info(
            f"Directory roles: {len(definitions)} definitions, {len(assignments)} assignments, "
            f"{len(eligible)} eligible, {len(activated)} activated → {len(merged)} records"
        )
        return merged

    async def _optional(self, endpoint: str) -> list[dict]:
        """PIM endpoints need Entra ID P2; a 403 is a warning, not a failure."""
        try:
            return await self.graph.get_all_pages(endpoint)
        except GraphAPIError as e:
            if e.status_code != 403:
                raise
            msg = f"Permission denied: {endpoint} — PIM data unavailable"
            logger.warning(msg)
            self.warnings.append(msg)
            return []

    @staticmethod
    def _record(
        item: dict,
        role_names: dict[str, str],
        principals: dict[str, PrincipalInfo],
        assignment_type: str,
    ) -> AssignmentRecord:
        principal_id = item.get("principalId")
        info = principals.get(principal_id) or PrincipalInfo(principal_id=principal_id or "")
        role_name = role_names.get(item.get("roleDefinitionId"), UNKNOWN_ROLE)

        start = parse_graph_datetime(item.get("startDateTime"))
        end = parse_graph_datetime(item.get("endDateTime"))
        is_pim = assignment_type != AssignmentType.ACTIVE

        return AssignmentRecord(
            service=Service.AZURE_AD.value,
            role_name=role_name,
            user_principal_name=info.user_principal_name,
            display_name=info.display_name,
            principal_id=principal_id,
            role_scope=role_scope_for(role_name),
            assignment_type=assignment_type,
            assigned_date_time=start,
            user_enabled=info.user_enabled,
            principal_type=info.principal_type,
            on_premises_sync_enabled=info.on_premises_sync_enabled,
            pim_start_date_time=start if is_pim else None,
            pim_end_date_time=end if is_pim else None,
            last_sign_in=info.last_sign_in,
            role_definition_id=item.get("roleDefinitionId"),
            directory_scope_id=item.get("directoryScopeId"),
        )
