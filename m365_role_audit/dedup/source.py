"""
Source-level merge for a single service's raw output.

A directory role grant can surface three times in one service: as a role
assignment (Active), an eligibility schedule (Eligible (PIM)) and an
activated assignment schedule (Active (PIM)). The merge keeps one record per
(principalId, roleDefinitionId, directoryScopeId) triple.
"""

from __future__ import annotations

import logging

from ..models import AssignmentRecord
from ..stats.classify import is_eligible, is_pim_active

logger = logging.getLogger("m365_role_audit.dedup.source")


def _precedence(record: AssignmentRecord) -> int:
    if is_pim_active(record.assignment_type):
        return 3
    if is_eligible(record.assignment_type):
        return 2
    return 1


def merge_source_assignments(records: list[AssignmentRecord]) -> list[AssignmentRecord]:
    """
    Collapse records sharing a (principal, role definition, scope) triple.

    Precedence: Active (PIM*) > *Eligible* > anything else; on equal
    precedence the first record observed wins. Records missing any part of
    the triple cannot be matched and pass through unchanged.
    """
    slots: dict[tuple, int] = {}
    merged: list[AssignmentRecord] = []
    collapsed = 0

    for record in records:
        triple = (record.principal_id, record.role_definition_id, record.directory_scope_id)
        if None in triple:
            merged.append(record)
            continue

        slot = slots.get(triple)
        if slot is None:
            slots[triple] = len(merged)
            merged.append(record)
            continue

        collapsed += 1
        if _precedence(record) > _precedence(merged[slot]):
            merged[slot] = record

    if collapsed:
        logger.debug(f"Source merge collapsed {collapsed} overlapping assignments")
    return merged
