"""
Deduplication Engine — collapses overlapping assignment records within and
across services.

Modes:
  - Strict:            key (UPN, role, assignment type); first record wins.
  - Loose:             key (UPN, role); a later record replaces the held one
                       when its assignment type is more specific.
  - ServicePreference: key (UPN, role, assignment type); collisions resolved
                       by service authority rank.

An optional second pass keeps only the Azure AD/Entra ID record for every
(UPN, role) group that has one.

Input order is authoritative for "first wins". Inputs are never mutated.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Iterable, Union

from ..models import AssignmentRecord, AssignmentType, DuplicateDescriptor, Service, service_rank
from ..stats.classify import is_eligible, is_pim_active

logger = logging.getLogger("m365_role_audit.dedup")


class DeduplicationModeError(ValueError):
    """Raised for an unknown deduplication mode."""
    pass


class DeduplicationMode(str, Enum):
    STRICT = "Strict"
    LOOSE = "Loose"
    SERVICE_PREFERENCE = "ServicePreference"

    @classmethod
    def parse(cls, value: Union["DeduplicationMode", str]) -> "DeduplicationMode":
        """Accept an enum member or its value; reject anything else."""
        if isinstance(value, cls):
            return value
        for mode in cls:
            if mode.value == value:
                return mode
        valid = ", ".join(m.value for m in cls)
        raise DeduplicationModeError(f"Unknown deduplication mode {value!r} (expected one of: {valid})")


class DuplicateAction:
    EXACT_DUPLICATE = "ExactDuplicate"
    REPLACED = "Replaced"
    KEPT_ORIGINAL = "KeptOriginal"
    PREFERRED_SERVICE = "PreferredService"
    KEPT_PREFERRED_SERVICE = "KeptPreferredService"
    PREFERRED_AZURE_AD = "PreferredAzureAD"


DedupResult = tuple[list[AssignmentRecord], list[DuplicateDescriptor]]


def deduplicate(
    records: Iterable[AssignmentRecord],
    mode: Union[DeduplicationMode, str] = DeduplicationMode.STRICT,
    prefer_authoritative_source: bool = False,
) -> DedupResult:
    """
    Remove duplicate assignments according to the selected policy.

    Returns:
        (unique_records, removed) — both new lists.
    """
    mode = DeduplicationMode.parse(mode)
    records = list(records)

    if mode is DeduplicationMode.STRICT:
        unique, removed = _strict(records)
    elif mode is DeduplicationMode.LOOSE:
        unique, removed = _loose(records)
    else:
        unique, removed = _service_preference(records)

    if prefer_authoritative_source:
        unique, preferred = prefer_azure_ad_source(unique)
        removed.extend(preferred)

    logger.info(
        f"Deduplication ({mode.value}"
        f"{', prefer Azure AD' if prefer_authoritative_source else ''}): "
        f"{len(records)} in, {len(unique)} kept, {len(removed)} removed"
    )
    return unique, removed


def outranks(candidate: AssignmentRecord, held: AssignmentRecord) -> bool:
    """
    True if `candidate` describes a more specific grant than `held`.

    Precedence, first match wins:
      1. an Eligible type outranks any non-Eligible type
      2. an "Active (PIM..." type outranks plain "Active"
    """
    if is_eligible(candidate.assignment_type) and not is_eligible(held.assignment_type):
        return True
    if is_pim_active(candidate.assignment_type) and held.assignment_type == AssignmentType.ACTIVE:
        return True
    return False


# ── Passes ──────────────────────────────────────────────────────────────────

def _strict(records: list[AssignmentRecord]) -> DedupResult:
    kept: dict[tuple, AssignmentRecord] = {}
    removed: list[DuplicateDescriptor] = []

    for record in records:
        key = record.exact_key
        held = kept.get(key)
        if held is None:
            kept[key] = record
            continue
        removed.append(_describe(
            record, held, "Exact duplicate", DuplicateAction.EXACT_DUPLICATE,
        ))

    return list(kept.values()), removed


def _loose(records: list[AssignmentRecord]) -> DedupResult:
    kept: dict[tuple, AssignmentRecord] = {}
    removed: list[DuplicateDescriptor] = []

    for record in records:
        key = record.loose_key
        held = kept.get(key)
        if held is None:
            kept[key] = record
            continue

        if outranks(record, held):
            # Re-insert so the replacement takes the last position
            del kept[key]
            kept[key] = record
            removed.append(_describe(
                held, record,
                f"Replaced ({record.assignment_type} more specific than {held.assignment_type})",
                DuplicateAction.REPLACED,
            ))
        else:
            removed.append(_describe(
                record, held,
                f"Kept original ({held.assignment_type})",
                DuplicateAction.KEPT_ORIGINAL,
            ))

    return list(kept.values()), removed


def _service_preference(records: list[AssignmentRecord]) -> DedupResult:
    kept: dict[tuple, AssignmentRecord] = {}
    removed: list[DuplicateDescriptor] = []

    for record in records:
        key = record.exact_key
        held = kept.get(key)
        if held is None:
            kept[key] = record
            continue

        if service_rank(record.service) > service_rank(held.service):
            del kept[key]
            kept[key] = record
            removed.append(_describe(
                held, record,
                f"Preferred service source ({record.service} over {held.service})",
                DuplicateAction.PREFERRED_SERVICE,
            ))
        else:
            removed.append(_describe(
                record, held,
                f"Kept preferred service source ({held.service})",
                DuplicateAction.KEPT_PREFERRED_SERVICE,
            ))

    return list(kept.values()), removed


def prefer_azure_ad_source(records: list[AssignmentRecord]) -> DedupResult:
    """
    Within each (UPN, role) group that contains an Azure AD/Entra ID record,
    keep only the first such record. Groups without one are left intact.
    """
    azure_ad_index: dict[tuple, int] = {}
    for index, record in enumerate(records):
        if record.service == Service.AZURE_AD.value:
            azure_ad_index.setdefault(record.loose_key, index)

    kept: list[AssignmentRecord] = []
    removed: list[DuplicateDescriptor] = []
    for index, record in enumerate(records):
        preferred = azure_ad_index.get(record.loose_key)
        if preferred is None or preferred == index:
            kept.append(record)
            continue
        removed.append(_describe(
            record, records[preferred],
            "Preferred Azure AD as authoritative source",
            DuplicateAction.PREFERRED_AZURE_AD,
        ))

    return kept, removed


def _describe(
    dropped: AssignmentRecord,
    kept: AssignmentRecord,
    reason: str,
    action: str,
) -> DuplicateDescriptor:
    logger.debug(
        f"Dropped {dropped.service} / {dropped.user_principal_name} / "
        f"{dropped.role_name} / {dropped.assignment_type}: {reason}"
    )
    return DuplicateDescriptor(
        user_principal_name=dropped.user_principal_name,
        role_name=dropped.role_name,
        assignment_type=dropped.assignment_type,
        removed_service=dropped.service,
        kept_service=kept.service,
        kept_assignment_type=kept.assignment_type,
        reason=reason,
        action=action,
    )
