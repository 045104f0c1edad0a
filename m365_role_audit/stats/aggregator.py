"""
Statistics Aggregator — computes a StatisticsSnapshot from a deduplicated
record set.

Pure: no I/O and no shared state. The only time-dependent values are the
PIM expiry buckets of the detailed tier, computed relative to `now`.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional

from ..config import PIM_EXPIRY_WINDOW_DAYS
from ..models import (
    AssignmentRecord,
    PrincipalType,
    RoleScope,
    Service,
    SYSTEM_GENERATED_PRINCIPAL,
    UNKNOWN_PRINCIPAL,
)
from .classify import (
    classify_risk_level,
    is_eligible,
    is_permanent,
    is_pim_active,
    RiskLevel,
)
from .models import DetailedStatistics, Records, ServicePimStats, StatisticsSnapshot

logger = logging.getLogger("m365_role_audit.stats")

GLOBAL_ADMIN_ROLE = "Global Administrator"

# UPN values that never identify a cross-service user
_NON_USER_UPNS = {None, "", UNKNOWN_PRINCIPAL, SYSTEM_GENERATED_PRINCIPAL}


def compute_statistics(
    records: Iterable[AssignmentRecord],
    detailed: bool = False,
    now: Optional[datetime] = None,
) -> StatisticsSnapshot:
    """
    Aggregate a record set.

    Args:
        records: deduplicated assignment records.
        detailed: also compute the detailed tier (PIM per service,
            cross-service users, risk distribution, expiry buckets).
        now: reference time for expiry buckets; defaults to current UTC.
    """
    records = tuple(records)

    by_service = _group(records, lambda r: r.service or UNKNOWN_PRINCIPAL)
    unique_users = {
        r.user_principal_name for r in records
        if r.user_principal_name not in (None, "", UNKNOWN_PRINCIPAL)
    }

    snapshot = StatisticsSnapshot(
        total_assignments=len(records),
        unique_users=len(unique_users),
        services_audited=len(by_service),
        by_service=by_service,
        by_role=_group(records, lambda r: r.role_name or UNKNOWN_PRINCIPAL),
        by_user=_group(records, lambda r: r.user_principal_name or UNKNOWN_PRINCIPAL),
        by_assignment_type=_group(records, lambda r: r.assignment_type or UNKNOWN_PRINCIPAL),
        by_principal_type=_group(records, lambda r: r.principal_type or PrincipalType.UNKNOWN.value),
        global_admins=_select(records, lambda r: r.role_name == GLOBAL_ADMIN_ROLE),
        disabled_users=_select(records, lambda r: r.user_enabled is False),
        pim_eligible=_select(records, lambda r: is_eligible(r.assignment_type)),
        pim_active=_select(records, lambda r: is_pim_active(r.assignment_type)),
        permanent_active=_select(records, lambda r: is_permanent(r.assignment_type)),
        on_prem_synced=_select(records, lambda r: r.on_premises_sync_enabled is True),
        detailed=_compute_detailed(records, by_service, now) if detailed else None,
    )

    logger.info(
        f"Statistics: {snapshot.total_assignments} assignments, "
        f"{snapshot.unique_users} users, {snapshot.services_audited} services"
        f"{' (detailed)' if detailed else ''}"
    )
    return snapshot


def pim_adoption_rate(eligible: int, permanent: int) -> float:
    """eligible / (eligible + permanent) as a percentage; 0 when both are 0."""
    denominator = eligible + permanent
    if denominator == 0:
        return 0.0
    return round(eligible / denominator * 100, 2)


# ── Detailed tier ───────────────────────────────────────────────────────────

def _compute_detailed(
    records: Records,
    by_service: dict[str, Records],
    now: Optional[datetime],
) -> DetailedStatistics:
    now = _aware(now or datetime.now(timezone.utc))
    horizon = now + timedelta(days=PIM_EXPIRY_WINDOW_DAYS)

    pim_by_service = {}
    for service, service_records in by_service.items():
        eligible = sum(1 for r in service_records if is_eligible(r.assignment_type))
        pim_active = sum(1 for r in service_records if is_pim_active(r.assignment_type))
        permanent = sum(1 for r in service_records if is_permanent(r.assignment_type))
        pim_by_service[service] = ServicePimStats(
            service=service,
            eligible=eligible,
            pim_active=pim_active,
            permanent=permanent,
            adoption_rate=pim_adoption_rate(eligible, permanent),
        )

    total_eligible = sum(s.eligible for s in pim_by_service.values())
    total_permanent = sum(s.permanent for s in pim_by_service.values())

    time_bound = _select(records, lambda r: r.pim_end_date_time is not None)
    expiring_soon = tuple(
        r for r in time_bound if now < _aware(r.pim_end_date_time) <= horizon
    )
    expired = tuple(r for r in time_bound if _aware(r.pim_end_date_time) <= now)

    cross_service, exchange_azure_ad, combinations = _cross_service(records)

    risk_distribution = Counter(classify_risk_level(r.role_name).value for r in records)

    user_records = [r for r in records if r.user_principal_name not in _NON_USER_UPNS]
    synced_users = {r.user_principal_name for r in user_records if r.on_premises_sync_enabled is True}
    all_users = {r.user_principal_name for r in user_records}
    roles_per_user = Counter(r.user_principal_name for r in user_records)

    return DetailedStatistics(
        pim_by_service=pim_by_service,
        overall_pim_adoption_rate=pim_adoption_rate(total_eligible, total_permanent),
        time_bound=time_bound,
        expiring_soon=expiring_soon,
        expired=expired,
        cross_service_users=cross_service,
        exchange_azure_ad_combinations=exchange_azure_ad,
        service_combinations=combinations,
        role_risk_distribution={level.value: risk_distribution.get(level.value, 0) for level in RiskLevel},
        overarching=_select(records, lambda r: r.role_scope == RoleScope.OVERARCHING.value),
        service_specific=_select(records, lambda r: r.role_scope != RoleScope.OVERARCHING.value),
        group_assignments=_select(records, lambda r: r.principal_type == PrincipalType.GROUP.value),
        service_principal_assignments=_select(
            records, lambda r: r.principal_type == PrincipalType.SERVICE_PRINCIPAL.value
        ),
        on_prem_synced_users=len(synced_users),
        cloud_only_users=len(all_users - synced_users),
        average_roles_per_user=(
            round(sum(roles_per_user.values()) / len(roles_per_user), 2) if roles_per_user else 0.0
        ),
    )


def _cross_service(records: Records) -> tuple[dict[str, tuple[str, ...]], int, dict[str, int]]:
    """Users holding roles in more than one service."""
    services_by_user: dict[str, set[str]] = {}
    for r in records:
        if r.user_principal_name in _NON_USER_UPNS:
            continue
        services_by_user.setdefault(r.user_principal_name, set()).add(r.service or UNKNOWN_PRINCIPAL)

    cross_service = {
        upn: tuple(sorted(services))
        for upn, services in services_by_user.items()
        if len(services) > 1
    }
    exchange_azure_ad = sum(
        1 for services in cross_service.values()
        if Service.EXCHANGE.value in services and Service.AZURE_AD.value in services
    )
    combinations = Counter(" + ".join(services) for services in cross_service.values())
    return cross_service, exchange_azure_ad, dict(combinations.most_common())


# ── Helpers ─────────────────────────────────────────────────────────────────

def _group(records: Records, key: Callable[[AssignmentRecord], str]) -> dict[str, Records]:
    groups: dict[str, list[AssignmentRecord]] = {}
    for r in records:
        groups.setdefault(key(r), []).append(r)
    return {k: tuple(v) for k, v in groups.items()}


def _select(records: Records, predicate: Callable[[AssignmentRecord], bool]) -> Records:
    return tuple(r for r in records if predicate(r))


def _aware(value: datetime) -> datetime:
    """Treat naive timestamps as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
