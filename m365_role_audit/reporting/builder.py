"""
Report Builder — assembles the audit report payload from a statistics
snapshot, the deduplicated records and the organization metadata.

Pure: no I/O and no network calls. Given the same inputs and the same
`generated_at`, the output is identical. Missing optional record fields
resolve to zero / null values rather than raising.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from .. import __version__
from ..analyzers import SecurityAnalysis, effective_auth_types, run_analysis
from ..config import AUTH_TYPE_CERTIFICATE, AUTH_TYPE_CLIENT_SECRET, TOP_N
from ..models import (
    AssignmentRecord,
    DuplicateDescriptor,
    OrganizationMetadata,
    PrincipalType,
    RoleScope,
    SYSTEM_GENERATED_PRINCIPAL,
    UNKNOWN_PRINCIPAL,
)
from ..stats.aggregator import GLOBAL_ADMIN_ROLE, pim_adoption_rate
from ..stats.classify import classify_risk_level, is_eligible, is_permanent, is_pim_active
from ..stats.models import DetailedStatistics, StatisticsSnapshot

REPORT_TYPE_DETAILED = "Detailed"
REPORT_TYPE_SUMMARY = "Summary"

_NON_USER_UPNS = {UNKNOWN_PRINCIPAL, SYSTEM_GENERATED_PRINCIPAL, ""}


def build_report(
    stats: StatisticsSnapshot,
    records: Sequence[AssignmentRecord],
    organization: OrganizationMetadata,
    removed: Sequence[DuplicateDescriptor] = (),
    generated_at: Optional[datetime] = None,
    analysis: Optional[SecurityAnalysis] = None,
) -> dict[str, Any]:
    """
    Build the report payload.

    Args:
        stats: snapshot computed over `records`.
        records: the deduplicated record set.
        organization: organization name, auth type distribution and
            collection flags supplied by the caller.
        removed: duplicate descriptors from deduplication.
        generated_at: report timestamp; defaults to current UTC.
        analysis: precomputed analyzer output; computed when omitted.
    """
    records = tuple(records)
    generated_at = generated_at or datetime.now(timezone.utc)
    if analysis is None:
        analysis = run_analysis(stats, records, organization)
    auth_types = effective_auth_types(organization, records)
    detailed = stats.detailed

    return {
        "metadata": _metadata(stats, organization, auth_types, generated_at, len(removed)),
        "summary": _summary(stats, detailed),
        "serviceAnalysis": _service_analysis(stats),
        "pimAnalysis": _pim_analysis(stats, detailed) if detailed else None,
        "principalAnalysis": _principal_analysis(stats, detailed),
        "crossServiceAnalysis": _cross_service_analysis(detailed) if detailed else None,
        "securityAlerts": _security_alerts(stats, analysis, auth_types),
        "recommendations": [r.to_dict() for r in analysis.sorted_recommendations()],
        "complianceAnalysis": _compliance_analysis(analysis),
        "removedDuplicates": [d.to_dict() for d in removed],
        "formattedAssignments": [r.to_dict() for r in records],
    }


# ── Sections ────────────────────────────────────────────────────────────────

def _metadata(
    stats: StatisticsSnapshot,
    organization: OrganizationMetadata,
    auth_types: dict[str, int],
    generated_at: datetime,
    duplicates_removed: int,
) -> dict[str, Any]:
    if generated_at.tzinfo is None:
        generated_at = generated_at.replace(tzinfo=timezone.utc)
    return {
        "organizationName": organization.organization_name,
        "generatedDate": generated_at.astimezone(timezone.utc).isoformat(),
        "auditVersion": __version__,
        "reportType": REPORT_TYPE_DETAILED if stats.is_detailed else REPORT_TYPE_SUMMARY,
        "totalAssignments": stats.total_assignments,
        "uniqueUsers": stats.unique_users,
        "servicesAudited": stats.services_audited,
        "servicesRequested": list(organization.services_requested),
        "duplicatesRemoved": duplicates_removed,
        "certificateAuthUsed": auth_types.get(AUTH_TYPE_CERTIFICATE, 0) > 0,
        "pimEnabled": bool(stats.pim_eligible or stats.pim_active),
        "hybridEnvironmentDetected": bool(stats.on_prem_synced),
        "exchangeDataEnhanced": organization.exchange_data_enhanced,
    }


def _summary(stats: StatisticsSnapshot, detailed: Optional[DetailedStatistics]) -> dict[str, Any]:
    total = stats.total_assignments

    service_breakdown = [
        {"service": service, "count": len(rs), "percentage": _percentage(len(rs), total)}
        for service, rs in _by_count(stats.by_service)
    ]

    top_roles = [
        {
            "roleName": role,
            "assignmentCount": len(rs),
            "riskLevel": classify_risk_level(role).value,
            "services": sorted({r.service for r in rs if r.service}),
        }
        for role, rs in _by_count(stats.by_role)[:TOP_N]
    ]

    assignment_types = [
        {"type": label, "count": len(rs), "percentage": _percentage(len(rs), total)}
        for label, rs in _by_count(stats.by_assignment_type)
    ]

    summary = {
        "serviceBreakdown": service_breakdown,
        "topRoles": top_roles,
        "usersWithMostRoles": _users_with_most_roles(stats),
        "assignmentTypes": assignment_types,
    }
    if detailed:
        summary["roleRiskDistribution"] = dict(detailed.role_risk_distribution)
    return summary


def _users_with_most_roles(stats: StatisticsSnapshot) -> list[dict[str, Any]]:
    users = []
    for upn, rs in stats.by_user.items():
        if upn in _NON_USER_UPNS:
            continue
        enabled = [r.user_enabled for r in rs if r.user_enabled is not None]
        sign_ins = [r.last_sign_in for r in rs if r.last_sign_in is not None]
        last_sign_in = max(sign_ins, key=_utc) if sign_ins else None
        users.append({
            "userPrincipalName": upn,
            "displayName": next((r.display_name for r in rs if r.display_name), None),
            "roleCount": len({r.role_name for r in rs if r.role_name}),
            "assignmentCount": len(rs),
            "services": sorted({r.service for r in rs if r.service}),
            "isEnabled": enabled[0] if enabled else None,
            "lastSignIn": last_sign_in.isoformat() if last_sign_in else None,
            "onPremisesSynced": any(r.on_premises_sync_enabled is True for r in rs),
        })
    users.sort(key=lambda u: (-u["roleCount"], -u["assignmentCount"], u["userPrincipalName"]))
    return users[:TOP_N]


def _service_analysis(stats: StatisticsSnapshot) -> dict[str, dict[str, Any]]:
    analysis = {}
    for service, rs in _by_count(stats.by_service):
        eligible = sum(1 for r in rs if is_eligible(r.assignment_type))
        permanent = sum(1 for r in rs if is_permanent(r.assignment_type))
        overarching = sum(1 for r in rs if r.role_scope == RoleScope.OVERARCHING.value)
        analysis[service] = {
            "totalAssignments": len(rs),
            "uniqueUsers": len({
                r.user_principal_name for r in rs
                if r.user_principal_name and r.user_principal_name != UNKNOWN_PRINCIPAL
            }),
            "roleCount": len({r.role_name for r in rs if r.role_name}),
            "globalAdmins": sum(1 for r in rs if r.role_name == GLOBAL_ADMIN_ROLE),
            "disabledUsers": sum(1 for r in rs if r.user_enabled is False),
            "eligibleAssignments": eligible,
            "pimActiveAssignments": sum(1 for r in rs if is_pim_active(r.assignment_type)),
            "permanentAssignments": permanent,
            "pimAdoptionRate": pim_adoption_rate(eligible, permanent),
            "overarchingRoles": overarching,
            "serviceSpecificRoles": len(rs) - overarching,
        }
    return analysis


def _pim_analysis(stats: StatisticsSnapshot, detailed: DetailedStatistics) -> dict[str, Any]:
    return {
        "totalEligible": len(stats.pim_eligible),
        "totalPimActive": len(stats.pim_active),
        "totalPermanent": len(stats.permanent_active),
        "overallAdoptionRate": detailed.overall_pim_adoption_rate,
        "byService": [s.to_dict() for s in detailed.pim_by_service.values()],
        "timeBoundAssignments": len(detailed.time_bound),
        "expiringSoon": [
            {
                "userPrincipalName": r.user_principal_name,
                "roleName": r.role_name,
                "service": r.service,
                "pimEndDateTime": r.pim_end_date_time.isoformat(),
            }
            for r in sorted(detailed.expiring_soon, key=lambda r: _utc(r.pim_end_date_time))
        ],
        "expiredAssignments": len(detailed.expired),
    }


def _principal_analysis(
    stats: StatisticsSnapshot,
    detailed: Optional[DetailedStatistics],
) -> dict[str, Any]:
    by_type = {label: len(rs) for label, rs in _by_count(stats.by_principal_type)}
    principal = {
        "byPrincipalType": by_type,
        "groupAssignments": by_type.get(PrincipalType.GROUP.value, 0),
        "servicePrincipalAssignments": by_type.get(PrincipalType.SERVICE_PRINCIPAL.value, 0),
        "disabledUsersWithRoles": len(stats.disabled_users),
        "onPremSyncedAssignments": len(stats.on_prem_synced),
        "hybrid": None,
        "averageRolesPerUser": None,
    }
    if detailed:
        principal["hybrid"] = {
            "onPremSyncedUsers": detailed.on_prem_synced_users,
            "cloudOnlyUsers": detailed.cloud_only_users,
        }
        principal["averageRolesPerUser"] = detailed.average_roles_per_user
    return principal


def _cross_service_analysis(detailed: DetailedStatistics) -> dict[str, Any]:
    top_users = sorted(
        detailed.cross_service_users.items(),
        key=lambda item: (-len(item[1]), item[0]),
    )[:TOP_N]
    return {
        "usersWithMultipleServices": detailed.users_with_multiple_services,
        "exchangeAzureADCombinations": detailed.exchange_azure_ad_combinations,
        "serviceCombinations": [
            {"services": combination, "count": count}
            for combination, count in detailed.service_combinations.items()
        ],
        "topCrossServiceUsers": [
            {"userPrincipalName": upn, "services": list(services), "serviceCount": len(services)}
            for upn, services in top_users
        ],
    }


def _security_alerts(
    stats: StatisticsSnapshot,
    analysis: SecurityAnalysis,
    auth_types: dict[str, int],
) -> dict[str, Any]:
    alerts: dict[str, Any] = {severity: list(messages) for severity, messages in analysis.alerts.items()}
    alerts.update({
        "globalAdminCount": len(stats.global_admins),
        "disabledUsersWithRoles": len(stats.disabled_users),
        "certificateBasedAuth": auth_types.get(AUTH_TYPE_CERTIFICATE, 0),
        "clientSecretAuth": auth_types.get(AUTH_TYPE_CLIENT_SECRET, 0),
    })
    if "exchangeSecurityAlerts" in analysis.sections:
        alerts["exchangeSecurityAlerts"] = analysis.sections["exchangeSecurityAlerts"]
    return alerts


def _compliance_analysis(analysis: SecurityAnalysis) -> dict[str, Any]:
    compliance: dict[str, Any] = {name: check.to_dict() for name, check in analysis.checks.items()}
    compliance["complianceGaps"] = [g.to_dict() for g in analysis.sorted_gaps()]
    compliance["complianceScore"] = analysis.compliance_score
    return compliance


# ── Helpers ─────────────────────────────────────────────────────────────────

def _by_count(groups: dict[str, tuple]) -> list[tuple[str, tuple]]:
    """Groups ordered by size descending, then key."""
    return sorted(groups.items(), key=lambda item: (-len(item[1]), item[0]))


def _percentage(count: int, total: int) -> float:
    if total == 0:
        return 0.0
    return round(count / total * 100, 2)


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
