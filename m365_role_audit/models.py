"""
Assignment data model — the canonical record every service collector
normalizes into, plus the enums and descriptors shared by the core.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


# ─── Services ───────────────────────────────────────────────────────────────

class Service(str, Enum):
    """Originating M365 service. Values are the labels used in reports."""
    AZURE_AD = "Azure AD/Entra ID"
    SHAREPOINT = "SharePoint Online"
    EXCHANGE = "Exchange Online"
    PURVIEW = "Microsoft Purview"
    TEAMS = "Microsoft Teams"
    DEFENDER = "Microsoft Defender"
    INTUNE = "Microsoft Intune"
    POWER_PLATFORM = "Power Platform"


# Authority ranking used by ServicePreference deduplication (higher wins)
SERVICE_AUTHORITY_RANK = {
    Service.AZURE_AD.value: 10,
    Service.INTUNE.value: 9,
    Service.SHAREPOINT.value: 8,
    Service.EXCHANGE.value: 7,
    Service.PURVIEW.value: 6,
    Service.TEAMS.value: 5,
    Service.DEFENDER.value: 4,
    Service.POWER_PLATFORM.value: 3,
}
UNLISTED_SERVICE_RANK = 1


def service_rank(service: Optional[str]) -> int:
    """Authority rank of a service label; unlisted services rank 1."""
    return SERVICE_AUTHORITY_RANK.get(service or "", UNLISTED_SERVICE_RANK)


class RoleScope(str, Enum):
    OVERARCHING = "Overarching"
    SERVICE_SPECIFIC = "Service-Specific"


class PrincipalType(str, Enum):
    USER = "User"
    GROUP = "Group"
    SERVICE_PRINCIPAL = "ServicePrincipal"
    UNKNOWN = "Unknown"


class AssignmentType:
    """Well-known assignment type labels. Collectors may emit others."""
    ACTIVE = "Active"
    ELIGIBLE_PIM = "Eligible (PIM)"
    ACTIVE_PIM = "Active (PIM)"
    ROLE_GROUP_MEMBER = "Role Group Member"
    AZURE_AD_ROLE = "Azure AD Role"
    INTUNE_RBAC = "Intune RBAC"
    TIME_BOUND_RBAC = "Time-bound RBAC"
    POLICY_OWNER = "Policy Owner"
    ERROR = "Error"


# Roles whose authority spans beyond the reporting service
OVERARCHING_ROLES = frozenset({
    "Global Administrator",
    "Company Administrator",
    "Security Administrator",
    "Security Reader",
    "Global Reader",
    "Cloud Application Administrator",
    "Application Administrator",
    "Privileged Authentication Administrator",
    "Privileged Role Administrator",
    "Compliance Administrator",
    "User Administrator",
})

# Principal labels that never count as a real user
UNKNOWN_PRINCIPAL = "Unknown"
SYSTEM_GENERATED_PRINCIPAL = "System Generated"


def role_scope_for(role_name: Optional[str]) -> str:
    """Overarching if the role name is on the static overarching list."""
    if role_name in OVERARCHING_ROLES:
        return RoleScope.OVERARCHING.value
    return RoleScope.SERVICE_SPECIFIC.value


# ─── Assignment record ──────────────────────────────────────────────────────

# Service-specific fields, projected into reports only when present
OPTIONAL_FIELDS = {
    "group_member_count": "groupMemberCount",
    "role_group_description": "roleGroupDescription",
    "organizational_unit": "organizationalUnit",
    "management_scope": "managementScope",
    "recipient_type": "recipientType",
    "site_title": "siteTitle",
    "storage_used_mb": "storageUsedMB",
    "template": "template",
    "role_type": "roleType",
    "is_built_in": "isBuiltIn",
}


@dataclass(frozen=True)
class AssignmentRecord:
    """
    One observed grant of a role to a principal in one service.

    Fields that do not apply to a service are None, never absent.
    """
    service: str
    role_name: Optional[str]
    user_principal_name: Optional[str] = None
    display_name: Optional[str] = None
    principal_id: Optional[str] = None
    role_scope: str = RoleScope.SERVICE_SPECIFIC.value
    assignment_type: Optional[str] = AssignmentType.ACTIVE
    assigned_date_time: Optional[datetime] = None
    user_enabled: Optional[bool] = None
    principal_type: str = PrincipalType.UNKNOWN.value
    on_premises_sync_enabled: Optional[bool] = None
    pim_start_date_time: Optional[datetime] = None
    pim_end_date_time: Optional[datetime] = None
    authentication_type: Optional[str] = None
    last_sign_in: Optional[datetime] = None

    # Source identity, used by the source-level merge
    role_definition_id: Optional[str] = None
    directory_scope_id: Optional[str] = None

    # Service-specific
    group_member_count: Optional[int] = None
    role_group_description: Optional[str] = None
    organizational_unit: Optional[str] = None
    management_scope: Optional[str] = None
    recipient_type: Optional[str] = None
    site_title: Optional[str] = None
    storage_used_mb: Optional[float] = None
    template: Optional[str] = None
    role_type: Optional[str] = None
    is_built_in: Optional[bool] = None

    @property
    def exact_key(self) -> tuple[str, str, str]:
        """Identity for exact-duplicate detection."""
        return (
            self.user_principal_name or "",
            self.role_name or "",
            self.assignment_type or "",
        )

    @property
    def loose_key(self) -> tuple[str, str]:
        """Identity for loose matching (ignores the assignment mechanism)."""
        return (self.user_principal_name or "", self.role_name or "")

    def to_dict(self) -> dict[str, Any]:
        """Stable public projection used by reports and exporters."""
        data: dict[str, Any] = {
            "service": self.service,
            "userPrincipalName": self.user_principal_name,
            "displayName": self.display_name,
            "roleName": self.role_name,
            "assignmentType": self.assignment_type,
            "assignedDateTime": _iso(self.assigned_date_time),
            "userEnabled": self.user_enabled,
            "authenticationType": self.authentication_type,
            "roleScope": self.role_scope,
            "principalType": self.principal_type,
        }
        if self.principal_id is not None:
            data["principalId"] = self.principal_id
        if self.on_premises_sync_enabled is not None:
            data["onPremisesSyncEnabled"] = self.on_premises_sync_enabled
        if self.pim_start_date_time is not None:
            data["pimStartDateTime"] = _iso(self.pim_start_date_time)
        if self.pim_end_date_time is not None:
            data["pimEndDateTime"] = _iso(self.pim_end_date_time)
        for attr, public_name in OPTIONAL_FIELDS.items():
            value = getattr(self, attr)
            if value is not None:
                data[public_name] = value
        return data


@dataclass(frozen=True)
class DuplicateDescriptor:
    """A record removed during deduplication and why."""
    user_principal_name: Optional[str]
    role_name: Optional[str]
    assignment_type: Optional[str]
    removed_service: str
    kept_service: str
    kept_assignment_type: Optional[str]
    reason: str
    action: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "userPrincipalName": self.user_principal_name,
            "roleName": self.role_name,
            "assignmentType": self.assignment_type,
            "removedService": self.removed_service,
            "keptService": self.kept_service,
            "keptAssignmentType": self.kept_assignment_type,
            "reason": self.reason,
            "action": self.action,
        }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def parse_graph_datetime(value: Any) -> Optional[datetime]:
    """Parse a Graph ISO-8601 timestamp ("...Z"); None when unparseable."""
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, TypeError):
        return None


@dataclass(frozen=True)
class OrganizationMetadata:
    """Per-audit inputs supplied by the orchestration layer."""
    organization_name: str = "Unknown Organization"
    auth_types: dict[str, int] = field(default_factory=dict)
    exchange_data_enhanced: bool = False
    services_requested: tuple[str, ...] = ()
