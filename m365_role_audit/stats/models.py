"""
Statistics data models — read-only aggregates over a fixed record set.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from ..models import AssignmentRecord

Records = tuple[AssignmentRecord, ...]


@dataclass(frozen=True)
class ServicePimStats:
    """PIM usage for one service."""
    service: str
    eligible: int = 0
    pim_active: int = 0
    permanent: int = 0
    adoption_rate: float = 0.0

    def to_dict(self) -> dict:
        return {
            "service": self.service,
            "eligible": self.eligible,
            "pimActive": self.pim_active,
            "permanent": self.permanent,
            "adoptionRate": self.adoption_rate,
        }


@dataclass(frozen=True)
class DetailedStatistics:
    """
    The expensive tier: re-groups the record set several times.

    `expiring_soon` and `expired` depend on the reference time the snapshot
    was computed at and are the only non-deterministic members.
    """
    pim_by_service: dict[str, ServicePimStats] = field(default_factory=dict)
    overall_pim_adoption_rate: float = 0.0
    time_bound: Records = ()
    expiring_soon: Records = ()
    expired: Records = ()
    cross_service_users: dict[str, tuple[str, ...]] = field(default_factory=dict)
    exchange_azure_ad_combinations: int = 0
    service_combinations: dict[str, int] = field(default_factory=dict)
    role_risk_distribution: dict[str, int] = field(default_factory=dict)
    overarching: Records = ()
    service_specific: Records = ()
    group_assignments: Records = ()
    service_principal_assignments: Records = ()
    on_prem_synced_users: int = 0
    cloud_only_users: int = 0
    average_roles_per_user: float = 0.0

    @property
    def users_with_multiple_services(self) -> int:
        return len(self.cross_service_users)


@dataclass(frozen=True)
class StatisticsSnapshot:
    """Basic counts and groupings, always computed."""
    total_assignments: int = 0
    unique_users: int = 0
    services_audited: int = 0

    by_service: dict[str, Records] = field(default_factory=dict)
    by_role: dict[str, Records] = field(default_factory=dict)
    by_user: dict[str, Records] = field(default_factory=dict)
    by_assignment_type: dict[str, Records] = field(default_factory=dict)
    by_principal_type: dict[str, Records] = field(default_factory=dict)

    global_admins: Records = ()
    disabled_users: Records = ()
    pim_eligible: Records = ()
    pim_active: Records = ()
    permanent_active: Records = ()
    on_prem_synced: Records = ()

    detailed: Optional[DetailedStatistics] = None

    @property
    def is_detailed(self) -> bool:
        return self.detailed is not None

    def service_records(self, service: str) -> Records:
        return self.by_service.get(service, ())
