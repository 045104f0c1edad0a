"""Statistics package — aggregation and classification over assignment records."""

from .aggregator import compute_statistics, pim_adoption_rate
from .classify import (
    AssignmentClass,
    RiskLevel,
    classify_assignment_type,
    classify_risk_level,
)
from .models import DetailedStatistics, ServicePimStats, StatisticsSnapshot

__all__ = [
    "compute_statistics",
    "pim_adoption_rate",
    "AssignmentClass",
    "RiskLevel",
    "classify_assignment_type",
    "classify_risk_level",
    "DetailedStatistics",
    "ServicePimStats",
    "StatisticsSnapshot",
]
