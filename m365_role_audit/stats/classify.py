"""
Classification functions for assignment types and role risk levels.

Both use ordered, first-match-wins rules. The rule tables are static
read-only data; nothing here is populated from audit input.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Optional


class AssignmentClass(str, Enum):
    ELIGIBLE = "Eligible"
    PIM_ACTIVE = "PIM Active"
    PERMANENT = "Permanent"
    OTHER = "Other"


# Standing grants that never expire
PERMANENT_ASSIGNMENT_TYPES = frozenset({
    "Active",
    "Azure AD Role",
    "Intune RBAC",
    "Role Group Member",
})

_PIM_ACTIVE_PREFIX = "Active (PIM"


def is_eligible(assignment_type: Optional[str]) -> bool:
    return "Eligible" in (assignment_type or "")


def is_pim_active(assignment_type: Optional[str]) -> bool:
    return (assignment_type or "").startswith(_PIM_ACTIVE_PREFIX)


def is_permanent(assignment_type: Optional[str]) -> bool:
    return assignment_type in PERMANENT_ASSIGNMENT_TYPES


def classify_assignment_type(assignment_type: Optional[str]) -> AssignmentClass:
    """
    Classify an assignment type label.

    Order: Eligible (substring) → PIM Active ("Active (PIM" prefix) →
    Permanent (exact match) → Other.
    """
    if is_eligible(assignment_type):
        return AssignmentClass.ELIGIBLE
    if is_pim_active(assignment_type):
        return AssignmentClass.PIM_ACTIVE
    if is_permanent(assignment_type):
        return AssignmentClass.PERMANENT
    return AssignmentClass.OTHER


# ─── Role risk ──────────────────────────────────────────────────────────────

class RiskLevel(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


HIGH_RISK_ROLES = (
    "Security Administrator",
    "Exchange Administrator",
    "SharePoint Administrator",
    "Intune Service Administrator",
    "Power Platform Administrator",
)

_RISK_RULES = (
    (RiskLevel.CRITICAL, re.compile(r"Global Administrator|Company Administrator", re.IGNORECASE)),
    (RiskLevel.HIGH, re.compile("|".join(re.escape(r) for r in HIGH_RISK_ROLES), re.IGNORECASE)),
    (RiskLevel.MEDIUM, re.compile(r"Administrator|Admin", re.IGNORECASE)),
    (RiskLevel.LOW, re.compile(r"Reader|Viewer", re.IGNORECASE)),
)


def classify_risk_level(role_name: Optional[str]) -> RiskLevel:
    """Map a role name to a risk level; unmatched names are LOW."""
    name = role_name or ""
    for level, pattern in _RISK_RULES:
        if pattern.search(name):
            return level
    return RiskLevel.LOW
