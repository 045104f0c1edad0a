"""
CSV exporter — Produces the assignment listing, the removed-duplicates log
and a metric summary.
"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Any

from ..models import OPTIONAL_FIELDS

ASSIGNMENT_FIELDS = [
    "service", "userPrincipalName", "displayName", "roleName",
    "assignmentType", "assignedDateTime", "userEnabled",
    "authenticationType", "roleScope", "principalType", "principalId",
    "onPremisesSyncEnabled", "pimStartDateTime", "pimEndDateTime",
    *OPTIONAL_FIELDS.values(),
]

DUPLICATE_FIELDS = [
    "userPrincipalName", "roleName", "assignmentType", "removedService",
    "keptService", "keptAssignmentType", "reason", "action",
]


def export_csv(
    report: dict[str, Any],
    output_dir: Path,
    audit_id: str,
) -> list[Path]:
    """
    Write CSV files for assignments, removed duplicates and summary metrics.

    Returns:
        List of created CSV file paths.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    created = []

    # --- Assignments CSV ---
    assignments_path = output_dir / f"role_assignments_{audit_id}.csv"
    with open(assignments_path, "w", newline="", encoding="utf-8-sig") as fh:
        writer = csv.DictWriter(fh, fieldnames=ASSIGNMENT_FIELDS, extrasaction="ignore")
        writer.writeheader()
        for row in report.get("formattedAssignments", []):
            writer.writerow(row)
    created.append(assignments_path)

    # --- Removed Duplicates CSV ---
    duplicates_path = output_dir / f"removed_duplicates_{audit_id}.csv"
    with open(duplicates_path, "w", newline="", encoding="utf-8-sig") as fh:
        writer = csv.DictWriter(fh, fieldnames=DUPLICATE_FIELDS, extrasaction="ignore")
        writer.writeheader()
        for row in report.get("removedDuplicates", []):
            writer.writerow(row)
    created.append(duplicates_path)

    # --- Summary CSV ---
    metadata = report.get("metadata", {})
    alerts = report.get("securityAlerts", {})
    compliance = report.get("complianceAnalysis", {})
    summary_path = output_dir / f"audit_summary_{audit_id}.csv"
    with open(summary_path, "w", newline="", encoding="utf-8-sig") as fh:
        writer = csv.writer(fh)
        writer.writerow(["metric", "value"])
        writer.writerow(["organization", metadata.get("organizationName", "")])
        writer.writerow(["total_assignments", metadata.get("totalAssignments", 0)])
        writer.writerow(["unique_users", metadata.get("uniqueUsers", 0)])
        writer.writerow(["services_audited", metadata.get("servicesAudited", 0)])
        writer.writerow(["duplicates_removed", metadata.get("duplicatesRemoved", 0)])
        writer.writerow(["global_admins", alerts.get("globalAdminCount", 0)])
        writer.writerow(["disabled_users_with_roles", alerts.get("disabledUsersWithRoles", 0)])
        for severity in ("critical", "high", "medium", "low"):
            writer.writerow([f"{severity}_alerts", len(alerts.get(severity, []))])
        writer.writerow(["compliance_gaps", len(compliance.get("complianceGaps", []))])
        writer.writerow(["compliance_score", compliance.get("complianceScore", 0)])
    created.append(summary_path)

    return created
