from __future__ import annotations

import csv
import json

import pytest

from m365_role_audit.models import OrganizationMetadata, Service
from m365_role_audit.pipeline import run_audit
from m365_role_audit.reporting import export_csv, export_json, export_markdown, render_markdown

AUDIT_ID = "20260301T120000Z"


@pytest.fixture
def report(make_record, now):
    records = [make_record(upn=f"admin{i}@contoso.com") for i in range(5)]
    records += [
        make_record(service=Service.EXCHANGE.value),
        make_record(),
        make_record(upn="bob@contoso.com", role="Help Desk Operator", service=Service.INTUNE.value,
                    assignment_type="Intune RBAC", group_member_count=2),
    ]
    organization = OrganizationMetadata(organization_name="Contoso Ltd")
    return run_audit(records, organization=organization, mode="Strict", now=now).report


def test_export_json(report, tmp_path):
    path = export_json(report, tmp_path / "out", AUDIT_ID)

    assert path.name == f"role_audit_{AUDIT_ID}.json"
    loaded = json.loads(path.read_text(encoding="utf-8"))
    assert loaded["metadata"]["organizationName"] == "Contoso Ltd"
    assert loaded["metadata"]["duplicatesRemoved"] == 1


def test_export_csv(report, tmp_path):
    paths = export_csv(report, tmp_path, AUDIT_ID)

    assert [p.name for p in paths] == [
        f"role_assignments_{AUDIT_ID}.csv",
        f"removed_duplicates_{AUDIT_ID}.csv",
        f"audit_summary_{AUDIT_ID}.csv",
    ]
    with open(paths[0], newline="", encoding="utf-8-sig") as fh:
        rows = list(csv.DictReader(fh))
    assert len(rows) == 7
    assert rows[-1]["groupMemberCount"] == "2"

    with open(paths[1], newline="", encoding="utf-8-sig") as fh:
        duplicates = list(csv.DictReader(fh))
    assert duplicates[0]["removedService"] == Service.AZURE_AD.value
    assert duplicates[0]["keptService"] == Service.EXCHANGE.value

    with open(paths[2], newline="", encoding="utf-8-sig") as fh:
        summary = dict(csv.reader(fh))
    assert summary["global_admins"] == "6"
    assert summary["critical_alerts"] == "1"


def test_export_markdown(report, tmp_path):
    path = export_markdown(report, tmp_path, AUDIT_ID)

    assert path.name == f"role_audit_report_{AUDIT_ID}.md"
    text = path.read_text(encoding="utf-8")
    assert "Contoso Ltd" in text
    assert AUDIT_ID in text
    assert "Excessive Global Administrators: 6 assignments (recommended maximum 5)" in text
    assert "| globalAdminLimit | ❌ | 6 | 5 |" in text


def test_render_markdown_without_alerts(make_record, now):
    report = run_audit([make_record(assignment_type="Eligible (PIM)")], now=now).report
    text = render_markdown(report)
    assert "No security alerts were raised." in text
    assert "## Privileged Identity Management" in text
