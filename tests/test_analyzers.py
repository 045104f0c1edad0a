from __future__ import annotations

from m365_role_audit.analyzers import (
    AuthenticationAnalyzer,
    BaseAnalyzer,
    ExchangeAnalyzer,
    IntuneAnalyzer,
    PowerPlatformAnalyzer,
    PrivilegeAnalyzer,
    effective_auth_types,
    run_analysis,
)
from m365_role_audit.models import OrganizationMetadata, PrincipalType, Service
from m365_role_audit.stats import compute_statistics

EXO = Service.EXCHANGE.value
INTUNE = Service.INTUNE.value
PPL = Service.POWER_PLATFORM.value


def _analyze(records, organization=None, analyzers=None):
    stats = compute_statistics(records, detailed=True)
    return run_analysis(stats, records, organization or OrganizationMetadata(), analyzers=analyzers)


def _global_admins(make_record, count):
    return [make_record(upn=f"admin{i}@contoso.com") for i in range(count)]


def _issues(analysis):
    return [g.issue for g in analysis.gaps]


# ── Privileged access ───────────────────────────────────────────────────────

def test_five_global_admins_is_compliant(make_record):
    analysis = _analyze(_global_admins(make_record, 5), analyzers=[PrivilegeAnalyzer])

    assert analysis.alerts["critical"] == []
    assert analysis.checks["globalAdminLimit"].compliant
    assert analysis.checks["globalAdminLimit"].current == 5


def test_six_global_admins_raise_critical_alert(make_record):
    analysis = _analyze(_global_admins(make_record, 6), analyzers=[PrivilegeAnalyzer])

    assert analysis.alerts["critical"] == [
        "Excessive Global Administrators: 6 assignments (recommended maximum 5)"
    ]
    check = analysis.checks["globalAdminLimit"]
    assert (check.compliant, check.current, check.threshold) == (False, 6, 5)
    gap = analysis.gaps[0]
    assert gap.issue == "Excessive Global Administrators"
    assert gap.severity == "Critical"
    assert len(gap.affected_users) == 6
    assert any(r.priority == "High" for r in analysis.recommendations)


def test_disabled_users_raise_high_alert(make_record):
    records = [make_record(user_enabled=False), make_record(upn="bob@contoso.com", user_enabled=True)]
    analysis = _analyze(records, analyzers=[PrivilegeAnalyzer])

    assert len(analysis.alerts["high"]) == 1
    assert "Disabled Accounts Holding Roles" in _issues(analysis)
    assert analysis.checks["disabledUsersWithRoles"].current == 1


def test_no_pim_raises_medium_alert(make_record):
    analysis = _analyze([make_record()], analyzers=[PrivilegeAnalyzer])

    assert any("PIM" in message for message in analysis.alerts["medium"])
    assert not analysis.checks["pimAdoption"].compliant


def test_pim_in_use_is_compliant(make_record):
    records = [make_record(assignment_type="Eligible (PIM)"), make_record(upn="bob@contoso.com")]
    analysis = _analyze(records, analyzers=[PrivilegeAnalyzer])

    check = analysis.checks["pimAdoption"]
    assert check.compliant
    assert check.current == 50.0
    assert analysis.alerts["medium"] == []


def test_hybrid_identities_raise_low_alert(make_record):
    analysis = _analyze([make_record(on_premises_sync_enabled=True)], analyzers=[PrivilegeAnalyzer])
    assert len(analysis.alerts["low"]) == 1


def test_empty_input_is_quiet():
    analysis = _analyze([])

    assert all(messages == [] for messages in analysis.alerts.values())
    assert analysis.gaps == []
    assert analysis.compliance_score == 100.0


# ── Authentication ──────────────────────────────────────────────────────────

def test_client_secret_from_supplied_distribution(make_record):
    organization = OrganizationMetadata(auth_types={"ClientSecret": 12, "Certificate": 3})
    analysis = _analyze([make_record()], organization, analyzers=[AuthenticationAnalyzer])

    assert analysis.alerts["medium"] == [
        "Client secret authentication used for 12 audited assignments; "
        "migrate to certificate-based authentication"
    ]
    assert not analysis.checks["certificateAuthentication"].compliant


def test_client_secret_derived_from_records(make_record):
    records = [
        make_record(authentication_type="ClientSecret"),
        make_record(upn="bob@contoso.com", authentication_type="ClientSecret"),
    ]
    assert effective_auth_types(OrganizationMetadata(), records) == {"ClientSecret": 2}

    analysis = _analyze(records, analyzers=[AuthenticationAnalyzer])
    assert "2 audited assignments" in analysis.alerts["medium"][0]


def test_certificate_only_is_compliant(make_record):
    records = [make_record(authentication_type="Certificate")]
    analysis = _analyze(records, analyzers=[AuthenticationAnalyzer])

    assert analysis.alerts["medium"] == []
    assert analysis.checks["certificateAuthentication"].compliant


# ── Exchange ────────────────────────────────────────────────────────────────

def _org_management(make_record, count):
    return [
        make_record(
            upn=f"exo{i}@contoso.com",
            role="Organization Management",
            service=EXO,
            assignment_type="Role Group Member",
            principal_id=f"id-{i}",
        )
        for i in range(count)
    ]


def test_exchange_org_management_within_limit(make_record):
    analysis = _analyze(_org_management(make_record, 10), analyzers=[ExchangeAnalyzer])

    assert analysis.alerts["medium"] == []
    section = analysis.sections["exchangeSecurityAlerts"]
    assert section["organizationManagementMembers"] == 10
    assert section["roleGroups"] == ["Organization Management"]


def test_exchange_org_management_over_limit(make_record):
    analysis = _analyze(_org_management(make_record, 11), analyzers=[ExchangeAnalyzer])

    message = "Exchange Organization Management role group has 11 members (recommended maximum 10)"
    assert analysis.alerts["medium"] == [message]
    assert analysis.sections["exchangeSecurityAlerts"]["alerts"] == [message]
    assert not analysis.checks["exchangeOrganizationManagement"].compliant


def test_exchange_section_absent_without_exchange_records(make_record):
    analysis = _analyze([make_record()], analyzers=[ExchangeAnalyzer])
    assert "exchangeSecurityAlerts" not in analysis.sections
    assert analysis.checks["exchangeOrganizationManagement"].compliant


# ── Intune ──────────────────────────────────────────────────────────────────

def _intune_admins(make_record, count):
    return [
        make_record(
            upn=f"mdm{i}@contoso.com",
            role="Intune Service Administrator",
            service=INTUNE,
            assignment_type="Azure AD Role",
        )
        for i in range(count)
    ]


def test_three_intune_admins_no_gap(make_record):
    analysis = _analyze(_intune_admins(make_record, 3), analyzers=[IntuneAnalyzer])
    assert "Excessive Intune Service Administrators" not in _issues(analysis)


def test_four_intune_admins_gap(make_record):
    analysis = _analyze(_intune_admins(make_record, 4), analyzers=[IntuneAnalyzer])

    gap = next(g for g in analysis.gaps if g.issue == "Excessive Intune Service Administrators")
    assert gap.severity == "Medium"
    assert gap.category == "Microsoft Intune"
    assert not analysis.checks["intuneServiceAdministrators"].compliant


def test_intune_directory_role_reliance(make_record):
    records = [
        make_record(upn=f"u{i}@contoso.com", role="Intune Administrator", service=INTUNE,
                    assignment_type="Azure AD Role")
        for i in range(11)
    ]
    analysis = _analyze(records, analyzers=[IntuneAnalyzer])
    assert "Intune Administration Relies on Directory Roles" in _issues(analysis)


def test_intune_rbac_heavy_tenant_has_no_reliance_gap(make_record):
    records = [
        make_record(upn=f"u{i}@contoso.com", role="Help Desk Operator", service=INTUNE,
                    assignment_type="Intune RBAC")
        for i in range(12)
    ]
    analysis = _analyze(records, analyzers=[IntuneAnalyzer])
    assert "Intune Administration Relies on Directory Roles" not in _issues(analysis)


def test_intune_policy_ownership(make_record):
    records = _intune_admins(make_record, 1)
    assert "No Intune Policy Ownership Tracking" in _issues(_analyze(records, analyzers=[IntuneAnalyzer]))

    records.append(make_record(role="Policy Owner", service=INTUNE, assignment_type="Policy Owner"))
    assert "No Intune Policy Ownership Tracking" not in _issues(_analyze(records, analyzers=[IntuneAnalyzer]))


def test_intune_rules_skip_tenants_without_intune(make_record):
    analysis = _analyze([make_record()], analyzers=[IntuneAnalyzer])
    assert analysis.gaps == []
    assert analysis.checks["intuneServiceAdministrators"].compliant


# ── Power Platform ──────────────────────────────────────────────────────────

def test_power_platform_service_principal_gap(make_record):
    records = [
        make_record(upn="app-id", role="Dynamics 365 Administrator", service=PPL,
                    principal_type=PrincipalType.SERVICE_PRINCIPAL.value),
    ]
    analysis = _analyze(records, analyzers=[PowerPlatformAnalyzer])
    assert _issues(analysis) == ["Service Principals with Power Platform Roles"]


def test_power_platform_admin_boundary(make_record):
    def admins(count):
        return [
            make_record(upn=f"pp{i}@contoso.com", role="Power Platform Administrator", service=PPL)
            for i in range(count)
        ]

    assert _issues(_analyze(admins(5), analyzers=[PowerPlatformAnalyzer])) == []
    assert _issues(_analyze(admins(6), analyzers=[PowerPlatformAnalyzer])) == [
        "Excessive Power Platform Administrators"
    ]


# ── Runner ──────────────────────────────────────────────────────────────────

class BrokenAnalyzer(BaseAnalyzer):
    name = "broken_analyzer"
    category = "Broken"

    def _analyze(self, stats, records, organization):
        raise RuntimeError("boom")


def test_failing_analyzer_becomes_low_gap(make_record):
    analysis = _analyze(_global_admins(make_record, 6), analyzers=[BrokenAnalyzer, PrivilegeAnalyzer])

    gap = analysis.gaps[0]
    assert gap.issue == "broken_analyzer Analysis Error"
    assert gap.severity == "Low"
    assert "boom" in gap.details
    assert len(analysis.alerts["critical"]) == 1


def test_all_analyzers_merge_and_sort(make_record):
    records = _global_admins(make_record, 6) + _intune_admins(make_record, 4)
    records.append(make_record(upn="bob@contoso.com", user_enabled=False))

    analysis = _analyze(records)

    severities = [g.severity for g in analysis.sorted_gaps()]
    assert severities[0] == "Critical"
    assert severities == sorted(severities, key=["Critical", "High", "Medium", "Low"].index)
    priorities = [r.priority for r in analysis.sorted_recommendations()]
    assert priorities == sorted(priorities, key=["High", "Medium", "Low"].index)
    assert set(analysis.checks) >= {
        "globalAdminLimit",
        "disabledUsersWithRoles",
        "pimAdoption",
        "certificateAuthentication",
        "exchangeOrganizationManagement",
        "intuneServiceAdministrators",
        "powerPlatformAdministrators",
    }
    assert 0 < analysis.compliance_score < 100
