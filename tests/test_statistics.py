from __future__ import annotations

from datetime import datetime, timedelta, timezone

from m365_role_audit.models import PrincipalType, Service
from m365_role_audit.stats import compute_statistics, pim_adoption_rate

AAD = Service.AZURE_AD.value
EXO = Service.EXCHANGE.value
SPO = Service.SHAREPOINT.value


def test_empty_input_yields_zeroes(now):
    stats = compute_statistics([], detailed=True, now=now)

    assert stats.total_assignments == 0
    assert stats.unique_users == 0
    assert stats.services_audited == 0
    assert stats.by_service == {}
    assert stats.global_admins == ()
    assert stats.detailed.overall_pim_adoption_rate == 0.0
    assert stats.detailed.pim_by_service == {}
    assert stats.detailed.average_roles_per_user == 0.0
    assert stats.detailed.users_with_multiple_services == 0


def test_basic_counts_and_groupings(make_record):
    records = [
        make_record(),
        make_record(role="Exchange Administrator", service=EXO),
        make_record(upn="bob@contoso.com", user_enabled=False),
        make_record(upn=None, principal_type=PrincipalType.GROUP.value),
        make_record(upn="Unknown", role="Security Reader"),
    ]

    stats = compute_statistics(records)

    assert stats.total_assignments == 5
    assert stats.unique_users == 2
    assert stats.services_audited == 2
    assert set(stats.by_service) == {AAD, EXO}
    assert len(stats.by_role["Global Administrator"]) == 3
    assert len(stats.global_admins) == 3
    assert len(stats.disabled_users) == 1
    assert len(stats.by_principal_type[PrincipalType.GROUP.value]) == 1
    assert stats.detailed is None
    assert not stats.is_detailed


def test_disabled_requires_explicit_false(make_record):
    records = [make_record(user_enabled=None), make_record(user_enabled=True), make_record(user_enabled=False)]
    assert len(compute_statistics(records).disabled_users) == 1


def test_pim_partitions(make_record):
    records = [
        make_record(assignment_type="Eligible (PIM)"),
        make_record(assignment_type="Active (PIM)"),
        make_record(assignment_type="Active"),
        make_record(assignment_type="Role Group Member"),
        make_record(assignment_type="Time-bound RBAC"),
    ]
    stats = compute_statistics(records)
    assert len(stats.pim_eligible) == 1
    assert len(stats.pim_active) == 1
    assert len(stats.permanent_active) == 2


def test_adoption_rate_rounding():
    assert pim_adoption_rate(1, 2) == 33.33
    assert pim_adoption_rate(0, 0) == 0.0
    assert pim_adoption_rate(3, 0) == 100.0


def test_detailed_pim_by_service(make_record, now):
    records = [
        make_record(assignment_type="Eligible (PIM)"),
        make_record(upn="bob@contoso.com"),
        make_record(upn="carol@contoso.com"),
        make_record(service=EXO, role="Exchange Administrator", assignment_type="Active (PIM)"),
    ]

    detailed = compute_statistics(records, detailed=True, now=now).detailed

    aad = detailed.pim_by_service[AAD]
    assert (aad.eligible, aad.pim_active, aad.permanent) == (1, 0, 2)
    assert aad.adoption_rate == 33.33
    exo = detailed.pim_by_service[EXO]
    assert (exo.eligible, exo.pim_active, exo.permanent) == (0, 1, 0)
    assert exo.adoption_rate == 0.0
    assert detailed.overall_pim_adoption_rate == 33.33


def test_cross_service_users(make_record, now):
    records = [
        make_record(),
        make_record(service=EXO, role="Exchange Administrator"),
        make_record(upn="bob@contoso.com", service=SPO, role="SharePoint Administrator"),
        make_record(upn="bob@contoso.com", service=EXO, role="Exchange Administrator"),
        make_record(upn="carol@contoso.com", service=EXO),
        make_record(upn="Unknown", service=SPO),
        make_record(upn="Unknown", service=AAD),
    ]

    detailed = compute_statistics(records, detailed=True, now=now).detailed

    assert detailed.users_with_multiple_services == 2
    assert detailed.cross_service_users["alice@contoso.com"] == tuple(sorted((AAD, EXO)))
    assert detailed.exchange_azure_ad_combinations == 1
    assert sum(detailed.service_combinations.values()) == 2


def test_cross_service_user_with_missing_service(make_record, now):
    records = [
        make_record(service=None),
        make_record(service=EXO, role="Exchange Administrator"),
    ]

    stats = compute_statistics(records, detailed=True, now=now)

    assert set(stats.by_service) == {"Unknown", EXO}
    assert stats.detailed.cross_service_users["alice@contoso.com"] == (EXO, "Unknown")
    assert stats.detailed.service_combinations == {f"{EXO} + Unknown": 1}


def test_empty_upn_is_not_a_user(make_record):
    records = [make_record(), make_record(upn=""), make_record(upn="", role="Security Reader")]
    assert compute_statistics(records).unique_users == 1


def test_expiry_buckets(make_record, now):
    soon = make_record(assignment_type="Eligible (PIM)", pim_end_date_time=now + timedelta(days=9))
    edge = make_record(upn="bob@contoso.com", pim_end_date_time=now + timedelta(days=30))
    later = make_record(upn="carol@contoso.com", pim_end_date_time=now + timedelta(days=31))
    expired = make_record(upn="dave@contoso.com", pim_end_date_time=now - timedelta(days=1))
    standing = make_record(upn="erin@contoso.com")

    detailed = compute_statistics([soon, edge, later, expired, standing], detailed=True, now=now).detailed

    assert len(detailed.time_bound) == 4
    assert detailed.expiring_soon == (soon, edge)
    assert detailed.expired == (expired,)


def test_naive_end_dates_are_treated_as_utc(make_record, now):
    naive_past = make_record(pim_end_date_time=datetime(2026, 2, 1))
    naive_future = make_record(upn="bob@contoso.com", pim_end_date_time=datetime(2026, 3, 5))

    detailed = compute_statistics([naive_past, naive_future], detailed=True, now=now).detailed

    assert detailed.expired == (naive_past,)
    assert detailed.expiring_soon == (naive_future,)


def test_naive_reference_time(make_record):
    record = make_record(pim_end_date_time=datetime(2026, 3, 5, tzinfo=timezone.utc))
    detailed = compute_statistics([record], detailed=True, now=datetime(2026, 3, 1)).detailed
    assert detailed.expiring_soon == (record,)


def test_risk_distribution_and_scopes(make_record, now):
    records = [
        make_record(role_scope="Overarching"),
        make_record(role="Exchange Administrator", service=EXO),
        make_record(role="Global Reader", principal_type=PrincipalType.SERVICE_PRINCIPAL.value),
        make_record(role="Teams Administrator", principal_type=PrincipalType.GROUP.value),
    ]

    detailed = compute_statistics(records, detailed=True, now=now).detailed

    assert detailed.role_risk_distribution == {"CRITICAL": 1, "HIGH": 1, "MEDIUM": 1, "LOW": 1}
    assert len(detailed.overarching) == 1
    assert len(detailed.service_specific) == 3
    assert len(detailed.group_assignments) == 1
    assert len(detailed.service_principal_assignments) == 1


def test_hybrid_user_counts(make_record, now):
    records = [
        make_record(on_premises_sync_enabled=True),
        make_record(role="Security Reader", on_premises_sync_enabled=True),
        make_record(upn="bob@contoso.com"),
    ]
    stats = compute_statistics(records, detailed=True, now=now)
    assert len(stats.on_prem_synced) == 2
    assert stats.detailed.on_prem_synced_users == 1
    assert stats.detailed.cloud_only_users == 1
    assert stats.detailed.average_roles_per_user == 1.5


def test_snapshot_is_reproducible(make_record, now):
    records = [make_record(), make_record(upn="bob@contoso.com", pim_end_date_time=now + timedelta(days=2))]
    assert compute_statistics(records, detailed=True, now=now) == compute_statistics(records, detailed=True, now=now)
