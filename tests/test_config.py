from __future__ import annotations

import json

import pytest

from m365_role_audit.__main__ import build_config, organization_metadata, parse_args
from m365_role_audit.collectors import CollectorResult
from m365_role_audit.config import AuditConfig, CollectionConfig
from m365_role_audit.dedup import DeduplicationModeError
from m365_role_audit.profiles import ProfileStore, TenantProfile, resolve_profile

TENANT = "00000000-0000-0000-0000-000000000001"
CLIENT = "00000000-0000-0000-0000-000000000002"


def _write(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_config_from_file(tmp_path):
    path = _write(tmp_path / "config.json", {
        "auth": {
            "mode": "client_secret",
            "client_secret": {"tenant_id": TENANT, "client_id": CLIENT},
        },
        "collection": {"services": ["AzureAD", "Intune"], "include_overarching_roles": False},
        "analysis": {"dedup_mode": "Loose", "prefer_azure_ad_source": True, "detailed": False},
        "output": {"formats": ["json"]},
        "organization_name": "Contoso",
    })

    config = AuditConfig.from_file(str(path))

    assert config.auth.mode == "client_secret"
    assert config.auth.client_secret.tenant_id == TENANT
    assert config.auth.certificate is None
    assert config.collection.services == ["AzureAD", "Intune"]
    assert config.collection.include_overarching_roles is False
    assert config.analysis.dedup_mode == "Loose"
    assert config.analysis.prefer_azure_ad_source is True
    assert config.analysis.detailed is False
    assert config.output.formats == ["json"]
    assert config.organization_name == "Contoso"


def test_config_rejects_unknown_dedup_mode(tmp_path):
    path = _write(tmp_path / "config.json", {"analysis": {"dedup_mode": "Fuzzy"}})
    with pytest.raises(DeduplicationModeError):
        AuditConfig.from_file(str(path))


def test_collection_wants_is_case_insensitive():
    config = CollectionConfig(services=["AzureAD", "exchange"])
    assert config.wants("azuread")
    assert config.wants("Exchange")
    assert not config.wants("Intune")


def test_profile_store_round_trip(tmp_path):
    path = tmp_path / "profiles.json"
    store = ProfileStore.load(path)
    store.add(TenantProfile(name="contoso-prod", tenant_id=TENANT, client_id=CLIENT, organization_name="Contoso"))
    store.add(TenantProfile(name="fabrikam", tenant_id=TENANT, client_id=CLIENT, auth_mode="client_secret"))

    reloaded = ProfileStore.load(path)

    assert [p.name for p in reloaded.list_profiles()] == ["contoso-prod", "fabrikam"]
    assert reloaded.default_profile == "contoso-prod"
    assert reloaded.get("CONTOSO-PROD").organization_name == "Contoso"
    assert resolve_profile(path=path).name == "contoso-prod"
    assert resolve_profile("fabrikam", path=path).auth_mode == "client_secret"

    assert reloaded.set_default("fabrikam")
    assert reloaded.remove("fabrikam")
    assert reloaded.default_profile == "contoso-prod"
    assert not reloaded.remove("missing")


def test_profile_store_rejects_unknown_auth_mode(tmp_path):
    store = ProfileStore.load(tmp_path / "profiles.json")
    with pytest.raises(ValueError):
        store.add(TenantProfile(name="x", tenant_id=TENANT, client_id=CLIENT, auth_mode="password"))


def test_corrupt_profile_file_loads_empty(tmp_path):
    path = tmp_path / "profiles.json"
    path.write_text("{not json", encoding="utf-8")
    assert ProfileStore.load(path).profiles == {}


def test_build_config_from_cli_flags(tmp_path):
    args = parse_args([
        "--tenant-id", TENANT,
        "--client-id", CLIENT,
        "--auth-mode", "delegated",
        "--services", "AzureAD", "Exchange",
        "--dedup-mode", "ServicePreference",
        "--prefer-azure-ad",
        "--exclude-overarching",
        "--summary-only",
        "--formats", "json", "markdown",
        "--organization-name", "Contoso",
        "--output-dir", str(tmp_path),
    ])

    config = build_config(args)

    assert config.auth.mode == "delegated"
    assert config.auth.delegated.tenant_id == TENANT
    assert config.collection.services == ["AzureAD", "Exchange"]
    assert config.collection.include_overarching_roles is False
    assert config.analysis.dedup_mode == "ServicePreference"
    assert config.analysis.prefer_azure_ad_source is True
    assert config.analysis.detailed is False
    assert config.output.formats == ["json", "markdown"]
    assert config.output.base_dir == str(tmp_path)
    assert config.organization_name == "Contoso"


def test_build_config_defaults_to_certificate(tmp_path):
    args = parse_args(["--tenant-id", TENANT, "--client-id", CLIENT])

    config = build_config(args)

    assert config.auth.mode == "certificate"
    assert config.auth.certificate.certificate_path == "./base64.txt"
    assert config.analysis.dedup_mode == "Strict"
    assert config.collection.include_overarching_roles is True


def test_parse_args_rejects_unknown_service():
    with pytest.raises(SystemExit):
        parse_args(["--services", "Yammer"])


def test_organization_metadata(make_record):
    azure_ad = CollectorResult("azure_ad", "Azure AD/Entra ID")
    exchange = CollectorResult("exchange", "Exchange Online")
    exchange.metadata["exchange_data_enhanced"] = True
    records = [
        make_record(authentication_type="Certificate"),
        make_record(upn="bob@contoso.com", authentication_type="Certificate"),
        make_record(upn="carol@contoso.com"),
    ]

    organization = organization_metadata("", [azure_ad, exchange], records)

    assert organization.organization_name == "Unknown Organization"
    assert organization.auth_types == {"Certificate": 2}
    assert organization.exchange_data_enhanced is True
    assert organization.services_requested == ("Azure AD/Entra ID", "Exchange Online")


def test_profile_audit_defaults_round_trip(tmp_path):
    path = tmp_path / "profiles.json"
    store = ProfileStore.load(path)
    store.add(TenantProfile(
        name="contoso-prod", tenant_id=TENANT, client_id=CLIENT, auth_mode="client_secret",
        services=["AzureAD", "Intune"], dedup_mode="Loose", prefer_azure_ad_source=True,
    ))

    stored = json.loads(path.read_text(encoding="utf-8"))["profiles"]["contoso-prod"]
    assert "cert_path" not in stored
    assert stored["services"] == ["AzureAD", "Intune"]

    profile = ProfileStore.load(path).get("contoso-prod")
    assert profile.dedup_mode == "Loose"
    assert profile.prefer_azure_ad_source is True


@pytest.mark.parametrize("kwargs, error", [
    ({"services": ["Yammer"]}, ValueError),
    ({"dedup_mode": "Fuzzy"}, DeduplicationModeError),
])
def test_profile_store_rejects_bad_audit_defaults(tmp_path, kwargs, error):
    store = ProfileStore.load(tmp_path / "profiles.json")
    with pytest.raises(error):
        store.add(TenantProfile(name="x", tenant_id=TENANT, client_id=CLIENT, **kwargs))
    assert not (tmp_path / "profiles.json").exists()


def test_build_config_applies_profile_defaults(tmp_path, monkeypatch):
    path = tmp_path / "profiles.json"
    monkeypatch.setattr("m365_role_audit.profiles.DEFAULT_PROFILES_FILE", path)
    ProfileStore.load(path).add(TenantProfile(
        name="contoso-prod", tenant_id=TENANT, client_id=CLIENT, organization_name="Contoso",
        services=["Exchange"], dedup_mode="ServicePreference",
    ))

    config = build_config(parse_args(["--profile", "contoso-prod"]))
    assert config.collection.services == ["Exchange"]
    assert config.analysis.dedup_mode == "ServicePreference"
    assert config.organization_name == "Contoso"
    assert config.auth.certificate.tenant_id == TENANT

    overridden = build_config(parse_args(["--profile", "contoso-prod", "--dedup-mode", "Strict"]))
    assert overridden.analysis.dedup_mode == "Strict"
