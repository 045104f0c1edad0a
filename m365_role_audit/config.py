"""
Configuration module for the M365 Privileged Role Audit.
Defines tunable parameters, Graph settings, analysis thresholds and
operational settings.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


# ─── Tenant Authentication ───────────────────────────────────────────────────

AUTH_TYPE_CERTIFICATE = "Certificate"
AUTH_TYPE_CLIENT_SECRET = "ClientSecret"
AUTH_TYPE_DELEGATED = "Delegated"


@dataclass
class CertificateAuth:
    """Certificate-based app-only authentication configuration."""
    tenant_id: str
    client_id: str
    certificate_path: str          # Path to base64-encoded PFX
    certificate_password: str = "" # Prompted if empty and not in env


@dataclass
class ClientSecretAuth:
    """Client-secret app-only authentication configuration."""
    tenant_id: str
    client_id: str
    client_secret: str = ""        # Read from M365_CLIENT_SECRET or prompted


@dataclass
class DelegatedAuth:
    """Delegated (device code) authentication configuration."""
    tenant_id: str
    client_id: str
    scopes: list[str] = field(default_factory=lambda: [
        "https://graph.microsoft.com/.default"
    ])


@dataclass
class AuthConfig:
    """Authentication configuration: certificate, client_secret or delegated."""
    mode: str = "certificate"
    certificate: Optional[CertificateAuth] = None
    client_secret: Optional[ClientSecretAuth] = None
    delegated: Optional[DelegatedAuth] = None


# ─── Graph API Settings ─────────────────────────────────────────────────────

GRAPH_BASE_URL = "https://graph.microsoft.com"
GRAPH_API_VERSION = "v1.0"
GRAPH_BETA_VERSION = "beta"

MAX_CONCURRENT_REQUESTS = 4
MAX_RETRIES = 5
INITIAL_BACKOFF_SECONDS = 2.0
MAX_BACKOFF_SECONDS = 120.0
BACKOFF_MULTIPLIER = 2.0

DEFAULT_PAGE_SIZE = 999
MAX_PAGES_PER_ENDPOINT = 10000

BATCH_SIZE = 20                   # Graph $batch max is 20 requests
GET_BY_IDS_CHUNK = 1000           # directoryObjects/getByIds max ids per call


# ─── Analysis Thresholds ────────────────────────────────────────────────────

GLOBAL_ADMIN_LIMIT = 5
EXCHANGE_ORG_MANAGEMENT_LIMIT = 10
INTUNE_SERVICE_ADMIN_LIMIT = 3
INTUNE_ASSIGNMENT_VOLUME = 10
POWER_PLATFORM_ADMIN_LIMIT = 5
PIM_EXPIRY_WINDOW_DAYS = 30
TOP_N = 15

SEVERITY_ORDER = ["Critical", "High", "Medium", "Low"]


# ─── Collection Settings ────────────────────────────────────────────────────

ALL_SERVICES = [
    "AzureAD",
    "SharePoint",
    "Exchange",
    "Purview",
    "Teams",
    "Defender",
    "Intune",
    "PowerPlatform",
]


@dataclass
class CollectionConfig:
    """Controls for data collection behavior."""
    services: list[str] = field(default_factory=lambda: list(ALL_SERVICES))
    include_overarching_roles: bool = True
    enable_beta_endpoints: bool = True
    principal_batch_size: int = GET_BY_IDS_CHUNK

    def wants(self, service_key: str) -> bool:
        return service_key.lower() in {s.lower() for s in self.services}


# ─── Analysis Settings ──────────────────────────────────────────────────────

@dataclass
class AnalysisConfig:
    """Deduplication policy and statistics depth."""
    dedup_mode: str = "Strict"
    prefer_azure_ad_source: bool = False
    detailed: bool = True


# ─── Output Configuration ───────────────────────────────────────────────────

@dataclass
class OutputConfig:
    """Output directory and format settings."""
    base_dir: str = ""
    timestamp: str = ""
    formats: list[str] = field(default_factory=lambda: ["json", "csv", "markdown"])

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        if not self.base_dir:
            self.base_dir = os.path.join(os.getcwd(), f"m365_role_audit_{self.timestamp}")

    @property
    def audit_dir(self) -> Path:
        return Path(self.base_dir)


# ─── Master Configuration ───────────────────────────────────────────────────

@dataclass
class AuditConfig:
    """Top-level configuration for one audit run."""
    auth: AuthConfig = field(default_factory=AuthConfig)
    collection: CollectionConfig = field(default_factory=CollectionConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    organization_name: str = ""
    verbose: bool = False

    @classmethod
    def from_file(cls, path: str) -> "AuditConfig":
        """
        Load configuration from a JSON file.

        Raises DeduplicationModeError if the file names an unknown mode.
        """
        from .dedup import DeduplicationMode

        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)

        config = cls()
        if "auth" in data:
            auth_data = data["auth"]
            config.auth.mode = auth_data.get("mode", "certificate")
            if "certificate" in auth_data:
                c = auth_data["certificate"]
                config.auth.certificate = CertificateAuth(
                    tenant_id=c["tenant_id"],
                    client_id=c["client_id"],
                    certificate_path=c.get("certificate_path", "./base64.txt"),
                    certificate_password=c.get("certificate_password", ""),
                )
            if "client_secret" in auth_data:
                s = auth_data["client_secret"]
                config.auth.client_secret = ClientSecretAuth(
                    tenant_id=s["tenant_id"],
                    client_id=s["client_id"],
                )
            if "delegated" in auth_data:
                d = auth_data["delegated"]
                config.auth.delegated = DelegatedAuth(
                    tenant_id=d["tenant_id"],
                    client_id=d["client_id"],
                )
        for section, target in (
            ("collection", config.collection),
            ("analysis", config.analysis),
            ("output", config.output),
        ):
            for k, v in data.get(section, {}).items():
                if hasattr(target, k):
                    setattr(target, k, v)

        config.analysis.dedup_mode = DeduplicationMode.parse(config.analysis.dedup_mode).value
        config.organization_name = data.get("organization_name", "")
        config.verbose = data.get("verbose", False)
        return config


# ─── Required Graph API Permissions (Read-Only) ─────────────────────────

REQUIRED_PERMISSIONS = {
    "RoleManagement.Read.Directory": "Read directory role definitions and assignments",
    "RoleEligibilitySchedule.Read.Directory": "Read PIM eligible assignments",
    "RoleAssignmentSchedule.Read.Directory": "Read PIM active assignment schedules",
    "RoleManagement.Read.Exchange": "Read Exchange Online RBAC assignments (beta)",
    "DeviceManagementRBAC.Read.All": "Read Intune RBAC roles and assignments",
    "DeviceManagementConfiguration.Read.All": "Read Intune policies and their creation audit events",
    "Directory.Read.All": "Resolve principals (users, groups, service principals)",
    "AuditLog.Read.All": "Read signInActivity for privileged users",
}
