"""
Saved tenant profiles.

A profile pins one tenant's app registration (tenant, client, auth mode,
certificate file) together with the audit defaults used for that tenant:
the services to audit, the deduplication mode and whether the Azure AD
record is preferred. Flags given on the command line still win.

The store is a single JSON file, ~/.m365_role_audit/profiles.json by
default. Secrets never go into it.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from .config import ALL_SERVICES, AuditConfig

logger = logging.getLogger("m365_role_audit.profiles")

DEFAULT_PROFILES_FILE = Path.home() / ".m365_role_audit" / "profiles.json"

AUTH_MODES = ("certificate", "client_secret", "delegated")
DEFAULT_CERT_PATH = "./base64.txt"


@dataclass
class TenantProfile:
    name: str
    tenant_id: str
    client_id: str
    auth_mode: str = "certificate"
    cert_path: str = DEFAULT_CERT_PATH    # certificate mode only
    organization_name: str = ""
    services: list[str] = field(default_factory=list)    # empty: every service
    dedup_mode: str = ""                                  # empty: config default
    prefer_azure_ad_source: bool = False
    notes: str = ""

    def validate(self) -> None:
        """
        Raises ValueError for an unknown auth mode or service, and
        DeduplicationModeError for an unknown deduplication mode.
        """
        from .dedup import DeduplicationMode

        if self.auth_mode not in AUTH_MODES:
            raise ValueError(f"Unknown auth mode {self.auth_mode!r} (expected one of: {', '.join(AUTH_MODES)})")
        known = {s.lower() for s in ALL_SERVICES}
        unknown = [s for s in self.services if s.lower() not in known]
        if unknown:
            raise ValueError(f"Profile {self.name!r} names unknown services: {', '.join(unknown)}")
        if self.dedup_mode:
            DeduplicationMode.parse(self.dedup_mode)

    def certificate_file(self) -> str:
        """Absolute certificate path; relative paths resolve against the cwd."""
        path = Path(self.cert_path).expanduser()
        return str(path if path.is_absolute() else Path.cwd() / path)

    def apply_audit_defaults(self, config: AuditConfig) -> None:
        """Copy this tenant's audit defaults onto `config`."""
        if self.services:
            config.collection.services = list(self.services)
        if self.dedup_mode:
            config.analysis.dedup_mode = self.dedup_mode
        if self.prefer_azure_ad_source:
            config.analysis.prefer_azure_ad_source = True
        if self.organization_name and not config.organization_name:
            config.organization_name = self.organization_name

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "tenant_id": self.tenant_id,
            "client_id": self.client_id,
            "auth_mode": self.auth_mode,
        }
        if self.auth_mode == "certificate":
            data["cert_path"] = self.cert_path
        for key in ("organization_name", "services", "dedup_mode", "prefer_azure_ad_source", "notes"):
            value = getattr(self, key)
            if value:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> "TenantProfile":
        return cls(
            name=name,
            tenant_id=data["tenant_id"],
            client_id=data["client_id"],
            auth_mode=data.get("auth_mode", "certificate"),
            cert_path=data.get("cert_path", DEFAULT_CERT_PATH),
            organization_name=data.get("organization_name", ""),
            services=list(data.get("services") or []),
            dedup_mode=data.get("dedup_mode", ""),
            prefer_azure_ad_source=bool(data.get("prefer_azure_ad_source", False)),
            notes=data.get("notes", ""),
        )


@dataclass
class ProfileStore:
    path: Path = DEFAULT_PROFILES_FILE
    profiles: dict[str, TenantProfile] = field(default_factory=dict)
    default_profile: str = ""

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "ProfileStore":
        """
        Read the profile file. A missing file is an empty store; an
        unreadable one is logged and also treated as empty.
        """
        store = cls(path=Path(path) if path else DEFAULT_PROFILES_FILE)
        if not store.path.exists():
            return store
        try:
            data = json.loads(store.path.read_text(encoding="utf-8"))
            profiles = {
                name: TenantProfile.from_dict(name, entry)
                for name, entry in data.get("profiles", {}).items()
            }
        except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable profile file {store.path}: {e}")
            return store
        store.profiles = profiles
        store.default_profile = data.get("default_profile", "")
        logger.debug(f"Loaded {len(profiles)} tenant profiles from {store.path}")
        return store

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "default_profile": self.default_profile,
            "profiles": {name: p.to_dict() for name, p in sorted(self.profiles.items())},
        }
        self.path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")

    def add(self, profile: TenantProfile, set_default: bool = False) -> None:
        """Validate and store `profile`, replacing any profile of the same name."""
        profile.validate()
        self.profiles[profile.name] = profile
        if set_default or not self.default_profile:
            self.default_profile = profile.name
        self.save()

    def remove(self, name: str) -> bool:
        if self.profiles.pop(name, None) is None:
            return False
        if self.default_profile == name:
            self.default_profile = min(self.profiles, default="")
        self.save()
        return True

    def get(self, name: str) -> Optional[TenantProfile]:
        """Case-insensitive lookup."""
        return next((p for n, p in self.profiles.items() if n.lower() == name.lower()), None)

    def get_default(self) -> Optional[TenantProfile]:
        if self.default_profile in self.profiles:
            return self.profiles[self.default_profile]
        return self.list_profiles()[0] if self.profiles else None

    def set_default(self, name: str) -> bool:
        if name not in self.profiles:
            return False
        self.default_profile = name
        self.save()
        return True

    def list_profiles(self) -> list[TenantProfile]:
        return sorted(self.profiles.values(), key=lambda p: p.name)


def resolve_profile(
    profile_name: Optional[str] = None,
    path: Optional[Path] = None,
) -> Optional[TenantProfile]:
    """The named profile, or the default one when no name is given."""
    store = ProfileStore.load(path)
    return store.get(profile_name) if profile_name else store.get_default()
