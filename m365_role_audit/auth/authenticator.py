"""
Authentication module — certificate, client-secret and delegated (device
code) auth via MSAL. Produces one immutable AuthContext per audit run.
"""

from __future__ import annotations

import base64
import getpass
import logging
import os
from dataclasses import dataclass
from typing import Optional

from cryptography.hazmat.primitives.serialization import pkcs12, Encoding, PrivateFormat, NoEncryption
from cryptography.hazmat.primitives.hashes import SHA1
import msal

from ..config import (
    AUTH_TYPE_CERTIFICATE,
    AUTH_TYPE_CLIENT_SECRET,
    AUTH_TYPE_DELEGATED,
    AuthConfig,
    REQUIRED_PERMISSIONS,
)

logger = logging.getLogger("m365_role_audit.auth")

# Default scopes for app-only auth
APP_SCOPES = ["https://graph.microsoft.com/.default"]
AUTHORITY_URL = "https://login.microsoftonline.com/{tenant_id}"

_AUTH_TYPES = {
    "certificate": AUTH_TYPE_CERTIFICATE,
    "client_secret": AUTH_TYPE_CLIENT_SECRET,
    "delegated": AUTH_TYPE_DELEGATED,
}


class AuthenticationError(Exception):
    """Raised when authentication fails."""
    pass


@dataclass(frozen=True)
class AuthContext:
    """Credentials and identity of one audit run, passed explicitly everywhere."""
    tenant_id: str
    client_id: str
    organization_name: str
    auth_type: str
    access_token: str

    def __repr__(self) -> str:
        return (
            f"AuthContext(tenant_id={self.tenant_id!r}, client_id={self.client_id!r}, "
            f"organization_name={self.organization_name!r}, auth_type={self.auth_type!r})"
        )


class Authenticator:
    """
    Handles MSAL-based authentication for Microsoft Graph.
    Supports:
      - Certificate-based app-only authentication
      - Client-secret app-only authentication
      - Delegated interactive authentication (device code flow)
    """

    def __init__(self, config: AuthConfig):
        self.config = config

    @property
    def auth_type(self) -> str:
        try:
            return _AUTH_TYPES[self.config.mode]
        except KeyError:
            raise AuthenticationError(f"Unknown auth mode: {self.config.mode}") from None

    async def acquire_context(self, organization_name: str = "") -> AuthContext:
        """Acquire a token and wrap it with the tenant identity."""
        auth_type = self.auth_type
        token = await self.acquire_token()
        settings = {
            "certificate": self.config.certificate,
            "client_secret": self.config.client_secret,
            "delegated": self.config.delegated,
        }[self.config.mode]
        return AuthContext(
            tenant_id=settings.tenant_id,
            client_id=settings.client_id,
            organization_name=organization_name or settings.tenant_id,
            auth_type=auth_type,
            access_token=token,
        )

    async def acquire_token(self) -> str:
        """Acquire an access token based on configured auth mode."""
        if self.config.mode == "certificate":
            return self._acquire_certificate_token()
        elif self.config.mode == "client_secret":
            return self._acquire_client_secret_token()
        elif self.config.mode == "delegated":
            return self._acquire_delegated_token()
        raise AuthenticationError(f"Unknown auth mode: {self.config.mode}")

    def _acquire_certificate_token(self) -> str:
        """Acquire token using certificate-based client credentials."""
        cert_config = self.config.certificate
        if not cert_config:
            raise AuthenticationError("Certificate auth config not provided.")

        logger.info("Authenticating with certificate-based app credentials...")

        cert_path = cert_config.certificate_path
        password = cert_config.certificate_password
        if not password:
            password = os.environ.get("M365_CERT_PASSWORD", "")
        if not password:
            password = getpass.getpass("Enter the certificate password: ")

        try:
            with open(cert_path, "r") as f:
                cert_base64 = f.read().strip()

            cert_bytes = base64.b64decode(cert_base64)
            password_bytes = password.encode("utf-8") if password else None

            private_key, certificate, _ = pkcs12.load_key_and_certificates(
                cert_bytes, password_bytes
            )
            private_key_pem = private_key.private_bytes(
                Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()
            ).decode("utf-8")
            thumbprint = certificate.fingerprint(SHA1()).hex()

            logger.info(f"Certificate loaded. Thumbprint: {thumbprint}")

        except FileNotFoundError:
            raise AuthenticationError(f"Certificate file not found: {cert_path}")
        except Exception as e:
            raise AuthenticationError(f"Failed to load certificate: {e}")

        app = msal.ConfidentialClientApplication(
            client_id=cert_config.client_id,
            authority=AUTHORITY_URL.format(tenant_id=cert_config.tenant_id),
            client_credential={
                "thumbprint": thumbprint,
                "private_key": private_key_pem,
            },
        )
        return _token_or_raise(app.acquire_token_for_client(scopes=APP_SCOPES), "Certificate")

    def _acquire_client_secret_token(self) -> str:
        """Acquire token using a client secret."""
        secret_config = self.config.client_secret
        if not secret_config:
            raise AuthenticationError("Client secret auth config not provided.")

        logger.info("Authenticating with client secret app credentials...")
        logger.warning("Client secret authentication in use; certificate authentication is recommended")

        secret = secret_config.client_secret or os.environ.get("M365_CLIENT_SECRET", "")
        if not secret:
            secret = getpass.getpass("Enter the client secret: ")

        app = msal.ConfidentialClientApplication(
            client_id=secret_config.client_id,
            authority=AUTHORITY_URL.format(tenant_id=secret_config.tenant_id),
            client_credential=secret,
        )
        return _token_or_raise(app.acquire_token_for_client(scopes=APP_SCOPES), "Client secret")

    def _acquire_delegated_token(self) -> str:
        """Acquire token using delegated (device code) flow."""
        deleg_config = self.config.delegated
        if not deleg_config:
            raise AuthenticationError("Delegated auth config not provided.")

        logger.info("Initiating device code authentication flow...")

        app = msal.PublicClientApplication(
            client_id=deleg_config.client_id,
            authority=AUTHORITY_URL.format(tenant_id=deleg_config.tenant_id),
        )

        flow = app.initiate_device_flow(scopes=deleg_config.scopes)
        if "user_code" not in flow:
            raise AuthenticationError(
                f"Device code flow failed: {flow.get('error_description', 'Unknown')}"
            )

        print(f"\n{'='*60}")
        print(f"  To sign in, open: {flow['verification_uri']}")
        print(f"  Enter code: {flow['user_code']}")
        print(f"{'='*60}\n")

        return _token_or_raise(app.acquire_token_by_device_flow(flow), "Delegated")

    @staticmethod
    def list_required_permissions() -> dict[str, str]:
        """Return the map of required Graph API permissions."""
        return REQUIRED_PERMISSIONS


def _token_or_raise(result: dict, label: str) -> str:
    if "access_token" in result:
        logger.info(f"{label} authentication successful.")
        return result["access_token"]
    error = result.get("error_description", result.get("error", "Unknown"))
    raise AuthenticationError(f"{label} auth failed: {error}")
