"""
Authentication Analyzer
Flags client-secret app authentication among the audited connections.
"""

from __future__ import annotations

from collections import Counter
from typing import Sequence

from ..config import AUTH_TYPE_CERTIFICATE, AUTH_TYPE_CLIENT_SECRET
from ..models import AssignmentRecord, OrganizationMetadata
from ..stats.models import StatisticsSnapshot
from .base import BaseAnalyzer


def effective_auth_types(
    organization: OrganizationMetadata,
    records: Sequence[AssignmentRecord],
) -> dict[str, int]:
    """The supplied distribution, or one derived from the records."""
    if organization.auth_types:
        return dict(organization.auth_types)
    return dict(Counter(r.authentication_type for r in records if r.authentication_type))


class AuthenticationAnalyzer(BaseAnalyzer):
    name = "auth_analyzer"
    category = "Authentication"

    def _analyze(
        self,
        stats: StatisticsSnapshot,
        records: Sequence[AssignmentRecord],
        organization: OrganizationMetadata,
    ):
        auth_types = effective_auth_types(organization, records)
        client_secret = auth_types.get(AUTH_TYPE_CLIENT_SECRET, 0)

        self.add_check("certificateAuthentication", client_secret == 0, client_secret, 0)
        if client_secret == 0:
            return

        self.add_alert(
            "medium",
            f"Client secret authentication used for {client_secret} audited assignments; "
            f"migrate to certificate-based authentication",
        )
        if auth_types.get(AUTH_TYPE_CERTIFICATE, 0) == 0:
            self.recommend("Medium", "Register a certificate for the audit application and retire client secrets")
        else:
            self.recommend("Medium", "Retire remaining client secrets; certificate authentication is already in use")
