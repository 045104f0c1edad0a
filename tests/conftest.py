from __future__ import annotations

from datetime import datetime, timezone

import pytest

from m365_role_audit.auth.authenticator import AuthContext
from m365_role_audit.graph.client import GraphAPIError
from m365_role_audit.models import AssignmentRecord, PrincipalType, Service

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _record(
    upn="alice@contoso.com",
    role="Global Administrator",
    assignment_type="Active",
    service=Service.AZURE_AD.value,
    **kwargs,
) -> AssignmentRecord:
    kwargs.setdefault("display_name", upn.split("@")[0].title() if upn else None)
    kwargs.setdefault("principal_type", PrincipalType.USER.value)
    return AssignmentRecord(
        service=service,
        role_name=role,
        user_principal_name=upn,
        assignment_type=assignment_type,
        **kwargs,
    )


@pytest.fixture
def make_record():
    """Factory for AssignmentRecords with sensible defaults."""
    return _record


@pytest.fixture
def now():
    return FIXED_NOW


class FakeGraph:
    """In-memory stand-in for GraphClient keyed by relative endpoint."""

    def __init__(self, pages=None, objects=None, users=None, failures=None):
        self.pages = pages or {}
        self.objects = objects or {}
        self.users = users or {}
        self.failures = failures or {}
        self.calls: list[str] = []
        self.posts: list[dict] = []

    async def get_all_pages(self, endpoint, params=None, beta=False, top=None, skip_top=False):
        self.calls.append(endpoint)
        if endpoint in self.failures:
            raise GraphAPIError(self.failures[endpoint], "simulated failure", endpoint)
        return list(self.pages.get(endpoint, []))

    async def post_read(self, endpoint, body, beta=False):
        self.posts.append(body)
        return {"value": [self.objects[i] for i in body["ids"] if i in self.objects]}

    async def batch_get(self, endpoints, beta=False):
        bodies = []
        for endpoint in endpoints:
            user_id = endpoint.split("/")[2].split("?")[0]
            bodies.append(self.users.get(user_id, {"_error": True, "status": 404}))
        return bodies


@pytest.fixture
def fake_graph():
    return FakeGraph


@pytest.fixture
def auth_context():
    return AuthContext(
        tenant_id="00000000-0000-0000-0000-000000000001",
        client_id="00000000-0000-0000-0000-000000000002",
        organization_name="Contoso",
        auth_type="Certificate",
        access_token="token",
    )


@pytest.fixture
def tenant_pages():
    """A small tenant: two directory roles, PIM schedules, Exchange and Intune RBAC."""
    return {
        "roleManagement/directory/roleDefinitions": [
            {"id": "role-ga", "displayName": "Global Administrator"},
            {"id": "role-exa", "displayName": "Exchange Administrator"},
            {"id": "role-ia", "displayName": "Intune Administrator"},
        ],
        "roleManagement/directory/roleAssignments": [
            {"principalId": "user-alice", "roleDefinitionId": "role-ga", "directoryScopeId": "/"},
            {"principalId": "user-bob", "roleDefinitionId": "role-exa", "directoryScopeId": "/"},
            {"principalId": "sp-app", "roleDefinitionId": "role-ia", "directoryScopeId": "/"},
        ],
        "roleManagement/directory/roleEligibilityScheduleInstances": [
            {
                "principalId": "group-admins",
                "roleDefinitionId": "role-ga",
                "directoryScopeId": "/",
                "startDateTime": "2026-01-01T00:00:00Z",
                "endDateTime": "2026-03-10T00:00:00Z",
            },
        ],
        "roleManagement/directory/roleAssignmentScheduleInstances": [
            {
                "principalId": "user-bob",
                "roleDefinitionId": "role-exa",
                "directoryScopeId": "/",
                "assignmentType": "Activated",
                "startDateTime": "2026-02-28T08:00:00Z",
                "endDateTime": "2026-02-28T16:00:00Z",
            },
            {
                "principalId": "user-alice",
                "roleDefinitionId": "role-ga",
                "directoryScopeId": "/",
                "assignmentType": "Assigned",
            },
        ],
        "roleManagement/exchange/roleDefinitions": [
            {"id": "ex-om", "displayName": "Organization Management", "description": "Full Exchange control"},
        ],
        "roleManagement/exchange/roleAssignments": [
            {"principalId": "user-carol", "roleDefinitionId": "ex-om", "directoryScopeId": "/"},
        ],
        "deviceManagement/roleAssignments": [
            {
                "displayName": "Helpdesk assignment",
                "members": ["group-helpdesk"],
                "roleDefinition": {"id": "intune-hd", "displayName": "Help Desk Operator", "isBuiltIn": True},
            },
        ],
        "groups/group-helpdesk/members": [{"id": "u1"}, {"id": "u2"}],
    }


@pytest.fixture
def tenant_objects():
    return {
        "user-alice": {
            "@odata.type": "#microsoft.graph.user",
            "id": "user-alice",
            "displayName": "Alice",
            "userPrincipalName": "alice@contoso.com",
        },
        "user-bob": {
            "@odata.type": "#microsoft.graph.user",
            "id": "user-bob",
            "displayName": "Bob",
            "userPrincipalName": "bob@contoso.com",
        },
        "user-carol": {
            "@odata.type": "#microsoft.graph.user",
            "id": "user-carol",
            "displayName": "Carol",
            "userPrincipalName": "carol@contoso.com",
        },
        "group-admins": {
            "@odata.type": "#microsoft.graph.group",
            "id": "group-admins",
            "displayName": "Tier 0 Admins",
            "mail": "tier0@contoso.com",
        },
        "group-helpdesk": {
            "@odata.type": "#microsoft.graph.group",
            "id": "group-helpdesk",
            "displayName": "Helpdesk",
        },
        "sp-app": {
            "@odata.type": "#microsoft.graph.servicePrincipal",
            "id": "sp-app",
            "displayName": "Device Sync",
            "appId": "11111111-2222-3333-4444-555555555555",
        },
    }


@pytest.fixture
def tenant_users():
    return {
        "user-alice": {"id": "user-alice", "accountEnabled": True, "onPremisesSyncEnabled": True,
                       "signInActivity": {"lastSignInDateTime": "2026-02-27T10:00:00Z"}},
        "user-bob": {"id": "user-bob", "accountEnabled": False},
        "user-carol": {"id": "user-carol", "accountEnabled": True},
    }
