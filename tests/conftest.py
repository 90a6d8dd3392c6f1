"""
Shared fixtures: a fixed clock, the bundled risk policy and an in-memory
stand-in for GraphClient. No network calls are made.
"""

import time
from datetime import datetime, timedelta, timezone

import pytest

from shadow_audit.models import ScoredGrant
from shadow_audit.policy import load_policy

NOW = datetime(2026, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
TENANT_ID = "tenant-0001"
MICROSOFT_ORG = "f8cdef31-a31e-4b4a-93e4-5f571e91255a"


def iso(dt: datetime) -> str:
    return dt.isoformat().replace("+00:00", "Z")


def days_ago(days: int) -> str:
    return iso(NOW - timedelta(days=days))


def days_ahead(days: int) -> str:
    return iso(NOW + timedelta(days=days))


def make_sp(sp_id: str, **overrides) -> dict:
    """A verified, internal service principal with healthy credentials."""
    sp = {
        "id": sp_id,
        "appId": f"app-{sp_id}",
        "displayName": f"App {sp_id}",
        "publisherName": "Contoso",
        "verifiedPublisher": {"displayName": "Contoso Ltd"},
        "homepage": "https://contoso.example",
        "replyUrls": ["https://contoso.example/callback"],
        "passwordCredentials": [{"endDateTime": days_ahead(365)}],
        "keyCredentials": [],
        "appOwnerOrganizationId": TENANT_ID,
        "signInAudience": "AzureADMyOrg",
    }
    sp.update(overrides)
    return sp


def make_user(user_id: str, **overrides) -> dict:
    user = {
        "id": user_id,
        "displayName": f"User {user_id}",
        "userPrincipalName": f"{user_id}@contoso.example",
        "jobTitle": "Engineer",
        "department": "IT",
        "signInActivity": {"lastSignInDateTime": days_ago(3)},
        "accountEnabled": True,
        "userType": "Member",
    }
    user.update(overrides)
    return user


def make_grant(grant_id: str, client_id: str, principal_id: str | None, scope: str, **overrides) -> dict:
    grant = {
        "id": grant_id,
        "clientId": client_id,
        "principalId": principal_id,
        "resourceId": "graph-sp",
        "scope": scope,
        "consentType": "Principal" if principal_id else "AllPrincipals",
        "startTime": days_ago(400),
        "expiryTime": None,
    }
    grant.update(overrides)
    return grant


def make_scored(
    *,
    grant_id: str = "g-1",
    grant_type: str = "Delegated",
    app_name: str = "Test App",
    publisher: str = "Contoso",
    publisher_verified: bool = True,
    app_owner_type: str = "Internal",
    credential_health: str = "Healthy",
    risk_score: int = 30,
    risk_level: str = "Low",
    permission_severity: str = "MEDIUM",
    recommendation: str = "Monitor for unusual activity",
    recommendations: list | None = None,
    user: str = "alice@contoso.example",
    days_since_last_sign_in: int = 3,
    consent_type: str = "Principal",
    risky_scopes: list | None = None,
) -> ScoredGrant:
    return ScoredGrant(
        grant_id=grant_id,
        grant_type=grant_type,
        service_principal_id="sp-1",
        app_name=app_name,
        app_id="app-1",
        publisher=publisher,
        publisher_verified=publisher_verified,
        app_owner_type=app_owner_type,
        homepage="https://contoso.example",
        reply_urls="https://contoso.example/callback",
        secret_status="Valid (1)",
        cert_status="None",
        credential_health=credential_health,
        has_wildcard_permissions=True,
        has_offline_access=False,
        risk_score=risk_score,
        risk_level=risk_level,
        permission_severity=permission_severity,
        recommendation=recommendation,
        recommendations=recommendations if recommendations is not None else [],
        user=user,
        user_display_name="Alice",
        user_enabled=True,
        user_type="Member",
        job_title="Engineer",
        department="IT",
        manager="No Manager",
        last_sign_in="2026-05-29T12:00:00Z",
        days_since_last_sign_in=days_since_last_sign_in,
        grant_start="2025-04-27T12:00:00Z",
        grant_expiry="Never",
        consent_type=consent_type,
        scopes="Mail.Read openid",
        risky_scopes=risky_scopes if risky_scopes is not None else ["Mail.Read"],
    )


class FakeGraph:
    """In-memory GraphClient double. Unknown ids raise like a Graph 404."""

    def __init__(self) -> None:
        self.grants: list[dict] = []
        self.sps: dict[str, dict] = {}
        self.users: dict[str, dict] = {}
        self.managers: dict[str, dict] = {}
        self.app_roles: dict[str, list[dict]] = {}
        self.assignments: dict[str, list[dict]] = {}
        self.slow_assignments: dict[str, float] = {}
        self.organization: dict | Exception = {"id": TENANT_ID, "displayName": "Contoso"}
        self.fail_deletes: set[str] = set()
        self.deleted: list[tuple[str, ...]] = []
        self.calls: list[tuple[str, str]] = []

    def _missing(self, kind: str, key: str):
        raise RuntimeError(f"Graph API error 404: {kind} {key} not found")

    def get_organization(self) -> dict:
        self.calls.append(("organization", ""))
        if isinstance(self.organization, Exception):
            raise self.organization
        return self.organization

    def get_oauth2_permission_grants(self):
        self.calls.append(("grants", ""))
        yield from self.grants

    def get_service_principals(self):
        self.calls.append(("service_principals", ""))
        for sp in self.sps.values():
            yield {k: sp.get(k) for k in ("id", "appId", "displayName", "appOwnerOrganizationId")}

    def get_service_principal(self, sp_id: str) -> dict:
        self.calls.append(("service_principal", sp_id))
        if sp_id not in self.sps:
            self._missing("servicePrincipal", sp_id)
        return self.sps[sp_id]

    def get_app_roles(self, sp_id: str) -> list[dict]:
        self.calls.append(("app_roles", sp_id))
        if sp_id not in self.app_roles:
            self._missing("servicePrincipal", sp_id)
        return self.app_roles[sp_id]

    def get_sp_app_role_assignments(self, sp_id: str) -> list[dict]:
        self.calls.append(("assignments", sp_id))
        if sp_id in self.slow_assignments:
            time.sleep(self.slow_assignments[sp_id])
        return self.assignments.get(sp_id, [])

    def get_user(self, user_id: str) -> dict:
        self.calls.append(("user", user_id))
        if user_id not in self.users:
            self._missing("user", user_id)
        return self.users[user_id]

    def get_manager(self, user_id: str) -> dict:
        self.calls.append(("manager", user_id))
        if user_id not in self.managers:
            self._missing("manager", user_id)
        return self.managers[user_id]

    def delete_oauth2_permission_grant(self, grant_id: str) -> None:
        if grant_id in self.fail_deletes:
            raise PermissionError("Graph API access denied (403): Insufficient privileges")
        self.deleted.append(("oauth2PermissionGrant", grant_id))

    def delete_app_role_assignment(self, sp_id: str, assignment_id: str) -> None:
        if assignment_id in self.fail_deletes:
            raise RuntimeError("Graph API error 404: assignment not found")
        self.deleted.append(("appRoleAssignment", sp_id, assignment_id))

    def count(self, kind: str, key: str = "") -> int:
        return sum(1 for c in self.calls if c[0] == kind and (not key or c[1] == key))


class RecordingSink:
    def __init__(self) -> None:
        self.progress_events: list[tuple[str, float | None]] = []
        self.successes: list = []
        self.errors: list[str] = []

    def progress(self, message, percent=None):
        self.progress_events.append((message, percent))

    def success(self, data):
        self.successes.append(data)

    def error(self, message):
        self.errors.append(message)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def policy():
    return load_policy()


@pytest.fixture
def graph():
    return FakeGraph()


@pytest.fixture
def sink():
    return RecordingSink()

