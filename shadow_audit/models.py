"""
Data model for the Shadow-IT audit.

Graph objects are converted into frozen dataclasses as soon as they are
fetched; ScoredGrant is the derived, one-per-surviving-grant record that the
reporter and remediation pass consume.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone

DELEGATED = "Delegated"
APPLICATION = "Application"

TENANT_WIDE_CONSENTS = ("AllPrincipals", "Admin")


# ── Helpers ───────────────────────────────────────────────────────────────────


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_dt(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        # Graph returns ISO 8601 with trailing Z or +00:00, sometimes with 7 fractional digits
        text = value.replace("Z", "+00:00")
        if "." in text:
            head, _, tail = text.partition(".")
            digits = re.match(r"\d*", tail).group()
            text = f"{head}.{digits[:6].ljust(6, '0')}{tail[len(digits):]}"
        dt = datetime.fromisoformat(text)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    except (ValueError, TypeError):
        return None


def is_tenant_wide(consent_type: str | None) -> bool:
    return consent_type in TENANT_WIDE_CONSENTS


# ── Graph entities ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class DelegatedGrant:
    id: str
    client_id: str
    principal_id: str | None
    scope: str
    start_time: str | None = None
    expiry_time: str | None = None
    consent_type: str = "Principal"

    @property
    def scopes(self) -> list[str]:
        return [s for s in (self.scope or "").split(" ") if s]

    @classmethod
    def from_graph(cls, item: dict) -> "DelegatedGrant":
        return cls(
            id=item.get("id", ""),
            client_id=item.get("clientId", ""),
            principal_id=item.get("principalId") or None,
            scope=item.get("scope") or "",
            start_time=item.get("startTime"),
            expiry_time=item.get("expiryTime"),
            consent_type=item.get("consentType") or "Principal",
        )


@dataclass(frozen=True)
class AppRoleAssignment:
    id: str
    principal_id: str
    resource_id: str
    app_role_id: str
    created_datetime: str | None = None

    @classmethod
    def from_graph(cls, item: dict) -> "AppRoleAssignment":
        return cls(
            id=item.get("id", ""),
            principal_id=item.get("principalId", ""),
            resource_id=item.get("resourceId", ""),
            app_role_id=item.get("appRoleId", ""),
            created_datetime=item.get("createdDateTime"),
        )


@dataclass(frozen=True)
class Application:
    """A service principal, i.e. the tenant-local identity of an app."""

    id: str
    app_id: str
    display_name: str
    publisher_name: str | None = None
    verified_publisher: bool = False
    homepage: str | None = None
    reply_urls: tuple[str, ...] = ()
    password_credentials: tuple[dict, ...] = ()
    key_credentials: tuple[dict, ...] = ()
    owner_organization_id: str | None = None
    sign_in_audience: str | None = None

    @classmethod
    def from_graph(cls, item: dict) -> "Application":
        verified = item.get("verifiedPublisher") or {}
        return cls(
            id=item.get("id", ""),
            app_id=item.get("appId", ""),
            display_name=item.get("displayName") or "Unknown",
            publisher_name=item.get("publisherName"),
            verified_publisher=bool(verified.get("displayName")),
            homepage=item.get("homepage"),
            reply_urls=tuple(item.get("replyUrls") or ()),
            password_credentials=tuple(item.get("passwordCredentials") or ()),
            key_credentials=tuple(item.get("keyCredentials") or ()),
            owner_organization_id=item.get("appOwnerOrganizationId"),
            sign_in_audience=item.get("signInAudience"),
        )


@dataclass(frozen=True)
class DirectoryUser:
    id: str
    display_name: str
    user_principal_name: str
    job_title: str | None = None
    department: str | None = None
    last_sign_in: str | None = None
    account_enabled: bool = True
    user_type: str = "Member"
    is_placeholder: bool = False

    @property
    def is_guest(self) -> bool:
        return self.user_type == "Guest"

    @classmethod
    def from_graph(cls, item: dict) -> "DirectoryUser":
        sign_in = item.get("signInActivity") or {}
        enabled = item.get("accountEnabled")
        return cls(
            id=item.get("id", ""),
            display_name=item.get("displayName") or "",
            user_principal_name=item.get("userPrincipalName") or "",
            job_title=item.get("jobTitle"),
            department=item.get("department"),
            last_sign_in=sign_in.get("lastSignInDateTime"),
            account_enabled=True if enabled is None else bool(enabled),
            user_type=item.get("userType") or "Member",
        )


# Admin consent has no individual principal; this stands in for "everyone".
TENANT_WIDE_USER = DirectoryUser(
    id="admin",
    display_name="Organization Wide",
    user_principal_name="All Users (Tenant-Wide)",
    job_title="N/A",
    department="N/A",
    last_sign_in=None,
    account_enabled=True,
    user_type="N/A",
    is_placeholder=True,
)


# Application permissions are held by the app itself, never on behalf of a user.
APP_ONLY_USER = DirectoryUser(
    id="app-only",
    display_name="Admin Consent",
    user_principal_name="Tenant-Wide (App-Only)",
    job_title="N/A",
    department="N/A",
    last_sign_in=None,
    account_enabled=True,
    user_type="N/A",
    is_placeholder=True,
)


def unknown_user(user_id: str) -> DirectoryUser:
    """Placeholder for a principal that could not be resolved (usually deleted)."""
    return DirectoryUser(
        id=user_id,
        display_name="Unknown/Deleted",
        user_principal_name="N/A",
        job_title="N/A",
        department="N/A",
        last_sign_in=None,
        account_enabled=False,
        user_type="Unknown",
        is_placeholder=True,
    )


# ── Derived result ────────────────────────────────────────────────────────────


@dataclass
class ScoredGrant:
    grant_id: str
    grant_type: str               # "Delegated" | "Application"
    service_principal_id: str
    app_name: str
    app_id: str
    publisher: str
    publisher_verified: bool
    app_owner_type: str           # "Microsoft" | "Internal" | "ThirdParty"
    homepage: str
    reply_urls: str
    secret_status: str
    cert_status: str
    credential_health: str
    has_wildcard_permissions: bool
    has_offline_access: bool
    risk_score: int
    risk_level: str               # "Critical" | "High" | "Medium" | "Low"
    permission_severity: str      # "CRITICAL" | "HIGH" | "MEDIUM" | "LOW" | "MIXED"
    recommendation: str
    user: str
    user_display_name: str
    user_enabled: bool
    user_type: str
    job_title: str
    department: str
    manager: str
    last_sign_in: str
    days_since_last_sign_in: int
    grant_start: str
    grant_expiry: str
    consent_type: str
    scopes: str
    risky_scopes: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    @property
    def is_tenant_wide(self) -> bool:
        return is_tenant_wide(self.consent_type)
