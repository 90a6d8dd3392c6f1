"""
Risk scoring for a single grant.

Pure functions with no I/O. The score is a weighted sum over five
independently capped factor groups, clamped to 0-100; every factor only ever
adds points, so adding a risk factor can never lower the score.
"""

from __future__ import annotations

from dataclasses import dataclass

from .credentials import is_expired, is_expiring
from .policy import RiskPolicy

INACTIVITY_DAYS = 180

# ── Weights ───────────────────────────────────────────────────────────────────

PERMISSION_CAP = 40
WILDCARD_POINTS = 20
DIRECTORY_WRITE_POINTS = 15
BROAD_READ_POINTS = 10
OFFLINE_ACCESS_POINTS = 5

TRUST_CAP = 25
UNVERIFIED_PUBLISHER_POINTS = 15
THIRD_PARTY_POINTS = 10

CREDENTIAL_CAP = 15
EXPIRED_CREDENTIAL_POINTS = 10
EXPIRING_CREDENTIAL_POINTS = 5

USER_CAP = 20
INACTIVE_USER_POINTS = 10
DISABLED_USER_POINTS = 5
GUEST_USER_POINTS = 5

CONSENT_CAP = 10
TENANT_WIDE_POINTS = 10


@dataclass(frozen=True)
class RiskFactors:
    wildcard: bool = False
    directory_write: bool = False
    broad_read: bool = False
    offline_access: bool = False
    unverified_publisher: bool = False
    third_party: bool = False
    expired_credentials: bool = False
    expiring_credentials: bool = False
    inactive_user: bool = False
    disabled_user: bool = False
    guest_user: bool = False
    tenant_wide: bool = False


def _group(cap: int, *parts: tuple[bool, int]) -> int:
    return min(sum(points for hit, points in parts if hit), cap)


def score_risk(f: RiskFactors) -> int:
    score = (
        _group(
            PERMISSION_CAP,
            (f.wildcard, WILDCARD_POINTS),
            (f.directory_write, DIRECTORY_WRITE_POINTS),
            (f.broad_read, BROAD_READ_POINTS),
            (f.offline_access, OFFLINE_ACCESS_POINTS),
        )
        + _group(
            TRUST_CAP,
            (f.unverified_publisher, UNVERIFIED_PUBLISHER_POINTS),
            (f.third_party, THIRD_PARTY_POINTS),
        )
        + _group(
            CREDENTIAL_CAP,
            (f.expired_credentials, EXPIRED_CREDENTIAL_POINTS),
            (f.expiring_credentials, EXPIRING_CREDENTIAL_POINTS),
        )
        + _group(
            USER_CAP,
            (f.inactive_user, INACTIVE_USER_POINTS),
            (f.disabled_user, DISABLED_USER_POINTS),
            (f.guest_user, GUEST_USER_POINTS),
        )
        + _group(CONSENT_CAP, (f.tenant_wide, TENANT_WIDE_POINTS))
    )
    return max(0, min(score, 100))


def risk_level(score: int) -> str:
    if score >= 80:
        return "Critical"
    if score >= 60:
        return "High"
    if score >= 40:
        return "Medium"
    return "Low"


def factors_for(
    policy: RiskPolicy,
    risky_scopes: list[str],
    *,
    publisher_verified: bool,
    app_owner_type: str,
    credential_health: str,
    days_since_last_sign_in: int = 0,
    user_enabled: bool = True,
    user_type: str = "N/A",
    tenant_wide: bool = False,
) -> RiskFactors:
    """
    Derive scoring factors from a grant's facts.

    Application-only grants have no user, so the defaults describe an
    enabled, non-guest principal with no inactivity.
    """
    return RiskFactors(
        wildcard=any(policy.is_wildcard(s) for s in risky_scopes),
        directory_write=any(m in s for s in risky_scopes for m in policy.directory_write_markers),
        broad_read=any(m in s for s in risky_scopes for m in policy.broad_read_markers),
        offline_access=policy.offline_access_scope in risky_scopes,
        unverified_publisher=not publisher_verified,
        third_party=app_owner_type == "ThirdParty",
        expired_credentials=is_expired(credential_health),
        expiring_credentials=is_expiring(credential_health),
        inactive_user=days_since_last_sign_in > INACTIVITY_DAYS,
        disabled_user=not user_enabled,
        guest_user=user_type == "Guest",
        tenant_wide=tenant_wide,
    )
