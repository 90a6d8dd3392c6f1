"""
Permission severity and recommendation text for a scored grant.

Severity is independent of the numeric risk score: it only describes the
worst class of permission present. Recommendations are an ordered rule list;
the summary keeps the first two that fire.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from rich.console import Console
from rich.markup import escape

from .credentials import is_expired, is_expiring
from .models import is_tenant_wide
from .policy import RiskPolicy
from .scoring import INACTIVITY_DAYS

console = Console(stderr=True)

CRITICAL = "CRITICAL"
HIGH = "HIGH"
MEDIUM = "MEDIUM"
LOW = "LOW"
MIXED = "MIXED"

DEFAULT_RECOMMENDATION = "Monitor for unusual activity"
DEGRADED_RECOMMENDATION = "Review required"
MAX_RECOMMENDATIONS = 2


@dataclass
class Classification:
    severity: str
    recommendation: str
    recommendations: list[str] = field(default_factory=list)
    degraded: bool = False


def classify_severity(scopes: list[str], policy: RiskPolicy) -> str:
    """MIXED when two or more of the critical/high/medium tiers are present; LOW when none are."""
    present = {policy.tier_of(s) for s in scopes if s} & {"critical", "high", "medium"}
    if len(present) > 1:
        return MIXED
    if "critical" in present:
        return CRITICAL
    if "high" in present:
        return HIGH
    if "medium" in present:
        return MEDIUM
    return LOW


def recommendations(
    *,
    severity: str,
    publisher_verified: bool,
    app_owner_type: str,
    credential_health: str,
    days_since_last_sign_in: int,
    user_enabled: bool,
    consent_type: str,
) -> list[str]:
    """Every recommendation phrase whose rule fires, in priority order."""
    recs: list[str] = []

    if severity == CRITICAL:
        recs.append("IMMEDIATE ACTION: Critical permissions detected")
    elif severity == HIGH:
        recs.append("Review: High-privileged access")

    if not publisher_verified and app_owner_type == "ThirdParty":
        recs.append("Unverified third-party - verify legitimacy")

    if is_expired(credential_health):
        recs.append("Expired credentials - safe to revoke")
    elif is_expiring(credential_health):
        recs.append("Credentials expiring soon")

    if days_since_last_sign_in > INACTIVITY_DAYS:
        recs.append(f"User inactive {days_since_last_sign_in // 30}mo - review need")

    if not user_enabled:
        recs.append("User disabled - revoke immediately")

    if is_tenant_wide(consent_type):
        recs.append("Tenant-wide - high blast radius")

    return recs


def summarize_recommendations(recs: list[str]) -> str:
    if not recs:
        return DEFAULT_RECOMMENDATION
    return "; ".join(recs[:MAX_RECOMMENDATIONS])


def classify_grant(
    risky_scopes: list[str],
    policy: RiskPolicy,
    *,
    app_name: str,
    publisher_verified: bool,
    app_owner_type: str,
    credential_health: str,
    days_since_last_sign_in: int,
    user_enabled: bool,
    consent_type: str,
) -> Classification:
    """
    Severity plus recommendation for one grant.

    Never raises: a failure here only degrades this one record to
    LOW / "Review required" so the scan carries on.
    """
    try:
        severity = classify_severity(risky_scopes, policy)
        recs = recommendations(
            severity=severity,
            publisher_verified=publisher_verified,
            app_owner_type=app_owner_type,
            credential_health=credential_health,
            days_since_last_sign_in=days_since_last_sign_in,
            user_enabled=user_enabled,
            consent_type=consent_type,
        )
    except Exception as exc:
        console.print(f"[yellow]Warning: failed to classify/recommend for {escape(str(app_name))}: {escape(str(exc))}[/yellow]")
        return Classification(severity=LOW, recommendation=DEGRADED_RECOMMENDATION, degraded=True)

    return Classification(
        severity=severity,
        recommendation=summarize_recommendations(recs),
        recommendations=recs,
    )
