"""
Report generation for the Shadow-IT audit.

Produces:
  - a display table of the top 50 grants with fixed-width, truncated cells
  - a plain-text summary of the full result set
  - a CSV export (one row per grant, untruncated)
"""

from __future__ import annotations

import csv
import re
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path

from .models import APPLICATION, DELEGATED, ScoredGrant
from .scoring import INACTIVITY_DAYS

TABLE_LIMIT = 50

PUBLISHER_WIDTH = 20
USER_WIDTH = 25
SCOPES_WIDTH = 40
RECOMMENDATION_WIDTH = 50

TABLE_HEADERS = [
    "Risk",
    "App Name",
    "Publisher",
    "Permission Severity",
    "Type",
    "User/Scope",
    "Last Active",
    "Consent",
    "Risky Permissions",
    "Recommendation",
]

EXPORT_VERSION = "1"

EXPORT_COLUMNS = [
    "export_version",
    "grant_id",
    "grant_type",
    "risk_score",
    "risk_level",
    "permission_severity",
    "app_name",
    "app_id",
    "service_principal_id",
    "publisher",
    "publisher_verified",
    "app_owner_type",
    "homepage",
    "reply_urls",
    "secret_status",
    "cert_status",
    "credential_health",
    "has_wildcard_permissions",
    "has_offline_access",
    "user",
    "user_display_name",
    "user_enabled",
    "user_type",
    "job_title",
    "department",
    "manager",
    "last_sign_in",
    "days_since_last_sign_in",
    "grant_start",
    "grant_expiry",
    "consent_type",
    "scopes",
    "risky_scopes",
    "recommendation",
    "all_recommendations",
]


# ── Aggregation ───────────────────────────────────────────────────────────────


@dataclass
class ScanStats:
    total: int = 0
    delegated: int = 0
    application: int = 0
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    unverified: int = 0
    third_party: int = 0
    expired: int = 0
    zombies: int = 0


def sort_grants(grants: list[ScoredGrant]) -> list[ScoredGrant]:
    """Highest risk first. sorted() is stable, so ties keep discovery order."""
    return sorted(grants, key=lambda g: -g.risk_score)


def compute_stats(grants: list[ScoredGrant]) -> ScanStats:
    return ScanStats(
        total=len(grants),
        delegated=sum(1 for g in grants if g.grant_type == DELEGATED),
        application=sum(1 for g in grants if g.grant_type == APPLICATION),
        critical=sum(1 for g in grants if g.risk_level == "Critical"),
        high=sum(1 for g in grants if g.risk_level == "High"),
        medium=sum(1 for g in grants if g.risk_level == "Medium"),
        low=sum(1 for g in grants if g.risk_level == "Low"),
        unverified=sum(1 for g in grants if not g.publisher_verified),
        third_party=sum(1 for g in grants if g.app_owner_type == "ThirdParty"),
        expired=sum(1 for g in grants if g.credential_health == "ALL EXPIRED"),
        zombies=sum(1 for g in grants if g.days_since_last_sign_in > INACTIVITY_DAYS),
    )


# ── Display table ─────────────────────────────────────────────────────────────


def truncate(value: str | None, width: int) -> str:
    """Cut a value to `width` characters, ending in "..." when shortened."""
    value = value or ""
    if len(value) <= width:
        return value
    return value[: width - 3] + "..."


def _last_active(g: ScoredGrant) -> str:
    if g.grant_type == DELEGATED and g.days_since_last_sign_in:
        days = g.days_since_last_sign_in
        if days > 365:
            return f"{days // 365}y ago"
        if days > 30:
            return f"{days // 30}mo ago"
        return f"{days}d ago"
    return "N/A"


def _publisher(g: ScoredGrant) -> str:
    name = g.publisher or "Unknown"
    return name if g.publisher_verified else f"! {name}"


def table_row(g: ScoredGrant) -> list[str]:
    return [
        f"{g.risk_score} {g.risk_level}",
        g.app_name or "Unknown",
        truncate(_publisher(g), PUBLISHER_WIDTH),
        g.permission_severity or "LOW",
        g.grant_type,
        truncate(g.user or "N/A", USER_WIDTH),
        _last_active(g),
        "Tenant" if g.is_tenant_wide else "User",
        truncate(" ".join(g.risky_scopes), SCOPES_WIDTH),
        truncate(g.recommendation or "Review required", RECOMMENDATION_WIDTH),
    ]


def build_table(grants: list[ScoredGrant], limit: int = TABLE_LIMIT) -> dict:
    """The {headers, rows} payload for the first `limit` grants (pass them pre-sorted)."""
    return {"headers": list(TABLE_HEADERS), "rows": [table_row(g) for g in grants[:limit]]}


def summary_message(stats: ScanStats, limit: int = TABLE_LIMIT) -> str:
    lines = [
        "=== Shadow IT Audit Summary ===",
        f"Scanned: {stats.total} risky grants ({stats.delegated} Delegated, {stats.application} Application)",
        "",
        "Risk Distribution:",
        f"  Critical: {stats.critical}   (Score 80-100)",
        f"  High:     {stats.high}   (Score 60-79)",
        f"  Medium:   {stats.medium}   (Score 40-59)",
        f"  Low:      {stats.low}   (Score 0-39)",
        "",
        "Top Concerns:",
        f"  - {stats.unverified} grants to apps from unverified publishers",
        f"  - {stats.third_party} grants to third-party apps",
        f"  - {stats.expired} grants to apps with expired credentials",
        f"  - {stats.zombies} grants on users inactive >6 months",
    ]
    if stats.total > limit:
        lines += ["", f"Showing top {limit} of {stats.total} risky grants"]
    return "\n".join(lines)


# ── CSV export ────────────────────────────────────────────────────────────────


def _csv_safe(value: str) -> str:
    """Prefix formula-triggering characters so spreadsheets treat them as literals."""
    if value and value[0] in ("=", "+", "-", "@", "\t", "\r"):
        return "'" + value
    return value


def _export_row(g: ScoredGrant) -> dict:
    row = asdict(g)
    row["risky_scopes"] = " ".join(g.risky_scopes)
    row["all_recommendations"] = "; ".join(row.pop("recommendations"))
    row["export_version"] = EXPORT_VERSION
    out = {}
    for col in EXPORT_COLUMNS:
        value = row.get(col, "")
        if isinstance(value, bool):
            value = "yes" if value else "no"
        out[col] = _csv_safe(value) if isinstance(value, str) else value
    return out


def generate_csv(grants: list[ScoredGrant], output_path: Path) -> Path:
    """Write every grant, untruncated, with all fields quoted."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=EXPORT_COLUMNS, quoting=csv.QUOTE_ALL)
        writer.writeheader()
        for g in grants:
            writer.writerow(_export_row(g))
    return output_path


def _tenant_slug(display_name: str) -> str:
    """Sanitize a tenant display name for use in file paths."""
    return re.sub(r"[^\w\-]", "_", display_name).lower()


def export_path_for(output_dir: Path, tenant_name: str) -> Path:
    date_slug = datetime.now().strftime("%Y-%m-%d")  # local date for filename
    return output_dir / f"shadow_it_{_tenant_slug(tenant_name or 'tenant')}_{date_slug}.csv"
