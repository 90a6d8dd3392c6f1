"""
Risk policy for the Shadow-IT audit.

Scope lists, wildcard patterns, severity tiers and the app allow-list are
versioned configuration data (data/risk_policy.json), not code. Operators can
point --policy at a copy tuned for their tenant.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

DEFAULT_POLICY_FILE = Path(__file__).parent / "data" / "risk_policy.json"

SEVERITY_TIERS = ("critical", "high", "medium", "low")


@dataclass
class RiskPolicy:
    version: str
    first_party_org_id: str
    resource_app_id_prefix: str
    allowed_app_ids: set[str]
    high_risk_scopes: set[str]
    wildcard_patterns: list[re.Pattern]
    severity: dict[str, set[str]]
    directory_write_markers: list[str] = field(default_factory=list)
    broad_read_markers: list[str] = field(default_factory=list)
    offline_access_scope: str = "offline_access"

    # ── Scope predicates ────────────────────────────────────────────────────

    def is_wildcard(self, scope: str) -> bool:
        return any(p.search(scope) for p in self.wildcard_patterns)

    def is_risky(self, scope: str) -> bool:
        """
        A scope is risky if it is on the high-risk list, or if it matches a
        wildcard pattern and is not one of the baseline low-tier scopes
        (User.Read and friends match ^User\\. but are requested by almost
        every app).
        """
        if not scope:
            return False
        if scope in self.high_risk_scopes:
            return True
        if scope in self.severity.get("low", set()):
            return False
        return self.is_wildcard(scope)

    def risky_scopes(self, scopes: Iterable[str]) -> list[str]:
        """Filter scopes down to the risky ones, preserving order."""
        return [s for s in scopes if self.is_risky(s)]

    def tier_of(self, scope: str) -> str | None:
        for tier in SEVERITY_TIERS:
            if scope in self.severity.get(tier, set()):
                return tier
        return None

    # ── App exclusion ───────────────────────────────────────────────────────

    def is_first_party(self, owner_org_id: str | None) -> bool:
        return bool(owner_org_id) and owner_org_id == self.first_party_org_id

    def is_allowed(self, app_id: str | None) -> bool:
        return bool(app_id) and app_id.lower() in self.allowed_app_ids

    def is_excluded(self, app_id: str | None, owner_org_id: str | None) -> bool:
        """First-party and allow-listed apps are never reported, whatever their score."""
        return self.is_first_party(owner_org_id) or self.is_allowed(app_id)

    def is_resource_app(self, app_id: str | None) -> bool:
        """Microsoft resource principals (Graph, Exchange, ...) share a well-known appId prefix."""
        return bool(app_id) and app_id.startswith(self.resource_app_id_prefix)


def _from_dict(data: dict, source: Path) -> RiskPolicy:
    try:
        severity = {tier: set(data.get("severity", {}).get(tier, [])) for tier in SEVERITY_TIERS}
        return RiskPolicy(
            version=str(data["version"]),
            first_party_org_id=data["first_party_org_id"],
            resource_app_id_prefix=data.get("resource_app_id_prefix", "00000"),
            allowed_app_ids={a.lower() for a in data.get("allowed_app_ids", [])},
            high_risk_scopes=set(data["high_risk_scopes"]),
            wildcard_patterns=[re.compile(p) for p in data.get("wildcard_patterns", [])],
            severity=severity,
            directory_write_markers=list(data.get("directory_write_markers", [])),
            broad_read_markers=list(data.get("broad_read_markers", [])),
            offline_access_scope=data.get("offline_access_scope", "offline_access"),
        )
    except KeyError as exc:
        raise ValueError(f"Risk policy {source} is missing required key {exc}") from exc
    except re.error as exc:
        raise ValueError(f"Risk policy {source} has an invalid wildcard pattern: {exc}") from exc


def load_policy(path: Path | None = None, extra_allowed: Iterable[str] = ()) -> RiskPolicy:
    """
    Load the risk policy.

    `path` replaces the bundled policy entirely; `extra_allowed` adds app IDs
    to whichever allow-list was loaded (from --allow-app or the config file).
    """
    source = path or DEFAULT_POLICY_FILE
    try:
        data = json.loads(source.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ValueError(f"Could not read risk policy {source}: {exc}") from exc

    policy = _from_dict(data, source)
    policy.allowed_app_ids.update(a.lower() for a in extra_allowed if a)
    return policy
