"""
Scan orchestration for the Shadow-IT audit.

A ShadowItScanner is built fresh for every invocation and owns all of the
run's state: the entity cache, the collector and the accumulating results.
Each grant moves through

    fetched -> filtered -> enriched -> scored -> classified -> recorded

and leaves early if it carries no risky scope, belongs to a first-party or
allow-listed app, or its app can no longer be resolved. Any other failure
scoped to one grant is logged and costs only that grant; only the initial
collection calls can abort the run.
"""

from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markup import escape

from .cache import EntityCache
from .classifier import classify_grant
from .collector import ROLE_ASSIGNMENT_TIMEOUT, ApplicationGrant, GrantCollector
from .credentials import credential_health, credential_status
from .graph import GraphClient
from .models import (
    APP_ONLY_USER,
    APPLICATION,
    DELEGATED,
    Application,
    DelegatedGrant,
    DirectoryUser,
    ScoredGrant,
    is_tenant_wide,
    parse_dt,
    utcnow,
)
from .policy import RiskPolicy
from .remediation import RemediationExecutor
from .reporter import build_table, compute_stats, generate_csv, sort_grants, summary_message
from .scoring import factors_for, risk_level, score_risk

console = Console(stderr=True)

CLEAN_MESSAGE = "No risky Shadow IT detected. Tenant is clean!"


class ShadowItScanner:
    def __init__(
        self,
        client: GraphClient,
        policy: RiskPolicy,
        events,
        now: datetime | None = None,
        role_timeout: float = ROLE_ASSIGNMENT_TIMEOUT,
    ) -> None:
        self.client = client
        self.policy = policy
        self.events = events
        self.now = now or utcnow()
        self.cache = EntityCache(client)
        self.collector = GrantCollector(client, self.cache, policy, role_timeout=role_timeout)
        self.failed_items = 0

    # ── Enrichment helpers ─────────────────────────────────────────────────

    def app_owner_type(self, app: Application) -> str:
        owner = app.owner_organization_id
        if self.policy.is_first_party(owner):
            return "Microsoft"
        if owner and owner == self.cache.tenant_id():
            return "Internal"
        return "ThirdParty"

    def days_since_sign_in(self, user: DirectoryUser) -> int:
        last = parse_dt(user.last_sign_in)
        if last is None:
            return 0
        return max((self.now - last).days, 0)

    def _assess(
        self,
        *,
        app: Application,
        grant_id: str,
        grant_type: str,
        risky: list[str],
        scopes: str,
        user: DirectoryUser,
        manager: str,
        consent_type: str,
        grant_start: str,
        grant_expiry: str,
    ) -> ScoredGrant:
        health = credential_health(app.password_credentials, app.key_credentials, self.now)
        owner_type = self.app_owner_type(app)
        days_inactive = self.days_since_sign_in(user)

        score = score_risk(
            factors_for(
                self.policy,
                risky,
                publisher_verified=app.verified_publisher,
                app_owner_type=owner_type,
                credential_health=health,
                days_since_last_sign_in=days_inactive,
                user_enabled=user.account_enabled,
                user_type=user.user_type,
                tenant_wide=is_tenant_wide(consent_type),
            )
        )
        classification = classify_grant(
            risky,
            self.policy,
            app_name=app.display_name,
            publisher_verified=app.verified_publisher,
            app_owner_type=owner_type,
            credential_health=health,
            days_since_last_sign_in=days_inactive,
            user_enabled=user.account_enabled,
            consent_type=consent_type,
        )

        return ScoredGrant(
            grant_id=grant_id,
            grant_type=grant_type,
            service_principal_id=app.id,
            app_name=app.display_name,
            app_id=app.app_id,
            publisher=app.publisher_name or "Unverified",
            publisher_verified=app.verified_publisher,
            app_owner_type=owner_type,
            homepage=app.homepage or "N/A",
            reply_urls="; ".join(app.reply_urls) if app.reply_urls else "N/A",
            secret_status=credential_status(app.password_credentials),
            cert_status=credential_status(app.key_credentials),
            credential_health=health,
            has_wildcard_permissions=any(self.policy.is_wildcard(s) for s in risky),
            has_offline_access=self.policy.offline_access_scope in risky,
            risk_score=score,
            risk_level=risk_level(score),
            permission_severity=classification.severity,
            recommendation=classification.recommendation,
            recommendations=classification.recommendations,
            user=user.user_principal_name,
            user_display_name=user.display_name,
            user_enabled=user.account_enabled,
            user_type=user.user_type,
            job_title=user.job_title or "N/A",
            department=user.department or "N/A",
            manager=manager,
            last_sign_in=user.last_sign_in or "N/A",
            days_since_last_sign_in=days_inactive,
            grant_start=grant_start,
            grant_expiry=grant_expiry,
            consent_type=consent_type,
            scopes=scopes,
            risky_scopes=risky,
        )

    # ── Per-grant pipelines ────────────────────────────────────────────────

    def assess_delegated(self, grant: DelegatedGrant) -> ScoredGrant | None:
        """Score one delegated grant, or None if it is filtered out or its app is gone."""
        risky = self.policy.risky_scopes(grant.scopes)
        if not risky:
            return None

        app = self.cache.resolve_application(grant.client_id)
        if app is None:
            return None
        if self.policy.is_excluded(app.app_id, app.owner_organization_id):
            return None

        user = self.cache.resolve_user(grant.principal_id)
        manager = self.cache.resolve_manager(user)

        return self._assess(
            app=app,
            grant_id=grant.id,
            grant_type=DELEGATED,
            risky=risky,
            scopes=grant.scope,
            user=user,
            manager=manager,
            consent_type=grant.consent_type,
            grant_start=grant.start_time or "Unknown",
            grant_expiry=grant.expiry_time or "Never",
        )

    def assess_application(self, app_grant: ApplicationGrant) -> ScoredGrant | None:
        """Score one risky application-role assignment, or None if its app is excluded or gone."""
        app = self.cache.resolve_application(app_grant.principal.id)
        if app is None:
            return None
        if self.policy.is_excluded(app.app_id, app.owner_organization_id):
            return None

        return self._assess(
            app=app,
            grant_id=app_grant.assignment.id,
            grant_type=APPLICATION,
            risky=[app_grant.permission],
            scopes=app_grant.permission,
            user=APP_ONLY_USER,
            manager="N/A",
            consent_type="Admin",
            grant_start=app_grant.assignment.created_datetime or "Unknown",
            grant_expiry="Never",
        )

    # ── Scan ───────────────────────────────────────────────────────────────

    def scan(self) -> list[ScoredGrant]:
        """Collect and score every grant. Results are in discovery order."""
        self.events.progress("Starting Shadow IT audit...", 0)

        self.events.progress("Fetching OAuth2 permission grants (delegated)...", 5)
        grants = self.collector.delegated_grants()

        self.events.progress("Fetching service principals (application permissions)...", 10)
        principals = self.collector.candidate_service_principals()

        # Warm the tenant id once; owner-type checks retry it lazily if this fails.
        self.cache.tenant_id()

        total = len(grants) + len(principals)
        self.events.progress(
            f"Analyzing {len(grants)} delegated grants and {len(principals)} service principals...", 15
        )

        results: list[ScoredGrant] = []

        for n, grant in enumerate(grants, 1):
            if n % 10 == 0:
                self.events.progress(f"Processing delegated grants: {n}/{len(grants)}", 20 + (n / total) * 60)
            try:
                scored = self.assess_delegated(grant)
            except Exception as exc:
                console.print(f"[yellow]Warning: skipped delegated grant {escape(grant.id)} ({escape(str(exc))})[/yellow]")
                self.failed_items += 1
                continue
            if scored is not None:
                results.append(scored)

        self.events.progress(f"Checking {len(principals)} service principals for risky app permissions...", 80)

        for n, sp in enumerate(principals, 1):
            if n % 5 == 0:
                self.events.progress(f"Processing app roles: {n}/{len(principals)}", 80 + (n / len(principals)) * 10)
            try:
                app_grants = self.collector.risky_assignments(sp)
                for app_grant in app_grants:
                    scored = self.assess_application(app_grant)
                    if scored is not None:
                        results.append(scored)
            except Exception as exc:
                console.print(f"[yellow]Warning: skipped service principal {escape(sp.display_name)} ({escape(str(exc))})[/yellow]")
                self.failed_items += 1

        return results

    def run(self, dry_run: bool = True, export_path: Path | None = None) -> dict:
        """
        Scan, summarize and deliver the result as one success event.

        With dry_run=False every recorded grant is revoked before the result
        is sent. Returns the payload that was emitted.
        """
        grants = self.scan()

        if not grants:
            payload: dict = {"message": CLEAN_MESSAGE}
            self.events.success(payload)
            return payload

        ranked = sort_grants(grants)
        self.events.progress(f"Found {len(ranked)} risky grants. Calculating statistics...", 90)
        stats = compute_stats(ranked)

        self.events.progress("Stats calculated, preparing table...", 92)
        table = build_table(ranked)
        self.events.progress(f"Table rows prepared ({len(table['rows'])} rows)", 94)

        self.events.progress("Building summary...", 95)
        message = summary_message(stats)
        payload = {"message": message, "table": table, "stats": asdict(stats)}

        if export_path is not None:
            # Export failure is non-fatal.
            try:
                generate_csv(ranked, export_path)
            except OSError as exc:
                console.print(f"[yellow]Warning: could not write CSV export {escape(str(export_path))} ({escape(str(exc))})[/yellow]")
                payload["export_error"] = str(exc)
                self.events.progress(f"CSV export failed: {exc}", 96)
            else:
                payload["export"] = str(export_path)
                self.events.progress(f"Exported {len(ranked)} grants to {export_path}", 96)

        if dry_run:
            self.events.progress("Preparing final payload...", 98)
            self.events.progress("Sending results...", 99)
            self.events.success(payload)
            self.events.progress("Report sent successfully", 100)
            return payload

        self.events.progress("Remediating (revoking grants)...", 97)
        report = RemediationExecutor(self.client, self.events).revoke_all(ranked)
        payload["message"] = f"{report.message}\n\n{message}"
        payload["remediation"] = {
            "revoked": report.revoked,
            "total": report.total,
            "failed": [
                {"grant_id": g.grant_id, "app_name": g.app_name, "error": err}
                for g, err in report.failures
            ],
        }
        self.events.success(payload)
        return payload
