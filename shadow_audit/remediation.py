"""
Best-effort revocation of flagged grants.

Every grant gets its own delete call; a failure is recorded and reported but
never stops the remaining deletions.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from rich.console import Console
from rich.markup import escape

from .graph import GRAPH_ERRORS, GraphClient
from .models import DELEGATED, ScoredGrant

console = Console(stderr=True)


@dataclass
class RemediationReport:
    revoked: int = 0
    total: int = 0
    failures: list[tuple[ScoredGrant, str]] = field(default_factory=list)

    @property
    def message(self) -> str:
        return f"Revoked {self.revoked}/{self.total} risky grants"


class RemediationExecutor:
    def __init__(self, client: GraphClient, events) -> None:
        self.client = client
        self.events = events

    def revoke(self, grant: ScoredGrant) -> None:
        if grant.grant_type == DELEGATED:
            self.client.delete_oauth2_permission_grant(grant.grant_id)
        else:
            # App role assignments live under the client principal that holds them.
            self.client.delete_app_role_assignment(grant.service_principal_id, grant.grant_id)

    def revoke_all(self, grants: list[ScoredGrant]) -> RemediationReport:
        """Revoke every grant in `grants` (the full result set, not the display slice)."""
        report = RemediationReport(total=len(grants))
        for grant in grants:
            try:
                self.revoke(grant)
            except GRAPH_ERRORS as exc:
                console.print(f"[yellow]Warning: failed to revoke {escape(grant.app_name)} ({escape(grant.grant_id)}): {escape(str(exc))}[/yellow]")
                report.failures.append((grant, str(exc)))
                self.events.progress(f"Failed to revoke {grant.app_name}: {exc}")
                continue
            report.revoked += 1
            self.events.progress(f"Revoked {grant.app_name} ({grant.grant_type})")
        return report
