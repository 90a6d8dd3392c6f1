"""
Grant collection for the Shadow-IT audit.

Fetches delegated permission grants and, separately, the application-role
assignments held by every non-Microsoft service principal. Microsoft resource
principals, first-party and allow-listed apps are dropped before any
per-principal call is made.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generator, Iterable

from rich.console import Console
from rich.markup import escape

from .cache import EntityCache
from .deadline import call_with_deadline
from .graph import GRAPH_ERRORS, GraphClient
from .models import AppRoleAssignment, DelegatedGrant
from .policy import RiskPolicy

console = Console(stderr=True)

ROLE_ASSIGNMENT_TIMEOUT = 10  # seconds, per service principal
UNKNOWN_PERMISSION = "Unknown"


@dataclass(frozen=True)
class CandidatePrincipal:
    """A service principal that survived the up-front first-party filter."""

    id: str
    app_id: str
    display_name: str
    owner_organization_id: str | None = None


@dataclass(frozen=True)
class ApplicationGrant:
    principal: CandidatePrincipal
    assignment: AppRoleAssignment
    permission: str


class GrantCollector:
    def __init__(
        self,
        client: GraphClient,
        cache: EntityCache,
        policy: RiskPolicy,
        role_timeout: float = ROLE_ASSIGNMENT_TIMEOUT,
    ) -> None:
        self.client = client
        self.cache = cache
        self.policy = policy
        self.role_timeout = role_timeout
        self.timed_out: list[str] = []

    def delegated_grants(self) -> list[DelegatedGrant]:
        """All delegated (user or admin) consents. Errors propagate: without them there is no scan."""
        return [DelegatedGrant.from_graph(g) for g in self.client.get_oauth2_permission_grants()]

    def candidate_service_principals(self) -> list[CandidatePrincipal]:
        """Service principals worth checking for application permissions."""
        candidates = []
        for sp in self.client.get_service_principals():
            app_id = sp.get("appId")
            owner = sp.get("appOwnerOrganizationId")
            if not sp.get("id") or not app_id:
                continue
            if self.policy.is_resource_app(app_id):
                continue
            if self.policy.is_excluded(app_id, owner):
                continue
            candidates.append(
                CandidatePrincipal(
                    id=sp["id"],
                    app_id=app_id,
                    display_name=sp.get("displayName") or "Unknown",
                    owner_organization_id=owner,
                )
            )
        return candidates

    def role_assignments(self, sp: CandidatePrincipal) -> list[AppRoleAssignment]:
        """
        Role assignments held by one principal, bounded by role_timeout.

        A slow or failing principal is skipped rather than stalling the run.
        """
        try:
            raw = call_with_deadline(
                self.client.get_sp_app_role_assignments, sp.id, timeout=self.role_timeout
            )
        except TimeoutError:
            console.print(f"[yellow]Warning: timed out reading app roles of {escape(sp.display_name)} ({escape(sp.id)}). Skipping.[/yellow]")
            self.timed_out.append(sp.id)
            return []
        except GRAPH_ERRORS as exc:
            console.print(f"[yellow]Warning: could not read app roles of {escape(sp.display_name)} ({escape(str(exc))}). Skipping.[/yellow]")
            return []
        return [AppRoleAssignment.from_graph(a) for a in raw]

    def permission_value(self, assignment: AppRoleAssignment) -> str:
        """Human-readable permission name, looked up on the resource principal's declared roles."""
        roles = self.cache.resolve_app_roles(assignment.resource_id)
        return roles.get(assignment.app_role_id) or UNKNOWN_PERMISSION

    def risky_assignments(self, sp: CandidatePrincipal) -> list[ApplicationGrant]:
        """Role assignments of one principal whose permission is high-risk or wildcard-matched."""
        grants = []
        for assignment in self.role_assignments(sp):
            permission = self.permission_value(assignment)
            if not self.policy.is_risky(permission):
                continue
            grants.append(ApplicationGrant(principal=sp, assignment=assignment, permission=permission))
        return grants

    def application_grants(
        self, principals: Iterable[CandidatePrincipal]
    ) -> Generator[ApplicationGrant, None, None]:
        for sp in principals:
            yield from self.risky_assignments(sp)
