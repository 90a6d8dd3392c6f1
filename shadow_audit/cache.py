"""
Per-scan entity cache.

One EntityCache is built for every scan and thrown away afterwards. Each
lookup kind keeps a dict of id -> resolved value; a failed lookup stores a
failure marker or placeholder in the same slot so it is never retried within
the run. The only exception is the tenant id, which is cached on success only.
"""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape

from .graph import GRAPH_ERRORS, GraphClient
from .models import TENANT_WIDE_USER, Application, DirectoryUser, unknown_user

console = Console(stderr=True)

NO_MANAGER = "No Manager"
UNKNOWN_TENANT = "unknown"

# Marks an application id whose lookup failed.
_FAILED = object()


class EntityCache:
    def __init__(self, client: GraphClient) -> None:
        self.client = client
        self._apps: dict[str, object] = {}
        self._users: dict[str, DirectoryUser] = {}
        self._managers: dict[str, str] = {}
        self._app_roles: dict[str, dict[str, str]] = {}
        self._tenant_id: str | None = None
        self.lookups = 0

    def resolve_application(self, sp_id: str) -> Application | None:
        """
        Resolve a service principal by object id.

        Returns None if it cannot be fetched (usually deleted mid-scan); the
        caller must skip the grant, since an unresolvable app cannot be assessed.
        """
        if sp_id in self._apps:
            cached = self._apps[sp_id]
            return None if cached is _FAILED else cached

        self.lookups += 1
        try:
            app = Application.from_graph(self.client.get_service_principal(sp_id))
        except GRAPH_ERRORS as exc:
            console.print(f"[yellow]Warning: could not resolve app {escape(sp_id)} ({escape(str(exc))}). Skipping its grants.[/yellow]")
            self._apps[sp_id] = _FAILED
            return None

        self._apps[sp_id] = app
        return app

    def resolve_user(self, user_id: str | None) -> DirectoryUser:
        """Resolve a grant's principal. A missing principal means tenant-wide admin consent."""
        if not user_id:
            return TENANT_WIDE_USER
        if user_id in self._users:
            return self._users[user_id]

        self.lookups += 1
        try:
            user = DirectoryUser.from_graph(self.client.get_user(user_id))
        except GRAPH_ERRORS as exc:
            console.print(f"[yellow]Warning: could not resolve user {escape(user_id)} ({escape(str(exc))}). Treating as deleted.[/yellow]")
            user = unknown_user(user_id)

        self._users[user_id] = user
        return user

    def resolve_manager(self, user: DirectoryUser) -> str:
        """Manager's mail (or UPN) for a real user; "N/A" for sentinel and placeholder users."""
        if user.is_placeholder:
            return "N/A"
        if user.id in self._managers:
            return self._managers[user.id]

        self.lookups += 1
        try:
            mgr = self.client.get_manager(user.id)
            manager = mgr.get("mail") or mgr.get("userPrincipalName") or "N/A"
        except GRAPH_ERRORS:
            # Most users without a manager come back as 404; not worth a warning.
            manager = NO_MANAGER

        self._managers[user.id] = manager
        return manager

    def resolve_app_roles(self, resource_id: str) -> dict[str, str]:
        """Map of appRole id -> permission value declared by a resource service principal."""
        if resource_id in self._app_roles:
            return self._app_roles[resource_id]

        self.lookups += 1
        try:
            roles = {
                r["id"]: r.get("value") or ""
                for r in self.client.get_app_roles(resource_id)
                if r.get("id")
            }
        except GRAPH_ERRORS as exc:
            console.print(f"[yellow]Warning: could not read app roles of resource {escape(resource_id)} ({escape(str(exc))}).[/yellow]")
            roles = {}

        self._app_roles[resource_id] = roles
        return roles

    def tenant_id(self) -> str:
        """
        The scanned tenant's id, used to tell internal apps from third-party ones.

        Only a successful lookup is cached, so a transient failure early in the
        scan is retried on the next grant.
        """
        if self._tenant_id:
            return self._tenant_id

        self.lookups += 1
        try:
            org_id = self.client.get_organization().get("id")
        except GRAPH_ERRORS as exc:
            console.print(f"[yellow]Warning: could not resolve tenant id ({escape(str(exc))}). Owner type may be inaccurate.[/yellow]")
            return UNKNOWN_TENANT

        if not org_id:
            return UNKNOWN_TENANT
        self._tenant_id = org_id
        return org_id
