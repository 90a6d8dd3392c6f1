"""
Microsoft Graph API client with automatic pagination and retry logic.

Reads are GET requests; the only writes are the two DELETE calls used by the
remediation pass. Respects Retry-After headers on 429 responses and retries
up to MAX_RETRIES times.
"""

import time
from typing import Generator

import requests
from rich.console import Console
from rich.markup import escape

console = Console(stderr=True)

GRAPH_BASE = "https://graph.microsoft.com/v1.0"
MAX_RETRIES = 5
RETRY_BACKOFF_BASE = 2  # seconds; doubles each retry

# Everything a single Graph call can raise once retries are exhausted.
GRAPH_ERRORS = (PermissionError, RuntimeError, requests.RequestException)


def _error_message(resp: requests.Response) -> str:
    try:
        return resp.json().get("error", {}).get("message", resp.text)
    except ValueError:
        return resp.text


class GraphClient:
    """Thin wrapper around the Microsoft Graph REST API."""

    def __init__(self, access_token: str) -> None:
        self._session = requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
                "ConsistencyLevel": "eventual",  # required for $count / $search on some endpoints
            }
        )

    def _request(self, method: str, url: str, params: dict | None = None) -> requests.Response:
        """Single request with retry on 429 / transient errors. Returns the 2xx response."""
        for attempt in range(MAX_RETRIES):
            try:
                resp = self._session.request(method, url, params=params, timeout=30)
            except requests.RequestException as exc:
                if attempt < MAX_RETRIES - 1:
                    wait = RETRY_BACKOFF_BASE ** attempt
                    console.print(f"[yellow]Network error ({escape(str(exc))}). Retrying in {wait}s...[/yellow]")
                    time.sleep(wait)
                    continue
                raise

            if 200 <= resp.status_code < 300:
                return resp

            if resp.status_code == 429:
                try:
                    retry_after = int(resp.headers.get("Retry-After", RETRY_BACKOFF_BASE ** attempt))
                except ValueError:
                    retry_after = RETRY_BACKOFF_BASE ** attempt
                console.print(f"[yellow]Rate limited. Waiting {retry_after}s...[/yellow]")
                time.sleep(retry_after)
                continue

            if resp.status_code in (401, 403):
                raise PermissionError(f"Graph API access denied ({resp.status_code}): {_error_message(resp)}")

            if resp.status_code in (500, 502, 503, 504) and attempt < MAX_RETRIES - 1:
                wait = RETRY_BACKOFF_BASE ** attempt
                console.print(f"[yellow]Server error {resp.status_code}. Retrying in {wait}s...[/yellow]")
                time.sleep(wait)
                continue

            raise RuntimeError(f"Graph API error {resp.status_code}: {_error_message(resp)}")

        raise RuntimeError(f"Graph API request failed after {MAX_RETRIES} retries: {url}")

    def _get(self, url: str, params: dict | None = None) -> dict:
        return self._request("GET", url, params=params).json()

    def get_paged(self, path: str, params: dict | None = None) -> Generator[dict, None, None]:
        """
        Yield individual items from a paged Graph API collection.

        Automatically follows @odata.nextLink until all pages are consumed.
        """
        url = f"{GRAPH_BASE}{path}"
        # Spread caller params first so our $top=999 default always wins
        query: dict | None = {**(params or {}), "$top": 999}

        while url:
            data = self._get(url, params=query)
            # On nextLink pages, params are already encoded in the URL
            query = None
            for item in data.get("value", []):
                yield item
            url = data.get("@odata.nextLink")

    def get_one(self, path: str, params: dict | None = None) -> dict:
        """Fetch a single object (not a collection)."""
        return self._get(f"{GRAPH_BASE}{path}", params=params)

    def delete(self, path: str) -> None:
        """Delete a single object. Graph answers 204 No Content on success."""
        self._request("DELETE", f"{GRAPH_BASE}{path}")

    # ── Convenience methods ──────────────────────────────────────────────────

    def get_organization(self) -> dict:
        """Return the first organization object (tenant details)."""
        data = self._get(f"{GRAPH_BASE}/organization", params={"$select": "id,displayName"})
        orgs = data.get("value", [data])
        return orgs[0] if orgs else {}

    def get_oauth2_permission_grants(self) -> Generator[dict, None, None]:
        """Yield every delegated permission grant in the tenant."""
        yield from self.get_paged("/oauth2PermissionGrants")

    def get_service_principals(self) -> Generator[dict, None, None]:
        """Yield all service principals with just enough fields to filter them."""
        yield from self.get_paged(
            "/servicePrincipals",
            params={"$select": "id,appId,displayName,appOwnerOrganizationId"},
        )

    def get_service_principal(self, sp_id: str) -> dict:
        """Full details for one service principal, including credentials and publisher."""
        return self.get_one(
            f"/servicePrincipals/{sp_id}",
            params={
                "$select": (
                    "id,appId,displayName,publisherName,homepage,replyUrls,"
                    "passwordCredentials,keyCredentials,verifiedPublisher,"
                    "appOwnerOrganizationId,signInAudience"
                )
            },
        )

    def get_app_roles(self, sp_id: str) -> list[dict]:
        """The application roles a (resource) service principal declares."""
        data = self.get_one(f"/servicePrincipals/{sp_id}", params={"$select": "id,appRoles"})
        return data.get("appRoles") or []

    def get_sp_app_role_assignments(self, sp_id: str) -> list[dict]:
        """
        App role assignments granted TO this service principal, i.e. the
        application permissions it holds on other resources.
        """
        return list(self.get_paged(f"/servicePrincipals/{sp_id}/appRoleAssignments"))

    def get_user(self, user_id: str) -> dict:
        """A user with the account-state and sign-in fields the risk score needs."""
        return self.get_one(
            f"/users/{user_id}",
            params={
                "$select": (
                    "id,displayName,userPrincipalName,jobTitle,department,"
                    "signInActivity,accountEnabled,userType"
                )
            },
        )

    def get_manager(self, user_id: str) -> dict:
        return self.get_one(f"/users/{user_id}/manager", params={"$select": "mail,userPrincipalName"})

    def delete_oauth2_permission_grant(self, grant_id: str) -> None:
        self.delete(f"/oauth2PermissionGrants/{grant_id}")

    def delete_app_role_assignment(self, sp_id: str, assignment_id: str) -> None:
        self.delete(f"/servicePrincipals/{sp_id}/appRoleAssignments/{assignment_id}")
