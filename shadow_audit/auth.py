"""
Token acquisition for the Shadow-IT audit.

A host process normally injects a ready-made Graph token through the
GRAPH_TOKEN environment variable. Without one, an MSAL device code flow is
run using client_id and tenant_id from shadow_audit_config.json or explicit
arguments. The access token is held only in memory and never written to disk.
"""

import json
import os
from pathlib import Path

import msal
from rich.console import Console
from rich.panel import Panel

console = Console(stderr=True)

TOKEN_ENV_VAR = "GRAPH_TOKEN"

GRAPH_SCOPES = [
    "https://graph.microsoft.com/Application.Read.All",
    "https://graph.microsoft.com/Directory.Read.All",
    "https://graph.microsoft.com/AuditLog.Read.All",
    "https://graph.microsoft.com/User.Read.All",
]

# Extra permissions needed only when grants are actually revoked.
REMEDIATION_SCOPES = [
    "https://graph.microsoft.com/DelegatedPermissionGrant.ReadWrite.All",
    "https://graph.microsoft.com/AppRoleAssignment.ReadWrite.All",
]

DEFAULT_CONFIG_NAME = "shadow_audit_config.json"


def load_config(config_path: Path | None = None, required: bool = True) -> dict:
    """
    Load client_id, tenant_id and optional allowed_app_ids / policy from the JSON config.

    Returns an empty dict when the file is absent and not required.
    """
    path = config_path or Path.cwd() / DEFAULT_CONFIG_NAME
    if not path.exists():
        if required:
            raise ValueError(
                f"Config file {path} not found. Pass --tenant and --client-id, "
                f"or set {TOKEN_ENV_VAR} to a Graph access token."
            )
        return {}
    try:
        return json.loads(path.read_text(encoding="utf-8-sig"))
    except (json.JSONDecodeError, OSError) as exc:
        raise ValueError(f"Error reading config file {path}: {exc}") from exc


def acquire_token(tenant_id: str, client_id: str, remediate: bool = False) -> str:
    """
    Run MSAL device code flow and return an access token string.

    Prompts the user to visit https://microsoft.com/devicelogin and enter a code.
    """
    authority = f"https://login.microsoftonline.com/{tenant_id}"
    app = msal.PublicClientApplication(client_id=client_id, authority=authority)
    scopes = GRAPH_SCOPES + (REMEDIATION_SCOPES if remediate else [])

    flow = app.initiate_device_flow(scopes=scopes)
    if "user_code" not in flow:
        raise PermissionError(f"Failed to create device flow: {flow.get('error_description', 'unknown error')}")

    console.print(
        Panel(
            f"[bold yellow]Open your browser and go to:[/bold yellow]\n\n"
            f"  [cyan underline]https://microsoft.com/devicelogin[/cyan underline]\n\n"
            f"[bold yellow]Enter the code:[/bold yellow]\n\n"
            f"  [bold white on blue]  {flow['user_code']}  [/bold white on blue]\n\n"
            f"[dim]Waiting for authentication... (expires in {flow.get('expires_in', 900) // 60} minutes)[/dim]",
            title="[bold cyan]Microsoft Authentication Required[/bold cyan]",
            border_style="cyan",
        )
    )

    result = app.acquire_token_by_device_flow(flow)

    if "access_token" not in result:
        error = result.get("error_description") or result.get("error") or "Unknown error"
        raise PermissionError(f"Authentication failed: {error}")

    console.print("[green]Authentication successful.[/green]")
    return result["access_token"]


def get_token(
    tenant_id: str | None,
    client_id: str | None,
    config_path: Path | None = None,
    remediate: bool = False,
) -> tuple[str, dict]:
    """
    Resolve configuration and return (access_token, config_dict).

    GRAPH_TOKEN wins when set. Otherwise tenant_id / client_id fall back to
    the config file.
    """
    env_token = os.environ.get(TOKEN_ENV_VAR)
    if env_token:
        config = load_config(config_path, required=False)
        if tenant_id:
            config["tenant_id"] = tenant_id
        return env_token, config

    if tenant_id and client_id:
        config = load_config(config_path, required=False)
        config.update({"tenant_id": tenant_id, "client_id": client_id})
    else:
        config = load_config(config_path)
        if tenant_id:
            config["tenant_id"] = tenant_id
        if client_id:
            config["client_id"] = client_id

    if not config.get("tenant_id") or not config.get("client_id"):
        raise ValueError("Both tenant_id and client_id are required for interactive sign-in.")

    token = acquire_token(config["tenant_id"], config["client_id"], remediate=remediate)
    return token, config
