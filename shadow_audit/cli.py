"""
Shadow-IT audit CLI entrypoint.

Usage:
    shadow-audit [OPTIONS]
    python -m shadow_audit.cli [OPTIONS]
"""

from __future__ import annotations

import sys
from pathlib import Path

import click
import requests
from rich.console import Console

from . import __version__
from .auth import get_token
from .events import ConsoleSink, JsonLineSink
from .graph import GraphClient
from .policy import load_policy
from .reporter import export_path_for
from .scanner import ShadowItScanner

console = Console(stderr=True)


@click.command()
@click.option(
    "--tenant", "-t",
    default=None,
    metavar="TENANT_ID",
    help="Entra tenant ID or domain. Reads from config file if omitted.",
)
@click.option(
    "--client-id", "-c",
    default=None,
    metavar="CLIENT_ID",
    help="App registration client ID used for device code sign-in.",
)
@click.option(
    "--config",
    default=None,
    type=click.Path(exists=False, path_type=Path),
    metavar="PATH",
    help="Path to shadow_audit_config.json (default: ./shadow_audit_config.json).",
)
@click.option(
    "--policy",
    default=None,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    metavar="PATH",
    help="Risk policy JSON replacing the bundled scope lists and patterns.",
)
@click.option(
    "--allow-app",
    "allow_apps",
    multiple=True,
    metavar="APP_ID",
    help="Approved appId that is never reported. Repeatable.",
)
@click.option(
    "--dry-run/--remediate",
    default=True,
    show_default=True,
    help="Report only, or revoke every flagged grant after the scan.",
)
@click.option(
    "--yes", "-y",
    "assume_yes",
    is_flag=True,
    default=False,
    help="Do not ask for confirmation before remediating.",
)
@click.option(
    "--output", "-o",
    default="./output",
    show_default=True,
    type=click.Path(file_okay=False, path_type=Path),
    metavar="DIR",
    help="Directory for the CSV export.",
)
@click.option(
    "--export-csv/--no-export-csv",
    default=True,
    show_default=True,
    help="Write every flagged grant, untruncated, to a CSV file.",
)
@click.option(
    "--format", "output_format",
    default="events",
    show_default=True,
    type=click.Choice(["events", "table"], case_sensitive=False),
    help="Line-delimited JSON events for a host process, or a terminal table.",
)
@click.version_option(__version__, "--version", "-V")
def main(
    tenant: str | None,
    client_id: str | None,
    config: Path | None,
    policy: Path | None,
    allow_apps: tuple[str, ...],
    dry_run: bool,
    assume_yes: bool,
    output: Path,
    export_csv: bool,
    output_format: str,
) -> None:
    """
    Shadow-IT audit of OAuth consents in a Microsoft Entra tenant.

    Finds delegated and application permission grants that carry high-risk
    scopes, scores them 0-100 and, with --remediate, revokes them.

    Exit codes:
      0  Scan completed (whether or not risky grants were found)
      1  Fatal error: authentication, configuration or initial collection failed
    """
    events = JsonLineSink() if output_format == "events" else ConsoleSink()

    if not dry_run and not assume_yes and output_format == "table":
        if not click.confirm("Revoke every flagged grant after the scan?", default=False):
            console.print("[dim]Remediation cancelled. Re-run without --remediate for a report.[/dim]")
            return

    try:
        token, auth_config = get_token(tenant, client_id, config, remediate=not dry_run)
        risk_policy = load_policy(
            policy or (Path(auth_config["policy"]) if auth_config.get("policy") else None),
            extra_allowed=[*auth_config.get("allowed_app_ids", []), *allow_apps],
        )
        tenant_name = auth_config.get("tenant_name") or auth_config.get("tenant_id") or "tenant"

        scanner = ShadowItScanner(GraphClient(access_token=token), risk_policy, events)
        export_path = export_path_for(output, tenant_name) if export_csv else None
        scanner.run(dry_run=dry_run, export_path=export_path)
    except (PermissionError, ValueError, RuntimeError, OSError, requests.RequestException) as exc:
        events.error(str(exc) or exc.__class__.__name__)
        sys.exit(1)
    except Exception as exc:
        events.error(f"Unknown error during Shadow IT scan: {exc}")
        sys.exit(1)


if __name__ == "__main__":
    main()
