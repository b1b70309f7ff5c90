"""Command line interface for provisioning users from ticket text."""
from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer

from .config import AppConfig, ConfigurationError, load_config
from .licenses import LicenseAllocator
from .m365_client import M365Client, M365ClientError
from .models import UserRecord
from .orchestrator import (
    DelayPolicy,
    ProvisioningError,
    ProvisioningOrchestrator,
    ProvisioningState,
)
from .policy import OrgPolicy, PolicyError, load_policy
from .record_builder import build_user_record
from .report import render_report
from .ticket_parser import TicketParseError

app = typer.Typer(help="Provision Microsoft 365 users from support-ticket text.")

EXIT_ABORTED = 2


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    for noisy in ("msal", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _load_configuration(config_path: Optional[Path]) -> AppConfig:
    try:
        return load_config(config_path)
    except ConfigurationError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1)


def _load_policy(config: AppConfig) -> OrgPolicy:
    try:
        return load_policy(config.storage.policy_file)
    except PolicyError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1)


def _read_ticket(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    path = Path(source)
    if not path.exists():
        typer.echo(f"Error: ticket file '{path}' does not exist.")
        raise typer.Exit(code=1)
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        typer.echo(f"Error: cannot read ticket file '{path}': {exc}")
        raise typer.Exit(code=1)


def _build_record(source: str, config: AppConfig, policy: OrgPolicy) -> UserRecord:
    try:
        record = build_user_record(
            _read_ticket(source),
            header_marker=config.ticket.header_marker,
            patterns=config.ticket.fields,
        )
    except (TicketParseError, ValueError) as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1)
    policy.extend_groups(record)
    return record


def _client(config: AppConfig) -> M365Client:
    try:
        return M365Client(config.m365)
    except M365ClientError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1)


def _confirm_alternate(principal_name: str, matches: List[Dict[str, Any]]) -> bool:
    typer.echo(f"A user with principal name {principal_name} already exists:")
    for match in matches:
        typer.echo(f"  - {match.get('displayName', '?')} ({match.get('id', '?')})")
    return typer.confirm(
        "Is this a different person? Create the account with an alternate name", default=False
    )


_CONFIG_OPTION = typer.Option(
    None, "--config", help="Path to a specific settings file (overrides default)."
)


@app.command("parse")
def parse_ticket(
    ticket: str = typer.Argument(..., help="Ticket text file, or '-' to read from stdin."),
    config_path: Optional[Path] = _CONFIG_OPTION,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Show the user record a ticket produces, without touching the directory."""

    _configure_logging(verbose)
    config = _load_configuration(config_path)
    policy = _load_policy(config)
    record = _build_record(ticket, config, policy)

    payload = record.to_dict()
    payload["user_principal_name"] = record.principal_name(config.provisioning.domain)
    payload["required_skus"] = policy.required_skus(record)
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))


@app.command("provision")
def provision(
    ticket: str = typer.Argument(..., help="Ticket text file, or '-' to read from stdin."),
    assume_yes: bool = typer.Option(
        False, "--yes", "-y", help="Use the alternate principal name without prompting."
    ),
    no_wait: bool = typer.Option(
        False, "--no-wait", help="Skip display pacing between steps (propagation wait still applies)."
    ),
    config_path: Optional[Path] = _CONFIG_OPTION,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Create the account described by a ticket and attach phone, manager, groups and licenses."""

    _configure_logging(verbose)
    config = _load_configuration(config_path)
    policy = _load_policy(config)
    record = _build_record(ticket, config, policy)
    client = _client(config)

    orchestrator = ProvisioningOrchestrator(
        client,
        config.provisioning,
        policy=policy,
        confirm=(lambda principal_name, matches: True) if assume_yes else _confirm_alternate,
        delays=DelayPolicy.from_config(config.provisioning, interactive=not no_wait),
        usage_location=config.m365.default_usage_location,
    )

    typer.echo(f"Provisioning {record.display_name}...")
    try:
        result = orchestrator.run(record)
    except (ProvisioningError, M365ClientError) as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1)

    typer.echo(render_report(record, result))
    if orchestrator.state is ProvisioningState.ABORTED:
        raise typer.Exit(code=EXIT_ABORTED)


@app.command("seats")
def show_seats(
    sku: Optional[List[str]] = typer.Option(
        None, "--sku", help="Only show this SKU part number (repeatable)."
    ),
    config_path: Optional[Path] = _CONFIG_OPTION,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """List license seat availability in the tenant."""

    _configure_logging(verbose)
    config = _load_configuration(config_path)
    policy = _load_policy(config)
    allocator = LicenseAllocator(_client(config), labeler=policy.sku_label)

    try:
        availability = allocator.availability()
    except M365ClientError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1)

    wanted = set(sku or [])
    for code, entry in sorted(availability.items()):
        if wanted and code not in wanted:
            continue
        typer.echo(f"{policy.sku_label(code)} ({code}): {entry.available} of {entry.total} available")


def run():
    app()


if __name__ == "__main__":
    run()
