"""Command line interface for the account lifecycle toolkit."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional

import typer

from .config import AppConfig, ConfigurationError, config_to_dict, load_config, update_config
from .graph_client import DirectoryConnectionError, GraphClient, GraphClientError
from .logs import configure_logging
from .models import UserAttributes
from .workflow import AccountCreationError, AccountLifecycleWorkflow

app = typer.Typer(help="Provision and deprovision Microsoft 365 accounts and their licences.")

logger = logging.getLogger(__name__)

_state: Dict[str, bool] = {"verbose": False}

ConfigOption = typer.Option(
    None, "--config", help="Path to a specific settings file (overrides default)."
)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Echo log lines to stderr."),
) -> None:
    _state["verbose"] = verbose


def _load_configuration(config_path: Optional[Path]) -> AppConfig:
    try:
        return load_config(config_path)
    except ConfigurationError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1)


def _open_workflow(config: AppConfig, prefix: str) -> AccountLifecycleWorkflow:
    try:
        config.tenant.validate()
    except ConfigurationError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1)

    log_path = configure_logging(config.logging, prefix=prefix, console=_state["verbose"])
    logger.info("Session log: %s", log_path)

    client = GraphClient(config.graph, config.tenant, prompt=typer.echo)
    try:
        session = client.connect()
    except DirectoryConnectionError as exc:
        typer.echo(f"Error: unable to connect to Microsoft Graph: {exc}")
        raise typer.Exit(code=1)
    return AccountLifecycleWorkflow(config.tenant, session)


@app.command("configure")
def configure(
    tenant_id: Optional[str] = typer.Option(None, "--tenant-id", help="Directory (tenant) GUID."),
    domain: Optional[str] = typer.Option(None, "--domain", help="Domain used for new principal names."),
    base_sku: Optional[str] = typer.Option(None, "--base-sku", help="Part number of the base plan."),
    addon_sku: Optional[str] = typer.Option(None, "--addon-sku", help="Part number of the add-on."),
    usage_location: Optional[str] = typer.Option(
        None, "--usage-location", help="Two-letter country code set on new accounts."
    ),
    client_id: Optional[str] = typer.Option(None, "--client-id", help="Application (client) id."),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """Create or update the settings file."""

    config = update_config(
        config_path,
        tenant_id=tenant_id,
        domain=domain,
        base_sku=base_sku,
        addon_sku=addon_sku,
        usage_location=usage_location,
        client_id=client_id,
    )
    try:
        config.tenant.validate()
    except ConfigurationError as exc:
        typer.echo(f"Settings saved, but still incomplete: {exc}")
        raise typer.Exit(code=1)
    typer.echo("Settings saved.")


@app.command("show-config")
def show_config(config_path: Optional[Path] = ConfigOption) -> None:
    """Print the current settings."""

    config = _load_configuration(config_path)
    payload = config_to_dict(config)
    if payload["graph"]["client_secret"]:
        payload["graph"]["client_secret"] = "********"
    for section, values in payload.items():
        typer.echo(f"{section}:")
        for key, value in values.items():
            typer.echo(f"  {key}: {value}")


@app.command("connect")
def connect(config_path: Optional[Path] = ConfigOption) -> None:
    """Verify that sign-in to Microsoft Graph works."""

    config = _load_configuration(config_path)
    _open_workflow(config, prefix="connect")
    typer.echo(f"Connected to tenant {config.tenant.tenant_id}.")


@app.command("provision")
def provision(
    first_name: str = typer.Argument(..., help="Given name."),
    last_name: str = typer.Argument(..., help="Surname."),
    username: str = typer.Argument(..., help="Principal name prefix (before the @)."),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """Create an account, assign licences and print the temporary password."""

    values = {"first name": first_name, "last name": last_name, "username": username}
    for label, value in values.items():
        if not value.strip():
            raise typer.BadParameter(f"The {label} must not be empty.")
    if any(char.isspace() for char in username.strip()) or "@" in username:
        raise typer.BadParameter("The username must not contain spaces or '@'.")

    config = _load_configuration(config_path)
    workflow = _open_workflow(config, prefix="provision")
    attrs = UserAttributes(
        first_name=first_name.strip(),
        last_name=last_name.strip(),
        username=username.strip(),
    )
    try:
        account = workflow.provision_account(attrs)
    except AccountCreationError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1)

    typer.echo("Account created:")
    typer.echo(f"  principal: {account.user_principal_name}")
    typer.echo(f"  display name: {account.display_name}")
    typer.echo(f"  id: {account.id}")
    typer.echo(f"  licences: {account.license_status.value}")
    typer.echo(f"Temporary password (shown once): {account.temporary_password}")


@app.command("list")
def list_accounts(config_path: Optional[Path] = ConfigOption) -> None:
    """List managed accounts with their licences."""

    config = _load_configuration(config_path)
    workflow = _open_workflow(config, prefix="list")
    try:
        summaries = workflow.list_accounts()
    except GraphClientError as exc:
        typer.echo(f"Error: unable to list accounts: {exc}")
        raise typer.Exit(code=1)

    if not summaries:
        typer.echo("No accounts found.")
        return
    for summary in summaries:
        typer.echo(f"{summary.display_name}\t{summary.user_principal_name}\t{summary.id}")
        typer.echo(f"    licences: {summary.license_summary}")
    typer.echo(f"{len(summaries)} account(s).")


@app.command("licenses")
def licenses(config_path: Optional[Path] = ConfigOption) -> None:
    """Show seat availability for the configured SKUs."""

    config = _load_configuration(config_path)
    workflow = _open_workflow(config, prefix="licenses")
    try:
        available = {sku.part_number: sku for sku in workflow.license_availability()}
    except GraphClientError as exc:
        typer.echo(f"Error: unable to read the licence catalog: {exc}")
        raise typer.Exit(code=1)

    for part_number in config.tenant.required_license_skus:
        sku = available.get(part_number)
        if sku is None:
            typer.echo(f"{part_number}: not found in tenant")
            continue
        typer.echo(
            f"{part_number}: {sku.available_units} available "
            f"({sku.consumed_units}/{sku.total_units} used)"
        )


@app.command("deprovision")
def deprovision(
    account_ids: List[str] = typer.Argument(..., help="Object ids of the accounts to remove."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """Remove licences from and delete the given accounts."""

    if not yes:
        typer.confirm(
            f"Permanently delete {len(account_ids)} account(s)?", abort=True
        )

    config = _load_configuration(config_path)
    workflow = _open_workflow(config, prefix="deprovision")
    result = workflow.deprovision_accounts(account_ids)

    for outcome in result.outcomes:
        label = outcome.account_id or "<missing id>"
        if outcome.succeeded:
            typer.echo(f"deleted  {label}")
        else:
            stage = f" ({outcome.failed_stage})" if outcome.failed_stage else ""
            typer.echo(f"FAILED   {label}{stage}: {outcome.error_detail}")
    typer.echo(f"{result.success_count} deleted, {result.failure_count} failed.")
    if result.failure_count:
        raise typer.Exit(code=1)


def run() -> None:
    app()


if __name__ == "__main__":
    run()
