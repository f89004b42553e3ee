"""Command-line interface for sheet-sync."""

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table

from sheet_sync import __version__
from sheet_sync.config import Config, Settings
from sheet_sync.errors import ConfigError, SheetSyncError
from sheet_sync.google import CredentialManager, GoogleOAuthClient, GoogleOAuthConfig, SheetsClient
from sheet_sync.sync import (
    ConflictPolicy,
    PullSyncJob,
    WriteBackEvent,
    WriteBackHandler,
    WriteOperation,
)
from sheet_sync.sync.mapper import extract_spreadsheet_id
from sheet_sync.sync.models import Mapping, MappingTarget, SheetConfiguration, SheetType, SyncMetadata
from sheet_sync.sync.writeback import resolve_tab_id
from sheet_sync.utils import get_logger, setup_logging

app = typer.Typer(help="Synchronize Google Sheets rows with entity records")
console = Console()
logger = get_logger(__name__)

CONFIG_DIR_HELP = "Configuration directory. Defaults to ~/.sheet-sync/"


def _oauth_client(settings: Settings) -> GoogleOAuthClient:
    """Build the OAuth client, exiting if it is not configured."""
    if not settings.has_oauth_client:
        console.print("[yellow]Google OAuth client not configured.[/yellow]")
        console.print("Run: sheet-sync configure")
        raise typer.Exit(code=1)

    return GoogleOAuthClient(
        GoogleOAuthConfig(
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            redirect_uri=settings.redirect_uri,
            timeout=settings.request_timeout,
        )
    )


def _credential_manager(config: Config, settings: Settings) -> CredentialManager:
    return CredentialManager(config.storage, _oauth_client(settings))


def _spreadsheet_id(sheet_url: str) -> str:
    spreadsheet_id = extract_spreadsheet_id(sheet_url)
    if spreadsheet_id is None:
        raise ConfigError(f"Not a Google Sheets URL: {sheet_url}")
    return spreadsheet_id


def _lookup_tab_id(config: Config, user_id: str, sheet_url: str, sheet_name: str) -> int:
    """Resolve a tab title to its numeric id with the owner's credential."""
    settings = config.get_settings()
    access_token = _credential_manager(config, settings).get_valid_access_token(user_id)

    with SheetsClient(timeout=settings.request_timeout) as sheets_client:
        return resolve_tab_id(sheets_client, _spreadsheet_id(sheet_url), sheet_name, access_token)


def parse_mapping_option(value: str) -> list[Mapping]:
    """Parse ``0=name,1=email,2=custom:budget`` into column mappings.

    Args:
        value: Comma-separated ``column=target`` pairs.

    Returns:
        Column mappings in the given order.

    Raises:
        ConfigError: If a pair is malformed or names an unknown target.
    """
    mappings = []
    for pair in filter(None, (part.strip() for part in value.split(","))):
        column, sep, target = pair.partition("=")
        if not sep or not column.strip().isdigit():
            raise ConfigError(f"Invalid mapping '{pair}', expected COLUMN=FIELD")

        target, _, custom_key = target.strip().partition(":")
        try:
            mapping_target = MappingTarget(target)
        except ValueError as e:
            raise ConfigError(f"Unknown mapping target '{target}'") from e

        mappings.append(
            Mapping(
                column=int(column),
                target=mapping_target,
                custom_key=custom_key or None,
            )
        )
    return mappings


@app.command()
def configure(
    config_dir: Optional[Path] = typer.Option(None, "--config-dir", help=CONFIG_DIR_HELP),
) -> None:
    """Configure the Google OAuth client."""
    setup_logging(config_dir=config_dir)
    config = Config(config_dir)

    console.print("[bold cyan]Sheet Sync Configuration[/bold cyan]")
    console.print()

    try:
        settings = config.get_settings()
    except ConfigError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)

    status = "[green]✓ Configured[/green]" if settings.has_oauth_client else "[yellow]✗ Not configured[/yellow]"
    console.print(f"  Google OAuth client:  {status}")
    console.print()

    client_id = Prompt.ask("Enter your Google OAuth Client ID", default=settings.google_client_id or None)
    client_secret = Prompt.ask("Enter your Google OAuth Client Secret", password=True)
    redirect_uri = Prompt.ask("Redirect URI", default=settings.redirect_uri)

    try:
        config.update_settings(
            google_client_id=client_id,
            google_client_secret=client_secret,
            redirect_uri=redirect_uri,
        )
    except SheetSyncError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)

    console.print("\n[green]Configuration complete![/green]")
    console.print("Run 'sheet-sync connect USER_ID' to connect a Google account.")


@app.command()
def connect(
    user_id: str = typer.Argument(..., help="User owning the Google account"),
    config_dir: Optional[Path] = typer.Option(None, "--config-dir", help=CONFIG_DIR_HELP),
) -> None:
    """Connect a user's Google account through the browser."""
    setup_logging(config_dir=config_dir)
    config = Config(config_dir)

    try:
        settings = config.get_settings()
        oauth_client = _oauth_client(settings)
        console.print("[cyan]Opening browser for Google authorization...[/cyan]")
        token = oauth_client.handle_callback()
        CredentialManager(config.storage, oauth_client).save_token(user_id, token)
    except SheetSyncError as e:
        console.print(f"[red]✗ Google authorization failed: {e}[/red]")
        raise typer.Exit(code=1)

    console.print(f"[green]✓ Google Sheets connected for user {user_id}[/green]")


@app.command("add-sheet")
def add_sheet(
    user_id: str = typer.Option(..., "--user", help="Owner of the sheet"),
    sheet_url: str = typer.Option(..., "--url", help="Google Sheets URL"),
    sheet_type: SheetType = typer.Option(..., "--type", help="Entity table the sheet feeds"),
    mapping: str = typer.Option(
        ...,
        "--mapping",
        help="Column mappings, e.g. '0=name,1=email,2=custom:budget'",
    ),
    sheet_name: Optional[str] = typer.Option(None, "--sheet-name", help="Tab title to read"),
    sheet_tab_id: Optional[int] = typer.Option(
        None,
        "--tab-id",
        help="Numeric tab id. Looked up from --sheet-name when omitted",
    ),
    config_dir: Optional[Path] = typer.Option(None, "--config-dir", help=CONFIG_DIR_HELP),
) -> None:
    """Save a new sheet configuration."""
    setup_logging(config_dir=config_dir)
    config = Config(config_dir)

    try:
        sheet_config = SheetConfiguration(
            user_id=user_id,
            sheet_url=sheet_url,
            sheet_type=sheet_type,
            sheet_name=sheet_name,
            sheet_tab_id=sheet_tab_id,
            mappings=parse_mapping_option(mapping),
        )
        config.validate_sheet_config(sheet_config)

        if sheet_name and sheet_tab_id is None:
            tab_id = _lookup_tab_id(config, user_id, sheet_url, sheet_name)
            console.print(f"Tab '{sheet_name}' has id {tab_id}")
            sheet_config = sheet_config.model_copy(update={"sheet_tab_id": tab_id})

        sheet_config = config.save_sheet_config(sheet_config)
    except SheetSyncError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)

    console.print(f"[green]✓ Saved sheet configuration {sheet_config.id}[/green]")


@app.command()
def tabs(
    user_id: str = typer.Argument(..., help="User owning the Google account"),
    sheet_url: str = typer.Argument(..., help="Google Sheets URL"),
    config_dir: Optional[Path] = typer.Option(None, "--config-dir", help=CONFIG_DIR_HELP),
) -> None:
    """List the tabs of a spreadsheet with their numeric ids."""
    setup_logging(config_dir=config_dir)
    config = Config(config_dir)

    try:
        spreadsheet_id = _spreadsheet_id(sheet_url)
        settings = config.get_settings()
        access_token = _credential_manager(config, settings).get_valid_access_token(user_id)

        with SheetsClient(timeout=settings.request_timeout) as sheets_client:
            tab_list = sheets_client.list_tabs(spreadsheet_id, access_token)
    except SheetSyncError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)

    table = Table(title=f"Tabs of {spreadsheet_id}")
    table.add_column("Tab ID", style="cyan", justify="right")
    table.add_column("Title", style="magenta")
    table.add_column("Position", justify="right")

    for tab in tab_list:
        table.add_row(str(tab.sheet_id), tab.title, str(tab.index))

    console.print(table)


@app.command()
def sheets(
    config_dir: Optional[Path] = typer.Option(None, "--config-dir", help=CONFIG_DIR_HELP),
) -> None:
    """List saved sheet configurations."""
    setup_logging(config_dir=config_dir)
    sheet_configs = Config(config_dir).get_sheet_configs()

    if not sheet_configs:
        console.print("[yellow]No sheet configurations saved yet.[/yellow]")
        return

    table = Table(title="Sheet Configurations")
    table.add_column("ID", style="cyan")
    table.add_column("User", style="magenta")
    table.add_column("Type", style="magenta")
    table.add_column("Tab")
    table.add_column("Columns", justify="right")
    table.add_column("Last Synced")
    table.add_column("Active", style="yellow")

    for sheet_config in sheet_configs:
        table.add_row(
            sheet_config.id,
            sheet_config.user_id,
            sheet_config.sheet_type.value,
            sheet_config.sheet_name or "-",
            str(len([m for m in sheet_config.mappings if m.field_name])),
            sheet_config.last_synced_at.isoformat() if sheet_config.last_synced_at else "never",
            "yes" if sheet_config.is_active else "no",
        )

    console.print(table)


@app.command()
def pull(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging."),
    config_dir: Optional[Path] = typer.Option(None, "--config-dir", help=CONFIG_DIR_HELP),
) -> None:
    """Pull every active sheet into the record store."""
    setup_logging(
        log_level=logging.DEBUG if verbose else logging.INFO,
        config_dir=config_dir,
    )
    logger.info(f"Sheet Sync v{__version__}")

    try:
        config = Config(config_dir)
        settings = config.get_settings()
        credentials = _credential_manager(config, settings)

        with SheetsClient(timeout=settings.request_timeout) as sheets_client:
            result = PullSyncJob(config, credentials, sheets_client).run()
    except SheetSyncError as e:
        logger.error(f"Pull failed: {e}", exc_info=True)
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)

    table = Table(title="Pull Results")
    table.add_column("Configuration", style="cyan")
    table.add_column("Type", style="cyan")
    table.add_column("Inserted", style="magenta", justify="right")
    table.add_column("Updated", style="magenta", justify="right")
    table.add_column("Unchanged", justify="right")
    table.add_column("Protected", justify="right")
    table.add_column("Errors", style="red", justify="right")

    for config_result in result.config_results:
        table.add_row(
            config_result.config_id,
            config_result.sheet_type,
            str(config_result.inserted),
            str(config_result.updated),
            str(config_result.unchanged),
            str(config_result.protected),
            str(config_result.error_count),
        )

    console.print(table)

    errors = [error for r in result.config_results for error in r.all_errors]
    if errors:
        console.print("\n[red]Errors:[/red]")
        for error in errors:
            console.print(f"  - {error}")

    raise typer.Exit(code=0 if result.error_count == 0 else 1)


@app.command("write-back")
def write_back(
    operation: WriteOperation = typer.Argument(..., help="insert, update or delete"),
    table: str = typer.Argument(..., help="Store table, e.g. 'leads'"),
    record_id: str = typer.Argument(..., help="Record id"),
    data: Optional[str] = typer.Option(None, "--data", help="Changed fields as a JSON object"),
    config_dir: Optional[Path] = typer.Option(None, "--config-dir", help=CONFIG_DIR_HELP),
) -> None:
    """Write one local record change to its sheet."""
    setup_logging(config_dir=config_dir)

    try:
        changes = json.loads(data) if data else {}
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid --data JSON: {e}[/red]")
        raise typer.Exit(code=1)

    try:
        config = Config(config_dir)
        settings = config.get_settings()
        credentials = _credential_manager(config, settings)
        event = WriteBackEvent(operation=operation, table=table, record_id=record_id, data=changes)

        with SheetsClient(timeout=settings.request_timeout) as sheets_client:
            result = WriteBackHandler(config, credentials, sheets_client).handle(event)
    except SheetSyncError as e:
        logger.error(f"Write-back failed: {e}", exc_info=True)
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)

    style = "green" if result.written else "yellow"
    console.print(f"[{style}]{result}[/{style}]")


@app.command("mark-modified")
def mark_modified(
    table: str = typer.Argument(..., help="Store table, e.g. 'leads'"),
    record_id: str = typer.Argument(..., help="Record id"),
    config_dir: Optional[Path] = typer.Option(None, "--config-dir", help=CONFIG_DIR_HELP),
) -> None:
    """Protect a locally edited record from being overwritten by pulls."""
    setup_logging(config_dir=config_dir)
    storage = Config(config_dir).storage

    try:
        record = storage.get_record(table, record_id)
        if record is None:
            console.print(f"[red]Record {record_id} not found in {table}[/red]")
            raise typer.Exit(code=1)

        metadata = ConflictPolicy.mark_modified_locally(SyncMetadata.from_record(record))
        if metadata is None:
            console.print(f"[yellow]Record {record_id} is not linked to a sheet[/yellow]")
            return

        storage.update_record(table, record_id, {"sync_metadata": metadata.to_store()})
    except SheetSyncError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)

    console.print(f"[green]✓ Record {record_id} marked as modified locally[/green]")


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"Sheet Sync v{__version__}")


def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        console.print(f"[red]Unexpected error: {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
