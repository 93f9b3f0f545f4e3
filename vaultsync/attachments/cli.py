"""CLI commands for attachment sync.

This module provides commands for configuring object storage, running
whole-vault and single-note syncs, and running the periodic background sync.
"""

import logging
import time
from pathlib import Path
from typing import Annotated, Optional

import cyclopts
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from vaultsync.attachments.config import (
    CONFIG_DIR_NAME,
    SyncSettings,
    default_config_path,
)
from vaultsync.attachments.exceptions import VaultSyncError
from vaultsync.attachments.journal import SyncJournal
from vaultsync.attachments.liveness import ReferenceResolver
from vaultsync.attachments.reporting import ConsoleReporter
from vaultsync.attachments.scheduler import AutoSync
from vaultsync.attachments.sync import SyncEngine, collect_candidates
from vaultsync.attachments.vault import LocalVault

logger = logging.getLogger(__name__)

LOCK_FILE_NAME = "sync.lock"
SETTINGS_POLL_SECONDS = 5

VaultOption = Annotated[Path, cyclopts.Parameter(help="Vault root directory")]

config_app = cyclopts.App(name="config", help="Show or change sync settings")


def _get_console() -> Console:
    """Get a Rich console for output."""
    return Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _mask(secret: str) -> str:
    if not secret:
        return ""
    return "****" + secret[-4:] if len(secret) > 8 else "****"


def _local_vault(vault: Path, console: Console) -> LocalVault:
    try:
        return LocalVault(vault)
    except VaultSyncError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise SystemExit(1)


def _open_vault(
    vault: Path, console: Console
) -> tuple[LocalVault, SyncSettings, Path]:
    store = _local_vault(vault, console)
    config_path = default_config_path(store.root)
    return store, SyncSettings.load(config_path), config_path


def _journal_summary(journal: SyncJournal) -> str:
    stats = journal.get_statistics()
    return (
        f"{stats['total_operations']} entries, "
        f"{stats['recent_failures']} failures in the last 24 hours"
    )


def _build_engine(
    store: LocalVault, settings: SyncSettings, console: Console
) -> SyncEngine:
    return SyncEngine(
        store=store,
        settings=settings,
        reporter=ConsoleReporter(console),
        journal=SyncJournal(store.root / CONFIG_DIR_NAME),
        lock_path=store.root / CONFIG_DIR_NAME / LOCK_FILE_NAME,
    )


def _apply_settings(
    auto_sync: AutoSync, settings: SyncSettings, interval: Optional[int] = None
) -> None:
    """Hand new settings to the engine and restart the timer if they changed it.

    An ``interval`` given on the command line overrides the settings and
    keeps the timer on regardless of ``auto_sync_enabled``.
    """
    engine = auto_sync.engine
    engine.settings = settings
    engine.uploader.settings = settings

    enabled = interval is not None or settings.auto_sync_enabled
    minutes = interval if interval is not None else settings.auto_sync_interval
    if enabled and minutes > 0:
        if not auto_sync.running or auto_sync.interval_minutes != minutes:
            auto_sync.reconfigure(True, minutes)
    elif auto_sync.running:
        auto_sync.reconfigure(False, minutes)


def _reload_settings(
    auto_sync: AutoSync,
    config_path: Path,
    current: SyncSettings,
    interval: Optional[int] = None,
) -> SyncSettings:
    """Re-read the settings file and apply it if it changed.

    Changes are held back while a pass is running and picked up on a later
    call. Returns the settings now in effect.
    """
    try:
        settings = SyncSettings.load(config_path)
    except (OSError, ValueError) as e:
        logger.warning(f"Could not reload settings from {config_path}: {e}")
        return current
    if settings == current or auto_sync.engine.in_progress:
        return current
    logger.info("Settings changed, reconfiguring auto sync")
    _apply_settings(auto_sync, settings, interval)
    return settings


def sync(
    *,
    vault: VaultOption = Path("."),
    quiet: Annotated[
        bool, cyclopts.Parameter(help="Only print errors, like a background run")
    ] = False,
    verbose: Annotated[bool, cyclopts.Parameter(help="Enable debug logging")] = False,
):
    """Upload every referenced attachment and archive unreferenced ones.

    Example:
        vaultsync sync --vault ~/notes
    """
    _configure_logging(verbose)
    console = _get_console()

    try:
        store, settings, _ = _open_vault(vault, console)
        engine = _build_engine(store, settings, console)
        with engine.uploader:
            engine.sync_all(silent=quiet)
    except VaultSyncError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise SystemExit(1)


def sync_note(
    note: Annotated[str, cyclopts.Parameter(help="Note path, relative to the vault")],
    *,
    vault: VaultOption = Path("."),
    verbose: Annotated[bool, cyclopts.Parameter(help="Enable debug logging")] = False,
):
    """Upload the attachments referenced by a single note.

    Example:
        vaultsync sync-note journal/2024-01-01.md --vault ~/notes
    """
    _configure_logging(verbose)
    console = _get_console()

    try:
        store, settings, _ = _open_vault(vault, console)
        engine = _build_engine(store, settings, console)
        with engine.uploader:
            engine.sync_document(note)
    except VaultSyncError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise SystemExit(1)


def watch(
    *,
    vault: VaultOption = Path("."),
    interval: Annotated[
        Optional[int],
        cyclopts.Parameter(help="Minutes between syncs (default: from settings)"),
    ] = None,
    verbose: Annotated[bool, cyclopts.Parameter(help="Enable debug logging")] = False,
):
    """Run silent whole-vault syncs on a timer until interrupted.

    Example:
        vaultsync watch --vault ~/notes --interval 5
    """
    _configure_logging(verbose)
    console = _get_console()

    store, settings, config_path = _open_vault(vault, console)
    if interval is not None and interval <= 0:
        console.print("[red]Error: sync interval must be at least 1 minute[/red]")
        raise SystemExit(1)
    if not settings.is_complete:
        console.print(
            "[red]Error: storage not configured. Run 'vaultsync setup' first.[/red]"
        )
        raise SystemExit(1)

    engine = _build_engine(store, settings, console)
    auto_sync = AutoSync(engine)
    _apply_settings(auto_sync, settings, interval)
    if auto_sync.running:
        console.print(
            f"[cyan]Syncing every {auto_sync.interval_minutes} minute(s). "
            "Press Ctrl+C to stop.[/cyan]"
        )
    else:
        console.print(
            "[yellow]Auto sync is off. Waiting for auto_sync_enabled and "
            "auto_sync_interval in the settings. Press Ctrl+C to stop.[/yellow]"
        )
    try:
        while True:
            time.sleep(SETTINGS_POLL_SECONDS)
            settings = _reload_settings(auto_sync, config_path, settings, interval)
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopping auto sync[/yellow]")
    finally:
        auto_sync.stop()
        engine.uploader.close()


def setup(
    *,
    access_key_id: Annotated[str, cyclopts.Parameter(help="OSS access key ID")],
    access_key_secret: Annotated[
        str,
        cyclopts.Parameter(help="OSS access key secret, or ${ENV_VAR} to read it from the environment"),
    ],
    bucket: Annotated[str, cyclopts.Parameter(help="Bucket name")],
    endpoint: Annotated[
        Optional[str], cyclopts.Parameter(help="Endpoint, without the bucket name")
    ] = None,
    prefix: Annotated[Optional[str], cyclopts.Parameter(help="Object key prefix")] = None,
    vault: VaultOption = Path("."),
):
    """Configure object storage credentials for a vault.

    Example:
        vaultsync setup --access-key-id LTAI... --access-key-secret '${OSS_SECRET}' --bucket my-bucket
    """
    console = _get_console()
    store = _local_vault(vault, console)
    config_path = default_config_path(store.root)

    # Keep ${VAR} references unexpanded on disk
    settings = SyncSettings.load(config_path, expand=False)
    settings.access_key_id = access_key_id
    settings.access_key_secret = access_key_secret
    settings.bucket = bucket
    if endpoint:
        settings.endpoint = endpoint
    if prefix:
        settings.prefix = prefix
    settings.save(config_path)

    console.print(
        Panel(
            Text.assemble(
                ("✓ ", "green bold"),
                ("Object storage configured\n\n", "green"),
                ("Bucket: ", "cyan"),
                (settings.bucket, "white"),
                ("\n"),
                ("Endpoint: ", "cyan"),
                (settings.endpoint, "white"),
                ("\n"),
                ("Config: ", "cyan"),
                (str(config_path), "white"),
            ),
            title="Setup Complete",
            border_style="green",
        )
    )


def status(*, vault: VaultOption = Path(".")):
    """Show settings and what the next sync would do, without changing anything.

    Example:
        vaultsync status --vault ~/notes
    """
    console = _get_console()
    store, settings, config_path = _open_vault(vault, console)

    table = Table(title="Attachment Sync Status", show_header=False, box=None)
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")

    table.add_row("Config", str(config_path))
    table.add_row("Configured", "✓ Yes" if settings.is_complete else "✗ No")
    if not settings.is_complete:
        table.add_row("Missing", ", ".join(settings.missing_fields()))
    table.add_row("Bucket", settings.bucket or "-")
    table.add_row("Endpoint", settings.endpoint)
    table.add_row("Attachment Folder", settings.attachment_folder)
    table.add_row(
        "Auto Sync",
        f"every {settings.auto_sync_interval} min"
        if settings.auto_sync_enabled and settings.auto_sync_interval > 0
        else "off",
    )

    if store.folder_exists(settings.attachment_folder):
        candidates = collect_candidates(store, settings)
        referenced, unreferenced = ReferenceResolver(
            store, settings.attachment_folder
        ).partition(candidates)
        table.add_row("Pending Upload", str(len(referenced)))
        table.add_row("Unreferenced", str(len(unreferenced)))
    else:
        table.add_row("Attachments", "[red]folder not found[/red]")
    table.add_row("Journal", _journal_summary(SyncJournal(store.root / CONFIG_DIR_NAME)))

    console.print(table)


def log(
    *,
    vault: VaultOption = Path("."),
    limit: Annotated[int, cyclopts.Parameter(help="Number of entries to show")] = 20,
    failed: Annotated[bool, cyclopts.Parameter(help="Only show failures")] = False,
):
    """Show recent entries from the sync journal.

    Example:
        vaultsync log --limit 50
    """
    console = _get_console()
    store = _local_vault(vault, console)
    journal = SyncJournal(store.root / CONFIG_DIR_NAME)

    entries = (
        journal.get_failed_operations()[-limit:][::-1]
        if failed
        else journal.get_recent_operations(limit)
    )
    if not entries:
        console.print("[yellow]No sync operations recorded[/yellow]")
        return

    table = Table(title="Sync Journal")
    table.add_column("Time", style="dim")
    table.add_column("Operation", style="cyan")
    table.add_column("Path")
    table.add_column("Status")
    table.add_column("Detail")

    for entry in entries:
        color = {"success": "green", "failed": "red"}.get(entry.status, "yellow")
        detail = entry.error or entry.metadata.get("url", "")
        table.add_row(
            entry.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            entry.op_type,
            entry.path,
            f"[{color}]{entry.status}[/{color}]",
            str(detail),
        )

    console.print(table)
    console.print(f"[dim]{_journal_summary(journal)}[/dim]")


@config_app.command
def show(*, vault: VaultOption = Path(".")):
    """Print the vault's sync settings (secrets masked)."""
    console = _get_console()
    _, settings, config_path = _open_vault(vault, console)

    table = Table(title=str(config_path), show_header=False, box=None)
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")
    for key, value in settings.to_dict().items():
        if key == "access_key_secret":
            value = _mask(value)
        table.add_row(key, str(value))
    console.print(table)


@config_app.command(name="set")
def set_value(
    key: Annotated[str, cyclopts.Parameter(help="Setting name, e.g. keep_local_file")],
    value: Annotated[str, cyclopts.Parameter(help="New value")],
    *,
    vault: VaultOption = Path("."),
):
    """Change one setting.

    Example:
        vaultsync config set auto_sync_interval 5
    """
    console = _get_console()
    store = _local_vault(vault, console)
    config_path = default_config_path(store.root)
    settings = SyncSettings.load(config_path, expand=False)

    try:
        settings.set_value(key, value)
    except (KeyError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise SystemExit(1)

    settings.save(config_path)
    console.print(f"[green]✓ {key} = {getattr(settings, key)}[/green]")
