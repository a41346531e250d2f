"""CLI module for database snapshots and restores.

Provides commands for profile management, snapshot creation and
cataloguing, restore, retention, and integrity validation.

Usage:
    DB_PROFILE=local db-snapshot connect
    db-snapshot status
    db-snapshot profiles
    db-snapshot create
    db-snapshot list
    db-snapshot preview backup_complete_2026-01-15T03-00-00Z.jsonl.gz
    db-snapshot restore backup_complete_2026-01-15T03-00-00Z.jsonl.gz --confirm
    db-snapshot retention --days 14
    db-snapshot validate

Commands:
    connect   - Connect to database and remember the profile
    status    - Show current connection status
    profiles  - List available profiles
    create    - Create a snapshot of the whole database
    list      - List snapshots, newest first
    preview   - Show a snapshot's metadata and first bytes
    delete    - Delete a snapshot
    restore   - Restore the database from a snapshot
    retention - Delete snapshots outside the retention window
    validate  - Run data integrity checks
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from db_snapshot.config.loader import load_db_config
from db_snapshot.config.models import DatabaseConfig
from db_snapshot.engine import SnapshotEngine
from db_snapshot.errors import SnapshotEngineError, SnapshotIntegrityError
from db_snapshot.factory import (
    ProfileNotFoundError,
    build_engine,
    connect_and_validate,
    read_profile_lock,
)

console = Console()

# Errors reported as a one-line failure instead of a traceback
_USER_ERRORS = (SnapshotEngineError, ProfileNotFoundError, KeyError, FileNotFoundError, ValueError)


# ============================================================================
# Helpers
# ============================================================================


def _config_path(args: argparse.Namespace) -> Path | None:
    config = getattr(args, "config", None)
    return Path(config) if config else None


async def _engine_for(args: argparse.Namespace) -> SnapshotEngine:
    return await build_engine(
        profile_name=getattr(args, "profile", None),
        env_prefix=getattr(args, "env_prefix", ""),
        config_path=_config_path(args),
    )


def _print_error(error: Exception) -> None:
    message = error.args[0] if isinstance(error, KeyError) and error.args else error
    console.print(f"[bold red]x[/bold red] {message}")


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_connect(args: argparse.Namespace) -> int:
    """Async implementation for connect command.

    Args:
        args: Parsed arguments with env_prefix, profile and config.

    Returns:
        0 on success, 1 on failure.
    """
    previous_profile = read_profile_lock()

    console.print("Connecting to database...", style="dim")

    result = await connect_and_validate(
        profile_name=getattr(args, "profile", None),
        env_prefix=getattr(args, "env_prefix", ""),
        config_path=_config_path(args),
    )

    if result.success:
        console.print()
        console.print(
            f"[bold green]v[/bold green] Connected to profile: "
            f"[bold cyan]{result.profile_name}[/bold cyan]"
        )
        console.print(f"  Tables: {result.table_count}")

        # Show profile switch notice
        if previous_profile and previous_profile != result.profile_name:
            console.print(
                f"\n[dim]Switched from[/dim] [bold]{previous_profile}[/bold] "
                f"[dim]to[/dim] [bold cyan]{result.profile_name}[/bold cyan]"
            )
        return 0

    console.print()
    console.print(f"[bold red]x[/bold red] {result.error}")
    return 1


async def _async_create(args: argparse.Namespace) -> int:
    """Async implementation for create command."""
    mode = "schemaOnly" if args.schema_only else "full"
    try:
        engine = await _engine_for(args)
        async with engine:
            created = await engine.create_snapshot(mode=mode)
    except SnapshotIntegrityError as e:
        console.print(f"[bold red]x[/bold red] {e}")
        console.print(f"  Artifact kept for inspection: [bold]{e.filename}[/bold]")
        return 1
    except _USER_ERRORS as e:
        _print_error(e)
        return 1

    marker = "[bold green]v[/bold green]" if created["isComplete"] else "[bold yellow]![/bold yellow]"
    console.print(f"{marker} Snapshot created: [bold cyan]{created['filename']}[/bold cyan]")
    console.print(
        f"  {created['tableCount']} tables, {created['totalRows']} rows, {created['sizeFormatted']}"
    )
    for failure in created["failedTables"]:
        console.print(f"  [yellow]Not captured:[/yellow] {failure['table']}: {failure['message']}")
    return 0 if created["isComplete"] else 1


async def _async_list(args: argparse.Namespace) -> int:
    """Async implementation for list command."""
    try:
        engine = await _engine_for(args)
        snapshots = await engine.list_snapshots()
        stats = await engine.catalog_stats()
    except _USER_ERRORS as e:
        _print_error(e)
        return 1

    if not snapshots:
        console.print("[yellow]No snapshots found.[/yellow]")
        return 0

    table = Table(title="Snapshots", show_header=True, header_style="bold")
    table.add_column("Filename")
    table.add_column("Created", style="dim")
    table.add_column("Type")
    table.add_column("Tables", justify="right")
    table.add_column("Rows", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Complete")

    for s in snapshots:
        if s.get("error"):
            complete = "[red]unreadable[/red]"
        elif s["isComplete"]:
            complete = "[green]yes[/green]"
        else:
            complete = "[yellow]no[/yellow]"
        table.add_row(
            s["filename"],
            s["createdAt"],
            s["backupType"] or "",
            str(s["tableCount"]),
            str(s["totalRows"]),
            s["sizeFormatted"],
            complete,
        )

    console.print(table)
    console.print(
        f"\n{stats['totalBackups']} snapshot(s), {stats['totalSizeFormatted']} total, "
        f"oldest {stats['oldestBackup']}, newest {stats['lastBackup']}"
    )
    if stats["latestRestorable"]:
        console.print(f"Latest restorable: {stats['latestRestorable']}")
    else:
        console.print("[yellow]No restorable snapshot in the catalog.[/yellow]")
    return 0


async def _async_preview(args: argparse.Namespace) -> int:
    """Async implementation for preview command."""
    try:
        engine = await _engine_for(args)
        preview = await engine.preview_snapshot(args.filename, max_bytes=args.max_bytes)
    except _USER_ERRORS as e:
        _print_error(e)
        return 1

    metadata = preview["metadata"]
    info = Table(title=preview["filename"], show_header=False)
    info.add_column("Key", style="dim")
    info.add_column("Value")
    info.add_row("Created", str(metadata.get("timestampISO", "")))
    info.add_row("Type", str(metadata.get("backupType", "")))
    info.add_row("Version", str(metadata.get("version", "")))
    info.add_row("Complete", str(metadata.get("isComplete", False)))
    info.add_row("Total rows", str(metadata.get("totalRows", 0)))
    console.print(info)

    tables = Table(show_header=True, header_style="bold")
    tables.add_column("Table")
    tables.add_column("Rows", justify="right")
    for entry in preview["tablesSummary"]:
        tables.add_row(entry["name"], str(entry["rowCount"]))
    console.print(tables)

    if args.content:
        console.print(preview["truncatedContent"], markup=False, highlight=False)
        if preview["truncated"]:
            console.print(f"[dim]... truncated at {args.max_bytes} bytes[/dim]")
    return 0


async def _async_delete(args: argparse.Namespace) -> int:
    """Async implementation for delete command."""
    try:
        engine = await _engine_for(args)
        deleted = await engine.delete_snapshot(args.filename)
    except _USER_ERRORS as e:
        _print_error(e)
        return 1

    if deleted:
        console.print(f"[bold green]v[/bold green] Deleted {args.filename}")
        return 0
    console.print(f"[yellow]Snapshot not found:[/yellow] {args.filename}")
    return 1


async def _async_restore(args: argparse.Namespace) -> int:
    """Async implementation for restore command.

    Without ``--confirm`` only shows what the snapshot holds.  A timed-out
    restore is reported, never retried: the database state must be checked
    by hand against the newest ``pre_restore_`` snapshot.
    """
    try:
        engine = await _engine_for(args)
        preview = await engine.preview_snapshot(args.filename, max_bytes=0)
    except _USER_ERRORS as e:
        _print_error(e)
        return 1

    if not args.confirm:
        table = Table(
            title=f"Restore preview: {args.filename}", show_header=True, header_style="bold"
        )
        table.add_column("Table")
        table.add_column("Rows", justify="right")
        for entry in preview["tablesSummary"]:
            table.add_row(entry["name"], str(entry["rowCount"]))
        console.print(table)
        console.print(
            "\n[yellow]Every listed table will be replaced.[/yellow] "
            "[dim]Run with[/dim] [cyan]--confirm[/cyan] [dim]to restore.[/dim]"
        )
        return 0

    config = DatabaseConfig()
    try:
        config = load_db_config(_config_path(args))
    except FileNotFoundError:
        pass
    except ValueError as e:
        _print_error(e)
        return 1
    timeout = args.timeout
    if timeout is None:
        timeout = config.snapshots.restore_timeout_seconds

    console.print(f"Restoring from [bold cyan]{args.filename}[/bold cyan]...", style="dim")
    try:
        async with engine:
            result = await asyncio.wait_for(engine.restore(args.filename), timeout=timeout)
    except asyncio.TimeoutError:
        console.print(
            f"[bold red]x[/bold red] Restore timed out after {timeout}s. "
            "The database may be partially restored; inspect it manually. "
            "The pre-restore state is in the newest pre_restore_ snapshot."
        )
        return 1
    except _USER_ERRORS as e:
        _print_error(e)
        return 1

    if result["success"]:
        console.print(
            f"[bold green]v[/bold green] Restored {result['tablesRestored']} tables, "
            f"{result['rowsRestored']} rows"
        )
    else:
        console.print(
            f"[bold red]x[/bold red] Restore finished with {len(result['errors'])} error(s); "
            f"{result['tablesRestored']} tables restored"
        )
        for error in result["errors"]:
            console.print(f"  [red]{error['table']}[/red]: {error['message']}")
    for warning in result["warnings"]:
        console.print(f"  [yellow]{warning}[/yellow]")
    if "integrity" in result:
        console.print(f"  Integrity: {result['integrity']['status']}")
    console.print(f"  Safety snapshot: [bold]{result['safetyBackupFilename']}[/bold]")
    return 0 if result["success"] else 1


async def _async_retention(args: argparse.Namespace) -> int:
    """Async implementation for retention command."""
    try:
        engine = await _engine_for(args)
        result = await engine.apply_retention(retention_days=args.days)
    except _USER_ERRORS as e:
        _print_error(e)
        return 1

    console.print(
        f"[bold green]v[/bold green] Deleted {result['deletedCount']} snapshot(s), "
        f"{result['deletedBytesFormatted']} (retention {result['retentionDays']} days)"
    )
    for filename in result["deletedFiles"]:
        console.print(f"  [dim]{filename}[/dim]")
    return 0


async def _async_validate(args: argparse.Namespace) -> int:
    """Async implementation for validate command.

    Returns:
        0 when every check passed, 1 otherwise.
    """
    try:
        engine = await _engine_for(args)
        async with engine:
            report = await engine.validate_integrity()
    except _USER_ERRORS as e:
        _print_error(e)
        return 1

    if args.json:
        console.print_json(json.dumps(report))
        return 0 if report["status"] == "passed" else 1

    table = Table(title="Integrity Checks", show_header=True, header_style="bold")
    table.add_column("Check")
    table.add_column("Result")
    table.add_column("Issues", justify="right")
    for r in report["results"]:
        status = "[green]PASSED[/green]" if r["passed"] else "[red]FAILED[/red]"
        table.add_row(r["check"], status, str(r["issues"]) if "error" not in r else r["error"])
    console.print(table)

    if report["status"] == "passed":
        console.print(
            f"\n[bold green]v[/bold green] {report['passedChecks']}/{report['totalChecks']} checks passed"
        )
        return 0
    console.print(
        f"\n[bold red]x[/bold red] {report['totalChecks'] - report['passedChecks']} check(s) failed, "
        f"{report['totalIssues']} issue(s)"
    )
    return 1


# ============================================================================
# Sync command wrappers
# ============================================================================


def cmd_connect(args: argparse.Namespace) -> int:
    """Connect to database and remember the profile.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_connect(args))


def cmd_status(args: argparse.Namespace) -> int:
    """Show current connection status.

    Reads only local files -- no database calls.

    Returns:
        0 always (informational command).
    """
    profile = read_profile_lock()

    if profile:
        table = Table(title="Connection Status", show_header=False)
        table.add_column("Key", style="dim")
        table.add_column("Value")

        table.add_row("Current profile", f"[bold cyan]{profile}[/bold cyan]")
        table.add_row("Profile source", ".db-profile (connected)")

        try:
            config = load_db_config(_config_path(args))
            if profile in config.profiles:
                p = config.profiles[profile]
                table.add_row("Provider", p.provider)
                if p.description:
                    table.add_row("Description", p.description)
            table.add_row("Snapshot directory", config.snapshots.directory)
            retention = config.retention
            table.add_row(
                "Retention",
                f"{retention.retention_days} days, max {retention.max_snapshots}, "
                f"{'enabled' if retention.enabled else 'disabled'} at {retention.schedule_time}",
            )
        except FileNotFoundError:
            table.add_row("Warning", "[yellow]db.toml not found[/yellow]")

        console.print(table)
    else:
        console.print("[yellow]No connected profile.[/yellow]")
        console.print("[dim]Run:[/dim] [cyan]DB_PROFILE=<name> db-snapshot connect[/cyan]")

    return 0


def cmd_profiles(args: argparse.Namespace) -> int:
    """List available profiles from db.toml.

    Returns:
        0 on success, 1 if db.toml not found.
    """
    try:
        config = load_db_config(_config_path(args))
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    current = read_profile_lock()

    table = Table(title="Database Profiles", show_header=True, header_style="bold")
    table.add_column("", width=2)
    table.add_column("Profile")
    table.add_column("Provider")
    table.add_column("Description")

    for name, profile in config.profiles.items():
        marker = "[bold green]*[/bold green]" if name == current else " "
        name_style = "bold cyan" if name == current else ""
        table.add_row(
            marker,
            f"[{name_style}]{name}[/{name_style}]" if name_style else name,
            profile.provider,
            profile.description or "",
        )

    console.print(table)

    if current:
        console.print("\n[bold green]*[/bold green] = current profile")

    return 0


def cmd_create(args: argparse.Namespace) -> int:
    return asyncio.run(_async_create(args))


def cmd_list(args: argparse.Namespace) -> int:
    return asyncio.run(_async_list(args))


def cmd_preview(args: argparse.Namespace) -> int:
    return asyncio.run(_async_preview(args))


def cmd_delete(args: argparse.Namespace) -> int:
    return asyncio.run(_async_delete(args))


def cmd_restore(args: argparse.Namespace) -> int:
    return asyncio.run(_async_restore(args))


def cmd_retention(args: argparse.Namespace) -> int:
    return asyncio.run(_async_retention(args))


def cmd_validate(args: argparse.Namespace) -> int:
    return asyncio.run(_async_validate(args))


# ============================================================================
# Main entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    """Build the ``db-snapshot`` argument parser."""
    parser = argparse.ArgumentParser(
        prog="db-snapshot",
        description="Database snapshot, restore, and retention toolkit",
    )

    # Global options
    parser.add_argument(
        "--env-prefix",
        default="",
        help=(
            "Prefix for environment variable lookup "
            "(e.g., --env-prefix APP_ reads APP_DB_PROFILE and APP_DATABASE_URL)"
        ),
    )
    parser.add_argument("--profile", default=None, help="Profile name from db.toml")
    parser.add_argument("--config", default=None, help="Path to db.toml (default: ./db.toml)")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log verbosity (default: WARNING)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_connect = subparsers.add_parser("connect", help="Connect to database and remember the profile")
    p_connect.set_defaults(func=cmd_connect)

    p_status = subparsers.add_parser("status", help="Show current connection status")
    p_status.set_defaults(func=cmd_status)

    p_profiles = subparsers.add_parser("profiles", help="List available profiles")
    p_profiles.set_defaults(func=cmd_profiles)

    p_create = subparsers.add_parser("create", help="Create a snapshot of the whole database")
    p_create.add_argument(
        "--schema-only",
        action="store_true",
        help="Capture table definitions and row counts without rows",
    )
    p_create.set_defaults(func=cmd_create)

    p_list = subparsers.add_parser("list", help="List snapshots, newest first")
    p_list.set_defaults(func=cmd_list)

    p_preview = subparsers.add_parser("preview", help="Show a snapshot's metadata and first bytes")
    p_preview.add_argument("filename", help="Snapshot filename")
    p_preview.add_argument(
        "--max-bytes", type=int, default=10_000, help="Content bytes to show (default: 10000)"
    )
    p_preview.add_argument("--content", action="store_true", help="Print the leading content")
    p_preview.set_defaults(func=cmd_preview)

    p_delete = subparsers.add_parser("delete", help="Delete a snapshot")
    p_delete.add_argument("filename", help="Snapshot filename")
    p_delete.set_defaults(func=cmd_delete)

    p_restore = subparsers.add_parser("restore", help="Restore the database from a snapshot")
    p_restore.add_argument("filename", help="Snapshot filename")
    p_restore.add_argument(
        "--confirm",
        action="store_true",
        help="Actually perform the restore (otherwise only preview it)",
    )
    p_restore.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds before giving up (default: restore_timeout_seconds from db.toml)",
    )
    p_restore.set_defaults(func=cmd_restore)

    p_retention = subparsers.add_parser(
        "retention", help="Delete snapshots outside the retention window"
    )
    p_retention.add_argument(
        "--days", type=int, default=None, help="Override retention_days from db.toml"
    )
    p_retention.set_defaults(func=cmd_retention)

    p_validate = subparsers.add_parser("validate", help="Run data integrity checks")
    p_validate.add_argument("--json", action="store_true", help="Print the report as JSON")
    p_validate.set_defaults(func=cmd_validate)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.log_level)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
