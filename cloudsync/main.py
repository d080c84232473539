#!/usr/bin/env python3
"""CLI entry point for the cloud sync engine."""

import argparse
import json
import logging
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.prompt import Confirm, Prompt
from rich.table import Table

from .core.auth import AuthCancelledError, AuthError, SessionMonitor
from .core.client import RemoteIOError
from .core.encryption import DecryptionError, EnvelopeFormatError, decrypt, encrypt, is_envelope
from .core.local import JsonFileReplica
from .core.operations import (
    Resolution,
    SyncError,
    SyncOrchestrator,
    SyncResult,
    read_backup,
)
from .core.state import SyncState
from .models.config import SyncConfig
from .models.snapshot import format_file_size

console = Console()

DEFAULT_CONFIG = Path("cloudsync.yaml")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def _build(args: argparse.Namespace) -> tuple[SyncConfig, SyncOrchestrator]:
    """Load config and wire up the orchestrator over the file-backed replica."""
    config = SyncConfig.load(args.config)
    if args.data:
        config.data_dir = str(args.data)
    state = SyncState(config.state_file)
    replica = JsonFileReplica(config.snapshot_file, state)
    return config, SyncOrchestrator(config, replica, state)


def _ask_password(config: SyncConfig, confirm: bool) -> str | None:
    """Prompt for a password; None if the user gives a too-short one."""
    password = Prompt.ask("Encryption password", password=True, console=console)
    if confirm:
        if len(password) < config.min_password_length:
            console.print(f"[red]Password must be at least {config.min_password_length} characters")
            return None
        if Prompt.ask("Repeat password", password=True, console=console) != password:
            console.print("[red]Passwords do not match")
            return None
    return password


def _load_json(path: Path) -> tuple[bool, Any]:
    """Read a JSON file, printing an error instead of raising."""
    try:
        with open(path) as f:
            return True, json.load(f)
    except OSError as e:
        console.print(f"[red]Cannot read {path}: {e.strerror or e}")
    except ValueError as e:
        console.print(f"[red]{path} is not valid JSON: {e}")
    return False, None


def _fmt(value: object) -> str:
    if value is None:
        return "Never"
    isoformat = getattr(value, "isoformat", None)
    return isoformat(timespec="seconds") if isoformat else str(value)


def _print_result(result: SyncResult) -> None:
    style = "green" if result.success else "yellow"
    console.print(f"[{style}]{result.message}")
    if result.version is not None:
        console.print(f"  Version: {result.version.name}")


def _with_monitor(orchestrator: SyncOrchestrator, action: Callable[[], int]) -> int:
    """Run an action while the session monitor keeps the token fresh."""
    session = orchestrator.session
    if session is None:
        return action()
    with SessionMonitor(orchestrator.manager, session, orchestrator.update_session):
        return action()


# =============================================================================
# Commands
# =============================================================================


def cmd_login(args: argparse.Namespace) -> int:
    """Sign in to the cloud store."""
    _, orchestrator = _build(args)
    console.print("Opening browser for sign in...", style="blue")
    try:
        session = orchestrator.connect()
    except AuthCancelledError:
        console.print("[yellow]Sign in cancelled")
        return 1
    except AuthError as e:
        console.print(f"[red]Sign in failed: {e}")
        return 1

    console.print(f"[green]Signed in as {session.identity.email or 'unknown account'}")
    return 0


def cmd_logout(args: argparse.Namespace) -> int:
    """Forget the stored session."""
    _, orchestrator = _build(args)
    orchestrator.disconnect()
    console.print("[green]Signed out")
    return 0


def cmd_whoami(args: argparse.Namespace) -> int:
    """Show the signed-in account and token lifetime."""
    _, orchestrator = _build(args)
    session = orchestrator.session
    if session is None:
        console.print("[yellow]Not signed in")
        return 1

    valid = orchestrator.manager.is_valid(session)
    console.print(f"[bold]Account:[/bold] {session.identity.email or 'unknown'}")
    if session.identity.display_name:
        console.print(f"[bold]Name:[/bold] {session.identity.display_name}")
    console.print(f"[bold]Token expires:[/bold] {_fmt(session.expires_at)}")
    console.print(f"[bold]Token valid:[/bold] {'[green]Yes' if valid else '[red]No'}")
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Show whether local and cloud data differ."""
    _, orchestrator = _build(args)

    def run() -> int:
        status = orchestrator.get_status()
        console.print(f"\n[bold]Cloud data:[/bold] {'Yes' if status.has_remote_data else 'No'}")
        console.print(f"[bold]Last synced:[/bold] {_fmt(status.local_timestamp)}")
        console.print(f"[bold]Cloud version from:[/bold] {_fmt(status.remote_timestamp)}")
        if status.error:
            console.print(f"[red]Could not read cloud data: {status.error}")
            return 1
        if status.needs_sync:
            console.print("[yellow]Local and cloud data differ")
        else:
            console.print("[green]In sync")
        return 0

    try:
        return _with_monitor(orchestrator, run)
    except (AuthError, RemoteIOError) as e:
        console.print(f"[red]Status check failed: {e}")
        return 1


def cmd_sync(args: argparse.Namespace) -> int:
    """Sync now, asking which copy wins on conflict."""
    _, orchestrator = _build(args)

    def run() -> int:
        result = orchestrator.sync_now()
        if not result.conflict:
            _print_result(result)
            return 0

        console.print(f"[yellow]{result.message}")
        console.print(f"  Local last synced: {_fmt(result.local_timestamp)}")
        console.print(f"  Cloud version from: {_fmt(result.remote_timestamp)}")

        if args.use_local:
            choice = Resolution.USE_LOCAL
        elif args.use_cloud:
            choice = Resolution.USE_CLOUD
        else:
            choice = Prompt.ask(
                "Keep which copy?",
                choices=list(Resolution.ALL),
                default=Resolution.CANCEL,
                console=console,
            )

        resolved = orchestrator.resolve(choice)
        _print_result(resolved)
        return 0 if choice != Resolution.CANCEL else 1

    try:
        return _with_monitor(orchestrator, run)
    except (AuthError, RemoteIOError, SyncError) as e:
        console.print(f"[red]Sync failed: {e}")
        return 1


def cmd_versions(args: argparse.Namespace) -> int:
    """List cloud versions."""
    _, orchestrator = _build(args)
    if args.delete:
        if not args.yes and not Confirm.ask(f"Delete cloud version {args.delete}?", console=console):
            return 1
        try:
            orchestrator.delete_version(args.delete)
        except (AuthError, RemoteIOError, SyncError) as e:
            console.print(f"[red]Delete failed: {e}")
            return 1
        console.print(f"[green]Deleted {args.delete}")
        return 0

    try:
        versions = orchestrator.list_versions()
    except (AuthError, RemoteIOError) as e:
        console.print(f"[red]Failed to list versions: {e}")
        return 1

    if not versions:
        console.print("[yellow]No cloud versions found")
        return 0

    table = Table(title="Cloud Versions")
    table.add_column("Name")
    table.add_column("Modified")
    table.add_column("Size", justify="right")
    for version in versions:
        table.add_row(version.name, version.modified_time, format_file_size(version.size_bytes))
    console.print(table)
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    """Download the latest cloud data to a file."""
    config, orchestrator = _build(args)
    password = None
    if args.encrypt:
        password = _ask_password(config, confirm=True)
        if password is None:
            return 1

    try:
        path = orchestrator.download_backup(args.path, password=password)
    except (AuthError, RemoteIOError, SyncError) as e:
        console.print(f"[red]Export failed: {e}")
        return 1

    console.print(f"[green]Saved cloud data to {path}")
    return 0


def cmd_import(args: argparse.Namespace) -> int:
    """Replace local data with a backup file or a cloud version."""
    config, orchestrator = _build(args)
    if (args.path is None) == (args.version is None):
        console.print("[red]Give either a backup file or --version NAME")
        return 2
    if not args.yes and not Confirm.ask("Replace all local data with this backup?", console=console):
        return 1

    if args.version is not None:
        try:
            result = orchestrator.restore_version(args.version)
        except (AuthError, RemoteIOError, SyncError) as e:
            console.print(f"[red]Import failed: {e}")
            return 1
        _print_result(result)
        return 0

    ok, data = _load_json(args.path)
    if not ok:
        return 1
    password = _ask_password(config, confirm=False) if is_envelope(data) else None

    try:
        orchestrator.restore_backup(args.path, password=password)
    except (DecryptionError, EnvelopeFormatError, SyncError) as e:
        console.print(f"[red]Import failed: {e}")
        return 1

    console.print("[green]Local data restored")
    return 0


def cmd_clear(args: argparse.Namespace) -> int:
    """Delete all cloud data."""
    _, orchestrator = _build(args)
    if not args.yes and not Confirm.ask("Delete ALL cloud versions? This cannot be undone", console=console):
        return 1

    try:
        deleted = orchestrator.clear_remote()
    except (AuthError, RemoteIOError, SyncError) as e:
        console.print(f"[red]Clear failed: {e}")
        return 1

    console.print(f"[green]Deleted {deleted} cloud version(s)")
    return 0


def cmd_encrypt(args: argparse.Namespace) -> int:
    """Encrypt a local JSON file."""
    config = SyncConfig.load(args.config)
    ok, payload = _load_json(args.input)
    if not ok:
        return 1

    password = _ask_password(config, confirm=True)
    if password is None:
        return 1

    with open(args.output, "w") as f:
        json.dump(encrypt(payload, password).to_dict(), f, indent=2)
        f.write("\n")
    console.print(f"[green]Encrypted {args.input} -> {args.output}")
    return 0


def cmd_decrypt(args: argparse.Namespace) -> int:
    """Decrypt an envelope file."""
    config = SyncConfig.load(args.config)
    ok, data = _load_json(args.input)
    if not ok:
        return 1

    if not is_envelope(data):
        console.print(f"[red]{args.input} is not an encrypted file")
        return 1

    password = _ask_password(config, confirm=False)
    try:
        payload = decrypt(data, password or "")
    except (DecryptionError, EnvelopeFormatError) as e:
        console.print(f"[red]{e}")
        return 1

    with open(args.output, "w") as f:
        json.dump(payload, f, indent=2)
        f.write("\n")
    console.print(f"[green]Decrypted {args.input} -> {args.output}")
    return 0


def cmd_show_backup(args: argparse.Namespace) -> int:
    """Summarize a backup file without applying it."""
    config = SyncConfig.load(args.config)
    ok, data = _load_json(args.path)
    if not ok:
        return 1
    password = _ask_password(config, confirm=False) if is_envelope(data) else None

    try:
        snapshot = read_backup(args.path, password)
    except (DecryptionError, EnvelopeFormatError, SyncError) as e:
        console.print(f"[red]{e}")
        return 1

    table = Table(title=f"Backup {args.path}")
    table.add_column("Collection")
    table.add_column("Items", justify="right")
    for label, items in (
        ("Vehicles", snapshot.vehicles),
        ("Clients", snapshot.clients),
        ("Entries", snapshot.entries),
        ("Invoices", snapshot.invoices),
    ):
        table.add_row(label, str(len(items)))
    console.print(table)
    console.print(f"[bold]Synced at:[/bold] {snapshot.synced_at or 'Unknown'}")
    return 0


def main() -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="cloudsync",
        description="Sync local business data with an app-private cloud folder",
    )
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG, help="Config file (default: cloudsync.yaml)")
    parser.add_argument("--data", type=Path, help="Data directory (overrides config)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # session commands
    subparsers.add_parser("login", help="Sign in to the cloud store")
    subparsers.add_parser("logout", help="Forget the stored session")
    subparsers.add_parser("whoami", help="Show the signed-in account")

    # sync commands
    subparsers.add_parser("status", help="Compare local and cloud data")

    sync_parser = subparsers.add_parser("sync", help="Sync now")
    choice_group = sync_parser.add_mutually_exclusive_group()
    choice_group.add_argument("--use-local", action="store_true", help="On conflict, keep the local copy")
    choice_group.add_argument("--use-cloud", action="store_true", help="On conflict, keep the cloud copy")

    versions_parser = subparsers.add_parser("versions", help="List cloud versions")
    versions_parser.add_argument("--delete", metavar="NAME", help="Delete one cloud version")
    versions_parser.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")

    # backup commands
    export_parser = subparsers.add_parser("export", help="Download cloud data to a file")
    export_parser.add_argument("path", type=Path, help="Destination file")
    export_parser.add_argument("--encrypt", action="store_true", help="Protect the file with a password")

    import_parser = subparsers.add_parser("import", help="Replace local data with a backup file or cloud version")
    import_parser.add_argument("path", type=Path, nargs="?", help="Backup file")
    import_parser.add_argument("--version", metavar="NAME", help="Restore this cloud version instead of a file")
    import_parser.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")

    show_parser = subparsers.add_parser("show-backup", help="Summarize a backup file")
    show_parser.add_argument("path", type=Path, help="Backup file")

    clear_parser = subparsers.add_parser("clear", help="Delete all cloud data")
    clear_parser.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")

    # local encryption commands
    encrypt_parser = subparsers.add_parser("encrypt", help="Encrypt a JSON file")
    encrypt_parser.add_argument("input", type=Path, help="JSON file to encrypt")
    encrypt_parser.add_argument("output", type=Path, help="Envelope file to write")

    decrypt_parser = subparsers.add_parser("decrypt", help="Decrypt an envelope file")
    decrypt_parser.add_argument("input", type=Path, help="Envelope file")
    decrypt_parser.add_argument("output", type=Path, help="JSON file to write")

    args = parser.parse_args()
    _configure_logging(args.verbose)

    commands: dict[str, Callable[[argparse.Namespace], int]] = {
        "login": cmd_login,
        "logout": cmd_logout,
        "whoami": cmd_whoami,
        "status": cmd_status,
        "sync": cmd_sync,
        "versions": cmd_versions,
        "export": cmd_export,
        "import": cmd_import,
        "show-backup": cmd_show_backup,
        "clear": cmd_clear,
        "encrypt": cmd_encrypt,
        "decrypt": cmd_decrypt,
    }

    command = commands.get(args.command)
    if command is None:
        parser.print_help()
        return 1
    return command(args)


if __name__ == "__main__":
    sys.exit(main())
