#!/usr/bin/env python3
"""Command Line Interface for Stowage"""

import sys
from datetime import datetime
from typing import Any, cast

import click
from rich.console import Console
from rich.table import Table

from stowage.core.backup_engine import STATE_DIR, BackupEngine
from stowage.core.config_manager import ConfigManager
from stowage.core.encryption import EncryptionService
from stowage.core.errors import StowageError
from stowage.core.git_sync import GitSync
from stowage.core.models import SyncResult
from stowage.core.remote_api import RemoteAPIClient
from stowage.core.restore import RestoreOrchestrator
from stowage.utils.logging_setup import setup_logging
from stowage.utils.notifications import NotificationManager
from stowage.utils.scheduler import AutoBackupScheduler

console = Console()


def _build(ctx: click.Context, name: str) -> Any:
    if name == "config":
        config = ConfigManager(ctx.obj["config_dir"])
        setup_logging(config.project_root / STATE_DIR / "logs")
        return config
    if name == "notifier":
        return NotificationManager()
    if name == "backup_engine":
        return BackupEngine(_get(ctx, "config"), notifier=_get(ctx, "notifier"))
    if name == "restore":
        return RestoreOrchestrator(_get(ctx, "config"), notifier=_get(ctx, "notifier"))
    if name == "remote":
        return RemoteAPIClient.from_config(_get(ctx, "config"))
    if name == "git_sync":
        return GitSync(_get(ctx, "config"))
    raise KeyError(name)


def _get(ctx: click.Context, name: str) -> Any:
    """Lazily build components on first use; all share one ConfigManager"""
    components = ctx.obj["components"]
    if name not in components:
        try:
            components[name] = _build(ctx, name)
        except StowageError as e:
            console.print(f"[red]✗[/red] {e}")
            sys.exit(1)
    return components[name]


def _format_size(size_bytes: int) -> str:
    if size_bytes >= 1024 * 1024:
        return f"{size_bytes / (1024 * 1024):.1f} MB"
    return f"{size_bytes / 1024:.1f} KB"


def _print_sync(result: SyncResult) -> None:
    """Print a sync result and exit 1 on failure"""
    if result.success:
        console.print(f"[green]✓[/green] {result.message}")
        if result.commit_hash:
            console.print(f"  Commit: {result.commit_hash}")
        if result.simulated:
            console.print("[yellow]Demo configuration: nothing was sent to the remote[/yellow]")
        elif result.commit_hash and not result.pushed and not result.no_changes:
            console.print("[yellow]Push failed; the backup exists locally only[/yellow]")
    else:
        console.print(f"[red]✗[/red] {result.message}")
        if result.error:
            console.print(f"[dim]{result.error}[/dim]")
        sys.exit(1)


@click.group()
@click.option("--config-dir", type=click.Path(file_okay=False), help="Directory holding settings.yaml")
@click.pass_context
def cli(ctx, config_dir):
    """Stowage - project backup, restore and sync"""
    ctx.ensure_object(dict)
    ctx.obj["config_dir"] = config_dir
    ctx.obj.setdefault("components", {})


@cli.command()
@click.option("--description", "-d", help="Description for the backup (reason for creating it)")
@click.pass_context
def backup(ctx, description):
    """Create a local backup of the project"""
    engine = cast("BackupEngine", _get(ctx, "backup_engine"))
    console.print(f"[bold cyan]Backing up '{engine.config.project_name}'...[/bold cyan]")
    if description:
        console.print(f"[dim]Reason: {description}[/dim]")

    result = engine.create_backup(description)
    if not result.success:
        console.print(f"[red]✗[/red] Backup failed: {result.error}")
        sys.exit(1)

    console.print(f"[green]✓[/green] Backup created: {result.backup_id}")
    console.print(f"  Location: {result.path}")
    console.print(f"  Size: {_format_size(result.size_bytes)}")
    if result.manifest:
        console.print(f"  Files: {result.manifest.file_count}")


@cli.command("list")
@click.pass_context
def list_backups(ctx):
    """List available backups, newest first"""
    backups = cast("BackupEngine", _get(ctx, "backup_engine")).list_backups()
    if not backups:
        console.print("[yellow]No backups found[/yellow]")
        sys.exit(1)

    table = Table(title="Backups", show_header=True, header_style="bold magenta")
    table.add_column("#", justify="right")
    table.add_column("ID", style="cyan")
    table.add_column("Type", style="white")
    table.add_column("Size", justify="right")
    table.add_column("Created", style="green")

    for i, item in enumerate(backups, 1):
        table.add_row(
            str(i), item.id, item.kind.value, _format_size(item.size), item.created_at.strftime("%Y-%m-%d %H:%M:%S")
        )

    console.print(table)


@cli.command()
@click.argument("backup_id", required=False)
@click.option("--no-hooks", is_flag=True, help="Skip post-restore install/schema/start hooks")
@click.pass_context
def restore(ctx, backup_id, no_hooks):
    """Restore the project from a backup (prompts when BACKUP_ID is omitted)"""
    orchestrator = cast("RestoreOrchestrator", _get(ctx, "restore"))

    if not backup_id:
        backups = orchestrator.discovery.list_backups()
        if not backups:
            console.print("[red]No backups available to restore[/red]")
            sys.exit(1)

        console.print("[bold]Available backups:[/bold]")
        for i, item in enumerate(backups, 1):
            console.print(f"  {i}. {item.id} [dim]({item.created_at.strftime('%Y-%m-%d %H:%M:%S')})[/dim]")
        choice = click.prompt("Select backup", default=1, type=click.IntRange(1, len(backups)))
        backup_id = str(backups[choice - 1].path)

    console.print("[bold cyan]Restoring...[/bold cyan]")
    result = orchestrator.restore(backup_id, run_hooks=not no_hooks)

    for warning in result.hook_warnings:
        console.print(f"[yellow]⚠ {warning}[/yellow]")
    for path in result.decrypt_failures:
        console.print(f"[yellow]⚠ Could not decrypt {path}[/yellow]")

    if not result.success:
        console.print(f"[red]✗[/red] Restore failed: {result.error}")
        sys.exit(1)

    console.print(f"[green]✓[/green] Restored {result.backup_id}")
    console.print(f"  Files restored: {result.files_restored}")
    console.print(f"  Files decrypted: {result.files_decrypted}")


@cli.command()
@click.argument("backup_id")
@click.pass_context
def verify(ctx, backup_id):
    """Check a backup's manifest and checksum without restoring"""
    try:
        manifest = cast("RestoreOrchestrator", _get(ctx, "restore")).verify(backup_id)
    except StowageError as e:
        console.print(f"[red]✗[/red] {e}")
        sys.exit(1)

    console.print(f"[green]✓[/green] Backup is valid: {manifest.file_count} files, {_format_size(manifest.total_size)}")
    if manifest.checksum:
        console.print(f"  Checksum: {manifest.checksum}")


@cli.command()
@click.option("--force", is_flag=True, help="Overwrite the remote branch if it has diverged")
@click.pass_context
def sync(ctx, force):
    """Snapshot the project to the remote repository via the API"""
    config = cast("ConfigManager", _get(ctx, "config"))
    console.print("[bold cyan]Creating remote snapshot...[/bold cyan]")
    result = cast("RemoteAPIClient", _get(ctx, "remote")).snapshot(config.project_root, force=True if force else None)
    _print_sync(result)
    if result.success and not result.simulated:
        console.print(f"  Files: {result.files_count}")


@cli.command("commit-info")
@click.argument("sha")
@click.pass_context
def commit_info(ctx, sha):
    """Show a commit from the remote repository"""
    try:
        record = cast("RemoteAPIClient", _get(ctx, "remote")).get_commit(sha)
    except StowageError as e:
        console.print(f"[red]✗[/red] {e}")
        sys.exit(1)

    console.print(f"[bold]Commit:[/bold] {record.sha}")
    console.print(f"[bold]Author:[/bold] {record.author}")
    console.print(f"[bold]Date:[/bold] {record.date}")
    console.print(f"[bold]Tree:[/bold] {record.tree_sha}")
    console.print()
    console.print(record.message)


@cli.command("quick-backup")
@click.option("--message", "-m", help="Commit message")
@click.pass_context
def quick_backup(ctx, message):
    """Commit all changes locally (no push)"""
    _print_sync(cast("GitSync", _get(ctx, "git_sync")).quick_backup(message))


@cli.command("push-backup")
@click.option("--message", "-m", help="Commit message")
@click.pass_context
def push_backup(ctx, message):
    """Commit all changes and push to the remote"""
    _print_sync(cast("GitSync", _get(ctx, "git_sync")).push_backup(message))


@cli.command("auto-backup")
@click.option("--interval", type=int, help="Keep running, backing up every N seconds")
@click.pass_context
def auto_backup(ctx, interval):
    """Commit and push if anything changed"""
    git_sync = cast("GitSync", _get(ctx, "git_sync"))
    if not interval:
        _print_sync(git_sync.auto_backup())
        return

    scheduler = AutoBackupScheduler(git_sync, interval_seconds=interval)
    console.print(f"[bold cyan]Auto backup every {interval}s (Ctrl+C to stop)[/bold cyan]")
    scheduler.start()
    try:
        scheduler.wait()
    except KeyboardInterrupt:
        pass
    finally:
        scheduler.stop()
    console.print(f"Completed {scheduler.runs} runs")


@cli.command("git-restore")
@click.option("--yes", is_flag=True, help="Skip the confirmation prompt")
@click.pass_context
def git_restore(ctx, yes):
    """Replace the working tree with the remote branch (irreversible)"""
    git_sync = cast("GitSync", _get(ctx, "git_sync"))
    console.print(
        "[bold red]This discards all uncommitted changes and untracked files and cannot be undone.[/bold red]"
    )
    if not yes and not click.confirm("Continue?", default=False):
        console.print("Cancelled")
        sys.exit(1)
    _print_sync(git_sync.full_restore(confirm=True))


@cli.command()
@click.option("--limit", default=20, help="Number of commits to show")
@click.pass_context
def history(ctx, limit):
    """Show recent git backup commits"""
    records = cast("GitSync", _get(ctx, "git_sync")).history(limit)
    if not records:
        console.print("[yellow]No commit history[/yellow]")
        return

    table = Table(title="History", show_header=True, header_style="bold magenta")
    table.add_column("Commit", style="cyan", width=9)
    table.add_column("Date", style="green")
    table.add_column("Author", style="white")
    table.add_column("Message")

    for record in records:
        date = datetime.fromisoformat(record.date).strftime("%Y-%m-%d %H:%M")
        table.add_row(record.sha[:7], date, record.author, record.message.splitlines()[0] if record.message else "")

    console.print(table)


@cli.command("init-key")
@click.pass_context
def init_key(ctx):
    """Create the encryption key if it does not exist yet"""
    config = cast("ConfigManager", _get(ctx, "config"))
    key_file = config.get_key_file()
    existed = key_file.exists()
    try:
        _ = EncryptionService(key_file).key
    except StowageError as e:
        console.print(f"[red]✗[/red] {e}")
        sys.exit(1)

    if existed:
        console.print(f"[green]✓[/green] Encryption key present at {key_file}")
    else:
        console.print(f"[green]✓[/green] Encryption key created at {key_file}")
        console.print("[yellow]Back this file up separately; backups cannot be decrypted without it[/yellow]")


if __name__ == "__main__":
    cli()
