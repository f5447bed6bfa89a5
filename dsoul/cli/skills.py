"""
Skill commands

- dsoul install [-g] [-y] <cid-or-shortname>
- dsoul uninstall <cid-or-shortname>
- dsoul update [-g|--local] [--delete-blocked/--no-delete-blocked]
- dsoul upgrade [-g|--local] [-y]
- dsoul list
- dsoul activate [-g|--local] <cid>
- dsoul deactivate <cid>
- dsoul tag <cid> [--add TAG] [--remove TAG]
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
from rich.markup import escape
from rich.table import Table

from dsoul.cli.common import (
    console,
    err_console,
    handle_errors,
    install_dir,
    run_async,
    short,
    target_dirs,
)
from dsoul.config import load_settings
from dsoul.skills.models import ManifestEntry
from dsoul.skills.provider import entry_date
from dsoul.skills.service import open_service
from dsoul.skills.versions import UpgradeCheck, UpgradeStatus

logger = logging.getLogger(__name__)


def prompt_for_entry(entries: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Let the user pick one of several registry entries for a CID"""
    console.print(f"[yellow]{len(entries)} registry entries found for this CID:[/yellow]")
    for i, entry in enumerate(entries, start=1):
        name = entry.get("name") or entry.get("title") or "(unnamed)"
        author = entry.get("author_name") or entry.get("author") or "unknown"
        date = entry_date(entry) or "undated"
        console.print(f"  {i}. {escape(str(name))} by {escape(str(author))} ({escape(date)})")
    choice = click.prompt("Select entry", type=click.IntRange(1, len(entries)), default=1)
    return entries[choice - 1]


@click.command(name="install")
@click.argument("skill")
@click.option("-g", "--global", "use_global", is_flag=True, help="Install into the configured skills folder")
@click.option("-y", "--yes", is_flag=True, help="Do not prompt; pick the oldest registry entry")
@handle_errors
def install_cmd(skill: str, use_global: bool, yes: bool):
    """Install a skill by CID, ipfs:// path or shortname."""
    settings = load_settings()
    target = install_dir(settings, use_global)

    async def _run():
        chooser = None if yes else prompt_for_entry
        async with open_service(settings, chooser=chooser) as service:
            return await service.install(skill, target)

    result = run_async(_run())
    verb = "Reinstalled" if result.reinstalled else "Installed"
    console.print(f"[green]✓[/green] {verb} into {escape(str(result.path))}")
    console.print(f"CID: {result.cid}")
    if result.skipped:
        console.print(f"[yellow]Kept {len(result.skipped)} existing file(s):[/yellow] {escape(', '.join(result.skipped))}")


@click.command(name="uninstall")
@click.argument("skill")
@handle_errors
def uninstall_cmd(skill: str):
    """Remove an installed skill (files, dsoul.json entry and record)."""
    settings = load_settings()
    dirs = target_dirs(settings, use_global=False, use_local=False)

    async def _run():
        async with open_service(settings) as service:
            return await service.uninstall(skill, search_dirs=dirs)

    cid = run_async(_run())
    console.print(f"[green]✓[/green] Uninstalled {cid}")


def _print_check(entry: ManifestEntry, check: UpgradeCheck) -> None:
    label = escape(entry.shortname or entry.cid)
    if check.status == UpgradeStatus.AVAILABLE:
        console.print(f"{label}: upgrade available > {check.latest_cid}")
    elif check.status == UpgradeStatus.UP_TO_DATE:
        console.print(f"{label}: Up to date")
    elif check.status == UpgradeStatus.UNCHECKED:
        console.print(f"{label}: [dim]not checked (no registry reference)[/dim]")
    else:
        console.print(f"{label}: [yellow]could not check ({escape(check.message or 'unknown error')})[/yellow]")


@click.command(name="update")
@click.option("-g", "--global", "use_global", is_flag=True, help="Only the configured skills folder")
@click.option("--local", "use_local", is_flag=True, help="Only ./skills in the current directory")
@click.option(
    "--delete-blocked/--no-delete-blocked",
    "delete_blocked",
    default=None,
    help="Remove installed skills that are on the blocklist (asks when omitted)",
)
@handle_errors
def update_cmd(use_global: bool, use_local: bool, delete_blocked: Optional[bool]):
    """Refresh the blocklist and check installed skills for upgrades."""
    settings = load_settings()
    dirs = target_dirs(settings, use_global, use_local)

    def confirm(directory: Path, entry: ManifestEntry) -> bool:
        return click.confirm(f"Remove blocked skill {entry.cid} from {directory}?", default=False)

    async def _run():
        async with open_service(settings) as service:
            sweep = await service.sweep_blocked(
                dirs,
                delete=bool(delete_blocked),
                confirm=confirm if delete_blocked is None else None,
            )
            reports = await service.check_updates(dirs)
            return sweep, reports

    sweep, reports = run_async(_run())

    console.print(f"Blocklist ({sweep.blocked_count} CIDs)")
    for directory, entry in sweep.found:
        err_console.print(f"[yellow]WARNING:[/yellow] blocked skill {entry.cid} installed in {escape(str(directory))}")
    for cid in sweep.removed:
        console.print(f"[green]✓[/green] Removed blocked skill {cid}")

    removed = set(sweep.removed)
    shown = [r for r in reports if r.entry.cid not in removed]
    if not shown:
        console.print("[dim]No skills installed[/dim]")
    for report in shown:
        _print_check(report.entry, report.check)


@click.command(name="upgrade")
@click.option("-g", "--global", "use_global", is_flag=True, help="Only the configured skills folder")
@click.option("--local", "use_local", is_flag=True, help="Only ./skills in the current directory")
@click.option("-y", "--yes", is_flag=True, help="Upgrade without asking")
@handle_errors
def upgrade_cmd(use_global: bool, use_local: bool, yes: bool):
    """Install the latest version of every skill that has one."""
    settings = load_settings()
    dirs = target_dirs(settings, use_global, use_local)

    def confirm(directory: Path, check: UpgradeCheck) -> bool:
        return click.confirm(f"Upgrade {check.cid} > {check.latest_cid} in {directory}?", default=True)

    async def _run():
        async with open_service(settings, chooser=None if yes else prompt_for_entry) as service:
            return await service.upgrade(dirs, confirm=None if yes else confirm)

    outcomes = run_async(_run())

    upgraded = 0
    for outcome in outcomes:
        check = outcome.check
        if outcome.result is not None:
            upgraded += 1
            console.print(f"[green]✓[/green] {check.cid} > {check.latest_cid} ({escape(str(outcome.result.path))})")
        elif outcome.skipped == "blocked":
            err_console.print(f"[yellow]WARNING:[/yellow] not upgrading {check.cid}: {check.latest_cid} is blocked")
        elif outcome.skipped == "declined":
            console.print(f"[dim]Skipped {check.cid}[/dim]")

    if upgraded:
        console.print(f"[green]Upgraded {upgraded} skill(s)[/green]")
    else:
        console.print("Up to date")


@click.command(name="list")
@handle_errors
def list_cmd():
    """List installed skills."""
    settings = load_settings()

    async def _run():
        async with open_service(settings) as service:
            return service.list_installed()

    records = run_async(_run())
    if not records:
        console.print("[dim]No skills installed[/dim]")
        return

    table = Table(title="Installed skills")
    table.add_column("CID", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Kind")
    table.add_column("Active")
    table.add_column("Location")
    table.add_column("Tags")
    for record in records:
        location = record.installed_path.folder() if record.installed_path else None
        table.add_row(
            record.cid,
            escape(record.display_name()),
            record.kind.value,
            "[green]yes[/green]" if record.active else "no",
            escape(str(location)) if location else "-",
            escape(", ".join(record.tags)) or "-",
        )
    console.print(table)


@click.command(name="activate")
@click.argument("cid")
@click.option("-g", "--global", "use_global", is_flag=True, help="Into the configured skills folder")
@click.option("--local", "use_local", is_flag=True, help="Into ./skills in the current directory")
@handle_errors
def activate_cmd(cid: str, use_global: bool, use_local: bool):
    """Reinstall a tracked skill from its stored copy (no download)."""
    settings = load_settings()
    target = install_dir(settings, use_global) if (use_global or use_local) else None

    async def _run():
        async with open_service(settings) as service:
            return await service.activate(cid, target)

    result = run_async(_run())
    console.print(f"[green]✓[/green] Activated {cid} in {escape(str(result.path))}")


@click.command(name="deactivate")
@click.argument("cid")
@handle_errors
def deactivate_cmd(cid: str):
    """Remove a skill's files but keep it tracked."""
    settings = load_settings()

    async def _run():
        async with open_service(settings) as service:
            return service.deactivate(cid)

    record = run_async(_run())
    console.print(f"[green]✓[/green] Deactivated {escape(record.display_name())} ({short(record.cid, 20)})")


@click.command(name="tag")
@click.argument("cid")
@click.option("--add", "add", multiple=True, help="Tag to add (repeatable)")
@click.option("--remove", "remove", multiple=True, help="Tag to remove (repeatable)")
@handle_errors
def tag_cmd(cid: str, add: tuple, remove: tuple):
    """Show or edit a skill's tags."""
    settings = load_settings()

    async def _run():
        async with open_service(settings) as service:
            return service.set_tags(cid, add=add, remove=remove)

    record = run_async(_run())
    console.print(f"{record.cid}: {escape(', '.join(record.tags)) or '[dim]no tags[/dim]'}")
