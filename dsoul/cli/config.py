"""dsoul config [KEY [VALUE]]"""

from typing import Optional

import click
from rich.markup import escape

from dsoul.cli.common import console, fail
from dsoul.config import SettingsManager

CONFIG_KEYS = ("dsoul-provider", "skills-folder", "ipfs-gateways")


def _show(manager: SettingsManager, key: Optional[str] = None) -> None:
    settings = manager.load()
    values = {
        "dsoul-provider": settings.dsoul_provider,
        "skills-folder": settings.skills_folder or "(not set)",
        "ipfs-gateways": ", ".join(settings.gateways()),
    }
    if key is not None:
        console.print(escape(values[key]))
        return
    for name, value in values.items():
        console.print(f"[cyan]{name}[/cyan]: {escape(value)}")


@click.command(name="config")
@click.argument("key", required=False, type=click.Choice(CONFIG_KEYS))
@click.argument("value", required=False)
def config_cmd(key: Optional[str], value: Optional[str]):
    """Show or change settings.

    \b
    dsoul config                          show everything
    dsoul config skills-folder ~/skills   set the -g install folder
    dsoul config dsoul-provider URL       set the registry
    dsoul config ipfs-gateways URL[,URL]  set the gateway list
    """
    manager = SettingsManager()

    if key is None or value is None:
        _show(manager, key)
        return

    if key == "dsoul-provider":
        manager.update_provider(value)
    elif key == "skills-folder":
        manager.update_skills_folder(value)
    else:
        try:
            manager.update_gateways(value.split(","))
        except ValueError as e:
            fail(str(e))

    console.print(f"[green]✓[/green] {key} updated")
    _show(manager, key)
