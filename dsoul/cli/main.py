"""CLI main entry point"""

import click

from dsoul import __version__
from dsoul.logging_utils import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="dsoul")
def cli():
    """dsoul - install verified skills from IPFS

    Every download is hashed and checked against its CID before anything
    is written to disk.
    """
    setup_logging()


# Import subcommands
from dsoul.cli.config import config_cmd
from dsoul.cli.skills import (
    activate_cmd,
    deactivate_cmd,
    install_cmd,
    list_cmd,
    tag_cmd,
    uninstall_cmd,
    update_cmd,
    upgrade_cmd,
)

cli.add_command(install_cmd, name="install")
cli.add_command(uninstall_cmd, name="uninstall")
cli.add_command(update_cmd, name="update")
cli.add_command(upgrade_cmd, name="upgrade")
cli.add_command(config_cmd, name="config")
cli.add_command(list_cmd, name="list")
cli.add_command(activate_cmd, name="activate")
cli.add_command(deactivate_cmd, name="deactivate")
cli.add_command(tag_cmd, name="tag")


if __name__ == "__main__":
    cli()
