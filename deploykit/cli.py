import logging
import sys

import click
from rich.console import Console
from rich.logging import RichHandler

from deploykit import __version__
from deploykit.commands.deploy import register_deploy_commands
from deploykit.commands.plan import register_plan_commands
from deploykit.settings import SettingsError, load_settings


def configure_logging(level: int):
    """Send library logs to stderr through rich"""
    root = logging.getLogger("deploykit")
    root.handlers = [RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=True)]
    root.setLevel(level)
    root.propagate = False


@click.group()
@click.version_option(__version__, prog_name="deploykit")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def deploykit_cli_group(ctx, verbose):
    """Dependency-aware batch deployment for contract workspaces"""
    try:
        settings = load_settings()
    except SettingsError as e:
        click.echo(f"ERROR: {e}", err=True)
        sys.exit(2)

    configure_logging(logging.DEBUG if verbose else settings.log_level_number)
    ctx.obj = settings


register_plan_commands(deploykit_cli_group)
register_deploy_commands(deploykit_cli_group)


if __name__ == '__main__':
    deploykit_cli_group()
