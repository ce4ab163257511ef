"""
Command-line entry point.
"""

import logging

import click

from fireseverity import __version__
from fireseverity.cli.commands.events import events
from fireseverity.cli.commands.presets import presets
from fireseverity.config import configure_logging, get_settings

logger = logging.getLogger(__name__)


@click.group("fireseverity")
@click.version_option(__version__, prog_name="fireseverity")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
@click.pass_context
def app(ctx, verbose: bool):
    """Landsat fire-severity compositing tools."""
    settings = get_settings()
    configure_logging("DEBUG" if verbose else settings.log_level)
    ctx.obj = settings


app.add_command(presets)
app.add_command(events)


if __name__ == "__main__":
    app()
