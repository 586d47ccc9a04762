"""
Cloud Font CLI — run a font session from the command line.

Each command group lives in its own module and is attached to the main
Click group through a register function.

Entry point: cloudfont.cli:main
"""

from __future__ import annotations

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="cloudfont")
def main():
    """Cloud Font Agent — licensed fonts for this session only."""


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .session import register_session_commands
from .cache import register_cache_commands

register_session_commands(main)
register_cache_commands(main)
