"""CLI for ado-backlog.

Usage:
    ado-backlog init [CONFIG_FILE]                     # Write a starter ado-backlog.toml
    ado-backlog download                               # Export every configured backlog
    ado-backlog download "Team A" -o out/a.html        # Export one backlog to a given file
    ado-backlog download --format json -o backlog.json # Pick the exporter explicitly
"""

from __future__ import annotations

import click

from ado_backlog import __version__
from ado_backlog.cli_commands import download, init


@click.group()
@click.version_option(version=__version__, prog_name="ado-backlog")
def cli() -> None:
    """ado-backlog: export Azure DevOps backlogs as HTML, JSON or Markdown."""


download.register(cli)
init.register(cli)


if __name__ == "__main__":
    cli()
