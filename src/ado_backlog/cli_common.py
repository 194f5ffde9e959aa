"""Shared CLI helpers used by ``cli_commands/*.py``."""

from __future__ import annotations

import sys
from pathlib import Path

import click

from ado_backlog.config import STATE_DIR_NAME, AppConfig, load_config
from ado_backlog.logging import setup_logging
from ado_backlog.schema import ConfigError


def state_dir_for(config_path: Path) -> Path:
    """The .ado-backlog/ folder next to a configuration file."""
    return config_path.resolve().parent / STATE_DIR_NAME


def get_config(config_path: Path, debug: bool = False) -> AppConfig:
    """Load the configuration and set up logging, or exit with an error."""
    try:
        config = load_config(config_path)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    setup_logging(state_dir_for(config_path), debug=debug or config.debug)
    return config
