"""CLI command: download backlogs and write their outputs."""

from __future__ import annotations

import asyncio
import logging
import sys
import time
from pathlib import Path

import click
import httpx

from ado_backlog.azure import AzureClient, AzureClientError
from ado_backlog.cache import Cache
from ado_backlog.cli_common import get_config
from ado_backlog.config import DEFAULT_CONFIG_FILENAME, AppConfig, BacklogConfig
from ado_backlog.model import ContentTreeError
from ado_backlog.pipeline import export_backlog, resolve_outputs
from ado_backlog.schema import ConfigError

logger = logging.getLogger(__name__)

# Expected failures of one backlog, reported by their message alone
BACKLOG_ERRORS = (ConfigError, ContentTreeError, AzureClientError, OSError, httpx.HTTPError)


def _select_backlogs(config: AppConfig, names: tuple[str, ...]) -> list[BacklogConfig]:
    if not names:
        return list(config.backlogs)
    selected = []
    for name in names:
        backlog = config.find_backlog(name)
        if backlog is None:
            click.echo(f"Error: No backlog named '{name}' in the configuration file", err=True)
            sys.exit(1)
        selected.append(backlog)
    return selected


async def _download(
    config: AppConfig,
    backlogs: list[BacklogConfig],
    output: str | None,
    output_format: str | None,
    overwrite: bool,
) -> list[str]:
    """Export each backlog in turn and return the names of those that failed."""
    failed: list[str] = []
    cache = Cache(config.cache.mode, config.api.organization_url, config.cache.path)
    try:
        async with AzureClient(config.api, cache) as client:
            for backlog_config in backlogs:
                click.echo(f"Downloading backlog '{backlog_config.name}'...")
                start = time.monotonic()
                try:
                    outputs = resolve_outputs(backlog_config, output, output_format, overwrite)
                    written = await export_backlog(client, config, backlog_config, outputs)
                except Exception as e:
                    # Any failure aborts this backlog only; the remaining backlogs are still exported
                    error = str(e) if isinstance(e, BACKLOG_ERRORS) else f"{type(e).__name__}: {e}"
                    logger.error(
                        "Export of backlog %s failed",
                        backlog_config.name,
                        exc_info=True,
                        extra={"backlog": backlog_config.name, "error": error},
                    )
                    click.echo(f"Error: {backlog_config.name}: {error}", err=True)
                    failed.append(backlog_config.name)
                    continue
                logger.info(
                    "Exported backlog %s",
                    backlog_config.name,
                    extra={"backlog": backlog_config.name, "duration_ms": round((time.monotonic() - start) * 1000, 1)},
                )
                for path in written:
                    click.echo(f"  Wrote {path}")
    finally:
        cache.flush()
    return failed


@click.command()
@click.argument("backlog_names", metavar="[BACKLOG]...", nargs=-1)
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=DEFAULT_CONFIG_FILENAME,
    show_default=True,
    help="Configuration file",
)
@click.option("--output", "-o", default=None, help="Write to this path instead of the configured outputs")
@click.option("--format", "output_format", default=None, help="Exporter to use (html, json, markdown)")
@click.option("--overwrite", is_flag=True, help="Replace existing output files")
@click.option("--debug", is_flag=True, help="Log debug messages")
def download(
    backlog_names: tuple[str, ...],
    config_path: Path,
    output: str | None,
    output_format: str | None,
    overwrite: bool,
    debug: bool,
) -> None:
    """Download backlogs and export them (all configured backlogs when none is named)."""
    config = get_config(config_path, debug)
    backlogs = _select_backlogs(config, backlog_names)
    if output is not None and len(backlogs) > 1 and "{" not in output:
        click.echo("Error: --output must contain a placeholder such as {backlog.name} when exporting several backlogs", err=True)
        sys.exit(1)

    failed = asyncio.run(_download(config, backlogs, output, output_format, overwrite))
    if failed:
        click.echo(f"{len(failed)} of {len(backlogs)} backlogs failed: {', '.join(failed)}", err=True)
        sys.exit(1)
    click.echo(f"Exported {len(backlogs)} backlog(s)")


def register(cli: click.Group) -> None:
    """Register download command with the CLI."""
    cli.add_command(download)
