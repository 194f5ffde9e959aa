"""End-to-end export of one backlog: fetch, build, render.

Each phase logs its duration in milliseconds (``duration_ms``) so slow
queries and renders show up in the structured log.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import replace
from pathlib import Path

import httpx

from ado_backlog.azure import AzureClient, combine_wiql
from ado_backlog.backlog import Backlog
from ado_backlog.config import AppConfig, BacklogConfig, OutputConfig, QueryConfig
from ado_backlog.exporter_manager import ExporterManager
from ado_backlog.exporters import ExporterOptions
from ado_backlog.schema import ConfigError
from ado_backlog.templates import TemplateRegistry
from ado_backlog.tree import build_content
from ado_backlog.types import ProjectRecord

logger = logging.getLogger(__name__)


def _elapsed_ms(start: float) -> float:
    return round((time.monotonic() - start) * 1000, 1)


async def fetch_views(client: AzureClient, project: ProjectRecord, backlog_config: BacklogConfig) -> dict[str, list[int]]:
    """Run each view query; WIQL views of a WIQL backlog are restricted to the backlog."""
    views: dict[str, list[int]] = {}
    for view in backlog_config.views:
        query = view.query
        if backlog_config.query.query is not None and view.query.query is not None:
            query = QueryConfig(query=combine_wiql(view.query.query, backlog_config.query.query))
        logger.info("Downloading query results for view %s", view.name, extra={"backlog": backlog_config.name})
        views[view.name] = await client.get_query_results(project, query)
    return views


async def fetch_backlog(client: AzureClient, config: AppConfig, backlog_config: BacklogConfig) -> Backlog:
    extra = {"backlog": backlog_config.name}
    project = await client.get_project_by_name(backlog_config.project)

    start = time.monotonic()
    records = await client.get_query_work_items(project, backlog_config.query)
    logger.info("Downloaded %d work items", len(records), extra={**extra, "duration_ms": _elapsed_ms(start)})

    start = time.monotonic()
    forest = await build_content(
        records,
        backlog_config.content,
        fetch=client.get_work_items_by_id,
        defaults=backlog_config.content_defaults,
    )
    logger.info("Built content tree", extra={**extra, "duration_ms": _elapsed_ms(start)})

    start = time.monotonic()
    work_item_types = await client.get_work_item_types(project["id"])
    state_colors = await client.get_work_item_states(project, backlog_config.all_work_item_types())
    views = await fetch_views(client, project, backlog_config)
    logger.info("Downloaded work item metadata and views", extra={**extra, "duration_ms": _elapsed_ms(start)})

    return Backlog(
        work_item_types,
        state_colors,
        backlog_config,
        config.toc,
        forest,
        views=views,
        work_items_config=config.work_items,
    )


def resolve_outputs(
    backlog_config: BacklogConfig,
    output: str | None = None,
    format: str | None = None,
    overwrite: bool = False,
) -> list[OutputConfig]:
    """Outputs to write: ``output`` replaces the configured ones; ``overwrite`` applies to all."""
    if output is not None:
        return [OutputConfig(path=output, format=format, overwrite=overwrite, mkdir=True)]
    if not backlog_config.outputs:
        msg = f"Backlog '{backlog_config.name}' has no outputs configured; add [[backlogs.outputs]] or pass --output"
        raise ConfigError(msg)
    return [
        replace(o, overwrite=o.overwrite or overwrite, format=format if format is not None else o.format)
        for o in backlog_config.outputs
    ]


async def export_backlog(
    client: AzureClient,
    config: AppConfig,
    backlog_config: BacklogConfig,
    outputs: Sequence[OutputConfig],
) -> list[Path]:
    """Fetch one backlog and write it to every output. Returns the written paths."""
    backlog = await fetch_backlog(client, config, backlog_config)

    async def resolve_attachment(url: str) -> str | None:
        try:
            return await client.download_attachment_data_uri(url)
        except httpx.HTTPError as exc:
            logger.warning("Could not download attachment %s, keeping the link", url, extra={"error": str(exc)})
            return None

    manager = ExporterManager.with_default_formats(
        backlog, backlog_config, TemplateRegistry(config.templates), resolve_attachment
    )
    written: list[Path] = []
    for output in outputs:
        start = time.monotonic()
        path = await manager.run(
            manager.interpolate(output.path),
            output.format,
            ExporterOptions(overwrite=output.overwrite, mkdir=output.mkdir),
        )
        logger.info("Wrote %s", path, extra={"backlog": backlog_config.name, "duration_ms": _elapsed_ms(start)})
        written.append(path)
    return written
