"""Chooses an exporter for each output destination of a backlog."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from ado_backlog.backlog import Backlog
from ado_backlog.config import BacklogConfig, interpolate
from ado_backlog.exporters import Exporter, ExporterOptions, HTMLExporter, JsonExporter, MarkdownExporter
from ado_backlog.render import AttachmentResolver
from ado_backlog.schema import ConfigError
from ado_backlog.templates import TemplateRegistry

logger = logging.getLogger(__name__)

DEFAULT_EXPORTERS: tuple[type[Exporter], ...] = (HTMLExporter, JsonExporter, MarkdownExporter)


class ExporterManager:
    def __init__(
        self,
        backlog: Backlog,
        backlog_config: BacklogConfig,
        templates: TemplateRegistry,
        attachments: AttachmentResolver | None = None,
    ) -> None:
        self.backlog = backlog
        self.backlog_config = backlog_config
        self.templates = templates
        self.attachments = attachments
        self.formats: list[Exporter] = []

    @classmethod
    def with_default_formats(
        cls,
        backlog: Backlog,
        backlog_config: BacklogConfig,
        templates: TemplateRegistry,
        attachments: AttachmentResolver | None = None,
    ) -> ExporterManager:
        manager = cls(backlog, backlog_config, templates, attachments)
        for exporter_class in DEFAULT_EXPORTERS:
            manager.add_format(exporter_class)
        return manager

    def add_format(self, exporter_class: type[Exporter]) -> Exporter:
        exporter = exporter_class(self.backlog, self.templates, self.attachments)
        self.formats.append(exporter)
        return exporter

    def interpolate(self, output_template: str, now: datetime | None = None) -> str:
        return interpolate(output_template, {"backlog": self.backlog_config, "now": now or datetime.now()})

    def find_exporter(self, output: str, format: str | None = None) -> Exporter | None:
        """An explicit format wins; otherwise the first exporter accepting the path."""
        if format is not None:
            return next((e for e in self.formats if e.name == format), None)
        return next((e for e in self.formats if e.accepts(output)), None)

    async def run(self, output: str, format: str | None = None, options: ExporterOptions | None = None) -> Path:
        """Export to ``output`` (already interpolated) and return the written path.

        Raises:
            ConfigError: If no exporter handles the format or destination.
        """
        exporter = self.find_exporter(output, format)
        if exporter is None:
            if format is not None:
                msg = f"No exporter found for output format '{format}'"
            else:
                msg = f"No exporter found for output '{output}'"
            raise ConfigError(msg)

        logger.info("Exporting to %s with exporter %s", output, exporter.name, extra={"backlog": self.backlog_config.name})
        path = Path(output)
        await exporter.run(path, options or ExporterOptions())
        return path
