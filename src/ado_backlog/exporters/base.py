"""Exporter base class and shared output handling."""

from __future__ import annotations

import logging
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from ado_backlog.backlog import Backlog
from ado_backlog.render import AttachmentResolver, TemplateRenderer
from ado_backlog.templates import TemplateRegistry

logger = logging.getLogger(__name__)


class OutputError(OSError):
    """An output destination cannot be written with the given options."""


@dataclass(frozen=True)
class ExporterOptions:
    overwrite: bool = False
    mkdir: bool = False


def prepare_output(output: Path, options: ExporterOptions, *, is_dir: bool = False) -> None:
    """Make ``output`` writable before anything is written to it.

    The parent folder must exist unless ``mkdir`` is set. An existing
    destination is removed when ``overwrite`` is set and is an error otherwise.

    Raises:
        OutputError: If the parent folder or the destination rule is violated.
    """
    folder = output.parent
    if not folder.exists():
        if not options.mkdir:
            msg = (
                f"Output folder '{folder}' does not exist. Create it beforehand or set "
                f"mkdir = true on the output in the config file."
            )
            raise OutputError(msg)
        folder.mkdir(parents=True, exist_ok=True)

    if output.exists():
        if not options.overwrite:
            kind = "folder" if is_dir else "file"
            msg = (
                f"Output {kind} '{output}' already exists. Pass --overwrite to replace it, "
                f"or set overwrite = true on the output in the config file."
            )
            raise OutputError(msg)
        logger.debug("Removing existing output %s", output)
        if output.is_dir():
            shutil.rmtree(output)
        else:
            output.unlink()


class Exporter(ABC):
    """Writes one backlog to one kind of destination.

    Exporters are created once per backlog and may be run for several
    destinations.
    """

    name: str

    def __init__(
        self,
        backlog: Backlog,
        templates: TemplateRegistry,
        attachments: AttachmentResolver | None = None,
    ) -> None:
        self.backlog = backlog
        self.templates = templates
        self.renderer = TemplateRenderer(backlog, templates, attachments)

    @abstractmethod
    def accepts(self, output: str) -> bool:
        """Whether this exporter handles ``output`` when no format is given."""

    @abstractmethod
    async def run(self, output: Path, options: ExporterOptions) -> None: ...
