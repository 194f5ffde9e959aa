"""JSON exporter: dumps the backlog tree as returned by ``Backlog.to_dict()``."""

from __future__ import annotations

import json
from pathlib import Path

from ado_backlog.exporters.base import Exporter, ExporterOptions, prepare_output
from ado_backlog.utils import write_atomic


class JsonExporter(Exporter):
    name = "json"

    def accepts(self, output: str) -> bool:
        return output.lower().endswith(".json")

    async def run(self, output: Path, options: ExporterOptions) -> None:
        prepare_output(output, options)
        write_atomic(output, json.dumps(self.backlog.to_dict(), indent=4, default=str))
