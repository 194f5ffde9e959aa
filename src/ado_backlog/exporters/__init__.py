"""Output formats for a built backlog."""

from ado_backlog.exporters.base import Exporter, ExporterOptions, OutputError, prepare_output
from ado_backlog.exporters.html import HTMLExporter
from ado_backlog.exporters.json_exporter import JsonExporter
from ado_backlog.exporters.markdown import MarkdownExporter

__all__ = [
    "Exporter",
    "ExporterOptions",
    "HTMLExporter",
    "JsonExporter",
    "MarkdownExporter",
    "OutputError",
    "prepare_output",
]
