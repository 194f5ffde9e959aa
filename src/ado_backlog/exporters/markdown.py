"""Markdown exporter: one folder tree mirroring the content tree.

Each work item becomes ``<id> - <title>.md``; the children of a work item are
written in a sibling folder with the same base name.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from markdownify import ATX, markdownify

from ado_backlog.exporters.base import Exporter, ExporterOptions, prepare_output
from ado_backlog.model import FIELD_DESCRIPTION, BacklogWorkItem
from ado_backlog.utils import sanitize_filename

logger = logging.getLogger(__name__)


def html_to_markdown(html: str) -> str:
    if not html:
        return ""
    result = markdownify(html, heading_style=ATX, bullets="-")
    # markdownify can leave runs of blank lines around block elements
    return re.sub(r"\n{3,}", "\n\n", result).strip()


class MarkdownExporter(Exporter):
    name = "markdown"

    def accepts(self, output: str) -> bool:
        # Directory targets are ambiguous; markdown must be selected by format
        return False

    async def run(self, output: Path, options: ExporterOptions) -> None:
        prepare_output(output, options, is_dir=True)
        output.mkdir()
        for wi in self.backlog.work_items:
            self.write_work_item(wi, output)

    def write_work_item(self, wi: BacklogWorkItem, folder: Path) -> None:
        base_name = f"{wi.id} - {sanitize_filename(wi.title)}"
        self.write_work_item_file(wi, folder / f"{base_name}.md")

        if wi.has_children:
            child_folder = folder / base_name
            child_folder.mkdir()
            for child in wi.children:
                self.write_work_item(child, child_folder)

    def write_work_item_file(self, wi: BacklogWorkItem, path: Path) -> None:
        contents = f"# {wi.id} - {wi.title}\n"
        description = html_to_markdown(str(wi.fields.get(FIELD_DESCRIPTION) or ""))
        if description:
            contents += f"\n{description}\n"
        logger.debug("Writing %s", path)
        path.write_text(contents, encoding="utf-8")
