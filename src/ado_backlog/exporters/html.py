"""Single-file HTML exporter.

The document is self-contained: the stylesheet, the script, the type icons
and the brand logos are all inlined, so the file can be shared as is.
"""

from __future__ import annotations

import io
import logging
import mimetypes
import shutil
from datetime import datetime
from pathlib import Path
from typing import TextIO
from urllib.parse import quote

import markdown
from markdown.extensions import Extension

from ado_backlog.backlog import Backlog
from ado_backlog.config import TocValueConfig
from ado_backlog.exporters.base import Exporter, ExporterOptions, prepare_output
from ado_backlog.model import BacklogWorkItem
from ado_backlog.render import (
    COLLAPSE_ICON,
    EXPAND_ICON,
    TAG_ICON,
    AttachmentResolver,
    escape,
    icon_html,
    work_item_icon_html,
)
from ado_backlog.templates import TemplateRegistry
from ado_backlog.utils import to_data_uri, write_atomic

logger = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).resolve().parent.parent / "static"

TAG_ICON_SVG = (
    '<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 512 512"><path d="M497.9 225.9 286.1 14.1A48 48 0 0 0 '
    "252.1 0H48C21.5 0 0 21.5 0 48v204.1a48 48 0 0 0 14.1 33.9l211.9 211.9c18.7 18.7 49.1 18.7 67.9 0l204.1-204.1c18.7-18.7 "
    '18.7-49.1-.1-67.9zM112 160c-26.5 0-48-21.5-48-48s21.5-48 48-48 48 21.5 48 48-21.5 48-48 48z"/></svg>'
)
EXPAND_ICON_SVG = (
    '<svg fill="#000000" viewBox="0 0 16 16" xmlns="http://www.w3.org/2000/svg"><path d="M12.36,1H3.64A2.64,2.64,0,0,0,1,'
    "3.64v8.72A2.64,2.64,0,0,0,3.64,15h8.72A2.64,2.64,0,0,0,15,12.36V3.64A2.64,2.64,0,0,0,12.36,1ZM13.6,12.36a1.25,1.25,0,0,"
    "1-1.24,1.24H3.64A1.25,1.25,0,0,1,2.4,12.36V3.64A1.25,1.25,0,0,1,3.64,2.4h8.72A1.25,1.25,0,0,1,13.6,3.64ZM8.7,4H7.3V7.31H4v1.4H7.3V12H8.7V8.71H12V7.31H8.7Z"
    '"/></svg>'
)
COLLAPSE_ICON_SVG = (
    '<svg fill="#000000" viewBox="0 0 16 16" xmlns="http://www.w3.org/2000/svg"><path d="M12.36,1H3.64A2.64,2.64,0,0,0,1,'
    "3.64v8.72A2.64,2.64,0,0,0,3.64,15h8.72A2.64,2.64,0,0,0,15,12.36V3.64A2.64,2.64,0,0,0,12.36,1ZM13.6,12.36a1.25,1.25,0,0,"
    '1-1.24,1.24H3.64A1.25,1.25,0,0,1,2.4,12.36V3.64A1.25,1.25,0,0,1,3.64,2.4h8.72A1.25,1.25,0,0,1,13.6,3.64ZM4,8.71h8V7.31H4Z"/></svg>'
)

BACK_TO_TOP_SVG = (
    '<svg fill="#000000" viewBox="0 0 24 24" xmlns="http://www.w3.org/2000/svg" style="width: 45px; height: 45px;">'
    '<path d="M5 21h14a2 2 0 0 0 2-2V5a2 2 0 0 0-2-2H5a2 2 0 0 0-2 2v14a2 2 0 0 0 2 2zm7-14 5 5h-4v5h-2v-5H7l5-5z"/></svg>'
)


class _NoIndentedCode(Extension):
    """Indentation in appendixes is layout, not a code block."""

    def extendMarkdown(self, md: markdown.Markdown) -> None:  # noqa: N802
        md.parser.blockprocessors.deregister("code")


def render_markdown(source: str) -> str:
    return markdown.markdown(source, extensions=["tables", _NoIndentedCode()])


def long_date(value: datetime) -> str:
    return f"{value:%A}, {value:%B} {value.day}, {value.year}"


class HTMLExporter(Exporter):
    name = "html"

    def __init__(
        self,
        backlog: Backlog,
        templates: TemplateRegistry,
        attachments: AttachmentResolver | None = None,
    ) -> None:
        super().__init__(backlog, templates, attachments)
        self._last_exported_file: Path | None = None

    def accepts(self, output: str) -> bool:
        return output.lower().endswith((".html", ".htm"))

    async def run(self, output: Path, options: ExporterOptions) -> None:
        prepare_output(output, options)

        # The document only depends on the backlog, later destinations get a copy
        if self._last_exported_file is not None:
            logger.debug("Copying %s to %s", self._last_exported_file, output)
            shutil.copyfile(self._last_exported_file, output)
            return

        buffer = io.StringIO()
        await self.render(buffer)
        write_atomic(output, buffer.getvalue())
        self._last_exported_file = output

    async def render(self, buffer: TextIO, now: datetime | None = None) -> None:
        now = now or datetime.now()
        config = self.backlog.config

        buffer.write('<!doctype html>\n<html lang="en">\n<head>\n<meta charset="UTF-8">\n')
        buffer.write(f"<title>{escape(config.name)}</title>\n")
        buffer.write(f"<style>\n{(STATIC_DIR / 'backlog.css').read_text(encoding='utf-8')}</style>\n")
        self.write_icon_styles(buffer)
        buffer.write("</head>\n<body>\n")

        self.write_brands(buffer)
        self.write_header(buffer, now)
        self.write_views_tabbar(buffer)
        await self.write_table_of_contents(buffer)

        buffer.write('<div class="centered-layout">\n')

        async def write_work_item(wi: BacklogWorkItem, end: bool) -> None:
            await self.renderer.render_work_item(buffer, wi)

        await self.backlog.visit_async(write_work_item)
        self.write_appendixes(buffer)
        buffer.write(f'<a id="back-to-top" href="#top">{BACK_TO_TOP_SVG}</a>\n')
        buffer.write(
            f'<footer style="text-align: center; color: gray">Document generated on {escape(long_date(now))}.</footer>\n'
        )
        buffer.write("</div>\n")

        buffer.write(f"<script>\n{(STATIC_DIR / 'backlog.js').read_text(encoding='utf-8')}</script>\n")
        buffer.write("</body>\n</html>\n")

    # -- Head ---------------------------------------------------------------

    @staticmethod
    def _icon_style(name: str, svg: str) -> str:
        return f'.icon.icon-{name} {{\n    background-image: url("data:image/svg+xml,{quote(svg, safe="")}");\n}}\n'

    def write_icon_styles(self, buffer: TextIO) -> None:
        buffer.write("<style>\n")
        buffer.write(self._icon_style(TAG_ICON, TAG_ICON_SVG))
        buffer.write(self._icon_style(EXPAND_ICON, EXPAND_ICON_SVG))
        buffer.write(self._icon_style(COLLAPSE_ICON, COLLAPSE_ICON_SVG))
        for wit in self.backlog.work_item_types.values():
            if wit.icon:
                buffer.write(self._icon_style("wi-" + wit.slug, wit.icon))
        buffer.write("</style>\n")

    # -- Page header --------------------------------------------------------

    def write_brands(self, buffer: TextIO) -> None:
        brands = self.backlog.config.brands
        if not brands:
            return
        buffer.write('<div class="brands">\n')
        for brand in brands:
            mime_type = mimetypes.guess_type(brand.logo.name)[0] or f"image/{brand.logo.suffix.lstrip('.')}"
            data_uri = to_data_uri(brand.logo.read_bytes(), mime_type)
            buffer.write(f'<div class="brand right"><img src="{data_uri}" /></div>\n')
        buffer.write("</div>\n")

    def write_header(self, buffer: TextIO, now: datetime) -> None:
        buffer.write('<header id="top">\n')
        buffer.write(f"<h1>{escape(self.backlog.config.name)}</h1>\n")
        buffer.write(f'<p style="text-align: center; margin-top: 0;"><small>{escape(long_date(now))}</small></p>\n')
        buffer.write('<p style="text-align: center; margin-top: 0;">')
        for wit in self.backlog.get_distinct_used_work_item_types():
            buffer.write(f'<span title="{escape(wit.name)}">{work_item_icon_html(wit.name)}</span>')
        buffer.write("</p>\n</header>\n")

    def write_views_tabbar(self, buffer: TextIO) -> None:
        views = self.backlog.config.views
        if not views:
            return
        buffer.write('<nav id="views" class="padding-body">\n')
        buffer.write('<p class="views tabbar">\n')
        buffer.write('<a class="tab active" data-tab-context="all">All</a>')
        for view in views:
            ids = ",".join(str(i) for i in sorted(self.backlog.views.get(view.name, ())))
            buffer.write(f'<a class="tab" data-tab-context="{ids}">{escape(view.name)}</a>')
        buffer.write("\n</p>\n")
        buffer.write(
            '<noscript>"Views" functionality is not available without JavaScript enabled. '
            "Please download this file and open it locally with your browser.</noscript>\n"
        )
        buffer.write("</nav>\n")

    # -- Table of contents --------------------------------------------------

    async def write_table_of_contents(self, buffer: TextIO) -> None:
        match self.backlog.toc.mode:
            case "list":
                self.write_toc_list(buffer)
            case "grid":
                await self.write_toc_grid(buffer)

    def _expand_collapse_buttons(self, action_attr: str, selector_attr: str, selector: str) -> str:
        return (
            f'<span title="Expand All" {action_attr}="expand-all" {selector_attr}="{selector}" '
            f'class="icon-small-button">{icon_html(EXPAND_ICON)}</span>'
            f'<span title="Collapse All" {action_attr}="collapse-all" {selector_attr}="{selector}" '
            f'class="icon-small-button">{icon_html(COLLAPSE_ICON)}</span>'
        )

    def write_toc_list(self, buffer: TextIO) -> None:
        buffer.write('<div class="centered-layout">\n<nav id="toc">\n')
        if not self.backlog.toc.hide_header:
            buffer.write("<h1>Table of Contents</h1>\n")
        buffer.write('<p style="text-align: right; margin: 0; margin-bottom: 5px;">')
        buffer.write(self._expand_collapse_buttons("data-list-action", "data-list-selector", "#toc-list"))
        buffer.write("</p>\n")
        buffer.write('<ul id="toc-list" style="margin-top: 5px;" class="collapsible-list">\n')

        ancestors: list[BacklogWorkItem] = []

        def write_entry(wi: BacklogWorkItem, end: bool) -> None:
            opens_list = wi.has_children and len(wi.children) > 0
            if end:
                if opens_list:
                    ancestors.pop()
                    buffer.write("</ul>\n")
                return
            parent_attr = f' data-list-parent-item-id="{ancestors[-1].id}"' if ancestors else ""
            buffer.write(
                f'<li style="list-style-type: none" data-list-item-id="{wi.id}"{parent_attr}>'
                f'{work_item_icon_html(wi.type_name)}{wi.id} <a href="#{wi.id}">{escape(wi.title)}</a></li>\n'
            )
            if opens_list:
                ancestors.append(wi)
                buffer.write('<ul style="margin-top: 5px;">\n')

        self.backlog.visit(write_entry, visit_end=True)
        buffer.write("</ul>\n")
        buffer.write('<hr class="end-of-work-item" />\n</nav>\n</div>\n')

    def validate_grid_columns(self, work_item_types: list[str]) -> None:
        """Log every type whose grid columns differ in count or width from the first type's."""
        columns = {t: self.backlog.toc.values_for(t) for t in work_item_types}
        first = work_item_types[0]
        reference = columns[first]
        for type_name in work_item_types[1:]:
            other = columns[type_name]
            if len(other) != len(reference):
                logger.error(
                    "Work item type %s has a different number of columns than work item type %s: %s != %s",
                    type_name,
                    first,
                    [v.header for v in other],
                    [v.header for v in reference],
                )
            if any(v.width != (reference[i].width if i < len(reference) else None) for i, v in enumerate(other)):
                logger.error(
                    "Work item type %s has different column sizes than work item type %s: %s != %s",
                    type_name,
                    first,
                    [v.width for v in other],
                    [v.width for v in reference],
                )

    @staticmethod
    def _column_style(value: TocValueConfig) -> str:
        width = value.width or "auto"
        return f"width: {escape(width)}; max-width: {escape(width)};"

    async def write_toc_grid(self, buffer: TextIO) -> None:
        toc = self.backlog.toc
        work_item_types = self.backlog.config.all_work_item_types()
        if not work_item_types:
            return

        self.validate_grid_columns(work_item_types)

        buffer.write('<nav id="toc" class="padding-body">\n')
        if not toc.hide_header:
            buffer.write("<h1>Table of Contents</h1>\n")
        buffer.write('<table id="toc-grid" class="data-grid collapsible-data-grid">\n<thead>\n<tr>\n<th>')
        buffer.write(self._expand_collapse_buttons("data-grid-action", "data-grid-selector", "#toc-grid"))
        buffer.write(" Title</th>\n")
        # Headers come from the first type of the hierarchy
        for value in toc.values_for(work_item_types[0]):
            buffer.write(f'<th title="{escape(value.header)}" style="{self._column_style(value)}">{escape(value.header)}</th>')
        buffer.write("\n</tr>\n</thead>\n<tbody>\n")

        ancestors: list[BacklogWorkItem] = []
        depth = 0

        async def write_row(wi: BacklogWorkItem, end: bool) -> None:
            nonlocal depth
            has_visible_children = wi.has_children and len(wi.children) > 0
            if end:
                depth -= 1
                if has_visible_children:
                    ancestors.pop()
                return

            parent_attr = f' data-grid-parent-row-id="{ancestors[-1].id}"' if ancestors else ""
            buffer.write(f'<tr data-grid-row-id="{wi.id}"{parent_attr} data-grid-row-level="{depth}">')
            buffer.write(
                f'<td class="data-grid-caret-column" style="padding-left: {16 * (depth + 1)}px">'
                f'{work_item_icon_html(wi.type_name)}{wi.id} <a href="#{wi.id}">{escape(wi.title)}</a></td>'
            )
            for value in toc.values_for(wi.type_name):
                buffer.write(f'<td style="text-align: {value.align}">')
                if value.field is not None:
                    await self.renderer.render_field(buffer, wi, value.field)
                buffer.write("</td>")
            buffer.write("</tr>\n")

            depth += 1
            if has_visible_children:
                ancestors.append(wi)

        await self.backlog.visit_async(write_row, visit_end=True)
        buffer.write("</tbody>\n</table>\n")
        buffer.write('<hr class="end-of-work-item" />\n</nav>\n')

    # -- Trailer ------------------------------------------------------------

    def write_appendixes(self, buffer: TextIO) -> None:
        for appendix in self.backlog.config.appendixes:
            buffer.write('<section class="appendix from-markdown">\n')
            if appendix.title is not None:
                buffer.write(f"<h1>{escape(appendix.title)}</h1>\n")
            if appendix.content is not None:
                buffer.write(render_markdown(appendix.content))
                buffer.write("\n")
            buffer.write("</section>\n")
