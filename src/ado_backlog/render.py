"""Template engine: renders work items into HTML through their type's template.

Each block kind has one render method; ``render_block`` dispatches on the
closed ``TemplateBlock`` union. Blocks whose content is empty write nothing at
all (no header, no wrapper). Metadata blocks lay their cells out on a fixed
column grid, see :func:`pack_metadata_cells`.
"""

from __future__ import annotations

import html
import io
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, TextIO, TypeVar, assert_never

from bs4 import BeautifulSoup

from ado_backlog.backlog import Backlog
from ado_backlog.model import FIELD_CHANGED_DATE, FIELD_STATE, BacklogWorkItem, type_slug
from ado_backlog.templates import (
    LinksBlock,
    MetadataBlock,
    MetadataCell,
    MetadataColumn,
    MetadataRow,
    SectionBlock,
    TagsBlock,
    TemplateBlock,
    TemplateRegistry,
)

logger = logging.getLogger(__name__)

AttachmentResolver = Callable[[str], Awaitable[str | None]]

TAG_ICON = "tag"
EXPAND_ICON = "expand"
COLLAPSE_ICON = "collapse"

_Payload = TypeVar("_Payload")


@dataclass(frozen=True)
class RenderOptions:
    """Presentation flags propagated to nested blocks.

    ``inline`` replaces headers and paragraphs with compact label + value
    markup; it is set for every block rendered inside a metadata cell.
    """

    inline: bool = False


def escape(value: object) -> str:
    return html.escape(str(value), quote=True)


def icon_html(icon_name: str, size: int = 13) -> str:
    # The trailing space is part of the markup: icons are always followed by text
    return f'<span class="icon icon-{icon_name}" style="width: {size}px; height: {size}px"></span> '


def work_item_icon_html(type_name: str, size: int = 13) -> str:
    return icon_html("wi-" + type_slug(type_name), size)


def format_changed_date(value: str) -> tuple[str, str]:
    """Return (short, long) renderings of an ISO timestamp in local time.

    Short is e.g. "Friday, Jan 5, 2024"; long is e.g. "1/5/2024, 10:20:30 AM".
    """
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is not None:
        dt = dt.astimezone()
    short = f"{dt:%A}, {dt:%b} {dt.day}, {dt.year}"
    hour = dt.hour % 12 or 12
    long = f"{dt.month}/{dt.day}/{dt.year}, {hour}:{dt:%M:%S %p}"
    return short, long


def _colspan(cell: MetadataColumn) -> int:
    return cell.colspan if cell.colspan > 0 else 1


def pack_metadata_cells(
    cells: Sequence[tuple[MetadataCell, _Payload]], columns: int
) -> list[list[tuple[_Payload, int]]]:
    """Lay out rendered cells on a grid of ``columns`` columns.

    Returns the rows of the grid, each a list of ``(payload, colspan)``.

    * A row cell always sits alone on a full-width row.
    * A column cell takes ``colspan`` columns (at least 1). Columns wider than
      the grid are logged and skipped.
    * The last cell of a row (because the next cell is a row, would not fit,
      or there is no next cell) stretches to fill the remaining width.
    """
    valid: list[tuple[MetadataCell, _Payload]] = []
    for cell, payload in cells:
        match cell:
            case MetadataColumn() if _colspan(cell) > columns:
                logger.warning(
                    "Invalid cell %r, colspan of %d is higher than the allowed columns value of %d. Skipping.",
                    cell,
                    _colspan(cell),
                    columns,
                )
            case MetadataRow() | MetadataColumn():
                valid.append((cell, payload))
            case _:
                logger.warning("Invalid cell %r, only rows and columns are supported. Skipping.", cell)

    rows: list[list[tuple[_Payload, int]]] = []
    current: list[tuple[_Payload, int]] = []
    offset = 0
    for i, (cell, payload) in enumerate(valid):
        if isinstance(cell, MetadataRow):
            rows.append([(payload, columns)])
            continue

        span = _colspan(cell)
        next_cell = valid[i + 1][0] if i + 1 < len(valid) else None
        ends_row = (
            next_cell is None
            or isinstance(next_cell, MetadataRow)
            or offset + span + _colspan(next_cell) > columns
        )
        if ends_row:
            current.append((payload, columns - offset))
            rows.append(current)
            current = []
            offset = 0
        else:
            current.append((payload, span))
            offset += span
    return rows


class TemplateRenderer:
    """Renders work items of one backlog using the configured templates.

    ``attachments`` resolves image URLs embedded in rich text fields to data
    URIs; images it cannot resolve keep their original ``src``.
    """

    def __init__(
        self,
        backlog: Backlog,
        templates: TemplateRegistry,
        attachments: AttachmentResolver | None = None,
    ) -> None:
        self.backlog = backlog
        self.templates = templates
        self._attachments = attachments

    # -- Work items ---------------------------------------------------------

    async def render_work_item(self, buffer: TextIO, wi: BacklogWorkItem, level: int = 2) -> None:
        template = self.templates.get_template(wi.type_name)
        title = escape(wi.title)

        buffer.write(
            f'<article class="workitem {wi.type_slug}" id="{wi.id}" data-wi-id="{wi.id}" data-wi-title="{title}">\n'
        )
        buffer.write(
            f'<p class="workitem-type">{work_item_icon_html(wi.type_name)}{escape(wi.type_name.upper())} {wi.id}</p>\n'
        )
        buffer.write(f"<h{level}>{title}</h{level}>\n")

        for block in template.blocks:
            await self.render_block(buffer, block, wi, level + 1, RenderOptions())

        buffer.write('<hr class="end-of-work-item" />\n')
        buffer.write("</article>\n")

    async def render_block(
        self, buffer: TextIO, block: TemplateBlock, wi: BacklogWorkItem, level: int, options: RenderOptions
    ) -> None:
        match block:
            case SectionBlock():
                await self._render_section(buffer, block, wi, level, options)
            case LinksBlock():
                self._render_links(buffer, block, wi, options)
            case TagsBlock():
                self._render_tags(buffer, wi, options)
            case MetadataBlock():
                await self._render_metadata(buffer, block, wi, level, options)
            case _:
                assert_never(block)

    # -- Fields -------------------------------------------------------------

    async def render_field(
        self,
        buffer: TextIO,
        wi: BacklogWorkItem,
        field: str,
        rich_text: bool = False,
        ignored_values: Sequence[str] = (),
    ) -> None:
        """Write one field value. Absent, empty and ignored values write nothing."""
        value: Any = wi.fields.get(field)
        if value is None or value == "" or str(value) in ignored_values:
            return

        if field == FIELD_STATE:
            self._render_state(buffer, wi, str(value))
        elif field == FIELD_CHANGED_DATE:
            self._render_date(buffer, str(value))
        elif rich_text:
            buffer.write(await self._rewrite_images(str(value)))
        elif isinstance(value, str):
            single_line = escape(" ".join(value.splitlines()))
            buffer.write(f'<span title="{single_line}">{escape(value)}</span>\n')
        else:
            buffer.write(escape(value))

    def _render_state(self, buffer: TextIO, wi: BacklogWorkItem, state: str) -> None:
        color = self.backlog.get_state_color(wi.type_name, state)
        style = f' style="background-color: #{escape(color)}"' if color else ""
        escaped = escape(state)
        buffer.write(f'<span title="{escaped}"><span class="state-indicator"{style}></span> {escaped}</span>')

    def _render_date(self, buffer: TextIO, value: str) -> None:
        try:
            short, long = format_changed_date(value)
        except ValueError:
            logger.warning("Could not parse date %r, rendering it as text", value)
            buffer.write(f"<span>{escape(value)}</span>")
            return
        buffer.write(f'<span title="{escape(long)}">{escape(short)}</span>')

    async def _rewrite_images(self, markup: str) -> str:
        """Inline every resolvable ``<img src>`` as a data URI, in document order."""
        if self._attachments is None:
            return markup
        soup = BeautifulSoup(markup, "html.parser")
        mutated = False
        for img in soup.find_all("img"):
            src = img.get("src")
            if not src:
                continue
            data_uri = await self._attachments(str(src))
            if data_uri is not None:
                img["src"] = data_uri
                mutated = True
        return str(soup) if mutated else markup

    # -- Blocks -------------------------------------------------------------

    async def _render_section(
        self, buffer: TextIO, block: SectionBlock, wi: BacklogWorkItem, level: int, options: RenderOptions
    ) -> None:
        field_buffer = io.StringIO()
        await self.render_field(field_buffer, wi, block.field, block.rich_text, block.ignored_values)
        content = field_buffer.getvalue()
        if not content:
            return

        buffer.write(f'<section data-wi-field-name="{escape(block.field)}">')
        if block.header is not None:
            if options.inline:
                buffer.write(f"<strong>{escape(block.header)}</strong> ")
            else:
                buffer.write(f"<h{level}>{escape(block.header)}</h{level}>")
        buffer.write(content)
        buffer.write("</section>\n")

    def _link_html(self, target: BacklogWorkItem) -> str:
        return (
            f'{work_item_icon_html(target.type_name)}<span class="wi-id">{target.id}</span> '
            f'<a href="#{target.id}">{escape(target.title)}</a>'
        )

    def _render_links(self, buffer: TextIO, block: LinksBlock, wi: BacklogWorkItem, options: RenderOptions) -> None:
        links = self.backlog.get_links([wi], block.relations)
        if not links:
            return

        label = escape(block.label)
        if block.single:
            buffer.write("<section data-wi-links>")
            if not options.inline:
                buffer.write('<p style="margin-bottom: 0">')
            buffer.write(f'<strong style="margin-right: 7px">{label}</strong> {self._link_html(links[0])}')
            if not options.inline:
                buffer.write("</p>")
            buffer.write("</section>\n")
            return

        buffer.write("<section data-wi-links>\n")
        buffer.write(f'<p style="margin-bottom: 0"><strong>{label}</strong></p>\n')
        buffer.write('<ul style="margin-top: 5px;">\n')
        for target in links:
            buffer.write(f'<li style="list-style-type: none">{self._link_html(target)}</li>\n')
        buffer.write("</ul>\n</section>\n")

    def _render_tags(self, buffer: TextIO, wi: BacklogWorkItem, options: RenderOptions) -> None:
        tags = wi.tags
        if not tags:
            return
        margin = 0 if options.inline else 8
        buffer.write(
            f'<section data-wi-tags style="margin-bottom: {margin}px;">'
            f"<strong>Tags</strong> {icon_html(TAG_ICON)}{escape(', '.join(tags))}</section>\n"
        )

    async def _render_metadata(
        self, buffer: TextIO, block: MetadataBlock, wi: BacklogWorkItem, level: int, options: RenderOptions
    ) -> None:
        cell_options = replace(options, inline=True)
        rendered: list[tuple[MetadataCell, str]] = []
        for cell in block.cells:
            cell_buffer = io.StringIO()
            for inner in cell.blocks:
                await self.render_block(cell_buffer, inner, wi, level, cell_options)
            if cell_buffer.getvalue():
                rendered.append((cell, cell_buffer.getvalue()))

        rows = pack_metadata_cells(rendered, block.columns)
        if not rows:
            return

        buffer.write('<section data-wi-metadata class="workitem-metadata">\n')
        if block.header is not None:
            if options.inline:
                buffer.write(f"<strong>{escape(block.header)}</strong>\n")
            else:
                buffer.write(f"<h{level}>{escape(block.header)}</h{level}>\n")
        buffer.write("<table>")
        for row in rows:
            buffer.write("\n<tr>\n")
            for content, colspan in row:
                buffer.write(f'<td colspan="{colspan}">{content}</td>')
            buffer.write("\n</tr>\n")
        buffer.write("</table>\n</section>\n")
