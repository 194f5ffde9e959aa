# src/ado_backlog/templates.py
"""Work item template definitions -- parsing, registration and lookup.

A template describes how one work item type is rendered: an ordered list of
blocks. Block kinds form a small closed set (section, links, tags, metadata);
metadata blocks lay out nested blocks on a grid of rows and columns. Templates
are keyed by exact type name, one per type, with no inheritance.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from ado_backlog.schema import (
    ConfigError,
    get_bool,
    get_int,
    get_str,
    get_str_list,
    require_str,
    table_list,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen dataclasses
# ---------------------------------------------------------------------------
# Templates are configuration data: parsed once, never mutated afterwards.
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SectionBlock:
    """Renders a single field, optionally under a header."""

    field: str
    header: str | None = None
    rich_text: bool = False
    ignored_values: tuple[str, ...] = ()


@dataclass(frozen=True)
class LinksBlock:
    """Renders the work items reached by following ``relations`` from the item."""

    label: str
    relations: tuple[str, ...]
    single: bool = False


@dataclass(frozen=True)
class TagsBlock:
    """Renders the item's tag list."""


@dataclass(frozen=True)
class MetadataRow:
    """A grid cell that always occupies a full row."""

    blocks: tuple[TemplateBlock, ...]


@dataclass(frozen=True)
class MetadataColumn:
    """A grid cell spanning ``colspan`` columns of the current row."""

    blocks: tuple[TemplateBlock, ...]
    colspan: int = 1


@dataclass(frozen=True)
class MetadataBlock:
    """A grid of ``columns`` columns holding rows and columns of nested blocks."""

    columns: int
    cells: tuple[MetadataCell, ...]
    header: str | None = None


TemplateBlock = SectionBlock | LinksBlock | TagsBlock | MetadataBlock
MetadataCell = MetadataRow | MetadataColumn


@dataclass(frozen=True)
class TemplateConfig:
    """Complete rendering definition for a work item type."""

    work_item_type: str
    blocks: tuple[TemplateBlock, ...]


# ---------------------------------------------------------------------------
# Parsing (from TOML tables)
# ---------------------------------------------------------------------------

BLOCK_KINDS: frozenset[str] = frozenset({"section", "links", "tags", "metadata"})
CELL_KINDS: frozenset[str] = frozenset({"row", "column"})


def parse_block(raw: dict[str, Any], path: str) -> TemplateBlock:
    """Parse one ``[[...blocks]]`` table into its block dataclass.

    Raises:
        ConfigError: If the kind is unknown or a required key is missing.
    """
    kind = require_str(raw, "kind", path)
    match kind:
        case "section":
            return SectionBlock(
                field=require_str(raw, "field", path),
                header=get_str(raw, "header", path, required=False),
                rich_text=bool(get_bool(raw, "rich_text", path)),
                ignored_values=get_str_list(raw, "ignored_values", path),
            )
        case "links":
            relations = get_str_list(raw, "relations", path, required=True)
            if not relations:
                msg = f"{path}.relations must name at least one relation"
                raise ConfigError(msg)
            return LinksBlock(
                label=require_str(raw, "label", path),
                relations=relations,
                single=bool(get_bool(raw, "single", path)),
            )
        case "tags":
            return TagsBlock()
        case "metadata":
            columns = get_int(raw, "columns", path)
            if columns is None or columns < 1:
                msg = f"{path}.columns must be a positive integer"
                raise ConfigError(msg)
            cells = [parse_cell(cell, f"{path}.cells[{i}]") for i, cell in enumerate(table_list(raw, "cells", path))]
            return MetadataBlock(
                columns=columns,
                cells=tuple(c for c in cells if c is not None),
                header=get_str(raw, "header", path, required=False),
            )
        case _:
            allowed = ", ".join(sorted(BLOCK_KINDS))
            msg = f"{path}.kind: unknown block kind '{kind}' (must be one of: {allowed})"
            raise ConfigError(msg)


def parse_blocks(raw: dict[str, Any], path: str) -> tuple[TemplateBlock, ...]:
    return tuple(parse_block(b, f"{path}.blocks[{i}]") for i, b in enumerate(table_list(raw, "blocks", path)))


def parse_cell(raw: dict[str, Any], path: str) -> MetadataCell | None:
    """Parse a metadata grid cell. Unknown cell kinds are logged and skipped."""
    kind = get_str(raw, "kind", path, required=False)
    match kind:
        case "row":
            return MetadataRow(blocks=parse_blocks(raw, path))
        case "column":
            colspan = get_int(raw, "colspan", path, default=1)
            return MetadataColumn(blocks=parse_blocks(raw, path), colspan=colspan if colspan is not None else 1)
        case _:
            logger.warning("Invalid metadata cell %s (kind=%r), only rows and columns are supported. Skipping.", path, kind)
            return None


def parse_template(raw: dict[str, Any], path: str = "template") -> TemplateConfig:
    return TemplateConfig(
        work_item_type=require_str(raw, "work_item_type", path),
        blocks=parse_blocks(raw, path),
    )


# ---------------------------------------------------------------------------
# TemplateRegistry
# ---------------------------------------------------------------------------


class TemplateRegistry:
    """Exact, one-to-one lookup of templates by work item type name."""

    def __init__(self, templates: Iterable[TemplateConfig] = ()) -> None:
        self._templates: dict[str, TemplateConfig] = {}
        for tpl in templates:
            self.register(tpl)

    def register(self, template: TemplateConfig) -> None:
        if template.work_item_type in self._templates:
            msg = f"Duplicate template for work item type '{template.work_item_type}'"
            raise ConfigError(msg)
        logger.debug("Registering template: %s (%d blocks)", template.work_item_type, len(template.blocks))
        self._templates[template.work_item_type] = template

    def get_template(self, type_name: str) -> TemplateConfig:
        """Return the template for a type.

        Raises:
            ConfigError: If no template covers the type. There is no fallback.
        """
        try:
            return self._templates[type_name]
        except KeyError:
            msg = f'Could not find template "{type_name}"'
            raise ConfigError(msg) from None

    def list_types(self) -> list[str]:
        return list(self._templates)

    def __contains__(self, type_name: object) -> bool:
        return type_name in self._templates

    def __len__(self) -> int:
        return len(self._templates)
