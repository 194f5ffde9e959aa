"""Configuration loading for ado-backlog.

The configuration is a single TOML file (``ado-backlog.toml`` by default). It is
read with ``tomllib`` and walked by the ``_parse_*`` functions below into frozen
dataclasses; nothing downstream ever sees the raw dicts.
"""

from __future__ import annotations

import logging
import os
import tomllib
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from ado_backlog.schema import (
    ConfigError,
    expect_table,
    get_bool,
    get_choice,
    get_str,
    get_str_list,
    require_str,
    table_list,
)
from ado_backlog.templates import TemplateConfig, parse_template

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILENAME = "ado-backlog.toml"
STATE_DIR_NAME = ".ado-backlog"
TOKEN_ENV_VAR = "ADO_BACKLOG_TOKEN"

SortDirection = Literal["asc", "desc"]
TocMode = Literal["list", "grid"]
CacheMode = Literal["off", "memory", "persistent"]
CellAlignment = Literal["left", "center", "right"]

_SORT_DIRECTIONS: frozenset[str] = frozenset({"asc", "desc"})
_TOC_MODES: frozenset[str] = frozenset({"list", "grid"})
_CACHE_MODES: frozenset[str] = frozenset({"off", "memory", "persistent"})
_ALIGNMENTS: frozenset[str] = frozenset({"left", "center", "right"})


# ---------------------------------------------------------------------------
# Frozen dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ApiConfig:
    organization_url: str
    token: str
    ignore_ssl: bool = False


@dataclass(frozen=True)
class CacheConfig:
    mode: CacheMode = "memory"
    path: Path = Path(STATE_DIR_NAME) / "cache.json"


@dataclass(frozen=True)
class SortKey:
    field: str
    direction: SortDirection = "asc"


@dataclass(frozen=True)
class ContentLevel:
    """One tier of the type hierarchy, e.g. all "Epic" items."""

    work_item_types: tuple[str, ...]
    sort: tuple[SortKey, ...] | None = None
    fetch_parents: bool | None = None
    content: tuple[ContentLevel, ...] = ()

    @property
    def has_children(self) -> bool:
        return len(self.content) > 0

    def all_work_item_types(self) -> Iterator[str]:
        yield from self.work_item_types
        for child in self.content:
            yield from child.all_work_item_types()


@dataclass(frozen=True)
class ContentDefaults:
    fetch_parents: bool = False
    sort: tuple[SortKey, ...] = ()


@dataclass(frozen=True)
class QueryConfig:
    """Exactly one way of selecting work items: a WIQL clause, a saved query id or name."""

    query: str | None = None
    query_id: str | None = None
    query_name: str | None = None


@dataclass(frozen=True)
class ViewConfig:
    name: str
    query: QueryConfig


@dataclass(frozen=True)
class OutputConfig:
    path: str
    format: str | None = None
    overwrite: bool = False
    mkdir: bool = False


@dataclass(frozen=True)
class AppendixConfig:
    title: str | None
    content: str | None


@dataclass(frozen=True)
class BrandConfig:
    logo: Path


@dataclass(frozen=True)
class BacklogConfig:
    name: str
    project: str
    query: QueryConfig
    content: tuple[ContentLevel, ...]
    content_defaults: ContentDefaults = ContentDefaults()
    views: tuple[ViewConfig, ...] = ()
    outputs: tuple[OutputConfig, ...] = ()
    appendixes: tuple[AppendixConfig, ...] = ()
    brands: tuple[BrandConfig, ...] = ()

    def all_work_item_types(self) -> list[str]:
        """Every type named by the content hierarchy, in declaration order, without repeats."""
        seen: dict[str, None] = {}
        for level in self.content:
            for type_name in level.all_work_item_types():
                seen.setdefault(type_name, None)
        return list(seen)


@dataclass(frozen=True)
class TocValueConfig:
    header: str
    field: str | None = None
    width: str | None = None
    align: CellAlignment = "left"
    work_item_types: tuple[str, ...] = ()


@dataclass(frozen=True)
class TocConfig:
    mode: TocMode = "list"
    hide_header: bool = False
    values: tuple[TocValueConfig, ...] = ()

    def values_for(self, type_name: str) -> list[TocValueConfig]:
        """Grid columns applying to a type; unrestricted columns apply to all types."""
        return [v for v in self.values if not v.work_item_types or type_name in v.work_item_types]


@dataclass(frozen=True)
class StateOverride:
    name: str
    color: str | None = None


@dataclass(frozen=True)
class WorkItemTypeOverride:
    name: str
    icon: str | None = None
    color: str | None = None
    states: tuple[StateOverride, ...] = ()


@dataclass(frozen=True)
class WorkItemsConfig:
    types: tuple[WorkItemTypeOverride, ...] = ()

    def override_for(self, type_name: str) -> WorkItemTypeOverride | None:
        for override in self.types:
            if override.name == type_name:
                return override
        return None


@dataclass(frozen=True)
class AppConfig:
    api: ApiConfig
    backlogs: tuple[BacklogConfig, ...]
    toc: TocConfig = TocConfig()
    cache: CacheConfig = CacheConfig()
    work_items: WorkItemsConfig = WorkItemsConfig()
    templates: tuple[TemplateConfig, ...] = ()
    debug: bool = False

    def find_backlog(self, name: str) -> BacklogConfig | None:
        for backlog in self.backlogs:
            if backlog.name == name:
                return backlog
        return None


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _parse_api(raw: dict[str, Any], path: str) -> ApiConfig:
    token = get_str(raw, "token", path, required=False) or os.environ.get(TOKEN_ENV_VAR)
    if not token:
        msg = f"{path}.token is required (or set the {TOKEN_ENV_VAR} environment variable)"
        raise ConfigError(msg)
    return ApiConfig(
        organization_url=require_str(raw, "organization_url", path).rstrip("/"),
        token=token,
        ignore_ssl=bool(get_bool(raw, "ignore_ssl", path)),
    )


def _parse_cache(raw: dict[str, Any], path: str, base_dir: Path) -> CacheConfig:
    mode = get_choice(raw, "mode", path, _CACHE_MODES, "memory")
    cache_path = get_str(raw, "path", path, required=False)
    return CacheConfig(
        mode=mode,  # type: ignore[arg-type]
        path=base_dir / (cache_path or Path(STATE_DIR_NAME) / "cache.json"),
    )


def _parse_sort(raw: dict[str, Any], key: str, path: str) -> tuple[SortKey, ...] | None:
    if key not in raw:
        return None
    return tuple(
        SortKey(
            field=require_str(s, "field", f"{path}.{key}[{i}]"),
            direction=get_choice(s, "direction", f"{path}.{key}[{i}]", _SORT_DIRECTIONS, "asc"),  # type: ignore[arg-type]
        )
        for i, s in enumerate(table_list(raw, key, path))
    )


def _parse_content_level(raw: dict[str, Any], path: str) -> ContentLevel:
    types = get_str_list(raw, "work_item_types", path, required=True)
    if not types:
        msg = f"{path}.work_item_types must name at least one type"
        raise ConfigError(msg)
    children = tuple(_parse_content_level(c, f"{path}.content[{i}]") for i, c in enumerate(table_list(raw, "content", path)))
    return ContentLevel(
        work_item_types=types,
        sort=_parse_sort(raw, "sort", path),
        fetch_parents=get_bool(raw, "fetch_parents", path, default=None),
        content=children,
    )


def _parse_query(raw: dict[str, Any], path: str) -> QueryConfig:
    query = QueryConfig(
        query=get_str(raw, "query", path, required=False),
        query_id=get_str(raw, "query_id", path, required=False),
        query_name=get_str(raw, "query_name", path, required=False),
    )
    provided = [q for q in (query.query, query.query_id, query.query_name) if q is not None]
    if len(provided) != 1:
        msg = f"{path}: exactly one of query, query_id or query_name must be set ({len(provided)} given)"
        raise ConfigError(msg)
    return query


def _parse_appendix(raw: dict[str, Any], path: str, base_dir: Path) -> AppendixConfig:
    content = get_str(raw, "content", path, required=False)
    file_name = get_str(raw, "file", path, required=False)
    if file_name is not None:
        if content is not None:
            msg = f"{path}: content and file are mutually exclusive"
            raise ConfigError(msg)
        try:
            content = (base_dir / file_name).read_text(encoding="utf-8")
        except OSError as exc:
            msg = f"{path}.file: cannot read appendix '{file_name}': {exc}"
            raise ConfigError(msg) from exc
    return AppendixConfig(title=get_str(raw, "title", path, required=False), content=content)


def _parse_backlog(raw: dict[str, Any], path: str, base_dir: Path) -> BacklogConfig:
    name = require_str(raw, "name", path)
    content = tuple(_parse_content_level(c, f"{path}.content[{i}]") for i, c in enumerate(table_list(raw, "content", path)))
    defaults_raw = expect_table(raw.get("content_defaults", {}), f"{path}.content_defaults")
    defaults = ContentDefaults(
        fetch_parents=bool(get_bool(defaults_raw, "fetch_parents", f"{path}.content_defaults")),
        sort=_parse_sort(defaults_raw, "sort", f"{path}.content_defaults") or (),
    )

    views: list[ViewConfig] = []
    for i, v in enumerate(table_list(raw, "views", path)):
        view_path = f"{path}.views[{i}]"
        view = ViewConfig(name=require_str(v, "name", view_path), query=_parse_query(v, view_path))
        if any(existing.name == view.name for existing in views):
            logger.error("Duplicate view with name %r found in config, skipping it.", view.name)
            continue
        views.append(view)

    outputs = tuple(
        OutputConfig(
            path=require_str(o, "path", f"{path}.outputs[{i}]"),
            format=get_str(o, "format", f"{path}.outputs[{i}]", required=False),
            overwrite=bool(get_bool(o, "overwrite", f"{path}.outputs[{i}]")),
            mkdir=bool(get_bool(o, "mkdir", f"{path}.outputs[{i}]")),
        )
        for i, o in enumerate(table_list(raw, "outputs", path))
    )
    return BacklogConfig(
        name=name,
        project=require_str(raw, "project", path),
        query=_parse_query(raw, path),
        content=content,
        content_defaults=defaults,
        views=tuple(views),
        outputs=outputs,
        appendixes=tuple(
            _parse_appendix(a, f"{path}.appendixes[{i}]", base_dir) for i, a in enumerate(table_list(raw, "appendixes", path))
        ),
        brands=tuple(
            BrandConfig(logo=base_dir / require_str(b, "logo", f"{path}.brands[{i}]"))
            for i, b in enumerate(table_list(raw, "brands", path))
        ),
    )


def _parse_toc(raw: dict[str, Any], path: str) -> TocConfig:
    values = tuple(
        TocValueConfig(
            header=require_str(v, "header", f"{path}.values[{i}]"),
            field=get_str(v, "field", f"{path}.values[{i}]", required=False),
            width=get_str(v, "width", f"{path}.values[{i}]", required=False),
            align=get_choice(v, "align", f"{path}.values[{i}]", _ALIGNMENTS, "left"),  # type: ignore[arg-type]
            work_item_types=get_str_list(v, "work_item_types", f"{path}.values[{i}]"),
        )
        for i, v in enumerate(table_list(raw, "values", path))
    )
    return TocConfig(
        mode=get_choice(raw, "mode", path, _TOC_MODES, "list"),  # type: ignore[arg-type]
        hide_header=bool(get_bool(raw, "hide_header", path)),
        values=values,
    )


def _parse_work_items(raw: dict[str, Any], path: str) -> WorkItemsConfig:
    overrides = []
    for i, t in enumerate(table_list(raw, "types", path)):
        type_path = f"{path}.types[{i}]"
        states = tuple(
            StateOverride(
                name=require_str(s, "name", f"{type_path}.states[{j}]"),
                color=get_str(s, "color", f"{type_path}.states[{j}]", required=False),
            )
            for j, s in enumerate(table_list(t, "states", type_path))
        )
        overrides.append(
            WorkItemTypeOverride(
                name=require_str(t, "name", type_path),
                icon=get_str(t, "icon", type_path, required=False),
                color=get_str(t, "color", type_path, required=False),
                states=states,
            )
        )
    return WorkItemsConfig(types=tuple(overrides))


def parse_config(raw: dict[str, Any], base_dir: Path | None = None) -> AppConfig:
    """Parse a TOML document (already decoded) into an :class:`AppConfig`.

    Relative file paths (cache, brand logos, appendix files) are resolved
    against ``base_dir``, normally the directory holding the config file.

    Raises:
        ConfigError: On any missing key, wrong type or invalid value.
    """
    base_dir = base_dir or Path.cwd()
    backlogs = tuple(_parse_backlog(b, f"backlogs[{i}]", base_dir) for i, b in enumerate(table_list(raw, "backlogs", "config")))
    if not backlogs:
        msg = "No backlog was found in the configuration file"
        raise ConfigError(msg)
    templates = tuple(parse_template(t, f"templates[{i}]") for i, t in enumerate(table_list(raw, "templates", "config")))
    return AppConfig(
        api=_parse_api(expect_table(raw.get("api"), "api"), "api"),
        backlogs=backlogs,
        toc=_parse_toc(expect_table(raw.get("toc", {}), "toc"), "toc"),
        cache=_parse_cache(expect_table(raw.get("cache", {}), "cache"), "cache", base_dir),
        work_items=_parse_work_items(expect_table(raw.get("work_items", {}), "work_items"), "work_items"),
        templates=templates,
        debug=bool(get_bool(raw, "debug", "config")),
    )


def load_config(config_path: Path) -> AppConfig:
    """Read and parse a TOML configuration file."""
    try:
        raw = tomllib.loads(config_path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        msg = f"Configuration file '{config_path}' not found. Run 'ado-backlog init' first."
        raise ConfigError(msg) from None
    except OSError as exc:
        msg = f"Failed to read configuration file '{config_path}': {exc}"
        raise ConfigError(msg) from exc
    except tomllib.TOMLDecodeError as exc:
        msg = f"Invalid TOML in '{config_path}': {exc}"
        raise ConfigError(msg) from exc
    return parse_config(raw, base_dir=config_path.resolve().parent)


def interpolate(template: str, context: Mapping[str, Any]) -> str:
    """Render an output path template such as ``out/{backlog.name} {now:%Y-%m-%d}.html``.

    Pure ``str.format_map`` over an explicit context; unknown names are
    configuration errors.
    """
    try:
        return template.format_map(context)
    except (KeyError, AttributeError, IndexError, ValueError) as exc:
        msg = f"Cannot interpolate output path '{template}': {exc}"
        raise ConfigError(msg) from exc
