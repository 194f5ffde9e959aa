"""The Backlog aggregate: one fully-built content tree plus its metadata.

Constructed once per export from the output of the tree builder. Builds the
id index with a single pre-order traversal, merges work item type overrides
from the configuration, and is read-only afterwards.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import replace

from ado_backlog.config import BacklogConfig, TocConfig, WorkItemsConfig
from ado_backlog.model import BacklogWorkItem, ContentTreeError, WorkItemType
from ado_backlog.types import BacklogDict

logger = logging.getLogger(__name__)

Visitor = Callable[[BacklogWorkItem, bool], None]
AsyncVisitor = Callable[[BacklogWorkItem, bool], Awaitable[None]]

WorkItemStateColors = dict[str, dict[str, str]]


class Backlog:
    def __init__(
        self,
        work_item_types: Iterable[WorkItemType],
        work_item_state_colors: Mapping[str, Mapping[str, str]],
        config: BacklogConfig,
        toc: TocConfig,
        work_items: Sequence[BacklogWorkItem],
        views: Mapping[str, Iterable[int]] | None = None,
        work_items_config: WorkItemsConfig | None = None,
    ) -> None:
        self.config = config
        self.toc = toc
        self.work_items_config = work_items_config or WorkItemsConfig()
        # Copies: overrides are merged into these, never into the caller's data
        self.work_item_types: dict[str, WorkItemType] = {t.name: replace(t) for t in work_item_types}
        self.work_item_state_colors: WorkItemStateColors = {
            type_name: dict(colors) for type_name, colors in work_item_state_colors.items()
        }
        self.work_items: list[BacklogWorkItem] = list(work_items)
        self.views: dict[str, frozenset[int]] = {name: frozenset(ids) for name, ids in (views or {}).items()}

        self.by_id: dict[int, BacklogWorkItem] = {}
        self.visit(self._index)

        self._apply_work_item_types_overrides()

    def _index(self, wi: BacklogWorkItem, end: bool) -> None:
        if not wi.is_resolved:
            msg = f"Work item #{wi.id} is still a placeholder after the content tree was built"
            raise ContentTreeError(msg)
        self.by_id[wi.id] = wi

    def _apply_work_item_types_overrides(self) -> None:
        for wit in self.work_item_types.values():
            override = self.work_items_config.override_for(wit.name)
            if override is None:
                continue
            if override.icon is not None:
                wit.icon = override.icon
            if override.color is not None:
                wit.color = override.color
            if override.states:
                state_colors = self.work_item_state_colors.setdefault(wit.name, {})
                for state in override.states:
                    if state.color is not None:
                        state_colors[state.name] = state.color

    # -- Traversal ----------------------------------------------------------

    def visit(self, visitor: Visitor, root: BacklogWorkItem | None = None, visit_end: bool = False) -> None:
        """Pre-order depth-first traversal in child order.

        With ``visit_end`` the visitor is called a second time, with
        ``end=True``, after a node's subtree has been visited.
        """
        if root is None:
            for wi in self.work_items:
                self.visit(visitor, wi, visit_end)
            return

        visitor(root, False)
        if root.has_children:
            for child in root.children:
                self.visit(visitor, child, visit_end)
        if visit_end:
            visitor(root, True)

    async def visit_async(
        self, visitor: AsyncVisitor, root: BacklogWorkItem | None = None, visit_end: bool = False
    ) -> None:
        """Same order as :meth:`visit`; each callback is awaited before the next starts."""
        if root is None:
            for wi in self.work_items:
                await self.visit_async(visitor, wi, visit_end)
            return

        await visitor(root, False)
        if root.has_children:
            for child in root.children:
                await self.visit_async(visitor, child, visit_end)
        if visit_end:
            await visitor(root, True)

    # -- Queries ------------------------------------------------------------

    def get_links(
        self, work_items: Sequence[BacklogWorkItem], relations_path: Sequence[str], depth: int = 1
    ) -> list[BacklogWorkItem]:
        """Follow ``relations_path`` from ``work_items``, ``depth`` times.

        Results are concatenated in relation order and not deduplicated.
        Relation targets outside this backlog are dropped silently.
        """
        current = list(work_items)
        for _ in range(depth):
            for relation in relations_path:
                current = [
                    self.by_id[rel.work_item_id]
                    for wi in current
                    for rel in wi.relations
                    if rel.relation_name == relation and rel.work_item_id in self.by_id
                ]
        return current

    def get_work_item_type(self, type_name: str) -> WorkItemType:
        wit = self.work_item_types.get(type_name)
        if wit is None:
            logger.debug("No metadata for work item type %r, rendering without icon", type_name)
            return WorkItemType(name=type_name, color="", icon="")
        return wit

    def get_state_color(self, type_name: str, state: str) -> str | None:
        return self.work_item_state_colors.get(type_name, {}).get(state)

    def get_distinct_used_work_item_types(self) -> list[WorkItemType]:
        used: dict[str, WorkItemType] = {}

        def collect(wi: BacklogWorkItem, end: bool) -> None:
            if wi.type_name not in used:
                used[wi.type_name] = self.get_work_item_type(wi.type_name)

        self.visit(collect)
        return list(used.values())

    def in_view(self, view_name: str, work_item_id: int) -> bool:
        return work_item_id in self.views.get(view_name, frozenset())

    def to_dict(self) -> BacklogDict:
        return {
            "name": self.config.name,
            "project": self.config.project,
            "work_item_types": [wit.to_dict() for wit in self.work_item_types.values()],
            "work_item_state_colors": self.work_item_state_colors,
            "views": {name: sorted(ids) for name, ids in self.views.items()},
            "work_items": [wi.to_dict() for wi in self.work_items],
        }
