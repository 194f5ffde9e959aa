"""Content tree builder.

Reconstructs the parent/child hierarchy of a backlog from the flat list of
records returned by its query, following the configured type hierarchy
(e.g. Epic -> Feature -> User Story/Bug). Parents missing from the query
results are either reported as unincluded or, when ``fetch_parents`` is on,
registered as placeholders and fetched in one batch per level.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence

from ado_backlog.config import ContentDefaults, ContentLevel
from ado_backlog.model import FIELD_TYPE, BacklogWorkItem, ContentTreeError, sort_work_items
from ado_backlog.schema import ConfigError
from ado_backlog.types import WorkItemRecord

logger = logging.getLogger(__name__)

FetchWorkItems = Callable[[Sequence[int]], Awaitable[list[WorkItemRecord]]]


class ContentTreeBuilder:
    """Builds the forest of :class:`BacklogWorkItem` for one backlog.

    ``unincluded_work_items`` collects the ids of parents that were referenced
    by a child but were neither part of the query results nor fetched.
    """

    def __init__(
        self,
        records: Sequence[WorkItemRecord],
        *,
        fetch: FetchWorkItems | None = None,
        defaults: ContentDefaults | None = None,
        unincluded_work_items: set[int] | None = None,
    ) -> None:
        self._records = records
        self._fetch = fetch
        self._defaults = defaults or ContentDefaults()
        self.unincluded_work_items: set[int] = unincluded_work_items if unincluded_work_items is not None else set()

    async def build(self, content: Sequence[ContentLevel]) -> list[BacklogWorkItem]:
        return await self._build_level_list(content)

    async def _build_level_list(self, content: Sequence[ContentLevel]) -> list[BacklogWorkItem]:
        if len(content) == 0:
            msg = "Cannot build content without a work item types hierarchy."
            raise ConfigError(msg)
        items: list[BacklogWorkItem] = []
        for level in content:
            items.extend(await self._build_level(level))
        return items

    async def _build_level(self, level: ContentLevel) -> list[BacklogWorkItem]:
        types = set(level.work_item_types)
        items = [
            BacklogWorkItem(record, level.has_children)
            for record in self._records
            if (record.get("fields") or {}).get(FIELD_TYPE) in types
        ]

        if level.has_children:
            fetch_parents = level.fetch_parents if level.fetch_parents is not None else self._defaults.fetch_parents
            parents_by_id = {item.id: item for item in items}
            pending_ids: list[int] = []

            for child in await self._build_level_list(level.content):
                parent_ids = child.parent_ids()
                if not parent_ids:
                    logger.warning(
                        "%s #%d %s was skipped because it does not have a parent.", child.type_name, child.id, child.title
                    )
                    continue
                if len(parent_ids) > 1:
                    logger.warning("%s #%d has %d parent links, using #%d.", child.type_name, child.id, len(parent_ids), parent_ids[0])
                parent_id = parent_ids[0]

                parent = parents_by_id.get(parent_id)
                if parent is None:
                    if not fetch_parents:
                        logger.warning(
                            "%s #%d %s was skipped because its parent #%d is not part of this backlog.",
                            child.type_name,
                            child.id,
                            child.title,
                            parent_id,
                        )
                        self.unincluded_work_items.add(parent_id)
                        continue
                    parent = BacklogWorkItem.placeholder(parent_id)
                    parents_by_id[parent_id] = parent
                    pending_ids.append(parent_id)

                parent.add_child(child)

            if pending_ids:
                items.extend(await self._fetch_placeholders(pending_ids, parents_by_id, types))

        order_by = level.sort if level.sort is not None else self._defaults.sort
        if order_by:
            sort_work_items(items, order_by)
        return items

    async def _fetch_placeholders(
        self, pending_ids: list[int], parents_by_id: dict[int, BacklogWorkItem], types: set[str]
    ) -> list[BacklogWorkItem]:
        """Fetch all pending parents of a level in one batch and resolve them.

        Returns the resolved placeholders of the level's types in the order their
        records arrived. A parent of another type is dropped with its children.
        """
        if self._fetch is None:
            msg = f"Cannot fetch absent parents {pending_ids}: no fetch callback was provided"
            raise ContentTreeError(msg)

        logger.debug("Fetching %d absent parents: %s", len(pending_ids), pending_ids)
        placeholders = {pid: parents_by_id[pid] for pid in pending_ids}
        resolved: list[BacklogWorkItem] = []

        for record in await self._fetch(pending_ids):
            node = placeholders.get(record["id"])
            if node is None:
                logger.warning("Ignoring work item #%d, it was not requested as a parent.", record["id"])
                continue
            node.resolve(record)
            if node.type_name not in types:
                logger.warning(
                    "%s #%d %s was skipped because its type is not part of this level (%s), dropping %d children.",
                    node.type_name,
                    node.id,
                    node.title,
                    ", ".join(sorted(types)),
                    len(node.children),
                )
                continue
            resolved.append(node)

        missing = [pid for pid, node in placeholders.items() if not node.is_resolved]
        if missing:
            msg = f"Parent work items {missing} are linked from this backlog but could not be fetched"
            raise ContentTreeError(msg)
        return resolved


async def build_content(
    records: Sequence[WorkItemRecord],
    content: Sequence[ContentLevel],
    *,
    fetch: FetchWorkItems | None = None,
    defaults: ContentDefaults | None = None,
    unincluded_work_items: set[int] | None = None,
) -> list[BacklogWorkItem]:
    """Build the content forest and report unparented work items once at the end."""
    builder = ContentTreeBuilder(records, fetch=fetch, defaults=defaults, unincluded_work_items=unincluded_work_items)
    forest = await builder.build(content)
    if builder.unincluded_work_items:
        unincluded = ", ".join(str(i) for i in sorted(builder.unincluded_work_items))
        logger.info("List of unparented Work Items: %s", unincluded)
    return forest
