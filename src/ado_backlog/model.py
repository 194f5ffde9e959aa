"""Work item value objects wrapping raw API records.

A ``BacklogWorkItem`` is one node of the content tree. Its content is either
``Resolved`` (the raw record is known) or ``Pending`` (a placeholder for a
parent registered by id while its record is still being fetched). The pending
state only exists while the tree is being built; every accessor that needs the
record refuses to read a pending node.
"""

from __future__ import annotations

import functools
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ado_backlog.types import RelationDict, WorkItemDict, WorkItemRecord, WorkItemTypeDict

if TYPE_CHECKING:
    from ado_backlog.config import SortKey

FIELD_TITLE = "System.Title"
FIELD_TYPE = "System.WorkItemType"
FIELD_STATE = "System.State"
FIELD_TAGS = "System.Tags"
FIELD_DESCRIPTION = "System.Description"
FIELD_CHANGED_DATE = "System.ChangedDate"

PARENT_RELATION = "Parent"


class ContentTreeError(RuntimeError):
    """The remote dataset contradicts its own link graph, or a placeholder was misused."""


def get_id_from_url(url: str) -> int:
    """Parse the numeric work item id from the last segment of a relation URL."""
    return int(url.rstrip("/").rsplit("/", 1)[-1])


@dataclass(frozen=True)
class Relation:
    """A typed link from one work item to another, e.g. ``("Parent", 12)``."""

    relation_name: str
    work_item_id: int

    def to_dict(self) -> RelationDict:
        return {"relation_name": self.relation_name, "work_item_id": self.work_item_id}


def parse_relations(record: WorkItemRecord) -> list[Relation]:
    """Derive the relation list of a record, dropping malformed and self links.

    The relation name is the friendly link name (``attributes.name``, e.g.
    "Parent", "Child", "Related"), falling back to the reference name in ``rel``.
    Links to non work item resources (attachments, hyperlinks) have no numeric
    id in their URL and are skipped.
    """
    owner_id = record["id"]
    relations: list[Relation] = []
    for raw in record.get("relations") or []:
        rel = raw.get("rel")
        url = raw.get("url")
        if not rel or not url:
            continue
        try:
            target_id = get_id_from_url(url)
        except ValueError:
            continue
        if target_id == owner_id:
            continue
        name = (raw.get("attributes") or {}).get("name") or rel
        relations.append(Relation(name, target_id))
    return relations


@dataclass
class WorkItemType:
    """Display metadata of a work item type: its color and SVG icon markup."""

    name: str
    color: str
    icon: str

    @property
    def slug(self) -> str:
        return type_slug(self.name)

    def to_dict(self) -> WorkItemTypeDict:
        return {"name": self.name, "color": self.color, "icon": self.icon}


def type_slug(type_name: str) -> str:
    """CSS-safe slug for a type name ("User Story" -> "user-story")."""
    return "-".join(type_name.split()).lower()


@dataclass(frozen=True)
class Pending:
    """Placeholder content for a node whose record has not been fetched yet."""

    work_item_id: int


@dataclass(frozen=True)
class Resolved:
    record: WorkItemRecord


class BacklogWorkItem:
    """One node of the content tree."""

    def __init__(
        self,
        record: WorkItemRecord | None,
        has_children: bool,
        children: list[BacklogWorkItem] | None = None,
        *,
        pending_id: int | None = None,
    ) -> None:
        if record is None:
            if pending_id is None:
                msg = "A work item without a record needs a pending_id"
                raise ValueError(msg)
            if not has_children:
                msg = f"Placeholder #{pending_id} must be able to hold children"
                raise ValueError(msg)
            self.content: Pending | Resolved = Pending(pending_id)
        else:
            self.content = Resolved(record)
        self.has_children = has_children
        self._children: list[BacklogWorkItem] = list(children or [])
        self.relations: list[Relation] = []
        self._update_relations()

    @classmethod
    def placeholder(cls, work_item_id: int) -> BacklogWorkItem:
        """A pending parent node, resolved later by :meth:`resolve`."""
        return cls(None, True, pending_id=work_item_id)

    def __repr__(self) -> str:
        if isinstance(self.content, Pending):
            return f"BacklogWorkItem(#{self.content.work_item_id}, pending)"
        return f"BacklogWorkItem(#{self.id}, {self.type_name!r})"

    # -- Construction ----------------------------------------------------

    @property
    def is_resolved(self) -> bool:
        return isinstance(self.content, Resolved)

    def resolve(self, record: WorkItemRecord) -> None:
        """Fill a placeholder with its fetched record. Allowed exactly once."""
        match self.content:
            case Pending(work_item_id=expected):
                if record["id"] != expected:
                    msg = f"Placeholder #{expected} cannot receive record #{record['id']}"
                    raise ContentTreeError(msg)
                self.content = Resolved(record)
                self._update_relations()
            case Resolved():
                msg = f"Work item #{self.id} was already resolved"
                raise ContentTreeError(msg)

    def add_child(self, child: BacklogWorkItem) -> None:
        if not self.has_children:
            msg = f"Work item #{self.id} cannot hold children (adding #{child.id})"
            raise ContentTreeError(msg)
        self._children.append(child)

    def _update_relations(self) -> None:
        if isinstance(self.content, Resolved):
            self.relations = parse_relations(self.content.record)
        else:
            self.relations = []

    # -- Accessors -------------------------------------------------------

    @property
    def children(self) -> Sequence[BacklogWorkItem]:
        return self._children

    @property
    def id(self) -> int:
        if isinstance(self.content, Pending):
            return self.content.work_item_id
        return self.content.record["id"]

    @property
    def record(self) -> WorkItemRecord:
        if isinstance(self.content, Pending):
            msg = f"Work item #{self.content.work_item_id} is a placeholder that was never fetched"
            raise ContentTreeError(msg)
        return self.content.record

    @property
    def fields(self) -> dict[str, Any]:
        return self.record.get("fields") or {}

    def _required_field(self, name: str) -> Any:
        value = self.fields.get(name)
        if value is None:
            msg = f"Work item #{self.id} has no {name} defined"
            raise ValueError(msg)
        return value

    @property
    def title(self) -> str:
        return str(self._required_field(FIELD_TITLE)).strip()

    @property
    def type_name(self) -> str:
        return str(self._required_field(FIELD_TYPE))

    @property
    def state(self) -> str:
        return str(self._required_field(FIELD_STATE))

    @property
    def type_slug(self) -> str:
        return type_slug(self.type_name)

    @property
    def tags(self) -> list[str]:
        raw = self.fields.get(FIELD_TAGS)
        if not raw:
            return []
        return [tag.strip() for tag in str(raw).split(";") if tag.strip()]

    def parent_ids(self) -> list[int]:
        return [rel.work_item_id for rel in self.relations if rel.relation_name == PARENT_RELATION]

    def to_dict(self) -> WorkItemDict:
        return {
            "id": self.id,
            "type": self.type_name,
            "title": self.title,
            "state": str(self.fields.get(FIELD_STATE, "")),
            "tags": self.tags,
            "fields": dict(self.fields),
            "relations": [rel.to_dict() for rel in self.relations],
            "children": [child.to_dict() for child in self._children],
        }


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------


def _compare_values(a: Any, b: Any) -> int:
    """Three-way compare; missing values sort first, values that cannot be ordered tie."""
    if a is None or b is None:
        return (a is not None) - (b is not None)
    try:
        if a < b:
            return -1
        if a > b:
            return 1
    except TypeError:
        # Identity fields are dicts, and a field may mix numbers and strings
        return 0
    return 0


def sort_work_items(items: list[BacklogWorkItem], order_by: Iterable[SortKey]) -> None:
    """Stable in-place sort by one or more field keys.

    The first key is the most significant. Ties, including values of types
    that cannot be compared with each other, keep their original relative order.
    """
    keys = list(order_by)
    if not keys:
        return

    def compare(a: BacklogWorkItem, b: BacklogWorkItem) -> int:
        for key in keys:
            result = _compare_values(a.fields.get(key.field), b.fields.get(key.field))
            if key.direction == "desc":
                result = -result
            if result:
                return result
        return 0

    items.sort(key=functools.cmp_to_key(compare))
