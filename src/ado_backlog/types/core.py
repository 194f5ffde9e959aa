"""Foundational TypedDicts for raw API records and to_dict() returns."""

from __future__ import annotations

from typing import Any, NotRequired, TypedDict


class RelationAttributes(TypedDict, total=False):
    name: str
    isLocked: bool


class RelationRecord(TypedDict, total=False):
    """One entry of a work item's ``relations`` array as returned by the API."""

    rel: str
    url: str
    attributes: RelationAttributes


class WorkItemRecord(TypedDict):
    """A work item as returned by ``workitemsbatch`` with ``$expand=Relations``."""

    id: int
    fields: dict[str, Any]
    relations: NotRequired[list[RelationRecord]]
    rev: NotRequired[int]
    url: NotRequired[str]


class RelationDict(TypedDict):
    relation_name: str
    work_item_id: int


class WorkItemTypeDict(TypedDict):
    name: str
    color: str
    icon: str


class WorkItemDict(TypedDict):
    id: int
    type: str
    title: str
    state: str
    tags: list[str]
    fields: dict[str, Any]
    relations: list[RelationDict]
    children: list[WorkItemDict]


class BacklogDict(TypedDict):
    name: str
    project: str
    work_item_types: list[WorkItemTypeDict]
    work_item_state_colors: dict[str, dict[str, str]]
    views: dict[str, list[int]]
    work_items: list[WorkItemDict]


class ProjectRecord(TypedDict, total=False):
    """A team project reference as returned by ``_apis/projects``."""

    id: str
    name: str
    url: str
    state: str
