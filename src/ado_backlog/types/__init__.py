# IMPORT CONSTRAINT: types/ modules must only import from typing, stdlib, and each other.
# NEVER import from model.py, backlog.py or the exporters (circular imports).
"""Typed record shapes for the remote API and the JSON export."""

from __future__ import annotations

from ado_backlog.types.core import (
    BacklogDict,
    ProjectRecord,
    RelationAttributes,
    RelationDict,
    RelationRecord,
    WorkItemDict,
    WorkItemRecord,
    WorkItemTypeDict,
)

__all__ = [
    "BacklogDict",
    "ProjectRecord",
    "RelationAttributes",
    "RelationDict",
    "RelationRecord",
    "WorkItemDict",
    "WorkItemRecord",
    "WorkItemTypeDict",
]
