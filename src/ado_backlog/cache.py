"""Cache for remote lookups that rarely change between exports.

Three modes: ``off`` stores nothing, ``memory`` lives for one run, and
``persistent`` is loaded from and flushed to a JSON file. Entries are kept per
namespace (the organization URL) so one cache file can serve several
organizations.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from ado_backlog.config import CacheMode
from ado_backlog.model import WorkItemType
from ado_backlog.utils import write_atomic

logger = logging.getLogger(__name__)


class Cache:
    def __init__(self, mode: CacheMode, namespace: str, path: Path | None = None) -> None:
        if mode == "persistent" and path is None:
            msg = "A persistent cache needs a file path"
            raise ValueError(msg)
        self.mode = mode
        self.namespace = namespace
        # Only a persistent cache has a file
        self.path = path if mode == "persistent" else None
        self._data: dict[str, dict[str, Any]] = {}
        self._dirty = False
        if self.path is not None:
            self._load(self.path)

    def _load(self, path: Path) -> None:
        if not path.exists():
            return
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable cache file %s: %s", path, exc)
            return
        if isinstance(data, dict):
            self._data = {ns: entries for ns, entries in data.items() if isinstance(entries, dict)}

    @property
    def _entries(self) -> dict[str, Any]:
        return self._data.setdefault(self.namespace, {})

    def get(self, key: str) -> Any:
        if self.mode == "off":
            return None
        return self._entries.get(key)

    def set(self, key: str, value: Any) -> None:
        if self.mode == "off":
            return
        self._entries[key] = value
        self._dirty = True

    def flush(self) -> None:
        """Save pending entries of a persistent cache to disk."""
        if self.path is None or not self._dirty:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        write_atomic(self.path, json.dumps(self._data, indent=2))
        self._dirty = False
        logger.debug("Cache flushed to %s", self.path)

    # -- Typed accessors ----------------------------------------------------

    def get_project(self, project_name: str) -> dict[str, Any] | None:
        return self.get(f"project:{project_name}")

    def set_project(self, project_name: str, project: dict[str, Any]) -> None:
        self.set(f"project:{project_name}", project)

    def get_work_item_types(self, project_id: str) -> list[WorkItemType] | None:
        cached = self.get(f"work_item_types:{project_id}")
        if cached is None:
            return None
        return [WorkItemType(name=t["name"], color=t["color"], icon=t["icon"]) for t in cached]

    def set_work_item_types(self, project_id: str, types: list[WorkItemType]) -> None:
        self.set(f"work_item_types:{project_id}", [t.to_dict() for t in types])

    def get_work_item_states(self, project_name: str, types: list[str]) -> dict[str, dict[str, str]] | None:
        return self.get(f"work_item_states:{project_name}:{','.join(types)}")

    def set_work_item_states(self, project_name: str, types: list[str], states: dict[str, dict[str, str]]) -> None:
        self.set(f"work_item_states:{project_name}:{','.join(types)}", states)

    def get_attachment(self, project_id: str, attachment_id: str) -> str | None:
        return self.get(f"attachment:{project_id}:{attachment_id}")

    def set_attachment(self, project_id: str, attachment_id: str, data_uri: str) -> None:
        self.set(f"attachment:{project_id}:{attachment_id}", data_uri)
