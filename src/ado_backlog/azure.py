"""Async client for the Azure DevOps REST API.

Only the handful of endpoints needed to export a backlog are covered: project
lookup, saved and WIQL queries, batched work item reads, work item type
metadata (colors, icons, state colors) and attachment downloads. Cacheable
lookups go through :class:`~ado_backlog.cache.Cache` first.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import re
from collections.abc import Sequence
from dataclasses import dataclass
from types import TracebackType
from typing import Any
from urllib.parse import quote, unquote

import httpx

from ado_backlog.cache import Cache
from ado_backlog.config import ApiConfig, QueryConfig
from ado_backlog.model import WorkItemType
from ado_backlog.types import ProjectRecord, WorkItemRecord
from ado_backlog.utils import to_data_uri

logger = logging.getLogger(__name__)

API_VERSION = "7.0"
BATCH_SIZE = 200
MAX_CONCURRENT_REQUESTS = 8
DEFAULT_TIMEOUT = 60.0

# <deployment>/<project id>/_apis/wit/attachments/<attachment id>?fileName=<file name>
_ATTACHMENT_URL = re.compile(
    r"(?P<project_id>[a-zA-Z0-9\-]+)/_apis/wit/attachments/(?P<attachment_id>[a-zA-Z0-9\-]+)\?fileName=(?P<file_name>[^&]+)"
)


class AzureClientError(RuntimeError):
    """A remote lookup found nothing (unknown project, unknown query...)."""


@dataclass(frozen=True)
class AttachmentRef:
    project_id: str
    attachment_id: str
    file_name: str


def parse_attachment_url(url: str) -> AttachmentRef | None:
    match = _ATTACHMENT_URL.search(url)
    if match is None:
        return None
    return AttachmentRef(
        project_id=match["project_id"],
        attachment_id=match["attachment_id"],
        file_name=unquote(match["file_name"]),
    )


def combine_wiql(view_query: str, backlog_query: str) -> str:
    """Restrict a view to its backlog; the backlog clause goes last so it may carry an ORDER BY."""
    return f"({view_query.strip()}) AND {backlog_query.strip()}"


def _chunks(ids: Sequence[int], size: int) -> list[list[int]]:
    return [list(ids[i : i + size]) for i in range(0, len(ids), size)]


def _flatten_queries(items: list[dict[str, Any]]) -> list[dict[str, Any]]:
    flat: list[dict[str, Any]] = []
    for item in items:
        flat.append(item)
        flat.extend(_flatten_queries(item.get("children") or []))
    return flat


def _query_result_ids(result: dict[str, Any]) -> list[int]:
    """Work item ids of a WIQL result, for flat and for tree/one-hop queries."""
    if "workItems" in result:
        return [wi["id"] for wi in result["workItems"]]
    ids: dict[int, None] = {}
    for relation in result.get("workItemRelations") or []:
        for end in ("source", "target"):
            if relation.get(end):
                ids.setdefault(relation[end]["id"], None)
    return list(ids)


class AzureClient:
    def __init__(
        self,
        api: ApiConfig,
        cache: Cache | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        max_concurrency: int = MAX_CONCURRENT_REQUESTS,
    ) -> None:
        self.api = api
        self.cache = cache or Cache("off", api.organization_url)
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._http = httpx.AsyncClient(
            base_url=api.organization_url.rstrip("/") + "/",
            auth=("", api.token),
            verify=not api.ignore_ssl,
            timeout=DEFAULT_TIMEOUT,
            transport=transport,
        )

    async def __aenter__(self) -> AzureClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        params = {"api-version": API_VERSION, **kwargs.pop("params", {})}
        async with self._semaphore:
            response = await self._http.request(method, url, params=params, **kwargs)
        response.raise_for_status()
        return response

    async def _json(self, method: str, url: str, **kwargs: Any) -> Any:
        return (await self._request(method, url, **kwargs)).json()

    # -- Projects -----------------------------------------------------------

    async def get_project_by_name(self, name: str) -> ProjectRecord:
        """Find a project by case-insensitive name.

        Raises:
            AzureClientError: If no project has that name.
        """
        cached = self.cache.get_project(name)
        if cached is not None:
            return cached  # type: ignore[return-value]

        logger.debug("Retrieving list of projects...")
        projects: list[ProjectRecord] = []
        continuation: str | None = None
        while True:
            params = {"$top": 500}
            if continuation:
                params["continuationToken"] = continuation  # type: ignore[assignment]
            response = await self._request("GET", "_apis/projects", params=params)
            projects.extend(response.json().get("value") or [])
            continuation = response.headers.get("x-ms-continuationtoken")
            if not continuation:
                break
        logger.debug("Found %d projects", len(projects))

        wanted = name.casefold()
        project = next((p for p in projects if (p.get("name") or "").casefold() == wanted), None)
        if project is None:
            msg = f"No project found in Azure DevOps named '{name}'"
            raise AzureClientError(msg)
        self.cache.set_project(name, dict(project))
        return project

    # -- Work items ---------------------------------------------------------

    async def _get_work_items_chunk(self, ids: list[int]) -> list[WorkItemRecord]:
        body = {"ids": ids, "$expand": "Relations"}
        result = await self._json("POST", "_apis/wit/workitemsbatch", json=body)
        return [wi for wi in result.get("value") or [] if wi is not None]

    async def get_work_items_by_id(self, ids: Sequence[int]) -> list[WorkItemRecord]:
        """Fetch records with relations, in chunks requested concurrently.

        Results keep the order of the chunks (and, within a chunk, whatever
        order the service returns).
        """
        if not ids:
            return []
        chunks = _chunks(ids, BATCH_SIZE)
        logger.debug("Fetching %d work items in %d requests", len(ids), len(chunks))
        results = await asyncio.gather(*(self._get_work_items_chunk(chunk) for chunk in chunks))
        return [record for chunk in results for record in chunk]

    # -- Queries ------------------------------------------------------------

    async def get_query_results_by_id(self, project: ProjectRecord, query_id: str) -> list[int]:
        logger.debug("Executing query by id %s for project %s", query_id, project.get("name"))
        try:
            result = await self._json("GET", f"{project['id']}/_apis/wit/wiql/{quote(query_id)}")
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == httpx.codes.NOT_FOUND:
                msg = f"No query found with id '{query_id}' in project {project.get('name')}"
                raise AzureClientError(msg) from exc
            raise
        return _query_result_ids(result)

    async def get_query_results_by_name(self, project: ProjectRecord, query_name: str) -> list[int]:
        logger.debug("Retrieving list of all queries for project %s", project.get("name"))
        result = await self._json(
            "GET", f"{project['id']}/_apis/wit/queries", params={"$depth": 2, "$expand": "minimal"}
        )
        query = next((q for q in _flatten_queries(result.get("value") or []) if q.get("name") == query_name), None)
        if query is None:
            msg = f"No query found with name '{query_name}' in project {project.get('name')}"
            raise AzureClientError(msg)
        return await self.get_query_results_by_id(project, query["id"])

    async def get_query_results_by_wiql(self, project: ProjectRecord, where_clause: str) -> list[int]:
        query = "SELECT [System.Id] FROM workitems WHERE " + where_clause
        logger.debug("Executing WIQL query %r for project %s", query, project.get("name"))
        result = await self._json("POST", f"{project['id']}/_apis/wit/wiql", json={"query": query})
        return _query_result_ids(result)

    async def get_query_results(self, project: ProjectRecord, query: QueryConfig) -> list[int]:
        """Run whichever single query option is set.

        Raises:
            AzureClientError: If none or more than one option is set.
        """
        provided = [q for q in (query.query, query.query_id, query.query_name) if q is not None]
        if len(provided) != 1:
            msg = f"Exactly one query option must be provided (id, name or wiql), {len(provided)} were provided"
            raise AzureClientError(msg)
        if query.query_id is not None:
            return await self.get_query_results_by_id(project, query.query_id)
        if query.query_name is not None:
            return await self.get_query_results_by_name(project, query.query_name)
        return await self.get_query_results_by_wiql(project, provided[0])

    async def get_query_work_items(self, project: ProjectRecord, query: QueryConfig) -> list[WorkItemRecord]:
        return await self.get_work_items_by_id(await self.get_query_results(project, query))

    # -- Work item types ----------------------------------------------------

    async def _get_icon_svg(self, icon: dict[str, Any] | None, color: str) -> str:
        if not icon or not icon.get("id"):
            return ""
        params: dict[str, Any] = {"v": 2}
        if color:
            params["color"] = color[-6:]
        response = await self._request(
            "GET", f"_apis/wit/workitemicons/{quote(icon['id'])}", params=params, headers={"Accept": "image/svg+xml"}
        )
        return response.text

    async def get_work_item_types(self, project_id: str) -> list[WorkItemType]:
        """All work item types of a project with their color and SVG icon."""
        cached = self.cache.get_work_item_types(project_id)
        if cached is not None:
            return cached

        result = await self._json("GET", f"{project_id}/_apis/wit/workitemtypes")
        raw_types: list[dict[str, Any]] = result.get("value") or []
        icons = await asyncio.gather(*(self._get_icon_svg(t.get("icon"), t.get("color") or "") for t in raw_types))
        types = [
            WorkItemType(name=t["name"], color=t.get("color") or "", icon=icon)
            for t, icon in zip(raw_types, icons, strict=True)
        ]
        self.cache.set_work_item_types(project_id, types)
        return types

    async def _get_type_states(self, project: ProjectRecord, type_name: str) -> dict[str, str]:
        result = await self._json("GET", f"{project['id']}/_apis/wit/workitemtypes/{quote(type_name)}/states")
        return {s["name"]: s.get("color") or "" for s in result.get("value") or []}

    async def get_work_item_states(self, project: ProjectRecord, type_names: Sequence[str]) -> dict[str, dict[str, str]]:
        """State name -> color, per work item type."""
        names = list(type_names)
        cached = self.cache.get_work_item_states(project["name"], names)
        if cached is not None:
            return cached

        colors = await asyncio.gather(*(self._get_type_states(project, name) for name in names))
        states = dict(zip(names, colors, strict=True))
        self.cache.set_work_item_states(project["name"], names, states)
        return states

    # -- Attachments --------------------------------------------------------

    async def download_attachment(self, ref: AttachmentRef) -> bytes:
        response = await self._request(
            "GET",
            f"{ref.project_id}/_apis/wit/attachments/{ref.attachment_id}",
            params={"fileName": ref.file_name, "download": "true"},
        )
        return response.content

    async def download_attachment_data_uri(self, url: str) -> str | None:
        """Inline an attachment URL as a data URI; ``None`` for non attachment URLs."""
        ref = parse_attachment_url(url)
        if ref is None:
            return None

        cached = self.cache.get_attachment(ref.project_id, ref.attachment_id)
        if cached is not None:
            return cached

        logger.debug("Downloading attachment %s (%s)", ref.attachment_id, ref.file_name)
        content = await self.download_attachment(ref)
        mime_type = mimetypes.guess_type(ref.file_name)[0] or "application/octet-stream"
        data_uri = to_data_uri(content, mime_type)
        self.cache.set_attachment(ref.project_id, ref.attachment_id, data_uri)
        return data_uri
