"""Tests for the end-to-end export of a backlog."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import httpx
import pytest

from ado_backlog.config import (
    AppConfig,
    ApiConfig,
    ContentDefaults,
    OutputConfig,
    QueryConfig,
    ViewConfig,
)
from ado_backlog.pipeline import export_backlog, fetch_backlog, resolve_outputs
from ado_backlog.schema import ConfigError
from ado_backlog.templates import SectionBlock, TagsBlock, TemplateConfig
from ado_backlog.types import WorkItemRecord
from tests._factories import PROJECT_ID, make_backlog_config
from tests._fake_azure import FakeAzure, fabrikam, path

ATTACHMENT_ID = "0d1f2a3b-aaaa-bbbb-cccc-000000000001"
ATTACHMENT_URL = f"https://dev.azure.com/contoso/{PROJECT_ID}/_apis/wit/attachments/{ATTACHMENT_ID}?fileName=card.png"


def wiql(request: httpx.Request) -> httpx.Response:
    query = json.loads(request.content)["query"]
    ids = [100] if "CONTAINS 'payments'" in query else [10, 100, 101]
    return httpx.Response(200, json={"workItems": [{"id": i} for i in ids]})


@pytest.fixture
def azure(sample_records: list[WorkItemRecord]) -> FakeAzure:
    sample_records[4]["fields"]["System.Description"] = f'<p>Card form</p><img src="{ATTACHMENT_URL}">'
    azure = fabrikam(sample_records, [10, 100, 101])
    azure.routes["POST", path(f"{PROJECT_ID}/_apis/wit/wiql")] = wiql
    azure.routes["GET", path(f"{PROJECT_ID}/_apis/wit/attachments/{ATTACHMENT_ID}")] = lambda r: httpx.Response(500)
    return azure


@pytest.fixture
def app_config(api_config: ApiConfig) -> AppConfig:
    backlog = make_backlog_config(
        content_defaults=ContentDefaults(fetch_parents=True),
        views=[ViewConfig("Payments", QueryConfig(query="[System.Tags] CONTAINS 'payments'"))],
    )
    templates = tuple(
        TemplateConfig(t, (TagsBlock(), SectionBlock("System.Description", rich_text=True)))
        for t in ("Epic", "Feature", "User Story", "Bug")
    )
    return AppConfig(api=api_config, backlogs=(backlog,), templates=templates)


class TestFetchBacklog:
    async def test_builds_the_backlog(self, azure: FakeAzure, app_config: AppConfig, api_config: ApiConfig) -> None:
        async with azure.client(api_config) as client:
            backlog = await fetch_backlog(client, app_config, app_config.backlogs[0])
        # Epic 1 is not part of the query results and is fetched as a parent
        assert [wi.id for wi in backlog.work_items] == [1]
        assert [wi.id for wi in backlog.work_items[0].children[0].children] == [100, 101]
        assert backlog.views == {"Payments": frozenset({100})}
        assert backlog.get_state_color("Bug", "New") == "b2b2b2"

    async def test_view_query_is_restricted_to_the_backlog(
        self, azure: FakeAzure, app_config: AppConfig, api_config: ApiConfig
    ) -> None:
        async with azure.client(api_config) as client:
            await fetch_backlog(client, app_config, app_config.backlogs[0])
        queries = [json.loads(r.content)["query"] for r in azure.requests if r.url.path.endswith("/wiql")]
        assert queries == [
            "SELECT [System.Id] FROM workitems WHERE [System.State] <> 'Removed'",
            "SELECT [System.Id] FROM workitems WHERE ([System.Tags] CONTAINS 'payments') AND [System.State] <> 'Removed'",
        ]


class TestExportBacklog:
    async def test_writes_every_output(
        self,
        azure: FakeAzure,
        app_config: AppConfig,
        api_config: ApiConfig,
        tmp_path: Path,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        outputs = [
            OutputConfig(path=str(tmp_path / "{backlog.name}.html")),
            OutputConfig(path=str(tmp_path / "json" / "backlog.json"), mkdir=True),
        ]
        with caplog.at_level(logging.WARNING, logger="ado_backlog"):
            async with azure.client(api_config) as client:
                written = await export_backlog(client, app_config, app_config.backlogs[0], outputs)
        assert written == [tmp_path / "Team Backlog.html", tmp_path / "json" / "backlog.json"]
        html = written[0].read_text(encoding="utf-8")
        # The attachment could not be downloaded, the image keeps its link
        assert f'<img src="{ATTACHMENT_URL}">' in html
        assert "Could not download attachment" in caplog.text
        assert json.loads(written[1].read_text(encoding="utf-8"))["views"] == {"Payments": [100]}


class TestResolveOutputs:
    def test_configured_outputs(self) -> None:
        config = make_backlog_config(outputs=(OutputConfig("a.html"), OutputConfig("b", "markdown", overwrite=True)))
        assert resolve_outputs(config) == [OutputConfig("a.html"), OutputConfig("b", "markdown", overwrite=True)]

    def test_overwrite_and_format_apply_to_all(self) -> None:
        config = make_backlog_config(outputs=(OutputConfig("a.html"), OutputConfig("b", "markdown")))
        assert resolve_outputs(config, format="json", overwrite=True) == [
            OutputConfig("a.html", "json", overwrite=True),
            OutputConfig("b", "json", overwrite=True),
        ]

    def test_output_replaces_configured_outputs(self) -> None:
        config = make_backlog_config(outputs=(OutputConfig("a.html"),))
        assert resolve_outputs(config, "out/x.json") == [OutputConfig("out/x.json", None, overwrite=False, mkdir=True)]

    def test_no_output(self) -> None:
        with pytest.raises(ConfigError, match="has no outputs configured"):
            resolve_outputs(make_backlog_config())
