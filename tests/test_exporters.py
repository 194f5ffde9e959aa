"""Tests for the HTML, JSON and Markdown exporters and the exporter manager."""

from __future__ import annotations

import io
import json
import logging
from datetime import datetime
from pathlib import Path

import pytest

from ado_backlog.backlog import Backlog
from ado_backlog.config import (
    AppendixConfig,
    BrandConfig,
    QueryConfig,
    TocConfig,
    TocValueConfig,
    ViewConfig,
)
from ado_backlog.exporter_manager import ExporterManager
from ado_backlog.exporters import (
    ExporterOptions,
    HTMLExporter,
    JsonExporter,
    MarkdownExporter,
    OutputError,
    prepare_output,
)
from ado_backlog.exporters.html import render_markdown
from ado_backlog.exporters.markdown import html_to_markdown
from ado_backlog.schema import ConfigError
from ado_backlog.templates import SectionBlock, TagsBlock, TemplateConfig, TemplateRegistry
from ado_backlog.types import WorkItemRecord
from tests._factories import build_forest, make_backlog, make_backlog_config

NOW = datetime(2024, 1, 5, 9, 30)


@pytest.fixture
def templates() -> TemplateRegistry:
    return TemplateRegistry(
        TemplateConfig(t, (TagsBlock(), SectionBlock("System.Description", "Description", rich_text=True)))
        for t in ("Epic", "Feature", "User Story", "Bug")
    )


@pytest.fixture
def records(sample_records: list[WorkItemRecord]) -> list[WorkItemRecord]:
    sample_records[4]["fields"]["System.Description"] = "<h2>Goal</h2><p>Pay <strong>fast</strong></p><ul><li>one</li></ul>"
    sample_records[4]["fields"]["Microsoft.VSTS.Scheduling.StoryPoints"] = 5
    return sample_records


async def render_html(backlog: Backlog, templates: TemplateRegistry) -> str:
    buffer = io.StringIO()
    await HTMLExporter(backlog, templates).render(buffer, NOW)
    return buffer.getvalue()


class TestPrepareOutput:
    def test_missing_folder(self, tmp_path: Path) -> None:
        with pytest.raises(OutputError, match="does not exist"):
            prepare_output(tmp_path / "out" / "b.html", ExporterOptions())

    def test_mkdir(self, tmp_path: Path) -> None:
        prepare_output(tmp_path / "out" / "deep" / "b.html", ExporterOptions(mkdir=True))
        assert (tmp_path / "out" / "deep").is_dir()

    def test_existing_file(self, tmp_path: Path) -> None:
        target = tmp_path / "b.html"
        target.write_text("old", encoding="utf-8")
        with pytest.raises(OutputError, match="Output file .* already exists"):
            prepare_output(target, ExporterOptions())
        prepare_output(target, ExporterOptions(overwrite=True))
        assert not target.exists()

    def test_existing_folder(self, tmp_path: Path) -> None:
        target = tmp_path / "md"
        (target / "nested").mkdir(parents=True)
        with pytest.raises(OutputError, match="Output folder .* already exists"):
            prepare_output(target, ExporterOptions(), is_dir=True)
        prepare_output(target, ExporterOptions(overwrite=True), is_dir=True)
        assert not target.exists()


class TestHTMLExporter:
    async def test_document_structure(self, records: list[WorkItemRecord], templates: TemplateRegistry) -> None:
        html = await render_html(make_backlog(build_forest(records)), templates)
        assert html.startswith("<!doctype html>")
        assert "<title>Team Backlog</title>" in html
        assert ".icon.icon-wi-user-story {" in html
        assert ".icon.icon-tag {" in html
        assert "<h1>Team Backlog</h1>" in html
        assert "<small>Friday, January 5, 2024</small>" in html
        assert "Document generated on Friday, January 5, 2024." in html
        assert "initTabBars" in html
        assert html.rstrip().endswith("</html>")

    async def test_articles_follow_the_tree(self, records: list[WorkItemRecord], templates: TemplateRegistry) -> None:
        html = await render_html(make_backlog(build_forest(records)), templates)
        expected = [
            (1, "epic"), (10, "feature"), (100, "user-story"), (101, "bug"), (2, "epic"), (20, "feature"), (200, "user-story")
        ]
        positions = [html.index(f'<article class="workitem {slug}" id="{i}"') for i, slug in expected]
        assert positions == sorted(positions)

    async def test_toc_list(self, records: list[WorkItemRecord], templates: TemplateRegistry) -> None:
        html = await render_html(make_backlog(build_forest(records)), templates)
        assert '<ul id="toc-list" style="margin-top: 5px;" class="collapsible-list">' in html
        assert '<li style="list-style-type: none" data-list-item-id="1">' in html
        assert '<li style="list-style-type: none" data-list-item-id="10" data-list-parent-item-id="1">' in html
        assert '<li style="list-style-type: none" data-list-item-id="101" data-list-parent-item-id="10">' in html
        assert '<li style="list-style-type: none" data-list-item-id="2">' in html
        assert "<h1>Table of Contents</h1>" in html

    async def test_toc_hide_header(self, records: list[WorkItemRecord], templates: TemplateRegistry) -> None:
        backlog = make_backlog(build_forest(records), toc=TocConfig(hide_header=True))
        assert "Table of Contents" not in await render_html(backlog, templates)

    async def test_toc_grid(self, records: list[WorkItemRecord], templates: TemplateRegistry) -> None:
        toc = TocConfig(mode="grid", values=(TocValueConfig("State", "System.State", width="120px"),))
        html = await render_html(make_backlog(build_forest(records), toc=toc), templates)
        assert '<table id="toc-grid" class="data-grid collapsible-data-grid">' in html
        assert '<th title="State" style="width: 120px; max-width: 120px;">State</th>' in html
        assert '<tr data-grid-row-id="1" data-grid-row-level="0">' in html
        assert '<tr data-grid-row-id="10" data-grid-parent-row-id="1" data-grid-row-level="1">' in html
        assert '<tr data-grid-row-id="101" data-grid-parent-row-id="10" data-grid-row-level="2">' in html
        assert '<tr data-grid-row-id="2" data-grid-row-level="0">' in html
        assert '<td style="text-align: left"><span title="New"><span class="state-indicator"' in html
        assert 'id="toc-list"' not in html

    async def test_grid_column_mismatch_is_logged(
        self, records: list[WorkItemRecord], templates: TemplateRegistry, caplog: pytest.LogCaptureFixture
    ) -> None:
        toc = TocConfig(
            mode="grid",
            values=(
                TocValueConfig("State", "System.State"),
                TocValueConfig("Points", "Microsoft.VSTS.Scheduling.StoryPoints", align="right", work_item_types=("User Story",)),
            ),
        )
        with caplog.at_level(logging.ERROR, logger="ado_backlog"):
            html = await render_html(make_backlog(build_forest(records), toc=toc), templates)
        assert "User Story has a different number of columns than work item type Epic" in caplog.text
        assert '<td style="text-align: right">5</td>' in html

    async def test_views_tabbar(self, records: list[WorkItemRecord], templates: TemplateRegistry) -> None:
        config = make_backlog_config(views=[ViewConfig("Payments", QueryConfig(query="[System.Tags] CONTAINS 'payments'"))])
        backlog = make_backlog(build_forest(records), config, views={"Payments": [101, 10, 100]})
        html = await render_html(backlog, templates)
        assert '<a class="tab active" data-tab-context="all">All</a>' in html
        assert '<a class="tab" data-tab-context="10,100,101">Payments</a>' in html

    async def test_no_views_no_tabbar(self, records: list[WorkItemRecord], templates: TemplateRegistry) -> None:
        assert 'id="views"' not in await render_html(make_backlog(build_forest(records)), templates)

    async def test_brands_and_appendixes(
        self, records: list[WorkItemRecord], templates: TemplateRegistry, tmp_path: Path
    ) -> None:
        logo = tmp_path / "logo.png"
        logo.write_bytes(b"\x89PNG")
        config = make_backlog_config(
            brands=(BrandConfig(logo),),
            appendixes=(AppendixConfig("Glossary", "| Term | Meaning |\n|---|---|\n| WIQL | query language |"),),
        )
        html = await render_html(make_backlog(build_forest(records), config), templates)
        assert '<div class="brand right"><img src="data:image/png;base64,iVBORw==" /></div>' in html
        assert '<section class="appendix from-markdown">\n<h1>Glossary</h1>' in html
        assert "<td>WIQL</td>" in html

    async def test_run_writes_and_copies(
        self, records: list[WorkItemRecord], templates: TemplateRegistry, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        exporter = HTMLExporter(make_backlog(build_forest(records)), templates)
        renders: list[int] = []
        original = exporter.render

        async def counting_render(buffer: io.StringIO, now: datetime | None = None) -> None:
            renders.append(1)
            await original(buffer, now)

        monkeypatch.setattr(exporter, "render", counting_render)
        first, second = tmp_path / "a.html", tmp_path / "b.html"
        await exporter.run(first, ExporterOptions())
        await exporter.run(second, ExporterOptions())
        assert renders == [1]
        assert first.read_text(encoding="utf-8") == second.read_text(encoding="utf-8")

    def test_accepts(self, records: list[WorkItemRecord], templates: TemplateRegistry) -> None:
        exporter = HTMLExporter(make_backlog(build_forest(records)), templates)
        assert exporter.accepts("out/Backlog.HTML")
        assert exporter.accepts("b.htm")
        assert not exporter.accepts("b.json")


def test_render_markdown_keeps_indented_text_as_paragraphs() -> None:
    html = render_markdown("Intro\n\n    indented note")
    assert "<pre>" not in html
    assert "indented note" in html


class TestJsonExporter:
    async def test_writes_backlog_dict(self, records: list[WorkItemRecord], templates: TemplateRegistry, tmp_path: Path) -> None:
        backlog = make_backlog(build_forest(records))
        target = tmp_path / "backlog.json"
        await JsonExporter(backlog, templates).run(target, ExporterOptions())
        data = json.loads(target.read_text(encoding="utf-8"))
        assert data == json.loads(json.dumps(backlog.to_dict()))
        assert data["work_items"][0]["id"] == 1


class TestMarkdownExporter:
    async def test_folder_tree(self, records: list[WorkItemRecord], templates: TemplateRegistry, tmp_path: Path) -> None:
        records[6]["fields"]["System.Title"] = "Filter by brand/size?"
        target = tmp_path / "md"
        await MarkdownExporter(make_backlog(build_forest(records)), templates).run(target, ExporterOptions())

        epic = target / "1 - Checkout revamp"
        story = epic / "10 - One-click payment" / "100 - Save card.md"
        assert (target / "1 - Checkout revamp.md").read_text(encoding="utf-8") == "# 1 - Checkout revamp\n"
        assert (epic / "10 - One-click payment.md").is_file()
        assert (epic / "10 - One-click payment" / "101 - Card rejected.md").is_file()
        assert (target / "2 - Search" / "20 - Faceted search" / "200 - Filter by brandsize.md").is_file()
        content = story.read_text(encoding="utf-8")
        assert content.startswith("# 100 - Save card\n\n## Goal")
        assert "Pay **fast**" in content
        assert "- one" in content

    async def test_existing_folder(self, records: list[WorkItemRecord], templates: TemplateRegistry, tmp_path: Path) -> None:
        target = tmp_path / "md"
        target.mkdir()
        exporter = MarkdownExporter(make_backlog(build_forest(records)), templates)
        with pytest.raises(OutputError):
            await exporter.run(target, ExporterOptions())
        await exporter.run(target, ExporterOptions(overwrite=True))
        assert (target / "2 - Search.md").is_file()

    def test_only_selected_by_format(self, records: list[WorkItemRecord], templates: TemplateRegistry) -> None:
        assert not MarkdownExporter(make_backlog(build_forest(records)), templates).accepts("out/backlog")

    def test_html_to_markdown(self) -> None:
        assert html_to_markdown("") == ""
        assert html_to_markdown("<p>a</p><p>b</p>") == "a\n\nb"


class TestExporterManager:
    @pytest.fixture
    def manager(self, records: list[WorkItemRecord], templates: TemplateRegistry) -> ExporterManager:
        config = make_backlog_config(name="Team A")
        return ExporterManager.with_default_formats(make_backlog(build_forest(records), config), config, templates)

    def test_find_exporter(self, manager: ExporterManager) -> None:
        assert isinstance(manager.find_exporter("a.html"), HTMLExporter)
        assert isinstance(manager.find_exporter("a.json"), JsonExporter)
        assert isinstance(manager.find_exporter("a.html", "markdown"), MarkdownExporter)
        assert manager.find_exporter("a.pdf") is None
        assert manager.find_exporter("a.html", "pdf") is None

    def test_interpolate(self, manager: ExporterManager) -> None:
        assert manager.interpolate("{backlog.name} {now:%Y}.html", NOW) == "Team A 2024.html"

    async def test_run(self, manager: ExporterManager, tmp_path: Path) -> None:
        path = await manager.run(str(tmp_path / "b.json"))
        assert path == tmp_path / "b.json"
        assert path.is_file()

    async def test_no_exporter(self, manager: ExporterManager, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="No exporter found for output '.*b.pdf'"):
            await manager.run(str(tmp_path / "b.pdf"))
        with pytest.raises(ConfigError, match="No exporter found for output format 'pdf'"):
            await manager.run(str(tmp_path / "b.html"), "pdf")
