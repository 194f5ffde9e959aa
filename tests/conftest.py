"""Shared pytest fixtures for ado-backlog tests."""

from __future__ import annotations

import logging
from collections.abc import Iterator

import pytest
from click.testing import CliRunner

from ado_backlog.config import ApiConfig
from ado_backlog.types import WorkItemRecord
from tests._factories import ORG_URL, make_record, relation


@pytest.fixture
def api_config() -> ApiConfig:
    return ApiConfig(organization_url=ORG_URL, token="secret-pat")


@pytest.fixture
def sample_records() -> list[WorkItemRecord]:
    """Epic 1 > Feature 10 > (Story 100, Bug 101), Epic 2 > Feature 20 > Story 200."""
    return [
        make_record(1, "Epic", "Checkout revamp", **{"Microsoft.VSTS.Common.BacklogPriority": 2}),
        make_record(2, "Epic", "Search", **{"Microsoft.VSTS.Common.BacklogPriority": 1}),
        make_record(10, "Feature", "One-click payment", parent=1),
        make_record(20, "Feature", "Faceted search", parent=2),
        make_record(100, "User Story", "Save card", parent=10, **{"System.Tags": "payments; ux"}),
        make_record(101, "Bug", "Card rejected", parent=10, relations=[relation("Related", 100)]),
        make_record(200, "User Story", "Filter by brand", parent=20),
    ]


@pytest.fixture
def cli_runner() -> CliRunner:
    """Click CLI test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def _reset_package_logger() -> Iterator[None]:
    """Drop the file handlers the CLI installs so tests never share a log file."""
    yield
    logger = logging.getLogger("ado_backlog")
    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
