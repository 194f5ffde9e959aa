"""Tests for structured logging."""

from __future__ import annotations

import json
import logging
import logging.handlers
from pathlib import Path

from ado_backlog.logging import setup_logging


def _records(logger: logging.Logger, log_path: Path) -> list[dict[str, object]]:
    for handler in logger.handlers:
        handler.flush()
    return [json.loads(line) for line in log_path.read_text(encoding="utf-8").splitlines()]


class TestSetupLogging:
    def test_creates_log_file(self, tmp_path: Path) -> None:
        state_dir = tmp_path / ".ado-backlog"
        logger = setup_logging(state_dir)
        logging.getLogger("ado_backlog.pipeline").info(
            "Downloaded %d work items", 12, extra={"backlog": "Team", "duration_ms": 42.5}
        )
        record = _records(logger, state_dir / "ado-backlog.log")[-1]
        assert record["msg"] == "Downloaded 12 work items"
        assert record["level"] == "INFO"
        assert record["logger"] == "ado_backlog.pipeline"
        assert record["backlog"] == "Team"
        assert record["duration_ms"] == 42.5
        assert "error" not in record

    def test_debug_level(self, tmp_path: Path) -> None:
        logger = setup_logging(tmp_path)
        logger.debug("hidden")
        assert logger.level == logging.INFO
        setup_logging(tmp_path, debug=True)
        logger.debug("shown")
        messages = [r["msg"] for r in _records(logger, tmp_path / "ado-backlog.log")]
        assert messages == ["shown"]

    def test_exception_is_recorded(self, tmp_path: Path) -> None:
        logger = setup_logging(tmp_path)
        try:
            raise ValueError("boom")
        except ValueError:
            logger.error("Export failed", exc_info=True, extra={"error": "boom"})
        record = _records(logger, tmp_path / "ado-backlog.log")[-1]
        assert record["exception"] == "boom"
        assert record["error"] == "boom"

    def test_idempotent_setup(self, tmp_path: Path) -> None:
        logger1 = setup_logging(tmp_path)
        logger2 = setup_logging(tmp_path)
        assert logger1 is logger2
        assert len(logger1.handlers) == 1

    def test_new_directory_replaces_handler(self, tmp_path: Path) -> None:
        setup_logging(tmp_path / "a")
        logger = setup_logging(tmp_path / "b")
        handlers = [h for h in logger.handlers if isinstance(h, logging.handlers.RotatingFileHandler)]
        assert len(handlers) == 1
        assert handlers[0].baseFilename == str((tmp_path / "b" / "ado-backlog.log").absolute())
