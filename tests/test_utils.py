"""Tests for the file and encoding helpers."""

from __future__ import annotations

from pathlib import Path

import pytest

from ado_backlog.utils import sanitize_filename, to_data_uri, write_atomic


class TestWriteAtomic:
    def test_replaces_content(self, tmp_path: Path) -> None:
        target = tmp_path / "out.html"
        target.write_text("old", encoding="utf-8")
        write_atomic(target, "new ✓")
        assert target.read_text(encoding="utf-8") == "new ✓"
        assert list(tmp_path.iterdir()) == [target]

    def test_missing_folder(self, tmp_path: Path) -> None:
        with pytest.raises(OSError):
            write_atomic(tmp_path / "missing" / "out.html", "x")
        assert not (tmp_path / "missing").exists()


class TestSanitizeFilename:
    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("Save card", "Save card"),
            ('Import: "CSV" <v2>/fix?', "Import CSV v2fix"),
            ("Trailing dots...", "Trailing dots"),
            ("con", "_con"),
            ("LPT1.txt", "_LPT1.txt"),
            ("???", "_"),
        ],
    )
    def test_cleans_names(self, name: str, expected: str) -> None:
        assert sanitize_filename(name) == expected

    def test_truncates(self) -> None:
        assert sanitize_filename("x" * 300) == "x" * 200
        assert sanitize_filename("abcdef", max_length=3) == "abc"


def test_to_data_uri() -> None:
    assert to_data_uri(b"hi", "text/plain") == "data:text/plain;base64,aGk="
