"""Small filesystem and encoding helpers shared by the cache and the exporters."""

from __future__ import annotations

import base64
import contextlib
import os
import re
from pathlib import Path

_UNSAFE_FILENAME_CHARS = re.compile(r'[\x00-\x1f\x80-\x9f/\\?<>:*|"]')
_RESERVED_FILENAMES = re.compile(r"^(con|prn|aux|nul|com[0-9]|lpt[0-9])(\..*)?$", re.IGNORECASE)


def write_atomic(path: Path, content: str) -> None:
    """Write content to path atomically via temp file + os.replace()."""
    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        tmp.write_text(content, encoding="utf-8")
        os.replace(tmp, path)
    except BaseException:
        with contextlib.suppress(OSError):
            tmp.unlink()
        raise


def sanitize_filename(name: str, max_length: int = 200) -> str:
    """Strip characters that are invalid in file names on common platforms."""
    cleaned = _UNSAFE_FILENAME_CHARS.sub("", name).strip().rstrip(".")
    if cleaned in ("", ".", "..") or _RESERVED_FILENAMES.match(cleaned):
        cleaned = "_" + cleaned
    return cleaned[:max_length]


def to_data_uri(content: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(content).decode('ascii')}"
