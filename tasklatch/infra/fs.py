"""Flat-file helpers shared by the stores.

Tables are tab-separated with a header row. Every rewrite goes through a
temp file in the same directory followed by os.replace, so a reader sees
either the old or the new file, never a partial one.
"""

from __future__ import annotations

import os
import re
import tempfile
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from pathlib import Path

FIELD_SEP = "\t"
_UNSAFE_FIELD_RE = re.compile(r"[\t\r\n]+")


def utc_now() -> str:
    return datetime.now(tz=UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def sanitize_field(value: object, *, extra: str = "") -> str:
    """Collapse record/field delimiters in free text into single spaces."""
    text = _UNSAFE_FIELD_RE.sub(" ", str(value))
    for char in extra:
        text = text.replace(char, " ")
    return text.strip()


def atomic_write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.tmp.", dir=str(path.parent))
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()


def read_table(path: Path, columns: Sequence[str]) -> list[dict[str, str]]:
    """Read a TSV table; short rows are padded, blank lines skipped."""
    lines = path.read_text("utf-8").splitlines()
    if not lines:
        return []
    rows: list[dict[str, str]] = []
    for line in lines[1:]:
        if not line.strip():
            continue
        parts = line.split(FIELD_SEP)
        parts.extend([""] * (len(columns) - len(parts)))
        rows.append(dict(zip(columns, parts[: len(columns)], strict=True)))
    return rows


def write_table(path: Path, columns: Sequence[str], rows: Iterable[dict[str, str]]) -> None:
    lines = [FIELD_SEP.join(columns)]
    for row in rows:
        lines.append(FIELD_SEP.join(sanitize_field(row.get(column, "")) for column in columns))
    atomic_write_text(path, "\n".join(lines) + "\n")
