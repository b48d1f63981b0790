"""Pulse log: append-only audit trail of coordination and ticket events.

Format, one entry per line:
    timestamp|task_id|event|details

Only the details column may contain '|'; the parser splits on the first three.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import structlog

from tasklatch.coord.model import SYSTEM_TASK, PulseEntry
from tasklatch.infra.fs import sanitize_field, utc_now

logger = structlog.get_logger()


def make_entry(timestamp: str, task_id: str, event: str, details: str) -> PulseEntry:
    return PulseEntry(
        timestamp=sanitize_field(timestamp, extra="|"),
        task_id=sanitize_field(task_id, extra="|") or SYSTEM_TASK,
        event=sanitize_field(event, extra="|").upper(),
        details=sanitize_field(details),
    )


def parse_line(line: str) -> PulseEntry | None:
    parts = line.rstrip("\n").split("|", 3)
    if len(parts) < 3:
        return None
    if len(parts) == 3:
        parts.append("")
    return PulseEntry(timestamp=parts[0], task_id=parts[1], event=parts[2], details=parts[3])


class FilePulseLog:
    def __init__(self, path: Path, *, now_fn: Callable[[], str] = utc_now) -> None:
        self.path = path
        self.now_fn = now_fn

    def append(self, task_id: str, event: str, details: str = "") -> PulseEntry:
        entry = make_entry(self.now_fn(), task_id, event, details)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(entry.to_line() + "\n")
        logger.debug("pulse_appended", task_id=entry.task_id, pulse_event=entry.event)
        return entry

    def entries(self) -> list[PulseEntry]:
        if not self.path.exists():
            return []
        result: list[PulseEntry] = []
        for lineno, line in enumerate(self.path.read_text("utf-8").splitlines(), start=1):
            if not line.strip():
                continue
            entry = parse_line(line)
            if entry is None:
                logger.warning("pulse_line_malformed", path=str(self.path), lineno=lineno)
                continue
            result.append(entry)
        return result

    def tail(self, limit: int) -> list[PulseEntry]:
        if limit <= 0:
            return []
        return self.entries()[-limit:]


class MemoryPulseLog:
    def __init__(self, *, now_fn: Callable[[], str] = utc_now) -> None:
        self.now_fn = now_fn
        self._entries: list[PulseEntry] = []

    def append(self, task_id: str, event: str, details: str = "") -> PulseEntry:
        entry = make_entry(self.now_fn(), task_id, event, details)
        self._entries.append(entry)
        return entry

    def entries(self) -> list[PulseEntry]:
        return list(self._entries)

    def tail(self, limit: int) -> list[PulseEntry]:
        if limit <= 0:
            return []
        return self._entries[-limit:]
