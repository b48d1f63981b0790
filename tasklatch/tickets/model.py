from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass

TICKETS_FILE = "tickets.tsv"
CRITERIA_FILE = "criteria.tsv"
EVIDENCE_FILE = "evidence.tsv"

TICKET_COLUMNS = ("id", "state", "title", "deps", "created", "updated")
CRITERION_COLUMNS = ("id", "index", "text", "checked")
EVIDENCE_COLUMNS = ("id", "path", "note", "added_at")

TICKET_STATES = ("todo", "in-progress", "blocked", "review", "done")
DONE_STATE = "done"

ID_RE = re.compile(r"^T-(\d{4,})$")


def format_ticket_id(number: int) -> str:
    return f"T-{number:04d}"


def next_ticket_id(existing: list[str]) -> str:
    max_n = 0
    for ticket_id in existing:
        match = ID_RE.match(ticket_id)
        if match:
            max_n = max(max_n, int(match.group(1)))
    return format_ticket_id(max_n + 1)


def split_deps(value: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in value.split(",") if part.strip())


@dataclass(frozen=True)
class Ticket:
    id: str
    state: str
    title: str
    deps: tuple[str, ...] = ()
    created: str = ""
    updated: str = ""

    @classmethod
    def from_row(cls, row: Mapping[str, str]) -> Ticket:
        return cls(
            id=row.get("id", ""),
            state=row.get("state", ""),
            title=row.get("title", ""),
            deps=split_deps(row.get("deps", "")),
            created=row.get("created", ""),
            updated=row.get("updated", ""),
        )

    def to_row(self) -> dict[str, str]:
        return {
            "id": self.id,
            "state": self.state,
            "title": self.title,
            "deps": ",".join(self.deps),
            "created": self.created,
            "updated": self.updated,
        }

    @property
    def is_done(self) -> bool:
        return self.state == DONE_STATE


@dataclass(frozen=True)
class Criterion:
    task_id: str
    index: int
    text: str
    checked: bool = False

    @classmethod
    def from_row(cls, row: Mapping[str, str]) -> Criterion:
        raw_index = row.get("index", "0")
        return cls(
            task_id=row.get("id", ""),
            index=int(raw_index) if raw_index.isdigit() else 0,
            text=row.get("text", ""),
            checked=row.get("checked", "") == "1",
        )

    def to_row(self) -> dict[str, str]:
        return {
            "id": self.task_id,
            "index": str(self.index),
            "text": self.text,
            "checked": "1" if self.checked else "0",
        }


@dataclass(frozen=True)
class Evidence:
    task_id: str
    path: str
    note: str
    added_at: str

    @classmethod
    def from_row(cls, row: Mapping[str, str]) -> Evidence:
        return cls(
            task_id=row.get("id", ""),
            path=row.get("path", ""),
            note=row.get("note", ""),
            added_at=row.get("added_at", ""),
        )

    def to_row(self) -> dict[str, str]:
        return {
            "id": self.task_id,
            "path": self.path,
            "note": self.note,
            "added_at": self.added_at,
        }
