from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from tasklatch.tickets.model import Ticket

SYSTEM_AGENT = "SYSTEM"
SYSTEM_TASK = "-"

CLAIMS_FILE = "claims.tsv"
PULSE_FILE = "pulse.log"
LOCK_DIR = "lock"
CLAIM_COLUMNS = ("id", "agent", "claimed_at", "note")

# Delegated commands whose second argument is a task id.
TASK_SCOPED_COMMANDS = frozenset({"move", "criterion-add", "criterion-check", "evidence", "done"})
MUTATING_COMMANDS = frozenset(
    {"init", "new", "move", "criterion-add", "criterion-check", "evidence", "done", "render"}
)


@dataclass(frozen=True)
class CoordPaths:
    root: Path
    snapshot_name: str = "board.md"

    @property
    def claims_file(self) -> Path:
        return self.root / CLAIMS_FILE

    @property
    def pulse_file(self) -> Path:
        return self.root / PULSE_FILE

    @property
    def lock_dir(self) -> Path:
        return self.root / LOCK_DIR

    @property
    def snapshot_file(self) -> Path:
        return self.root / self.snapshot_name


@dataclass(frozen=True)
class Claim:
    task_id: str
    agent: str
    claimed_at: str
    note: str = ""


@dataclass(frozen=True)
class ClaimResult:
    claim: Claim
    created: bool


@dataclass(frozen=True)
class PulseEntry:
    timestamp: str
    task_id: str
    event: str
    details: str = ""

    def to_line(self) -> str:
        return f"{self.timestamp}|{self.task_id}|{self.event}|{self.details}"


@dataclass(frozen=True)
class LockInfo:
    held: bool
    agent: str = ""
    host: str = ""
    pid: int | None = None
    token: str = ""
    started: str = ""
    age_seconds: float | None = None

    @classmethod
    def free(cls) -> LockInfo:
        return cls(held=False)

    def describe(self) -> str:
        if not self.held:
            return "free"
        age = "unknown" if self.age_seconds is None else f"{self.age_seconds:.0f}s"
        pid = "unknown" if self.pid is None else str(self.pid)
        return (
            f"held by agent={self.agent or 'unknown'} host={self.host or 'unknown'} "
            f"pid={pid} started={self.started or 'unknown'} age={age}"
        )


class PulseLog(Protocol):
    def append(self, task_id: str, event: str, details: str = "") -> PulseEntry: ...

    def entries(self) -> list[PulseEntry]: ...

    def tail(self, limit: int) -> list[PulseEntry]: ...


class ClaimsStore(Protocol):
    def exists(self) -> bool: ...

    def ensure(self) -> None: ...

    def owner(self, task_id: str) -> str: ...

    def add(self, task_id: str, agent: str, note: str = "") -> Claim: ...

    def remove(self, task_id: str) -> bool: ...

    def list(self) -> list[Claim]: ...


class LockManager(Protocol):
    # Holder displaced by the most recent acquire(), if it had to reclaim.
    last_reclaimed: LockInfo | None

    def acquire(self, agent: str) -> str: ...

    def release(self, token: str) -> bool: ...

    def inspect(self) -> LockInfo: ...

    def is_stale(self) -> bool: ...

    def force_unlock(self) -> bool: ...


class TicketEngine(Protocol):
    def initialized(self) -> bool: ...

    def get(self, task_id: str) -> Ticket | None: ...

    def run(self, argv: Sequence[str]) -> str: ...
