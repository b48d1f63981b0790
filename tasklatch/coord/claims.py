"""Claims store: task id -> claiming agent.

The store does no locking of its own. Callers mutate it only while holding
the coordinator lock.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import structlog

from tasklatch.coord.model import CLAIM_COLUMNS, Claim
from tasklatch.infra.errors import ClaimConflict, NotInitialized
from tasklatch.infra.fs import read_table, sanitize_field, utc_now, write_table

logger = structlog.get_logger()


class FileClaimsStore:
    def __init__(self, path: Path, *, now_fn: Callable[[], str] = utc_now) -> None:
        self.path = path
        self.now_fn = now_fn

    def exists(self) -> bool:
        return self.path.is_file()

    def ensure(self) -> None:
        if self.exists():
            return
        write_table(self.path, CLAIM_COLUMNS, [])
        logger.info("claims_store_created", path=str(self.path))

    def owner(self, task_id: str) -> str:
        for claim in self.list():
            if claim.task_id == task_id:
                return claim.agent
        return ""

    def add(self, task_id: str, agent: str, note: str = "") -> Claim:
        claims = self.list()
        for claim in claims:
            if claim.task_id != task_id:
                continue
            if claim.agent != agent:
                raise ClaimConflict(task_id, claim.agent)
            return claim
        claim = Claim(
            task_id=sanitize_field(task_id),
            agent=sanitize_field(agent),
            claimed_at=self.now_fn(),
            note=sanitize_field(note),
        )
        claims.append(claim)
        self._write(claims)
        logger.info("claim_added", task_id=claim.task_id, agent=claim.agent)
        return claim

    def remove(self, task_id: str) -> bool:
        claims = self.list()
        remaining = [claim for claim in claims if claim.task_id != task_id]
        if len(remaining) == len(claims):
            return False
        self._write(remaining)
        logger.info("claim_removed", task_id=task_id)
        return True

    def list(self) -> list[Claim]:
        if not self.exists():
            raise NotInitialized(f"claims store missing at {self.path}; run 'init' first")
        return [
            Claim(
                task_id=row["id"],
                agent=row["agent"],
                claimed_at=row["claimed_at"],
                note=row["note"],
            )
            for row in read_table(self.path, CLAIM_COLUMNS)
            if row["id"]
        ]

    def _write(self, claims: list[Claim]) -> None:
        write_table(
            self.path,
            CLAIM_COLUMNS,
            (
                {
                    "id": claim.task_id,
                    "agent": claim.agent,
                    "claimed_at": claim.claimed_at,
                    "note": claim.note,
                }
                for claim in claims
            ),
        )


class MemoryClaimsStore:
    def __init__(self, *, now_fn: Callable[[], str] = utc_now, initialized: bool = True) -> None:
        self.now_fn = now_fn
        self._initialized = initialized
        self._claims: dict[str, Claim] = {}

    def exists(self) -> bool:
        return self._initialized

    def ensure(self) -> None:
        self._initialized = True

    def owner(self, task_id: str) -> str:
        self._require()
        claim = self._claims.get(task_id)
        return claim.agent if claim else ""

    def add(self, task_id: str, agent: str, note: str = "") -> Claim:
        self._require()
        existing = self._claims.get(task_id)
        if existing is not None:
            if existing.agent != agent:
                raise ClaimConflict(task_id, existing.agent)
            return existing
        claim = Claim(
            task_id=task_id,
            agent=agent,
            claimed_at=self.now_fn(),
            note=sanitize_field(note),
        )
        self._claims[task_id] = claim
        return claim

    def remove(self, task_id: str) -> bool:
        self._require()
        return self._claims.pop(task_id, None) is not None

    def list(self) -> list[Claim]:
        self._require()
        return list(self._claims.values())

    def _require(self) -> None:
        if not self._initialized:
            raise NotInitialized()
