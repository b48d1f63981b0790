from __future__ import annotations

import contextlib
from collections.abc import Iterator, Sequence
from dataclasses import dataclass

import structlog

from tasklatch.coord.model import (
    MUTATING_COMMANDS,
    SYSTEM_AGENT,
    SYSTEM_TASK,
    TASK_SCOPED_COMMANDS,
    Claim,
    ClaimResult,
    ClaimsStore,
    CoordPaths,
    LockInfo,
    LockManager,
    PulseEntry,
    PulseLog,
    TicketEngine,
)
from tasklatch.infra.errors import (
    ClaimConflict,
    ClaimNotOwned,
    CoordError,
    DelegatedCommandFailed,
    NotInitialized,
    TaskAlreadyDone,
    TaskNotFound,
)
from tasklatch.infra.fs import sanitize_field

logger = structlog.get_logger()


@dataclass
class CoordService:
    paths: CoordPaths
    tickets: TicketEngine
    claims: ClaimsStore
    pulse: PulseLog
    lock: LockManager

    def init(self) -> None:
        with self._locked(SYSTEM_AGENT):
            self.tickets.run(["init"])
            self.claims.ensure()
            self.pulse.append(SYSTEM_TASK, "COLLAB_INIT", f"root={self.paths.root}")
            self._rerender()

    def claim(self, agent: str, task_id: str, note: str = "") -> ClaimResult:
        agent = _normalize_agent(agent)
        with self._locked(agent):
            self._require_initialized()
            ticket = self.tickets.get(task_id)
            if ticket is None:
                raise TaskNotFound(task_id)
            if ticket.is_done:
                raise TaskAlreadyDone(task_id)
            owner = self.claims.owner(task_id)
            if owner and owner != agent:
                raise ClaimConflict(task_id, owner)
            if owner == agent:
                result = ClaimResult(claim=self._find_claim(task_id), created=False)
            else:
                claim = self.claims.add(task_id, agent, note)
                details = f"{agent}: {claim.note}" if claim.note else agent
                self.pulse.append(task_id, "CLAIM", details)
                result = ClaimResult(claim=claim, created=True)
            self._rerender()
            return result

    def unclaim(self, agent: str, task_id: str) -> None:
        agent = _normalize_agent(agent)
        with self._locked(agent):
            self._require_initialized()
            self._require_owner(agent, task_id)
            self.claims.remove(task_id)
            self.pulse.append(task_id, "UNCLAIM", agent)
            self._rerender()

    def run(self, agent: str, argv: Sequence[str]) -> str:
        """Delegate a ticket command on behalf of agent; returns the engine's output."""
        agent = _normalize_agent(agent)
        if not argv:
            raise CoordError("run requires a delegated command after '--'")
        command = argv[0]
        with self._locked(agent):
            if command != "init":
                self._require_initialized()
            task_id: str | None = None
            if command in TASK_SCOPED_COMMANDS:
                if len(argv) < 2:
                    raise CoordError(f"{command} requires a task id")
                task_id = argv[1]
                self._require_owner(agent, task_id)
            output = self.tickets.run(list(argv))
            logger.info("delegated_command_ok", agent=agent, command=command, task_id=task_id)
            if command == "init":
                self.claims.ensure()
            if command == "done" and task_id is not None:
                self.claims.remove(task_id)
                self.pulse.append(task_id, "UNCLAIM", f"{agent}: auto-release on done")
            if command in MUTATING_COMMANDS and command != "render":
                self._rerender()
            return output

    def list_claims(self) -> list[Claim]:
        self._require_initialized()
        return self.claims.list()

    def lock_info(self) -> LockInfo:
        return self.lock.inspect()

    def unlock_stale(self) -> bool:
        """Remove the lock if it is stale. Returns False when it was already free."""
        previous = self.lock.inspect()
        removed = self.lock.force_unlock()
        if removed and self.claims.exists():
            self.pulse.append(SYSTEM_TASK, "LOCK_RECLAIMED", f"unlock-stale: {previous.describe()}")
        return removed

    def pulse_tail(self, limit: int = 20) -> list[PulseEntry]:
        return self.pulse.tail(limit)

    def _require_initialized(self) -> None:
        if not self.tickets.initialized():
            raise NotInitialized()
        if not self.claims.exists():
            raise NotInitialized("claims store is not initialized; run 'init' first")

    def _require_owner(self, agent: str, task_id: str) -> None:
        owner = self.claims.owner(task_id)
        if owner == agent:
            return
        if not owner:
            raise ClaimNotOwned(
                f"task {task_id} is not claimed; claim it as {agent} first",
                task_id=task_id,
            )
        raise ClaimNotOwned(
            f"task {task_id} is claimed by {owner}, not {agent}",
            task_id=task_id,
            owner=owner,
        )

    def _find_claim(self, task_id: str) -> Claim:
        for claim in self.claims.list():
            if claim.task_id == task_id:
                return claim
        raise CoordError(f"claim for {task_id} disappeared while holding the lock")

    def _rerender(self) -> None:
        # The mutation that triggered the render stands even if rendering fails.
        snapshot = self.paths.snapshot_file
        try:
            self.tickets.run(["render", str(snapshot)])
        except (DelegatedCommandFailed, OSError) as exc:
            logger.warning("render_failed", snapshot=str(snapshot), error=str(exc))
            self.pulse.append(SYSTEM_TASK, "RENDER_FAILED", str(exc))

    @contextlib.contextmanager
    def _locked(self, agent: str) -> Iterator[None]:
        token = self.lock.acquire(agent)
        try:
            reclaimed = self.lock.last_reclaimed
            if reclaimed is not None:
                self.pulse.append(
                    SYSTEM_TASK,
                    "LOCK_RECLAIMED",
                    f"{agent} reclaimed stale lock; previous {reclaimed.describe()}",
                )
            yield
        finally:
            self.lock.release(token)


def _normalize_agent(value: str) -> str:
    agent = sanitize_field(value)
    if not agent:
        raise CoordError("agent name must not be empty")
    return agent
