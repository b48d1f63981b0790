"""Ticket engines: the collaborator that owns the ticket lifecycle.

The coordinator only needs ``initialized``, ``get`` and ``run``. Two engines
implement that surface:

- LocalTicketEngine runs the commands in-process against the TSV tables.
- CliTicketEngine shells out to an external binary with the same command
  surface (``tasklatch-tickets`` by default) and reads ticket state from the
  shared ``tickets.tsv``.
"""

from __future__ import annotations

import os
import subprocess
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from tasklatch.infra.errors import DelegatedCommandFailed, TicketError
from tasklatch.infra.fs import (
    atomic_write_text,
    read_table,
    sanitize_field,
    utc_now,
    write_table,
)
from tasklatch.tickets.model import (
    CRITERIA_FILE,
    CRITERION_COLUMNS,
    DONE_STATE,
    EVIDENCE_COLUMNS,
    EVIDENCE_FILE,
    TICKET_COLUMNS,
    TICKET_STATES,
    TICKETS_FILE,
    Criterion,
    Evidence,
    Ticket,
    next_ticket_id,
    split_deps,
)
from tasklatch.tickets.render import render_board

if TYPE_CHECKING:
    from tasklatch.coord.model import PulseLog

logger = structlog.get_logger()

USAGE = {
    "init": "init",
    "new": "new <state> <title> [deps]",
    "move": "move <task-id> <state>",
    "criterion-add": "criterion-add <task-id> <text>",
    "criterion-check": "criterion-check <task-id> <index>",
    "evidence": "evidence <task-id> <path> <note>",
    "done": "done <task-id> <path> <note>",
    "render": "render <output-path>",
}


def load_tickets(root: Path) -> list[Ticket]:
    path = root / TICKETS_FILE
    if not path.is_file():
        return []
    return [Ticket.from_row(row) for row in read_table(path, TICKET_COLUMNS) if row["id"]]


class LocalTicketEngine:
    def __init__(
        self,
        root: Path,
        *,
        pulse: PulseLog | None = None,
        now_fn: Callable[[], str] = utc_now,
        claims_file: str = "claims.tsv",
    ) -> None:
        self.root = root
        self.pulse = pulse
        self.now_fn = now_fn
        self.claims_file = claims_file

    @property
    def tickets_path(self) -> Path:
        return self.root / TICKETS_FILE

    @property
    def criteria_path(self) -> Path:
        return self.root / CRITERIA_FILE

    @property
    def evidence_path(self) -> Path:
        return self.root / EVIDENCE_FILE

    def initialized(self) -> bool:
        return self.tickets_path.is_file()

    def get(self, task_id: str) -> Ticket | None:
        for ticket in self.tickets():
            if ticket.id == task_id:
                return ticket
        return None

    def tickets(self) -> list[Ticket]:
        return load_tickets(self.root)

    def criteria(self, task_id: str | None = None) -> list[Criterion]:
        if not self.criteria_path.is_file():
            return []
        rows = read_table(self.criteria_path, CRITERION_COLUMNS)
        items = [Criterion.from_row(row) for row in rows]
        return [item for item in items if task_id is None or item.task_id == task_id]

    def evidence(self, task_id: str | None = None) -> list[Evidence]:
        if not self.evidence_path.is_file():
            return []
        rows = read_table(self.evidence_path, EVIDENCE_COLUMNS)
        items = [Evidence.from_row(row) for row in rows]
        return [item for item in items if task_id is None or item.task_id == task_id]

    def run(self, argv: Sequence[str]) -> str:
        try:
            return self.execute(argv)
        except TicketError as exc:
            raise DelegatedCommandFailed(str(exc)) from exc

    def execute(self, argv: Sequence[str]) -> str:
        if not argv:
            raise TicketError(f"missing command; expected one of: {', '.join(USAGE)}")
        command, args = argv[0], list(argv[1:])
        handler = {
            "init": self._init,
            "new": self._new,
            "move": self._move,
            "criterion-add": self._criterion_add,
            "criterion-check": self._criterion_check,
            "evidence": self._evidence,
            "done": self._done,
            "render": self._render,
        }.get(command)
        if handler is None:
            raise TicketError(f"unknown command: {command}")
        if command != "init" and not self.initialized():
            raise TicketError(f"ticket store missing at {self.root}; run 'init' first")
        return handler(args)

    def _init(self, args: list[str]) -> str:
        self._arity("init", args, 0)
        self.root.mkdir(parents=True, exist_ok=True)
        created = False
        for path, columns in (
            (self.tickets_path, TICKET_COLUMNS),
            (self.criteria_path, CRITERION_COLUMNS),
            (self.evidence_path, EVIDENCE_COLUMNS),
        ):
            if not path.exists():
                write_table(path, columns, [])
                created = True
        if created:
            self._pulse("-", "INIT", f"ticket store at {self.root}")
        return f"initialized {self.root}"

    def _new(self, args: list[str]) -> str:
        self._arity("new", args, 2, 3)
        state = self._require_state(args[0])
        title = sanitize_field(args[1])
        if not title:
            raise TicketError("title must not be empty")
        tickets = self.tickets()
        known = {ticket.id for ticket in tickets}
        deps = split_deps(args[2]) if len(args) == 3 else ()
        missing = [dep for dep in deps if dep not in known]
        if missing:
            raise TicketError(f"unknown dependencies: {', '.join(missing)}")
        if state == DONE_STATE:
            raise TicketError("new tasks can not start in 'done'")
        now = self.now_fn()
        ticket = Ticket(
            id=next_ticket_id([ticket.id for ticket in tickets]),
            state=state,
            title=title,
            deps=deps,
            created=now,
            updated=now,
        )
        tickets.append(ticket)
        self._write_tickets(tickets)
        self._pulse(ticket.id, "NEW", f"{state}: {title}")
        return ticket.id

    def _move(self, args: list[str]) -> str:
        self._arity("move", args, 2)
        ticket = self._require_ticket(args[0])
        state = self._require_state(args[1])
        if ticket.is_done:
            raise TicketError(f"task {ticket.id} is done and can not be moved")
        if state == DONE_STATE:
            raise TicketError(f"use 'done {ticket.id} <path> <note>' to complete a task")
        self._replace(ticket, state=state)
        self._pulse(ticket.id, "MOVE", f"{ticket.state} -> {state}")
        return f"{ticket.id} {state}"

    def _criterion_add(self, args: list[str]) -> str:
        self._arity("criterion-add", args, 2)
        ticket = self._require_ticket(args[0])
        text = sanitize_field(args[1])
        if not text:
            raise TicketError("criterion text must not be empty")
        criteria = self.criteria()
        index = 1 + max((c.index for c in criteria if c.task_id == ticket.id), default=0)
        criteria.append(Criterion(task_id=ticket.id, index=index, text=text))
        self._write_criteria(criteria)
        self._touch(ticket)
        self._pulse(ticket.id, "CRITERION_ADD", f"#{index} {text}")
        return f"{ticket.id} criterion {index}"

    def _criterion_check(self, args: list[str]) -> str:
        self._arity("criterion-check", args, 2)
        ticket = self._require_ticket(args[0])
        if not args[1].isdigit():
            raise TicketError(f"criterion index must be a positive integer (got {args[1]!r})")
        index = int(args[1])
        criteria = self.criteria()
        for position, criterion in enumerate(criteria):
            if criterion.task_id == ticket.id and criterion.index == index:
                criteria[position] = Criterion(
                    task_id=criterion.task_id,
                    index=criterion.index,
                    text=criterion.text,
                    checked=True,
                )
                break
        else:
            raise TicketError(f"task {ticket.id} has no criterion {index}")
        self._write_criteria(criteria)
        self._touch(ticket)
        self._pulse(ticket.id, "CRITERION_CHECK", f"#{index}")
        return f"{ticket.id} criterion {index} checked"

    def _evidence(self, args: list[str]) -> str:
        self._arity("evidence", args, 3)
        ticket = self._require_ticket(args[0])
        self._add_evidence(ticket, args[1], args[2])
        self._touch(ticket)
        self._pulse(ticket.id, "EVIDENCE", f"{args[1]} {args[2]}")
        return f"{ticket.id} evidence recorded"

    def _done(self, args: list[str]) -> str:
        self._arity("done", args, 3)
        ticket = self._require_ticket(args[0])
        if ticket.is_done:
            raise TicketError(f"task {ticket.id} is already done")
        open_criteria = [c.index for c in self.criteria(ticket.id) if not c.checked]
        if open_criteria:
            raise TicketError(
                f"task {ticket.id} has unchecked criteria: "
                + ", ".join(f"#{index}" for index in open_criteria)
            )
        states = {t.id: t.state for t in self.tickets()}
        blocking = [dep for dep in ticket.deps if states.get(dep) != DONE_STATE]
        if blocking:
            raise TicketError(
                f"task {ticket.id} depends on unfinished tasks: {', '.join(blocking)}"
            )
        self._add_evidence(ticket, args[1], args[2])
        self._replace(ticket, state=DONE_STATE)
        self._pulse(ticket.id, "DONE", f"{args[1]} {args[2]}")
        return f"{ticket.id} done"

    def _render(self, args: list[str]) -> str:
        self._arity("render", args, 1)
        output = Path(args[0])
        atomic_write_text(
            output,
            render_board(
                self.tickets(),
                self.criteria(),
                self.evidence(),
                owners=self._claim_owners(),
                generated_at=self.now_fn(),
            ),
        )
        logger.info("board_rendered", path=str(output))
        return str(output)

    def _claim_owners(self) -> dict[str, str]:
        path = self.root / self.claims_file
        if not path.is_file():
            return {}
        return {row["id"]: row["agent"] for row in read_table(path, ("id", "agent")) if row["id"]}

    def _add_evidence(self, ticket: Ticket, path: str, note: str) -> None:
        clean_path = sanitize_field(path)
        if not clean_path:
            raise TicketError("evidence path must not be empty")
        items = self.evidence()
        items.append(
            Evidence(
                task_id=ticket.id,
                path=clean_path,
                note=sanitize_field(note),
                added_at=self.now_fn(),
            )
        )
        write_table(self.evidence_path, EVIDENCE_COLUMNS, (item.to_row() for item in items))

    def _require_ticket(self, task_id: str) -> Ticket:
        ticket = self.get(task_id)
        if ticket is None:
            raise TicketError(f"task not found: {task_id}")
        return ticket

    @staticmethod
    def _require_state(state: str) -> str:
        normalized = state.strip().lower()
        if normalized not in TICKET_STATES:
            raise TicketError(
                f"unknown state {state!r}; expected one of: {', '.join(TICKET_STATES)}"
            )
        return normalized

    @staticmethod
    def _arity(command: str, args: list[str], low: int, high: int | None = None) -> None:
        high = low if high is None else high
        if not low <= len(args) <= high:
            raise TicketError(f"usage: {USAGE[command]}")

    def _replace(self, ticket: Ticket, *, state: str | None = None) -> None:
        tickets = self.tickets()
        for position, existing in enumerate(tickets):
            if existing.id == ticket.id:
                tickets[position] = Ticket(
                    id=existing.id,
                    state=existing.state if state is None else state,
                    title=existing.title,
                    deps=existing.deps,
                    created=existing.created,
                    updated=self.now_fn(),
                )
        self._write_tickets(tickets)

    def _touch(self, ticket: Ticket) -> None:
        self._replace(ticket)

    def _write_tickets(self, tickets: list[Ticket]) -> None:
        write_table(self.tickets_path, TICKET_COLUMNS, (ticket.to_row() for ticket in tickets))

    def _write_criteria(self, criteria: list[Criterion]) -> None:
        write_table(self.criteria_path, CRITERION_COLUMNS, (c.to_row() for c in criteria))

    def _pulse(self, task_id: str, event: str, details: str) -> None:
        if self.pulse is not None:
            self.pulse.append(task_id, event, details)


class CliTicketEngine:
    def __init__(self, root: Path, *, binary: str = "tasklatch-tickets") -> None:
        self.root = root
        self.binary = binary

    def initialized(self) -> bool:
        return (self.root / TICKETS_FILE).is_file()

    def get(self, task_id: str) -> Ticket | None:
        for ticket in load_tickets(self.root):
            if ticket.id == task_id:
                return ticket
        return None

    def run(self, argv: Sequence[str]) -> str:
        command = [self.binary, *argv]
        env = dict(os.environ)
        env["TASKLATCH_ROOT"] = str(self.root)
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                check=True,
                text=True,
                env=env,
            )
        except FileNotFoundError as exc:
            raise DelegatedCommandFailed(
                f"missing binary while running {' '.join(command)}: {exc}"
            ) from exc
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or "").strip()
            stdout = (exc.stdout or "").strip()
            message = stderr or stdout or f"command failed: {' '.join(command)}"
            raise DelegatedCommandFailed(message.removeprefix("error: ")) from exc
        return result.stdout.strip()
