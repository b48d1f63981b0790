"""tasklatch: claims and a shared lock in front of the ticket engine.

    tasklatch init
    tasklatch claim <agent> <task-id> [note]
    tasklatch unclaim <agent> <task-id>
    tasklatch claims
    tasklatch run <agent> -- <ticket command...>
    tasklatch lock-info
    tasklatch unlock-stale
    tasklatch pulse [--limit N]
"""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence
from pathlib import Path

from pydantic import ValidationError

from tasklatch.config.settings import CoordSettings
from tasklatch.coord.claims import FileClaimsStore
from tasklatch.coord.lock import DirLock
from tasklatch.coord.model import CoordPaths, TicketEngine
from tasklatch.coord.pulse import FilePulseLog
from tasklatch.coord.service import CoordService
from tasklatch.infra.errors import CoordError, TaskLatchError
from tasklatch.infra.logging import setup_logging
from tasklatch.infra.parser import CliArgumentParser, parse_or_exit_code
from tasklatch.tickets.engine import CliTicketEngine, LocalTicketEngine


def build_parser() -> argparse.ArgumentParser:
    parser = CliArgumentParser(
        prog="tasklatch",
        description="Multi-agent claims and locking for the flat-file ticket tracker",
    )
    parser.add_argument(
        "--root",
        help="Data directory. Defaults to TASKLATCH_ROOT or ./.tasklatch",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init", help="Initialize the ticket store and claims store")

    claim_parser = subparsers.add_parser("claim", help="Claim a task for an agent")
    claim_parser.add_argument("agent")
    claim_parser.add_argument("task_id")
    claim_parser.add_argument("note", nargs="?", default="")

    unclaim_parser = subparsers.add_parser("unclaim", help="Release a task claimed by an agent")
    unclaim_parser.add_argument("agent")
    unclaim_parser.add_argument("task_id")

    subparsers.add_parser("claims", help="List active claims")

    run_parser = subparsers.add_parser(
        "run",
        help="Run a ticket command as an agent, enforcing claims",
    )
    run_parser.add_argument("agent")
    run_parser.add_argument("delegated", nargs="*")

    subparsers.add_parser("lock-info", help="Show who holds the coordination lock")
    subparsers.add_parser("unlock-stale", help="Remove the lock if its holder is gone")

    pulse_parser = subparsers.add_parser("pulse", help="Show recent pulse log entries")
    pulse_parser.add_argument("--limit", type=int, default=20)
    return parser


def build_service(settings: CoordSettings, *, root: Path | None = None) -> CoordService:
    resolved_root = root or settings.root
    paths = CoordPaths(root=resolved_root, snapshot_name=settings.snapshot_name)
    pulse = FilePulseLog(paths.pulse_file)
    tickets: TicketEngine
    if settings.ticket_bin:
        tickets = CliTicketEngine(resolved_root, binary=settings.ticket_bin)
    else:
        tickets = LocalTicketEngine(resolved_root, pulse=pulse)
    return CoordService(
        paths=paths,
        tickets=tickets,
        claims=FileClaimsStore(paths.claims_file),
        pulse=pulse,
        lock=DirLock(
            paths.lock_dir,
            wait_timeout=settings.wait_timeout_seconds,
            stale_after=settings.stale_after_seconds,
            poll_interval=settings.poll_interval_seconds,
        ),
    )


def _split_delegated(argv: list[str]) -> tuple[list[str], list[str]]:
    """Everything after the first '--' belongs to the delegated command."""
    if "--" not in argv:
        return argv, []
    index = argv.index("--")
    return argv[:index], argv[index + 1 :]


def run_cli(
    argv: Sequence[str] | None = None,
    *,
    settings: CoordSettings | None = None,
    service: CoordService | None = None,
) -> int:
    raw = list(sys.argv[1:] if argv is None else argv)
    own_args, delegated_tail = _split_delegated(raw)
    parser = build_parser()

    def parse() -> argparse.Namespace:
        parsed = parser.parse_args(own_args)
        if delegated_tail and parsed.command != "run":
            parser.error("'--' is only valid with the run command")
        return parsed

    args = parse_or_exit_code(parse)
    if isinstance(args, int):
        return args

    if service is None:
        try:
            resolved_settings = settings or CoordSettings()
        except ValidationError as exc:
            print(f"error: invalid configuration: {exc}", file=sys.stderr)
            return 1
        setup_logging(json_output=resolved_settings.log_json, log_level=resolved_settings.log_level)
        root = Path(args.root).expanduser() if args.root else None
        service = build_service(resolved_settings, root=root)

    try:
        if args.command == "init":
            service.init()
            print(f"initialized {service.paths.root}")
        elif args.command == "claim":
            result = service.claim(args.agent, args.task_id, args.note)
            if result.created:
                print(f"claimed {result.claim.task_id} for {result.claim.agent}")
            else:
                print(f"{result.claim.task_id} already claimed by {result.claim.agent}")
        elif args.command == "unclaim":
            service.unclaim(args.agent, args.task_id)
            print(f"unclaimed {args.task_id}")
        elif args.command == "claims":
            claims = service.list_claims()
            if not claims:
                print("no active claims")
            for claim in claims:
                line = f"{claim.task_id}\t{claim.agent}\t{claim.claimed_at}"
                print(f"{line}\t{claim.note}" if claim.note else line)
        elif args.command == "run":
            output = service.run(args.agent, [*args.delegated, *delegated_tail])
            if output:
                print(output)
        elif args.command == "lock-info":
            print(service.lock_info().describe())
        elif args.command == "unlock-stale":
            if not service.unlock_stale():
                raise CoordError("lock is free; nothing to unlock")
            print("stale lock removed")
        elif args.command == "pulse":
            for entry in service.pulse_tail(args.limit):
                print(entry.to_line())
        else:
            raise CoordError(f"unknown command: {args.command}")
    except TaskLatchError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0


def main() -> int:
    return run_cli()


if __name__ == "__main__":
    raise SystemExit(main())
