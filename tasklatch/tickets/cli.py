"""tasklatch-tickets: the built-in ticket engine as a standalone command.

Run without the coordinator it performs no locking or claim checks; it is
the binary CliTicketEngine delegates to.
"""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence
from pathlib import Path

from pydantic import ValidationError

from tasklatch.config.settings import CoordSettings
from tasklatch.coord.model import PULSE_FILE
from tasklatch.coord.pulse import FilePulseLog
from tasklatch.infra.errors import TicketError
from tasklatch.infra.logging import setup_logging
from tasklatch.infra.parser import CliArgumentParser, parse_or_exit_code
from tasklatch.tickets.engine import USAGE, LocalTicketEngine


def build_parser() -> argparse.ArgumentParser:
    parser = CliArgumentParser(
        prog="tasklatch-tickets",
        description="Flat-file ticket engine",
        epilog="commands:\n  " + "\n  ".join(USAGE.values()),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--root",
        help="Data directory. Defaults to TASKLATCH_ROOT or ./.tasklatch",
    )
    parser.add_argument("command", choices=tuple(USAGE))
    parser.add_argument("args", nargs=argparse.REMAINDER)
    return parser


def run_cli(argv: Sequence[str] | None = None, *, settings: CoordSettings | None = None) -> int:
    parser = build_parser()
    args = parse_or_exit_code(lambda: parser.parse_args(argv))
    if isinstance(args, int):
        return args
    try:
        resolved = settings or CoordSettings()
    except ValidationError as exc:
        print(f"error: invalid configuration: {exc}", file=sys.stderr)
        return 1
    setup_logging(json_output=resolved.log_json, log_level=resolved.log_level)
    root = Path(args.root).expanduser() if args.root else resolved.root
    engine = LocalTicketEngine(root, pulse=FilePulseLog(root / PULSE_FILE))
    try:
        output = engine.execute([args.command, *args.args])
    except TicketError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    if output:
        print(output)
    return 0


def main() -> int:
    return run_cli()


if __name__ == "__main__":
    raise SystemExit(main())
