"""argparse front end shared by the tasklatch commands."""

from __future__ import annotations

import argparse
import sys
from collections.abc import Callable
from typing import NoReturn


class CliArgumentParser(argparse.ArgumentParser):
    """ArgumentParser whose usage errors exit 1 like every other failure.

    Subparsers created through add_subparsers() inherit this class.
    """

    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        self.exit(1, f"error: {message}\n")


def parse_or_exit_code(parse: Callable[[], argparse.Namespace]) -> argparse.Namespace | int:
    """Run parse and turn argparse's SystemExit (usage error, --help) into an exit code."""
    try:
        return parse()
    except SystemExit as exc:
        if exc.code is None:
            return 0
        return exc.code if isinstance(exc.code, int) else 1
