"""Shared pytest fixtures for tasklatch tests.

Lock tests drive DirLock with FakeTime so polling and staleness can be
simulated without real delays. FakeTime starts at the real wall clock
because lock age is measured against directory mtimes.
"""

from __future__ import annotations

import os
import time
from collections.abc import Iterator, Sequence
from pathlib import Path

import pytest
import structlog
from structlog.testing import LogCapture

from tasklatch.coord.claims import FileClaimsStore
from tasklatch.coord.lock import DirLock
from tasklatch.coord.model import CoordPaths
from tasklatch.coord.pulse import FilePulseLog
from tasklatch.coord.service import CoordService
from tasklatch.infra.errors import DelegatedCommandFailed
from tasklatch.tickets.engine import LocalTicketEngine


class FakeTime:
    def __init__(self, start: float | None = None) -> None:
        self.now = time.time() if start is None else start
        self.sleeps: list[float] = []

    def clock(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class RecordingEngine:
    """Wraps a real engine and records every delegated argv."""

    def __init__(self, inner: LocalTicketEngine, *, fail_render: bool = False) -> None:
        self.inner = inner
        self.fail_render = fail_render
        self.calls: list[list[str]] = []

    def initialized(self) -> bool:
        return self.inner.initialized()

    def get(self, task_id: str):
        return self.inner.get(task_id)

    def run(self, argv: Sequence[str]) -> str:
        self.calls.append(list(argv))
        if self.fail_render and argv and argv[0] == "render":
            raise DelegatedCommandFailed("render target is read-only")
        return self.inner.run(argv)

    def commands(self) -> list[str]:
        return [call[0] for call in self.calls]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.startswith("TASKLATCH_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def log_capture() -> Iterator[LogCapture]:
    cap = LogCapture()
    structlog.configure(processors=[cap])
    yield cap
    structlog.reset_defaults()


@pytest.fixture
def fake_time() -> FakeTime:
    return FakeTime()


@pytest.fixture
def data_root(tmp_path: Path) -> Path:
    return tmp_path / "data"


def make_service(
    root: Path,
    *,
    fake_time: FakeTime | None = None,
    engine: object | None = None,
    process_alive: bool = True,
) -> CoordService:
    clock = fake_time or FakeTime()
    paths = CoordPaths(root=root)
    pulse = FilePulseLog(paths.pulse_file)
    return CoordService(
        paths=paths,
        tickets=engine or LocalTicketEngine(root, pulse=pulse),
        claims=FileClaimsStore(paths.claims_file),
        pulse=pulse,
        lock=DirLock(
            paths.lock_dir,
            wait_timeout=5,
            stale_after=900,
            poll_interval=1,
            clock=clock.clock,
            sleep=clock.sleep,
            is_process_alive=lambda host, pid: process_alive,
        ),
    )
