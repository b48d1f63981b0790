from __future__ import annotations

from pathlib import Path

from structlog.testing import LogCapture

from tasklatch.coord.model import PulseEntry
from tasklatch.coord.pulse import FilePulseLog, MemoryPulseLog, parse_line


def test_append_writes_pipe_delimited_lines(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "pulse.log"
    pulse = FilePulseLog(path, now_fn=lambda: "2026-03-01T10:00:00Z")

    pulse.append("T-0001", "claim", "alice: taking it")
    pulse.append("", "COLLAB_INIT", "root=.tasklatch")

    assert path.read_text("utf-8").splitlines() == [
        "2026-03-01T10:00:00Z|T-0001|CLAIM|alice: taking it",
        "2026-03-01T10:00:00Z|-|COLLAB_INIT|root=.tasklatch",
    ]


def test_details_keep_pipes_but_lose_newlines(tmp_path: Path) -> None:
    pulse = FilePulseLog(tmp_path / "pulse.log", now_fn=lambda: "ts")
    pulse.append("T|1", "EVIDENCE", "a|b\nc")

    [entry] = pulse.entries()
    assert entry == PulseEntry(timestamp="ts", task_id="T 1", event="EVIDENCE", details="a|b c")


def test_malformed_lines_are_skipped(tmp_path: Path, log_capture: LogCapture) -> None:
    path = tmp_path / "pulse.log"
    path.write_text("garbage\n\nts|T-0001|MOVE\nts|-|RENDER|board.md\n", "utf-8")

    entries = FilePulseLog(path).entries()

    assert [e.event for e in entries] == ["MOVE", "RENDER"]
    assert entries[0].details == ""
    assert [(e["event"], e["lineno"]) for e in log_capture.entries] == [("pulse_line_malformed", 1)]


def test_tail_returns_latest_entries(tmp_path: Path) -> None:
    pulse = FilePulseLog(tmp_path / "pulse.log", now_fn=lambda: "ts")
    for index in range(5):
        pulse.append(f"T-000{index}", "NEW")

    assert [e.task_id for e in pulse.tail(2)] == ["T-0003", "T-0004"]
    assert pulse.tail(0) == []
    assert FilePulseLog(tmp_path / "missing.log").entries() == []


def test_memory_pulse_matches_file_semantics() -> None:
    pulse = MemoryPulseLog(now_fn=lambda: "ts")
    pulse.append("T-0001", "claim")
    pulse.append("T-0001", "unclaim", "alice")

    assert [e.to_line() for e in pulse.entries()] == ["ts|T-0001|CLAIM|", "ts|T-0001|UNCLAIM|alice"]
    assert pulse.tail(1)[0].event == "UNCLAIM"


def test_parse_line_round_trips_to_line() -> None:
    entry = PulseEntry("ts", "T-0001", "DONE", "out.txt shipped | ok")
    assert parse_line(entry.to_line()) == entry
    assert parse_line("only|two") is None
