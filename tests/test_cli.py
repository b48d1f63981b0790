from __future__ import annotations

from pathlib import Path

import pytest

from tasklatch.cli import _split_delegated, build_service, run_cli
from tasklatch.config.settings import CoordSettings
from tasklatch.coord.lock import DirLock
from tasklatch.tickets.engine import CliTicketEngine, LocalTicketEngine


def make_settings(root: Path) -> CoordSettings:
    return CoordSettings(root=root, wait_timeout_seconds=0.2, poll_interval_seconds=0.05)


def cli(root: Path, *argv: str) -> int:
    return run_cli(list(argv), settings=make_settings(root))


def test_full_claim_workflow(data_root: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli(data_root, "init") == 0
    assert f"initialized {data_root}" in capsys.readouterr().out

    assert cli(data_root, "run", "planner", "--", "new", "todo", "Write docs") == 0
    assert capsys.readouterr().out.strip() == "T-0001"

    assert cli(data_root, "claim", "alice", "T-0001", "on it") == 0
    assert capsys.readouterr().out.strip() == "claimed T-0001 for alice"
    assert cli(data_root, "claim", "alice", "T-0001") == 0
    assert capsys.readouterr().out.strip() == "T-0001 already claimed by alice"

    assert cli(data_root, "claim", "bob", "T-0001") == 1
    assert "error: task T-0001 is already claimed by alice" in capsys.readouterr().err

    assert cli(data_root, "run", "bob", "--", "move", "T-0001", "in-progress") == 1
    assert "claimed by alice, not bob" in capsys.readouterr().err

    assert cli(data_root, "claims") == 0
    assert capsys.readouterr().out.startswith("T-0001\talice\t")

    assert cli(data_root, "run", "alice", "--", "done", "T-0001", "docs/README.md", "written") == 0
    assert capsys.readouterr().out.strip() == "T-0001 done"

    assert cli(data_root, "claims") == 0
    assert capsys.readouterr().out.strip() == "no active claims"

    assert cli(data_root, "pulse", "--limit", "50") == 0
    pulse_out = capsys.readouterr().out
    assert "|T-0001|UNCLAIM|alice: auto-release on done" in pulse_out
    assert "|-|COLLAB_INIT|" in pulse_out


def test_run_accepts_command_without_separator(
    data_root: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    cli(data_root, "init")
    assert cli(data_root, "run", "planner", "new", "todo", "Write docs") == 0
    assert capsys.readouterr().out.strip().endswith("T-0001")


def test_unclaim_and_errors(data_root: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli(data_root, "claims") == 1
    assert "run 'init' first" in capsys.readouterr().err

    cli(data_root, "init")
    cli(data_root, "run", "planner", "--", "new", "todo", "Write docs")
    cli(data_root, "claim", "alice", "T-0001")
    capsys.readouterr()

    assert cli(data_root, "unclaim", "bob", "T-0001") == 1
    assert cli(data_root, "unclaim", "alice", "T-0001") == 0
    assert capsys.readouterr().out.strip() == "unclaimed T-0001"
    assert cli(data_root, "claim", "alice", "T-0404") == 1
    assert "task not found: T-0404" in capsys.readouterr().err


def test_lock_info_and_unlock_stale(data_root: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli(data_root, "lock-info") == 0
    assert capsys.readouterr().out.strip() == "free"
    assert cli(data_root, "unlock-stale") == 1
    assert "error: lock is free; nothing to unlock" in capsys.readouterr().err

    DirLock(data_root / "lock").acquire("alice")
    assert cli(data_root, "lock-info") == 0
    assert "held by agent=alice" in capsys.readouterr().out

    assert cli(data_root, "unlock-stale") == 1
    assert "active and not stale" in capsys.readouterr().err

    assert cli(data_root, "claim", "bob", "T-0001") == 1
    err = capsys.readouterr().err
    assert "timed out" in err
    assert "agent=alice" in err


def test_usage_errors_exit_one(data_root: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli(data_root, "claims", "--", "extra") == 1
    assert "error: '--' is only valid with the run command" in capsys.readouterr().err

    assert cli(data_root, "claim", "alice") == 1
    assert "error: the following arguments are required: task_id" in capsys.readouterr().err

    assert cli(data_root, "frobnicate") == 1
    assert "invalid choice" in capsys.readouterr().err
    assert not data_root.exists()


def test_help_exits_zero(data_root: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli(data_root, "--help") == 0
    assert "unlock-stale" in capsys.readouterr().out


def test_invalid_environment_reports_configuration_error(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("TASKLATCH_WAIT_TIMEOUT_SECONDS", "-1")

    assert run_cli(["lock-info"]) == 1
    assert "invalid configuration" in capsys.readouterr().err


def test_root_flag_overrides_settings(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    other = tmp_path / "elsewhere"
    assert run_cli(["--root", str(other), "init"], settings=make_settings(tmp_path / "x")) == 0
    assert (other / "claims.tsv").is_file()
    assert not (tmp_path / "x").exists()


def test_build_service_selects_engine(tmp_path: Path) -> None:
    local = build_service(make_settings(tmp_path))
    assert isinstance(local.tickets, LocalTicketEngine)
    assert local.lock.wait_timeout == 0.2
    assert local.paths.snapshot_file == tmp_path / "board.md"

    external = build_service(
        CoordSettings(root=tmp_path, ticket_bin="/opt/bin/tickets", snapshot_name="BOARD.md")
    )
    assert isinstance(external.tickets, CliTicketEngine)
    assert external.tickets.binary == "/opt/bin/tickets"
    assert external.paths.snapshot_file == tmp_path / "BOARD.md"


def test_split_delegated() -> None:
    assert _split_delegated(["run", "a", "--", "new", "--", "x"]) == (
        ["run", "a"],
        ["new", "--", "x"],
    )
    assert _split_delegated(["claims"]) == (["claims"], [])
