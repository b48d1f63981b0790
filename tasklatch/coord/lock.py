"""Directory-based advisory lock shared by every agent process.

The lock is held while ``<root>/lock`` exists. ``os.mkdir`` either creates the
directory or fails with FileExistsError, so at most one process can win a
race for it. The winner writes an ``owner`` file with ``key=value`` lines:

    agent=<agent>
    pid=<process id>
    host=<hostname>
    token=<random hex>
    started=<ISO-8601 UTC>

The token fences release: a holder that timed out and was reclaimed can not
remove a lock that somebody else created afterwards.

A lock is stale when its owner process is confirmed dead, or when the lock
directory is older than ``stale_after`` seconds. Stale locks are moved aside
to a tombstone name before deletion so that two reclaimers can not both
delete the same (or a fresh) lock.

Putting back a lock that was moved aside by mistake is best-effort: a process
that creates the lock at the same instant can still lose or win that race.
"""

from __future__ import annotations

import os
import shutil
import socket
import time
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

import structlog

from tasklatch.config.settings import (
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_STALE_AFTER_SECONDS,
    DEFAULT_WAIT_TIMEOUT_SECONDS,
)
from tasklatch.coord.model import LockInfo
from tasklatch.infra.errors import CoordError, LockNotOwned, LockTimeout
from tasklatch.infra.fs import utc_now

logger = structlog.get_logger()

OWNER_FILE = "owner"
OWNER_KEYS = ("agent", "pid", "host", "token", "started")


def local_process_alive(host: str, pid: int) -> bool:
    """Probe a pid on this host; owners on other hosts are assumed alive."""
    if host and host != socket.gethostname():
        return True
    if pid <= 0:
        return False
    if os.name == "nt":
        # os.kill(pid, 0) terminates the target on Windows; fall back to the age rule.
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except OSError:
        # EPERM: the process exists but belongs to someone else.
        return True
    return True


def read_owner_file(lock_dir: Path) -> dict[str, str] | None:
    try:
        raw = (lock_dir / OWNER_FILE).read_text("utf-8")
    except (FileNotFoundError, NotADirectoryError):
        return None
    meta: dict[str, str] = {}
    for line in raw.splitlines():
        key, sep, value = line.partition("=")
        if sep and key.strip() in OWNER_KEYS:
            meta[key.strip()] = value.strip()
    return meta or None


def _parse_pid(value: str | None) -> int | None:
    if value is None or not value.strip().isdigit():
        return None
    return int(value)


class DirLock:
    def __init__(
        self,
        path: Path,
        *,
        wait_timeout: float = DEFAULT_WAIT_TIMEOUT_SECONDS,
        stale_after: float = DEFAULT_STALE_AFTER_SECONDS,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        is_process_alive: Callable[[str, int], bool] = local_process_alive,
        host: str | None = None,
        pid: int | None = None,
    ) -> None:
        self.path = path
        self.wait_timeout = wait_timeout
        self.stale_after = stale_after
        self.poll_interval = poll_interval
        self.clock = clock
        self.sleep = sleep
        self.is_process_alive = is_process_alive
        self.host = host or socket.gethostname()
        self.pid = os.getpid() if pid is None else pid
        self.last_reclaimed: LockInfo | None = None

    def acquire(self, agent: str) -> str:
        """Block until the lock is ours or wait_timeout elapses; return the token."""
        self.last_reclaimed = None
        deadline = self.clock() + self.wait_timeout
        while True:
            token = self._try_create(agent)
            if token is not None:
                logger.info("lock_acquired", agent=agent, lock=str(self.path))
                return token
            meta = read_owner_file(self.path)
            age = self._age()
            if age is None:
                # Released between our mkdir and the read.
                continue
            reason = self._stale_reason(meta, age)
            if reason is not None:
                previous = self._info(meta, age)
                if self._reclaim(meta, reason):
                    self.last_reclaimed = previous
                continue
            if self.clock() >= deadline:
                holder = self._info(meta, age)
                raise LockTimeout(
                    f"timed out after {self.wait_timeout:g}s waiting for lock {self.path}; "
                    f"{holder.describe()}",
                    agent=holder.agent,
                    host=holder.host,
                    pid=holder.pid,
                    started=holder.started,
                )
            self.sleep(self.poll_interval)

    def release(self, token: str) -> bool:
        meta = read_owner_file(self.path)
        if meta is None or meta.get("token") != token:
            logger.warning(
                "lock_release_skipped",
                lock=str(self.path),
                reason="token_mismatch" if meta else "lock_missing",
            )
            return False
        tombstone = self._move_aside(token, "released")
        if tombstone is None:
            return False
        self._remove_tombstone(tombstone)
        logger.info("lock_released", lock=str(self.path))
        return True

    def inspect(self) -> LockInfo:
        age = self._age()
        if age is None:
            return LockInfo.free()
        return self._info(read_owner_file(self.path), age)

    def is_stale(self) -> bool:
        age = self._age()
        if age is None:
            return False
        return self._stale_reason(read_owner_file(self.path), age) is not None

    def force_unlock(self) -> bool:
        """Remove the lock only if it is stale. Returns False when already free."""
        age = self._age()
        if age is None:
            return False
        meta = read_owner_file(self.path)
        reason = self._stale_reason(meta, age)
        if reason is None:
            raise LockNotOwned(
                f"lock {self.path} is active and not stale; {self._info(meta, age).describe()}"
            )
        return self._reclaim(meta, reason)

    def _try_create(self, agent: str) -> str | None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            os.mkdir(self.path)
        except FileExistsError:
            return None
        except OSError as exc:
            raise CoordError(f"cannot create lock directory {self.path}: {exc}") from exc
        token = uuid.uuid4().hex
        started = datetime.fromtimestamp(self.clock(), tz=UTC).replace(microsecond=0)
        content = "\n".join(
            [
                f"agent={agent}",
                f"pid={self.pid}",
                f"host={self.host}",
                f"token={token}",
                f"started={started.isoformat().replace('+00:00', 'Z')}",
            ]
        )
        tmp_path = self.path / f".{OWNER_FILE}.{token}"
        try:
            tmp_path.write_text(content + "\n", "utf-8")
            os.replace(tmp_path, self.path / OWNER_FILE)
        except OSError as exc:
            shutil.rmtree(self.path, ignore_errors=True)
            raise CoordError(f"cannot write lock metadata in {self.path}: {exc}") from exc
        return token

    def _age(self) -> float | None:
        try:
            mtime = os.stat(self.path).st_mtime
        except FileNotFoundError:
            return None
        return max(self.clock() - mtime, 0.0)

    def _stale_reason(self, meta: dict[str, str] | None, age: float) -> str | None:
        if meta is not None:
            pid = _parse_pid(meta.get("pid"))
            if pid is not None and not self.is_process_alive(meta.get("host", ""), pid):
                return "owner_process_missing"
        if age > self.stale_after:
            return "age_exceeded"
        return None

    def _info(self, meta: dict[str, str] | None, age: float | None) -> LockInfo:
        meta = meta or {}
        return LockInfo(
            held=True,
            agent=meta.get("agent", ""),
            host=meta.get("host", ""),
            pid=_parse_pid(meta.get("pid")),
            token=meta.get("token", ""),
            started=meta.get("started", ""),
            age_seconds=age,
        )

    def _reclaim(self, meta: dict[str, str] | None, reason: str) -> bool:
        expected = (meta or {}).get("token", "")
        tombstone = self._move_aside(expected, "stale")
        if tombstone is None:
            return False
        self._remove_tombstone(tombstone)
        logger.warning(
            "lock_reclaimed",
            lock=str(self.path),
            reason=reason,
            previous_agent=(meta or {}).get("agent", ""),
            previous_pid=(meta or {}).get("pid", ""),
            previous_host=(meta or {}).get("host", ""),
        )
        return True

    def _move_aside(self, expected_token: str, suffix: str) -> Path | None:
        """Rename the lock dir away if it still carries expected_token."""
        tombstone = self.path.with_name(f"{self.path.name}.{suffix}-{uuid.uuid4().hex[:12]}")
        try:
            os.rename(self.path, tombstone)
        except FileNotFoundError:
            return None
        moved = read_owner_file(tombstone) or {}
        if moved.get("token", "") == expected_token:
            return tombstone
        # A new holder created the lock between our check and the rename.
        if self.path.exists():
            logger.warning(
                "lock_restore_failed",
                lock=str(self.path),
                displaced_agent=moved.get("agent", ""),
            )
            self._remove_tombstone(tombstone)
            return None
        try:
            os.rename(tombstone, self.path)
        except OSError as exc:
            # Someone created and populated the lock in the meantime; leave the tombstone.
            logger.warning(
                "lock_restore_failed",
                lock=str(self.path),
                displaced_agent=moved.get("agent", ""),
                tombstone=str(tombstone),
                error=str(exc),
            )
            return None
        logger.info("lock_restored", lock=str(self.path), agent=moved.get("agent", ""))
        return None

    def _remove_tombstone(self, tombstone: Path) -> None:
        try:
            if tombstone.is_dir():
                shutil.rmtree(tombstone)
            else:
                tombstone.unlink()
        except OSError as exc:
            logger.warning("lock_tombstone_cleanup_failed", path=str(tombstone), error=str(exc))


class MemoryLock:
    """Single-process stand-in for DirLock; contention raises LockTimeout at once."""

    def __init__(self, *, host: str = "localhost") -> None:
        self.host = host
        self.holder: LockInfo | None = None
        self.last_reclaimed: LockInfo | None = None
        self.acquired_by: list[str] = []

    def acquire(self, agent: str) -> str:
        if self.holder is not None:
            raise LockTimeout(
                f"lock held; {self.holder.describe()}",
                agent=self.holder.agent,
                host=self.holder.host,
                pid=self.holder.pid,
                started=self.holder.started,
            )
        token = uuid.uuid4().hex
        self.holder = LockInfo(
            held=True,
            agent=agent,
            host=self.host,
            pid=os.getpid(),
            token=token,
            started=utc_now(),
            age_seconds=0.0,
        )
        self.acquired_by.append(agent)
        return token

    def release(self, token: str) -> bool:
        if self.holder is None or self.holder.token != token:
            return False
        self.holder = None
        return True

    def inspect(self) -> LockInfo:
        return self.holder or LockInfo.free()

    def is_stale(self) -> bool:
        return False

    def force_unlock(self) -> bool:
        if self.holder is None:
            return False
        raise LockNotOwned(f"lock is active and not stale; {self.holder.describe()}")
