"""Coordination layer: advisory lock, claims store, pulse log and the coordinator."""

from tasklatch.coord.claims import FileClaimsStore, MemoryClaimsStore
from tasklatch.coord.lock import DirLock, MemoryLock, local_process_alive
from tasklatch.coord.model import Claim, ClaimResult, CoordPaths, LockInfo, PulseEntry
from tasklatch.coord.pulse import FilePulseLog, MemoryPulseLog
from tasklatch.coord.service import CoordService

__all__ = [
    "Claim",
    "ClaimResult",
    "CoordPaths",
    "CoordService",
    "DirLock",
    "FileClaimsStore",
    "FilePulseLog",
    "LockInfo",
    "MemoryClaimsStore",
    "MemoryLock",
    "MemoryPulseLog",
    "PulseEntry",
    "local_process_alive",
]
