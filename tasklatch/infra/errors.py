"""Custom exception hierarchy for tasklatch.

All application-specific exceptions inherit from TaskLatchError,
which carries an error code for CLI diagnostics and pulse details.
"""

from __future__ import annotations


class TaskLatchError(Exception):
    """Base exception for all tasklatch errors."""

    def __init__(self, message: str, *, code: str = "INTERNAL_ERROR") -> None:
        super().__init__(message)
        self.code = code


class CoordError(TaskLatchError):
    """Raised when the coordination layer cannot complete an operation."""

    def __init__(self, message: str, *, code: str = "COORD_ERROR") -> None:
        super().__init__(message, code=code)


class TicketError(TaskLatchError):
    """Validation or usage errors inside the ticket engine."""

    def __init__(self, message: str, *, code: str = "TICKET_ERROR") -> None:
        super().__init__(message, code=code)


class LockTimeout(CoordError):
    """Waited the full timeout without acquiring the lock."""

    def __init__(
        self,
        message: str,
        *,
        agent: str = "",
        host: str = "",
        pid: int | None = None,
        started: str = "",
    ) -> None:
        super().__init__(message, code="LOCK_TIMEOUT")
        self.agent = agent
        self.host = host
        self.pid = pid
        self.started = started


class LockNotOwned(CoordError):
    """Release or force-unlock attempted on a lock the caller may not remove."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="LOCK_NOT_OWNED")


class TaskNotFound(CoordError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"task not found: {task_id}", code="TASK_NOT_FOUND")
        self.task_id = task_id


class TaskAlreadyDone(CoordError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"task {task_id} is already done", code="TASK_ALREADY_DONE")
        self.task_id = task_id


class ClaimConflict(CoordError):
    """Task is claimed by another agent."""

    def __init__(self, task_id: str, owner: str) -> None:
        super().__init__(f"task {task_id} is already claimed by {owner}", code="CLAIM_CONFLICT")
        self.task_id = task_id
        self.owner = owner


class ClaimNotOwned(CoordError):
    """The acting agent does not hold the claim it needs."""

    def __init__(self, message: str, *, task_id: str = "", owner: str = "") -> None:
        super().__init__(message, code="CLAIM_NOT_OWNED")
        self.task_id = task_id
        self.owner = owner


class NotInitialized(CoordError):
    def __init__(self, message: str = "ticket store is not initialized; run 'init' first") -> None:
        super().__init__(message, code="NOT_INITIALIZED")


class DelegatedCommandFailed(CoordError):
    """The ticket engine reported a failure; its diagnostic is passed through."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="DELEGATED_COMMAND_FAILED")
