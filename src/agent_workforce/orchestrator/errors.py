"""Domain errors raised by the orchestration engine."""

from __future__ import annotations


class OrchestratorError(RuntimeError):
    """Base class for orchestration failures."""


class InvalidTransition(OrchestratorError):
    """Requested action is not allowed from the task's current status."""

    def __init__(self, *, current: str, action: str, task_id: int | None = None) -> None:
        target = f"task {task_id}" if task_id is not None else "task"
        super().__init__(f"Cannot {action} {target}: status is {current!r}.")
        self.current = current
        self.action = action
        self.task_id = task_id


class TaskNotFound(OrchestratorError):
    def __init__(self, task_id: int) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class WorkerNotFound(OrchestratorError):
    def __init__(self, worker: object) -> None:
        super().__init__(f"Worker not found: {worker}")
        self.worker = worker


class WorkerInactive(OrchestratorError):
    def __init__(self, worker: object) -> None:
        super().__init__(f"Worker is inactive: {worker}")
        self.worker = worker


class WorkerBusy(OrchestratorError):
    """Another execution of the same worker is still running in this process."""

    def __init__(self, worker: object) -> None:
        super().__init__(f"Worker is already executing: {worker}")
        self.worker = worker


class MissingCredential(OrchestratorError):
    """Account has no connection for a service required by a tool adapter."""

    def __init__(self, service: str, *, account_id: int) -> None:
        super().__init__(f"No credentials for {service!r} in account {account_id}.")
        self.service = service
        self.account_id = account_id


class UnknownAdapter(ValueError):
    """Worker configuration names a tool kind that is not registered."""

    def __init__(self, kind: str) -> None:
        super().__init__(f"Unknown tool adapter kind: {kind!r}")
        self.kind = kind


class RuntimeInvocationFailure(OrchestratorError):
    """Agent runtime could not be invoked or crashed before producing a result."""


class PersistenceFailure(OrchestratorError):
    """A required write affected no rows."""


class TaskNotAssigned(OrchestratorError):
    """Task is assigned to a different worker than the one asked to run it."""

    def __init__(self, task_id: int, worker: object) -> None:
        super().__init__(f"Task {task_id} is not assigned to {worker}.")
        self.task_id = task_id
        self.worker = worker
