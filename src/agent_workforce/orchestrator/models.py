"""Domain models for tasks, workers, and executions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    """Task lifecycle states."""

    SUGGESTED = "suggested"
    APPROVED = "approved"
    REJECTED = "rejected"
    IN_PROGRESS = "in_progress"
    WAITING = "waiting"
    BLOCKED = "blocked"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskAction(str, Enum):
    """Named transitions accepted by the task state machine."""

    APPROVE = "approve"
    REJECT = "reject"
    START = "start"
    BLOCK = "block"
    RESUME = "resume"
    COMPLETE = "complete"
    FAIL = "fail"


class TaskPriority(str, Enum):
    """Task priority, highest first in `PRIORITY_ORDER`."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


PRIORITY_ORDER: dict[str, int] = {
    TaskPriority.CRITICAL.value: 0,
    TaskPriority.HIGH.value: 1,
    TaskPriority.MEDIUM.value: 2,
    TaskPriority.LOW.value: 3,
}


class WorkerKind(str, Enum):
    """Kinds of workers that can be dispatched."""

    MODULE = "module"
    AGENT = "agent"


class WorkerStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class ModuleFrequency(str, Enum):
    """How often a module is run by the scheduler."""

    MANUAL = "manual"
    DAILY = "daily"
    WEEKLY = "weekly"
    AUTO = "auto"


class ModuleType(str, Enum):
    STANDARD = "standard"
    STRATEGIC = "strategic"


class TriggerType(str, Enum):
    """What caused an execution."""

    MANUAL = "manual"
    SCHEDULED = "scheduled"
    AUTO = "auto"
    TASK_ASSIGNMENT = "task_assignment"


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class LogLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class WorkerRef:
    """Identifies one worker across both worker kinds."""

    kind: WorkerKind
    worker_id: int

    @classmethod
    def module(cls, worker_id: int) -> WorkerRef:
        return cls(kind=WorkerKind.MODULE, worker_id=worker_id)

    @classmethod
    def agent(cls, worker_id: int) -> WorkerRef:
        return cls(kind=WorkerKind.AGENT, worker_id=worker_id)

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.worker_id}"


@dataclass(slots=True)
class TaskProposal:
    """Input payload for proposing a new task."""

    title: str
    description: str | None = None
    suggestion_reasoning: str | None = None
    priority: TaskPriority = TaskPriority.MEDIUM
    proposed_by: str | None = None


@dataclass(slots=True)
class TaskFilter:
    """Optional filters for task listing."""

    status: TaskStatus | None = None
    assignee: WorkerRef | None = None
    limit: int = 100


@dataclass(slots=True)
class TaskView:
    """Readable task view for CLI and dispatcher logic."""

    task_id: int
    account_id: int
    title: str
    description: str | None
    priority: TaskPriority
    status: TaskStatus
    suggestion_reasoning: str | None
    approval_reasoning: str | None
    rejection_reasoning: str | None
    blocked_reason: str | None
    completion_summary: str | None
    assigned_to_module_id: int | None
    assigned_to_agent_id: int | None
    proposed_by: str | None
    last_status_change_by: str | None
    execution_id: int | None
    created_at: datetime
    approved_at: datetime | None
    started_at: datetime | None
    blocked_at: datetime | None
    completed_at: datetime | None
    updated_at: datetime


@dataclass(slots=True)
class TaskEventView:
    """One accepted status transition."""

    event_id: int
    task_id: int
    action: str
    status_from: TaskStatus | None
    status_to: TaskStatus
    actor: str | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ModuleCreate:
    """Input payload for registering a module."""

    name: str
    goal: str
    description: str = ""
    frequency: ModuleFrequency = ModuleFrequency.MANUAL
    module_type: ModuleType = ModuleType.STANDARD
    tools: tuple[str, ...] = ()
    inputs: dict[str, Any] = field(default_factory=dict)
    max_turns: int = 20


@dataclass(slots=True)
class AgentCreate:
    """Input payload for registering an agent."""

    name: str
    role: str
    description: str = ""
    tools: tuple[str, ...] = ()
    max_turns: int = 100


@dataclass(slots=True)
class WorkerUpdate:
    """Partial update for either worker kind; `None` leaves a field unchanged."""

    name: str | None = None
    description: str | None = None
    instructions: str | None = None
    frequency: ModuleFrequency | None = None
    status: WorkerStatus | None = None
    tools: tuple[str, ...] | None = None
    inputs: dict[str, Any] | None = None
    max_turns: int | None = None


@dataclass(slots=True)
class ModuleView:
    module_id: int
    account_id: int
    name: str
    description: str
    goal: str
    module_type: ModuleType
    frequency: ModuleFrequency
    status: WorkerStatus
    tools: list[str]
    inputs: dict[str, Any]
    max_turns: int
    session_id: str | None
    workspace_path: str | None
    created_at: datetime
    updated_at: datetime

    @property
    def ref(self) -> WorkerRef:
        return WorkerRef.module(self.module_id)


@dataclass(slots=True)
class AgentView:
    agent_id: int
    account_id: int
    name: str
    description: str
    role: str
    status: WorkerStatus
    tools: list[str]
    max_turns: int
    tasks_completed: int
    created_at: datetime
    updated_at: datetime

    @property
    def ref(self) -> WorkerRef:
        return WorkerRef.agent(self.agent_id)


@dataclass(slots=True)
class ExecutionView:
    """Execution record as stored in the ledger."""

    execution_id: int
    account_id: int
    worker_kind: WorkerKind
    worker_id: int
    task_id: int | None
    trigger_type: TriggerType
    status: ExecutionStatus
    started_at: datetime
    completed_at: datetime | None
    duration_ms: int | None
    cost_usd: float | None
    error_message: str | None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def worker(self) -> WorkerRef:
        return WorkerRef(kind=self.worker_kind, worker_id=self.worker_id)


@dataclass(slots=True)
class ExecutionFinish:
    """Input to finalize one running execution."""

    status: ExecutionStatus
    completed_at: datetime
    duration_ms: int
    cost_usd: float | None = None
    error_message: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ExecutionLogView:
    log_id: int
    execution_id: int
    level: LogLevel
    stage: str | None
    message: str
    created_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ExecutionResult:
    """Outcome of one dispatch, returned to scheduler and service callers."""

    execution_id: int
    status: ExecutionStatus
    output: str | None = None
    session_id: str | None = None
    cost_usd: float | None = None
    num_turns: int | None = None
    error_message: str | None = None

    @property
    def success(self) -> bool:
        return self.status == ExecutionStatus.COMPLETED


@dataclass(slots=True)
class CostSummaryRow:
    """Aggregated cost for one worker within a window."""

    worker_kind: WorkerKind
    worker_id: int
    executions: int
    failed: int
    total_cost_usd: float
    total_duration_ms: int


@dataclass(slots=True)
class ActivitySummaryWrite:
    """Activity feed entry produced at the end of an execution."""

    execution_id: int
    title: str
    description: str
    source: str = "agent"
    cost_usd: float | None = None
    duration_ms: int | None = None


@dataclass(slots=True)
class ActivitySummaryView:
    summary_id: int
    account_id: int
    execution_id: int
    title: str
    description: str
    source: str
    cost_usd: float | None
    duration_ms: int | None
    created_at: datetime
