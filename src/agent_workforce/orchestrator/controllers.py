"""Controllers for orchestrator CLI commands."""

from __future__ import annotations

import json
from collections.abc import Callable, Iterator
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from agent_workforce.config import Settings
from agent_workforce.orchestrator.backend import AgentRuntime, CliAgentRuntime
from agent_workforce.orchestrator.models import (
    AgentCreate,
    AgentView,
    CostSummaryRow,
    ExecutionView,
    ModuleCreate,
    ModuleFrequency,
    ModuleType,
    ModuleView,
    TaskAction,
    TaskFilter,
    TaskPriority,
    TaskProposal,
    TaskStatus,
    TaskView,
    TriggerType,
    WorkerKind,
    WorkerRef,
    WorkerStatus,
    WorkerUpdate,
)
from agent_workforce.orchestrator.repository import OrchestratorStore
from agent_workforce.orchestrator.scheduler import Scheduler
from agent_workforce.orchestrator.services import OrchestratorService
from agent_workforce.orchestrator.state_machine import TransitionPayload
from agent_workforce.orchestrator.strategy import StrategicCycle

RuntimeFactory = Callable[[Settings], AgentRuntime]


@dataclass(slots=True)
class AccountCreateCommand:
    db_path: Path | None
    name: str


@dataclass(slots=True)
class AccountDocumentCommand:
    """CLI input for storing one long-term document."""

    db_path: Path | None
    account_id: int
    name: str
    content: str


@dataclass(slots=True)
class AccountConnectCommand:
    """CLI input for storing service credentials."""

    db_path: Path | None
    account_id: int
    service: str
    credentials: dict[str, str]


@dataclass(slots=True)
class AccountActivityCommand:
    db_path: Path | None
    account_id: int
    limit: int = 20


@dataclass(slots=True)
class TaskProposeCommand:
    """CLI input for task proposal."""

    db_path: Path | None
    account_id: int
    title: str
    description: str | None
    reasoning: str | None
    priority: str
    proposed_by: str | None


@dataclass(slots=True)
class TaskListCommand:
    """CLI input for task listing."""

    db_path: Path | None
    account_id: int
    status: str | None
    module_id: int | None
    agent_id: int | None
    limit: int


@dataclass(slots=True)
class TaskShowCommand:
    db_path: Path | None
    task_id: int


@dataclass(slots=True)
class TaskTransitionCommand:
    """CLI input for one status transition; unused fields stay None."""

    db_path: Path | None
    task_id: int
    action: str
    actor: str | None = None
    reasoning: str | None = None
    module_id: int | None = None
    agent_id: int | None = None
    reason: str | None = None
    block_status: str = TaskStatus.WAITING.value
    note: str | None = None
    summary: str | None = None
    error: str | None = None


@dataclass(slots=True)
class ModuleAddCommand:
    """CLI input for module registration."""

    db_path: Path | None
    account_id: int
    name: str
    goal: str
    description: str
    frequency: str
    module_type: str
    tools: tuple[str, ...]
    inputs_json: str | None
    max_turns: int


@dataclass(slots=True)
class AgentAddCommand:
    """CLI input for agent registration."""

    db_path: Path | None
    account_id: int
    name: str
    role: str
    description: str
    tools: tuple[str, ...]
    max_turns: int


@dataclass(slots=True)
class WorkerListCommand:
    db_path: Path | None
    account_id: int


@dataclass(slots=True)
class WorkerUpdateCommand:
    """CLI input for partial worker update."""

    db_path: Path | None
    kind: str
    worker_id: int
    name: str | None = None
    description: str | None = None
    instructions: str | None = None
    frequency: str | None = None
    status: str | None = None
    tools: tuple[str, ...] | None = None
    inputs_json: str | None = None
    max_turns: int | None = None


@dataclass(slots=True)
class SessionResetCommand:
    db_path: Path | None
    module_id: int


@dataclass(slots=True)
class ExecutionRunCommand:
    """CLI input for a manual, synchronous execution."""

    db_path: Path | None
    kind: str
    worker_id: int
    account_id: int
    task_id: int | None = None
    one_off: bool = False


@dataclass(slots=True)
class ExecutionHistoryCommand:
    db_path: Path | None
    account_id: int | None
    kind: str | None
    worker_id: int | None
    limit: int


@dataclass(slots=True)
class ExecutionLogsCommand:
    db_path: Path | None
    execution_id: int


@dataclass(slots=True)
class CostReportCommand:
    """CLI input for cost aggregation over a trailing window."""

    db_path: Path | None
    account_id: int
    days: int
    kind: str | None = None
    worker_id: int | None = None


@dataclass(slots=True)
class SchedulerRunCommand:
    """CLI input for the long-running scheduler."""

    db_path: Path | None
    max_seconds: float | None
    log_level: str | None = None


@dataclass(slots=True)
class SchedulerTickCommand:
    """CLI input for one pass of the scheduler checks."""

    db_path: Path | None
    checks: tuple[str, ...] = field(default_factory=lambda: ("modules", "strategic", "tasks"))


@dataclass(slots=True)
class StrategicRunCommand:
    db_path: Path | None
    account_id: int


class OrchestratorCliController:
    """Coordinates task, worker, execution and scheduler CLI operations."""

    def __init__(self, runtime_factory: RuntimeFactory | None = None) -> None:
        self.runtime_factory = runtime_factory or _cli_runtime

    # -- accounts ---------------------------------------------------------------

    def create_account(self, command: AccountCreateCommand) -> list[str]:
        with self._service(command.db_path) as service:
            account_id = service.create_account(command.name)
        return [f"Account created: account_id={account_id} name={command.name}"]

    def put_document(self, command: AccountDocumentCommand) -> list[str]:
        with self._service(command.db_path) as service:
            service.put_document(command.account_id, command.name, command.content)
        return [
            f"Document stored: account_id={command.account_id} name={command.name} "
            f"chars={len(command.content)}",
        ]

    def connect_service(self, command: AccountConnectCommand) -> list[str]:
        with self._service(command.db_path) as service:
            service.connect_service(command.account_id, command.service, command.credentials)
        return [
            f"Service connected: account_id={command.account_id} service={command.service} "
            f"keys={','.join(sorted(command.credentials)) or '-'}",
        ]

    def activity(self, command: AccountActivityCommand) -> list[str]:
        with self._service(command.db_path) as service:
            summaries = service.list_activity(command.account_id, limit=command.limit)
        lines = [f"Activity: {len(summaries)}"]
        for summary in summaries:
            lines.append(
                f"  {summary.created_at.isoformat()} execution={summary.execution_id} "
                f"source={summary.source} {summary.title}",
            )
            lines.append(f"    {summary.description}")
        return lines

    def run_strategic(self, command: StrategicRunCommand) -> list[str]:
        with self._service(command.db_path) as service:
            result = service.run_strategic_cycle(command.account_id)
        if result is None:
            return [f"Account {command.account_id} has no active strategic module."]
        return [
            f"Strategic cycle: execution_id={result.execution_id} status={result.status.value}",
            *([f"Error: {result.error_message}"] if result.error_message else []),
        ]

    # -- tasks ------------------------------------------------------------------

    def propose_task(self, command: TaskProposeCommand) -> list[str]:
        with self._service(command.db_path) as service:
            task = service.propose_task(
                command.account_id,
                TaskProposal(
                    title=command.title,
                    description=command.description,
                    suggestion_reasoning=command.reasoning,
                    priority=TaskPriority(command.priority),
                    proposed_by=command.proposed_by,
                ),
            )
        return [
            f"Task proposed: task_id={task.task_id} status={task.status.value} "
            f"priority={task.priority.value}",
        ]

    def list_tasks(self, command: TaskListCommand) -> list[str]:
        assignee = None
        if command.agent_id is not None:
            assignee = WorkerRef.agent(command.agent_id)
        elif command.module_id is not None:
            assignee = WorkerRef.module(command.module_id)
        with self._service(command.db_path) as service:
            tasks = service.list_tasks(
                command.account_id,
                TaskFilter(
                    status=TaskStatus(command.status) if command.status else None,
                    assignee=assignee,
                    limit=command.limit,
                ),
            )
        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            lines.append(
                f"  {task.task_id} status={task.status.value} priority={task.priority.value} "
                f"assignee={_assignee(task)} title={task.title}",
            )
        return lines

    def show_task(self, command: TaskShowCommand) -> list[str]:
        with self._service(command.db_path) as service:
            task = service.get_task(command.task_id)
            events = service.list_task_events(command.task_id)
        lines = _task_lines(task)
        lines.append(f"Events: {len(events)}")
        for event in events:
            lines.append(
                f"  {event.created_at.isoformat()} {event.action} "
                f"{event.status_from.value if event.status_from else '-'} -> "
                f"{event.status_to.value} by={event.actor or '-'}",
            )
        return lines

    def transition_task(self, command: TaskTransitionCommand) -> list[str]:
        action = TaskAction(command.action)
        with self._service(command.db_path) as service:
            task = service.transition_task(
                command.task_id,
                action,
                TransitionPayload(
                    actor=command.actor,
                    approval_reasoning=command.reasoning if action == TaskAction.APPROVE else None,
                    rejection_reasoning=command.reasoning if action == TaskAction.REJECT else None,
                    assign_to_module_id=command.module_id,
                    assign_to_agent_id=command.agent_id,
                    reason=command.reason,
                    block_status=TaskStatus(command.block_status),
                    note=command.note,
                    completion_summary=command.summary,
                    error_message=command.error,
                ),
            )
        return [
            f"Task {task.task_id} {action.value}: status={task.status.value} "
            f"assignee={_assignee(task)}",
        ]

    # -- workers ----------------------------------------------------------------

    def add_module(self, command: ModuleAddCommand) -> list[str]:
        with self._service(command.db_path) as service:
            module = service.register_module(
                command.account_id,
                ModuleCreate(
                    name=command.name,
                    goal=command.goal,
                    description=command.description,
                    frequency=ModuleFrequency(command.frequency),
                    module_type=ModuleType(command.module_type),
                    tools=command.tools,
                    inputs=_parse_inputs(command.inputs_json) or {},
                    max_turns=command.max_turns,
                ),
            )
        return [f"Module registered: {_module_line(module)}"]

    def add_agent(self, command: AgentAddCommand) -> list[str]:
        with self._service(command.db_path) as service:
            agent = service.register_agent(
                command.account_id,
                AgentCreate(
                    name=command.name,
                    role=command.role,
                    description=command.description,
                    tools=command.tools,
                    max_turns=command.max_turns,
                ),
            )
        return [f"Agent registered: {_agent_line(agent)}"]

    def list_workers(self, command: WorkerListCommand) -> list[str]:
        with self._service(command.db_path) as service:
            modules = service.list_modules(command.account_id)
            agents = service.list_agents(command.account_id)
        lines = [f"Modules: {len(modules)}"]
        lines.extend(f"  {_module_line(module)}" for module in modules)
        lines.append(f"Agents: {len(agents)}")
        lines.extend(f"  {_agent_line(agent)}" for agent in agents)
        return lines

    def update_worker(self, command: WorkerUpdateCommand) -> list[str]:
        worker = WorkerRef(kind=WorkerKind(command.kind), worker_id=command.worker_id)
        with self._service(command.db_path) as service:
            updated = service.update_worker(
                worker,
                WorkerUpdate(
                    name=command.name,
                    description=command.description,
                    instructions=command.instructions,
                    frequency=ModuleFrequency(command.frequency) if command.frequency else None,
                    status=WorkerStatus(command.status) if command.status else None,
                    tools=command.tools,
                    inputs=_parse_inputs(command.inputs_json),
                    max_turns=command.max_turns,
                ),
            )
        line = (
            _module_line(updated) if isinstance(updated, ModuleView) else _agent_line(updated)
        )
        return [f"Worker updated: {line}"]

    def reset_session(self, command: SessionResetCommand) -> list[str]:
        with self._service(command.db_path) as service:
            service.reset_session(command.module_id)
        return [f"Session reset: module_id={command.module_id}"]

    # -- executions -------------------------------------------------------------

    def run_execution(self, command: ExecutionRunCommand) -> list[str]:
        worker = WorkerRef(kind=WorkerKind(command.kind), worker_id=command.worker_id)
        with self._service(command.db_path) as service:
            execution = service.trigger_execution(
                worker,
                command.account_id,
                TriggerType.TASK_ASSIGNMENT if command.task_id is not None else TriggerType.MANUAL,
                task_id=command.task_id,
                one_off=command.one_off,
                wait=True,
            )
        return _execution_lines(execution)

    def history(self, command: ExecutionHistoryCommand) -> list[str]:
        worker = None
        if command.kind is not None and command.worker_id is not None:
            worker = WorkerRef(kind=WorkerKind(command.kind), worker_id=command.worker_id)
        with self._service(command.db_path) as service:
            executions = service.get_execution_history(
                worker=worker,
                account_id=command.account_id,
                limit=command.limit,
            )
        lines = [f"Executions: {len(executions)}"]
        for execution in executions:
            duration = execution.duration_ms if execution.duration_ms is not None else "-"
            lines.append(
                f"  {execution.execution_id} worker={execution.worker} "
                f"trigger={execution.trigger_type.value} status={execution.status.value} "
                f"started_at={execution.started_at.isoformat()} "
                f"duration_ms={duration} "
                f"cost_usd={_money(execution.cost_usd)}",
            )
        return lines

    def logs(self, command: ExecutionLogsCommand) -> list[str]:
        with self._service(command.db_path) as service:
            execution = service.get_execution(command.execution_id)
            entries = service.get_execution_logs(command.execution_id)
        lines = _execution_lines(execution)
        lines.append(f"Log entries: {len(entries)}")
        for entry in entries:
            lines.append(
                f"  {entry.created_at.isoformat()} {entry.level.value:<7} "
                f"{entry.stage or '-'}: {entry.message}",
            )
        return lines

    def costs(self, command: CostReportCommand) -> list[str]:
        with self._service(command.db_path) as service:
            if command.kind is not None and command.worker_id is not None:
                rows = [
                    service.worker_cost_report(
                        WorkerRef(kind=WorkerKind(command.kind), worker_id=command.worker_id),
                        days=command.days,
                    ),
                ]
            else:
                rows = service.cost_report(command.account_id, days=command.days)
        total = sum(row.total_cost_usd for row in rows)
        lines = [f"Costs (last {command.days}d): total_usd={total:.4f} workers={len(rows)}"]
        lines.extend(f"  {_cost_line(row)}" for row in rows)
        return lines

    # -- scheduler --------------------------------------------------------------

    def run_scheduler(self, command: SchedulerRunCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        if command.log_level:
            settings.log_level = command.log_level.strip().upper()
        settings.validate()
        settings.configure_logging()
        with self._service(command.db_path, settings=settings) as service:
            handle = service.build_scheduler()
            handle.run_until_stopped(max_seconds=command.max_seconds)
        return ["Scheduler stopped."]

    def tick(self, command: SchedulerTickCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        lines: list[str] = []
        with (
            self._service(command.db_path, settings=settings) as service,
            ThreadPoolExecutor(
                max_workers=settings.scheduler.max_parallel_executions,
                thread_name_prefix="tick",
            ) as executor,
        ):
            scheduler = Scheduler(
                store=service.store,
                dispatcher=service.dispatcher,
                executor=executor,
                strategic=StrategicCycle(
                    store=service.store,
                    dispatcher=service.dispatcher,
                    interval_hours=settings.scheduler.strategic_interval_hours,
                ),
            )
            if "modules" in command.checks:
                lines.append(f"Modules dispatched: {_ids(scheduler.check_modules())}")
            if "strategic" in command.checks:
                lines.append(f"Strategic cycles: {_ids(scheduler.check_strategic_cycles())}")
            if "tasks" in command.checks:
                lines.append(f"Tasks dispatched: {_ids(scheduler.check_task_assignments())}")
        return lines

    @contextmanager
    def _service(
        self,
        db_path: Path | None,
        *,
        settings: Settings | None = None,
    ) -> Iterator[OrchestratorService]:
        settings = settings or Settings.from_env(db_path=db_path)
        with _store(settings) as store:
            service = OrchestratorService(
                store=store,
                runtime=self.runtime_factory(settings),
                settings=settings,
            )
            try:
                yield service
            finally:
                service.close()


def parse_credentials(values: tuple[str, ...]) -> dict[str, str]:
    """Parse repeated `key=value` options."""

    credentials: dict[str, str] = {}
    for value in values:
        key, separator, secret = value.partition("=")
        if not separator or not key.strip():
            raise ValueError(f"Credential must look like key=value, got {value!r}.")
        credentials[key.strip()] = secret
    return credentials


def _cli_runtime(settings: Settings) -> AgentRuntime:
    return CliAgentRuntime(
        command=settings.runtime.command,
        model=settings.runtime.model,
        extra_args=settings.runtime.extra_args,
    )


def _parse_inputs(raw: str | None) -> dict[str, Any] | None:
    if raw is None:
        return None
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as error:
        raise ValueError(f"--inputs must be a JSON object: {error}") from error
    if not isinstance(payload, dict):
        raise ValueError("--inputs must be a JSON object.")
    return payload


def _assignee(task: TaskView) -> str:
    if task.assigned_to_agent_id is not None:
        return str(WorkerRef.agent(task.assigned_to_agent_id))
    if task.assigned_to_module_id is not None:
        return str(WorkerRef.module(task.assigned_to_module_id))
    return "-"


def _task_lines(task: TaskView) -> list[str]:
    return [
        f"Task: {task.task_id}",
        f"Title: {task.title}",
        f"Status: {task.status.value}",
        f"Priority: {task.priority.value}",
        f"Assignee: {_assignee(task)}",
        f"Proposed by: {task.proposed_by or '-'}",
        f"Last change by: {task.last_status_change_by or '-'}",
        f"Execution: {task.execution_id if task.execution_id is not None else '-'}",
        f"Blocked reason: {task.blocked_reason or '-'}",
        f"Completion summary: {task.completion_summary or '-'}",
    ]


def _module_line(module: ModuleView) -> str:
    return (
        f"module_id={module.module_id} name={module.name} type={module.module_type.value} "
        f"frequency={module.frequency.value} status={module.status.value} "
        f"tools={','.join(module.tools) or '-'} session={module.session_id or '-'}"
    )


def _agent_line(agent: AgentView) -> str:
    return (
        f"agent_id={agent.agent_id} name={agent.name} status={agent.status.value} "
        f"tools={','.join(agent.tools) or '-'} tasks_completed={agent.tasks_completed}"
    )


def _execution_lines(execution: ExecutionView) -> list[str]:
    return [
        f"Execution: {execution.execution_id}",
        f"Worker: {execution.worker}",
        f"Trigger: {execution.trigger_type.value}",
        f"Status: {execution.status.value}",
        f"Duration ms: {execution.duration_ms if execution.duration_ms is not None else '-'}",
        f"Cost usd: {_money(execution.cost_usd)}",
        f"Error: {execution.error_message or '-'}",
    ]


def _cost_line(row: CostSummaryRow) -> str:
    worker = WorkerRef(kind=row.worker_kind, worker_id=row.worker_id)
    return (
        f"{worker} executions={row.executions} failed={row.failed} "
        f"cost_usd={row.total_cost_usd:.4f} duration_ms={row.total_duration_ms}"
    )


def _money(value: float | None) -> str:
    return f"{value:.4f}" if value is not None else "-"


def _ids(values: list[int]) -> str:
    return ",".join(str(value) for value in values) or "-"


@contextmanager
def _store(settings: Settings) -> Iterator[OrchestratorStore]:
    store = OrchestratorStore(
        db_path=settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    store.init_schema()
    try:
        yield store
    finally:
        store.close()
