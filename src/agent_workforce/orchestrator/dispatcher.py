"""Execution dispatcher: run one worker against the agent runtime.

A dispatch is split in two halves. `prepare` validates the worker, takes the
per-worker lock and creates the `running` record, so a caller learns about
busy or inactive workers synchronously. `execute` does the slow part and
always finalizes the record, whatever happens inside the runtime.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from agent_workforce.orchestrator.activity import ActivityFeed, build_fallback_summary
from agent_workforce.orchestrator.adapters import (
    ToolAdapter,
    ToolAdapterRegistry,
    default_adapter_registry,
)
from agent_workforce.orchestrator.backend.base import (
    AgentRuntime,
    ProgressEvent,
    RuntimeRunRequest,
    RuntimeRunResult,
)
from agent_workforce.orchestrator.errors import (
    InvalidTransition,
    MissingCredential,
    OrchestratorError,
    PersistenceFailure,
    RuntimeInvocationFailure,
    TaskNotAssigned,
    WorkerBusy,
    WorkerInactive,
)
from agent_workforce.orchestrator.models import (
    AgentView,
    ExecutionFinish,
    ExecutionResult,
    ExecutionStatus,
    ExecutionView,
    LogLevel,
    ModuleType,
    ModuleView,
    TaskAction,
    TaskStatus,
    TaskView,
    TriggerType,
    WorkerKind,
    WorkerRef,
    WorkerStatus,
)
from agent_workforce.orchestrator.pricing import resolve_cost_usd
from agent_workforce.orchestrator.prompts import RunPrompt, build_agent_prompt, build_module_prompt
from agent_workforce.orchestrator.repository import OrchestratorStore
from agent_workforce.orchestrator.sessions import SessionContext, SessionContinuityManager
from agent_workforce.orchestrator.state_machine import TransitionPayload
from agent_workforce.orchestrator.workdir import WorkspaceManager
from agent_workforce.storage.common import utc_now

logger = logging.getLogger(__name__)


class WorkerLocks:
    """In-process advisory locks keyed by worker."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._held: set[WorkerRef] = set()

    def try_acquire(self, worker: WorkerRef) -> bool:
        with self._guard:
            if worker in self._held:
                return False
            self._held.add(worker)
            return True

    def release(self, worker: WorkerRef) -> None:
        with self._guard:
            self._held.discard(worker)

    def is_held(self, worker: WorkerRef) -> bool:
        with self._guard:
            return worker in self._held


@dataclass(slots=True)
class PreparedExecution:
    """A `running` record whose worker lock is held by the caller."""

    execution: ExecutionView
    worker: ModuleView | AgentView
    task: TaskView | None
    one_off: bool
    started_monotonic: float

    @property
    def execution_id(self) -> int:
        return self.execution.execution_id

    @property
    def ref(self) -> WorkerRef:
        return self.worker.ref


class ExecutionDispatcher:
    def __init__(  # noqa: PLR0913
        self,
        *,
        store: OrchestratorStore,
        runtime: AgentRuntime,
        workspaces: WorkspaceManager,
        adapters: ToolAdapterRegistry | None = None,
        activity: ActivityFeed | None = None,
        locks: WorkerLocks | None = None,
        tools_command: tuple[str, ...] = ("agent-workforce-tools",),
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.runtime = runtime
        self.workspaces = workspaces
        self.adapters = adapters or default_adapter_registry()
        self.activity = activity or store.activity
        self.locks = locks or WorkerLocks()
        self.tools_command = tools_command
        self.clock = clock
        self.sessions = SessionContinuityManager(registry=store.workers, workspaces=workspaces)

    def dispatch(
        self,
        worker: WorkerRef,
        trigger: TriggerType,
        *,
        task_id: int | None = None,
        one_off: bool = False,
    ) -> ExecutionResult:
        """Prepare and execute in the calling thread."""

        prepared = self.prepare(worker, trigger, task_id=task_id, one_off=one_off)
        return self.execute(prepared)

    def prepare(
        self,
        worker: WorkerRef,
        trigger: TriggerType,
        *,
        task_id: int | None = None,
        one_off: bool = False,
    ) -> PreparedExecution:
        config = self.store.workers.get(worker)
        if config.status != WorkerStatus.ACTIVE:
            raise WorkerInactive(worker)

        task: TaskView | None = None
        if task_id is not None:
            task = self.store.tasks.get(task_id)
            _check_task_assignment(task, worker)

        if not self.locks.try_acquire(worker):
            raise WorkerBusy(worker)
        try:
            execution = self.store.ledger.start_execution(
                account_id=config.account_id,
                worker=worker,
                trigger_type=trigger,
                task_id=task_id,
                started_at=self.clock(),
                metadata={"one_off": True} if one_off else None,
            )
        except BaseException:
            self.locks.release(worker)
            raise
        logger.info(
            "Execution %s started for %s (trigger=%s task=%s)",
            execution.execution_id,
            worker,
            trigger.value,
            task_id,
        )
        return PreparedExecution(
            execution=execution,
            worker=config,
            task=task,
            one_off=one_off or worker.kind == WorkerKind.AGENT,
            started_monotonic=time.monotonic(),
        )

    def execute(self, prepared: PreparedExecution) -> ExecutionResult:
        """Run a prepared execution and finalize its record exactly once."""

        try:
            return self._run(prepared)
        finally:
            self.locks.release(prepared.ref)

    def _run(self, prepared: PreparedExecution) -> ExecutionResult:
        execution_id = prepared.execution_id
        context: SessionContext | None = None
        metadata: dict[str, Any] = {}
        self._log(
            execution_id,
            stage="started",
            message=f"Execution started ({prepared.execution.trigger_type.value})",
        )
        try:
            if prepared.task is not None:
                prepared.task = self.store.tasks.transition(
                    task_id=prepared.task.task_id,
                    action=TaskAction.START,
                    payload=TransitionPayload(
                        actor=prepared.worker.name,
                        execution_id=execution_id,
                    ),
                )

            context = self._resolve_context(prepared)
            metadata["workspace"] = str(context.workspace.path)
            metadata["resumed_session"] = context.resume_session_id is not None

            tools, skipped = self._build_tools(prepared)
            metadata["tools"] = [tool.name for tool in tools]
            metadata["skipped_tools"] = skipped

            run_prompt = self._build_prompt(prepared)
            materialized = self.workspaces.materialize(
                context.workspace,
                execution_id=execution_id,
                worker=prepared.ref,
                prompt=run_prompt.prompt,
                tools=tools,
                resume_session_id=context.resume_session_id,
            )
            result = self.runtime.run(
                RuntimeRunRequest(
                    prompt=run_prompt.prompt,
                    system_prompt=run_prompt.system_prompt,
                    workspace=context.workspace.path,
                    max_turns=prepared.worker.max_turns,
                    resume_session_id=context.resume_session_id,
                    mcp_config_path=materialized.mcp_config_path,
                ),
                lambda event: self._on_progress(execution_id, event),
            )
            if result.success:
                return self._complete(prepared, result, context=context, metadata=metadata)
            return self._fail(
                prepared,
                result.error or "Agent runtime reported an unsuccessful run.",
                metadata=metadata,
                result=result,
            )
        except RuntimeInvocationFailure as error:
            return self._fail(prepared, str(error), metadata=metadata)
        except BaseException as error:
            self._fail(prepared, f"{type(error).__name__}: {error}", metadata=metadata)
            raise
        finally:
            if context is not None:
                self.workspaces.release(context.workspace)

    def _resolve_context(self, prepared: PreparedExecution) -> SessionContext:
        if isinstance(prepared.worker, ModuleView):
            return self.sessions.resolve(
                prepared.worker,
                execution_id=prepared.execution_id,
                one_off=prepared.one_off,
            )
        return SessionContext(
            workspace=self.workspaces.execution_workspace(prepared.execution_id),
            resume_session_id=None,
            persistent=False,
        )

    def _build_tools(self, prepared: PreparedExecution) -> tuple[list[ToolAdapter], list[str]]:
        tools: list[ToolAdapter] = []
        skipped: list[str] = []
        for kind in self.adapters.validate(prepared.worker.tools):
            try:
                tools.append(
                    self.adapters.build(
                        kind,
                        account_id=prepared.worker.account_id,
                        worker=prepared.ref,
                        credentials=self.store.accounts.get_credentials,
                        internal_command=self.tools_command,
                    ),
                )
            except MissingCredential as error:
                logger.warning("Skipping tool %s for %s: %s", kind.value, prepared.ref, error)
                self._log(
                    prepared.execution_id,
                    stage="tool_skipped",
                    message=f"Tool {kind.value} skipped: {error}",
                    level=LogLevel.WARNING,
                    metadata={"tool": kind.value},
                )
                skipped.append(kind.value)
        return tools, skipped

    def _build_prompt(self, prepared: PreparedExecution) -> RunPrompt:
        now = self.clock()
        worker = prepared.worker
        if isinstance(worker, AgentView):
            if prepared.task is None:
                raise ValueError(f"Agent {worker.agent_id} can only run with an assigned task.")
            return build_agent_prompt(worker, prepared.task, now=now)
        documents = None
        if worker.module_type == ModuleType.STRATEGIC:
            documents = self.store.accounts.get_context(worker.account_id).long_term_documents
        return build_module_prompt(worker, now=now, documents=documents)

    def _complete(
        self,
        prepared: PreparedExecution,
        result: RuntimeRunResult,
        *,
        context: SessionContext,
        metadata: dict[str, Any],
    ) -> ExecutionResult:
        execution_id = prepared.execution_id
        cost_usd = _cost(result)
        duration_ms = self._elapsed_ms(prepared)
        metadata.update(_result_metadata(result))

        if context.persistent and isinstance(prepared.worker, ModuleView):
            self.sessions.commit(prepared.worker.module_id, result.session_id)

        self._finalize(
            prepared,
            ExecutionFinish(
                status=ExecutionStatus.COMPLETED,
                completed_at=self.clock(),
                duration_ms=duration_ms,
                cost_usd=cost_usd,
                metadata=metadata,
            ),
        )
        self._log(
            execution_id,
            stage="completed",
            message="Execution completed",
            metadata={"cost_usd": cost_usd, "num_turns": result.num_turns},
        )

        if prepared.task is not None:
            summary = (result.output or "").strip() or f"Completed by {prepared.worker.name}."
            completed = self._settle_task(
                prepared,
                TaskAction.COMPLETE,
                TransitionPayload(
                    actor=prepared.worker.name,
                    completion_summary=summary,
                    execution_id=execution_id,
                ),
            )
            if completed and isinstance(prepared.worker, AgentView):
                self.store.workers.increment_tasks_completed(prepared.worker.agent_id)

        self._post_fallback_summary(prepared, result, cost_usd=cost_usd, duration_ms=duration_ms)
        logger.info("Execution %s completed for %s", execution_id, prepared.ref)
        return ExecutionResult(
            execution_id=execution_id,
            status=ExecutionStatus.COMPLETED,
            output=result.output,
            session_id=result.session_id,
            cost_usd=cost_usd,
            num_turns=result.num_turns,
        )

    def _fail(
        self,
        prepared: PreparedExecution,
        error_message: str,
        *,
        metadata: dict[str, Any],
        result: RuntimeRunResult | None = None,
    ) -> ExecutionResult:
        execution_id = prepared.execution_id
        cost_usd = _cost(result) if result is not None else None
        if result is not None:
            metadata.update(_result_metadata(result))
        logger.warning("Execution %s failed for %s: %s", execution_id, prepared.ref, error_message)
        self._log(execution_id, stage="failed", message=error_message, level=LogLevel.ERROR)
        finalized = self.store.ledger.finalize_execution(
            execution_id=execution_id,
            finish=ExecutionFinish(
                status=ExecutionStatus.FAILED,
                completed_at=self.clock(),
                duration_ms=self._elapsed_ms(prepared),
                cost_usd=cost_usd,
                error_message=error_message,
                metadata=metadata,
            ),
        )
        if not finalized:
            logger.warning("Execution %s was already finalized", execution_id)
        if prepared.task is not None:
            self._settle_task(
                prepared,
                TaskAction.FAIL,
                TransitionPayload(
                    actor=prepared.worker.name,
                    error_message=error_message,
                    execution_id=execution_id,
                ),
            )
        return ExecutionResult(
            execution_id=execution_id,
            status=ExecutionStatus.FAILED,
            output=result.output if result is not None else None,
            session_id=result.session_id if result is not None else None,
            cost_usd=cost_usd,
            num_turns=result.num_turns if result is not None else None,
            error_message=error_message,
        )

    def _finalize(self, prepared: PreparedExecution, finish: ExecutionFinish) -> None:
        if not self.store.ledger.finalize_execution(
            execution_id=prepared.execution_id,
            finish=finish,
        ):
            raise PersistenceFailure(
                f"Execution {prepared.execution_id} was finalized by someone else.",
            )

    def _settle_task(
        self,
        prepared: PreparedExecution,
        action: TaskAction,
        payload: TransitionPayload,
    ) -> bool:
        """Complete or fail the task if the run left it in progress."""

        assert prepared.task is not None
        task_id = prepared.task.task_id
        try:
            current = self.store.tasks.get(task_id)
            if current.status != TaskStatus.IN_PROGRESS:
                logger.info(
                    "Task %s is %s after execution %s; leaving it as is",
                    task_id,
                    current.status.value,
                    prepared.execution_id,
                )
                return False
            prepared.task = self.store.tasks.transition(
                task_id=task_id,
                action=action,
                payload=payload,
            )
        except InvalidTransition as error:
            logger.info("Task %s changed concurrently: %s", task_id, error)
            return False
        except (OrchestratorError, SQLAlchemyError):
            if action == TaskAction.COMPLETE:
                raise
            logger.exception("Could not mark task %s failed", task_id)
            return False
        return True

    def _post_fallback_summary(
        self,
        prepared: PreparedExecution,
        result: RuntimeRunResult,
        *,
        cost_usd: float | None,
        duration_ms: int,
    ) -> None:
        execution_id = prepared.execution_id
        if self.activity.has_summary(execution_id):
            return
        logs = self.store.ledger.list_logs(execution_id)
        title = prepared.worker.name
        if prepared.task is not None:
            title = f"{prepared.worker.name}: {prepared.task.title}"
        summary = build_fallback_summary(
            execution_id=execution_id,
            worker_name=title,
            worker_description=prepared.worker.description,
            logs=logs,
            output=result.output,
            cost_usd=cost_usd,
            duration_ms=duration_ms,
        )
        self.activity.post_summary(prepared.worker.account_id, summary)

    def _on_progress(self, execution_id: int, event: ProgressEvent) -> None:
        self._log(
            execution_id,
            stage=event.stage,
            message=event.message,
            level=_log_level(event.level),
            metadata=event.metadata,
        )

    def _log(
        self,
        execution_id: int,
        *,
        stage: str,
        message: str,
        level: LogLevel = LogLevel.INFO,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        try:
            self.store.ledger.append_log(
                execution_id=execution_id,
                message=message,
                level=level,
                stage=stage,
                metadata=metadata,
            )
        except SQLAlchemyError:
            logger.warning(
                "Could not write %s log entry for execution %s",
                stage,
                execution_id,
                exc_info=True,
            )

    def _elapsed_ms(self, prepared: PreparedExecution) -> int:
        return int((time.monotonic() - prepared.started_monotonic) * 1000)


def _check_task_assignment(task: TaskView, worker: WorkerRef) -> None:
    if task.status != TaskStatus.APPROVED:
        raise InvalidTransition(
            current=task.status.value,
            action=TaskAction.START.value,
            task_id=task.task_id,
        )
    assigned = (
        task.assigned_to_agent_id
        if worker.kind == WorkerKind.AGENT
        else task.assigned_to_module_id
    )
    if assigned != worker.worker_id:
        raise TaskNotAssigned(task.task_id, worker)


def _cost(result: RuntimeRunResult) -> float | None:
    return resolve_cost_usd(
        reported_cost_usd=result.cost_usd,
        model=result.model,
        input_tokens=result.input_tokens,
        output_tokens=result.output_tokens,
    )


def _result_metadata(result: RuntimeRunResult) -> dict[str, Any]:
    return {
        "num_turns": result.num_turns,
        "model": result.model,
        "session_id": result.session_id,
        "input_tokens": result.input_tokens,
        "output_tokens": result.output_tokens,
    }


def _log_level(value: str) -> LogLevel:
    try:
        return LogLevel(value)
    except ValueError:
        return LogLevel.INFO
