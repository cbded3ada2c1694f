"""Use-case services exposed to the CLI and embedding applications."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Any

from agent_workforce.config import Settings
from agent_workforce.orchestrator.activity import ActivityFeed
from agent_workforce.orchestrator.adapters import ToolAdapterRegistry, default_adapter_registry
from agent_workforce.orchestrator.backend import AgentRuntime
from agent_workforce.orchestrator.dispatcher import (
    ExecutionDispatcher,
    PreparedExecution,
    WorkerLocks,
)
from agent_workforce.orchestrator.errors import WorkerNotFound
from agent_workforce.orchestrator.models import (
    ActivitySummaryView,
    AgentCreate,
    AgentView,
    CostSummaryRow,
    ExecutionLogView,
    ExecutionResult,
    ExecutionView,
    ModuleCreate,
    ModuleView,
    TaskAction,
    TaskEventView,
    TaskFilter,
    TaskProposal,
    TaskView,
    TriggerType,
    WorkerRef,
    WorkerUpdate,
)
from agent_workforce.orchestrator.repository import OrchestratorStore
from agent_workforce.orchestrator.scheduler import SchedulerHandle
from agent_workforce.orchestrator.state_machine import TransitionPayload
from agent_workforce.orchestrator.strategy import StrategicCycle
from agent_workforce.orchestrator.workdir import WorkspaceManager
from agent_workforce.storage.common import utc_now

logger = logging.getLogger(__name__)


class OrchestratorService:
    """Facade over the store, dispatcher and scheduler for one process."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        store: OrchestratorStore,
        runtime: AgentRuntime,
        settings: Settings,
        adapters: ToolAdapterRegistry | None = None,
        activity: ActivityFeed | None = None,
        max_background_executions: int | None = None,
    ) -> None:
        self.store = store
        self.settings = settings
        self.adapters = adapters or default_adapter_registry()
        self.store.workers.adapters = self.adapters
        self.dispatcher = ExecutionDispatcher(
            store=store,
            runtime=runtime,
            workspaces=WorkspaceManager(settings.workspace.root_dir),
            adapters=self.adapters,
            activity=activity,
            locks=WorkerLocks(),
            tools_command=settings.runtime.tools_command,
        )
        self._max_background = (
            max_background_executions or settings.scheduler.max_parallel_executions
        )
        self._background: ThreadPoolExecutor | None = None

    # -- tasks ------------------------------------------------------------------

    def propose_task(self, account_id: int, proposal: TaskProposal) -> TaskView:
        task = self.store.tasks.propose(account_id=account_id, proposal=proposal)
        logger.info("Task %s proposed for account %s", task.task_id, account_id)
        return task

    def transition_task(
        self,
        task_id: int,
        action: TaskAction,
        payload: TransitionPayload,
    ) -> TaskView:
        task = self.store.tasks.transition(task_id=task_id, action=action, payload=payload)
        logger.info("Task %s -> %s (%s)", task_id, task.status.value, action.value)
        return task

    def get_task(self, task_id: int) -> TaskView:
        return self.store.tasks.get(task_id)

    def list_tasks(self, account_id: int, task_filter: TaskFilter | None = None) -> list[TaskView]:
        return self.store.tasks.list_tasks(account_id=account_id, task_filter=task_filter)

    def list_task_events(self, task_id: int) -> list[TaskEventView]:
        return self.store.tasks.list_events(task_id)

    # -- executions -------------------------------------------------------------

    def trigger_execution(
        self,
        worker: WorkerRef,
        account_id: int,
        trigger_type: TriggerType = TriggerType.MANUAL,
        *,
        task_id: int | None = None,
        one_off: bool = False,
        wait: bool = False,
    ) -> ExecutionView:
        """Start one execution and return its record.

        The record is created before this returns, so a busy or inactive
        worker is reported to the caller. With `wait=False` the runtime call
        happens on a background thread and the returned record is `running`.
        """

        config = self.store.workers.get(worker)
        if config.account_id != account_id:
            raise WorkerNotFound(worker)
        prepared = self.dispatcher.prepare(worker, trigger_type, task_id=task_id, one_off=one_off)
        if wait:
            self.dispatcher.execute(prepared)
            return self.store.ledger.get_execution(prepared.execution_id)
        self._submit_background(prepared)
        return prepared.execution

    def run_execution(
        self,
        worker: WorkerRef,
        trigger_type: TriggerType = TriggerType.MANUAL,
        *,
        task_id: int | None = None,
        one_off: bool = False,
    ) -> ExecutionResult:
        """Dispatch in the calling thread and return the runtime outcome."""

        return self.dispatcher.dispatch(worker, trigger_type, task_id=task_id, one_off=one_off)

    def get_execution(self, execution_id: int) -> ExecutionView:
        return self.store.ledger.get_execution(execution_id)

    def get_execution_history(
        self,
        worker: WorkerRef | None = None,
        account_id: int | None = None,
        limit: int = 20,
    ) -> list[ExecutionView]:
        return self.store.ledger.list_executions(worker=worker, account_id=account_id, limit=limit)

    def get_execution_logs(self, execution_id: int) -> list[ExecutionLogView]:
        return self.store.ledger.list_logs(execution_id)

    def list_activity(self, account_id: int, limit: int = 20) -> list[ActivitySummaryView]:
        return self.store.activity.list_summaries(account_id=account_id, limit=limit)

    def cost_report(self, account_id: int, *, days: int = 30) -> list[CostSummaryRow]:
        return self.store.ledger.cost_summary(account_id=account_id, since=_since(days))

    def worker_cost_report(self, worker: WorkerRef, *, days: int = 30) -> CostSummaryRow:
        return self.store.ledger.worker_cost_summary(worker=worker, since=_since(days))

    # -- workers ----------------------------------------------------------------

    def register_module(self, account_id: int, payload: ModuleCreate) -> ModuleView:
        module = self.store.workers.create_module(account_id=account_id, payload=payload)
        logger.info("Module %s registered for account %s", module.module_id, account_id)
        return module

    def register_agent(self, account_id: int, payload: AgentCreate) -> AgentView:
        agent = self.store.workers.create_agent(account_id=account_id, payload=payload)
        logger.info("Agent %s registered for account %s", agent.agent_id, account_id)
        return agent

    def update_worker(self, worker: WorkerRef, payload: WorkerUpdate) -> ModuleView | AgentView:
        return self.store.workers.update_worker(worker, payload)

    def get_worker(self, worker: WorkerRef) -> ModuleView | AgentView:
        return self.store.workers.get(worker)

    def list_modules(self, account_id: int) -> list[ModuleView]:
        return self.store.workers.list_modules(account_id=account_id)

    def list_agents(self, account_id: int) -> list[AgentView]:
        return self.store.workers.list_agents(account_id=account_id)

    def reset_session(self, module_id: int) -> bool:
        self.store.workers.get_module(module_id)
        reset = self.dispatcher.sessions.reset(module_id)
        if reset:
            logger.info("Session of module %s reset", module_id)
        return reset

    # -- accounts ---------------------------------------------------------------

    def create_account(self, name: str) -> int:
        return self.store.accounts.create_account(name)

    def put_document(self, account_id: int, name: str, content: str) -> None:
        self.store.accounts.put_document(account_id=account_id, name=name, content=content)

    def connect_service(self, account_id: int, service: str, credentials: dict[str, Any]) -> None:
        self.store.accounts.connect_service(
            account_id=account_id,
            service=service,
            credentials=credentials,
        )

    def run_strategic_cycle(self, account_id: int) -> ExecutionResult | None:
        cycle = StrategicCycle(
            store=self.store,
            dispatcher=self.dispatcher,
            interval_hours=self.settings.scheduler.strategic_interval_hours,
        )
        return cycle.run(account_id)

    # -- lifecycle --------------------------------------------------------------

    def build_scheduler(self) -> SchedulerHandle:
        return SchedulerHandle.build(
            store=self.store,
            dispatcher=self.dispatcher,
            settings=self.settings.scheduler,
        )

    def close(self) -> None:
        """Wait for background executions started by `trigger_execution`."""

        if self._background is not None:
            self._background.shutdown(wait=True)
            self._background = None

    def _submit_background(self, prepared: PreparedExecution) -> Future[ExecutionResult | None]:
        if self._background is None:
            self._background = ThreadPoolExecutor(
                max_workers=self._max_background,
                thread_name_prefix="trigger",
            )

        def _job() -> ExecutionResult | None:
            try:
                return self.dispatcher.execute(prepared)
            except Exception:
                logger.exception("Background execution %s raised", prepared.execution_id)
                return None

        return self._background.submit(_job)


def _since(days: int) -> datetime:
    return utc_now() - timedelta(days=max(0, days))
