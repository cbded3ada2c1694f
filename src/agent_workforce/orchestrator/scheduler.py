"""Periodic checks that turn due modules, due accounts and approved tasks into executions.

Each check prepares executions synchronously (so busy workers are skipped on
the spot) and hands the slow part to an executor. A failure while evaluating
one worker or account is logged and the loop moves on.
"""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections.abc import Callable, Iterator
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from contextlib import contextmanager
from datetime import datetime, timedelta

from agent_workforce.config import SchedulerSettings
from agent_workforce.orchestrator.dispatcher import ExecutionDispatcher, PreparedExecution
from agent_workforce.orchestrator.errors import WorkerBusy
from agent_workforce.orchestrator.models import (
    ExecutionResult,
    ModuleFrequency,
    TriggerType,
    WorkerRef,
)
from agent_workforce.orchestrator.repository import OrchestratorStore
from agent_workforce.orchestrator.strategy import StrategicCycle
from agent_workforce.storage.common import utc_now

logger = logging.getLogger(__name__)

DUE_THRESHOLDS: dict[ModuleFrequency, timedelta] = {
    ModuleFrequency.AUTO: timedelta(hours=6),
    ModuleFrequency.DAILY: timedelta(hours=24),
    ModuleFrequency.WEEKLY: timedelta(days=7),
}

ORPHAN_REASON = "Scheduler restarted while the execution was running."
ORPHAN_ACTOR = "scheduler"


def is_module_due(
    frequency: ModuleFrequency,
    now: datetime,
    last_started_at: datetime | None,
) -> bool:
    """Whether a module with this frequency should run now."""

    threshold = DUE_THRESHOLDS.get(ModuleFrequency(frequency))
    if threshold is None:
        return False
    if last_started_at is None:
        return True
    return now - last_started_at >= threshold


class Scheduler:
    """The three periodic checks, without any threads of their own."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        store: OrchestratorStore,
        dispatcher: ExecutionDispatcher,
        executor: Executor,
        strategic: StrategicCycle | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.executor = executor
        self.strategic = strategic
        self.clock = clock

    def recover_orphans(self) -> int:
        """Fail orphaned `running` records and the tasks they left in progress."""

        now = self.clock()
        execution_ids = self.store.ledger.fail_orphaned_running(reason=ORPHAN_REASON, now=now)
        task_ids = self.store.tasks.fail_in_progress_for_executions(
            execution_ids=execution_ids,
            reason=ORPHAN_REASON,
            actor=ORPHAN_ACTOR,
            now=now,
        )
        if task_ids:
            logger.warning("Failed %s task(s) left in progress: %s", len(task_ids), task_ids)
        return len(execution_ids)

    def check_modules(self) -> list[int]:
        """Submit every due module; returns the dispatched module ids."""

        now = self.clock()
        dispatched: list[int] = []
        for module in self.store.workers.list_active_modules():
            if module.frequency == ModuleFrequency.MANUAL:
                continue
            try:
                last = self.store.ledger.last_execution(module.ref)
                if not is_module_due(
                    module.frequency,
                    now,
                    last.started_at if last is not None else None,
                ):
                    continue
                prepared = self.dispatcher.prepare(module.ref, TriggerType.SCHEDULED)
            except WorkerBusy:
                logger.info("Module %s is still running; skipping this tick", module.module_id)
                continue
            except Exception:
                logger.exception("Scheduled check failed for module %s", module.module_id)
                continue
            self._submit(prepared, self.dispatcher.execute)
            dispatched.append(module.module_id)
        if dispatched:
            logger.info("Dispatched %s scheduled module(s): %s", len(dispatched), dispatched)
        return dispatched

    def check_strategic_cycles(self) -> list[int]:
        """Submit the strategic cycle for every due account; returns the account ids."""

        if self.strategic is None:
            return []
        strategic = self.strategic
        dispatched: list[int] = []
        try:
            accounts = strategic.due_accounts()
        except Exception:
            logger.exception("Could not load accounts due for a strategic cycle")
            return []
        for account_id in accounts:
            try:
                prepared = strategic.prepare(account_id)
            except WorkerBusy:
                logger.info("Strategic module of account %s is busy; skipping", account_id)
                continue
            except Exception:
                logger.exception("Strategic cycle failed to start for account %s", account_id)
                continue
            if prepared is None:
                continue
            self._submit(
                prepared,
                lambda item, account_id=account_id: strategic.execute(account_id, item),
            )
            dispatched.append(account_id)
        return dispatched

    def check_task_assignments(self) -> list[int]:
        """Submit approved agent tasks by priority, then age; returns the task ids."""

        dispatched: list[int] = []
        try:
            tasks = self.store.tasks.list_dispatchable_agent_tasks()
        except Exception:
            logger.exception("Could not load approved agent tasks")
            return []
        for task in tasks:
            assert task.assigned_to_agent_id is not None
            agent = WorkerRef.agent(task.assigned_to_agent_id)
            if self.dispatcher.locks.is_held(agent):
                logger.debug("Agent %s is busy; task %s waits", agent, task.task_id)
                continue
            try:
                prepared = self.dispatcher.prepare(
                    agent,
                    TriggerType.TASK_ASSIGNMENT,
                    task_id=task.task_id,
                )
            except WorkerBusy:
                logger.debug("Agent %s is busy; task %s waits", agent, task.task_id)
                continue
            except Exception:
                logger.exception("Could not dispatch task %s to %s", task.task_id, agent)
                continue
            self._submit(prepared, self.dispatcher.execute)
            dispatched.append(task.task_id)
        if dispatched:
            logger.info("Dispatched %s task(s) to agents: %s", len(dispatched), dispatched)
        return dispatched

    def _submit(
        self,
        prepared: PreparedExecution,
        run: Callable[[PreparedExecution], ExecutionResult | None],
    ) -> Future[ExecutionResult | None]:
        def _job() -> ExecutionResult | None:
            try:
                return run(prepared)
            except Exception:
                logger.exception(
                    "Execution %s for %s raised",
                    prepared.execution_id,
                    prepared.ref,
                )
                return None

        try:
            return self.executor.submit(_job)
        except RuntimeError:
            # Executor already shut down: run it here so the record is finalized.
            logger.warning(
                "Executor unavailable; running execution %s inline",
                prepared.execution_id,
            )
            future: Future[ExecutionResult | None] = Future()
            future.set_result(_job())
            return future


class SchedulerHandle:
    """Owns the ticker threads and the dispatch pool of one running scheduler."""

    def __init__(
        self,
        *,
        scheduler: Scheduler,
        settings: SchedulerSettings,
        owns_executor: bool = True,
    ) -> None:
        self.scheduler = scheduler
        self.settings = settings
        self.owns_executor = owns_executor
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    @classmethod
    def build(  # noqa: PLR0913
        cls,
        *,
        store: OrchestratorStore,
        dispatcher: ExecutionDispatcher,
        settings: SchedulerSettings,
        clock: Callable[[], datetime] = utc_now,
    ) -> SchedulerHandle:
        executor = ThreadPoolExecutor(
            max_workers=settings.max_parallel_executions,
            thread_name_prefix="dispatch",
        )
        strategic = None
        if settings.enable_strategic_cycle:
            strategic = StrategicCycle(
                store=store,
                dispatcher=dispatcher,
                interval_hours=settings.strategic_interval_hours,
                clock=clock,
            )
        return cls(
            scheduler=Scheduler(
                store=store,
                dispatcher=dispatcher,
                executor=executor,
                strategic=strategic,
                clock=clock,
            ),
            settings=settings,
        )

    @property
    def running(self) -> bool:
        return bool(self._threads) and not self._stop.is_set()

    def start(self) -> None:
        if self._threads:
            raise RuntimeError("Scheduler is already started.")
        self._stop.clear()
        recovered = self.scheduler.recover_orphans()
        if recovered:
            logger.warning("Marked %s orphaned execution(s) as failed", recovered)

        self.scheduler.check_modules()
        self._spawn(
            "module-ticker",
            self.settings.module_tick_seconds,
            self.scheduler.check_modules,
        )
        if self.scheduler.strategic is not None:
            self._spawn(
                "strategic-ticker",
                self.settings.strategic_tick_seconds,
                self.scheduler.check_strategic_cycles,
            )
        if self.settings.enable_task_listener:
            self._spawn(
                "task-listener",
                self.settings.task_poll_seconds,
                self.scheduler.check_task_assignments,
            )
        logger.info("Scheduler started with %s ticker(s)", len(self._threads))

    def stop(self, *, timeout: float = 15.0) -> None:
        """Stop the tickers and wait for in-flight executions to finish."""

        self._stop.set()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads = []
        if self.owns_executor and isinstance(self.scheduler.executor, ThreadPoolExecutor):
            self.scheduler.executor.shutdown(wait=True)
        logger.info("Scheduler stopped")

    def run_until_stopped(self, *, max_seconds: float | None = None) -> None:
        """Block the calling thread until SIGINT/SIGTERM or `max_seconds` elapse."""

        deadline = time.monotonic() + max_seconds if max_seconds is not None else None
        self.start()
        try:
            with self._signal_handlers():
                while not self._stop.is_set():
                    if deadline is not None and time.monotonic() >= deadline:
                        break
                    self._stop.wait(timeout=0.5)
        finally:
            self.stop()

    def _spawn(self, name: str, interval: float, check: Callable[[], object]) -> None:
        thread = threading.Thread(
            target=self._tick_loop,
            args=(name, interval, check),
            daemon=True,
            name=name,
        )
        thread.start()
        self._threads.append(thread)

    def _tick_loop(self, name: str, interval: float, check: Callable[[], object]) -> None:
        while not self._stop.wait(timeout=interval):
            try:
                check()
            except Exception:
                logger.exception("Ticker %s failed", name)

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if threading.current_thread() is not threading.main_thread():
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            logger.info("Received %s; stopping scheduler", signal.Signals(signum).name)
            self._stop.set()

        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
