from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from datetime import timedelta
from typing import Any

import allure
import pytest
from conftest import FIXED_NOW, FakeRuntime, InlineExecutor, failed_result, ok_result

from agent_workforce.config import SchedulerSettings
from agent_workforce.orchestrator.dispatcher import ExecutionDispatcher
from agent_workforce.orchestrator.models import (
    AgentCreate,
    ExecutionFinish,
    ExecutionStatus,
    ModuleCreate,
    ModuleFrequency,
    ModuleType,
    TaskAction,
    TaskPriority,
    TaskProposal,
    TaskStatus,
    TriggerType,
    WorkerRef,
)
from agent_workforce.orchestrator.repository import OrchestratorStore
from agent_workforce.orchestrator.scheduler import (
    ORPHAN_REASON,
    Scheduler,
    SchedulerHandle,
    is_module_due,
)
from agent_workforce.orchestrator.state_machine import TransitionPayload
from agent_workforce.orchestrator.strategy import StrategicCycle

pytestmark = [
    allure.epic("Scheduling"),
    allure.feature("Scheduler"),
]


class DeferredExecutor(Executor):
    """Collects submitted jobs so a test can run them after the check returns."""

    def __init__(self) -> None:
        self.jobs: list[Callable[[], Any]] = []

    def submit(self, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Future[Any]:
        self.jobs.append(lambda: fn(*args, **kwargs))
        return Future()

    def run_all(self) -> None:
        jobs, self.jobs = self.jobs, []
        for job in jobs:
            job()


def _scheduler(
    store: OrchestratorStore,
    dispatcher: ExecutionDispatcher,
    executor: Executor,
    *,
    strategic: StrategicCycle | None = None,
) -> Scheduler:
    return Scheduler(
        store=store,
        dispatcher=dispatcher,
        executor=executor,
        strategic=strategic,
        clock=lambda: FIXED_NOW,
    )


def _module(store: OrchestratorStore, account_id: int, frequency: ModuleFrequency, **extra):
    return store.workers.create_module(
        account_id=account_id,
        payload=ModuleCreate(
            name=extra.pop("name", f"{frequency.value} module"),
            goal=extra.pop("goal", "Review the week."),
            frequency=frequency,
            **extra,
        ),
    )


def _past_run(
    store: OrchestratorStore,
    account_id: int,
    worker: WorkerRef,
    started_ago: timedelta,
) -> None:
    started_at = FIXED_NOW - started_ago
    execution = store.ledger.start_execution(
        account_id=account_id,
        worker=worker,
        trigger_type=TriggerType.SCHEDULED,
        started_at=started_at,
    )
    store.ledger.finalize_execution(
        execution_id=execution.execution_id,
        finish=ExecutionFinish(
            status=ExecutionStatus.COMPLETED,
            completed_at=started_at + timedelta(minutes=5),
            duration_ms=300_000,
        ),
    )


def _approved_agent_task(
    store: OrchestratorStore,
    account_id: int,
    agent_id: int,
    title: str,
    priority: TaskPriority,
):
    task = store.tasks.propose(
        account_id=account_id,
        proposal=TaskProposal(title=title, priority=priority),
    )
    return store.tasks.transition(
        task_id=task.task_id,
        action=TaskAction.APPROVE,
        payload=TransitionPayload(approval_reasoning="go", assign_to_agent_id=agent_id),
    )


@pytest.mark.parametrize(
    ("frequency", "elapsed", "expected"),
    [
        (ModuleFrequency.MANUAL, None, False),
        (ModuleFrequency.MANUAL, timedelta(days=365), False),
        (ModuleFrequency.DAILY, None, True),
        (ModuleFrequency.DAILY, timedelta(hours=23), False),
        (ModuleFrequency.DAILY, timedelta(hours=24), True),
        (ModuleFrequency.WEEKLY, timedelta(days=6, hours=23), False),
        (ModuleFrequency.WEEKLY, timedelta(days=7), True),
        (ModuleFrequency.AUTO, timedelta(hours=5, minutes=59), False),
        (ModuleFrequency.AUTO, timedelta(hours=6), True),
    ],
)
def test_is_module_due(
    frequency: ModuleFrequency,
    elapsed: timedelta | None,
    expected: bool,
) -> None:
    last = FIXED_NOW - elapsed if elapsed is not None else None
    assert is_module_due(frequency, FIXED_NOW, last) is expected


def test_weekly_module_waits_a_full_week(
    store: OrchestratorStore,
    account_id: int,
    dispatcher: ExecutionDispatcher,
    inline_executor: InlineExecutor,
) -> None:
    recent = _module(store, account_id, ModuleFrequency.WEEKLY, name="Recent")
    stale = _module(store, account_id, ModuleFrequency.WEEKLY, name="Stale")
    _past_run(store, account_id, recent.ref, timedelta(days=6))
    _past_run(store, account_id, stale.ref, timedelta(days=7, minutes=1))

    dispatched = _scheduler(store, dispatcher, inline_executor).check_modules()

    assert dispatched == [stale.module_id]
    assert len(store.ledger.list_executions(worker=recent.ref)) == 1
    latest = store.ledger.last_execution(stale.ref)
    assert latest is not None
    assert latest.trigger_type == TriggerType.SCHEDULED
    assert latest.status == ExecutionStatus.COMPLETED


def test_check_modules_skips_manual_and_busy_modules(
    store: OrchestratorStore,
    account_id: int,
    dispatcher: ExecutionDispatcher,
    inline_executor: InlineExecutor,
) -> None:
    _module(store, account_id, ModuleFrequency.MANUAL, name="On demand")
    busy = _module(store, account_id, ModuleFrequency.DAILY, name="Busy")
    idle = _module(store, account_id, ModuleFrequency.DAILY, name="Idle")
    assert dispatcher.locks.try_acquire(busy.ref)

    dispatched = _scheduler(store, dispatcher, inline_executor).check_modules()

    assert dispatched == [idle.module_id]
    assert inline_executor.submitted == 1
    assert store.ledger.list_executions(worker=busy.ref) == []


def test_check_modules_continues_after_one_module_fails(
    store: OrchestratorStore,
    account_id: int,
    dispatcher: ExecutionDispatcher,
    inline_executor: InlineExecutor,
    monkeypatch,
) -> None:
    broken = _module(store, account_id, ModuleFrequency.DAILY, name="Broken")
    healthy = _module(store, account_id, ModuleFrequency.DAILY, name="Healthy")
    original = store.ledger.last_execution

    def _last_execution(worker: WorkerRef):
        if worker == broken.ref:
            raise RuntimeError("corrupt row")
        return original(worker)

    monkeypatch.setattr(store.ledger, "last_execution", _last_execution)

    assert _scheduler(store, dispatcher, inline_executor).check_modules() == [healthy.module_id]


def test_failing_run_does_not_stop_the_scheduler(
    store: OrchestratorStore,
    account_id: int,
    dispatcher: ExecutionDispatcher,
    fake_runtime: FakeRuntime,
    inline_executor: InlineExecutor,
) -> None:
    first = _module(store, account_id, ModuleFrequency.DAILY, name="First")
    second = _module(store, account_id, ModuleFrequency.DAILY, name="Second")
    fake_runtime.queue(RuntimeError("runtime crashed"), ok_result())

    dispatched = _scheduler(store, dispatcher, inline_executor).check_modules()

    assert dispatched == [first.module_id, second.module_id]
    assert store.ledger.last_execution(first.ref).status == ExecutionStatus.FAILED
    assert store.ledger.last_execution(second.ref).status == ExecutionStatus.COMPLETED


def test_task_listener_dispatches_by_priority_then_age(
    store: OrchestratorStore,
    account_id: int,
    dispatcher: ExecutionDispatcher,
    fake_runtime: FakeRuntime,
    inline_executor: InlineExecutor,
) -> None:
    writer = store.workers.create_agent(
        account_id=account_id,
        payload=AgentCreate(name="Writer", role="You write."),
    )
    engineer = store.workers.create_agent(
        account_id=account_id,
        payload=AgentCreate(name="Engineer", role="You fix bugs."),
    )
    low = _approved_agent_task(store, account_id, writer.agent_id, "Polish docs", TaskPriority.LOW)
    critical = _approved_agent_task(
        store,
        account_id,
        engineer.agent_id,
        "Outage",
        TaskPriority.CRITICAL,
    )

    dispatched = _scheduler(store, dispatcher, inline_executor).check_task_assignments()

    assert dispatched == [critical.task_id, low.task_id]
    assert "Outage" in fake_runtime.requests[0].prompt
    assert store.tasks.get(critical.task_id).status == TaskStatus.COMPLETED
    assert store.tasks.get(low.task_id).status == TaskStatus.COMPLETED


def test_task_listener_gives_each_agent_one_task_at_a_time(
    store: OrchestratorStore,
    account_id: int,
    dispatcher: ExecutionDispatcher,
) -> None:
    agent = store.workers.create_agent(
        account_id=account_id,
        payload=AgentCreate(name="Engineer", role="You fix bugs."),
    )
    first = _approved_agent_task(store, account_id, agent.agent_id, "First", TaskPriority.HIGH)
    second = _approved_agent_task(store, account_id, agent.agent_id, "Second", TaskPriority.HIGH)
    executor = DeferredExecutor()
    scheduler = _scheduler(store, dispatcher, executor)

    assert scheduler.check_task_assignments() == [first.task_id]
    assert scheduler.check_task_assignments() == []
    assert store.tasks.get(first.task_id).status == TaskStatus.APPROVED

    executor.run_all()
    assert store.tasks.get(first.task_id).status == TaskStatus.COMPLETED

    assert scheduler.check_task_assignments() == [second.task_id]
    executor.run_all()
    assert store.tasks.get(second.task_id).status == TaskStatus.COMPLETED


def test_strategic_cycle_runs_due_accounts_and_records_decision(
    store: OrchestratorStore,
    account_id: int,
    dispatcher: ExecutionDispatcher,
    fake_runtime: FakeRuntime,
    inline_executor: InlineExecutor,
) -> None:
    store.accounts.put_document(account_id=account_id, name="goals", content="Grow revenue.")
    store.accounts.create_account("Not onboarded")
    strategist = _module(
        store,
        account_id,
        ModuleFrequency.MANUAL,
        name="Strategist",
        module_type=ModuleType.STRATEGIC,
    )
    cycle = StrategicCycle(store=store, dispatcher=dispatcher, clock=lambda: FIXED_NOW)
    fake_runtime.queue(ok_result(output="Focus on retention this week."))

    assert cycle.due_accounts() == [account_id]
    scheduler = _scheduler(store, dispatcher, inline_executor, strategic=cycle)
    dispatched = scheduler.check_strategic_cycles()

    assert dispatched == [account_id]
    assert store.accounts.last_strategic_decision_at(account_id) == FIXED_NOW
    assert store.ledger.last_execution(strategist.ref).trigger_type == TriggerType.AUTO
    assert cycle.due_accounts() == []

    later = StrategicCycle(
        store=store,
        dispatcher=dispatcher,
        clock=lambda: FIXED_NOW + timedelta(hours=24),
    )
    assert later.due_accounts() == [account_id]


def test_failed_strategic_run_records_no_decision(
    store: OrchestratorStore,
    account_id: int,
    dispatcher: ExecutionDispatcher,
    fake_runtime: FakeRuntime,
) -> None:
    store.accounts.put_document(account_id=account_id, name="goals", content="Grow revenue.")
    _module(
        store,
        account_id,
        ModuleFrequency.MANUAL,
        name="Strategist",
        module_type=ModuleType.STRATEGIC,
    )
    cycle = StrategicCycle(store=store, dispatcher=dispatcher, clock=lambda: FIXED_NOW)
    fake_runtime.queue(failed_result("rate limited"))

    result = cycle.run(account_id)

    assert result is not None
    assert not result.success
    assert store.accounts.last_strategic_decision_at(account_id) is None
    assert cycle.due_accounts() == []
    assert cycle.last_attempt_at(account_id) == FIXED_NOW


def test_failed_strategic_cycle_waits_for_next_interval(
    store: OrchestratorStore,
    account_id: int,
    dispatcher: ExecutionDispatcher,
    fake_runtime: FakeRuntime,
    inline_executor: InlineExecutor,
) -> None:
    store.accounts.put_document(account_id=account_id, name="goals", content="Grow revenue.")
    strategist = _module(
        store,
        account_id,
        ModuleFrequency.MANUAL,
        name="Strategist",
        module_type=ModuleType.STRATEGIC,
    )
    fake_runtime.queue(*(failed_result("rate limited") for _ in range(4)))

    dispatched: list[int] = []
    for hours in (0, 1, 2, 24):
        now = FIXED_NOW + timedelta(hours=hours)
        dispatcher.clock = lambda now=now: now
        cycle = StrategicCycle(store=store, dispatcher=dispatcher, clock=lambda now=now: now)
        scheduler = Scheduler(
            store=store,
            dispatcher=dispatcher,
            executor=inline_executor,
            strategic=cycle,
            clock=lambda now=now: now,
        )
        dispatched.extend(scheduler.check_strategic_cycles())

    history = store.ledger.list_executions(worker=strategist.ref)
    assert dispatched == [account_id, account_id]
    assert [item.started_at for item in history] == [
        FIXED_NOW + timedelta(hours=24),
        FIXED_NOW,
    ]
    assert {item.status for item in history} == {ExecutionStatus.FAILED}


def test_strategic_cycle_without_strategic_module_is_skipped(
    store: OrchestratorStore,
    account_id: int,
    dispatcher: ExecutionDispatcher,
) -> None:
    store.accounts.put_document(account_id=account_id, name="goals", content="Grow revenue.")
    cycle = StrategicCycle(store=store, dispatcher=dispatcher, clock=lambda: FIXED_NOW)

    assert cycle.run(account_id) is None
    assert store.ledger.list_executions(account_id=account_id) == []


def test_handle_start_recovers_orphans_and_runs_first_check(
    store: OrchestratorStore,
    account_id: int,
    dispatcher: ExecutionDispatcher,
    inline_executor: InlineExecutor,
) -> None:
    daily = _module(store, account_id, ModuleFrequency.DAILY, name="Daily")
    orphan = store.ledger.start_execution(
        account_id=account_id,
        worker=daily.ref,
        trigger_type=TriggerType.SCHEDULED,
        started_at=FIXED_NOW - timedelta(days=2),
    )
    handle = SchedulerHandle(
        scheduler=_scheduler(store, dispatcher, inline_executor),
        settings=SchedulerSettings(enable_task_listener=True, enable_strategic_cycle=False),
        owns_executor=False,
    )

    handle.start()
    try:
        assert handle.running
        with pytest.raises(RuntimeError, match="already started"):
            handle.start()
    finally:
        handle.stop(timeout=5)

    assert not handle.running
    recovered = store.ledger.get_execution(orphan.execution_id)
    assert recovered.status == ExecutionStatus.FAILED
    assert recovered.error_message == ORPHAN_REASON
    latest = store.ledger.last_execution(daily.ref)
    assert latest is not None
    assert latest.execution_id != orphan.execution_id
    assert latest.status == ExecutionStatus.COMPLETED


def test_recover_orphans_fails_tasks_left_in_progress(
    store: OrchestratorStore,
    account_id: int,
    dispatcher: ExecutionDispatcher,
    inline_executor: InlineExecutor,
) -> None:
    agent = store.workers.create_agent(
        account_id=account_id,
        payload=AgentCreate(name="Engineer", role="You fix bugs."),
    )
    crashed, manual = (
        _approved_agent_task(store, account_id, agent.agent_id, title, TaskPriority.HIGH)
        for title in ("Crashed mid-run", "Started by hand")
    )
    orphan = store.ledger.start_execution(
        account_id=account_id,
        worker=agent.ref,
        trigger_type=TriggerType.TASK_ASSIGNMENT,
        task_id=crashed.task_id,
    )
    store.tasks.transition(
        task_id=crashed.task_id,
        action=TaskAction.START,
        payload=TransitionPayload(actor="Engineer", execution_id=orphan.execution_id),
    )
    store.tasks.transition(
        task_id=manual.task_id,
        action=TaskAction.START,
        payload=TransitionPayload(actor="owner"),
    )

    recovered = _scheduler(store, dispatcher, inline_executor).recover_orphans()

    assert recovered == 1
    assert store.ledger.get_execution(orphan.execution_id).status == ExecutionStatus.FAILED
    failed = store.tasks.get(crashed.task_id)
    assert failed.status == TaskStatus.FAILED
    assert failed.completion_summary == f"Failed: {ORPHAN_REASON}"
    assert failed.last_status_change_by == "scheduler"
    assert failed.execution_id == orphan.execution_id
    assert store.tasks.get(manual.task_id).status == TaskStatus.IN_PROGRESS
    assert _scheduler(store, dispatcher, inline_executor).recover_orphans() == 0


def test_run_until_stopped_honours_max_seconds(
    store: OrchestratorStore,
    dispatcher: ExecutionDispatcher,
    inline_executor: InlineExecutor,
) -> None:
    handle = SchedulerHandle(
        scheduler=_scheduler(store, dispatcher, inline_executor),
        settings=SchedulerSettings(),
        owns_executor=False,
    )

    handle.run_until_stopped(max_seconds=0.0)

    assert not handle.running


def test_handle_build_wires_strategic_cycle_from_settings(
    store: OrchestratorStore,
    dispatcher: ExecutionDispatcher,
) -> None:
    with_cycle = SchedulerHandle.build(
        store=store,
        dispatcher=dispatcher,
        settings=SchedulerSettings(strategic_interval_hours=12),
    )
    without_cycle = SchedulerHandle.build(
        store=store,
        dispatcher=dispatcher,
        settings=SchedulerSettings(enable_strategic_cycle=False),
    )
    try:
        assert with_cycle.scheduler.strategic is not None
        assert with_cycle.scheduler.strategic.interval == timedelta(hours=12)
        assert without_cycle.scheduler.strategic is None
    finally:
        with_cycle.stop()
        without_cycle.stop()


def test_submit_after_shutdown_runs_inline(
    store: OrchestratorStore,
    account_id: int,
    dispatcher: ExecutionDispatcher,
) -> None:
    module = _module(store, account_id, ModuleFrequency.DAILY)
    executor = ThreadPoolExecutor(max_workers=1)
    executor.shutdown()

    dispatched = _scheduler(store, dispatcher, executor).check_modules()

    assert dispatched == [module.module_id]
    assert store.ledger.last_execution(module.ref).status == ExecutionStatus.COMPLETED
    assert not dispatcher.locks.is_held(module.ref)
