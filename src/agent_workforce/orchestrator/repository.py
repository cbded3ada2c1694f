"""Task persistence and the store facade shared by all orchestrator components."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from sqlalchemy import case, func
from sqlalchemy import update as sa_update
from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from agent_workforce.orchestrator.accounts import AccountContextStore
from agent_workforce.orchestrator.activity import SqlActivityFeed
from agent_workforce.orchestrator.errors import InvalidTransition, TaskNotFound
from agent_workforce.orchestrator.ledger import ExecutionLedger
from agent_workforce.orchestrator.models import (
    PRIORITY_ORDER,
    TaskAction,
    TaskEventView,
    TaskFilter,
    TaskPriority,
    TaskProposal,
    TaskStatus,
    TaskView,
    WorkerKind,
    WorkerStatus,
)
from agent_workforce.orchestrator.registry import WorkerRegistry
from agent_workforce.orchestrator.state_machine import (
    TransitionPayload,
    TransitionPlan,
    plan_transition,
)
from agent_workforce.storage.alembic_runner import upgrade_head
from agent_workforce.storage.common import (
    build_sqlite_engine,
    dump_json,
    load_json_object,
    to_db_datetime,
    to_utc_aware,
    to_utc_aware_or_none,
    utc_now,
)
from agent_workforce.storage.sqlmodel_models import Agent, Task, TaskEvent

logger = logging.getLogger(__name__)


class OrchestratorStore:
    """Owns the SQLite engine and exposes one repository per concern."""

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)
        self.tasks = TaskStore(self.engine)
        self.workers = WorkerRegistry(self.engine)
        self.ledger = ExecutionLedger(self.engine)
        self.accounts = AccountContextStore(self.engine)
        self.activity = SqlActivityFeed(self.engine)

    def init_schema(self) -> None:
        """Run schema migrations up to head."""

        upgrade_head(self.db_path)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()


class TaskStore:
    """Tasks and their status-transition history."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def propose(self, *, account_id: int, proposal: TaskProposal) -> TaskView:
        """Create a task in `suggested` status."""

        title = proposal.title.strip()
        if not title:
            raise ValueError("title is required.")
        now = utc_now()
        with Session(self.engine) as session:
            row = Task(
                account_id=account_id,
                title=title,
                description=proposal.description,
                priority=TaskPriority(proposal.priority).value,
                status=TaskStatus.SUGGESTED.value,
                suggestion_reasoning=proposal.suggestion_reasoning,
                proposed_by=proposal.proposed_by,
                last_status_change_by=proposal.proposed_by,
                created_at=to_db_datetime(now),
                updated_at=to_db_datetime(now),
            )
            session.add(row)
            session.flush()
            assert row.id is not None
            self._add_event(
                session=session,
                task_id=row.id,
                account_id=account_id,
                action="propose",
                status_from=None,
                status_to=TaskStatus.SUGGESTED,
                actor=proposal.proposed_by,
                details={"priority": row.priority},
            )
            session.commit()
            session.refresh(row)
            return _to_task_view(row)

    def get(self, task_id: int) -> TaskView:
        with Session(self.engine) as session:
            row = session.get(Task, task_id)
            if row is None:
                raise TaskNotFound(task_id)
            return _to_task_view(row)

    def list_tasks(
        self,
        *,
        account_id: int,
        task_filter: TaskFilter | None = None,
    ) -> list[TaskView]:
        task_filter = task_filter or TaskFilter()
        statement = select(Task).where(Task.account_id == account_id)
        if task_filter.status is not None:
            statement = statement.where(Task.status == task_filter.status.value)
        if task_filter.assignee is not None:
            if task_filter.assignee.kind == WorkerKind.AGENT:
                statement = statement.where(
                    Task.assigned_to_agent_id == task_filter.assignee.worker_id,
                )
            else:
                statement = statement.where(
                    Task.assigned_to_module_id == task_filter.assignee.worker_id,
                )
        statement = statement.order_by(col(Task.created_at).desc(), col(Task.id).desc()).limit(
            max(1, task_filter.limit),
        )
        with Session(self.engine) as session:
            return [_to_task_view(row) for row in session.exec(statement).all()]

    def list_events(self, task_id: int) -> list[TaskEventView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(TaskEvent)
                .where(TaskEvent.task_id == task_id)
                .order_by(col(TaskEvent.id).asc()),
            ).all()
            return [
                TaskEventView(
                    event_id=row.id or 0,
                    task_id=row.task_id,
                    action=row.action,
                    status_from=TaskStatus(row.status_from) if row.status_from else None,
                    status_to=TaskStatus(row.status_to),
                    actor=row.actor,
                    created_at=to_utc_aware(row.created_at),
                    details=load_json_object(row.details_json),
                )
                for row in rows
            ]

    def list_dispatchable_agent_tasks(self) -> list[TaskView]:
        """Approved tasks assigned to active agents, highest priority then oldest first."""

        priority_rank = case(PRIORITY_ORDER, value=col(Task.priority), else_=len(PRIORITY_ORDER))
        with Session(self.engine) as session:
            rows = session.exec(
                select(Task)
                .join(Agent, col(Agent.id) == col(Task.assigned_to_agent_id))
                .where(
                    Task.status == TaskStatus.APPROVED.value,
                    Agent.status == WorkerStatus.ACTIVE.value,
                )
                .order_by(priority_rank, col(Task.created_at).asc(), col(Task.id).asc()),
            ).all()
            return [_to_task_view(row) for row in rows]

    def fail_in_progress_for_executions(
        self,
        *,
        execution_ids: list[int],
        reason: str,
        actor: str,
        now: datetime | None = None,
    ) -> list[int]:
        """Fail tasks still `in_progress` under the given executions; returns their ids."""

        if not execution_ids:
            return []
        with Session(self.engine) as session:
            rows = session.exec(
                select(Task.id, Task.execution_id)
                .where(
                    Task.status == TaskStatus.IN_PROGRESS.value,
                    col(Task.execution_id).in_(execution_ids),
                )
                .order_by(col(Task.id).asc()),
            ).all()
        failed: list[int] = []
        for task_id, execution_id in rows:
            try:
                self.transition(
                    task_id=task_id,
                    action=TaskAction.FAIL,
                    payload=TransitionPayload(
                        actor=actor,
                        error_message=reason,
                        execution_id=execution_id,
                    ),
                    now=now,
                )
            except InvalidTransition as error:
                logger.info("Task %s changed concurrently: %s", task_id, error)
                continue
            failed.append(int(task_id))
        return failed

    def transition(
        self,
        *,
        task_id: int,
        action: TaskAction,
        payload: TransitionPayload,
        now: datetime | None = None,
    ) -> TaskView:
        """Apply one state-machine transition atomically."""

        with Session(self.engine) as session:
            row = session.get(Task, task_id)
            if row is None:
                raise TaskNotFound(task_id)
            plan = plan_transition(_to_task_view(row), action, payload, now or utc_now())
            result = session.exec(
                sa_update(Task)
                .where(
                    col(Task.id) == task_id,
                    col(Task.status) == plan.status_from.value,
                )
                .values(**_plan_values(plan)),
            )
            if result.rowcount != 1:
                session.rollback()
                current = session.exec(select(Task.status).where(Task.id == task_id)).one()
                logger.info(
                    "Task %s changed concurrently; %s rejected from %s",
                    task_id,
                    action.value,
                    current,
                )
                raise InvalidTransition(current=current, action=action.value, task_id=task_id)

            self._add_event(
                session=session,
                task_id=task_id,
                account_id=row.account_id,
                action=plan.action.value,
                status_from=plan.status_from,
                status_to=plan.status_to,
                actor=plan.actor,
                details=plan.details,
            )
            session.commit()
            refreshed = session.get(Task, task_id, populate_existing=True)
            assert refreshed is not None
            return _to_task_view(refreshed)

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        task_id: int,
        account_id: int,
        action: str,
        status_from: TaskStatus | None,
        status_to: TaskStatus,
        actor: str | None,
        details: dict[str, object],
    ) -> None:
        session.add(
            TaskEvent(
                task_id=task_id,
                account_id=account_id,
                action=action,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value,
                actor=actor,
                details_json=dump_json(details),
                created_at=to_db_datetime(utc_now()),
            ),
        )


def _plan_values(plan: TransitionPlan) -> dict[str, object]:
    stamped_at = to_db_datetime(plan.stamped_at)
    values: dict[str, object] = dict(plan.values)
    values["status"] = plan.status_to.value
    values["updated_at"] = stamped_at
    if plan.actor is not None:
        values["last_status_change_by"] = plan.actor
    if plan.stamp_column is not None:
        column = Task.__table__.c[plan.stamp_column]  # type: ignore[attr-defined]
        values[plan.stamp_column] = func.coalesce(column, stamped_at)
    return values


def _to_task_view(row: Task) -> TaskView:
    assert row.id is not None
    return TaskView(
        task_id=row.id,
        account_id=row.account_id,
        title=row.title,
        description=row.description,
        priority=TaskPriority(row.priority),
        status=TaskStatus(row.status),
        suggestion_reasoning=row.suggestion_reasoning,
        approval_reasoning=row.approval_reasoning,
        rejection_reasoning=row.rejection_reasoning,
        blocked_reason=row.blocked_reason,
        completion_summary=row.completion_summary,
        assigned_to_module_id=row.assigned_to_module_id,
        assigned_to_agent_id=row.assigned_to_agent_id,
        proposed_by=row.proposed_by,
        last_status_change_by=row.last_status_change_by,
        execution_id=row.execution_id,
        created_at=to_utc_aware(row.created_at),
        approved_at=to_utc_aware_or_none(row.approved_at),
        started_at=to_utc_aware_or_none(row.started_at),
        blocked_at=to_utc_aware_or_none(row.blocked_at),
        completed_at=to_utc_aware_or_none(row.completed_at),
        updated_at=to_utc_aware(row.updated_at),
    )
