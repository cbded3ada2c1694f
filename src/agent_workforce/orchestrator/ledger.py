"""Execution ledger: one record per worker run plus its progress log."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import case, func
from sqlalchemy import update as sa_update
from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from agent_workforce.orchestrator.errors import PersistenceFailure
from agent_workforce.orchestrator.models import (
    CostSummaryRow,
    ExecutionFinish,
    ExecutionLogView,
    ExecutionStatus,
    ExecutionView,
    LogLevel,
    TriggerType,
    WorkerKind,
    WorkerRef,
)
from agent_workforce.storage.common import (
    dump_json,
    load_json_object,
    to_db_datetime,
    to_utc_aware,
    to_utc_aware_or_none,
    utc_now,
)
from agent_workforce.storage.sqlmodel_models import Execution, ExecutionLog

logger = logging.getLogger(__name__)


class ExecutionLedger:
    """Append-mostly store of execution records; nothing here deletes rows."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def start_execution(  # noqa: PLR0913
        self,
        *,
        account_id: int,
        worker: WorkerRef,
        trigger_type: TriggerType,
        task_id: int | None = None,
        started_at: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ExecutionView:
        """Create a `running` record."""

        with Session(self.engine) as session:
            row = Execution(
                account_id=account_id,
                worker_kind=worker.kind.value,
                worker_id=worker.worker_id,
                task_id=task_id,
                trigger_type=TriggerType(trigger_type).value,
                status=ExecutionStatus.RUNNING.value,
                started_at=to_db_datetime(started_at or utc_now()),
                metadata_json=dump_json(metadata),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_execution_view(row)

    def finalize_execution(self, *, execution_id: int, finish: ExecutionFinish) -> bool:
        """Move a running record to its terminal status; False if it was already final."""

        if finish.status == ExecutionStatus.RUNNING:
            raise ValueError("Cannot finalize an execution as running.")
        with Session(self.engine) as session:
            existing = session.get(Execution, execution_id)
            if existing is None:
                raise PersistenceFailure(f"Execution not found: {execution_id}")
            metadata = load_json_object(existing.metadata_json)
            metadata.update(finish.metadata)
            result = session.exec(
                sa_update(Execution)
                .where(
                    col(Execution.id) == execution_id,
                    col(Execution.status) == ExecutionStatus.RUNNING.value,
                )
                .values(
                    status=finish.status.value,
                    completed_at=to_db_datetime(finish.completed_at),
                    duration_ms=max(0, finish.duration_ms),
                    cost_usd=finish.cost_usd,
                    error_message=finish.error_message,
                    metadata_json=dump_json(metadata),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def get_execution(self, execution_id: int) -> ExecutionView:
        with Session(self.engine) as session:
            row = session.get(Execution, execution_id)
            if row is None:
                raise PersistenceFailure(f"Execution not found: {execution_id}")
            return _to_execution_view(row)

    def append_log(  # noqa: PLR0913
        self,
        *,
        execution_id: int,
        message: str,
        level: LogLevel = LogLevel.INFO,
        stage: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        with Session(self.engine) as session:
            session.add(
                ExecutionLog(
                    execution_id=execution_id,
                    level=LogLevel(level).value,
                    stage=stage,
                    message=message,
                    metadata_json=dump_json(metadata),
                    created_at=to_db_datetime(utc_now()),
                ),
            )
            session.commit()

    def list_logs(self, execution_id: int, *, limit: int | None = None) -> list[ExecutionLogView]:
        statement = (
            select(ExecutionLog)
            .where(ExecutionLog.execution_id == execution_id)
            .order_by(col(ExecutionLog.id).asc())
        )
        if limit is not None:
            statement = statement.limit(max(1, limit))
        with Session(self.engine) as session:
            return [
                ExecutionLogView(
                    log_id=row.id or 0,
                    execution_id=row.execution_id,
                    level=LogLevel(row.level),
                    stage=row.stage,
                    message=row.message,
                    created_at=to_utc_aware(row.created_at),
                    metadata=load_json_object(row.metadata_json),
                )
                for row in session.exec(statement).all()
            ]

    def last_execution(
        self,
        worker: WorkerRef,
        *,
        trigger_type: TriggerType | None = None,
    ) -> ExecutionView | None:
        """Most recently started record for a worker, any status."""

        statement = select(Execution).where(
            Execution.worker_kind == worker.kind.value,
            Execution.worker_id == worker.worker_id,
        )
        if trigger_type is not None:
            statement = statement.where(Execution.trigger_type == trigger_type.value)
        with Session(self.engine) as session:
            row = session.exec(
                statement
                .order_by(col(Execution.started_at).desc(), col(Execution.id).desc())
                .limit(1),
            ).one_or_none()
            return _to_execution_view(row) if row is not None else None

    def list_executions(
        self,
        *,
        worker: WorkerRef | None = None,
        account_id: int | None = None,
        limit: int = 20,
    ) -> list[ExecutionView]:
        statement = select(Execution)
        if worker is not None:
            statement = statement.where(
                Execution.worker_kind == worker.kind.value,
                Execution.worker_id == worker.worker_id,
            )
        if account_id is not None:
            statement = statement.where(Execution.account_id == account_id)
        statement = statement.order_by(
            col(Execution.started_at).desc(),
            col(Execution.id).desc(),
        ).limit(max(1, limit))
        with Session(self.engine) as session:
            return [_to_execution_view(row) for row in session.exec(statement).all()]

    def cost_summary(self, *, account_id: int, since: datetime) -> list[CostSummaryRow]:
        """Per-worker cost and duration totals over a trailing window."""

        failed = _failed_count()
        with Session(self.engine) as session:
            rows = session.exec(
                select(
                    Execution.worker_kind,
                    Execution.worker_id,
                    func.count(col(Execution.id)),
                    failed,
                    func.coalesce(func.sum(col(Execution.cost_usd)), 0.0),
                    func.coalesce(func.sum(col(Execution.duration_ms)), 0),
                )
                .where(
                    Execution.account_id == account_id,
                    col(Execution.started_at) >= to_db_datetime(since),
                )
                .group_by(col(Execution.worker_kind), col(Execution.worker_id))
                .order_by(func.coalesce(func.sum(col(Execution.cost_usd)), 0.0).desc()),
            ).all()
            return [
                CostSummaryRow(
                    worker_kind=WorkerKind(kind),
                    worker_id=int(worker_id),
                    executions=int(executions or 0),
                    failed=int(failed_count or 0),
                    total_cost_usd=float(total_cost or 0.0),
                    total_duration_ms=int(total_duration or 0),
                )
                for kind, worker_id, executions, failed_count, total_cost, total_duration in rows
            ]

    def worker_cost_summary(self, *, worker: WorkerRef, since: datetime) -> CostSummaryRow:
        with Session(self.engine) as session:
            executions, failed_count, total_cost, total_duration = session.exec(
                select(
                    func.count(col(Execution.id)),
                    _failed_count(),
                    func.coalesce(func.sum(col(Execution.cost_usd)), 0.0),
                    func.coalesce(func.sum(col(Execution.duration_ms)), 0),
                ).where(
                    Execution.worker_kind == worker.kind.value,
                    Execution.worker_id == worker.worker_id,
                    col(Execution.started_at) >= to_db_datetime(since),
                ),
            ).one()
        return CostSummaryRow(
            worker_kind=worker.kind,
            worker_id=worker.worker_id,
            executions=int(executions or 0),
            failed=int(failed_count or 0),
            total_cost_usd=float(total_cost or 0.0),
            total_duration_ms=int(total_duration or 0),
        )

    def fail_orphaned_running(self, *, reason: str, now: datetime | None = None) -> list[int]:
        """Fail records left `running` by a process that died mid-dispatch.

        Returns the ids of the records that were failed.
        """

        finished_at = to_db_datetime(now or utc_now())
        with Session(self.engine) as session:
            execution_ids = list(
                session.exec(
                    select(Execution.id).where(
                        col(Execution.status) == ExecutionStatus.RUNNING.value,
                    ),
                ).all(),
            )
            if not execution_ids:
                return []
            session.exec(
                sa_update(Execution)
                .where(
                    col(Execution.id).in_(execution_ids),
                    col(Execution.status) == ExecutionStatus.RUNNING.value,
                )
                .values(
                    status=ExecutionStatus.FAILED.value,
                    completed_at=finished_at,
                    error_message=reason,
                ),
            )
            session.commit()
        logger.warning(
            "Failed %s orphaned running execution(s): %s",
            len(execution_ids),
            reason,
        )
        return [int(execution_id) for execution_id in execution_ids]


def _failed_count():
    return func.sum(case((col(Execution.status) == ExecutionStatus.FAILED.value, 1), else_=0))


def _to_execution_view(row: Execution) -> ExecutionView:
    assert row.id is not None
    return ExecutionView(
        execution_id=row.id,
        account_id=row.account_id,
        worker_kind=WorkerKind(row.worker_kind),
        worker_id=row.worker_id,
        task_id=row.task_id,
        trigger_type=TriggerType(row.trigger_type),
        status=ExecutionStatus(row.status),
        started_at=to_utc_aware(row.started_at),
        completed_at=to_utc_aware_or_none(row.completed_at),
        duration_ms=row.duration_ms,
        cost_usd=row.cost_usd,
        error_message=row.error_message,
        metadata=load_json_object(row.metadata_json),
    )
