"""SQLModel ORM tables for orchestration storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Float, ForeignKey, Index, Integer, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


def _account_fk() -> Column:
    return Column(
        Integer,
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )


class Account(SQLModel, table=True):
    __tablename__ = "accounts"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AccountDocument(SQLModel, table=True):
    __tablename__ = "account_documents"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("account_id", "name", name="uq_account_documents_account_name"),
    )

    id: int | None = Field(default=None, primary_key=True)
    account_id: int = Field(sa_column=_account_fk())
    name: str
    content: str = Field(sa_column=Column(Text, nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ServiceConnection(SQLModel, table=True):
    __tablename__ = "service_connections"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("account_id", "service", name="uq_service_connections_account_service"),
    )

    id: int | None = Field(default=None, primary_key=True)
    account_id: int = Field(sa_column=_account_fk())
    service: str = Field(index=True)
    credentials_json: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Module(SQLModel, table=True):
    __tablename__ = "modules"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_modules_status_updated", "status", "updated_at"),)

    id: int | None = Field(default=None, primary_key=True)
    account_id: int = Field(sa_column=_account_fk())
    name: str = Field(index=True)
    description: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))
    goal: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))
    module_type: str = Field(default="standard", index=True)
    frequency: str = Field(default="manual", index=True)
    status: str = Field(default="active", index=True)
    tools_json: str | None = Field(default=None, sa_column=Column(Text))
    inputs_json: str | None = Field(default=None, sa_column=Column(Text))
    max_turns: int = Field(default=20)
    session_id: str | None = None
    workspace_path: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Agent(SQLModel, table=True):
    __tablename__ = "agents"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    account_id: int = Field(sa_column=_account_fk())
    name: str = Field(index=True)
    description: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))
    role: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))
    status: str = Field(default="active", index=True)
    tools_json: str | None = Field(default=None, sa_column=Column(Text))
    max_turns: int = Field(default=100)
    tasks_completed: int = Field(default=0)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Task(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_tasks_account_status", "account_id", "status", "created_at"),
        Index("idx_tasks_agent_status", "assigned_to_agent_id", "status"),
    )

    id: int | None = Field(default=None, primary_key=True)
    account_id: int = Field(sa_column=_account_fk())
    title: str
    description: str | None = Field(default=None, sa_column=Column(Text))
    priority: str = Field(default="medium", index=True)
    status: str = Field(index=True)
    suggestion_reasoning: str | None = Field(default=None, sa_column=Column(Text))
    approval_reasoning: str | None = Field(default=None, sa_column=Column(Text))
    rejection_reasoning: str | None = Field(default=None, sa_column=Column(Text))
    blocked_reason: str | None = Field(default=None, sa_column=Column(Text))
    completion_summary: str | None = Field(default=None, sa_column=Column(Text))
    assigned_to_module_id: int | None = Field(
        default=None,
        sa_column=Column(Integer, ForeignKey("modules.id", ondelete="SET NULL"), nullable=True),
    )
    assigned_to_agent_id: int | None = Field(
        default=None,
        sa_column=Column(Integer, ForeignKey("agents.id", ondelete="SET NULL"), nullable=True),
    )
    proposed_by: str | None = None
    last_status_change_by: str | None = None
    execution_id: int | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    approved_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    blocked_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TaskEvent(SQLModel, table=True):
    __tablename__ = "task_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_task_events_task_time", "task_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("tasks.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    account_id: int = Field(sa_column=_account_fk())
    action: str = Field(index=True)
    status_from: str | None = Field(default=None, index=True)
    status_to: str = Field(index=True)
    actor: str | None = None
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Execution(SQLModel, table=True):
    __tablename__ = "executions"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_executions_worker_started", "worker_kind", "worker_id", "started_at"),
        Index("idx_executions_account_started", "account_id", "started_at"),
    )

    id: int | None = Field(default=None, primary_key=True)
    account_id: int = Field(sa_column=_account_fk())
    worker_kind: str = Field(index=True)
    worker_id: int = Field(index=True)
    task_id: int | None = Field(
        default=None,
        sa_column=Column(Integer, ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True),
    )
    trigger_type: str = Field(index=True)
    status: str = Field(index=True)
    started_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    duration_ms: int | None = None
    cost_usd: float | None = Field(default=None, sa_column=Column(Float))
    error_message: str | None = Field(default=None, sa_column=Column(Text))
    metadata_json: str | None = Field(default=None, sa_column=Column(Text))


class ExecutionLog(SQLModel, table=True):
    __tablename__ = "execution_logs"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_execution_logs_execution_id", "execution_id", "id"),)

    id: int | None = Field(default=None, primary_key=True)
    execution_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("executions.id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    level: str = Field(default="info")
    stage: str | None = Field(default=None, index=True)
    message: str = Field(sa_column=Column(Text, nullable=False))
    metadata_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ActivitySummary(SQLModel, table=True):
    __tablename__ = "activity_summaries"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("execution_id", name="uq_activity_summaries_execution"),
    )

    id: int | None = Field(default=None, primary_key=True)
    account_id: int = Field(sa_column=_account_fk())
    execution_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("executions.id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    title: str
    description: str = Field(sa_column=Column(Text, nullable=False))
    source: str = Field(default="agent")
    cost_usd: float | None = Field(default=None, sa_column=Column(Float))
    duration_ms: int | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class StrategicDecision(SQLModel, table=True):
    __tablename__ = "strategic_decisions"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_strategic_decisions_account_time", "account_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    account_id: int = Field(sa_column=_account_fk())
    execution_id: int | None = Field(
        default=None,
        sa_column=Column(Integer, ForeignKey("executions.id", ondelete="SET NULL"), nullable=True),
    )
    summary: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
