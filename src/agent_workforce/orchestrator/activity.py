"""Activity feed and the fallback summary written when an agent posts none."""

from __future__ import annotations

import logging
from typing import Protocol

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from agent_workforce.orchestrator.models import (
    ActivitySummaryView,
    ActivitySummaryWrite,
    ExecutionLogView,
)
from agent_workforce.storage.common import to_db_datetime, to_utc_aware, utc_now
from agent_workforce.storage.sqlmodel_models import ActivitySummary

logger = logging.getLogger(__name__)

IMPORTANT_STAGES = frozenset({"thinking", "tool_use", "completed", "initialized"})
IMPORTANT_KEYWORDS = (
    "created",
    "modified",
    "updated",
    "fixed",
    "error",
    "failed",
    "completed",
    "found",
    "identified",
)
MAX_CONDENSED_LOGS = 30
_SLICE = 10
_DESCRIPTION_MAX_CHARS = 600


class ActivityFeed(Protocol):
    """Where execution summaries are published."""

    def has_summary(self, execution_id: int) -> bool:
        """Whether a summary for the execution exists already."""

    def post_summary(self, account_id: int, summary: ActivitySummaryWrite) -> bool:
        """Store a summary; False when the execution already has one."""


class SqlActivityFeed:
    """Activity feed persisted in `activity_summaries`, one row per execution."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def has_summary(self, execution_id: int) -> bool:
        with Session(self.engine) as session:
            row = session.exec(
                select(ActivitySummary.id).where(ActivitySummary.execution_id == execution_id),
            ).first()
            return row is not None

    def post_summary(self, account_id: int, summary: ActivitySummaryWrite) -> bool:
        with Session(self.engine) as session:
            session.add(
                ActivitySummary(
                    account_id=account_id,
                    execution_id=summary.execution_id,
                    title=summary.title,
                    description=summary.description,
                    source=summary.source,
                    cost_usd=summary.cost_usd,
                    duration_ms=summary.duration_ms,
                    created_at=to_db_datetime(utc_now()),
                ),
            )
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                logger.info("Execution %s already has an activity summary", summary.execution_id)
                return False
            return True

    def list_summaries(self, *, account_id: int, limit: int = 20) -> list[ActivitySummaryView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(ActivitySummary)
                .where(ActivitySummary.account_id == account_id)
                .order_by(col(ActivitySummary.id).desc())
                .limit(max(1, limit)),
            ).all()
            return [
                ActivitySummaryView(
                    summary_id=row.id or 0,
                    account_id=row.account_id,
                    execution_id=row.execution_id,
                    title=row.title,
                    description=row.description,
                    source=row.source,
                    cost_usd=row.cost_usd,
                    duration_ms=row.duration_ms,
                    created_at=to_utc_aware(row.created_at),
                )
                for row in rows
            ]


def condense_logs(logs: list[ExecutionLogView]) -> list[ExecutionLogView]:
    """Keep informative entries, capped at first/middle/last ten."""

    filtered = [log for log in logs if _is_important(log)]
    if len(filtered) <= MAX_CONDENSED_LOGS:
        return filtered
    middle = len(filtered) // 2
    return (
        filtered[:_SLICE]
        + filtered[middle - _SLICE // 2 : middle + _SLICE // 2]
        + filtered[-_SLICE:]
    )


def build_fallback_summary(  # noqa: PLR0913
    *,
    execution_id: int,
    worker_name: str,
    worker_description: str,
    logs: list[ExecutionLogView],
    output: str | None,
    cost_usd: float | None,
    duration_ms: int | None,
) -> ActivitySummaryWrite:
    """Deterministic summary from the execution's own log."""

    condensed = condense_logs(logs)
    description = (output or "").strip()
    if not description:
        findings = [
            log.message.strip()
            for log in condensed
            if log.stage not in {"initialized", "tool_use"} and log.message.strip()
        ]
        description = " ".join(findings[-3:])
    if not description:
        description = worker_description.strip() or f"Executed {worker_name}."
    if len(description) > _DESCRIPTION_MAX_CHARS:
        description = description[: _DESCRIPTION_MAX_CHARS - 3].rstrip() + "..."
    return ActivitySummaryWrite(
        execution_id=execution_id,
        title=worker_name,
        description=description,
        source="fallback",
        cost_usd=cost_usd,
        duration_ms=duration_ms,
    )


def _is_important(log: ExecutionLogView) -> bool:
    if log.stage in IMPORTANT_STAGES:
        return True
    message = log.message.lower()
    return any(keyword in message for keyword in IMPORTANT_KEYWORDS)
