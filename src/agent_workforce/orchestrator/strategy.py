"""Strategic cycle: periodic run of an account's strategic module."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from agent_workforce.orchestrator.dispatcher import ExecutionDispatcher, PreparedExecution
from agent_workforce.orchestrator.models import ExecutionResult, TriggerType
from agent_workforce.orchestrator.repository import OrchestratorStore
from agent_workforce.storage.common import utc_now

logger = logging.getLogger(__name__)

_DECISION_SUMMARY_CHARS = 2_000


class StrategicCycle:
    """Decides which accounts are due and runs their strategic module."""

    def __init__(
        self,
        *,
        store: OrchestratorStore,
        dispatcher: ExecutionDispatcher,
        interval_hours: int = 24,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.interval = timedelta(hours=interval_hours)
        self.clock = clock

    def due_accounts(self) -> list[int]:
        """Onboarded accounts whose last strategic attempt is older than the interval.

        A failed cycle counts as an attempt, so it waits for the next interval.
        """

        now = self.clock()
        due: list[int] = []
        for account_id in self.store.accounts.list_onboarded_accounts():
            last = self.last_attempt_at(account_id)
            if last is None or now - last >= self.interval:
                due.append(account_id)
        return due

    def last_attempt_at(self, account_id: int) -> datetime | None:
        moments = [self.store.accounts.last_strategic_decision_at(account_id)]
        module = self.store.workers.find_strategic_module(account_id)
        if module is not None:
            execution = self.store.ledger.last_execution(module.ref, trigger_type=TriggerType.AUTO)
            if execution is not None:
                moments.append(execution.started_at)
        known = [moment for moment in moments if moment is not None]
        return max(known) if known else None

    def prepare(self, account_id: int) -> PreparedExecution | None:
        module = self.store.workers.find_strategic_module(account_id)
        if module is None:
            logger.info("Account %s has no active strategic module; skipping cycle", account_id)
            return None
        return self.dispatcher.prepare(module.ref, TriggerType.AUTO)

    def execute(self, account_id: int, prepared: PreparedExecution) -> ExecutionResult:
        """Run the prepared strategic execution and record the decision on success."""

        result = self.dispatcher.execute(prepared)
        if not result.success:
            logger.warning(
                "Strategic cycle for account %s failed in execution %s: %s",
                account_id,
                result.execution_id,
                result.error_message,
            )
            return result
        summary = (result.output or "").strip()[:_DECISION_SUMMARY_CHARS] or None
        self.store.accounts.record_strategic_decision(
            account_id=account_id,
            execution_id=result.execution_id,
            summary=summary,
            created_at=self.clock(),
        )
        logger.info(
            "Strategic decision recorded for account %s (execution %s)",
            account_id,
            result.execution_id,
        )
        return result

    def run(self, account_id: int) -> ExecutionResult | None:
        """Prepare and execute in the calling thread."""

        prepared = self.prepare(account_id)
        if prepared is None:
            return None
        return self.execute(account_id, prepared)
