from pathlib import Path

import allure
from sqlalchemy import inspect, text

from agent_workforce.orchestrator.repository import OrchestratorStore

pytestmark = [
    allure.epic("Storage"),
    allure.feature("Schema Migrations"),
]


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    store = OrchestratorStore(tmp_path / "migrations.db")
    store.init_schema()

    with store.engine.connect() as connection:
        version = connection.execute(
            text("SELECT version_num FROM alembic_version LIMIT 1"),
        ).scalar_one()
    assert version == "20261003_0002"

    tables = set(inspect(store.engine).get_table_names())
    assert {
        "accounts",
        "modules",
        "agents",
        "tasks",
        "task_events",
        "executions",
        "execution_logs",
        "account_documents",
        "service_connections",
        "activity_summaries",
        "strategic_decisions",
    } <= tables
    store.close()


def test_init_schema_is_idempotent(tmp_path: Path) -> None:
    db_path = tmp_path / "twice.db"
    first = OrchestratorStore(db_path)
    first.init_schema()
    account_id = first.accounts.create_account("Acme")
    first.close()

    second = OrchestratorStore(db_path)
    second.init_schema()

    assert second.accounts.list_account_ids() == [account_id]
    second.close()
