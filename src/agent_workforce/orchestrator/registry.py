"""Worker registry: modules and agents."""

from __future__ import annotations

import logging

from sqlalchemy import update as sa_update
from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from agent_workforce.orchestrator.adapters import ToolAdapterRegistry, default_adapter_registry
from agent_workforce.orchestrator.errors import WorkerNotFound
from agent_workforce.orchestrator.models import (
    AgentCreate,
    AgentView,
    ModuleCreate,
    ModuleFrequency,
    ModuleType,
    ModuleView,
    WorkerKind,
    WorkerRef,
    WorkerStatus,
    WorkerUpdate,
)
from agent_workforce.storage.common import (
    dump_json,
    load_json_list,
    load_json_object,
    to_db_datetime,
    to_utc_aware,
    utc_now,
)
from agent_workforce.storage.sqlmodel_models import Agent, Module

logger = logging.getLogger(__name__)


class WorkerRegistry:
    """CRUD over modules and agents plus the set-once session columns."""

    def __init__(self, engine: Engine, *, adapters: ToolAdapterRegistry | None = None) -> None:
        self.engine = engine
        self.adapters = adapters or default_adapter_registry()

    def create_module(self, *, account_id: int, payload: ModuleCreate) -> ModuleView:
        name = _require_name(payload.name)
        tools = self.adapters.validate(payload.tools)
        _validate_max_turns(payload.max_turns)
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = Module(
                account_id=account_id,
                name=name,
                description=payload.description,
                goal=payload.goal,
                module_type=ModuleType(payload.module_type).value,
                frequency=ModuleFrequency(payload.frequency).value,
                status=WorkerStatus.ACTIVE.value,
                tools_json=dump_json([kind.value for kind in tools]),
                inputs_json=dump_json(payload.inputs),
                max_turns=payload.max_turns,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            logger.info("Registered module %s (%s) for account %s", row.id, name, account_id)
            return _to_module_view(row)

    def create_agent(self, *, account_id: int, payload: AgentCreate) -> AgentView:
        name = _require_name(payload.name)
        tools = self.adapters.validate(payload.tools)
        _validate_max_turns(payload.max_turns)
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = Agent(
                account_id=account_id,
                name=name,
                description=payload.description,
                role=payload.role,
                status=WorkerStatus.ACTIVE.value,
                tools_json=dump_json([kind.value for kind in tools]),
                max_turns=payload.max_turns,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            logger.info("Registered agent %s (%s) for account %s", row.id, name, account_id)
            return _to_agent_view(row)

    def update_worker(self, worker: WorkerRef, payload: WorkerUpdate) -> ModuleView | AgentView:
        """Apply a partial update; tool names are validated before anything is written."""

        tools = self.adapters.validate(payload.tools) if payload.tools is not None else None
        if payload.max_turns is not None:
            _validate_max_turns(payload.max_turns)

        with Session(self.engine) as session:
            row: Module | Agent | None
            if worker.kind == WorkerKind.MODULE:
                row = session.get(Module, worker.worker_id)
            else:
                row = session.get(Agent, worker.worker_id)
            if row is None:
                raise WorkerNotFound(worker)

            if payload.name is not None:
                row.name = _require_name(payload.name)
            if payload.description is not None:
                row.description = payload.description
            if payload.instructions is not None:
                if isinstance(row, Module):
                    row.goal = payload.instructions
                else:
                    row.role = payload.instructions
            if payload.status is not None:
                row.status = WorkerStatus(payload.status).value
            if tools is not None:
                row.tools_json = dump_json([kind.value for kind in tools])
            if payload.max_turns is not None:
                row.max_turns = payload.max_turns
            if isinstance(row, Module):
                if payload.frequency is not None:
                    row.frequency = ModuleFrequency(payload.frequency).value
                if payload.inputs is not None:
                    row.inputs_json = dump_json(payload.inputs)
            elif payload.frequency is not None or payload.inputs is not None:
                raise ValueError("frequency and inputs apply to modules only.")

            row.updated_at = to_db_datetime(utc_now())
            session.add(row)
            session.commit()
            session.refresh(row)
            if isinstance(row, Module):
                return _to_module_view(row)
            return _to_agent_view(row)

    def get_module(self, module_id: int) -> ModuleView:
        with Session(self.engine) as session:
            row = session.get(Module, module_id)
            if row is None:
                raise WorkerNotFound(WorkerRef.module(module_id))
            return _to_module_view(row)

    def get_agent(self, agent_id: int) -> AgentView:
        with Session(self.engine) as session:
            row = session.get(Agent, agent_id)
            if row is None:
                raise WorkerNotFound(WorkerRef.agent(agent_id))
            return _to_agent_view(row)

    def get(self, worker: WorkerRef) -> ModuleView | AgentView:
        if worker.kind == WorkerKind.MODULE:
            return self.get_module(worker.worker_id)
        return self.get_agent(worker.worker_id)

    def list_modules(
        self,
        *,
        account_id: int | None = None,
        status: WorkerStatus | None = None,
    ) -> list[ModuleView]:
        statement = select(Module)
        if account_id is not None:
            statement = statement.where(Module.account_id == account_id)
        if status is not None:
            statement = statement.where(Module.status == status.value)
        with Session(self.engine) as session:
            rows = session.exec(statement.order_by(col(Module.id).asc())).all()
            return [_to_module_view(row) for row in rows]

    def list_active_modules(self) -> list[ModuleView]:
        """Active modules across all accounts."""

        return self.list_modules(status=WorkerStatus.ACTIVE)

    def list_agents(
        self,
        *,
        account_id: int | None = None,
        status: WorkerStatus | None = None,
    ) -> list[AgentView]:
        statement = select(Agent)
        if account_id is not None:
            statement = statement.where(Agent.account_id == account_id)
        if status is not None:
            statement = statement.where(Agent.status == status.value)
        with Session(self.engine) as session:
            rows = session.exec(statement.order_by(col(Agent.id).asc())).all()
            return [_to_agent_view(row) for row in rows]

    def find_strategic_module(self, account_id: int) -> ModuleView | None:
        """First active strategic module of an account, if any."""

        with Session(self.engine) as session:
            row = session.exec(
                select(Module)
                .where(
                    Module.account_id == account_id,
                    Module.module_type == ModuleType.STRATEGIC.value,
                    Module.status == WorkerStatus.ACTIVE.value,
                )
                .order_by(col(Module.id).asc())
                .limit(1),
            ).one_or_none()
            return _to_module_view(row) if row is not None else None

    def set_session_once(self, *, module_id: int, session_id: str) -> bool:
        """Store the module's session id unless one is already present."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Module)
                .where(col(Module.id) == module_id, col(Module.session_id).is_(None))
                .values(session_id=session_id, updated_at=to_db_datetime(utc_now())),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def set_workspace_once(self, *, module_id: int, workspace_path: str) -> bool:
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Module)
                .where(col(Module.id) == module_id, col(Module.workspace_path).is_(None))
                .values(workspace_path=workspace_path, updated_at=to_db_datetime(utc_now())),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def reset_session(self, module_id: int) -> bool:
        """Forget the stored session so the next run starts a fresh conversation."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Module)
                .where(col(Module.id) == module_id)
                .values(session_id=None, updated_at=to_db_datetime(utc_now())),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def increment_tasks_completed(self, agent_id: int) -> None:
        with Session(self.engine) as session:
            session.exec(
                sa_update(Agent)
                .where(col(Agent.id) == agent_id)
                .values(
                    tasks_completed=col(Agent.tasks_completed) + 1,
                    updated_at=to_db_datetime(utc_now()),
                ),
            )
            session.commit()


def _require_name(value: str) -> str:
    name = value.strip()
    if not name:
        raise ValueError("Worker name is required.")
    return name


def _validate_max_turns(value: int) -> None:
    if value <= 0:
        raise ValueError(f"max_turns must be > 0, got {value}.")


def _to_module_view(row: Module) -> ModuleView:
    assert row.id is not None
    return ModuleView(
        module_id=row.id,
        account_id=row.account_id,
        name=row.name,
        description=row.description,
        goal=row.goal,
        module_type=ModuleType(row.module_type),
        frequency=ModuleFrequency(row.frequency),
        status=WorkerStatus(row.status),
        tools=[str(item) for item in load_json_list(row.tools_json)],
        inputs=load_json_object(row.inputs_json),
        max_turns=row.max_turns,
        session_id=row.session_id,
        workspace_path=row.workspace_path,
        created_at=to_utc_aware(row.created_at),
        updated_at=to_utc_aware(row.updated_at),
    )


def _to_agent_view(row: Agent) -> AgentView:
    assert row.id is not None
    return AgentView(
        agent_id=row.id,
        account_id=row.account_id,
        name=row.name,
        description=row.description,
        role=row.role,
        status=WorkerStatus(row.status),
        tools=[str(item) for item in load_json_list(row.tools_json)],
        max_turns=row.max_turns,
        tasks_completed=row.tasks_completed,
        created_at=to_utc_aware(row.created_at),
        updated_at=to_utc_aware(row.updated_at),
    )
