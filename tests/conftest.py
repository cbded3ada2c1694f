"""Shared test fixtures."""

from __future__ import annotations

import os
import shlex
import sys
from collections.abc import Callable, Iterator
from concurrent.futures import Executor, Future
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

from agent_workforce.orchestrator.backend.base import (
    ProgressCallback,
    ProgressEvent,
    RuntimeRunRequest,
    RuntimeRunResult,
)
from agent_workforce.orchestrator.dispatcher import ExecutionDispatcher
from agent_workforce.orchestrator.errors import RuntimeInvocationFailure
from agent_workforce.orchestrator.repository import OrchestratorStore
from agent_workforce.orchestrator.workdir import WorkspaceManager

SRC_DIR = Path(__file__).resolve().parents[1] / "src"

ECHO_AGENT_COMMAND = (
    f"{shlex.quote(sys.executable)} -m agent_workforce.orchestrator.backend.echo_agent"
)

FIXED_NOW = datetime(2026, 10, 1, 9, 0, tzinfo=UTC)


class FakeRuntime:
    """Scripted runtime: records requests and returns queued outcomes in order."""

    def __init__(self) -> None:
        self.requests: list[RuntimeRunRequest] = []
        self._outcomes: list[RuntimeRunResult | Exception] = []
        self.on_run: Callable[[RuntimeRunRequest], None] | None = None

    def queue(self, *outcomes: RuntimeRunResult | Exception) -> None:
        self._outcomes.extend(outcomes)

    def run(self, request: RuntimeRunRequest, on_event: ProgressCallback) -> RuntimeRunResult:
        self.requests.append(request)
        if self.on_run is not None:
            self.on_run(request)
        on_event(ProgressEvent(stage="initialized", message="fake runtime started"))
        on_event(ProgressEvent(stage="tool_use", message="Tool: search"))
        outcome: RuntimeRunResult | Exception = (
            self._outcomes.pop(0)
            if self._outcomes
            else ok_result(session_id=request.resume_session_id or "sess-default")
        )
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class InlineExecutor(Executor):
    """Runs submitted callables immediately in the calling thread."""

    def __init__(self) -> None:
        self.submitted = 0

    def submit(self, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Future[Any]:
        self.submitted += 1
        future: Future[Any] = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as error:  # noqa: BLE001
            future.set_exception(error)
        return future


def ok_result(
    *,
    output: str = "Did the work.",
    session_id: str | None = "sess-1",
    cost_usd: float | None = 0.25,
) -> RuntimeRunResult:
    return RuntimeRunResult(
        success=True,
        output=output,
        session_id=session_id,
        cost_usd=cost_usd,
        num_turns=3,
        model="fake-model",
        input_tokens=100,
        output_tokens=20,
    )


def failed_result(error: str = "max turns reached") -> RuntimeRunResult:
    return RuntimeRunResult(success=False, output=None, session_id="sess-x", error=error)


def invocation_failure(message: str = "agent binary missing") -> RuntimeInvocationFailure:
    return RuntimeInvocationFailure(message)


@pytest.fixture()
def store(tmp_path: Path) -> Iterator[OrchestratorStore]:
    orchestrator_store = OrchestratorStore(tmp_path / "orchestrator.db")
    orchestrator_store.init_schema()
    try:
        yield orchestrator_store
    finally:
        orchestrator_store.close()


@pytest.fixture()
def account_id(store: OrchestratorStore) -> int:
    return store.accounts.create_account("Acme")


@pytest.fixture()
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture()
def workspaces(tmp_path: Path) -> WorkspaceManager:
    return WorkspaceManager(tmp_path / "workspaces")


@pytest.fixture()
def dispatcher(
    store: OrchestratorStore,
    fake_runtime: FakeRuntime,
    workspaces: WorkspaceManager,
) -> ExecutionDispatcher:
    return ExecutionDispatcher(
        store=store,
        runtime=fake_runtime,
        workspaces=workspaces,
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture()
def inline_executor() -> InlineExecutor:
    return InlineExecutor()


@pytest.fixture()
def echo_agent_importable(monkeypatch) -> None:
    """Let the echo agent subprocess import the package from the source tree."""

    existing = os.environ.get("PYTHONPATH")
    monkeypatch.setenv(
        "PYTHONPATH",
        str(SRC_DIR) if not existing else f"{SRC_DIR}{os.pathsep}{existing}",
    )


@pytest.fixture()
def echo_agent_env(monkeypatch, tmp_path: Path, echo_agent_importable: None) -> Path:
    """Point the CLI runtime at the local echo agent and isolate DB and workspaces."""

    db_path = tmp_path / "cli.db"
    monkeypatch.setenv("AGENT_WORKFORCE_DB_PATH", str(db_path))
    monkeypatch.setenv("AGENT_WORKFORCE_WORKSPACE_ROOT", str(tmp_path / "workspaces"))
    monkeypatch.setenv("AGENT_WORKFORCE_RUNTIME_COMMAND", ECHO_AGENT_COMMAND)
    monkeypatch.delenv("AGENT_WORKFORCE_RUNTIME_MODEL", raising=False)
    monkeypatch.delenv("ECHO_AGENT_MODE", raising=False)
    return db_path
