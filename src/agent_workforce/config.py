"""Runtime configuration for the orchestration engine."""

from __future__ import annotations

import logging
import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(slots=True)
class SchedulerSettings:
    """Tick intervals and dispatch concurrency."""

    module_tick_seconds: float = 3_600.0
    strategic_tick_seconds: float = 3_600.0
    task_poll_seconds: float = 30.0
    strategic_interval_hours: int = 24
    max_parallel_executions: int = 8
    enable_task_listener: bool = True
    enable_strategic_cycle: bool = True


@dataclass(slots=True)
class RuntimeSettings:
    """Agent runtime command and defaults."""

    command: str = "claude"
    model: str | None = None
    extra_args: tuple[str, ...] = ()
    tools_command: tuple[str, ...] = ("agent-workforce-tools",)


@dataclass(slots=True)
class WorkspaceSettings:
    root_dir: Path = Path(".agent_workforce/workspaces")


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    db_path: Path = Path(".agent_workforce.db")
    log_level: str = "INFO"
    sqlite_busy_timeout_ms: int = 5_000
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    runtime: RuntimeSettings = field(default_factory=RuntimeSettings)
    workspace: WorkspaceSettings = field(default_factory=WorkspaceSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("AGENT_WORKFORCE_DB_PATH", ".agent_workforce.db")),
            log_level=os.getenv("AGENT_WORKFORCE_LOG_LEVEL", "INFO").strip().upper(),
            sqlite_busy_timeout_ms=int(
                os.getenv("AGENT_WORKFORCE_SQLITE_BUSY_TIMEOUT_MS", "5000"),
            ),
            scheduler=SchedulerSettings(
                module_tick_seconds=float(
                    os.getenv("AGENT_WORKFORCE_MODULE_TICK_SECONDS", "3600"),
                ),
                strategic_tick_seconds=float(
                    os.getenv("AGENT_WORKFORCE_STRATEGIC_TICK_SECONDS", "3600"),
                ),
                task_poll_seconds=float(os.getenv("AGENT_WORKFORCE_TASK_POLL_SECONDS", "30")),
                strategic_interval_hours=int(
                    os.getenv("AGENT_WORKFORCE_STRATEGIC_INTERVAL_HOURS", "24"),
                ),
                max_parallel_executions=int(
                    os.getenv("AGENT_WORKFORCE_MAX_PARALLEL_EXECUTIONS", "8"),
                ),
                enable_task_listener=_env_bool(
                    "AGENT_WORKFORCE_ENABLE_TASK_LISTENER",
                    default=True,
                ),
                enable_strategic_cycle=_env_bool(
                    "AGENT_WORKFORCE_ENABLE_STRATEGIC_CYCLE",
                    default=True,
                ),
            ),
            runtime=RuntimeSettings(
                command=os.getenv("AGENT_WORKFORCE_RUNTIME_COMMAND", "claude"),
                model=os.getenv("AGENT_WORKFORCE_RUNTIME_MODEL") or None,
                extra_args=tuple(shlex.split(os.getenv("AGENT_WORKFORCE_RUNTIME_EXTRA_ARGS", ""))),
                tools_command=tuple(
                    shlex.split(
                        os.getenv("AGENT_WORKFORCE_TOOLS_COMMAND", "agent-workforce-tools"),
                    ),
                ),
            ),
            workspace=WorkspaceSettings(
                root_dir=Path(
                    os.getenv("AGENT_WORKFORCE_WORKSPACE_ROOT", ".agent_workforce/workspaces"),
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the engine cannot run with."""

        if self.log_level not in _LOG_LEVELS:
            raise ValueError(
                f"AGENT_WORKFORCE_LOG_LEVEL must be one of {sorted(_LOG_LEVELS)}, "
                f"got {self.log_level!r}.",
            )
        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("AGENT_WORKFORCE_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if self.scheduler.module_tick_seconds <= 0:
            raise ValueError("AGENT_WORKFORCE_MODULE_TICK_SECONDS must be > 0.")
        if self.scheduler.strategic_tick_seconds <= 0:
            raise ValueError("AGENT_WORKFORCE_STRATEGIC_TICK_SECONDS must be > 0.")
        if self.scheduler.task_poll_seconds <= 0:
            raise ValueError("AGENT_WORKFORCE_TASK_POLL_SECONDS must be > 0.")
        if self.scheduler.strategic_interval_hours <= 0:
            raise ValueError("AGENT_WORKFORCE_STRATEGIC_INTERVAL_HOURS must be > 0.")
        if self.scheduler.max_parallel_executions <= 0:
            raise ValueError("AGENT_WORKFORCE_MAX_PARALLEL_EXECUTIONS must be > 0.")
        if not self.runtime.command.strip():
            raise ValueError("AGENT_WORKFORCE_RUNTIME_COMMAND must not be empty.")
        if not self.runtime.tools_command:
            raise ValueError("AGENT_WORKFORCE_TOOLS_COMMAND must not be empty.")

    def configure_logging(self) -> None:
        logging.basicConfig(
            level=self.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
