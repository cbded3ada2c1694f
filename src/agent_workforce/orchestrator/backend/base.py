"""Agent runtime contract consumed by the dispatcher."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol


@dataclass(slots=True)
class RuntimeRunRequest:
    """Inputs required to run one agent conversation."""

    prompt: str
    workspace: Path
    max_turns: int
    system_prompt: str | None = None
    resume_session_id: str | None = None
    mcp_config_path: Path | None = None
    model: str | None = None
    env: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class ProgressEvent:
    """One streamed progress item, appended to the execution log."""

    stage: str
    message: str
    level: str = "info"
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class RuntimeRunResult:
    """Transcript outcome and accounting reported by the runtime."""

    success: bool
    output: str | None = None
    session_id: str | None = None
    cost_usd: float | None = None
    num_turns: int | None = None
    model: str | None = None
    error: str | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None


ProgressCallback = Callable[[ProgressEvent], None]


class AgentRuntime(Protocol):
    """Protocol implemented by agent runtimes."""

    def run(self, request: RuntimeRunRequest, on_event: ProgressCallback) -> RuntimeRunResult:
        """Run the conversation, streaming progress, and return its outcome."""
