"""Agent runtime implementations."""

from agent_workforce.orchestrator.backend.base import (
    AgentRuntime,
    ProgressCallback,
    ProgressEvent,
    RuntimeRunRequest,
    RuntimeRunResult,
)
from agent_workforce.orchestrator.backend.cli_backend import CliAgentRuntime

__all__ = [
    "AgentRuntime",
    "CliAgentRuntime",
    "ProgressCallback",
    "ProgressEvent",
    "RuntimeRunRequest",
    "RuntimeRunResult",
]
