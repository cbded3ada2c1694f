"""Workspace materialization for one execution."""

from __future__ import annotations

import json
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from agent_workforce.orchestrator.adapters import ToolAdapter
from agent_workforce.orchestrator.models import WorkerRef

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Workspace:
    """Working directory handed to the agent runtime."""

    path: Path
    persistent: bool

    @property
    def meta_dir(self) -> Path:
        return self.path / "meta"

    @property
    def input_dir(self) -> Path:
        return self.path / "input"


@dataclass(slots=True)
class MaterializedRun:
    """Files written into a workspace before the runtime starts."""

    workspace: Workspace
    manifest_path: Path
    prompt_path: Path
    mcp_config_path: Path | None


class WorkspaceManager:
    """Creates persistent module workspaces and throwaway execution workspaces."""

    def __init__(self, root_dir: Path) -> None:
        self.root_dir = root_dir.absolute()

    def module_workspace(self, module_id: int) -> Workspace:
        path = self.root_dir / "modules" / f"module-{module_id}"
        path.mkdir(parents=True, exist_ok=True)
        return Workspace(path=path, persistent=True)

    def execution_workspace(self, execution_id: int) -> Workspace:
        path = self.root_dir / "executions" / f"execution-{execution_id}"
        path.mkdir(parents=True, exist_ok=True)
        return Workspace(path=path, persistent=False)

    def materialize(  # noqa: PLR0913
        self,
        workspace: Workspace,
        *,
        execution_id: int,
        worker: WorkerRef,
        prompt: str,
        tools: list[ToolAdapter],
        resume_session_id: str | None,
    ) -> MaterializedRun:
        """Write the run manifest, prompt and MCP server config for one execution."""

        workspace.meta_dir.mkdir(parents=True, exist_ok=True)
        workspace.input_dir.mkdir(parents=True, exist_ok=True)

        prompt_path = workspace.input_dir / "prompt.md"
        prompt_path.write_text(prompt, "utf-8")

        mcp_config_path: Path | None = None
        if tools:
            mcp_config_path = workspace.meta_dir / "mcp_config.json"
            write_json(
                mcp_config_path,
                {"mcpServers": {adapter.name: adapter.server for adapter in tools}},
            )

        manifest_path = workspace.meta_dir / "run_manifest.json"
        write_json(
            manifest_path,
            {
                "execution_id": execution_id,
                "worker": str(worker),
                "workspace": str(workspace.path),
                "persistent": workspace.persistent,
                "prompt_path": str(prompt_path),
                "mcp_config_path": str(mcp_config_path) if mcp_config_path else None,
                "resume_session_id": resume_session_id,
                "tools": [
                    {"name": adapter.name, "capabilities": list(adapter.capabilities)}
                    for adapter in tools
                ],
            },
        )
        return MaterializedRun(
            workspace=workspace,
            manifest_path=manifest_path,
            prompt_path=prompt_path,
            mcp_config_path=mcp_config_path,
        )

    def release(self, workspace: Workspace) -> None:
        """Remove an ephemeral workspace; persistent ones are kept."""

        if workspace.persistent:
            return
        try:
            shutil.rmtree(workspace.path)
        except FileNotFoundError:
            return
        except OSError:
            logger.warning("Could not remove workspace %s", workspace.path, exc_info=True)


def write_json(path: Path, payload: dict[str, Any]) -> None:
    """Persist JSON payload using deterministic formatting."""

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True), "utf-8")
