"""Session continuity for modules.

A module keeps one workspace and one runtime session across runs. The first
successful run that reports a session id stores it; later runs resume it.
Both columns only move from empty to set, and the guard lives in the UPDATE
statement so concurrent writers cannot overwrite each other.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from agent_workforce.orchestrator.models import ModuleView
from agent_workforce.orchestrator.registry import WorkerRegistry
from agent_workforce.orchestrator.workdir import Workspace, WorkspaceManager

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SessionContext:
    workspace: Workspace
    resume_session_id: str | None
    persistent: bool


class SessionContinuityManager:
    def __init__(self, *, registry: WorkerRegistry, workspaces: WorkspaceManager) -> None:
        self.registry = registry
        self.workspaces = workspaces

    def resolve(
        self,
        module: ModuleView,
        *,
        execution_id: int,
        one_off: bool = False,
    ) -> SessionContext:
        """Pick the workspace and resume id for one module run."""

        if one_off:
            return SessionContext(
                workspace=self.workspaces.execution_workspace(execution_id),
                resume_session_id=None,
                persistent=False,
            )

        workspace = self.workspaces.module_workspace(module.module_id)
        if module.workspace_path is None:
            self.registry.set_workspace_once(
                module_id=module.module_id,
                workspace_path=str(workspace.path),
            )
        return SessionContext(
            workspace=workspace,
            resume_session_id=module.session_id,
            persistent=True,
        )

    def commit(self, module_id: int, session_id: str | None) -> bool:
        """Store the session id if the module has none yet; True when this call stored it."""

        if not session_id:
            return False
        stored = self.registry.set_session_once(module_id=module_id, session_id=session_id)
        if stored:
            logger.info("Module %s bound to session %s", module_id, session_id)
        return stored

    def reset(self, module_id: int) -> bool:
        return self.registry.reset_session(module_id)
