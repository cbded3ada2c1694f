from __future__ import annotations

from dataclasses import replace

import allure
from conftest import FIXED_NOW

from agent_workforce.orchestrator.models import (
    AgentView,
    ModuleFrequency,
    ModuleType,
    ModuleView,
    TaskPriority,
    TaskStatus,
    TaskView,
    WorkerStatus,
)
from agent_workforce.orchestrator.prompts import build_agent_prompt, build_module_prompt

pytestmark = [
    allure.epic("Execution"),
    allure.feature("Prompt Composition"),
]

_MODULE = ModuleView(
    module_id=1,
    account_id=1,
    name="Growth",
    description="Looks at ad spend.",
    goal="Find underperforming campaigns.",
    module_type=ModuleType.STANDARD,
    frequency=ModuleFrequency.WEEKLY,
    status=WorkerStatus.ACTIVE,
    tools=[],
    inputs={},
    max_turns=20,
    session_id=None,
    workspace_path=None,
    created_at=FIXED_NOW,
    updated_at=FIXED_NOW,
)

_AGENT = AgentView(
    agent_id=2,
    account_id=1,
    name="Engineer",
    description="",
    role="You are a backend engineer.",
    status=WorkerStatus.ACTIVE,
    tools=[],
    max_turns=100,
    tasks_completed=0,
    created_at=FIXED_NOW,
    updated_at=FIXED_NOW,
)

_TASK = TaskView(
    task_id=9,
    account_id=1,
    title="Rotate API keys",
    description=None,
    priority=TaskPriority.CRITICAL,
    status=TaskStatus.IN_PROGRESS,
    suggestion_reasoning="Key leaked in a log.",
    approval_reasoning=None,
    rejection_reasoning=None,
    blocked_reason="Waiting for vault access",
    completion_summary=None,
    assigned_to_module_id=None,
    assigned_to_agent_id=2,
    proposed_by="Security monitor",
    last_status_change_by=None,
    execution_id=None,
    created_at=FIXED_NOW,
    approved_at=FIXED_NOW,
    started_at=FIXED_NOW,
    blocked_at=None,
    completed_at=None,
    updated_at=FIXED_NOW,
)


def test_module_prompt_has_goal_date_and_sorted_inputs() -> None:
    module = replace(_MODULE, inputs={"b": 2, "a": 1})

    prompt = build_module_prompt(module, now=FIXED_NOW)

    assert prompt.prompt.startswith("Find underperforming campaigns.")
    assert "Today is Thu Oct 01 2026 (2026-10-01)." in prompt.prompt
    assert prompt.prompt.index('"a": 1') < prompt.prompt.index('"b": 2')
    assert prompt.system_prompt == "Find underperforming campaigns."


def test_module_prompt_falls_back_to_description_and_appends_documents() -> None:
    module = replace(_MODULE, goal="  ")

    prompt = build_module_prompt(
        module,
        now=FIXED_NOW,
        documents={"company_context": "B2B SaaS", "goals": "Double MRR"},
    )

    assert prompt.prompt.startswith("Looks at ad spend.")
    assert "## Inputs" not in prompt.prompt
    assert prompt.system_prompt is not None
    assert prompt.system_prompt.startswith("# Long-term documents")
    assert "## company_context\n\nB2B SaaS" in prompt.system_prompt
    assert "## goals\n\nDouble MRR" in prompt.system_prompt


def test_agent_prompt_includes_task_context_and_previous_blocker() -> None:
    prompt = build_agent_prompt(_AGENT, _TASK, now=FIXED_NOW)

    assert prompt.system_prompt == "You are a backend engineer."
    assert "- Task ID: 9" in prompt.prompt
    assert "- Priority: critical" in prompt.prompt
    assert "No detailed description provided." in prompt.prompt
    assert "Key leaked in a log." in prompt.prompt
    assert "### Approval Reasoning" not in prompt.prompt
    assert "### Previous Blocker\nWaiting for vault access" in prompt.prompt
