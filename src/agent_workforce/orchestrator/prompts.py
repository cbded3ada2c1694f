"""Prompt composition for module and agent runs."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime

from agent_workforce.orchestrator.models import AgentView, ModuleView, TaskView


@dataclass(slots=True)
class RunPrompt:
    prompt: str
    system_prompt: str | None


def build_module_prompt(
    module: ModuleView,
    *,
    now: datetime,
    documents: dict[str, str] | None = None,
) -> RunPrompt:
    """Goal, date and inputs; strategic modules also see the account's documents."""

    sections = [
        module.goal.strip() or module.description.strip() or f"Run module {module.name}.",
        _date_section(now),
    ]
    if module.inputs:
        sections.append(
            "## Inputs\n\n```json\n"
            + json.dumps(module.inputs, ensure_ascii=False, indent=2, sort_keys=True)
            + "\n```",
        )
    system_parts = [module.goal.strip()] if module.goal.strip() else []
    if documents:
        system_parts.append(_documents_section(documents))
    return RunPrompt(
        prompt="\n\n".join(sections),
        system_prompt="\n\n".join(system_parts) or None,
    )


def build_agent_prompt(agent: AgentView, task: TaskView, *, now: datetime) -> RunPrompt:
    """Role plus the assigned task: what to do, why, approval notes, previous blocker."""

    lines = [
        agent.role.strip(),
        "",
        "## Current Task Assignment",
        "",
        f"- Task ID: {task.task_id}",
        f"- Title: {task.title}",
        f"- Priority: {task.priority.value}",
        "",
        "### What to Do",
        task.description or "No detailed description provided.",
        "",
        "### Why This Matters",
        task.suggestion_reasoning or "No reasoning provided.",
    ]
    if task.approval_reasoning:
        lines += ["", "### Approval Reasoning", task.approval_reasoning]
    if task.blocked_reason:
        lines += ["", "### Previous Blocker", task.blocked_reason]
    lines += [
        "",
        _date_section(now),
        "",
        "When you finish, reply with a summary of what you accomplished, what changed "
        "and anything left open. It is saved as the task completion record.",
    ]
    return RunPrompt(
        prompt="\n".join(lines).strip(),
        system_prompt=agent.role.strip() or None,
    )


def _date_section(now: datetime) -> str:
    return f"## Current Date\n\nToday is {now.strftime('%a %b %d %Y')} ({now.date().isoformat()})."


def _documents_section(documents: dict[str, str]) -> str:
    parts = ["# Long-term documents"]
    for name, content in documents.items():
        parts.append(f"## {name}\n\n{content.strip()}")
    return "\n\n".join(parts)
