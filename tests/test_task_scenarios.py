from __future__ import annotations

import allure

from agent_workforce.orchestrator.models import (
    AgentCreate,
    TaskAction,
    TaskFilter,
    TaskProposal,
    TaskStatus,
    WorkerRef,
)
from agent_workforce.orchestrator.repository import OrchestratorStore
from agent_workforce.orchestrator.state_machine import TransitionPayload

pytestmark = [
    allure.epic("Task Lifecycle"),
    allure.feature("Approval and Progress"),
]


def test_approving_with_agent_assignment_leaves_module_unset(
    store: OrchestratorStore,
    account_id: int,
) -> None:
    agent = store.workers.create_agent(
        account_id=account_id,
        payload=AgentCreate(name="Engineer", role="You fix bugs."),
    )
    task = store.tasks.propose(
        account_id=account_id,
        proposal=TaskProposal(title="Fix login bug", proposed_by="Support monitor"),
    )

    approved = store.tasks.transition(
        task_id=task.task_id,
        action=TaskAction.APPROVE,
        payload=TransitionPayload(
            actor="owner",
            approval_reasoning="Users cannot sign in",
            assign_to_agent_id=agent.agent_id,
        ),
    )

    assert approved.status == TaskStatus.APPROVED
    assert approved.assigned_to_agent_id == agent.agent_id
    assert approved.assigned_to_module_id is None
    assert approved.approval_reasoning == "Users cannot sign in"


def test_block_resume_complete_overwrites_resume_note(
    store: OrchestratorStore,
    account_id: int,
) -> None:
    task = store.tasks.propose(account_id=account_id, proposal=TaskProposal(title="Upgrade SDK"))
    store.tasks.transition(
        task_id=task.task_id,
        action=TaskAction.APPROVE,
        payload=TransitionPayload(actor="owner", approval_reasoning="security fix"),
    )
    store.tasks.transition(
        task_id=task.task_id,
        action=TaskAction.START,
        payload=TransitionPayload(actor="engineer"),
    )
    store.tasks.transition(
        task_id=task.task_id,
        action=TaskAction.BLOCK,
        payload=TransitionPayload(actor="engineer", reason="waiting on dependency"),
    )

    resumed = store.tasks.transition(
        task_id=task.task_id,
        action=TaskAction.RESUME,
        payload=TransitionPayload(actor="owner", note="dependency resolved"),
    )
    assert resumed.blocked_reason == "Resumed: dependency resolved"

    completed = store.tasks.transition(
        task_id=task.task_id,
        action=TaskAction.COMPLETE,
        payload=TransitionPayload(actor="engineer", completion_summary="Fixed in PR #9"),
    )

    assert completed.status == TaskStatus.COMPLETED
    assert completed.blocked_reason is None
    assert completed.completion_summary == "Fixed in PR #9"
    assert completed.completed_at is not None
    assert completed.last_status_change_by == "engineer"

    completion_events = [
        event
        for event in store.tasks.list_events(task.task_id)
        if event.status_to == TaskStatus.COMPLETED
    ]
    assert len(completion_events) == 1


def test_list_tasks_filters_by_status_and_assignee(
    store: OrchestratorStore,
    account_id: int,
) -> None:
    agent = store.workers.create_agent(
        account_id=account_id,
        payload=AgentCreate(name="Writer", role="You write."),
    )
    first = store.tasks.propose(account_id=account_id, proposal=TaskProposal(title="Blog post"))
    store.tasks.propose(account_id=account_id, proposal=TaskProposal(title="Newsletter"))
    store.tasks.transition(
        task_id=first.task_id,
        action=TaskAction.APPROVE,
        payload=TransitionPayload(approval_reasoning="go", assign_to_agent_id=agent.agent_id),
    )

    approved = store.tasks.list_tasks(
        account_id=account_id,
        task_filter=TaskFilter(status=TaskStatus.APPROVED),
    )
    assigned = store.tasks.list_tasks(
        account_id=account_id,
        task_filter=TaskFilter(assignee=WorkerRef.agent(agent.agent_id)),
    )
    everything = store.tasks.list_tasks(account_id=account_id)

    assert [task.task_id for task in approved] == [first.task_id]
    assert [task.task_id for task in assigned] == [first.task_id]
    assert len(everything) == 2
