"""CLI entrypoint for agent-workforce."""

from collections.abc import Callable
from pathlib import Path

import rich_click as click

from agent_workforce import __version__
from agent_workforce.orchestrator.controllers import (
    AccountActivityCommand,
    AccountConnectCommand,
    AccountCreateCommand,
    AccountDocumentCommand,
    AgentAddCommand,
    CostReportCommand,
    ExecutionHistoryCommand,
    ExecutionLogsCommand,
    ExecutionRunCommand,
    ModuleAddCommand,
    OrchestratorCliController,
    SchedulerRunCommand,
    SchedulerTickCommand,
    SessionResetCommand,
    StrategicRunCommand,
    TaskListCommand,
    TaskProposeCommand,
    TaskShowCommand,
    TaskTransitionCommand,
    WorkerListCommand,
    WorkerUpdateCommand,
    parse_credentials,
)
from agent_workforce.orchestrator.errors import OrchestratorError
from agent_workforce.orchestrator.models import (
    ModuleFrequency,
    ModuleType,
    TaskPriority,
    TaskStatus,
    WorkerKind,
    WorkerStatus,
)

click.rich_click.USE_MARKDOWN = True
ORCHESTRATOR_CONTROLLER = OrchestratorCliController()

_DB_PATH = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path.",
)
_ACCOUNT_ID = click.option("--account-id", type=int, required=True, help="Account id.")
_ACTOR = click.option("--actor", default="cli", show_default=True, help="Who makes the change.")
_KINDS = click.Choice([kind.value for kind in WorkerKind])


@click.group()
@click.version_option(version=__version__, prog_name="agent-workforce")
def agent_workforce() -> None:
    """Task and execution orchestration for autonomous LLM agent workers."""


@agent_workforce.group()
def accounts() -> None:
    """Accounts, long-term documents and service connections."""


@accounts.command("create")
@_DB_PATH
@click.argument("name")
def accounts_create(db_path: Path | None, name: str) -> None:
    """Create an account."""

    _run(lambda: ORCHESTRATOR_CONTROLLER.create_account(AccountCreateCommand(db_path, name)))


@accounts.command("document")
@_DB_PATH
@_ACCOUNT_ID
@click.option("--name", required=True, help="Document name, for example company_context.")
@click.option(
    "--file",
    "file_path",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    default=None,
    help="Read content from file.",
)
@click.option("--content", default=None, help="Inline content.")
def accounts_document(
    db_path: Path | None,
    account_id: int,
    name: str,
    file_path: Path | None,
    content: str | None,
) -> None:
    """Store or replace one long-term document."""

    if (file_path is None) == (content is None):
        raise click.UsageError("Pass exactly one of --file or --content.")
    text = file_path.read_text("utf-8") if file_path is not None else content or ""
    _run(
        lambda: ORCHESTRATOR_CONTROLLER.put_document(
            AccountDocumentCommand(db_path=db_path, account_id=account_id, name=name, content=text),
        ),
    )


@accounts.command("connect")
@_DB_PATH
@_ACCOUNT_ID
@click.argument("service")
@click.option(
    "--credential",
    "credentials",
    multiple=True,
    help="Credential as key=value. Can be repeated.",
)
def accounts_connect(
    db_path: Path | None,
    account_id: int,
    service: str,
    credentials: tuple[str, ...],
) -> None:
    """Store credentials for a service such as github or slack."""

    _run(
        lambda: ORCHESTRATOR_CONTROLLER.connect_service(
            AccountConnectCommand(
                db_path=db_path,
                account_id=account_id,
                service=service,
                credentials=parse_credentials(credentials),
            ),
        ),
    )


@accounts.command("activity")
@_DB_PATH
@_ACCOUNT_ID
@click.option("--limit", type=click.IntRange(min=1, max=200), default=20, show_default=True)
def accounts_activity(db_path: Path | None, account_id: int, limit: int) -> None:
    """Show the latest activity summaries."""

    _run(
        lambda: ORCHESTRATOR_CONTROLLER.activity(
            AccountActivityCommand(db_path=db_path, account_id=account_id, limit=limit),
        ),
    )


@accounts.command("strategic")
@_DB_PATH
@_ACCOUNT_ID
def accounts_strategic(db_path: Path | None, account_id: int) -> None:
    """Run the strategic cycle for one account now."""

    _run(
        lambda: ORCHESTRATOR_CONTROLLER.run_strategic(
            StrategicRunCommand(db_path=db_path, account_id=account_id),
        ),
    )


@agent_workforce.group()
def tasks() -> None:
    """Task proposals and their lifecycle."""


@tasks.command("propose")
@_DB_PATH
@_ACCOUNT_ID
@click.option("--title", required=True)
@click.option("--description", default=None)
@click.option("--reasoning", default=None, help="Why the task is suggested.")
@click.option(
    "--priority",
    type=click.Choice([priority.value for priority in TaskPriority]),
    default=TaskPriority.MEDIUM.value,
    show_default=True,
)
@click.option("--proposed-by", default=None)
def tasks_propose(  # noqa: PLR0913
    db_path: Path | None,
    account_id: int,
    title: str,
    description: str | None,
    reasoning: str | None,
    priority: str,
    proposed_by: str | None,
) -> None:
    """Propose a new task in `suggested` status."""

    _run(
        lambda: ORCHESTRATOR_CONTROLLER.propose_task(
            TaskProposeCommand(
                db_path=db_path,
                account_id=account_id,
                title=title,
                description=description,
                reasoning=reasoning,
                priority=priority,
                proposed_by=proposed_by,
            ),
        ),
    )


@tasks.command("list")
@_DB_PATH
@_ACCOUNT_ID
@click.option("--status", type=click.Choice([status.value for status in TaskStatus]), default=None)
@click.option("--module-id", type=int, default=None, help="Only tasks assigned to this module.")
@click.option("--agent-id", type=int, default=None, help="Only tasks assigned to this agent.")
@click.option("--limit", type=click.IntRange(min=1, max=1000), default=100, show_default=True)
def tasks_list(  # noqa: PLR0913
    db_path: Path | None,
    account_id: int,
    status: str | None,
    module_id: int | None,
    agent_id: int | None,
    limit: int,
) -> None:
    """List tasks, newest first."""

    _run(
        lambda: ORCHESTRATOR_CONTROLLER.list_tasks(
            TaskListCommand(
                db_path=db_path,
                account_id=account_id,
                status=status,
                module_id=module_id,
                agent_id=agent_id,
                limit=limit,
            ),
        ),
    )


@tasks.command("show")
@_DB_PATH
@click.argument("task_id", type=int)
def tasks_show(db_path: Path | None, task_id: int) -> None:
    """Show one task and its transition history."""

    _run(lambda: ORCHESTRATOR_CONTROLLER.show_task(TaskShowCommand(db_path, task_id)))


@tasks.command("approve")
@_DB_PATH
@click.argument("task_id", type=int)
@click.option("--reasoning", required=True, help="Approval reasoning.")
@click.option("--module-id", type=int, default=None, help="Assign to module.")
@click.option("--agent-id", type=int, default=None, help="Assign to agent; wins over --module-id.")
@_ACTOR
def tasks_approve(  # noqa: PLR0913
    db_path: Path | None,
    task_id: int,
    reasoning: str,
    module_id: int | None,
    agent_id: int | None,
    actor: str,
) -> None:
    """Approve a suggested task."""

    _transition(
        TaskTransitionCommand(
            db_path=db_path,
            task_id=task_id,
            action="approve",
            actor=actor,
            reasoning=reasoning,
            module_id=module_id,
            agent_id=agent_id,
        ),
    )


@tasks.command("reject")
@_DB_PATH
@click.argument("task_id", type=int)
@click.option("--reasoning", required=True, help="Rejection reasoning.")
@_ACTOR
def tasks_reject(db_path: Path | None, task_id: int, reasoning: str, actor: str) -> None:
    """Reject a suggested task."""

    _transition(
        TaskTransitionCommand(
            db_path=db_path,
            task_id=task_id,
            action="reject",
            actor=actor,
            reasoning=reasoning,
        ),
    )


@tasks.command("block")
@_DB_PATH
@click.argument("task_id", type=int)
@click.option("--reason", required=True)
@click.option(
    "--status",
    "block_status",
    type=click.Choice([TaskStatus.WAITING.value, TaskStatus.BLOCKED.value]),
    default=TaskStatus.WAITING.value,
    show_default=True,
)
@_ACTOR
def tasks_block(  # noqa: PLR0913
    db_path: Path | None,
    task_id: int,
    reason: str,
    block_status: str,
    actor: str,
) -> None:
    """Move an in-progress task to waiting or blocked."""

    _transition(
        TaskTransitionCommand(
            db_path=db_path,
            task_id=task_id,
            action="block",
            actor=actor,
            reason=reason,
            block_status=block_status,
        ),
    )


@tasks.command("resume")
@_DB_PATH
@click.argument("task_id", type=int)
@click.option("--note", default=None)
@_ACTOR
def tasks_resume(db_path: Path | None, task_id: int, note: str | None, actor: str) -> None:
    """Resume a waiting or blocked task."""

    _transition(
        TaskTransitionCommand(
            db_path=db_path,
            task_id=task_id,
            action="resume",
            actor=actor,
            note=note,
        ),
    )


@tasks.command("complete")
@_DB_PATH
@click.argument("task_id", type=int)
@click.option("--summary", required=True, help="Completion summary.")
@_ACTOR
def tasks_complete(db_path: Path | None, task_id: int, summary: str, actor: str) -> None:
    """Complete an in-progress task."""

    _transition(
        TaskTransitionCommand(
            db_path=db_path,
            task_id=task_id,
            action="complete",
            actor=actor,
            summary=summary,
        ),
    )


@tasks.command("fail")
@_DB_PATH
@click.argument("task_id", type=int)
@click.option("--error", required=True, help="Failure message.")
@_ACTOR
def tasks_fail(db_path: Path | None, task_id: int, error: str, actor: str) -> None:
    """Fail an in-progress task."""

    _transition(
        TaskTransitionCommand(
            db_path=db_path,
            task_id=task_id,
            action="fail",
            actor=actor,
            error=error,
        ),
    )


@agent_workforce.group()
def workers() -> None:
    """Modules and agents."""


@workers.command("add-module")
@_DB_PATH
@_ACCOUNT_ID
@click.option("--name", required=True)
@click.option("--goal", required=True, help="Instructions the module runs with.")
@click.option("--description", default="", show_default=False)
@click.option(
    "--frequency",
    type=click.Choice([frequency.value for frequency in ModuleFrequency]),
    default=ModuleFrequency.MANUAL.value,
    show_default=True,
)
@click.option(
    "--type",
    "module_type",
    type=click.Choice([module_type.value for module_type in ModuleType]),
    default=ModuleType.STANDARD.value,
    show_default=True,
)
@click.option("--tool", "tools", multiple=True, help="Tool adapter kind. Can be repeated.")
@click.option("--inputs", "inputs_json", default=None, help="Module inputs as a JSON object.")
@click.option("--max-turns", type=click.IntRange(min=1), default=20, show_default=True)
def workers_add_module(  # noqa: PLR0913
    db_path: Path | None,
    account_id: int,
    name: str,
    goal: str,
    description: str,
    frequency: str,
    module_type: str,
    tools: tuple[str, ...],
    inputs_json: str | None,
    max_turns: int,
) -> None:
    """Register a scheduled module."""

    _run(
        lambda: ORCHESTRATOR_CONTROLLER.add_module(
            ModuleAddCommand(
                db_path=db_path,
                account_id=account_id,
                name=name,
                goal=goal,
                description=description,
                frequency=frequency,
                module_type=module_type,
                tools=tools,
                inputs_json=inputs_json,
                max_turns=max_turns,
            ),
        ),
    )


@workers.command("add-agent")
@_DB_PATH
@_ACCOUNT_ID
@click.option("--name", required=True)
@click.option("--role", required=True, help="Role description used as system prompt.")
@click.option("--description", default="")
@click.option("--tool", "tools", multiple=True, help="Tool adapter kind. Can be repeated.")
@click.option("--max-turns", type=click.IntRange(min=1), default=100, show_default=True)
def workers_add_agent(  # noqa: PLR0913
    db_path: Path | None,
    account_id: int,
    name: str,
    role: str,
    description: str,
    tools: tuple[str, ...],
    max_turns: int,
) -> None:
    """Register a task-driven agent."""

    _run(
        lambda: ORCHESTRATOR_CONTROLLER.add_agent(
            AgentAddCommand(
                db_path=db_path,
                account_id=account_id,
                name=name,
                role=role,
                description=description,
                tools=tools,
                max_turns=max_turns,
            ),
        ),
    )


@workers.command("list")
@_DB_PATH
@_ACCOUNT_ID
def workers_list(db_path: Path | None, account_id: int) -> None:
    """List modules and agents of an account."""

    _run(lambda: ORCHESTRATOR_CONTROLLER.list_workers(WorkerListCommand(db_path, account_id)))


@workers.command("update")
@_DB_PATH
@click.argument("kind", type=_KINDS)
@click.argument("worker_id", type=int)
@click.option("--name", default=None)
@click.option("--description", default=None)
@click.option("--instructions", default=None, help="New goal (module) or role (agent).")
@click.option(
    "--frequency",
    type=click.Choice([frequency.value for frequency in ModuleFrequency]),
    default=None,
)
@click.option(
    "--status",
    type=click.Choice([status.value for status in WorkerStatus]),
    default=None,
)
@click.option("--tool", "tools", multiple=True, help="Replace tool list. Can be repeated.")
@click.option("--clear-tools", is_flag=True, default=False, help="Remove all tools.")
@click.option("--inputs", "inputs_json", default=None, help="Replace module inputs (JSON).")
@click.option("--max-turns", type=click.IntRange(min=1), default=None)
def workers_update(  # noqa: PLR0913
    db_path: Path | None,
    kind: str,
    worker_id: int,
    name: str | None,
    description: str | None,
    instructions: str | None,
    frequency: str | None,
    status: str | None,
    tools: tuple[str, ...],
    clear_tools: bool,
    inputs_json: str | None,
    max_turns: int | None,
) -> None:
    """Update selected fields of a module or agent."""

    tool_update: tuple[str, ...] | None = None
    if clear_tools:
        tool_update = ()
    elif tools:
        tool_update = tools
    _run(
        lambda: ORCHESTRATOR_CONTROLLER.update_worker(
            WorkerUpdateCommand(
                db_path=db_path,
                kind=kind,
                worker_id=worker_id,
                name=name,
                description=description,
                instructions=instructions,
                frequency=frequency,
                status=status,
                tools=tool_update,
                inputs_json=inputs_json,
                max_turns=max_turns,
            ),
        ),
    )


@workers.command("reset-session")
@_DB_PATH
@click.argument("module_id", type=int)
def workers_reset_session(db_path: Path | None, module_id: int) -> None:
    """Forget a module's stored session; the next run starts fresh."""

    _run(lambda: ORCHESTRATOR_CONTROLLER.reset_session(SessionResetCommand(db_path, module_id)))


@agent_workforce.group()
def executions() -> None:
    """Execution runs, history, logs and costs."""


@executions.command("run")
@_DB_PATH
@click.argument("kind", type=_KINDS)
@click.argument("worker_id", type=int)
@_ACCOUNT_ID
@click.option("--task-id", type=int, default=None, help="Approved task to work on (agents).")
@click.option(
    "--one-off",
    is_flag=True,
    default=False,
    help="Run a module in a throwaway workspace without its stored session.",
)
def executions_run(  # noqa: PLR0913
    db_path: Path | None,
    kind: str,
    worker_id: int,
    account_id: int,
    task_id: int | None,
    one_off: bool,
) -> None:
    """Run one worker now and wait for it to finish."""

    _run(
        lambda: ORCHESTRATOR_CONTROLLER.run_execution(
            ExecutionRunCommand(
                db_path=db_path,
                kind=kind,
                worker_id=worker_id,
                account_id=account_id,
                task_id=task_id,
                one_off=one_off,
            ),
        ),
    )


@executions.command("history")
@_DB_PATH
@click.option("--account-id", type=int, default=None)
@click.option("--kind", type=_KINDS, default=None)
@click.option("--worker-id", type=int, default=None)
@click.option("--limit", type=click.IntRange(min=1, max=500), default=20, show_default=True)
def executions_history(
    db_path: Path | None,
    account_id: int | None,
    kind: str | None,
    worker_id: int | None,
    limit: int,
) -> None:
    """List recent executions, newest first."""

    _run(
        lambda: ORCHESTRATOR_CONTROLLER.history(
            ExecutionHistoryCommand(
                db_path=db_path,
                account_id=account_id,
                kind=kind,
                worker_id=worker_id,
                limit=limit,
            ),
        ),
    )


@executions.command("logs")
@_DB_PATH
@click.argument("execution_id", type=int)
def executions_logs(db_path: Path | None, execution_id: int) -> None:
    """Show one execution and its log entries."""

    _run(lambda: ORCHESTRATOR_CONTROLLER.logs(ExecutionLogsCommand(db_path, execution_id)))


@executions.command("costs")
@_DB_PATH
@_ACCOUNT_ID
@click.option("--days", type=click.IntRange(min=1), default=30, show_default=True)
@click.option("--kind", type=_KINDS, default=None)
@click.option("--worker-id", type=int, default=None)
def executions_costs(
    db_path: Path | None,
    account_id: int,
    days: int,
    kind: str | None,
    worker_id: int | None,
) -> None:
    """Cost and duration totals per worker."""

    _run(
        lambda: ORCHESTRATOR_CONTROLLER.costs(
            CostReportCommand(
                db_path=db_path,
                account_id=account_id,
                days=days,
                kind=kind,
                worker_id=worker_id,
            ),
        ),
    )


@agent_workforce.group()
def scheduler() -> None:
    """Scheduler loop and one-shot checks."""


@scheduler.command("run")
@_DB_PATH
@click.option(
    "--max-seconds",
    type=click.FloatRange(min=0),
    default=None,
    help="Stop after this many seconds (default: until SIGINT/SIGTERM).",
)
@click.option("--log-level", default=None, help="Overrides AGENT_WORKFORCE_LOG_LEVEL.")
def scheduler_run(db_path: Path | None, max_seconds: float | None, log_level: str | None) -> None:
    """Run module ticks, strategic cycles and the task listener."""

    _run(
        lambda: ORCHESTRATOR_CONTROLLER.run_scheduler(
            SchedulerRunCommand(db_path=db_path, max_seconds=max_seconds, log_level=log_level),
        ),
    )


@scheduler.command("tick")
@_DB_PATH
@click.option(
    "--check",
    "checks",
    type=click.Choice(["modules", "strategic", "tasks"]),
    multiple=True,
    help="Which checks to run. Default: all.",
)
def scheduler_tick(db_path: Path | None, checks: tuple[str, ...]) -> None:
    """Run each scheduler check once and wait for dispatched executions."""

    command = SchedulerTickCommand(db_path=db_path)
    if checks:
        command.checks = checks
    _run(lambda: ORCHESTRATOR_CONTROLLER.tick(command))


def _transition(command: TaskTransitionCommand) -> None:
    _run(lambda: ORCHESTRATOR_CONTROLLER.transition_task(command))


def _run(action: Callable[[], list[str]]) -> None:
    try:
        lines = action()
    except (OrchestratorError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    agent_workforce()
