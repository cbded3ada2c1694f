from __future__ import annotations

import json
import shlex
import subprocess
import sys
import time
from pathlib import Path

import allure
import pytest
from conftest import ECHO_AGENT_COMMAND

from agent_workforce.orchestrator.backend import (
    CliAgentRuntime,
    ProgressEvent,
    RuntimeRunRequest,
)
from agent_workforce.orchestrator.backend.cli_backend import build_run_args
from agent_workforce.orchestrator.errors import RuntimeInvocationFailure

pytestmark = [
    allure.epic("Agent Runtime"),
    allure.feature("Stream-JSON CLI"),
]


def _request(workspace: Path, **overrides) -> RuntimeRunRequest:
    workspace.mkdir(parents=True, exist_ok=True)
    return RuntimeRunRequest(
        prompt=overrides.pop("prompt", "Triage new support tickets\nMore detail below."),
        workspace=workspace,
        max_turns=overrides.pop("max_turns", 5),
        **overrides,
    )


def test_build_run_args_renders_all_optional_flags(tmp_path: Path) -> None:
    request = _request(
        tmp_path,
        prompt="hello world",
        system_prompt="You are careful.",
        resume_session_id="sess-42",
        mcp_config_path=tmp_path / "meta" / "mcp_config.json",
    )

    argv = build_run_args(
        command="claude --dangerously-skip-permissions",
        request=request,
        model="sonnet",
        extra_args=("--debug",),
    )

    assert argv[:2] == ["claude", "--dangerously-skip-permissions"]
    assert argv[argv.index("-p") + 1] == "hello world"
    assert argv[argv.index("--output-format") + 1] == "stream-json"
    assert argv[argv.index("--max-turns") + 1] == "5"
    assert argv[argv.index("--model") + 1] == "sonnet"
    assert argv[argv.index("--resume") + 1] == "sess-42"
    assert argv[argv.index("--mcp-config") + 1] == str(tmp_path / "meta" / "mcp_config.json")
    assert argv[argv.index("--append-system-prompt") + 1] == "You are careful."
    assert argv[-1] == "--debug"


def test_build_run_args_omits_unset_flags(tmp_path: Path) -> None:
    argv = build_run_args(command="claude", request=_request(tmp_path), model=None)

    for flag in ("--model", "--resume", "--mcp-config", "--append-system-prompt"):
        assert flag not in argv


def test_build_run_args_rejects_empty_command(tmp_path: Path) -> None:
    with pytest.raises(RuntimeInvocationFailure, match="empty"):
        build_run_args(command="   ", request=_request(tmp_path), model=None)


def test_echo_agent_run_reports_result_and_streams_progress(
    tmp_path: Path,
    echo_agent_importable: None,
) -> None:
    events: list[ProgressEvent] = []
    runtime = CliAgentRuntime(command=ECHO_AGENT_COMMAND)

    result = runtime.run(_request(tmp_path / "ws"), events.append)

    assert result.success
    assert result.error is None
    assert result.output == "Completed: Triage new support tickets"
    assert result.session_id is not None
    assert result.session_id.startswith("echo-")
    assert result.cost_usd == pytest.approx(0.0123)
    assert result.num_turns == 1
    assert result.model == "echo-model"
    assert result.input_tokens == 120
    assert result.output_tokens == 30

    assert [event.stage for event in events] == ["initialized", "thinking"]
    assert events[0].metadata["session_id"] == result.session_id
    assert events[1].message == "Working on: Triage new support tickets"
    transcript = (tmp_path / "ws" / "meta" / "agent_stdout.jsonl").read_text("utf-8")
    assert len(transcript.strip().splitlines()) == 3


def test_echo_agent_uses_resume_model_and_mcp_servers(
    tmp_path: Path,
    echo_agent_importable: None,
) -> None:
    workspace = tmp_path / "ws"
    config_path = workspace / "meta" / "mcp_config.json"
    config_path.parent.mkdir(parents=True)
    config_path.write_text(
        json.dumps({"mcpServers": {"tasks": {"command": "x"}, "github": {"command": "y"}}}),
        "utf-8",
    )
    events: list[ProgressEvent] = []
    runtime = CliAgentRuntime(command=ECHO_AGENT_COMMAND, model="default-model")

    result = runtime.run(
        _request(
            workspace,
            resume_session_id="sess-keep",
            mcp_config_path=config_path,
            model="override-model",
        ),
        events.append,
    )

    assert result.session_id == "sess-keep"
    assert result.model == "override-model"
    assert result.num_turns == 3
    tool_events = [event for event in events if event.stage == "tool_use"]
    assert [event.metadata["tool"] for event in tool_events] == [
        "mcp__github__ping",
        "mcp__tasks__ping",
    ]
    assert (workspace / "echo_agent_runs.log").read_text("utf-8").strip() == (
        "sess-keep resumed=True"
    )


def test_echo_agent_error_result_is_unsuccessful(
    tmp_path: Path,
    monkeypatch,
    echo_agent_importable: None,
) -> None:
    monkeypatch.setenv("ECHO_AGENT_MODE", "error")

    result = CliAgentRuntime(command=ECHO_AGENT_COMMAND).run(_request(tmp_path), lambda _: None)

    assert not result.success
    assert result.error == "echo agent failed"
    assert result.session_id is not None


def test_echo_agent_crash_raises_invocation_failure_with_stderr(
    tmp_path: Path,
    monkeypatch,
    echo_agent_importable: None,
) -> None:
    monkeypatch.setenv("ECHO_AGENT_MODE", "crash")

    with pytest.raises(RuntimeInvocationFailure, match="code 3") as excinfo:
        CliAgentRuntime(command=ECHO_AGENT_COMMAND).run(_request(tmp_path), lambda _: None)

    assert "echo agent crashed" in str(excinfo.value)


def test_missing_runtime_binary_raises_invocation_failure(tmp_path: Path) -> None:
    runtime = CliAgentRuntime(command="definitely-not-an-agent-binary-9f2c")

    with pytest.raises(RuntimeInvocationFailure, match="not found"):
        runtime.run(_request(tmp_path), lambda _: None)


def _script_runtime(tmp_path: Path, body: str) -> CliAgentRuntime:
    script = tmp_path / "fake_agent.py"
    script.write_text(body, encoding="utf-8")
    return CliAgentRuntime(command=f"{shlex.quote(sys.executable)} {shlex.quote(str(script))}")


def test_undecodable_output_is_replaced_not_fatal(tmp_path: Path) -> None:
    runtime = _script_runtime(
        tmp_path,
        "import json, sys\n"
        "sys.stdout.buffer.write(b'\\xff\\xfe garbage\\n')\n"
        "result = {'type': 'result', 'subtype': 'success', 'result': 'done',\n"
        "          'session_id': 'sess-bytes', 'total_cost_usd': 0.01}\n"
        "sys.stdout.buffer.write((json.dumps(result) + '\\n').encode())\n",
    )

    result = runtime.run(_request(tmp_path / "ws"), lambda _: None)

    assert result.success
    assert result.output == "done"
    assert result.session_id == "sess-bytes"


def test_stream_error_terminates_child_and_raises_invocation_failure(
    tmp_path: Path,
    monkeypatch,
) -> None:
    runtime = _script_runtime(
        tmp_path,
        "import json, sys, time\n"
        "init = {'type': 'system', 'subtype': 'init', 'session_id': 's', 'model': 'm'}\n"
        "print(json.dumps(init), flush=True)\n"
        "time.sleep(30)\n",
    )
    spawned: list[subprocess.Popen] = []
    real_popen = subprocess.Popen

    def _tracking_popen(*args, **kwargs):
        process = real_popen(*args, **kwargs)
        spawned.append(process)
        return process

    monkeypatch.setattr(subprocess, "Popen", _tracking_popen)

    def _explode(event: ProgressEvent) -> None:
        raise ValueError(f"cannot store {event.stage}")

    started = time.monotonic()
    with pytest.raises(RuntimeInvocationFailure, match="ValueError: cannot store initialized"):
        runtime.run(_request(tmp_path / "ws"), _explode)

    assert time.monotonic() - started < 20
    [process] = spawned
    assert process.poll() is not None
