"""Subprocess runtime for stream-JSON agent CLIs."""

from __future__ import annotations

import json
import logging
import os
import shlex
import subprocess
from dataclasses import dataclass, field
from typing import Any

from agent_workforce.orchestrator.backend.base import (
    ProgressCallback,
    ProgressEvent,
    RuntimeRunRequest,
    RuntimeRunResult,
)
from agent_workforce.orchestrator.errors import RuntimeInvocationFailure

logger = logging.getLogger(__name__)

_THINKING_PREVIEW_CHARS = 2_000
_TOOL_INPUT_PREVIEW_CHARS = 500
_STDERR_TAIL_CHARS = 1_000


@dataclass(slots=True)
class _StreamState:
    session_id: str | None = None
    model: str | None = None
    result: dict[str, Any] | None = None
    texts: list[str] = field(default_factory=list)


class CliAgentRuntime:
    """Run `claude -p --output-format stream-json` (or a compatible CLI) in the workspace."""

    def __init__(
        self,
        *,
        command: str = "claude",
        model: str | None = None,
        extra_args: tuple[str, ...] = (),
    ) -> None:
        self.command = command
        self.model = model
        self.extra_args = extra_args

    def run(self, request: RuntimeRunRequest, on_event: ProgressCallback) -> RuntimeRunResult:
        argv = build_run_args(
            command=self.command,
            request=request,
            model=request.model or self.model,
            extra_args=self.extra_args,
        )
        env = os.environ.copy()
        env.update(request.env)

        meta_dir = request.workspace / "meta"
        meta_dir.mkdir(parents=True, exist_ok=True)
        stdout_log = meta_dir / "agent_stdout.jsonl"
        stderr_log = meta_dir / "agent_stderr.log"

        state = _StreamState()
        with (
            stdout_log.open("w", encoding="utf-8") as stdout_copy,
            stderr_log.open("w", encoding="utf-8") as stderr_handle,
        ):
            try:
                process = subprocess.Popen(  # noqa: S603
                    argv,
                    cwd=request.workspace,
                    env=env,
                    stdout=subprocess.PIPE,
                    stderr=stderr_handle,
                    text=True,
                    encoding="utf-8",
                    errors="replace",
                )
            except FileNotFoundError as error:
                raise RuntimeInvocationFailure(
                    f"Agent runtime command not found: {argv[0]}",
                ) from error
            except OSError as error:
                raise RuntimeInvocationFailure(
                    f"Agent runtime failed to start: {error}",
                ) from error

            assert process.stdout is not None
            try:
                for line in process.stdout:
                    stdout_copy.write(line)
                    _consume_line(line, state=state, on_event=on_event)
                returncode = process.wait()
            except Exception as error:
                _terminate_process(process)
                raise RuntimeInvocationFailure(
                    f"Agent runtime stream failed: {type(error).__name__}: {error}",
                ) from error
            except BaseException:
                _terminate_process(process)
                raise
            finally:
                process.stdout.close()

        if state.result is None:
            stderr_tail = _tail(stderr_log.read_text("utf-8", errors="replace"))
            raise RuntimeInvocationFailure(
                f"Agent runtime exited with code {returncode} without a result."
                + (f" stderr: {stderr_tail}" if stderr_tail else ""),
            )
        return _to_run_result(state, returncode=returncode)


def build_run_args(
    *,
    command: str,
    request: RuntimeRunRequest,
    model: str | None,
    extra_args: tuple[str, ...] = (),
) -> list[str]:
    head = shlex.split(command.strip())
    if not head:
        raise RuntimeInvocationFailure("Agent runtime command is empty.")

    argv = [
        *head,
        "-p",
        request.prompt,
        "--output-format",
        "stream-json",
        "--verbose",
        "--max-turns",
        str(request.max_turns),
    ]
    if model:
        argv.extend(["--model", model])
    if request.resume_session_id:
        argv.extend(["--resume", request.resume_session_id])
    if request.mcp_config_path is not None:
        argv.extend(["--mcp-config", str(request.mcp_config_path)])
    if request.system_prompt:
        argv.extend(["--append-system-prompt", request.system_prompt])
    argv.extend(extra_args)
    return argv


def _consume_line(line: str, *, state: _StreamState, on_event: ProgressCallback) -> None:
    stripped = line.strip()
    if not stripped:
        return
    try:
        message = json.loads(stripped)
    except json.JSONDecodeError:
        logger.debug("Ignoring non-JSON runtime output: %s", stripped[:200])
        return
    if not isinstance(message, dict):
        return

    message_type = message.get("type")
    if message_type == "system" and message.get("subtype") == "init":
        state.session_id = message.get("session_id") or state.session_id
        state.model = message.get("model") or state.model
        on_event(
            ProgressEvent(
                stage="initialized",
                message=f"Session started (model={state.model or 'unknown'})",
                metadata={
                    "session_id": state.session_id,
                    "model": state.model,
                    "tools": message.get("tools") or [],
                },
            ),
        )
    elif message_type == "assistant":
        _consume_assistant(message, state=state, on_event=on_event)
    elif message_type == "result":
        state.result = message
        state.session_id = message.get("session_id") or state.session_id


def _consume_assistant(
    message: dict[str, Any],
    *,
    state: _StreamState,
    on_event: ProgressCallback,
) -> None:
    body = message.get("message")
    content = body.get("content") if isinstance(body, dict) else None
    if not isinstance(content, list):
        return
    for item in content:
        if not isinstance(item, dict):
            continue
        if item.get("type") == "text":
            text = str(item.get("text") or "").strip()
            if not text:
                continue
            state.texts.append(text)
            on_event(ProgressEvent(stage="thinking", message=text[:_THINKING_PREVIEW_CHARS]))
        elif item.get("type") == "tool_use":
            name = str(item.get("name") or "unknown")
            tool_input = json.dumps(item.get("input") or {}, ensure_ascii=False, default=str)
            on_event(
                ProgressEvent(
                    stage="tool_use",
                    message=f"Using tool {name}",
                    metadata={"tool": name, "input": tool_input[:_TOOL_INPUT_PREVIEW_CHARS]},
                ),
            )


def _to_run_result(state: _StreamState, *, returncode: int) -> RuntimeRunResult:
    result = state.result or {}
    usage = result.get("usage") if isinstance(result.get("usage"), dict) else {}
    output = result.get("result")
    if not isinstance(output, str):
        output = "\n\n".join(state.texts) or None

    is_error = bool(result.get("is_error")) or returncode != 0
    error: str | None = None
    if is_error:
        subtype = result.get("subtype")
        error = (
            output
            if output and subtype in (None, "success")
            else f"Agent runtime reported {subtype or 'an error'} (exit code {returncode})."
        )

    return RuntimeRunResult(
        success=not is_error,
        output=output,
        session_id=state.session_id,
        cost_usd=_optional_float(result.get("total_cost_usd")),
        num_turns=_optional_int(result.get("num_turns")),
        model=state.model,
        error=error,
        input_tokens=_optional_int(usage.get("input_tokens")),
        output_tokens=_optional_int(usage.get("output_tokens")),
    )


def _optional_float(value: object) -> float | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    return float(value)


def _optional_int(value: object) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    return int(value)


def _terminate_process(process: subprocess.Popen[str]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)


def _tail(text: str) -> str:
    stripped = text.strip()
    if len(stripped) <= _STDERR_TAIL_CHARS:
        return stripped
    return "..." + stripped[-_STDERR_TAIL_CHARS:]
