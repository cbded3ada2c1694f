"""Local stand-in for a stream-JSON agent CLI, used by runtime integration tests.

`ECHO_AGENT_MODE` selects the behaviour: `ok` (default) finishes successfully,
`error` reports an error result, `crash` exits non-zero without a result.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from uuid import uuid4


def main(argv: list[str] | None = None) -> int:
    """Emit a deterministic stream-JSON transcript for the given prompt."""

    parser = argparse.ArgumentParser()
    parser.add_argument("-p", "--print", dest="prompt", required=True)
    parser.add_argument("--output-format", default="stream-json")
    parser.add_argument("--verbose", action="store_true")
    parser.add_argument("--max-turns", type=int, default=1)
    parser.add_argument("--model", default="echo-model")
    parser.add_argument("--resume", default=None)
    parser.add_argument("--mcp-config", default=None)
    parser.add_argument("--append-system-prompt", default=None)
    args = parser.parse_args(argv)

    mode = os.getenv("ECHO_AGENT_MODE", "ok").strip().lower()
    session_id = args.resume or f"echo-{uuid4().hex[:12]}"
    servers = _mcp_server_names(args.mcp_config)

    _emit({"type": "system", "subtype": "init", "session_id": session_id, "model": args.model})
    if mode == "crash":
        print("echo agent crashed", file=sys.stderr)
        return 3

    text = args.prompt.strip().splitlines()[0] if args.prompt.strip() else "empty prompt"
    _emit(
        {
            "type": "assistant",
            "message": {"content": [{"type": "text", "text": f"Working on: {text}"}]},
        },
    )
    for name in servers:
        _emit(
            {
                "type": "assistant",
                "message": {
                    "content": [{"type": "tool_use", "name": f"mcp__{name}__ping", "input": {}}],
                },
            },
        )

    with Path("echo_agent_runs.log").open("a", encoding="utf-8") as handle:
        handle.write(f"{session_id} resumed={args.resume is not None}\n")

    is_error = mode == "error"
    _emit(
        {
            "type": "result",
            "subtype": "success",
            "is_error": is_error,
            "result": "echo agent failed" if is_error else f"Completed: {text}",
            "session_id": session_id,
            "num_turns": 1 + len(servers),
            "total_cost_usd": 0.0123,
            "usage": {"input_tokens": 120, "output_tokens": 30},
        },
    )
    return 1 if is_error else 0


def _mcp_server_names(path: str | None) -> list[str]:
    if not path:
        return []
    payload = json.loads(Path(path).read_text("utf-8"))
    servers = payload.get("mcpServers", {})
    return sorted(servers) if isinstance(servers, dict) else []


def _emit(payload: dict[str, object]) -> None:
    sys.stdout.write(json.dumps(payload) + "\n")
    sys.stdout.flush()


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
