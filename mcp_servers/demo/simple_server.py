#!/usr/bin/env python3
"""
Line-delimited stdio MCP server that imitates the git backend.

Besides git_status/git_commit it exposes tools for exercising client edge
cases: deferred replies, silence, garbage frames, tool errors and crashes.

Usage: simple_server.py [--exit-immediately]
"""

from __future__ import annotations

import json
import sys
from typing import Any, Dict, List

deferred: List[Any] = []


def write_message(payload: Dict[str, Any]) -> None:
    sys.stdout.write(json.dumps(payload, ensure_ascii=False) + "\n")
    sys.stdout.flush()


def ok(request_id: Any, result: Dict[str, Any]) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def err(request_id: Any, code: int, message: str) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


def text_result(text: str, is_error: bool = False) -> Dict[str, Any]:
    return {"content": [{"type": "text", "text": text}], "isError": is_error}


TOOLS = [
    {"name": "git_status", "description": "Show the working tree status."},
    {"name": "git_commit", "description": "Record changes to the repository."},
    {"name": "echo", "description": "Return the 'text' argument."},
    {"name": "defer", "description": "Hold the reply until 'release' is called."},
    {"name": "release", "description": "Reply, then answer deferred calls newest first."},
    {"name": "never", "description": "Never reply."},
    {"name": "noisy", "description": "Emit garbage and an unsolicited response before replying."},
    {"name": "fail", "description": "Return a tool-level error."},
    {"name": "crash", "description": "Exit the server process."},
]


def handle_tools_call(request_id: Any, params: Dict[str, Any]) -> None:
    name = str(params.get("name", "")).strip()
    arguments = params.get("arguments")
    if not isinstance(arguments, dict):
        arguments = {}

    if name == "git_status":
        repo_path = arguments.get("repo_path", ".")
        write_message(ok(request_id, text_result(f"Repository status ({repo_path}):\nOn branch main")))
    elif name == "git_commit":
        message = str(arguments.get("message", "")).strip()
        if not message:
            write_message(err(request_id, -32602, "Missing required argument: message"))
            return
        write_message(ok(request_id, text_result(f"Changes committed: {message}")))
    elif name == "echo":
        write_message(ok(request_id, text_result(str(arguments.get("text", "")))))
    elif name == "defer":
        deferred.append((request_id, str(arguments.get("text", ""))))
    elif name == "release":
        write_message(ok(request_id, text_result(str(arguments.get("text", "released")))))
        while deferred:
            held_id, held_text = deferred.pop()
            write_message(ok(held_id, text_result(held_text)))
    elif name == "never":
        return
    elif name == "noisy":
        sys.stdout.write("this is not json\n")
        write_message({"jsonrpc": "2.0", "id": 987654, "result": {"content": []}})
        write_message({"jsonrpc": "2.0", "method": "notifications/message", "params": {"level": "info"}})
        write_message(ok(request_id, text_result("after noise")))
    elif name == "fail":
        write_message(ok(request_id, text_result(str(arguments.get("text", "tool failed")), is_error=True)))
    elif name == "crash":
        sys.stderr.write("simulated crash\n")
        sys.stderr.flush()
        sys.exit(3)
    else:
        write_message(err(request_id, -32602, f"Unknown tool: {name}"))


def main() -> int:
    if "--exit-immediately" in sys.argv[1:]:
        sys.stderr.write("fatal: backend not configured\n")
        return 2

    while True:
        raw = sys.stdin.readline()
        if not raw:
            break
        line = raw.strip()
        if not line:
            continue
        try:
            request = json.loads(line)
        except json.JSONDecodeError:
            write_message(err(None, -32700, "Parse error"))
            continue
        method = request.get("method", "")
        request_id = request.get("id")
        if request_id is None:
            continue
        if method == "initialize":
            write_message(
                ok(
                    request_id,
                    {
                        "protocolVersion": "2024-11-05",
                        "capabilities": {"tools": {}, "resources": {}},
                        "serverInfo": {"name": "mcp-vcs-demo", "version": "0.1.0"},
                    },
                )
            )
        elif method == "tools/list":
            write_message(ok(request_id, {"tools": TOOLS}))
        elif method == "tools/call":
            params = request.get("params")
            handle_tools_call(request_id, params if isinstance(params, dict) else {})
        elif method == "resources/list":
            write_message(ok(request_id, {"resources": [{"uri": "git://demo/README", "name": "README"}]}))
        elif method == "resources/read":
            uri = str((request.get("params") or {}).get("uri", ""))
            if uri != "git://demo/README":
                write_message(err(request_id, -32602, f"Unknown resource: {uri}"))
            else:
                write_message(ok(request_id, {"contents": [{"uri": uri, "text": "demo readme"}]}))
        else:
            write_message(err(request_id, -32601, f"Method not found: {method}"))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
