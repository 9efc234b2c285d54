from __future__ import annotations

import asyncio
import sys
import unittest
from pathlib import Path
from typing import List, Tuple

from mcp_vcs.jsonrpc_codec import Request, encode
from mcp_vcs.mcp_types import ServerDescriptor, SpawnError, TransportClosed
from mcp_vcs.stdio_transport import StdioTransport

DEMO_SERVER = Path(__file__).resolve().parents[1] / "mcp_servers" / "demo" / "simple_server.py"


def demo_descriptor(*extra_args: str) -> ServerDescriptor:
    return ServerDescriptor(name="demo", command=sys.executable, args=[str(DEMO_SERVER), *extra_args])


class StdioTransportTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.lines: List[bytes] = []
        self.exits: List[Tuple[int | None, str]] = []
        self.exited = asyncio.Event()

    def _on_exit(self, returncode: int | None, stderr_hint: str) -> None:
        self.exits.append((returncode, stderr_hint))
        self.exited.set()

    async def _spawn(self, descriptor: ServerDescriptor, grace: float = 0.1) -> StdioTransport:
        transport = await StdioTransport.spawn(
            descriptor,
            on_line=self.lines.append,
            on_exit=self._on_exit,
            startup_grace_seconds=grace,
        )
        self.addAsyncCleanup(transport.close)
        return transport

    async def test_missing_command_is_spawn_error(self) -> None:
        descriptor = ServerDescriptor(name="ghost", command="definitely-not-a-real-mcp-server-binary")
        with self.assertRaises(SpawnError) as ctx:
            await self._spawn(descriptor)
        self.assertIn("ghost", str(ctx.exception))

    async def test_immediate_exit_is_spawn_error_with_stderr(self) -> None:
        with self.assertRaises(SpawnError) as ctx:
            await self._spawn(demo_descriptor("--exit-immediately"), grace=5)
        self.assertIn("rc=2", str(ctx.exception))
        self.assertIn("backend not configured", str(ctx.exception))

    async def test_lines_are_delivered_to_handler(self) -> None:
        transport = await self._spawn(demo_descriptor())
        await transport.send(encode(Request(id=1, method="tools/list", params={})))
        for _ in range(100):
            if self.lines:
                break
            await asyncio.sleep(0.05)
        self.assertEqual(len(self.lines), 1)
        self.assertIn(b'"git_status"', self.lines[0])

    async def test_unexpected_exit_is_reported_once_with_stderr(self) -> None:
        transport = await self._spawn(demo_descriptor())
        call = Request(id=1, method="tools/call", params={"name": "crash", "arguments": {}})
        await transport.send(encode(call))
        await asyncio.wait_for(self.exited.wait(), timeout=10)
        self.assertEqual(len(self.exits), 1)
        returncode, hint = self.exits[0]
        self.assertEqual(returncode, 3)
        self.assertIn("simulated crash", hint)
        with self.assertRaises(TransportClosed):
            await transport.send(encode(Request(id=2, method="tools/list")))

    async def test_close_is_idempotent_and_not_reported_as_exit(self) -> None:
        transport = await self._spawn(demo_descriptor())
        await transport.close()
        await transport.close()
        self.assertTrue(transport.is_closed)
        self.assertEqual(self.exits, [])
        with self.assertRaises(TransportClosed):
            await transport.send(b"{}\n")


class _ExitsBeforeKill:
    """Process stand-in that ignores SIGTERM and is gone by the time kill() runs."""

    pid = 4242
    stdin = None
    stdout = None
    stderr = None

    def __init__(self) -> None:
        self.returncode: int | None = None
        self.exited = asyncio.Event()

    def terminate(self) -> None:
        pass

    def kill(self) -> None:
        self.returncode = 0
        self.exited.set()
        raise ProcessLookupError

    async def wait(self) -> int | None:
        await self.exited.wait()
        return self.returncode


class StdioTransportCloseTests(unittest.IsolatedAsyncioTestCase):
    async def test_close_tolerates_process_gone_before_kill(self) -> None:
        proc = _ExitsBeforeKill()
        transport = StdioTransport(
            demo_descriptor(),
            proc,  # type: ignore[arg-type]
            on_line=lambda line: None,
            on_exit=lambda returncode, hint: None,
        )
        await transport.close(grace_seconds=0.05)
        self.assertTrue(transport.is_closed)
        self.assertEqual(transport.returncode, 0)


if __name__ == "__main__":
    unittest.main()
