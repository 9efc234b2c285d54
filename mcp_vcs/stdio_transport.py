from __future__ import annotations

import asyncio
import logging
import os
from collections import deque
from typing import Callable, Deque

from .mcp_types import ServerDescriptor, SpawnError, TransportClosed

logger = logging.getLogger(__name__)

LineHandler = Callable[[bytes], None]
ExitHandler = Callable[[int | None, str], None]

STDERR_TAIL_LINES = 50
STREAM_LIMIT_BYTES = 16 * 1024 * 1024


class StdioTransport:
    """
    Owns one child process and its stdio pipes.

    Complete stdout lines go to ``on_line``; an exit the transport did not
    ask for is reported once through ``on_exit(returncode, stderr_hint)``.
    """

    def __init__(
        self,
        descriptor: ServerDescriptor,
        proc: asyncio.subprocess.Process,
        *,
        on_line: LineHandler,
        on_exit: ExitHandler,
    ) -> None:
        self.descriptor = descriptor
        self._proc = proc
        self._on_line = on_line
        self._on_exit = on_exit
        self._stderr_tail: Deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        self._closing = False
        self._closed = False
        self._stdout_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[None] | None = None

    @classmethod
    async def spawn(
        cls,
        descriptor: ServerDescriptor,
        *,
        on_line: LineHandler,
        on_exit: ExitHandler,
        startup_grace_seconds: float = 0.1,
    ) -> "StdioTransport":
        logger.info("spawn %s: %s %s", descriptor.name, descriptor.command, " ".join(descriptor.args))
        try:
            proc = await asyncio.create_subprocess_exec(
                descriptor.command,
                *descriptor.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, **descriptor.env},
                limit=STREAM_LIMIT_BYTES,
            )
        except OSError as err:
            raise SpawnError(f"{descriptor.name}: failed to launch {descriptor.command!r}: {err}") from err
        if proc.stdin is None or proc.stdout is None:
            raise SpawnError(f"{descriptor.name}: failed to open stdio pipes")

        try:
            returncode = await asyncio.wait_for(proc.wait(), timeout=startup_grace_seconds)
        except asyncio.TimeoutError:
            returncode = None
        if returncode is not None:
            stderr_text = ""
            if proc.stderr is not None:
                try:
                    raw = await asyncio.wait_for(proc.stderr.read(), timeout=1)
                    stderr_text = raw.decode("utf-8", errors="replace").strip()
                except asyncio.TimeoutError:
                    stderr_text = ""
            hint = f"stderr={stderr_text}" if stderr_text else "stderr=empty"
            raise SpawnError(f"{descriptor.name}: process exited immediately (rc={returncode}; {hint})")

        transport = cls(descriptor, proc, on_line=on_line, on_exit=on_exit)
        transport._start_readers()
        return transport

    @property
    def pid(self) -> int:
        return self._proc.pid

    @property
    def returncode(self) -> int | None:
        return self._proc.returncode

    @property
    def is_closed(self) -> bool:
        return self._closed or self._proc.returncode is not None

    def stderr_hint(self) -> str:
        if not self._stderr_tail:
            return "stderr=empty"
        preview = " | ".join(list(self._stderr_tail)[-5:])
        return f"stderr_tail={preview}"

    def _start_readers(self) -> None:
        self._stdout_task = asyncio.create_task(self._read_stdout())
        if self._proc.stderr is not None:
            self._stderr_task = asyncio.create_task(self._consume_stderr())

    async def _consume_stderr(self) -> None:
        assert self._proc.stderr is not None
        while True:
            chunk = await self._proc.stderr.readline()
            if not chunk:
                return
            text = chunk.decode("utf-8", errors="replace").rstrip("\n")
            self._stderr_tail.append(text)
            logger.debug("%s stderr: %s", self.descriptor.name, text)

    async def _read_stdout(self) -> None:
        assert self._proc.stdout is not None
        stream = self._proc.stdout
        while True:
            try:
                line = await stream.readline()
            except ValueError as err:
                logger.warning("%s: dropping oversized stdout line (%s)", self.descriptor.name, err)
                continue
            if not line:
                break
            stripped = line.strip()
            if not stripped:
                continue
            try:
                self._on_line(stripped)
            except Exception:  # noqa: BLE001
                logger.exception("%s: line handler failed", self.descriptor.name)

        returncode = await self._proc.wait()
        if self._stderr_task is not None:
            # Let the stderr reader drain so the tail is complete.
            await asyncio.wait({self._stderr_task}, timeout=0.5)
        if self._closing:
            return
        logger.warning("%s: process exited (rc=%s; %s)", self.descriptor.name, returncode, self.stderr_hint())
        self._on_exit(returncode, self.stderr_hint())

    async def send(self, line: bytes) -> None:
        if self.is_closed or self._proc.stdin is None:
            raise TransportClosed(
                f"{self.descriptor.name}: transport closed (rc={self._proc.returncode}; {self.stderr_hint()})"
            )
        try:
            self._proc.stdin.write(line)
            await self._proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as err:
            raise TransportClosed(
                f"{self.descriptor.name}: broken pipe (rc={self._proc.returncode}; {self.stderr_hint()})"
            ) from err

    async def close(self, grace_seconds: float = 2.0) -> None:
        if self._closed:
            return
        self._closing = True
        self._closed = True
        if self._proc.stdin is not None and not self._proc.stdin.is_closing():
            self._proc.stdin.close()
        if self._proc.returncode is None:
            try:
                self._proc.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(self._proc.wait(), timeout=grace_seconds)
            except asyncio.TimeoutError:
                logger.warning("%s: terminate timed out, killing pid=%s", self.descriptor.name, self._proc.pid)
                try:
                    self._proc.kill()
                except ProcessLookupError:
                    pass
                await self._proc.wait()
        for task in (self._stdout_task, self._stderr_task):
            if task is None or task.done():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._stdout_task = None
        self._stderr_task = None
