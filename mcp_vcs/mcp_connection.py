from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Dict, List, Set

from . import __version__
from .jsonrpc_codec import Message, Notification, Request, RequestId, Response, decode, encode
from .mcp_types import (
    MCP_PROTOCOL_VERSION,
    METHOD_NOT_FOUND,
    DecodeError,
    ErrorInfo,
    MCPError,
    ProtocolError,
    ServerDescriptor,
    ToolCallTimeout,
    ToolResult,
    TransportClosed,
    TransportError,
)
from .stdio_transport import StdioTransport

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    FAILED = "failed"


class MCPConnection:
    """
    JSON-RPC client for one stdio MCP server.

    Requests are multiplexed by id: every call registers a future in the
    pending table and the transport's read loop resolves it. Ids come from a
    counter that is never reset, so an id is not reused while this object
    lives, even across restarts.
    """

    def __init__(self, descriptor: ServerDescriptor, *, startup_grace_seconds: float = 0.1) -> None:
        self.descriptor = descriptor
        self.state = ConnectionState.STOPPED
        self.last_error: str | None = None
        self._startup_grace_seconds = startup_grace_seconds
        self._transport: StdioTransport | None = None
        self._pending: Dict[RequestId, asyncio.Future[Response]] = {}
        self._next_request_id = 1
        self._background: Set[asyncio.Task[None]] = set()

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def start(self) -> None:
        if self.state == ConnectionState.RUNNING:
            return
        if self.state not in {ConnectionState.STOPPED, ConnectionState.FAILED}:
            raise MCPError(f"{self.name}: cannot start while {self.state.value}")
        if self._transport is not None:
            # Leftover from a failed run; the process is already gone.
            await self._transport.close()
            self._transport = None

        self.state = ConnectionState.STARTING
        try:
            self._transport = await StdioTransport.spawn(
                self.descriptor,
                on_line=self._on_line,
                on_exit=self._on_exit,
                startup_grace_seconds=self._startup_grace_seconds,
            )
        except TransportError as err:
            self.state = ConnectionState.FAILED
            self.last_error = str(err)
            raise
        self.state = ConnectionState.RUNNING
        self.last_error = None

        if self.descriptor.handshake:
            try:
                await self.initialize()
            except MCPError as err:
                self.last_error = str(err)
                await self._shutdown_transport(TransportClosed(f"{self.name}: handshake failed"))
                self.state = ConnectionState.FAILED
                raise

    async def stop(self) -> None:
        if self.state in {ConnectionState.STOPPED, ConnectionState.STOPPING}:
            return
        self.state = ConnectionState.STOPPING
        await self._shutdown_transport(TransportClosed(f"{self.name}: connection stopped"))
        self.state = ConnectionState.STOPPED
        logger.info("%s: connection stopped", self.name)

    async def _shutdown_transport(self, reason: TransportClosed) -> None:
        self._fail_pending(reason)
        for task in list(self._background):
            task.cancel()
        if self._transport is not None:
            await self._transport.close()
            self._transport = None

    def _allocate_id(self) -> int:
        request_id = self._next_request_id
        self._next_request_id += 1
        return request_id

    def _fail_pending(self, reason: TransportClosed) -> None:
        pending, self._pending = self._pending, {}
        for waiter in pending.values():
            if not waiter.done():
                waiter.set_exception(TransportClosed(str(reason)))

    def _require_transport(self) -> StdioTransport:
        if self.state != ConnectionState.RUNNING or self._transport is None:
            detail = f"; {self.last_error}" if self.last_error else ""
            raise TransportClosed(f"{self.name}: connection is {self.state.value}{detail}")
        return self._transport

    async def request(self, method: str, params: Dict[str, object] | None = None) -> Response:
        transport = self._require_transport()
        request_id = self._allocate_id()
        waiter: asyncio.Future[Response] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = waiter
        timeout = self.descriptor.timeout_seconds
        try:
            logger.debug("%s: send method=%s id=%s", self.name, method, request_id)
            await transport.send(encode(Request(id=request_id, method=method, params=params)))
            return await asyncio.wait_for(waiter, timeout=timeout)
        except asyncio.TimeoutError as err:
            raise ToolCallTimeout(f"{self.name}: {method} timed out after {timeout}s") from err
        finally:
            self._pending.pop(request_id, None)
            if waiter.done() and not waiter.cancelled():
                # Failed by teardown while send() was still draining.
                waiter.exception()

    async def notify(self, method: str, params: Dict[str, object] | None = None) -> None:
        transport = self._require_transport()
        await transport.send(encode(Notification(method=method, params=params)))

    async def initialize(self) -> Dict[str, object]:
        response = await self.request(
            "initialize",
            {
                "protocolVersion": MCP_PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": {"name": "mcp-vcs", "version": __version__},
            },
        )
        if response.error is not None:
            raise ProtocolError(response.error)
        await self.notify("notifications/initialized", {})
        result = response.result
        return result if isinstance(result, dict) else {}

    async def call_tool(self, name: str, arguments: Dict[str, object] | None = None) -> ToolResult:
        response = await self.request("tools/call", {"name": name, "arguments": arguments or {}})
        if response.error is not None:
            return ToolResult.from_error(response.error)
        return ToolResult.from_result(response.result)

    async def _list(self, method: str, key: str) -> List[Dict[str, object]]:
        response = await self.request(method, {})
        if response.error is not None:
            raise ProtocolError(response.error)
        result = response.result
        if not isinstance(result, dict):
            return []
        items = result.get(key)
        if not isinstance(items, list):
            return []
        return [item for item in items if isinstance(item, dict)]

    async def list_tools(self) -> List[Dict[str, object]]:
        return await self._list("tools/list", "tools")

    async def list_resources(self) -> List[Dict[str, object]]:
        return await self._list("resources/list", "resources")

    async def read_resource(self, uri: str) -> ToolResult:
        response = await self.request("resources/read", {"uri": uri})
        if response.error is not None:
            return ToolResult.from_error(response.error)
        result = response.result
        if isinstance(result, dict) and isinstance(result.get("contents"), list):
            result = {"content": result["contents"]}
        return ToolResult.from_result(result)

    def _on_line(self, line: bytes) -> None:
        try:
            message = decode(line)
        except DecodeError as err:
            logger.warning("%s: malformed frame %s: %r", self.name, err.error, line[:200])
            if err.request_id is not None:
                self._resolve(Response(id=err.request_id, error=err.error))
            return
        self._dispatch(message)

    def _dispatch(self, message: Message) -> None:
        if isinstance(message, Response):
            self._resolve(message)
        elif isinstance(message, Request):
            logger.debug("%s: server request method=%s not supported", self.name, message.method)
            reply = Response(
                id=message.id,
                error=ErrorInfo(code=METHOD_NOT_FOUND, message=f"Method not found: {message.method}"),
            )
            task = asyncio.get_running_loop().create_task(self._send_quietly(reply))
            self._background.add(task)
            task.add_done_callback(self._background.discard)
        else:
            logger.debug("%s: notification method=%s", self.name, message.method)

    def _resolve(self, response: Response) -> None:
        waiter = self._pending.pop(response.id, None) if response.id is not None else None
        if waiter is None or waiter.done():
            logger.warning("%s: dropping unsolicited response id=%s", self.name, response.id)
            return
        waiter.set_result(response)

    async def _send_quietly(self, message: Message) -> None:
        if self._transport is None:
            return
        try:
            await self._transport.send(encode(message))
        except TransportError as err:
            logger.debug("%s: could not answer server request: %s", self.name, err)

    def _on_exit(self, returncode: int | None, stderr_hint: str) -> None:
        if self.state not in {ConnectionState.RUNNING, ConnectionState.STARTING}:
            return
        self.state = ConnectionState.FAILED
        self.last_error = f"{self.name}: server process exited (rc={returncode}; {stderr_hint})"
        self._fail_pending(TransportClosed(self.last_error))
