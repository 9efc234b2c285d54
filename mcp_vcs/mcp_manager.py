from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, List, Sequence

from . import vcs_operations as ops
from .mcp_connection import ConnectionState, MCPConnection
from .mcp_types import Capability, ConfigurationError, MCPError, ServerDescriptor, ToolResult
from .server_registry import ServerRegistry
from .vcs_operations import VcsOperation, VcsOperationResult

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[ServerDescriptor], MCPConnection]


class MCPManager:
    """
    Owns one connection per started server and routes operations to them.

    ``execute_vcs_operation`` is the error boundary: every failure below it
    comes back as ``VcsOperationResult(success=False)``.
    """

    def __init__(
        self,
        registry: ServerRegistry | None = None,
        *,
        connection_factory: ConnectionFactory = MCPConnection,
    ) -> None:
        self.registry = registry if registry is not None else ServerRegistry.with_defaults()
        self._connection_factory = connection_factory
        self._connections: Dict[str, MCPConnection] = {}
        self._active: List[str] = []
        self._locks: Dict[str, asyncio.Lock] = {}
        self.last_errors: Dict[str, str] = {}

    def _lock_for(self, name: str) -> asyncio.Lock:
        lock = self._locks.get(name)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[name] = lock
        return lock

    @property
    def active_servers(self) -> List[str]:
        return [
            name
            for name in self._active
            if name in self._connections and self._connections[name].state == ConnectionState.RUNNING
        ]

    def get_connection(self, name: str) -> MCPConnection | None:
        return self._connections.get(name)

    async def start_server(self, name: str) -> bool:
        descriptor = self.registry.get(name)
        if descriptor is None:
            logger.error("Unknown server: %s", name)
            self.last_errors[name] = f"Unknown server: {name}"
            return False
        if not descriptor.enabled:
            logger.info("Server %s is disabled", name)
            return False

        async with self._lock_for(name):
            self.registry.freeze()
            connection = self._connections.get(name)
            if connection is not None and connection.state == ConnectionState.RUNNING:
                if name not in self._active:
                    self._active.append(name)
                return True
            created = connection is None
            if connection is None:
                connection = self._connection_factory(descriptor)
                # Visible to stop_all_servers while the spawn is in flight.
                self._connections[name] = connection
            try:
                await connection.start()
            except MCPError as err:
                logger.error("Failed to start %s: %s", name, err)
                self.last_errors[name] = str(err)
                if created:
                    self._connections.pop(name, None)
                return False
            if name not in self._active:
                self._active.append(name)
            self.last_errors.pop(name, None)
            logger.info("Started MCP server: %s", name)
            return True

    async def start_all_servers(self, names: Sequence[str] | None = None) -> List[str]:
        targets = list(names) if names is not None else self.registry.names()
        outcomes = await asyncio.gather(*(self.start_server(name) for name in targets), return_exceptions=True)
        started: List[str] = []
        for name, outcome in zip(targets, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("Failed to start %s: %r", name, outcome)
                self.last_errors[name] = str(outcome) or type(outcome).__name__
                continue
            if outcome:
                started.append(name)
        return started

    async def stop_server(self, name: str) -> None:
        async with self._lock_for(name):
            connection = self._connections.pop(name, None)
            if name in self._active:
                self._active.remove(name)
            if connection is None:
                return
            await connection.stop()
            logger.info("Stopped MCP server: %s", name)

    async def stop_all_servers(self) -> None:
        # A start holding its lock is waited for, then stopped.
        for name in list(dict.fromkeys([*self._connections, *self._locks])):
            await self.stop_server(name)
        self._active.clear()

    async def aclose(self) -> None:
        await self.stop_all_servers()

    def _resolve_connection(self, name: str) -> MCPConnection:
        connection = self._connections.get(name)
        if connection is not None:
            return connection
        descriptor = self.registry.get(name)
        if descriptor is None:
            raise ConfigurationError(f"Server {name} not available (unknown server)")
        if not descriptor.enabled:
            raise ConfigurationError(f"Server {name} not available (disabled)")
        raise ConfigurationError(f"Server {name} not available (not started)")

    @staticmethod
    def _from_tool_result(server_name: str, result: ToolResult) -> VcsOperationResult:
        if result.is_error:
            return VcsOperationResult.failure(
                server_name,
                result.first_text() or "Unknown error",
                error_code=result.error.code if result.error is not None else None,
            )
        return VcsOperationResult(server_name=server_name, success=True, content=result.joined_text())

    async def execute_vcs_operation(self, operation: VcsOperation) -> VcsOperationResult:
        server_name = operation.server_name
        try:
            connection = self._resolve_connection(server_name)
            result = await connection.call_tool(operation.tool_name, dict(operation.arguments))
        except MCPError as err:
            logger.warning("%s %s failed: %s", server_name, operation.tool_name, err)
            return VcsOperationResult.failure(server_name, str(err) or type(err).__name__)
        except Exception as err:  # noqa: BLE001
            logger.exception("%s %s raised unexpectedly", server_name, operation.tool_name)
            return VcsOperationResult.failure(server_name, f"{server_name}: {err!r}")
        return self._from_tool_result(server_name, result)

    async def list_available_tools(self, name: str) -> List[str]:
        connection = self._connections.get(name)
        if connection is None:
            return []
        try:
            tools = await connection.list_tools()
        except MCPError as err:
            logger.error("Failed to list tools for %s: %s", name, err)
            return []
        return [str(tool["name"]) for tool in tools if tool.get("name")]

    async def list_available_resources(self, name: str) -> List[str]:
        connection = self._connections.get(name)
        if connection is None or Capability.RESOURCES not in connection.descriptor.capabilities:
            return []
        try:
            resources = await connection.list_resources()
        except MCPError as err:
            logger.error("Failed to list resources for %s: %s", name, err)
            return []
        return [str(resource["uri"]) for resource in resources if resource.get("uri")]

    async def read_resource(self, name: str, uri: str) -> VcsOperationResult:
        try:
            connection = self._resolve_connection(name)
            result = await connection.read_resource(uri)
        except MCPError as err:
            logger.warning("%s resources/read %s failed: %s", name, uri, err)
            return VcsOperationResult.failure(name, str(err) or type(err).__name__)
        return self._from_tool_result(name, result)

    def get_server_status(self) -> Dict[str, bool]:
        active = set(self.active_servers)
        return {name: name in active for name in self.registry.names()}

    async def git_status(self, repo_path: str = ".") -> VcsOperationResult:
        return await self.execute_vcs_operation(ops.git_status(repo_path))

    async def git_commit(self, message: str, repo_path: str = ".") -> VcsOperationResult:
        return await self.execute_vcs_operation(ops.git_commit(message, repo_path))

    async def git_add(self, files: Sequence[str], repo_path: str = ".") -> VcsOperationResult:
        return await self.execute_vcs_operation(ops.git_add(files, repo_path))

    async def git_log(self, repo_path: str = ".", max_count: int = 10) -> VcsOperationResult:
        return await self.execute_vcs_operation(ops.git_log(repo_path, max_count))

    async def git_diff(self, target: str, repo_path: str = ".") -> VcsOperationResult:
        return await self.execute_vcs_operation(ops.git_diff(target, repo_path))

    async def git_create_branch(
        self, branch_name: str, repo_path: str = ".", base_branch: str | None = None
    ) -> VcsOperationResult:
        return await self.execute_vcs_operation(ops.git_create_branch(branch_name, repo_path, base_branch))

    async def github_create_issue(self, owner: str, repo: str, title: str, body: str = "") -> VcsOperationResult:
        return await self.execute_vcs_operation(ops.github_create_issue(owner, repo, title, body))

    async def github_create_pull_request(
        self, owner: str, repo: str, title: str, head: str, base: str = "main", body: str = ""
    ) -> VcsOperationResult:
        return await self.execute_vcs_operation(
            ops.github_create_pull_request(owner, repo, title, head, base, body)
        )

    async def gitlab_create_issue(self, project_id: str, title: str, description: str = "") -> VcsOperationResult:
        return await self.execute_vcs_operation(ops.gitlab_create_issue(project_id, title, description))

    async def gitlab_create_merge_request(
        self,
        project_id: str,
        title: str,
        source_branch: str,
        target_branch: str = "main",
        description: str = "",
    ) -> VcsOperationResult:
        return await self.execute_vcs_operation(
            ops.gitlab_create_merge_request(project_id, title, source_branch, target_branch, description)
        )

    async def jujutsu_status(self) -> VcsOperationResult:
        return await self.execute_vcs_operation(ops.jujutsu_status())

    async def jujutsu_diff(self, from_rev: str = "@-", to_rev: str = "@") -> VcsOperationResult:
        return await self.execute_vcs_operation(ops.jujutsu_diff(from_rev, to_rev))

    async def jujutsu_conflicts(self) -> VcsOperationResult:
        return await self.execute_vcs_operation(ops.jujutsu_conflicts())
