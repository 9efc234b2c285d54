from __future__ import annotations

__version__ = "0.1.0"

from .config import AppConfig, load_config
from .logging_utils import create_session_logger
from .mcp_connection import ConnectionState, MCPConnection
from .mcp_manager import MCPManager
from .mcp_types import (
    Capability,
    ConfigurationError,
    ContentItem,
    ErrorInfo,
    MCPError,
    ProtocolError,
    ServerDescriptor,
    SpawnError,
    ToolCallTimeout,
    ToolResult,
    TransportClosed,
    TransportError,
)
from .server_registry import ServerRegistry
from .vcs_operations import VcsBackend, VcsOperation, VcsOperationResult


def new_manager(*, vendor_root: str | None = None, load_tokens: bool = True) -> MCPManager:
    """Manager over the default backends, with tokens and vendor paths discovered."""
    registry = ServerRegistry.with_defaults()
    if load_tokens:
        registry.load_environment_tokens()
    if vendor_root is not None:
        registry.setup_server_paths(vendor_root)
    return MCPManager(registry)


__all__ = [
    "AppConfig",
    "Capability",
    "ConfigurationError",
    "ConnectionState",
    "ContentItem",
    "ErrorInfo",
    "MCPConnection",
    "MCPError",
    "MCPManager",
    "ProtocolError",
    "ServerDescriptor",
    "ServerRegistry",
    "SpawnError",
    "ToolCallTimeout",
    "ToolResult",
    "TransportClosed",
    "TransportError",
    "VcsBackend",
    "VcsOperation",
    "VcsOperationResult",
    "create_session_logger",
    "load_config",
    "new_manager",
]
