from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, FrozenSet, List, Mapping, Sequence

MCP_PROTOCOL_VERSION = "2024-11-05"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class Capability(str, Enum):
    TOOLS = "tools"
    RESOURCES = "resources"
    PROMPTS = "prompts"
    ROOTS = "roots"
    SAMPLING = "sampling"


@dataclass(frozen=True)
class ServerDescriptor:
    name: str
    command: str
    args: Sequence[str] = ()
    env: Mapping[str, str] = field(default_factory=dict)
    capabilities: FrozenSet[Capability] = frozenset({Capability.TOOLS})
    enabled: bool = True
    timeout_seconds: float = 30
    # Send initialize + notifications/initialized right after spawn.
    handshake: bool = False

    def __post_init__(self) -> None:
        # Copies, so the caller's list/dict cannot change a registered server.
        object.__setattr__(self, "args", tuple(self.args))
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))
        object.__setattr__(self, "capabilities", frozenset(self.capabilities))

    def to_dict(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "command": self.command,
            "args": list(self.args),
            "env": dict(self.env),
            "capabilities": sorted(cap.value for cap in self.capabilities),
            "enabled": self.enabled,
            "timeout_seconds": self.timeout_seconds,
            "handshake": self.handshake,
        }


@dataclass(frozen=True)
class ErrorInfo:
    code: int
    message: str
    data: object = None

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {"code": self.code, "message": self.message}
        if self.data is not None:
            payload["data"] = self.data
        return payload

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


@dataclass(frozen=True)
class ContentItem:
    kind: str = "text"
    text: str | None = None
    data: str | None = None
    mime_type: str | None = None

    @classmethod
    def from_dict(cls, raw: Dict[str, object]) -> "ContentItem":
        def _opt(key: str) -> str | None:
            value = raw.get(key)
            return None if value is None else str(value)

        return cls(
            kind=str(raw.get("type", "text")),
            text=_opt("text"),
            data=_opt("data"),
            mime_type=_opt("mimeType"),
        )


@dataclass(frozen=True)
class ToolResult:
    content: List[ContentItem] = field(default_factory=list)
    is_error: bool = False
    # Set when the backend answered with a JSON-RPC error instead of a result.
    error: ErrorInfo | None = None

    @classmethod
    def from_result(cls, result: object) -> "ToolResult":
        if not isinstance(result, dict):
            return cls(content=[], is_error=False)
        raw_content = result.get("content")
        items: List[ContentItem] = []
        if isinstance(raw_content, list):
            items = [ContentItem.from_dict(item) for item in raw_content if isinstance(item, dict)]
        elif "text" in result:
            items = [ContentItem(text=str(result["text"]))]
        return cls(content=items, is_error=bool(result.get("isError", False)))

    @classmethod
    def from_error(cls, error: ErrorInfo) -> "ToolResult":
        return cls(content=[ContentItem(text=error.message)], is_error=True, error=error)

    def texts(self) -> List[str]:
        return [item.text for item in self.content if item.text is not None]

    def joined_text(self) -> str:
        return "\n".join(self.texts()).strip()

    def first_text(self) -> str | None:
        texts = [text for text in self.texts() if text]
        return texts[0] if texts else None


class MCPError(RuntimeError):
    pass


class TransportError(MCPError):
    pass


class SpawnError(TransportError):
    pass


class TransportClosed(TransportError):
    pass


class ProtocolError(MCPError):
    def __init__(self, error: ErrorInfo) -> None:
        super().__init__(error.message)
        self.error = error


class DecodeError(ProtocolError):
    def __init__(self, error: ErrorInfo, request_id: int | str | None = None) -> None:
        super().__init__(error)
        self.request_id = request_id


class ToolCallTimeout(TimeoutError, MCPError):
    pass


class ConfigurationError(MCPError):
    pass
