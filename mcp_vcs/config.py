from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping

from .mcp_types import Capability, ServerDescriptor
from .server_registry import DEFAULT_TIMEOUT_SECONDS, DEFAULT_VENDOR_ROOT, ServerRegistry


@dataclass(frozen=True)
class ServerOverride:
    name: str
    # Only the keys present in the config file; applied with dataclasses.replace.
    changes: Dict[str, object] = field(default_factory=dict)


@dataclass(frozen=True)
class AppConfig:
    vendor_root: str = DEFAULT_VENDOR_ROOT
    log_dir: str = "./logs"
    mcp_servers: List[ServerOverride] = field(default_factory=list)

    def build_registry(
        self,
        *,
        vendor_root: str | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> ServerRegistry:
        """
        Defaults, then discovery, then the config file.

        Token injection (when ``environ`` is given) and vendor path setup
        (when ``vendor_root`` is given) act on the built-in descriptors first,
        so an ``mcpServers`` entry has the last word on the fields it names.
        Its ``env`` is merged over the discovered one.
        """
        registry = ServerRegistry.with_defaults()
        if environ is not None:
            registry.load_environment_tokens(environ)
        if vendor_root is not None:
            registry.setup_server_paths(vendor_root)
        for override in self.mcp_servers:
            existing = registry.get(override.name)
            if existing is not None:
                changes = dict(override.changes)
                if "env" in changes:
                    changes["env"] = {**existing.env, **changes["env"]}  # type: ignore[dict-item]
                registry.register(dataclasses.replace(existing, **changes))
                continue
            if not override.changes.get("command"):
                continue
            registry.register(ServerDescriptor(name=override.name, **override.changes))
        return registry


def _parse_timeout(value: object) -> float:
    try:
        timeout = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return DEFAULT_TIMEOUT_SECONDS
    if timeout <= 0:
        return DEFAULT_TIMEOUT_SECONDS
    return timeout


def _parse_server(name: str, item: Dict[str, object]) -> ServerOverride:
    changes: Dict[str, object] = {}
    if "command" in item:
        command = str(item.get("command") or "").strip()
        if command:
            changes["command"] = command
    args_raw = item.get("args")
    if isinstance(args_raw, list):
        changes["args"] = [str(part) for part in args_raw]
    env_raw = item.get("env")
    if isinstance(env_raw, dict):
        changes["env"] = {str(k): str(v) for k, v in env_raw.items()}
    caps_raw = item.get("capabilities")
    if isinstance(caps_raw, list):
        known = {cap.value for cap in Capability}
        changes["capabilities"] = frozenset(Capability(str(cap)) for cap in caps_raw if str(cap) in known)
    if "enabled" in item:
        changes["enabled"] = bool(item["enabled"])
    if "timeout_seconds" in item:
        changes["timeout_seconds"] = _parse_timeout(item["timeout_seconds"])
    if "handshake" in item:
        changes["handshake"] = bool(item["handshake"])
    return ServerOverride(name=name, changes=changes)


def load_config(path: str) -> AppConfig:
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raw = {}

    vendor_root_raw = raw.get("vendor_root")
    vendor_root = str(vendor_root_raw).strip() if vendor_root_raw is not None else ""
    log_dir_raw = raw.get("log_dir")
    log_dir = str(log_dir_raw).strip() if log_dir_raw is not None else ""

    servers: List[ServerOverride] = []
    raw_servers = raw.get("mcpServers", {})
    if isinstance(raw_servers, dict):
        for key, value in raw_servers.items():
            name = str(key).strip()
            if not name or not isinstance(value, dict):
                continue
            servers.append(_parse_server(name, value))

    return AppConfig(
        vendor_root=vendor_root or DEFAULT_VENDOR_ROOT,
        log_dir=log_dir or "./logs",
        mcp_servers=servers,
    )
