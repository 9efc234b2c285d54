from __future__ import annotations

import dataclasses
import logging
import os
from typing import Dict, Iterable, Iterator, List, Mapping

from .mcp_types import Capability, ConfigurationError, ServerDescriptor

logger = logging.getLogger(__name__)

DEFAULT_VENDOR_ROOT = "vendor"
DEFAULT_TIMEOUT_SECONDS = 30

GIT = "git"
GITHUB = "github"
GITLAB = "gitlab"
JUJUTSU = "jujutsu"

BUILTIN_SERVER_NAMES = (GIT, GITHUB, GITLAB, JUJUTSU)

# server name -> (token variable, API URL variable)
_TOKEN_ENV = {
    GITHUB: ("GITHUB_TOKEN", "GITHUB_API_URL"),
    GITLAB: ("GITLAB_PERSONAL_ACCESS_TOKEN", "GITLAB_API_URL"),
}


def default_descriptors() -> List[ServerDescriptor]:
    remote_caps = frozenset({Capability.TOOLS, Capability.RESOURCES})
    return [
        ServerDescriptor(
            name=GIT,
            command="uv",
            args=["--directory", "vendor/servers/src/git", "run", "mcp-server-git"],
            capabilities=frozenset({Capability.TOOLS}),
            enabled=True,
            timeout_seconds=DEFAULT_TIMEOUT_SECONDS,
        ),
        ServerDescriptor(
            name=GITHUB,
            command="node",
            args=["vendor/servers/src/github/index.js"],
            capabilities=remote_caps,
            enabled=False,
            timeout_seconds=DEFAULT_TIMEOUT_SECONDS,
        ),
        ServerDescriptor(
            name=GITLAB,
            command="node",
            args=["vendor/servers/src/gitlab/index.js"],
            capabilities=remote_caps,
            enabled=False,
            timeout_seconds=DEFAULT_TIMEOUT_SECONDS,
        ),
        ServerDescriptor(
            name=JUJUTSU,
            command="nimble",
            args=["-d:release", "run", "mcp_jujutsu"],
            capabilities=remote_caps,
            enabled=False,
            timeout_seconds=DEFAULT_TIMEOUT_SECONDS,
        ),
    ]


class ServerRegistry:
    """
    Named server descriptors.

    Descriptors may be replaced while the fleet is being configured; after
    ``freeze()`` (the manager calls it when the first server starts) every
    mutation raises ConfigurationError.
    """

    def __init__(self, descriptors: Iterable[ServerDescriptor] = ()) -> None:
        self._descriptors: Dict[str, ServerDescriptor] = {}
        self._frozen = False
        for descriptor in descriptors:
            self._descriptors[descriptor.name] = descriptor

    @classmethod
    def with_defaults(cls) -> "ServerRegistry":
        return cls(default_descriptors())

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        self._frozen = True

    def _check_mutable(self) -> None:
        if self._frozen:
            raise ConfigurationError("server registry is frozen once servers have started")

    def __contains__(self, name: object) -> bool:
        return name in self._descriptors

    def __iter__(self) -> Iterator[ServerDescriptor]:
        return iter(list(self._descriptors.values()))

    def __len__(self) -> int:
        return len(self._descriptors)

    def names(self) -> List[str]:
        return list(self._descriptors.keys())

    def get(self, name: str) -> ServerDescriptor | None:
        return self._descriptors.get(name)

    def require(self, name: str) -> ServerDescriptor:
        descriptor = self._descriptors.get(name)
        if descriptor is None:
            raise ConfigurationError(f"Unknown server: {name}")
        return descriptor

    def register(self, descriptor: ServerDescriptor) -> None:
        self._check_mutable()
        self._descriptors[descriptor.name] = descriptor

    def update(self, name: str, **changes: object) -> ServerDescriptor:
        self._check_mutable()
        updated = dataclasses.replace(self.require(name), **changes)
        self._descriptors[name] = updated
        return updated

    def load_environment_tokens(self, environ: Mapping[str, str] | None = None) -> List[str]:
        """Inject tokens found in the environment; returns the servers they enabled."""
        self._check_mutable()
        source = os.environ if environ is None else environ
        enabled: List[str] = []
        for name, (token_var, url_var) in _TOKEN_ENV.items():
            descriptor = self._descriptors.get(name)
            if descriptor is None:
                continue
            env = dict(descriptor.env)
            api_url = source.get(url_var, "").strip()
            if api_url:
                env[url_var] = api_url
            token = source.get(token_var, "").strip()
            if token:
                env[token_var] = token
                self._descriptors[name] = dataclasses.replace(descriptor, env=env, enabled=True)
                enabled.append(name)
                logger.info("%s enabled from %s", name, token_var)
            elif env != descriptor.env:
                self._descriptors[name] = dataclasses.replace(descriptor, env=env)
        return enabled

    def setup_server_paths(self, vendor_root: str = DEFAULT_VENDOR_ROOT) -> None:
        self._check_mutable()
        root = os.path.abspath(vendor_root)
        servers_src = os.path.join(root, "servers", "src")
        if GIT in self._descriptors:
            self.update(GIT, args=["--directory", os.path.join(servers_src, "git"), "run", "mcp-server-git"])
        if GITHUB in self._descriptors:
            self.update(GITHUB, args=[os.path.join(servers_src, "github", "index.js")])
        if GITLAB in self._descriptors:
            self.update(GITLAB, args=[os.path.join(servers_src, "gitlab", "index.js")])
        jujutsu_path = os.path.join(root, "mcp-jujutsu")
        if JUJUTSU in self._descriptors and os.path.isdir(jujutsu_path):
            self.update(
                JUJUTSU,
                command="nimble",
                args=["--silent", "-d:release", f"--project:{jujutsu_path}", "run", "mcp_jujutsu"],
                enabled=True,
            )
