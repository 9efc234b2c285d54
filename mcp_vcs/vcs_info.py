from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

VCS_NONE = "none"
VCS_GIT = "git"
VCS_JUJUTSU = "jujutsu"


@dataclass(frozen=True)
class RepoInfo:
    platform: str = "unknown"
    owner: str = ""
    repo: str = ""

    @property
    def project_id(self) -> str:
        if not self.owner or not self.repo:
            return ""
        return f"{self.owner}/{self.repo}"


@dataclass(frozen=True)
class VcsInfo:
    vcs_type: str
    remote_url: str
    repo: RepoInfo


def detect_vcs_type(path: str = ".") -> str:
    root = Path(path)
    if (root / ".jj").is_dir():
        return VCS_JUJUTSU
    if (root / ".git").exists():
        return VCS_GIT
    return VCS_NONE


def _run(command: List[str], cwd: str) -> str:
    try:
        result = subprocess.run(
            command,
            cwd=cwd,
            timeout=10,
            capture_output=True,
            text=True,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as err:
        logger.debug("%s failed: %s", " ".join(command), err)
        return ""
    if result.returncode != 0:
        return ""
    return result.stdout.strip()


def get_remote_url(path: str = ".") -> str:
    vcs_type = detect_vcs_type(path)
    if vcs_type == VCS_GIT:
        return _run(["git", "remote", "get-url", "origin"], path)
    if vcs_type == VCS_JUJUTSU:
        # "<name> <url>" per line
        for line in _run(["jj", "git", "remote", "list"], path).splitlines():
            parts = line.split()
            if len(parts) >= 2 and parts[0] == "origin":
                return parts[1]
    return ""


def parse_repo_info(remote_url: str) -> RepoInfo:
    url = remote_url.strip()
    if url.startswith("git@"):
        host, _, repo_path = url[len("git@"):].partition(":")
        url = f"https://{host}/{repo_path}"
    if url.endswith(".git"):
        url = url[: -len(".git")]

    parsed = urlparse(url)
    parts = [part for part in parsed.path.split("/") if part]
    if len(parts) < 2:
        return RepoInfo()
    hostname = parsed.hostname or ""
    if "github" in hostname:
        platform = "github"
    elif "gitlab" in hostname:
        platform = "gitlab"
    else:
        platform = "unknown"
    return RepoInfo(platform=platform, owner=parts[0], repo=parts[1])


def get_vcs_info(path: str = ".") -> VcsInfo:
    remote_url = get_remote_url(path)
    repo = parse_repo_info(remote_url) if remote_url else RepoInfo()
    return VcsInfo(vcs_type=detect_vcs_type(path), remote_url=remote_url, repo=repo)
