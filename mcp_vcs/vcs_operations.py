"""
Normalized request/response values for VCS operations and typed builders
for each backend's tools.

Builders only assemble a ``VcsOperation``; the manager executes it. Tool names
and argument keys follow the vendored servers (mcp-server-git, the GitHub and
GitLab reference servers, mcp-jujutsu).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Sequence


class VcsBackend(str, Enum):
    GIT = "git"
    GITHUB = "github"
    GITLAB = "gitlab"
    JUJUTSU = "jujutsu"


@dataclass(frozen=True)
class VcsOperation:
    server_name: str
    tool_name: str
    arguments: Dict[str, object] = field(default_factory=dict)


@dataclass(frozen=True)
class VcsOperationResult:
    server_name: str
    success: bool
    content: str = ""
    error: str = ""
    error_code: int | None = None

    @classmethod
    def failure(cls, server_name: str, error: str, error_code: int | None = None) -> "VcsOperationResult":
        return cls(server_name=server_name, success=False, error=error or "Unknown error", error_code=error_code)


def _op(backend: VcsBackend, tool_name: str, arguments: Dict[str, object]) -> VcsOperation:
    return VcsOperation(server_name=backend.value, tool_name=tool_name, arguments=arguments)


def git_status(repo_path: str = ".") -> VcsOperation:
    return _op(VcsBackend.GIT, "git_status", {"repo_path": repo_path})


def git_commit(message: str, repo_path: str = ".") -> VcsOperation:
    return _op(VcsBackend.GIT, "git_commit", {"repo_path": repo_path, "message": message})


def git_add(files: Sequence[str], repo_path: str = ".") -> VcsOperation:
    return _op(VcsBackend.GIT, "git_add", {"repo_path": repo_path, "files": list(files)})


def git_log(repo_path: str = ".", max_count: int = 10) -> VcsOperation:
    return _op(VcsBackend.GIT, "git_log", {"repo_path": repo_path, "max_count": max_count})


def git_diff(target: str, repo_path: str = ".") -> VcsOperation:
    return _op(VcsBackend.GIT, "git_diff", {"repo_path": repo_path, "target": target})


def git_create_branch(branch_name: str, repo_path: str = ".", base_branch: str | None = None) -> VcsOperation:
    arguments: Dict[str, object] = {"repo_path": repo_path, "branch_name": branch_name}
    if base_branch:
        arguments["base_branch"] = base_branch
    return _op(VcsBackend.GIT, "git_create_branch", arguments)


def github_create_issue(owner: str, repo: str, title: str, body: str = "") -> VcsOperation:
    return _op(
        VcsBackend.GITHUB,
        "create_issue",
        {"owner": owner, "repo": repo, "title": title, "body": body},
    )


def github_create_pull_request(
    owner: str,
    repo: str,
    title: str,
    head: str,
    base: str = "main",
    body: str = "",
) -> VcsOperation:
    return _op(
        VcsBackend.GITHUB,
        "create_pull_request",
        {"owner": owner, "repo": repo, "title": title, "head": head, "base": base, "body": body},
    )


def gitlab_create_issue(project_id: str, title: str, description: str = "") -> VcsOperation:
    return _op(
        VcsBackend.GITLAB,
        "create_issue",
        {"project_id": project_id, "title": title, "description": description},
    )


def gitlab_create_merge_request(
    project_id: str,
    title: str,
    source_branch: str,
    target_branch: str = "main",
    description: str = "",
) -> VcsOperation:
    return _op(
        VcsBackend.GITLAB,
        "create_merge_request",
        {
            "project_id": project_id,
            "title": title,
            "source_branch": source_branch,
            "target_branch": target_branch,
            "description": description,
        },
    )


def jujutsu_status() -> VcsOperation:
    return _op(VcsBackend.JUJUTSU, "jj_status", {})


def jujutsu_diff(from_rev: str = "@-", to_rev: str = "@") -> VcsOperation:
    return _op(VcsBackend.JUJUTSU, "jj_diff", {"from_rev": from_rev, "to_rev": to_rev})


def jujutsu_conflicts() -> VcsOperation:
    return _op(VcsBackend.JUJUTSU, "jj_conflicts", {})


def backend_names() -> List[str]:
    return [backend.value for backend in VcsBackend]
