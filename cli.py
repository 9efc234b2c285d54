#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from typing import Awaitable, Callable, Dict, List

from mcp_vcs.config import AppConfig, load_config
from mcp_vcs.logging_utils import create_session_logger
from mcp_vcs.mcp_manager import MCPManager
from mcp_vcs.server_registry import BUILTIN_SERVER_NAMES
from mcp_vcs.vcs_info import get_vcs_info
from mcp_vcs.vcs_operations import VcsOperationResult

Handler = Callable[[MCPManager, argparse.Namespace], Awaitable[int]]

logger = logging.getLogger("mcp_vcs.cli")


def render_result(result: VcsOperationResult, *, verbose: bool = False) -> int:
    if result.success:
        print(result.content or "(no output)")
        return 0
    message = f"{result.server_name}: {result.error}"
    if verbose and result.error_code is not None:
        message += f" (code={result.error_code})"
    print(message, file=sys.stderr)
    return 1


async def _require_server(manager: MCPManager, name: str) -> VcsOperationResult | None:
    if await manager.start_server(name):
        return None
    detail = manager.last_errors.get(name)
    if detail is None:
        descriptor = manager.registry.get(name)
        detail = "disabled" if descriptor is not None and not descriptor.enabled else "could not be started"
    return VcsOperationResult.failure(name, f"Server {name} not available ({detail})")


async def cmd_status(manager: MCPManager, args: argparse.Namespace) -> int:
    print("MCP Server Status:")
    print("==================")
    status = manager.get_server_status()
    for name, running in status.items():
        descriptor = manager.registry.get(name)
        enabled = "enabled" if descriptor is not None and descriptor.enabled else "disabled"
        print(f"{name}: {'running' if running else 'stopped'} ({enabled})")

    info = get_vcs_info(args.repo_path)
    print("")
    print("VCS Information:")
    print(f"Type: {info.vcs_type}")
    if info.remote_url:
        print(f"Remote: {info.remote_url}")
        print(f"Platform: {info.repo.platform}")
        if info.repo.project_id:
            print(f"Repository: {info.repo.project_id}")
    return 0


async def cmd_setup(manager: MCPManager, args: argparse.Namespace) -> int:
    print("Environment Check:")
    for var in ("GITHUB_TOKEN", "GITLAB_PERSONAL_ACCESS_TOKEN"):
        print(f"{var}: {'set' if os.environ.get(var) else 'not set'}")

    info = get_vcs_info(args.repo_path)
    print(f"Detected VCS: {info.vcs_type}")
    if info.remote_url:
        print(f"Remote: {info.repo.platform} - {info.repo.project_id}")

    started = await manager.start_all_servers()
    if not started:
        print("No MCP servers could be started. Check configuration and dependencies.")
        for name, error in manager.last_errors.items():
            logger.info("start failure %s: %s", name, error)
            if args.verbose:
                print(f"  {name}: {error}")
        return 1
    print(f"Started MCP servers: {', '.join(started)}")
    for name in started:
        tools = await manager.list_available_tools(name)
        print(f"Server {name} has {len(tools)} tools available")
    return 0


async def cmd_list_tools(manager: MCPManager, args: argparse.Namespace) -> int:
    names: List[str] = [args.server] if args.server else list(BUILTIN_SERVER_NAMES)
    if args.server:
        await manager.start_server(args.server)
    else:
        await manager.start_all_servers(names)
    for name in names:
        tools = await manager.list_available_tools(name)
        if not tools and not args.server:
            continue
        print(f"{name}:")
        for tool in tools:
            print(f"  - {tool}")
    return 0


async def cmd_git(manager: MCPManager, args: argparse.Namespace) -> int:
    failure = await _require_server(manager, "git")
    if failure is not None:
        return render_result(failure, verbose=args.verbose)
    if args.git_command == "status":
        result = await manager.git_status(args.repo_path)
    else:
        result = await manager.git_commit(" ".join(args.message), args.repo_path)
    return render_result(result, verbose=args.verbose)


async def cmd_github(manager: MCPManager, args: argparse.Namespace) -> int:
    owner, repo = args.owner, args.repo
    if not owner or not repo:
        info = get_vcs_info(args.repo_path)
        if info.repo.platform != "github":
            print("Error: Not a GitHub repository or remote not detected (use --owner/--repo)", file=sys.stderr)
            return 1
        owner, repo = owner or info.repo.owner, repo or info.repo.repo
    failure = await _require_server(manager, "github")
    if failure is not None:
        return render_result(failure, verbose=args.verbose)
    if args.github_command == "create-issue":
        result = await manager.github_create_issue(owner, repo, args.title, " ".join(args.body))
    else:
        result = await manager.github_create_pull_request(
            owner, repo, args.title, args.head, args.base, " ".join(args.body)
        )
    return render_result(result, verbose=args.verbose)


async def cmd_gitlab(manager: MCPManager, args: argparse.Namespace) -> int:
    project_id = args.project_id
    if not project_id:
        info = get_vcs_info(args.repo_path)
        if info.repo.platform != "gitlab":
            print("Error: Not a GitLab repository or remote not detected (use --project-id)", file=sys.stderr)
            return 1
        project_id = info.repo.project_id
    failure = await _require_server(manager, "gitlab")
    if failure is not None:
        return render_result(failure, verbose=args.verbose)
    if args.gitlab_command == "create-issue":
        result = await manager.gitlab_create_issue(project_id, args.title, " ".join(args.description))
    else:
        result = await manager.gitlab_create_merge_request(
            project_id, args.title, args.source, args.target, " ".join(args.description)
        )
    return render_result(result, verbose=args.verbose)


async def cmd_jujutsu(manager: MCPManager, args: argparse.Namespace) -> int:
    failure = await _require_server(manager, "jujutsu")
    if failure is not None:
        return render_result(failure, verbose=args.verbose)
    if args.jujutsu_command == "conflicts":
        result = await manager.jujutsu_conflicts()
    else:
        result = await manager.jujutsu_status()
    return render_result(result, verbose=args.verbose)


COMMANDS: Dict[str, Handler] = {
    "status": cmd_status,
    "setup": cmd_setup,
    "list-tools": cmd_list_tools,
    "git": cmd_git,
    "github": cmd_github,
    "gitlab": cmd_gitlab,
    "jujutsu": cmd_jujutsu,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Drive Git, GitHub, GitLab and Jujutsu MCP servers")
    parser.add_argument("--config", default=None, help="JSON config with vendor_root/log_dir/mcpServers")
    parser.add_argument("--vendor-root", default=None, help="Directory holding the vendored MCP servers")
    parser.add_argument("--log-dir", default=None, help="Directory for session log files")
    parser.add_argument("--repo-path", default=".", help="Repository the operations act on")
    parser.add_argument("--debug", action="store_true", help="Mirror session logs to stderr")
    parser.add_argument("--verbose", action="store_true", help="Show error codes and start failures")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Show server status and VCS information")
    sub.add_parser("setup", help="Check tokens, detect VCS and start all servers")
    list_tools = sub.add_parser("list-tools", help="List tools per server")
    list_tools.add_argument("server", nargs="?", default=None)

    git = sub.add_parser("git", help="Git operations")
    git_sub = git.add_subparsers(dest="git_command", required=True)
    git_sub.add_parser("status")
    commit = git_sub.add_parser("commit")
    commit.add_argument("message", nargs="+")

    github = sub.add_parser("github", help="GitHub operations")
    github.add_argument("--owner", default=None)
    github.add_argument("--repo", default=None)
    github_sub = github.add_subparsers(dest="github_command", required=True)
    gh_issue = github_sub.add_parser("create-issue")
    gh_issue.add_argument("title")
    gh_issue.add_argument("body", nargs="*")
    gh_pr = github_sub.add_parser("create-pr")
    gh_pr.add_argument("title")
    gh_pr.add_argument("head")
    gh_pr.add_argument("base", nargs="?", default="main")
    gh_pr.add_argument("body", nargs="*")

    gitlab = sub.add_parser("gitlab", help="GitLab operations")
    gitlab.add_argument("--project-id", default=None)
    gitlab_sub = gitlab.add_subparsers(dest="gitlab_command", required=True)
    gl_issue = gitlab_sub.add_parser("create-issue")
    gl_issue.add_argument("title")
    gl_issue.add_argument("description", nargs="*")
    gl_mr = gitlab_sub.add_parser("create-mr")
    gl_mr.add_argument("title")
    gl_mr.add_argument("source")
    gl_mr.add_argument("target", nargs="?", default="main")
    gl_mr.add_argument("description", nargs="*")

    jujutsu = sub.add_parser("jujutsu", help="Jujutsu operations")
    jujutsu_sub = jujutsu.add_subparsers(dest="jujutsu_command", required=True)
    jujutsu_sub.add_parser("status")
    jujutsu_sub.add_parser("conflicts")
    return parser


def build_manager(cfg: AppConfig, *, vendor_root: str | None = None) -> MCPManager:
    registry = cfg.build_registry(vendor_root=vendor_root or cfg.vendor_root, environ=os.environ)
    return MCPManager(registry)


async def async_main(argv: List[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    cfg = load_config(args.config) if args.config else AppConfig()

    session_logger, log_path = create_session_logger(log_dir=args.log_dir or cfg.log_dir, debug=args.debug)
    session_logger.info("startup command=%s log=%s", args.command, log_path)

    manager = build_manager(cfg, vendor_root=args.vendor_root)
    try:
        return await COMMANDS[args.command](manager, args)
    finally:
        await manager.stop_all_servers()


def main() -> int:
    return asyncio.run(async_main())


if __name__ == "__main__":
    raise SystemExit(main())
