from __future__ import annotations

import contextlib
import io
import json
import os
import sys
import tempfile
import unittest
from pathlib import Path

import cli
from mcp_vcs.config import AppConfig, load_config
from mcp_vcs.mcp_manager import MCPManager
from mcp_vcs.mcp_types import ServerDescriptor
from mcp_vcs.server_registry import ServerRegistry
from mcp_vcs.vcs_operations import VcsOperationResult

DEMO_SERVER = Path(__file__).resolve().parents[1] / "mcp_servers" / "demo" / "simple_server.py"


class ParserTests(unittest.TestCase):
    def test_git_commit_joins_message_words(self) -> None:
        args = cli.build_parser().parse_args(["--repo-path", "/repo", "git", "commit", "Fix", "the", "build"])
        self.assertEqual(args.command, "git")
        self.assertEqual(args.git_command, "commit")
        self.assertEqual(args.message, ["Fix", "the", "build"])
        self.assertEqual(args.repo_path, "/repo")

    def test_github_pr_defaults_base_to_main(self) -> None:
        args = cli.build_parser().parse_args(["github", "--owner", "octo", "--repo", "hello", "create-pr", "Docs", "docs"])
        self.assertEqual((args.owner, args.repo), ("octo", "hello"))
        self.assertEqual(args.head, "docs")
        self.assertEqual(args.base, "main")

    def test_jujutsu_conflicts_subcommand(self) -> None:
        args = cli.build_parser().parse_args(["jujutsu", "conflicts"])
        self.assertEqual((args.command, args.jujutsu_command), ("jujutsu", "conflicts"))

    def test_subcommand_is_required(self) -> None:
        with contextlib.redirect_stderr(io.StringIO()):
            with self.assertRaises(SystemExit):
                cli.build_parser().parse_args([])


class BuildManagerTests(unittest.TestCase):
    def test_config_server_survives_vendor_path_setup(self) -> None:
        with tempfile.TemporaryDirectory(prefix="mcp-vcs-cli-") as temp_dir:
            config_path = Path(temp_dir) / "mcp.json"
            config_path.write_text(
                json.dumps(
                    {
                        "vendor_root": str(Path(temp_dir) / "vendor"),
                        "mcpServers": {"git": {"command": sys.executable, "args": [str(DEMO_SERVER)]}},
                    }
                ),
                encoding="utf-8",
            )
            manager = cli.build_manager(load_config(str(config_path)))

        git = manager.registry.require("git")
        self.assertEqual(git.command, sys.executable)
        self.assertEqual(git.args, (str(DEMO_SERVER),))
        github = manager.registry.require("github")
        self.assertTrue(github.args[0].endswith(os.path.join("vendor", "servers", "src", "github", "index.js")))

    def test_vendor_root_flag_wins_over_config(self) -> None:
        with tempfile.TemporaryDirectory(prefix="mcp-vcs-cli-") as temp_dir:
            manager = cli.build_manager(AppConfig(vendor_root="unused"), vendor_root=temp_dir)
        git_dir = manager.registry.require("git").args[1]
        self.assertEqual(git_dir, os.path.join(os.path.abspath(temp_dir), "servers", "src", "git"))


class RenderResultTests(unittest.TestCase):
    def test_success_prints_content(self) -> None:
        out = io.StringIO()
        with contextlib.redirect_stdout(out):
            code = cli.render_result(VcsOperationResult(server_name="git", success=True, content="clean"))
        self.assertEqual(code, 0)
        self.assertEqual(out.getvalue(), "clean\n")

    def test_failure_goes_to_stderr_with_code_when_verbose(self) -> None:
        err = io.StringIO()
        with contextlib.redirect_stderr(err):
            code = cli.render_result(VcsOperationResult.failure("git", "bad args", error_code=-32602), verbose=True)
        self.assertEqual(code, 1)
        self.assertEqual(err.getvalue(), "git: bad args (code=-32602)\n")


class CommandTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        registry = ServerRegistry(
            [
                ServerDescriptor(name="git", command=sys.executable, args=[str(DEMO_SERVER)], timeout_seconds=10),
                ServerDescriptor(name="github", command="node", enabled=False),
            ]
        )
        self.manager = MCPManager(registry)
        self.addAsyncCleanup(self.manager.aclose)

    async def _run(self, argv: list) -> tuple:
        args = cli.build_parser().parse_args(argv)
        out, err = io.StringIO(), io.StringIO()
        with contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
            code = await cli.COMMANDS[args.command](self.manager, args)
        return code, out.getvalue(), err.getvalue()

    async def test_git_commit_through_demo_server(self) -> None:
        code, out, _ = await self._run(["git", "commit", "Initial", "import"])
        self.assertEqual(code, 0)
        self.assertEqual(out.strip(), "Changes committed: Initial import")

    async def test_disabled_server_is_reported(self) -> None:
        code, _, err = await self._run(["github", "--owner", "octo", "--repo", "hello", "create-issue", "Bug"])
        self.assertEqual(code, 1)
        self.assertIn("Server github not available (disabled)", err)

    async def test_list_tools_for_one_server(self) -> None:
        code, out, _ = await self._run(["list-tools", "git"])
        self.assertEqual(code, 0)
        self.assertIn("git:", out)
        self.assertIn("  - git_status", out)


if __name__ == "__main__":
    unittest.main()
