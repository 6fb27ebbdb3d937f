"""CLI for codex-subagents: serve, agents, validate, and ledger commands."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from . import SERVER_NAME, __version__
from .config import load_config


def _setup_logging(debug: bool) -> None:
	"""Log to stderr; stdout carries the protocol."""
	logging.basicConfig(
		level=logging.DEBUG if debug else logging.INFO,
		format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
		datefmt="%H:%M:%S",
		stream=sys.stderr,
	)


def cmd_serve(args: argparse.Namespace) -> None:
	"""Run the MCP server (stdio transport)."""
	from .server import run_stdio

	config = load_config(
		agents_dir=args.agents_dir,
		timeout_ms=args.timeout_ms,
		mirror_all=True if args.mirror_all else None,
		debug=True if args.debug else None,
	)
	_setup_logging(config.debug)
	try:
		asyncio.run(run_stdio(config))
	except KeyboardInterrupt:
		pass


def cmd_agents(args: argparse.Namespace) -> None:
	"""Show built-in and custom agents."""
	from .agents.registry import AgentRegistry, resolve_agents_dir
	from .visualizer.agents_view import render_agent_table

	config = load_config(agents_dir=args.agents_dir)
	registry = AgentRegistry(resolve_agents_dir(config.agents_dir))
	render_agent_table(registry.list_rows())
	if registry.agents_dir:
		print(f"Custom agents dir: {registry.agents_dir}")


def cmd_validate(args: argparse.Namespace) -> None:
	"""Validate agent files; exit 1 when any file has errors."""
	from .agents.registry import resolve_agents_dir, validate_agents
	from .visualizer.agents_view import render_validation_report

	config = load_config()
	directory = Path(args.dir) if args.dir else resolve_agents_dir(config.agents_dir)
	report = validate_agents(directory)
	render_validation_report(report)
	if not report["ok"]:
		sys.exit(1)


def cmd_ledger(args: argparse.Namespace) -> None:
	"""Show the todo ledger of one request."""
	from .orchestration.ledger import LedgerError, load_todo
	from .visualizer.ledger_view import render_todo_summary, render_todo_tree

	base = Path(args.cwd) if args.cwd else Path.cwd()
	try:
		todo = load_todo(args.request_id, base)
	except LedgerError as e:
		print(str(e))
		sys.exit(1)

	if args.summary:
		render_todo_summary(todo)
	else:
		render_todo_tree(todo)


def main(argv: Optional[list[str]] = None) -> None:
	"""CLI entry point."""
	parser = argparse.ArgumentParser(
		prog=SERVER_NAME,
		description="MCP server that delegates persona-scoped tasks to Codex CLI sub-agents",
	)
	parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
	subparsers = parser.add_subparsers(dest="command")

	# serve
	serve_parser = subparsers.add_parser("serve", help="Run MCP server (stdio)")
	serve_parser.add_argument("--agents-dir", type=str, default=None, help="Custom agents directory")
	serve_parser.add_argument("--timeout-ms", type=int, default=None, help="codex exec timeout in milliseconds")
	serve_parser.add_argument(
		"--mirror-all",
		action="store_true",
		help="Mirror everything, including VCS metadata and secret files",
	)
	serve_parser.add_argument("--debug", action="store_true", help="Diagnostic notifications and verbose logs")
	serve_parser.set_defaults(func=cmd_serve)

	# agents
	agents_parser = subparsers.add_parser("agents", help="List available agents")
	agents_parser.add_argument("--agents-dir", type=str, default=None, help="Custom agents directory")
	agents_parser.set_defaults(func=cmd_agents)

	# validate
	validate_parser = subparsers.add_parser("validate", help="Validate agent files")
	validate_parser.add_argument("dir", nargs="?", default=None, help="Agents directory (default: resolved)")
	validate_parser.set_defaults(func=cmd_validate)

	# ledger
	ledger_parser = subparsers.add_parser("ledger", help="Show an orchestration ledger")
	ledger_parser.add_argument("request_id", help="Request id (orchestration/<request_id>)")
	ledger_parser.add_argument("--cwd", type=str, default=None, help="Directory holding orchestration/")
	ledger_parser.add_argument("--summary", action="store_true", help="Show summary panel instead of tree")
	ledger_parser.set_defaults(func=cmd_ledger)

	args = parser.parse_args(argv)

	if not args.command:
		parser.print_help()
		sys.exit(1)

	args.func(args)


if __name__ == "__main__":
	main()
