"""CLI for plantree: serve, check, show, resolve and blast-radius commands."""

import argparse
import asyncio
import json
import sys
import tomllib
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version
from pathlib import Path

from .config import Config, _apply_env_overrides, load_config
from .errors import PlanTreeError
from .logging_config import setup_logging
from .nodes.store import NodeStore, get_node_store


def _version() -> str:
	try:
		return pkg_version("plantree")
	except PackageNotFoundError:
		from . import __version__
		return __version__


async def _open_store(db: str | None) -> NodeStore:
	"""Open the store at --db, or the configured database."""
	store = NodeStore(db or "")
	await store.init()
	return store


def _check_config_toml(config_dir: Path) -> tuple[str, str | None]:
	"""Validate config.toml. Returns (status, issue_or_none)."""
	toml_path = config_dir / "config.toml"
	if not toml_path.exists():
		return "not found (optional)", None
	try:
		with open(toml_path, "rb") as f:
			tomllib.load(f)
		return "valid", None
	except tomllib.TOMLDecodeError as e:
		msg = f"config.toml parse error: {e}"
		return f"INVALID ({e})", msg


def cmd_serve(args: argparse.Namespace) -> None:
	"""Run the MCP server (stdio transport)."""
	from .server import mcp
	if args.db:
		# Pin the process-wide store to --db before any tool opens it
		asyncio.run(get_node_store(args.db))
	mcp.run()


def cmd_check(args: argparse.Namespace) -> None:
	"""Show configuration paths and validate config.toml."""
	base = _apply_env_overrides(Config())
	status, issue = _check_config_toml(base.config_dir)
	config = base if issue else load_config()
	issues: list[str] = []

	print(f"plantree {_version()}")
	print(f"{'=' * 40}")
	print(f"  Config dir:     {config.config_dir}")
	print(f"  Data dir:       {config.data_dir}")
	print(f"  Database:       {config.db_path} ({'exists' if config.db_path.exists() else 'not created yet'})")
	print(f"  Log dir:        {config.log_dir}")
	print(f"  Log level:      {config.log_level}")
	print(f"  Default tenant: {config.default_tenant_id}")

	print(f"  config.toml:    {status}")
	if issue:
		issues.append(issue)

	print()
	if issues:
		print(f"{len(issues)} issue(s) found:")
		for i in issues:
			print(f"  - {i}")
		sys.exit(1)
	print("No issues found.")


async def _show(args: argparse.Namespace) -> None:
	from .nodes.tree import load_plan_tree
	from .visualizer.plan_tree import render_plan_tree

	store = await _open_store(args.db)
	tree = await load_plan_tree(store, args.plan_id, active_only=args.active_only)
	if args.json:
		print(json.dumps({"tree": tree.to_dict(), "stats": tree.depth_stats()}, indent=2))
	else:
		render_plan_tree(tree)


async def _resolve(args: argparse.Namespace) -> None:
	from .engine.dependencies import DependencyResolver
	from .visualizer.plan_tree import render_resolution

	store = await _open_store(args.db)
	resolver = DependencyResolver(store)
	resolved = await resolver.resolve_dependencies(args.node_id)
	if args.json:
		print(resolved.model_dump_json(indent=2))
	else:
		node = await store.get_by_id(args.node_id)
		render_resolution(node, resolved)


async def _blast_radius(args: argparse.Namespace) -> None:
	from .engine.blast_radius import BlastRadiusCalculator
	from .engine.dependencies import DependencyResolver
	from .errors import NotFoundError
	from .visualizer.plan_tree import render_blast_radius

	store = await _open_store(args.db)
	plan = await store.get_by_id(args.plan_id)
	if plan is None:
		raise NotFoundError(f"Plan not found: {args.plan_id}")

	if args.containment:
		radius = await DependencyResolver(store).compute_blast_radius(args.node_ids, tenant_id=plan.tenant_id)
		result = {
			"upstream": [n.id for n in radius.upstream],
			"downstream": [n.id for n in radius.downstream],
			"affected": [n.id for n in radius.affected],
		}
		print(json.dumps(result, indent=2))
		return

	radius = await BlastRadiusCalculator(store).calculate_blast_radius(
		plan.id, args.node_ids, plan.tenant_id,
	)
	if args.json:
		print(radius.model_dump_json(indent=2))
	else:
		render_blast_radius(plan, args.node_ids, radius)


def _run(coro) -> None:
	try:
		asyncio.run(coro)
	except PlanTreeError as e:
		print(f"Error: {e}", file=sys.stderr)
		sys.exit(1)


def cmd_show(args: argparse.Namespace) -> None:
	"""Render a plan tree."""
	_run(_show(args))


def cmd_resolve(args: argparse.Namespace) -> None:
	"""Resolve a node's dependencies."""
	_run(_resolve(args))


def cmd_blast_radius(args: argparse.Namespace) -> None:
	"""Compute the blast radius of a scope."""
	_run(_blast_radius(args))


def main(argv: list[str] | None = None) -> None:
	"""CLI entry point."""
	parser = argparse.ArgumentParser(
		prog="plantree",
		description="Plan tree with dependency resolution, blast radius and replan sessions",
	)
	parser.add_argument("--version", action="version", version=f"%(prog)s {_version()}")
	parser.add_argument("--db", type=str, default=None, help="SQLite database (default: configured path)")
	parser.add_argument("--log-level", type=str, default=None, help="Override log level")
	subparsers = parser.add_subparsers(dest="command")

	# serve
	serve_parser = subparsers.add_parser("serve", help="Run MCP server (stdio)")
	serve_parser.set_defaults(func=cmd_serve)

	# check
	check_parser = subparsers.add_parser("check", help="Show configuration and validate config.toml")
	check_parser.set_defaults(func=cmd_check)

	# show
	show_parser = subparsers.add_parser("show", help="Render a plan tree")
	show_parser.add_argument("plan_id", type=int, help="Plan node ID")
	show_parser.add_argument("--active-only", action="store_true", help="Skip soft-deleted nodes")
	show_parser.add_argument("--json", action="store_true", help="Print JSON instead of a tree")
	show_parser.set_defaults(func=cmd_show)

	# resolve
	resolve_parser = subparsers.add_parser("resolve", help="Resolve a node's dependencies")
	resolve_parser.add_argument("node_id", type=int, help="Node ID")
	resolve_parser.add_argument("--json", action="store_true", help="Print JSON instead of a table")
	resolve_parser.set_defaults(func=cmd_resolve)

	# blast-radius
	blast_parser = subparsers.add_parser("blast-radius", help="Compute the blast radius of a scope")
	blast_parser.add_argument("plan_id", type=int, help="Plan node ID")
	blast_parser.add_argument("node_ids", type=int, nargs="+", help="Scope node IDs")
	blast_parser.add_argument(
		"--containment",
		action="store_true",
		help="Use tree containment (ancestors + subtrees) instead of execution edges",
	)
	blast_parser.add_argument("--json", action="store_true", help="Print JSON instead of a panel")
	blast_parser.set_defaults(func=cmd_blast_radius)

	args = parser.parse_args(argv)

	if not args.command:
		parser.print_help()
		sys.exit(1)

	if args.log_level:
		setup_logging(args.log_level)

	args.func(args)
