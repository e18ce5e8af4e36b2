"""Shared test fixtures and helpers for plantree tests."""

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from pydantic import BaseModel

from plantree.config import Config
from plantree.nodes.models import (
	ContextFacet,
	ContextType,
	DataFacet,
	IODirection,
	IOFacet,
	JobFacet,
	Node,
	NodeDraft,
	NodeType,
	StageFacet,
)
from plantree.nodes.store import NodeStore


async def make_store(tmp_path: Path) -> NodeStore:
	"""Create an initialized store backed by a temp SQLite file."""
	store = NodeStore(str(tmp_path / "plantree.db"))
	await store.init()
	return store


def make_config(tmp_path: Path) -> Config:
	"""Config rooted in a temp directory."""
	config = Config(config_dir=tmp_path / "config", data_dir=tmp_path / "data")
	config.ensure_dirs()
	return config


async def add_node(
	store: NodeStore,
	parent: Node,
	node_type: NodeType,
	name: str,
	facet: Optional[BaseModel] = None,
	**overrides,
) -> Node:
	"""Insert a child of parent."""
	return await store.insert(
		NodeDraft(type=node_type, name=name, tenant_id=parent.tenant_id, parent_id=parent.id, **overrides),
		facet,
	)


@dataclass
class SamplePlan:
	"""
	Release plan used across tests:

		plan "Release"
		├── context "Style guide"          (plan level)
		├── data "Build matrix"
		├── stage "Build"
		│   ├── context "Compiler flags"
		│   ├── io "Source tarball"       (input)
		│   └── job "Compile"
		│       └── io "Binary"           (output)
		└── stage "Deploy"               (depends on Build)
		    ├── context "Deploy notes"
		    └── job "Push"                (depends on Compile)
	"""
	plan: Node
	plan_context: Node
	plan_data: Node
	build: Node
	build_context: Node
	source_io: Node
	compile: Node
	binary_io: Node
	deploy: Node
	deploy_context: Node
	push: Node


async def build_sample_plan(store: NodeStore, tenant_id: int = 1) -> SamplePlan:
	"""Create the release plan described on SamplePlan."""
	plan = await store.create_plan("Release", tenant_id, goal="Ship version 2")
	plan_context = await add_node(
		store, plan, NodeType.CONTEXT, "Style guide",
		ContextFacet(context_type=ContextType.CONSTRAINT, payload="PEP 8"),
	)
	plan_data = await add_node(store, plan, NodeType.DATA, "Build matrix", DataFacet(payload={"python": ["3.11", "3.12"]}))

	build = await add_node(store, plan, NodeType.STAGE, "Build", StageFacet(description="Compile everything"))
	build_context = await add_node(
		store, build, NodeType.CONTEXT, "Compiler flags",
		ContextFacet(context_type=ContextType.DECISION, payload="-O2"),
	)
	source_io = await add_node(
		store, build, NodeType.IO, "Source tarball",
		IOFacet(direction=IODirection.INPUT, io_type="file", data="src.tar.gz"),
	)
	compile_job = await add_node(store, build, NodeType.JOB, "Compile", JobFacet(description="Run the compiler"))
	binary_io = await add_node(
		store, compile_job, NodeType.IO, "Binary",
		IOFacet(direction=IODirection.OUTPUT, io_type="file", data="app.bin"),
	)

	deploy = await add_node(
		store, plan, NodeType.STAGE, "Deploy",
		StageFacet(description="Roll out", depends_on_node_ids=[build.id]),
	)
	deploy_context = await add_node(store, deploy, NodeType.CONTEXT, "Deploy notes", ContextFacet(payload="Canary first"))
	push = await add_node(
		store, deploy, NodeType.JOB, "Push",
		JobFacet(description="Upload artifacts", depends_on_node_ids=[compile_job.id]),
	)

	return SamplePlan(
		plan=plan,
		plan_context=plan_context,
		plan_data=plan_data,
		build=build,
		build_context=build_context,
		source_io=source_io,
		compile=compile_job,
		binary_io=binary_io,
		deploy=deploy,
		deploy_context=deploy_context,
		push=push,
	)


def capture_tools(config: Config, register_fn: Callable) -> dict:
	"""Register tools on a mock MCP and return the captured tool functions.

	Args:
		config: Config object to pass to the registration function
		register_fn: The registration function (e.g., register_nodes_tools)

	Returns:
		Dict mapping tool name to the tool function
	"""
	captured = {}

	class MockMCP:
		def tool(self):
			def decorator(fn):
				captured[fn.__name__] = fn
				return fn
			return decorator

	register_fn(MockMCP(), config)
	return captured
