"""Dependency resolution tools."""

import json
from typing import Optional

from mcp.server.fastmcp import FastMCP

from ..config import Config
from ..engine.dependencies import DependencyResolver
from ..errors import PlanTreeError
from ..nodes.models import DependencyOverrides
from ..nodes.store import get_node_store
from .common import error_json, nodes_list, parse_ids, parse_optional_ids, resolve_tenant


async def _resolver() -> DependencyResolver:
	return DependencyResolver(await get_node_store())


def register_dependencies_tools(mcp: FastMCP, config: Config) -> None:
	"""Register dependency resolution tools."""

	@mcp.tool()
	async def resolve_dependencies(node_id: int) -> str:
		"""
		Resolve a node's effective context/io/data dependencies.

		Args:
			node_id: Node ID
		"""
		resolver = await _resolver()
		try:
			resolved = await resolver.resolve_dependencies(node_id)
		except PlanTreeError as e:
			return error_json(e)

		return json.dumps({
			"node_id": node_id,
			"dependency_ids": resolved.dependency_ids(),
			"inheritance_disabled": resolved.inheritance_disabled,
			"excluded_ids": resolved.excluded_ids,
			"dependencies": nodes_list(resolved.dependencies),
			"inherited_ids": [n.id for n in resolved.inherited],
			"included_ids": [n.id for n in resolved.included],
		}, indent=2)

	@mcp.tool()
	async def get_effective_context(node_id: int) -> str:
		"""
		Context nodes a node can see.

		Args:
			node_id: Node ID
		"""
		resolver = await _resolver()
		try:
			context = await resolver.get_effective_context(node_id)
		except PlanTreeError as e:
			return error_json(e)
		return json.dumps({"node_id": node_id, "context": nodes_list(context)}, indent=2)

	@mcp.tool()
	async def get_effective_data(node_id: int) -> str:
		"""
		Data nodes a node can see.

		Args:
			node_id: Node ID
		"""
		resolver = await _resolver()
		try:
			data = await resolver.get_effective_data(node_id)
		except PlanTreeError as e:
			return error_json(e)
		return json.dumps({"node_id": node_id, "data": nodes_list(data)}, indent=2)

	@mcp.tool()
	async def get_effective_io(node_id: int) -> str:
		"""
		IO nodes a node can see, split into inputs and outputs.

		Args:
			node_id: Node ID
		"""
		resolver = await _resolver()
		try:
			io = await resolver.get_effective_io(node_id)
		except PlanTreeError as e:
			return error_json(e)
		return json.dumps({
			"node_id": node_id,
			"inputs": nodes_list(io.inputs),
			"outputs": nodes_list(io.outputs),
		}, indent=2)

	@mcp.tool()
	async def containment_blast_radius(node_ids: str, tenant_id: int = 0) -> str:
		"""
		Tree-containment impact of changing nodes: ancestors, subtrees and the nodes themselves.

		For the execution-dependency impact used by replan sessions, see initiate_replan.

		Args:
			node_ids: Comma-separated node IDs
			tenant_id: Tenant (0 = configured default)
		"""
		resolver = await _resolver()
		try:
			radius = await resolver.compute_blast_radius(
				parse_ids(node_ids),
				tenant_id=resolve_tenant(config, tenant_id),
			)
		except PlanTreeError as e:
			return error_json(e)

		return json.dumps({
			"upstream": [n.id for n in radius.upstream],
			"downstream": [n.id for n in radius.downstream],
			"affected": [n.id for n in radius.affected],
		}, indent=2)

	@mcp.tool()
	async def preview_dependency_changes(
		node_id: int,
		disable_dependency_inheritance: Optional[bool] = None,
		include_dependency_ids: Optional[str] = None,
		exclude_dependency_ids: Optional[str] = None,
	) -> str:
		"""
		Show how dependencies would change under different overrides, without saving them.

		Args:
			node_id: Node ID
			disable_dependency_inheritance: Hypothetical inheritance flag
			include_dependency_ids: Hypothetical comma-separated includes
			exclude_dependency_ids: Hypothetical comma-separated excludes
		"""
		resolver = await _resolver()
		try:
			overrides = DependencyOverrides(
				disable_dependency_inheritance=disable_dependency_inheritance,
				include_dependency_ids=parse_optional_ids(include_dependency_ids),
				exclude_dependency_ids=parse_optional_ids(exclude_dependency_ids),
			)
			preview = await resolver.preview_dependency_changes(node_id, overrides)
		except PlanTreeError as e:
			return error_json(e)

		return json.dumps({
			"node_id": node_id,
			"before": [n.id for n in preview.before],
			"after": [n.id for n in preview.after],
			"added": nodes_list(preview.added),
			"removed": nodes_list(preview.removed),
		}, indent=2)
