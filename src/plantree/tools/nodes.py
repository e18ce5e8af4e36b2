"""Node management tools."""

import json
from typing import Optional

from mcp.server.fastmcp import FastMCP

from ..config import Config
from ..errors import NotFoundError, PlanTreeError, ValidationError
from ..nodes.models import NodeDraft, NodeType
from ..nodes.store import get_node_store
from ..nodes.tree import load_plan_tree
from .common import (
	error_json,
	node_dict,
	nodes_list,
	parse_facet,
	parse_ids,
	parse_optional_ids,
	resolve_tenant,
)


def register_nodes_tools(mcp: FastMCP, config: Config) -> None:
	"""Register node management tools."""

	@mcp.tool()
	async def create_plan(name: str, goal: str = "", tenant_id: int = 0) -> str:
		"""
		Create a new plan root.

		Args:
			name: Plan name
			goal: What the plan achieves
			tenant_id: Owning tenant (0 = configured default)
		"""
		store = await get_node_store()
		plan = await store.create_plan(name, resolve_tenant(config, tenant_id), goal=goal)

		return json.dumps({
			"success": True,
			"plan_id": plan.id,
			"path": plan.path,
		}, indent=2)

	@mcp.tool()
	async def list_plans(tenant_id: int = 0, active_only: bool = True) -> str:
		"""
		List plan roots for a tenant, newest first.

		Args:
			tenant_id: Tenant (0 = configured default)
			active_only: Skip soft-deleted plans
		"""
		store = await get_node_store()
		plans = await store.get_plans(resolve_tenant(config, tenant_id), active_only=active_only)

		return json.dumps({
			"count": len(plans),
			"plans": [{"id": p.id, "name": p.name, "created_at": p.created_at} for p in plans],
		}, indent=2)

	@mcp.tool()
	async def create_node(
		parent_id: int,
		node_type: str,
		name: str,
		facet_json: str = "",
		include_dependency_ids: str = "",
		exclude_dependency_ids: str = "",
		disable_dependency_inheritance: bool = False,
	) -> str:
		"""
		Create a stage, job, context, io or data node under a parent.

		Args:
			parent_id: Parent node ID
			node_type: stage, job, context, io or data
			name: Node name
			facet_json: Optional JSON object with the type's facet fields
			include_dependency_ids: Comma-separated node IDs to include
			exclude_dependency_ids: Comma-separated node IDs to exclude
			disable_dependency_inheritance: Only use explicit includes
		"""
		try:
			try:
				parsed_type = NodeType(node_type)
			except ValueError as e:
				valid = ", ".join(t.value for t in NodeType if t != NodeType.PLAN)
				raise ValidationError(f"Invalid node type: {node_type} (expected one of: {valid})") from e
			if parsed_type == NodeType.PLAN:
				raise ValidationError("Use create_plan to create plan roots")

			store = await get_node_store()
			parent = await store.get_by_id(parent_id)
			if parent is None:
				raise NotFoundError(f"Parent node not found: {parent_id}")

			node = await store.insert(
				NodeDraft(
					type=parsed_type,
					name=name,
					tenant_id=parent.tenant_id,
					parent_id=parent.id,
					disable_dependency_inheritance=disable_dependency_inheritance,
					include_dependency_ids=parse_ids(include_dependency_ids),
					exclude_dependency_ids=parse_ids(exclude_dependency_ids),
				),
				parse_facet(parsed_type, facet_json),
			)
			return json.dumps({"success": True, "node": node_dict(node)}, indent=2)
		except PlanTreeError as e:
			return error_json(e)

	@mcp.tool()
	async def get_node(node_id: int) -> str:
		"""
		Get a node and its facet.

		Args:
			node_id: Node ID
		"""
		store = await get_node_store()
		node = await store.get_by_id(node_id)
		if node is None:
			return error_json(NotFoundError(f"Node not found: {node_id}"))

		facet = await store.get_facet(node_id)
		return json.dumps({
			"node": node_dict(node),
			"facet": facet.model_dump(mode="json") if facet is not None else None,
		}, indent=2)

	@mcp.tool()
	async def update_node_dependencies(
		node_id: int,
		disable_dependency_inheritance: Optional[bool] = None,
		include_dependency_ids: Optional[str] = None,
		exclude_dependency_ids: Optional[str] = None,
	) -> str:
		"""
		Change a node's dependency overrides. Omitted arguments are left as they are.

		Args:
			node_id: Node ID
			disable_dependency_inheritance: Only use explicit includes
			include_dependency_ids: Comma-separated node IDs ("" clears)
			exclude_dependency_ids: Comma-separated node IDs ("" clears)
		"""
		fields = {}
		try:
			if disable_dependency_inheritance is not None:
				fields["disable_dependency_inheritance"] = disable_dependency_inheritance
			include = parse_optional_ids(include_dependency_ids)
			if include is not None:
				fields["include_dependency_ids"] = include
			exclude = parse_optional_ids(exclude_dependency_ids)
			if exclude is not None:
				fields["exclude_dependency_ids"] = exclude

			store = await get_node_store()
			node = await store.update(node_id, **fields)
			return json.dumps({"success": True, "node": node_dict(node)}, indent=2)
		except PlanTreeError as e:
			return error_json(e)

	@mcp.tool()
	async def update_node(
		node_id: int,
		name: Optional[str] = None,
		active: Optional[bool] = None,
		is_frozen: Optional[bool] = None,
	) -> str:
		"""
		Rename, soft-delete/restore or freeze/unfreeze a node.

		Omitted arguments are left as they are. active=False hides the node
		from dependency resolution without deleting it.

		Args:
			node_id: Node ID
			name: New name
			active: False to soft-delete, True to restore
			is_frozen: Freeze or unfreeze the node
		"""
		fields = {
			key: value
			for key, value in (("name", name), ("active", active), ("is_frozen", is_frozen))
			if value is not None
		}
		store = await get_node_store()
		try:
			if "name" in fields and not fields["name"].strip():
				raise ValidationError("Node name cannot be empty")
			node = await store.update(node_id, **fields)
			return json.dumps({"success": True, "node": node_dict(node)}, indent=2)
		except PlanTreeError as e:
			return error_json(e)

	@mcp.tool()
	async def update_facet(node_id: int, facet_json: str) -> str:
		"""
		Replace a node's facet (e.g. a stage's depends_on_node_ids or an io direction).

		Args:
			node_id: Node ID
			facet_json: JSON object with the facet fields for the node's type
		"""
		store = await get_node_store()
		try:
			node = await store.get_by_id(node_id)
			if node is None:
				raise NotFoundError(f"Node not found: {node_id}")
			facet = parse_facet(node.type, facet_json)
			if facet is None:
				raise ValidationError("facet_json is required")
			stored = await store.upsert_facet(node_id, facet)
			return json.dumps({
				"success": True,
				"node_id": node_id,
				"facet": stored.model_dump(mode="json"),
			}, indent=2)
		except PlanTreeError as e:
			return error_json(e)

	@mcp.tool()
	async def fork_plan(plan_id: int, name: str = "", tenant_id: int = 0) -> str:
		"""
		Start the next version of a plan as a new, empty plan root.

		Args:
			plan_id: Plan to fork
			name: Name of the fork (default: "<name> (Fork)")
			tenant_id: Owning tenant (0 = same as the source plan)
		"""
		store = await get_node_store()
		try:
			fork = await store.fork_plan(plan_id, name=name, tenant_id=tenant_id or None)
			facet = await store.get_facet(fork.id)
			return json.dumps({
				"success": True,
				"plan_id": fork.id,
				"name": fork.name,
				"version": facet.version,
				"parent_version": facet.parent_version,
			}, indent=2)
		except PlanTreeError as e:
			return error_json(e)

	@mcp.tool()
	async def move_node(node_id: int, new_parent_id: int) -> str:
		"""
		Move a node (and its subtree) under a new parent.

		Args:
			node_id: Node to move
			new_parent_id: New parent node ID
		"""
		store = await get_node_store()
		try:
			old = await store.get_by_id(node_id)
			moved = await store.move(node_id, new_parent_id)
			return json.dumps({
				"success": True,
				"node_id": moved.id,
				"old_path": old.path if old else None,
				"new_path": moved.path,
			}, indent=2)
		except PlanTreeError as e:
			return error_json(e)

	@mcp.tool()
	async def delete_node(node_id: int) -> str:
		"""
		Delete a node with its subtree, facets and (for plans) replan sessions.

		Args:
			node_id: Node ID
		"""
		store = await get_node_store()
		try:
			deleted = await store.delete(node_id)
			return json.dumps({"success": True, "deleted": node_dict(deleted)}, indent=2)
		except PlanTreeError as e:
			return error_json(e)

	@mcp.tool()
	async def get_plan_tree(plan_id: int, active_only: bool = False) -> str:
		"""
		Get a plan as a nested tree with facets.

		Args:
			plan_id: Plan node ID
			active_only: Skip soft-deleted nodes
		"""
		store = await get_node_store()
		try:
			tree = await load_plan_tree(store, plan_id, active_only=active_only)
		except PlanTreeError as e:
			return error_json(e)

		return json.dumps({
			"tree": tree.to_dict(),
			"stats": tree.depth_stats(),
		}, indent=2)

	@mcp.tool()
	async def get_subtree(node_id: int, include_self: bool = True) -> str:
		"""
		List every node below a node, shallowest first.

		Args:
			node_id: Root of the subtree
			include_self: Include the node itself
		"""
		store = await get_node_store()
		node = await store.get_by_id(node_id)
		if node is None:
			return error_json(NotFoundError(f"Node not found: {node_id}"))

		subtree = await store.get_subtree(node.path, node.tenant_id, include_self=include_self)
		return json.dumps({"count": len(subtree), "nodes": nodes_list(subtree)}, indent=2)
