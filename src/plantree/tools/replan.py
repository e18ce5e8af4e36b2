"""Replan session tools."""

import json

from mcp.server.fastmcp import FastMCP

from ..config import Config
from ..engine.replan import get_replan_manager
from ..errors import PlanTreeError
from ..nodes.models import ReplanSession
from .common import error_json, nodes_list, parse_ids, parse_json, resolve_tenant


def _session_response(session: ReplanSession) -> str:
	return json.dumps({
		"success": True,
		"session_id": session.id,
		"status": session.status.value,
		"version": session.version,
	}, indent=2)


def register_replan_tools(mcp: FastMCP, config: Config) -> None:
	"""Register replan session tools."""

	@mcp.tool()
	async def initiate_replan(
		plan_node_id: int,
		scope_type: str,
		scope_node_ids: str,
		created_by: str = "agent",
		proposed_changes_json: str = "",
		tenant_id: int = 0,
	) -> str:
		"""
		Open a draft replan session and compute its blast radius.

		Args:
			plan_node_id: Plan node ID
			scope_type: stage, job or context
			scope_node_ids: Comma-separated node IDs being replanned
			created_by: agent or human
			proposed_changes_json: Optional JSON describing the proposal
			tenant_id: Tenant (0 = configured default)
		"""
		manager = await get_replan_manager()
		try:
			session = await manager.initiate_replan(
				plan_node_id,
				resolve_tenant(config, tenant_id),
				scope_type,
				parse_ids(scope_node_ids),
				created_by,
				proposed_changes=parse_json(proposed_changes_json),
			)
		except PlanTreeError as e:
			return error_json(e)

		return json.dumps({
			"success": True,
			"session_id": session.id,
			"status": session.status.value,
			"blast_radius": session.blast_radius.model_dump(),
			"snapshot_size": len(session.original_snapshot),
		}, indent=2)

	@mcp.tool()
	async def start_replan(session_id: int) -> str:
		"""
		Move a replan session from draft to in_progress.

		Args:
			session_id: Replan session ID
		"""
		manager = await get_replan_manager()
		try:
			return _session_response(await manager.start_replan_session(session_id))
		except PlanTreeError as e:
			return error_json(e)

	@mcp.tool()
	async def commit_replan(session_id: int) -> str:
		"""
		Commit a draft or in-progress replan session.

		Args:
			session_id: Replan session ID
		"""
		manager = await get_replan_manager()
		try:
			return _session_response(await manager.commit_replan_session(session_id))
		except PlanTreeError as e:
			return error_json(e)

	@mcp.tool()
	async def abort_replan(session_id: int) -> str:
		"""
		Abort a draft or in-progress replan session.

		Args:
			session_id: Replan session ID
		"""
		manager = await get_replan_manager()
		try:
			return _session_response(await manager.abort_replan_session(session_id))
		except PlanTreeError as e:
			return error_json(e)

	@mcp.tool()
	async def update_replan_proposal(session_id: int, proposed_changes_json: str) -> str:
		"""
		Replace the proposed changes of an open replan session.

		Args:
			session_id: Replan session ID
			proposed_changes_json: JSON describing the proposal
		"""
		manager = await get_replan_manager()
		try:
			session = await manager.update_proposed_changes(session_id, parse_json(proposed_changes_json))
			return _session_response(session)
		except PlanTreeError as e:
			return error_json(e)

	@mcp.tool()
	async def get_replan_session(session_id: int) -> str:
		"""
		Get a replan session including its snapshot.

		Args:
			session_id: Replan session ID
		"""
		manager = await get_replan_manager()
		try:
			session = await manager.get_replan_session(session_id)
		except PlanTreeError as e:
			return error_json(e)
		return json.dumps({"session": session.model_dump(mode="json")}, indent=2)

	@mcp.tool()
	async def list_replan_sessions(plan_node_id: int, active_only: bool = False) -> str:
		"""
		List replan sessions for a plan, newest first.

		Args:
			plan_node_id: Plan node ID
			active_only: Only draft and in_progress sessions
		"""
		manager = await get_replan_manager()
		if active_only:
			sessions = await manager.list_active_replan_sessions(plan_node_id)
		else:
			sessions = await manager.list_replan_sessions(plan_node_id)

		return json.dumps({
			"count": len(sessions),
			"sessions": [s.get_summary() for s in sessions],
		}, indent=2)

	@mcp.tool()
	async def get_affected_nodes(session_id: int) -> str:
		"""
		Current rows of every node in a session's blast radius.

		Args:
			session_id: Replan session ID
		"""
		manager = await get_replan_manager()
		nodes = await manager.get_affected_nodes(session_id)
		return json.dumps({"count": len(nodes), "nodes": nodes_list(nodes)}, indent=2)

	@mcp.tool()
	async def diff_replan_snapshot(session_id: int) -> str:
		"""
		Compare a session's snapshot with the current rows.

		Args:
			session_id: Replan session ID
		"""
		manager = await get_replan_manager()
		try:
			diff = await manager.diff_snapshot(session_id)
		except PlanTreeError as e:
			return error_json(e)

		return json.dumps({
			"changed": [{"node_id": c.node_id, "fields": c.fields} for c in diff.changed],
			"removed": [n.id for n in diff.removed],
			"unchanged": diff.unchanged,
		}, indent=2)

	@mcp.tool()
	async def delete_replan_session(session_id: int) -> str:
		"""
		Delete a replan session in any state.

		Args:
			session_id: Replan session ID
		"""
		manager = await get_replan_manager()
		deleted = await manager.delete_replan_session(session_id)
		return json.dumps({"success": deleted, "session_id": session_id}, indent=2)
