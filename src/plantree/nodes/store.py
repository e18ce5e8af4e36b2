"""
Node Store - SQLite-backed storage for the plan tree.

Features:
- Node CRUD with path/depth maintained by the store
- Prefix (subtree), ancestor, parent, plan and tenant scoped queries
- Facet rows (1:1 with nodes) stored as validated JSON
- Transactional subtree moves
- Replan session rows with optimistic locking

Every call opens its own connection. Writes run inside BEGIN IMMEDIATE
transactions, so readers only ever observe committed state.
"""

import json
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import AsyncIterator, Iterable, Optional, Sequence

import aiosqlite
from pydantic import BaseModel

from ..errors import ConcurrencyConflictError, NotFoundError, ValidationError
from . import paths
from .models import (
	FACET_MODELS,
	Node,
	NodeDraft,
	NodeType,
	PlanFacet,
	ReplanSession,
	ReplanStatus,
)

logger = logging.getLogger(__name__)

SCHEMA = """
	PRAGMA journal_mode=WAL;

	CREATE TABLE IF NOT EXISTS nodes (
		id INTEGER PRIMARY KEY AUTOINCREMENT,
		type TEXT NOT NULL,
		name TEXT NOT NULL,
		path TEXT NOT NULL,
		depth INTEGER NOT NULL DEFAULT 0,
		parent_id INTEGER REFERENCES nodes(id) ON DELETE CASCADE,
		plan_id INTEGER,
		tenant_id INTEGER NOT NULL,
		active INTEGER NOT NULL DEFAULT 1,
		is_frozen INTEGER NOT NULL DEFAULT 0,
		disable_dependency_inheritance INTEGER NOT NULL DEFAULT 0,
		include_dependency_ids TEXT NOT NULL DEFAULT '[]',
		exclude_dependency_ids TEXT NOT NULL DEFAULT '[]',
		created_at TEXT NOT NULL,
		updated_at TEXT NOT NULL,
		UNIQUE(tenant_id, path)
	);

	CREATE INDEX IF NOT EXISTS idx_nodes_parent ON nodes(parent_id);
	CREATE INDEX IF NOT EXISTS idx_nodes_plan_type ON nodes(plan_id, type, active);
	CREATE INDEX IF NOT EXISTS idx_nodes_tenant_type ON nodes(tenant_id, type, active);

	CREATE TABLE IF NOT EXISTS node_facets (
		node_id INTEGER PRIMARY KEY REFERENCES nodes(id) ON DELETE CASCADE,
		node_type TEXT NOT NULL,
		data TEXT NOT NULL
	);

	CREATE TABLE IF NOT EXISTS replan_sessions (
		id INTEGER PRIMARY KEY AUTOINCREMENT,
		plan_node_id INTEGER NOT NULL REFERENCES nodes(id) ON DELETE CASCADE,
		tenant_id INTEGER NOT NULL,
		status TEXT NOT NULL,
		version INTEGER NOT NULL DEFAULT 1,
		data TEXT NOT NULL,
		created_at TEXT NOT NULL,
		updated_at TEXT NOT NULL
	);

	CREATE INDEX IF NOT EXISTS idx_replan_plan ON replan_sessions(plan_node_id);
	CREATE INDEX IF NOT EXISTS idx_replan_status ON replan_sessions(status);
"""

NODE_ORDER = "ORDER BY depth, path"


def _now() -> str:
	return datetime.now().isoformat()


def _placeholders(values: Sequence) -> str:
	return ",".join("?" * len(values))


def _row_to_node(row: aiosqlite.Row) -> Node:
	return Node(
		id=row["id"],
		type=row["type"],
		name=row["name"],
		path=row["path"],
		depth=row["depth"],
		parent_id=row["parent_id"],
		plan_id=row["plan_id"],
		tenant_id=row["tenant_id"],
		active=bool(row["active"]),
		is_frozen=bool(row["is_frozen"]),
		disable_dependency_inheritance=bool(row["disable_dependency_inheritance"]),
		include_dependency_ids=json.loads(row["include_dependency_ids"]),
		exclude_dependency_ids=json.loads(row["exclude_dependency_ids"]),
		created_at=row["created_at"],
		updated_at=row["updated_at"],
	)


def _node_filters(
	types: Optional[Iterable[NodeType]] = None,
	active_only: bool = False,
) -> tuple[list[str], list]:
	conditions: list[str] = []
	params: list = []
	if types:
		type_values = [NodeType(t).value for t in types]
		conditions.append(f"type IN ({_placeholders(type_values)})")
		params.extend(type_values)
	if active_only:
		conditions.append("active = 1")
	return conditions, params


def _validate_facet(node_type: NodeType, facet: Optional[BaseModel]) -> Optional[str]:
	"""Check that facet matches node_type and return its JSON."""
	if facet is None:
		return None
	expected = FACET_MODELS[NodeType(node_type)]
	if not isinstance(facet, expected):
		raise ValidationError(
			f"{type(facet).__name__} is not a valid facet for {NodeType(node_type).value} nodes "
			f"(expected {expected.__name__})"
		)
	return facet.model_dump_json()


class NodeStore:
	"""
	SQLite-backed node storage.

	Usage:
		store = NodeStore("data/plantree.db")
		await store.init()

		plan = await store.create_plan("Release", tenant_id=1, goal="Ship it")
		stage = await store.insert(
			NodeDraft(type=NodeType.STAGE, name="Build", tenant_id=1, parent_id=plan.id),
			StageFacet(description="Compile"),
		)

		subtree = await store.get_subtree(plan.path, tenant_id=1)
	"""

	# Allowlist of columns that can be updated (prevents SQL injection via column names)
	ALLOWED_UPDATE_COLUMNS = frozenset({
		"name", "active", "is_frozen", "disable_dependency_inheritance",
		"include_dependency_ids", "exclude_dependency_ids",
	})

	def __init__(self, db_path: str = ""):
		if not db_path:
			from ..config import get_config
			db_path = str(get_config().db_path)
		self.db_path = Path(db_path)
		self.db_path.parent.mkdir(parents=True, exist_ok=True)

	@asynccontextmanager
	async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
		async with aiosqlite.connect(str(self.db_path), isolation_level=None) as db:
			db.row_factory = aiosqlite.Row
			await db.execute("PRAGMA foreign_keys = ON")
			yield db

	@asynccontextmanager
	async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
		"""Connection holding the write lock until the block exits."""
		async with self._connect() as db:
			await db.execute("BEGIN IMMEDIATE")
			try:
				yield db
			except BaseException:
				await db.execute("ROLLBACK")
				raise
			await db.execute("COMMIT")

	async def init(self):
		"""Initialize the database schema."""
		async with self._connect() as db:
			await db.executescript(SCHEMA)
		logger.info(f"Node store initialized: {self.db_path}")

	# ------------------------------------------------------------------
	# Internal fetch helpers (work on an open connection)
	# ------------------------------------------------------------------

	async def _fetch_nodes(
		self,
		db: aiosqlite.Connection,
		conditions: list[str],
		params: list,
		order: str = NODE_ORDER,
	) -> list[Node]:
		where_clause = " AND ".join(conditions) if conditions else "1=1"
		async with db.execute(
			f"SELECT * FROM nodes WHERE {where_clause} {order}",
			params,
		) as cursor:
			rows = await cursor.fetchall()
		return [_row_to_node(row) for row in rows]

	async def _fetch_node(self, db: aiosqlite.Connection, node_id: int) -> Optional[Node]:
		nodes = await self._fetch_nodes(db, ["id = ?"], [node_id], order="")
		return nodes[0] if nodes else None

	async def _fetch_subtree(
		self,
		db: aiosqlite.Connection,
		path: str,
		tenant_id: int,
		include_self: bool = True,
		types: Optional[Iterable[NodeType]] = None,
		active_only: bool = False,
	) -> list[Node]:
		low, high = paths.subtree_range(path)
		range_clause = "(path > ? AND path < ?)"
		params: list = [tenant_id]
		if include_self:
			range_clause = f"(path = ? OR {range_clause})"
			params.append(path)
		params.extend([low, high])
		conditions = ["tenant_id = ?", range_clause]
		extra, extra_params = _node_filters(types, active_only)
		return await self._fetch_nodes(db, conditions + extra, params + extra_params)

	async def _query(self, conditions: list[str], params: list, order: str = NODE_ORDER) -> list[Node]:
		async with self._connect() as db:
			return await self._fetch_nodes(db, conditions, params, order)

	# ------------------------------------------------------------------
	# Node reads
	# ------------------------------------------------------------------

	async def get_by_id(self, node_id: int) -> Optional[Node]:
		"""Get a node by id, or None."""
		async with self._connect() as db:
			return await self._fetch_node(db, node_id)

	async def get_by_ids(
		self,
		node_ids: Iterable[int],
		tenant_id: Optional[int] = None,
		active_only: bool = False,
	) -> list[Node]:
		"""
		Get nodes by id, in the order the ids were given.

		Unknown ids are skipped. With tenant_id, nodes of other tenants are
		skipped too.
		"""
		ids = list(dict.fromkeys(node_ids))
		if not ids:
			return []
		conditions = [f"id IN ({_placeholders(ids)})"]
		params: list = list(ids)
		if tenant_id is not None:
			conditions.append("tenant_id = ?")
			params.append(tenant_id)
		extra, extra_params = _node_filters(active_only=active_only)
		found = {n.id: n for n in await self._query(conditions + extra, params + extra_params, order="")}
		return [found[i] for i in ids if i in found]

	async def get_by_parent(
		self,
		parent_id: int,
		types: Optional[Iterable[NodeType]] = None,
		active_only: bool = False,
	) -> list[Node]:
		"""Direct children of a node."""
		return await self.get_by_parents([parent_id], types=types, active_only=active_only)

	async def get_by_parents(
		self,
		parent_ids: Iterable[int],
		types: Optional[Iterable[NodeType]] = None,
		active_only: bool = False,
	) -> list[Node]:
		"""Direct children of several nodes in one query."""
		ids = list(dict.fromkeys(parent_ids))
		if not ids:
			return []
		extra, extra_params = _node_filters(types, active_only)
		return await self._query(
			[f"parent_id IN ({_placeholders(ids)})"] + extra,
			list(ids) + extra_params,
		)

	async def get_by_plan(
		self,
		plan_id: int,
		types: Optional[Iterable[NodeType]] = None,
		active_only: bool = False,
	) -> list[Node]:
		"""Every node owned by a plan, root first."""
		extra, extra_params = _node_filters(types, active_only)
		return await self._query(["plan_id = ?"] + extra, [plan_id] + extra_params)

	async def get_by_plan_and_type(
		self,
		plan_id: int,
		node_type: NodeType,
		active_only: bool = False,
	) -> list[Node]:
		return await self.get_by_plan(plan_id, types=[node_type], active_only=active_only)

	async def get_by_paths(
		self,
		node_paths: Iterable[str],
		tenant_id: int,
		active_only: bool = False,
	) -> list[Node]:
		"""Nodes at exact paths (ancestor lookups), root first."""
		path_list = list(dict.fromkeys(node_paths))
		if not path_list:
			return []
		extra, extra_params = _node_filters(active_only=active_only)
		return await self._query(
			["tenant_id = ?", f"path IN ({_placeholders(path_list)})"] + extra,
			[tenant_id] + path_list + extra_params,
		)

	async def get_subtree(
		self,
		path: str,
		tenant_id: int,
		include_self: bool = True,
		types: Optional[Iterable[NodeType]] = None,
		active_only: bool = False,
	) -> list[Node]:
		"""Every node under path (and path itself unless include_self is False)."""
		async with self._connect() as db:
			return await self._fetch_subtree(db, path, tenant_id, include_self, types, active_only)

	async def get_by_tenant(
		self,
		tenant_id: int,
		types: Optional[Iterable[NodeType]] = None,
		active_only: bool = False,
	) -> list[Node]:
		extra, extra_params = _node_filters(types, active_only)
		return await self._query(["tenant_id = ?"] + extra, [tenant_id] + extra_params, order="ORDER BY path")

	async def get_plans(self, tenant_id: Optional[int] = None, active_only: bool = False) -> list[Node]:
		"""Plan roots, newest first."""
		conditions, params = _node_filters([NodeType.PLAN], active_only)
		if tenant_id is not None:
			conditions.append("tenant_id = ?")
			params.append(tenant_id)
		return await self._query(conditions, params, order="ORDER BY created_at DESC, id DESC")

	# ------------------------------------------------------------------
	# Node writes
	# ------------------------------------------------------------------

	async def insert(self, draft: NodeDraft, facet: Optional[BaseModel] = None) -> Node:
		"""
		Create a node.

		The row is inserted with a placeholder path, then the real path,
		depth and plan_id are written once the id is known. Both steps share
		one transaction, so the placeholder is never visible.

		Raises:
			ValidationError: Bad parent/type combination or facet mismatch
			NotFoundError: Parent does not exist
		"""
		facet_json = _validate_facet(draft.type, facet)
		now = _now()

		async with self._transaction() as db:
			parent: Optional[Node] = None
			if draft.type == NodeType.PLAN:
				if draft.parent_id is not None:
					raise ValidationError("Plan nodes are roots and cannot have a parent")
			else:
				if draft.parent_id is None:
					raise ValidationError(f"{draft.type.value} nodes need a parent")
				parent = await self._fetch_node(db, draft.parent_id)
				if parent is None:
					raise NotFoundError(f"Parent node not found: {draft.parent_id}")
				if parent.tenant_id != draft.tenant_id:
					raise ValidationError(
						f"Parent {parent.id} belongs to tenant {parent.tenant_id}, not {draft.tenant_id}"
					)

			cursor = await db.execute(
				"""
				INSERT INTO nodes (
					type, name, path, depth, parent_id, plan_id, tenant_id,
					disable_dependency_inheritance, include_dependency_ids,
					exclude_dependency_ids, created_at, updated_at
				)
				VALUES (?, ?, ?, 0, ?, NULL, ?, ?, ?, ?, ?, ?)
				""",
				(
					draft.type.value,
					draft.name,
					f"~{uuid.uuid4().hex}",
					draft.parent_id,
					draft.tenant_id,
					int(draft.disable_dependency_inheritance),
					json.dumps(draft.include_dependency_ids),
					json.dumps(draft.exclude_dependency_ids),
					now,
					now,
				),
			)
			node_id = cursor.lastrowid

			path = paths.build_path(parent.path if parent else None, draft.type, node_id)
			plan_id = parent.plan_id if parent else node_id
			await db.execute(
				"UPDATE nodes SET path = ?, depth = ?, plan_id = ? WHERE id = ?",
				(path, paths.depth(path), plan_id, node_id),
			)

			if facet_json is not None:
				await db.execute(
					"INSERT INTO node_facets (node_id, node_type, data) VALUES (?, ?, ?)",
					(node_id, draft.type.value, facet_json),
				)

			node = await self._fetch_node(db, node_id)

		logger.info(f"Created {node.type.value} node {node.id} at {node.path}")
		return node

	async def create_plan(
		self,
		name: str,
		tenant_id: int,
		goal: str = "",
		version: int = 1,
		parent_version: Optional[int] = None,
	) -> Node:
		"""Create a plan root with its plan facet."""
		return await self.insert(
			NodeDraft(type=NodeType.PLAN, name=name, tenant_id=tenant_id),
			PlanFacet(goal=goal, version=version, parent_version=parent_version),
		)

	async def fork_plan(self, plan_id: int, name: str = "", tenant_id: Optional[int] = None) -> Node:
		"""
		Start the next version of a plan as a new, empty plan root.

		The fork keeps the goal, bumps version by one and records the
		source version as parent_version. Children are not copied.
		"""
		plan = await self.get_by_id(plan_id)
		if plan is None or plan.type != NodeType.PLAN:
			raise NotFoundError(f"Plan not found: {plan_id}")
		facet = await self.get_facet(plan_id) or PlanFacet()

		fork = await self.create_plan(
			name or f"{plan.name} (Fork)",
			plan.tenant_id if tenant_id is None else tenant_id,
			goal=facet.goal,
			version=facet.version + 1,
			parent_version=facet.version,
		)
		logger.info(f"Forked plan {plan_id} v{facet.version} into plan {fork.id}")
		return fork

	async def update(self, node_id: int, **fields) -> Node:
		"""
		Update allow-listed columns of a node.

		Raises:
			ValidationError: Unknown or structural column
			NotFoundError: Node does not exist
		"""
		invalid_columns = set(fields.keys()) - self.ALLOWED_UPDATE_COLUMNS
		if invalid_columns:
			raise ValidationError(f"Invalid columns for update: {sorted(invalid_columns)}")
		if not fields:
			node = await self.get_by_id(node_id)
			if node is None:
				raise NotFoundError(f"Node not found: {node_id}")
			return node

		values = {}
		for key, value in fields.items():
			if key in ("include_dependency_ids", "exclude_dependency_ids"):
				values[key] = json.dumps(list(dict.fromkeys(int(v) for v in value or [])))
			elif key == "name":
				values[key] = value
			else:
				values[key] = int(bool(value))
		values["updated_at"] = _now()

		set_clause = ", ".join(f"{k} = ?" for k in values.keys())
		async with self._transaction() as db:
			cursor = await db.execute(
				f"UPDATE nodes SET {set_clause} WHERE id = ?",
				list(values.values()) + [node_id],
			)
			if cursor.rowcount == 0:
				raise NotFoundError(f"Node not found: {node_id}")
			node = await self._fetch_node(db, node_id)

		logger.info(f"Updated node {node_id}: {sorted(fields)}")
		return node

	async def delete(self, node_id: int) -> Node:
		"""
		Delete a node. Descendants, facets and replan sessions cascade.

		Returns:
			The deleted node row
		"""
		async with self._transaction() as db:
			node = await self._fetch_node(db, node_id)
			if node is None:
				raise NotFoundError(f"Node not found: {node_id}")
			await db.execute("DELETE FROM nodes WHERE id = ?", (node_id,))

		logger.info(f"Deleted node {node_id} ({node.path}) and its subtree")
		return node

	async def move(self, node_id: int, new_parent_id: Optional[int]) -> Node:
		"""
		Reparent a node and rewrite the paths of its whole subtree.

		All new paths are computed first and then written in one
		transaction, so no reader can see a half-moved subtree.

		Raises:
			ValidationError: Plan roots, moves to root, cross-tenant moves and
				moves under the node's own subtree
			NotFoundError: Node or new parent does not exist
		"""
		now = _now()
		async with self._transaction() as db:
			node = await self._fetch_node(db, node_id)
			if node is None:
				raise NotFoundError(f"Node not found: {node_id}")
			if node.type == NodeType.PLAN:
				raise ValidationError("Plan roots cannot be moved")
			if new_parent_id is None:
				raise ValidationError("Only plan nodes can be roots")

			new_parent = await self._fetch_node(db, new_parent_id)
			if new_parent is None:
				raise NotFoundError(f"New parent node not found: {new_parent_id}")
			if new_parent.tenant_id != node.tenant_id:
				raise ValidationError("Cannot move a node to another tenant")
			if paths.is_descendant_of(new_parent.path, node.path):
				raise ValidationError(
					f"Cannot move node {node_id} under its own subtree ({new_parent.path})"
				)

			new_path = paths.build_path(new_parent.path, node.type, node.id)
			subtree = await self._fetch_subtree(db, node.path, node.tenant_id, include_self=True)

			updates = []
			for member in subtree:
				member_path = paths.rebase_path(member.path, node.path, new_path)
				updates.append((member_path, paths.depth(member_path), new_parent.plan_id, now, member.id))

			await db.executemany(
				"UPDATE nodes SET path = ?, depth = ?, plan_id = ?, updated_at = ? WHERE id = ?",
				updates,
			)
			await db.execute(
				"UPDATE nodes SET parent_id = ? WHERE id = ?",
				(new_parent.id, node.id),
			)
			moved = await self._fetch_node(db, node_id)

		logger.info(f"Moved node {node_id}: {node.path} -> {moved.path} ({len(updates)} rows)")
		return moved

	# ------------------------------------------------------------------
	# Facets
	# ------------------------------------------------------------------

	async def get_facet(self, node_id: int) -> Optional[BaseModel]:
		"""Type-specific facet of a node, or None if it has none."""
		facets = await self.get_facets([node_id])
		return facets.get(node_id)

	async def get_facets(self, node_ids: Iterable[int]) -> dict[int, BaseModel]:
		ids = list(dict.fromkeys(node_ids))
		if not ids:
			return {}
		async with self._connect() as db:
			async with db.execute(
				f"SELECT * FROM node_facets WHERE node_id IN ({_placeholders(ids)})",
				ids,
			) as cursor:
				rows = await cursor.fetchall()
		return {
			row["node_id"]: FACET_MODELS[NodeType(row["node_type"])].model_validate_json(row["data"])
			for row in rows
		}

	async def get_facets_for_plan(
		self,
		plan_id: int,
		types: Optional[Iterable[NodeType]] = None,
		active_only: bool = True,
	) -> dict[int, BaseModel]:
		"""Facets of every node in a plan, optionally restricted by node type."""
		conditions = ["n.plan_id = ?"]
		params: list = [plan_id]
		if types:
			type_values = [NodeType(t).value for t in types]
			conditions.append(f"n.type IN ({_placeholders(type_values)})")
			params.extend(type_values)
		if active_only:
			conditions.append("n.active = 1")

		async with self._connect() as db:
			async with db.execute(
				f"""
				SELECT f.node_id, f.node_type, f.data
				FROM node_facets f JOIN nodes n ON n.id = f.node_id
				WHERE {" AND ".join(conditions)}
				ORDER BY n.depth, n.path
				""",
				params,
			) as cursor:
				rows = await cursor.fetchall()
		return {
			row["node_id"]: FACET_MODELS[NodeType(row["node_type"])].model_validate_json(row["data"])
			for row in rows
		}

	async def upsert_facet(self, node_id: int, facet: BaseModel) -> BaseModel:
		"""Create or replace the facet of a node."""
		async with self._transaction() as db:
			node = await self._fetch_node(db, node_id)
			if node is None:
				raise NotFoundError(f"Node not found: {node_id}")
			facet_json = _validate_facet(node.type, facet)
			await db.execute(
				"""
				INSERT INTO node_facets (node_id, node_type, data) VALUES (?, ?, ?)
				ON CONFLICT(node_id) DO UPDATE SET data = excluded.data
				""",
				(node_id, node.type.value, facet_json),
			)
			await db.execute("UPDATE nodes SET updated_at = ? WHERE id = ?", (_now(), node_id))

		logger.info(f"Stored {node.type.value} facet for node {node_id}")
		return facet

	# ------------------------------------------------------------------
	# Replan sessions
	# ------------------------------------------------------------------

	async def insert_session(self, session: ReplanSession) -> ReplanSession:
		"""Persist a new session and return it with its id."""
		now = _now()
		session = session.model_copy(update={"created_at": now, "updated_at": now, "version": 1})

		async with self._transaction() as db:
			cursor = await db.execute(
				"""
				INSERT INTO replan_sessions (plan_node_id, tenant_id, status, version, data, created_at, updated_at)
				VALUES (?, ?, ?, 1, '{}', ?, ?)
				""",
				(session.plan_node_id, session.tenant_id, session.status.value, now, now),
			)
			session.id = cursor.lastrowid
			await db.execute(
				"UPDATE replan_sessions SET data = ? WHERE id = ?",
				(session.model_dump_json(), session.id),
			)

		logger.info(
			f"Created replan session {session.id} for plan {session.plan_node_id} "
			f"({len(session.scope_node_ids)} scope nodes)"
		)
		return session

	async def get_session(self, session_id: int) -> Optional[ReplanSession]:
		async with self._connect() as db:
			async with db.execute(
				"SELECT data FROM replan_sessions WHERE id = ?",
				(session_id,),
			) as cursor:
				row = await cursor.fetchone()
		if not row:
			return None
		return ReplanSession.model_validate_json(row["data"])

	async def _update_session(
		self,
		session_id: int,
		expected_version: int,
		updates: dict,
	) -> ReplanSession:
		async with self._transaction() as db:
			async with db.execute(
				"SELECT data, version FROM replan_sessions WHERE id = ?",
				(session_id,),
			) as cursor:
				row = await cursor.fetchone()

			if not row:
				raise NotFoundError(f"Replan session not found: {session_id}")

			current_version = row["version"]
			if current_version != expected_version:
				raise ConcurrencyConflictError(
					f"Replan session {session_id} version mismatch: "
					f"expected {expected_version}, got {current_version}"
				)

			session = ReplanSession.model_validate_json(row["data"])
			session = session.model_copy(update={
				**updates,
				"version": current_version + 1,
				"updated_at": _now(),
			})

			cursor = await db.execute(
				"""
				UPDATE replan_sessions SET status = ?, version = ?, data = ?, updated_at = ?
				WHERE id = ? AND version = ?
				""",
				(
					session.status.value,
					session.version,
					session.model_dump_json(),
					session.updated_at,
					session_id,
					current_version,
				),
			)
			if cursor.rowcount == 0:
				raise ConcurrencyConflictError(f"Replan session {session_id} was modified concurrently")

		return session

	async def update_session_status(
		self,
		session_id: int,
		status: ReplanStatus,
		expected_version: int,
	) -> ReplanSession:
		"""
		Set a session's status with optimistic locking.

		Transition legality is the caller's concern; this only guards
		against lost updates.

		Raises:
			NotFoundError: Session does not exist
			ConcurrencyConflictError: Version does not match
		"""
		session = await self._update_session(session_id, expected_version, {"status": ReplanStatus(status)})
		logger.info(f"Replan session {session_id} -> {session.status.value}")
		return session

	async def update_session_changes(
		self,
		session_id: int,
		proposed_changes,
		expected_version: int,
	) -> ReplanSession:
		"""Replace a session's proposed changes with optimistic locking."""
		return await self._update_session(session_id, expected_version, {"proposed_changes": proposed_changes})

	async def delete_session(self, session_id: int) -> bool:
		"""Delete a session. Returns False if it did not exist."""
		async with self._transaction() as db:
			cursor = await db.execute("DELETE FROM replan_sessions WHERE id = ?", (session_id,))
			deleted = cursor.rowcount > 0
		if deleted:
			logger.info(f"Deleted replan session {session_id}")
		return deleted

	async def list_sessions_for_plan(
		self,
		plan_node_id: int,
		statuses: Optional[Iterable[ReplanStatus]] = None,
	) -> list[ReplanSession]:
		"""Sessions of a plan, newest first."""
		conditions = ["plan_node_id = ?"]
		params: list = [plan_node_id]
		if statuses:
			status_values = [ReplanStatus(s).value for s in statuses]
			conditions.append(f"status IN ({_placeholders(status_values)})")
			params.extend(status_values)

		async with self._connect() as db:
			async with db.execute(
				f"SELECT data FROM replan_sessions WHERE {' AND '.join(conditions)} "
				"ORDER BY created_at DESC, id DESC",
				params,
			) as cursor:
				rows = await cursor.fetchall()
		return [ReplanSession.model_validate_json(row["data"]) for row in rows]


# Global store instance
_store: Optional[NodeStore] = None


async def get_node_store(db_path: str = "") -> NodeStore:
	"""Get or create the global node store."""
	global _store
	if _store is None:
		_store = NodeStore(db_path)
		await _store.init()
	return _store
