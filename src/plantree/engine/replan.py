"""
Replan session state machine.

	draft -> in_progress -> committed
	                     -> aborted
	draft -> committed | aborted

committed and aborted are terminal. Status changes for one plan are
serialized with an asyncio.Lock, and the store rejects lost updates with
an optimistic version check.
"""

import asyncio
import logging
import weakref
from typing import Any, Iterable, Optional

from pydantic import BaseModel, Field

from ..errors import InvalidTransitionError, NotFoundError, ValidationError
from ..nodes.models import (
	ActorType,
	Node,
	NodeType,
	ReplanScopeType,
	ReplanSession,
	ReplanStatus,
)
from ..nodes.store import NodeStore, get_node_store
from .blast_radius import BlastRadiusCalculator

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[ReplanStatus, frozenset[ReplanStatus]] = {
	ReplanStatus.DRAFT: frozenset({ReplanStatus.IN_PROGRESS, ReplanStatus.COMMITTED, ReplanStatus.ABORTED}),
	ReplanStatus.IN_PROGRESS: frozenset({ReplanStatus.COMMITTED, ReplanStatus.ABORTED}),
	ReplanStatus.COMMITTED: frozenset(),
	ReplanStatus.ABORTED: frozenset(),
}

ACTIVE_STATUSES = (ReplanStatus.DRAFT, ReplanStatus.IN_PROGRESS)

# Row fields that count as a change when diffing a snapshot
DIFF_FIELDS = (
	"name", "path", "depth", "parent_id", "plan_id", "active", "is_frozen",
	"disable_dependency_inheritance", "include_dependency_ids", "exclude_dependency_ids",
)


class NodeChange(BaseModel):
	node_id: int
	fields: list[str]
	before: Node
	after: Node


class SnapshotDiff(BaseModel):
	"""Snapshot rows compared with their live counterparts."""
	changed: list[NodeChange] = Field(default_factory=list)
	removed: list[Node] = Field(default_factory=list, description="Snapshot rows that no longer exist")
	unchanged: list[int] = Field(default_factory=list)


class ReplanSessionManager:
	"""
	Drives draft/commit/abort review sessions.

	Usage:
		manager = ReplanSessionManager(store)
		session = await manager.initiate_replan(
			plan.id, tenant_id=1, scope_type="stage",
			scope_node_ids=[stage.id], created_by="agent",
		)
		await manager.start_replan_session(session.id)
		await manager.commit_replan_session(session.id)
	"""

	def __init__(self, store: NodeStore, calculator: Optional[BlastRadiusCalculator] = None):
		self.store = store
		self.calculator = calculator or BlastRadiusCalculator(store)
		# Entries vanish once no task holds or waits on the lock
		self._locks: weakref.WeakValueDictionary[int, asyncio.Lock] = weakref.WeakValueDictionary()

	def _lock_for(self, plan_id: int) -> asyncio.Lock:
		lock = self._locks.get(plan_id)
		if lock is None:
			lock = self._locks[plan_id] = asyncio.Lock()
		return lock

	async def _require_session(self, session_id: int) -> ReplanSession:
		session = await self.store.get_session(session_id)
		if session is None:
			raise NotFoundError(f"Replan session not found: {session_id}")
		return session

	async def initiate_replan(
		self,
		plan_node_id: int,
		tenant_id: int,
		scope_type: ReplanScopeType | str,
		scope_node_ids: Iterable[int],
		created_by: ActorType | str,
		proposed_changes: Any = None,
		cancel: Optional[asyncio.Event] = None,
	) -> ReplanSession:
		"""
		Compute the blast radius of a scope and open a draft session.

		Only nodes inside the blast radius are snapshotted.

		Raises:
			ValidationError: Empty scope or unknown scope/actor type
			NotFoundError: Plan does not exist for this tenant
		"""
		scope = list(dict.fromkeys(int(i) for i in scope_node_ids))
		if not scope:
			raise ValidationError("A replan needs at least one scope node")
		try:
			scope_type = ReplanScopeType(scope_type)
			created_by = ActorType(created_by)
		except ValueError as e:
			raise ValidationError(str(e)) from e

		plan = await self.store.get_by_id(plan_node_id)
		if plan is None or plan.type != NodeType.PLAN or plan.tenant_id != tenant_id:
			raise NotFoundError(f"Plan not found: {plan_node_id}")

		blast_radius = await self.calculator.calculate_blast_radius(
			plan.id, scope, tenant_id, cancel=cancel,
		)
		snapshot = await self.store.get_by_ids(blast_radius.all_ids(), tenant_id=tenant_id)

		session = await self.store.insert_session(ReplanSession(
			plan_node_id=plan.id,
			tenant_id=tenant_id,
			scope_type=scope_type,
			scope_node_ids=scope,
			blast_radius=blast_radius,
			created_by=created_by,
			original_snapshot=snapshot,
			proposed_changes=proposed_changes,
		))
		logger.info(
			f"Initiated replan session {session.id} on plan {plan.id} by {created_by.value} "
			f"({len(snapshot)} nodes snapshotted)"
		)
		return session

	async def _transition(self, session_id: int, target: ReplanStatus) -> ReplanSession:
		session = await self._require_session(session_id)
		async with self._lock_for(session.plan_node_id):
			# Re-read under the lock; another task may have moved it
			session = await self._require_session(session_id)
			if target not in ALLOWED_TRANSITIONS[session.status]:
				raise InvalidTransitionError(session_id, session.status.value, target.value)
			return await self.store.update_session_status(session_id, target, session.version)

	async def start_replan_session(self, session_id: int) -> ReplanSession:
		"""draft -> in_progress."""
		return await self._transition(session_id, ReplanStatus.IN_PROGRESS)

	async def commit_replan_session(self, session_id: int) -> ReplanSession:
		"""draft | in_progress -> committed."""
		return await self._transition(session_id, ReplanStatus.COMMITTED)

	async def abort_replan_session(self, session_id: int) -> ReplanSession:
		"""draft | in_progress -> aborted."""
		return await self._transition(session_id, ReplanStatus.ABORTED)

	async def update_proposed_changes(self, session_id: int, proposed_changes: Any) -> ReplanSession:
		"""Replace the proposal of a session that is still open."""
		session = await self._require_session(session_id)
		async with self._lock_for(session.plan_node_id):
			session = await self._require_session(session_id)
			if session.status.is_terminal:
				raise InvalidTransitionError(session_id, session.status.value, "update")
			return await self.store.update_session_changes(session_id, proposed_changes, session.version)

	async def get_replan_session(self, session_id: int) -> ReplanSession:
		return await self._require_session(session_id)

	async def list_replan_sessions(
		self,
		plan_node_id: int,
		statuses: Optional[Iterable[ReplanStatus]] = None,
	) -> list[ReplanSession]:
		return await self.store.list_sessions_for_plan(plan_node_id, statuses=statuses)

	async def list_active_replan_sessions(self, plan_node_id: int) -> list[ReplanSession]:
		return await self.store.list_sessions_for_plan(plan_node_id, statuses=ACTIVE_STATUSES)

	async def get_affected_nodes(self, session_id: int) -> list[Node]:
		"""Live rows for every id in the session's blast radius."""
		session = await self.store.get_session(session_id)
		if session is None:
			return []
		plan = await self.store.get_by_id(session.plan_node_id)
		if plan is None:
			return []
		return await self.store.get_by_ids(session.blast_radius.all_ids(), tenant_id=session.tenant_id)

	async def diff_snapshot(self, session_id: int) -> SnapshotDiff:
		"""Compare the snapshot taken at initiation with the current rows."""
		session = await self._require_session(session_id)
		live = {
			n.id: n for n in await self.store.get_by_ids(
				[n.id for n in session.original_snapshot],
				tenant_id=session.tenant_id,
			)
		}

		diff = SnapshotDiff()
		for before in session.original_snapshot:
			after = live.get(before.id)
			if after is None:
				diff.removed.append(before)
				continue
			fields = [f for f in DIFF_FIELDS if getattr(before, f) != getattr(after, f)]
			if fields:
				diff.changed.append(NodeChange(node_id=before.id, fields=fields, before=before, after=after))
			else:
				diff.unchanged.append(before.id)
		return diff

	async def delete_replan_session(self, session_id: int) -> bool:
		"""Delete a session in any state."""
		return await self.store.delete_session(session_id)


# Global manager instance (owns the per-plan locks)
_manager: Optional[ReplanSessionManager] = None


async def get_replan_manager() -> ReplanSessionManager:
	"""Get or create the global replan session manager."""
	global _manager
	if _manager is None:
		_manager = ReplanSessionManager(await get_node_store())
	return _manager
