"""
Tests for replan sessions.

Tests:
- Session creation and scoped snapshots
- Status transitions and terminal states
- Affected nodes, snapshot diffs and deletion
- Concurrent status changes
"""

import asyncio
import gc

import pytest

from plantree.engine.replan import ReplanSessionManager
from plantree.errors import (
	ConcurrencyConflictError,
	InvalidTransitionError,
	NotFoundError,
	ValidationError,
)
from plantree.nodes.models import NodeType, ReplanStatus

from .helpers import add_node, build_sample_plan, make_store


async def _setup(tmp_path):
	store = await make_store(tmp_path)
	sample = await build_sample_plan(store)
	return store, sample, ReplanSessionManager(store)


async def _initiate(manager, sample, scope=None, **kwargs):
	return await manager.initiate_replan(
		sample.plan.id,
		tenant_id=1,
		scope_type=kwargs.pop("scope_type", "stage"),
		scope_node_ids=scope or [sample.build.id],
		created_by=kwargs.pop("created_by", "agent"),
		**kwargs,
	)


class TestInitiate:
	"""Opening sessions."""

	@pytest.mark.asyncio
	async def test_creates_draft_with_blast_radius(self, tmp_path):
		store, sample, manager = await _setup(tmp_path)

		session = await _initiate(manager, sample, proposed_changes={"rename": "Compile all"})

		assert session.id > 0
		assert session.status == ReplanStatus.DRAFT
		assert session.scope_node_ids == [sample.build.id]
		assert sample.deploy.id in session.blast_radius.upstream
		assert sample.build.id in session.blast_radius.affected
		assert session.proposed_changes == {"rename": "Compile all"}

	@pytest.mark.asyncio
	async def test_snapshot_limited_to_blast_radius(self, tmp_path):
		store, sample, manager = await _setup(tmp_path)

		session = await _initiate(manager, sample)

		snapshot_ids = {n.id for n in session.original_snapshot}
		assert snapshot_ids == set(session.blast_radius.all_ids())
		assert sample.plan_context.id not in snapshot_ids
		assert sample.binary_io.id not in snapshot_ids

	@pytest.mark.asyncio
	async def test_empty_scope_rejected(self, tmp_path):
		store, sample, manager = await _setup(tmp_path)
		with pytest.raises(ValidationError):
			await manager.initiate_replan(sample.plan.id, 1, "stage", [], "agent")

	@pytest.mark.asyncio
	async def test_unknown_scope_type_rejected(self, tmp_path):
		store, sample, manager = await _setup(tmp_path)
		with pytest.raises(ValidationError):
			await _initiate(manager, sample, scope_type="plan")

	@pytest.mark.asyncio
	async def test_missing_plan(self, tmp_path):
		store, sample, manager = await _setup(tmp_path)
		with pytest.raises(NotFoundError):
			await manager.initiate_replan(404, 1, "stage", [sample.build.id], "human")

	@pytest.mark.asyncio
	async def test_plan_of_other_tenant(self, tmp_path):
		store, sample, manager = await _setup(tmp_path)
		with pytest.raises(NotFoundError):
			await manager.initiate_replan(sample.plan.id, 2, "stage", [sample.build.id], "human")


class TestTransitions:
	"""State machine legality."""

	@pytest.mark.asyncio
	async def test_start_then_commit(self, tmp_path):
		store, sample, manager = await _setup(tmp_path)
		session = await _initiate(manager, sample)

		started = await manager.start_replan_session(session.id)
		assert started.status == ReplanStatus.IN_PROGRESS
		committed = await manager.commit_replan_session(session.id)
		assert committed.status == ReplanStatus.COMMITTED
		assert committed.version == 3

	@pytest.mark.asyncio
	async def test_start_then_abort(self, tmp_path):
		store, sample, manager = await _setup(tmp_path)
		session = await _initiate(manager, sample)

		await manager.start_replan_session(session.id)
		aborted = await manager.abort_replan_session(session.id)
		assert aborted.status == ReplanStatus.ABORTED

	@pytest.mark.asyncio
	async def test_commit_directly_from_draft(self, tmp_path):
		store, sample, manager = await _setup(tmp_path)
		session = await _initiate(manager, sample)

		committed = await manager.commit_replan_session(session.id)
		assert committed.status == ReplanStatus.COMMITTED

	@pytest.mark.asyncio
	async def test_start_twice_rejected(self, tmp_path):
		store, sample, manager = await _setup(tmp_path)
		session = await _initiate(manager, sample)
		await manager.start_replan_session(session.id)

		with pytest.raises(InvalidTransitionError):
			await manager.start_replan_session(session.id)

	@pytest.mark.asyncio
	async def test_abort_then_commit_rejected(self, tmp_path):
		store, sample, manager = await _setup(tmp_path)
		session = await _initiate(manager, sample)

		await manager.abort_replan_session(session.id)
		with pytest.raises(InvalidTransitionError) as exc_info:
			await manager.commit_replan_session(session.id)

		assert exc_info.value.current == "aborted"
		assert exc_info.value.target == "committed"

	@pytest.mark.asyncio
	@pytest.mark.parametrize("terminal", ["commit", "abort"])
	async def test_terminal_states_reject_everything(self, tmp_path, terminal):
		store, sample, manager = await _setup(tmp_path)
		session = await _initiate(manager, sample)
		await getattr(manager, f"{terminal}_replan_session")(session.id)

		for action in (manager.start_replan_session, manager.commit_replan_session, manager.abort_replan_session):
			with pytest.raises(InvalidTransitionError):
				await action(session.id)

		frozen = await manager.get_replan_session(session.id)
		assert frozen.version == 2

	@pytest.mark.asyncio
	async def test_missing_session(self, tmp_path):
		store, sample, manager = await _setup(tmp_path)
		with pytest.raises(NotFoundError):
			await manager.start_replan_session(404)

	@pytest.mark.asyncio
	async def test_concurrent_commit_and_abort(self, tmp_path):
		store, sample, manager = await _setup(tmp_path)
		session = await _initiate(manager, sample)

		results = await asyncio.gather(
			manager.commit_replan_session(session.id),
			manager.abort_replan_session(session.id),
			return_exceptions=True,
		)

		errors = [r for r in results if isinstance(r, Exception)]
		assert len(errors) == 1
		assert isinstance(errors[0], InvalidTransitionError)

	@pytest.mark.asyncio
	async def test_lost_update_detected_by_store(self, tmp_path):
		store, sample, manager = await _setup(tmp_path)
		session = await _initiate(manager, sample)

		# A second manager (another process) commits behind our back
		other = ReplanSessionManager(store)
		await other.start_replan_session(session.id)

		with pytest.raises(ConcurrencyConflictError):
			await store.update_session_status(session.id, ReplanStatus.ABORTED, session.version)


class TestProposedChanges:
	@pytest.mark.asyncio
	async def test_update_open_session(self, tmp_path):
		store, sample, manager = await _setup(tmp_path)
		session = await _initiate(manager, sample)

		updated = await manager.update_proposed_changes(session.id, {"drop": [sample.push.id]})
		assert updated.proposed_changes == {"drop": [sample.push.id]}
		assert updated.status == ReplanStatus.DRAFT

	@pytest.mark.asyncio
	async def test_update_terminal_session_rejected(self, tmp_path):
		store, sample, manager = await _setup(tmp_path)
		session = await _initiate(manager, sample)
		await manager.commit_replan_session(session.id)

		with pytest.raises(InvalidTransitionError):
			await manager.update_proposed_changes(session.id, {"late": True})


class TestQueries:
	"""Listing, affected nodes, diffs and deletion."""

	@pytest.mark.asyncio
	async def test_list_and_active(self, tmp_path):
		store, sample, manager = await _setup(tmp_path)
		first = await _initiate(manager, sample)
		second = await _initiate(manager, sample, scope=[sample.deploy.id])
		third = await _initiate(manager, sample, scope=[sample.push.id], scope_type="job")
		await manager.start_replan_session(second.id)
		await manager.abort_replan_session(third.id)

		all_ids = [s.id for s in await manager.list_replan_sessions(sample.plan.id)]
		assert all_ids == [third.id, second.id, first.id]

		active_ids = {s.id for s in await manager.list_active_replan_sessions(sample.plan.id)}
		assert active_ids == {first.id, second.id}

	@pytest.mark.asyncio
	async def test_affected_nodes_are_live_rows(self, tmp_path):
		store, sample, manager = await _setup(tmp_path)
		session = await _initiate(manager, sample)
		await store.update(sample.deploy.id, name="Deploy (renamed)")

		affected = {n.id: n for n in await manager.get_affected_nodes(session.id)}

		assert set(affected) == set(session.blast_radius.all_ids())
		assert affected[sample.deploy.id].name == "Deploy (renamed)"

	@pytest.mark.asyncio
	async def test_affected_nodes_missing_session(self, tmp_path):
		store, sample, manager = await _setup(tmp_path)
		assert await manager.get_affected_nodes(404) == []

	@pytest.mark.asyncio
	async def test_affected_nodes_after_plan_deleted(self, tmp_path):
		store, sample, manager = await _setup(tmp_path)
		session = await _initiate(manager, sample)
		await store.delete(sample.plan.id)

		assert await manager.get_affected_nodes(session.id) == []

	@pytest.mark.asyncio
	async def test_diff_snapshot(self, tmp_path):
		store, sample, manager = await _setup(tmp_path)
		session = await _initiate(manager, sample)

		await store.update(sample.deploy.id, name="Deploy v2")
		await store.delete(sample.build_context.id)
		await add_node(store, sample.build, NodeType.CONTEXT, "Added later")

		diff = await manager.diff_snapshot(session.id)

		assert [c.node_id for c in diff.changed] == [sample.deploy.id]
		assert diff.changed[0].fields == ["name"]
		assert [n.id for n in diff.removed] == [sample.build_context.id]
		assert sample.build.id in diff.unchanged

	@pytest.mark.asyncio
	async def test_delete_in_any_state(self, tmp_path):
		store, sample, manager = await _setup(tmp_path)
		draft = await _initiate(manager, sample)
		committed = await _initiate(manager, sample)
		await manager.commit_replan_session(committed.id)

		assert await manager.delete_replan_session(draft.id) is True
		assert await manager.delete_replan_session(committed.id) is True
		with pytest.raises(NotFoundError):
			await manager.get_replan_session(committed.id)


class TestPlanLocks:
	"""Per-plan lock bookkeeping."""

	@pytest.mark.asyncio
	async def test_locks_released_after_transitions(self, tmp_path):
		store, sample, manager = await _setup(tmp_path)
		session = await _initiate(manager, sample)
		await manager.start_replan_session(session.id)
		await manager.update_proposed_changes(session.id, {"step": 2})
		await manager.commit_replan_session(session.id)
		gc.collect()

		assert sample.plan.id not in manager._locks
		assert len(manager._locks) == 0

	@pytest.mark.asyncio
	async def test_lock_shared_while_held(self, tmp_path):
		store, sample, manager = await _setup(tmp_path)

		lock = manager._lock_for(sample.plan.id)
		async with lock:
			assert manager._lock_for(sample.plan.id) is lock
