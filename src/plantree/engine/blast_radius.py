"""
Execution-graph blast radius.

Stage and job facets declare depends_on_node_ids. Together they form one
directed graph per plan, and traversal crosses between stages and jobs
freely. This is the blast radius replan sessions record; the containment
flavor lives on DependencyResolver.compute_blast_radius.
"""

import asyncio
import logging
from collections import deque
from typing import Iterable, Optional

from ..errors import OperationCancelledError
from ..nodes.models import EXECUTABLE_TYPES, BlastRadius, NodeType
from ..nodes.store import NodeStore

logger = logging.getLogger(__name__)

# Give other tasks a chance to set the cancel event during long walks
YIELD_EVERY = 256


def check_cancelled(cancel: Optional[asyncio.Event]) -> None:
	if cancel is not None and cancel.is_set():
		raise OperationCancelledError("Traversal cancelled by caller")


async def _closure(
	edges: dict[int, list[int]],
	scope: list[int],
	cancel: Optional[asyncio.Event] = None,
) -> list[int]:
	"""BFS closure over edges from scope, scope ids excluded, discovery order."""
	scope_set = set(scope)
	found: dict[int, None] = {}
	queue = deque(scope)
	steps = 0
	while queue:
		check_cancelled(cancel)
		steps += 1
		if steps % YIELD_EVERY == 0:
			await asyncio.sleep(0)
			check_cancelled(cancel)

		current = queue.popleft()
		for neighbor in edges.get(current, []):
			if neighbor in scope_set or neighbor in found:
				continue
			found[neighbor] = None
			queue.append(neighbor)
	return list(found)


class BlastRadiusCalculator:
	"""
	Computes upstream/downstream/affected sets for a replan scope.

	downstream: what the scope depends on, transitively.
	upstream: what depends on the scope, transitively.
	affected: the scope plus the direct children of each scope node.
	"""

	def __init__(self, store: NodeStore):
		self.store = store

	async def build_edge_maps(self, plan_id: int) -> tuple[dict[int, list[int]], dict[int, list[int]]]:
		"""
		depends_on and depended_by maps for a plan.

		Edges pointing at ids outside the plan, and self edges, are dropped.
		"""
		member_ids = {n.id for n in await self.store.get_by_plan(plan_id)}
		facets = await self.store.get_facets_for_plan(plan_id, types=EXECUTABLE_TYPES, active_only=False)

		depends_on: dict[int, list[int]] = {}
		depended_by: dict[int, list[int]] = {}
		for node_id, facet in facets.items():
			targets = [
				dep for dep in facet.depends_on_node_ids
				if dep in member_ids and dep != node_id
			]
			if not targets:
				continue
			depends_on[node_id] = targets
			for dep in targets:
				depended_by.setdefault(dep, []).append(node_id)

		return depends_on, depended_by

	async def calculate_blast_radius(
		self,
		plan_node_id: int,
		scope_node_ids: Iterable[int],
		tenant_id: int,
		cancel: Optional[asyncio.Event] = None,
	) -> BlastRadius:
		"""
		Blast radius of a scope within a plan.

		Fails closed: a missing plan, a non-plan id, another tenant's plan
		or an empty scope all return an empty BlastRadius.

		Raises:
			OperationCancelledError: cancel was set during the traversal
		"""
		scope = list(dict.fromkeys(scope_node_ids))
		if not scope:
			logger.debug(f"Empty scope for plan {plan_node_id}; returning empty blast radius")
			return BlastRadius()

		plan = await self.store.get_by_id(plan_node_id)
		if plan is None or plan.type != NodeType.PLAN or plan.tenant_id != tenant_id:
			logger.debug(f"Plan {plan_node_id} not available to tenant {tenant_id}; returning empty blast radius")
			return BlastRadius()

		check_cancelled(cancel)
		depends_on, depended_by = await self.build_edge_maps(plan.id)

		downstream = await _closure(depends_on, scope, cancel)
		upstream = await _closure(depended_by, scope, cancel)

		check_cancelled(cancel)
		children = await self.store.get_by_parents(scope)
		affected = list(dict.fromkeys([
			*scope,
			*(child.id for child in children if child.plan_id == plan.id),
		]))

		logger.debug(
			f"Blast radius for plan {plan.id} scope {scope}: "
			f"{len(upstream)} upstream, {len(downstream)} downstream, {len(affected)} affected"
		)
		return BlastRadius(upstream=upstream, downstream=downstream, affected=affected)
