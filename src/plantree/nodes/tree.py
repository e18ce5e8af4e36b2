"""
Plan tree view - a flat id -> Node map plus a children index.

Built from one plan's rows in a single query. Walks operate over the index;
nested stage/job objects are never materialized.
"""

from dataclasses import dataclass, field
from typing import Iterable, Iterator, Optional

from pydantic import BaseModel

from ..errors import NotFoundError, ValidationError
from .models import Node, NodeType


@dataclass
class PlanTree:
	"""Arena of a single plan's nodes."""

	plan: Node
	nodes: dict[int, Node] = field(default_factory=dict)
	children: dict[int, list[int]] = field(default_factory=dict)
	facets: dict[int, BaseModel] = field(default_factory=dict)

	@classmethod
	def from_nodes(
		cls,
		nodes: Iterable[Node],
		facets: Optional[dict[int, BaseModel]] = None,
	) -> "PlanTree":
		"""
		Index rows of one plan.

		Children are ordered by path. Rows whose parent is not in the set
		(e.g. filtered out as inactive) are kept in `nodes` but are not
		reachable from the root.
		"""
		arena = {n.id: n for n in nodes}
		roots = [n for n in arena.values() if n.type == NodeType.PLAN]
		if len(roots) != 1:
			raise ValidationError(f"Expected exactly one plan root, found {len(roots)}")

		children: dict[int, list[int]] = {node_id: [] for node_id in arena}
		for node in sorted(arena.values(), key=lambda n: n.path):
			if node.parent_id is not None and node.parent_id in arena:
				children[node.parent_id].append(node.id)

		return cls(plan=roots[0], nodes=arena, children=children, facets=dict(facets or {}))

	def __len__(self) -> int:
		return len(self.nodes)

	def __contains__(self, node_id: int) -> bool:
		return node_id in self.nodes

	def get(self, node_id: int) -> Optional[Node]:
		return self.nodes.get(node_id)

	def require(self, node_id: int) -> Node:
		node = self.nodes.get(node_id)
		if node is None:
			raise NotFoundError(f"Node {node_id} is not part of plan {self.plan.id}")
		return node

	def children_of(self, node_id: int, types: Optional[Iterable[NodeType]] = None) -> list[Node]:
		wanted = set(types) if types else None
		result = []
		for child_id in self.children.get(node_id, []):
			child = self.nodes[child_id]
			if wanted is None or child.type in wanted:
				result.append(child)
		return result

	def ancestors_of(self, node_id: int) -> list[Node]:
		"""Containment chain above node_id, root first."""
		chain = []
		node = self.require(node_id)
		while node.parent_id is not None and node.parent_id in self.nodes:
			node = self.nodes[node.parent_id]
			chain.append(node)
		chain.reverse()
		return chain

	def walk(self, start_id: Optional[int] = None) -> Iterator[tuple[Node, int]]:
		"""Pre-order (node, level) pairs, level relative to the start node."""
		start = self.require(start_id) if start_id is not None else self.plan
		stack = [(start.id, 0)]
		while stack:
			node_id, level = stack.pop()
			yield self.nodes[node_id], level
			for child_id in reversed(self.children.get(node_id, [])):
				stack.append((child_id, level + 1))

	def subtree_ids(self, node_id: int, include_self: bool = True) -> list[int]:
		ids = [node.id for node, _ in self.walk(node_id)]
		return ids if include_self else ids[1:]

	def depth_stats(self) -> dict:
		"""Per-type counts and the deepest level reachable from the root."""
		counts = {t.value: 0 for t in NodeType}
		max_depth = 0
		reachable = 0
		for node, level in self.walk():
			counts[node.type.value] += 1
			max_depth = max(max_depth, level)
			reachable += 1
		return {
			"total": len(self.nodes),
			"reachable": reachable,
			"max_depth": max_depth,
			"by_type": counts,
		}

	def to_dict(self, node_id: Optional[int] = None) -> dict:
		"""Nested dict rendering for JSON output."""
		node = self.require(node_id) if node_id is not None else self.plan
		facet = self.facets.get(node.id)
		return {
			"id": node.id,
			"type": node.type.value,
			"name": node.name,
			"path": node.path,
			"active": node.active,
			"facet": facet.model_dump(mode="json") if facet is not None else None,
			"children": [self.to_dict(child_id) for child_id in self.children.get(node.id, [])],
		}


async def load_plan_tree(store, plan_id: int, active_only: bool = False) -> PlanTree:
	"""Read a plan's rows and facets from the store and index them."""
	plan = await store.get_by_id(plan_id)
	if plan is None or plan.type != NodeType.PLAN:
		raise NotFoundError(f"Plan not found: {plan_id}")
	nodes = await store.get_by_plan(plan_id, active_only=active_only)
	facets = await store.get_facets_for_plan(plan_id, active_only=active_only)
	return PlanTree.from_nodes(nodes, facets)
