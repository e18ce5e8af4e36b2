"""
Dependency resolution over the plan tree.

A node sees the context/io/data declarations that are direct children of
itself and of each of its ancestors, plus anything it explicitly includes.
Explicit excludes always win. With inheritance disabled only the includes
(minus excludes) count.

Resolution is stateless: every call reads the store and nothing is cached.
"""

import asyncio
import logging
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from ..errors import NotFoundError
from ..nodes import paths
from ..nodes.models import (
	DECLARATION_TYPES,
	DependencyOverrides,
	IODirection,
	IOFacet,
	Node,
	NodeType,
)
from ..nodes.store import NodeStore
from .blast_radius import check_cancelled

logger = logging.getLogger(__name__)


def _dedupe_nodes(nodes: Iterable[Node]) -> list[Node]:
	"""Drop repeated ids, first occurrence wins."""
	seen: set[int] = set()
	result = []
	for node in nodes:
		if node.id not in seen:
			seen.add(node.id)
			result.append(node)
	return result


def _ids(nodes: Iterable[Node]) -> list[int]:
	return [n.id for n in nodes]


class ResolvedDependencies(BaseModel):
	"""Effective dependency set of a node and how it was assembled."""
	dependencies: list[Node] = Field(default_factory=list)
	inherited: list[Node] = Field(default_factory=list, description="Declarations seen through the tree")
	included: list[Node] = Field(default_factory=list, description="Explicit includes that survived excludes")
	excluded_ids: list[int] = Field(default_factory=list)
	inheritance_disabled: bool = False

	def dependency_ids(self) -> list[int]:
		return _ids(self.dependencies)


class EffectiveIO(BaseModel):
	inputs: list[Node] = Field(default_factory=list)
	outputs: list[Node] = Field(default_factory=list)


class ContainmentBlastRadius(BaseModel):
	"""Tree-containment impact: ancestors, full subtrees and the targets themselves."""
	upstream: list[Node] = Field(default_factory=list)
	downstream: list[Node] = Field(default_factory=list)
	affected: list[Node] = Field(default_factory=list)


class DependencyPreview(BaseModel):
	before: list[Node] = Field(default_factory=list)
	after: list[Node] = Field(default_factory=list)
	added: list[Node] = Field(default_factory=list)
	removed: list[Node] = Field(default_factory=list)


class DependencyResolver:
	"""
	Computes effective dependencies from store reads.

	Usage:
		resolver = DependencyResolver(store)
		resolved = await resolver.resolve_dependencies(job.id)
		io = await resolver.get_effective_io(job.id)
	"""

	def __init__(self, store: NodeStore):
		self.store = store

	async def _get_node(self, node_id: int) -> Node:
		node = await self.store.get_by_id(node_id)
		if node is None:
			raise NotFoundError(f"Node not found: {node_id}")
		return node

	async def _resolve(self, node: Node) -> ResolvedDependencies:
		"""Resolve against an in-memory node record (persisted or hypothetical)."""
		exclude = set(node.exclude_dependency_ids)

		fetched = await self.store.get_by_ids(
			node.include_dependency_ids,
			tenant_id=node.tenant_id,
			active_only=True,
		)
		included = [n for n in fetched if n.id not in exclude and n.id != node.id]

		if node.disable_dependency_inheritance:
			return ResolvedDependencies(
				dependencies=included,
				inherited=[],
				included=included,
				excluded_ids=list(node.exclude_dependency_ids),
				inheritance_disabled=True,
			)

		# Live ancestors root first, then the node itself
		ancestors = await self.store.get_by_paths(
			paths.ancestor_paths(node.path),
			node.tenant_id,
			active_only=True,
		)
		levels = [a.id for a in ancestors] + [node.id]

		# get_by_parents orders by depth, so shallower declarations come first
		declarations = await self.store.get_by_parents(
			levels,
			types=DECLARATION_TYPES,
			active_only=True,
		)
		inherited = [
			n for n in _dedupe_nodes(declarations)
			if n.id not in exclude and n.id != node.id
		]

		return ResolvedDependencies(
			dependencies=_dedupe_nodes([*inherited, *included]),
			inherited=inherited,
			included=included,
			excluded_ids=list(node.exclude_dependency_ids),
			inheritance_disabled=False,
		)

	async def resolve_dependencies(self, node_id: int) -> ResolvedDependencies:
		"""
		Effective dependencies of a node.

		Raises:
			NotFoundError: Node does not exist
		"""
		node = await self._get_node(node_id)
		resolved = await self._resolve(node)
		logger.debug(
			f"Resolved node {node_id}: {len(resolved.dependencies)} dependencies "
			f"({len(resolved.inherited)} inherited, {len(resolved.included)} included)"
		)
		return resolved

	async def _dependencies_of_type(self, node_id: int, node_type: NodeType) -> list[Node]:
		resolved = await self.resolve_dependencies(node_id)
		return [n for n in resolved.dependencies if n.type == node_type]

	async def get_effective_context(self, node_id: int) -> list[Node]:
		return await self._dependencies_of_type(node_id, NodeType.CONTEXT)

	async def get_effective_data(self, node_id: int) -> list[Node]:
		return await self._dependencies_of_type(node_id, NodeType.DATA)

	async def get_effective_io(self, node_id: int) -> EffectiveIO:
		"""IO dependencies split by the direction on their facet."""
		io_nodes = await self._dependencies_of_type(node_id, NodeType.IO)
		facets = await self.store.get_facets(_ids(io_nodes))

		result = EffectiveIO()
		for io_node in io_nodes:
			facet = facets.get(io_node.id)
			if not isinstance(facet, IOFacet):
				logger.warning(f"IO node {io_node.id} has no io facet; skipping")
				continue
			if facet.direction == IODirection.INPUT:
				result.inputs.append(io_node)
			else:
				result.outputs.append(io_node)
		return result

	async def compute_blast_radius(
		self,
		node_ids: Iterable[int],
		tenant_id: Optional[int] = None,
		cancel: Optional[asyncio.Event] = None,
	) -> ContainmentBlastRadius:
		"""
		Containment impact of changing node_ids.

		upstream is every ancestor on each target's chain, downstream is each
		target's full strict subtree. Unknown ids are ignored.
		"""
		targets = await self.store.get_by_ids(node_ids, tenant_id=tenant_id)
		if not targets:
			return ContainmentBlastRadius()

		upstream: list[Node] = []
		downstream: list[Node] = []
		for target in targets:
			check_cancelled(cancel)
			upstream.extend(await self.store.get_by_paths(
				paths.ancestor_paths(target.path),
				target.tenant_id,
			))
			check_cancelled(cancel)
			downstream.extend(await self.store.get_subtree(
				target.path,
				target.tenant_id,
				include_self=False,
			))

		upstream = _dedupe_nodes(upstream)
		downstream = _dedupe_nodes(downstream)
		return ContainmentBlastRadius(
			upstream=upstream,
			downstream=downstream,
			affected=_dedupe_nodes([*targets, *upstream, *downstream]),
		)

	async def preview_dependency_changes(
		self,
		node_id: int,
		overrides: DependencyOverrides,
	) -> DependencyPreview:
		"""
		Compare current resolution with resolution under overrides.

		The hypothetical record only exists in memory; the store is never
		written.
		"""
		node = await self._get_node(node_id)
		before = (await self._resolve(node)).dependencies
		after = (await self._resolve(overrides.apply_to(node))).dependencies

		before_ids = set(_ids(before))
		after_ids = set(_ids(after))
		return DependencyPreview(
			before=before,
			after=after,
			added=[n for n in after if n.id not in before_ids],
			removed=[n for n in before if n.id not in after_ids],
		)
