"""
Node Models - Pydantic schemas for the polymorphic plan tree.

A single Node shape represents plans, stages, jobs and the context/io/data
declarations attached to them. Type-specific attributes live in facet
models stored 1:1 next to the node row.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, field_validator


class NodeType(str, Enum):
	"""Kind of node in the hierarchy."""
	PLAN = "plan"
	STAGE = "stage"
	JOB = "job"
	CONTEXT = "context"
	IO = "io"
	DATA = "data"


# Node types that can be inherited as dependencies
DECLARATION_TYPES = frozenset({NodeType.CONTEXT, NodeType.IO, NodeType.DATA})

# Node types whose facets carry execution edges
EXECUTABLE_TYPES = frozenset({NodeType.STAGE, NodeType.JOB})


class ExecutionMode(str, Enum):
	"""How the children of a stage run."""
	SEQUENTIAL = "sequential"
	PARALLEL = "parallel"


class ContextType(str, Enum):
	"""Classification of context declarations."""
	REQUIREMENT = "requirement"
	CONSTRAINT = "constraint"
	DECISION = "decision"
	CODE = "code"
	NOTE = "note"


class IODirection(str, Enum):
	INPUT = "input"
	OUTPUT = "output"


class ReplanScopeType(str, Enum):
	STAGE = "stage"
	JOB = "job"
	CONTEXT = "context"


class ReplanStatus(str, Enum):
	"""Lifecycle of a replan session."""
	DRAFT = "draft"
	IN_PROGRESS = "in_progress"
	COMMITTED = "committed"
	ABORTED = "aborted"

	@property
	def is_terminal(self) -> bool:
		return self in (ReplanStatus.COMMITTED, ReplanStatus.ABORTED)


class ActorType(str, Enum):
	"""Who created a replan session."""
	AGENT = "agent"
	HUMAN = "human"


def _now() -> str:
	return datetime.now().isoformat()


def _dedupe_ids(value: Any) -> list[int]:
	if value is None:
		return []
	seen: set[int] = set()
	result: list[int] = []
	for item in value:
		item = int(item)
		if item not in seen:
			seen.add(item)
			result.append(item)
	return result


class Node(BaseModel):
	"""
	A single row of the plan tree.

	The path encodes the containment chain from the plan root down to this
	node; see plantree.nodes.paths for the format.
	"""
	id: int = Field(description="Store-assigned node identifier")
	type: NodeType
	name: str
	path: str = Field(description="Dot-delimited {type}_{id} segments, root first")
	depth: int = Field(default=0, ge=0)
	parent_id: Optional[int] = Field(default=None, description="None only for plan roots")
	plan_id: int = Field(description="Owning plan node id (a plan points at itself)")
	tenant_id: int

	active: bool = True
	is_frozen: bool = False

	# Dependency overrides
	disable_dependency_inheritance: bool = False
	include_dependency_ids: list[int] = Field(default_factory=list)
	exclude_dependency_ids: list[int] = Field(default_factory=list)

	created_at: str = Field(default_factory=_now)
	updated_at: str = Field(default_factory=_now)

	@field_validator("include_dependency_ids", "exclude_dependency_ids", mode="before")
	@classmethod
	def _unique_ids(cls, value: Any) -> list[int]:
		return _dedupe_ids(value)


class NodeDraft(BaseModel):
	"""Input for creating a node. The store assigns id, path, depth and plan_id."""
	type: NodeType
	name: str
	tenant_id: int
	parent_id: Optional[int] = None
	disable_dependency_inheritance: bool = False
	include_dependency_ids: list[int] = Field(default_factory=list)
	exclude_dependency_ids: list[int] = Field(default_factory=list)

	@field_validator("include_dependency_ids", "exclude_dependency_ids", mode="before")
	@classmethod
	def _unique_ids(cls, value: Any) -> list[int]:
		return _dedupe_ids(value)


class DependencyOverrides(BaseModel):
	"""Hypothetical dependency settings; None leaves the stored value in place."""
	disable_dependency_inheritance: Optional[bool] = None
	include_dependency_ids: Optional[list[int]] = None
	exclude_dependency_ids: Optional[list[int]] = None

	def apply_to(self, node: Node) -> Node:
		"""Return an in-memory copy of node with these overrides substituted."""
		updates = self.model_dump(exclude_none=True)
		if not updates:
			return node.model_copy()
		return Node.model_validate({**node.model_dump(), **updates})


# ---------------------------------------------------------------------------
# Facets
# ---------------------------------------------------------------------------

class PlanFacet(BaseModel):
	goal: str = ""
	version: int = Field(default=1, ge=1)
	parent_version: Optional[int] = None


class StageFacet(BaseModel):
	description: Optional[str] = None
	execution_mode: ExecutionMode = ExecutionMode.SEQUENTIAL
	depends_on_node_ids: list[int] = Field(default_factory=list)

	@field_validator("depends_on_node_ids", mode="before")
	@classmethod
	def _unique_ids(cls, value: Any) -> list[int]:
		return _dedupe_ids(value)


class JobFacet(BaseModel):
	description: Optional[str] = None
	depends_on_node_ids: list[int] = Field(default_factory=list)

	@field_validator("depends_on_node_ids", mode="before")
	@classmethod
	def _unique_ids(cls, value: Any) -> list[int]:
		return _dedupe_ids(value)


class ContextFacet(BaseModel):
	context_type: ContextType = ContextType.NOTE
	payload: str = ""


class IOFacet(BaseModel):
	direction: IODirection
	io_type: str = Field(default="text", description="Free-form IO classification")
	data: str = ""


class DataFacet(BaseModel):
	payload: Any = None


Facet = Union[PlanFacet, StageFacet, JobFacet, ContextFacet, IOFacet, DataFacet]

FACET_MODELS: dict[NodeType, type[BaseModel]] = {
	NodeType.PLAN: PlanFacet,
	NodeType.STAGE: StageFacet,
	NodeType.JOB: JobFacet,
	NodeType.CONTEXT: ContextFacet,
	NodeType.IO: IOFacet,
	NodeType.DATA: DataFacet,
}


# ---------------------------------------------------------------------------
# Replan sessions
# ---------------------------------------------------------------------------

class BlastRadius(BaseModel):
	"""Execution-graph impact of a change, as node id lists."""
	upstream: list[int] = Field(default_factory=list, description="Nodes that depend on the scope")
	downstream: list[int] = Field(default_factory=list, description="Nodes the scope depends on")
	affected: list[int] = Field(default_factory=list, description="Scope plus its direct children")

	def all_ids(self) -> list[int]:
		"""Union of affected, upstream and downstream, first occurrence order."""
		return _dedupe_ids([*self.affected, *self.upstream, *self.downstream])

	def is_empty(self) -> bool:
		return not (self.upstream or self.downstream or self.affected)


class ReplanSession(BaseModel):
	"""
	A draft/commit/abort review of a proposed change.

	The session owns its snapshot and blast radius; once committed or
	aborted it is never written again.
	"""
	id: int = 0
	plan_node_id: int
	tenant_id: int
	scope_type: ReplanScopeType
	scope_node_ids: list[int] = Field(default_factory=list)
	blast_radius: BlastRadius = Field(default_factory=BlastRadius)
	status: ReplanStatus = ReplanStatus.DRAFT
	created_by: ActorType
	original_snapshot: list[Node] = Field(default_factory=list)
	proposed_changes: Any = None

	# Optimistic locking
	version: int = 1

	created_at: str = Field(default_factory=_now)
	updated_at: str = Field(default_factory=_now)

	def get_summary(self) -> dict:
		"""Compact view for listings."""
		return {
			"id": self.id,
			"plan_node_id": self.plan_node_id,
			"scope_type": self.scope_type.value,
			"scope_node_ids": self.scope_node_ids,
			"status": self.status.value,
			"created_by": self.created_by.value,
			"impacted": len(self.blast_radius.all_ids()),
			"snapshot_size": len(self.original_snapshot),
			"created_at": self.created_at,
			"updated_at": self.updated_at,
		}
