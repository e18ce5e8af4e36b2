"""Nodes module - Plan tree rows, facets, paths and storage."""

from .models import (
	BlastRadius,
	ContextFacet,
	DataFacet,
	DependencyOverrides,
	IOFacet,
	JobFacet,
	Node,
	NodeDraft,
	NodeType,
	PlanFacet,
	ReplanSession,
	ReplanStatus,
	StageFacet,
)
from .store import NodeStore, get_node_store
from .tree import PlanTree

__all__ = [
	"Node",
	"NodeDraft",
	"NodeType",
	"DependencyOverrides",
	"PlanFacet",
	"StageFacet",
	"JobFacet",
	"ContextFacet",
	"IOFacet",
	"DataFacet",
	"BlastRadius",
	"ReplanSession",
	"ReplanStatus",
	"NodeStore",
	"get_node_store",
	"PlanTree",
]
