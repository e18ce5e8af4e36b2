"""Engine module - Dependency resolution, blast radius and replan sessions."""

from .blast_radius import BlastRadiusCalculator
from .dependencies import (
	ContainmentBlastRadius,
	DependencyPreview,
	DependencyResolver,
	EffectiveIO,
	ResolvedDependencies,
)
from .replan import ReplanSessionManager, SnapshotDiff

__all__ = [
	"BlastRadiusCalculator",
	"DependencyResolver",
	"ResolvedDependencies",
	"EffectiveIO",
	"ContainmentBlastRadius",
	"DependencyPreview",
	"ReplanSessionManager",
	"SnapshotDiff",
]
