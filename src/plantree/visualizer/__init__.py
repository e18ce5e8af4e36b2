"""Visualizer package - Rich terminal views for plan trees and impact analysis."""

from .plan_tree import render_blast_radius, render_plan_tree, render_resolution

__all__ = [
	"render_plan_tree",
	"render_resolution",
	"render_blast_radius",
]
