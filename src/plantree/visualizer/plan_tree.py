"""Rich views for plan trees, dependency resolution and blast radius."""

from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from ..engine.dependencies import ResolvedDependencies
from ..nodes.models import BlastRadius, Node, NodeType
from ..nodes.tree import PlanTree

TYPE_STYLES = {
	NodeType.PLAN: "bold magenta",
	NodeType.STAGE: "bold cyan",
	NodeType.JOB: "green",
	NodeType.CONTEXT: "yellow",
	NodeType.IO: "blue",
	NodeType.DATA: "white",
}


def _label(node: Node) -> str:
	style = TYPE_STYLES.get(node.type, "")
	label = f"[{style}]{node.type.value}[/{style}] {node.name} [dim]#{node.id}[/dim]"
	if not node.active:
		label = f"[strike]{label}[/strike]"
	if node.is_frozen:
		label += " [red](frozen)[/red]"
	return label


def render_plan_tree(tree: PlanTree, console: Optional[Console] = None) -> None:
	"""Render a plan as a Rich Tree."""
	console = console or Console()

	stats = tree.depth_stats()
	root = Tree(
		f"{_label(tree.plan)}  "
		f"[dim]({stats['total']} nodes, depth {stats['max_depth']})[/dim]"
	)

	branches = {tree.plan.id: root}
	for node, level in tree.walk():
		if level == 0:
			continue
		branches[node.id] = branches[node.parent_id].add(_label(node))

	console.print(root)


def render_resolution(
	node: Node,
	resolved: ResolvedDependencies,
	console: Optional[Console] = None,
) -> None:
	"""Render a node's resolved dependencies as a table."""
	console = console or Console()

	inherited = {n.id for n in resolved.inherited}
	table = Table(title=f"Dependencies of {node.name} #{node.id}")
	table.add_column("ID", justify="right")
	table.add_column("Type", style="cyan")
	table.add_column("Name")
	table.add_column("Source")

	for dep in resolved.dependencies:
		source = "inherited" if dep.id in inherited else "included"
		table.add_row(str(dep.id), dep.type.value, dep.name, source)

	console.print(table)
	if resolved.inheritance_disabled:
		console.print("[yellow]Inheritance disabled[/yellow]")
	if resolved.excluded_ids:
		console.print(f"[dim]Excluded: {', '.join(str(i) for i in resolved.excluded_ids)}[/dim]")


def render_blast_radius(
	plan: Node,
	scope: list[int],
	radius: BlastRadius,
	console: Optional[Console] = None,
) -> None:
	"""Render an execution-graph blast radius as a summary panel."""
	console = console or Console()

	def fmt(ids: list[int]) -> str:
		return ", ".join(str(i) for i in ids) if ids else "[dim]none[/dim]"

	lines = [
		f"[bold]Scope:[/bold] {fmt(scope)}",
		f"[bold]Affected:[/bold] {fmt(radius.affected)}",
		f"[bold]Upstream:[/bold] {fmt(radius.upstream)}",
		f"[bold]Downstream:[/bold] {fmt(radius.downstream)}",
	]
	console.print(Panel("\n".join(lines), title=f"Blast radius: {plan.name} #{plan.id}", border_style="cyan"))
