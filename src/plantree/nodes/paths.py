"""
Path codec for the plan tree.

Path format: {type}_{id}.{type}_{id}...
Example: plan_1.stage_2.job_3.context_4

The root segment is always the plan. Every function here is a pure string
operation; only segment parsing can fail.
"""

import re
from typing import Optional

from ..errors import ValidationError
from .models import NodeType

SEPARATOR = "."

_SEGMENT_RE = re.compile(r"(plan|stage|job|context|io|data)_(\d+)")


def segment(node_type: NodeType | str, node_id: int) -> str:
	"""Create a path segment from a node type and id."""
	return f"{NodeType(node_type).value}_{node_id}"


def parse_segment(value: str) -> tuple[NodeType, int]:
	"""Parse a path segment back into (type, id)."""
	match = _SEGMENT_RE.fullmatch(value)
	if not match:
		raise ValidationError(f"Malformed path segment: {value!r}")
	return NodeType(match.group(1)), int(match.group(2))


def build_path(parent_path: Optional[str], node_type: NodeType | str, node_id: int) -> str:
	"""Append a segment to the parent path, or return the bare segment for a root."""
	seg = segment(node_type, node_id)
	return f"{parent_path}{SEPARATOR}{seg}" if parent_path else seg


def depth(path: str) -> int:
	"""Number of segments minus one; a root plan has depth 0."""
	return path.count(SEPARATOR)


def parent_path(path: str) -> Optional[str]:
	"""Path with the last segment removed, or None for a root."""
	head, sep, _ = path.rpartition(SEPARATOR)
	return head if sep else None


def ancestor_paths(path: str) -> list[str]:
	"""
	Every strict-prefix path, root first.

	"plan_1.stage_2.job_3" -> ["plan_1", "plan_1.stage_2"]
	"""
	segments = path.split(SEPARATOR)
	return [SEPARATOR.join(segments[:i]) for i in range(1, len(segments))]


def is_descendant_of(child_path: str, ancestor_path: str) -> bool:
	"""True for equality or a prefix ending on a segment boundary."""
	return child_path == ancestor_path or child_path.startswith(ancestor_path + SEPARATOR)


def is_direct_child_of(child_path: str, parent: str) -> bool:
	prefix = parent + SEPARATOR
	if not child_path.startswith(prefix):
		return False
	return SEPARATOR not in child_path[len(prefix):]


def node_id_from_path(path: str) -> int:
	"""Id encoded in the last segment."""
	return parse_segment(path.rsplit(SEPARATOR, 1)[-1])[1]


def node_type_from_path(path: str) -> NodeType:
	"""Type encoded in the last segment."""
	return parse_segment(path.rsplit(SEPARATOR, 1)[-1])[0]


def rebase_path(path: str, old_prefix: str, new_prefix: str) -> str:
	"""Move a path from under old_prefix to under new_prefix."""
	if not is_descendant_of(path, old_prefix):
		raise ValidationError(f"{path!r} is not inside {old_prefix!r}")
	return new_prefix + path[len(old_prefix):]


def subtree_range(path: str) -> tuple[str, str]:
	"""
	Exclusive (low, high) bounds enclosing every strict descendant of path.

	'/' sorts immediately after '.', so every "path.xxx" string falls
	strictly between "path." and "path/". Used to push subtree filters
	into an indexed range scan.
	"""
	return path + SEPARATOR, path + "/"
