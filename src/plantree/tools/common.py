"""Argument parsing and JSON helpers shared by the tool modules."""

import json
from typing import Any, Iterable, Optional

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..config import Config
from ..errors import PlanTreeError, ValidationError
from ..nodes.models import FACET_MODELS, Node, NodeType


def error_json(e: PlanTreeError) -> str:
	"""Typed error payload returned by every tool on a PlanTreeError."""
	return json.dumps({"error": str(e), "error_type": type(e).__name__})


def parse_ids(value: Optional[str]) -> list[int]:
	"""Parse a comma-separated id list ("3, 5,8")."""
	if not value:
		return []
	try:
		return [int(part) for part in value.split(",") if part.strip()]
	except ValueError as e:
		raise ValidationError(f"Invalid id list: {value!r}") from e


def parse_optional_ids(value: Optional[str]) -> Optional[list[int]]:
	"""Like parse_ids, but None means 'leave unchanged'."""
	return None if value is None else parse_ids(value)


def parse_facet(node_type: NodeType, facet_json: str) -> Optional[BaseModel]:
	"""Validate a JSON facet for node_type. Empty string means no facet."""
	if not facet_json:
		return None
	try:
		return FACET_MODELS[node_type].model_validate_json(facet_json)
	except PydanticValidationError as e:
		raise ValidationError(f"Invalid {node_type.value} facet: {e}") from e


def parse_json(value: str) -> Any:
	if not value:
		return None
	try:
		return json.loads(value)
	except json.JSONDecodeError as e:
		raise ValidationError(f"Invalid JSON: {e}") from e


def resolve_tenant(config: Config, tenant_id: int) -> int:
	"""0 selects the configured default tenant."""
	return tenant_id or config.default_tenant_id


def node_dict(node: Node) -> dict:
	return node.model_dump(mode="json")


def nodes_list(nodes: Iterable[Node]) -> list[dict]:
	return [node_dict(n) for n in nodes]
