"""Error taxonomy shared by the store, the engine and the tool surface."""


class PlanTreeError(Exception):
	"""Base class for every failure raised by plantree."""
	pass


class NotFoundError(PlanTreeError):
	"""Raised when a node, plan, parent or replan session does not exist."""
	pass


class ValidationError(PlanTreeError):
	"""Raised when input is malformed. Always raised before any write."""
	pass


class InvalidTransitionError(PlanTreeError):
	"""Raised when a replan session status change is not allowed."""

	def __init__(self, session_id: int, current: str, target: str):
		self.session_id = session_id
		self.current = current
		self.target = target
		super().__init__(
			f"Replan session {session_id} cannot move from {current} to {target}"
		)


class ConcurrencyConflictError(PlanTreeError):
	"""Raised when a concurrent update won the race (optimistic lock failure)."""
	pass


class OperationCancelledError(PlanTreeError):
	"""Raised when a caller-supplied cancel event fires during a traversal."""
	pass
