"""Error taxonomy for the job lifecycle engine.

ValidationError and PreconditionError are caller-correctable and their
messages are shown to users verbatim. ConflictError means the caller's
snapshot went stale and the action should be retried after a refresh.
StorageError wraps an opaque persistence failure.
"""


class JobflowError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        return {"error": type(self).__name__, "message": self.message, **self.context}


class ValidationError(JobflowError):
    """Input problem the caller can correct (missing vendor, cross-vendor batch, ...)."""


class NotFoundError(ValidationError):
    """A referenced entity does not exist."""

    def __init__(self, entity_type: str, entity_id):
        super().__init__(
            f"{entity_type} {entity_id} not found",
            entity_type=entity_type,
            entity_id=str(entity_id),
        )


class PreconditionError(JobflowError):
    """A workflow gate is not satisfied.

    ``gate`` names the completeness predicate or status precondition that
    failed; ``blockers`` lists the concrete reasons in user-facing language.
    """

    def __init__(self, message: str, *, gate: str, blockers: list[str] | None = None, **context):
        super().__init__(message, gate=gate, blockers=list(blockers or []), **context)
        self.gate = gate
        self.blockers = list(blockers or [])


class ConflictError(JobflowError):
    """State changed between the caller's snapshot and commit time."""

    def __init__(self, message: str, *, entity_ids: list | None = None, **context):
        super().__init__(message, entity_ids=[str(i) for i in entity_ids or []], **context)
        self.entity_ids = list(entity_ids or [])


class StorageError(JobflowError):
    """Opaque failure from the entity store; retry policy belongs to the caller."""
