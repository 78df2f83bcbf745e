from collections.abc import Iterator
from contextlib import contextmanager

from pydantic import ValidationError as PydanticValidationError


class ReconcilerError(Exception):
    """Base error carrying a stable machine-readable code."""

    code = "reconciler_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class ValidationError(ReconcilerError):
    """Input rejected before any write."""

    code = "validation_error"


class NotFoundError(ReconcilerError):
    code = "not_found"

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class ConflictError(ReconcilerError):
    """A write would violate a uniqueness constraint."""

    code = "conflict"


class IntegrationFailure(ReconcilerError):
    """A secondary effect failed after the primary mutation was committed.

    Logged and surfaced as a warning; never raised out of propagation.
    """

    code = "integration_failure"


@contextmanager
def validation_scope() -> Iterator[None]:
    """Re-raise pydantic validation failures as ``ValidationError``."""
    try:
        yield
    except PydanticValidationError as exc:
        details = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error["loc"])
            details.append(f"{location}: {error['msg']}" if location else error["msg"])
        raise ValidationError("; ".join(details)) from exc
