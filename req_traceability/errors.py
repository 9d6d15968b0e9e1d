"""
Typed errors raised by the traceability core.

Callers (HTTP layer, CLI) translate these into user messages.  Only
ParseFormatError and ImportValidationError abort an import; the rest are
either per-operation rejections or values used internally.
"""

from __future__ import annotations


class TraceabilityError(Exception):
    """Base class for every error raised by this package."""


class ParseFormatError(TraceabilityError):
    """The spreadsheet layout cannot be read as the expected entity shape."""

    def __init__(self, message: str, row_number: int | None = None):
        self.row_number = row_number
        if row_number is not None:
            message = f"Row {row_number}: {message}"
        super().__init__(message)


class ImportValidationError(TraceabilityError):
    """Pre-validation rejected the batch. Holds every per-row error."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(f"Validation errors found ({len(self.errors)})")


class IdentifierCollisionError(TraceabilityError):
    """A requirement_id was already taken when the store tried to commit it.

    Returned as a value inside InsertOutcome; the allocator absorbs it.
    """

    def __init__(self, requirement_id: str):
        self.requirement_id = requirement_id
        super().__init__(f"Requirement ID already exists: {requirement_id}")


class ParentResolutionFailure(TraceabilityError):
    """A declared parent could not be resolved. Logged, never raised."""

    def __init__(self, sequence_id: str, parent_sequence_id: str):
        self.sequence_id = sequence_id
        self.parent_sequence_id = parent_sequence_id
        super().__init__(
            f"Parent '{parent_sequence_id}' of row '{sequence_id}' was not persisted"
        )


class PersistenceError(TraceabilityError):
    """The backing store failed to complete a write or read."""


class NoChangesDetected(TraceabilityError):
    """An update carried no field that differs from the stored requirement."""

    def __init__(self, requirement_id: str):
        self.requirement_id = requirement_id
        super().__init__("No changes detected")


class ProjectNotFoundError(TraceabilityError, LookupError):
    def __init__(self, project_id: str):
        self.project_id = project_id
        super().__init__(f"Project not found: {project_id}")


class RequirementNotFoundError(TraceabilityError, LookupError):
    def __init__(self, requirement_id: str):
        self.requirement_id = requirement_id
        super().__init__(f"Requirement not found: {requirement_id}")


class VersionConflictError(TraceabilityError):
    """The caller's known version is stale; someone else committed first."""

    def __init__(self, requirement_id: str, expected: int, actual: int):
        self.requirement_id = requirement_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Requirement {requirement_id} is at version {actual}, "
            f"update was based on version {expected}"
        )


class InvalidParentError(TraceabilityError, ValueError):
    """Parent is in another project, missing, or would create a cycle."""


class LinkError(TraceabilityError, ValueError):
    """A task / test case / stakeholder / meeting link was rejected."""


class InvalidCommentError(TraceabilityError, ValueError):
    """Comment content is blank."""
