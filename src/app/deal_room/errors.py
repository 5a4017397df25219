"""Error taxonomy for deal room operations.

Every error raised by the service derives from DealRoomError so callers can
catch the whole family. The HTTP layer maps each subclass to a status code.
"""

from __future__ import annotations


class DealRoomError(Exception):
    """Base class for all deal room errors."""


class ValidationError(DealRoomError):
    """Raised when input data fails validation. Nothing has been written.

    Attributes:
        errors: Human-readable messages, one per failed rule.
    """

    def __init__(self, errors: list[str] | str) -> None:
        self.errors = [errors] if isinstance(errors, str) else list(errors)
        super().__init__("; ".join(self.errors))


class NotFoundError(DealRoomError):
    """Raised when a draft, version or conflict does not exist."""


class ConflictError(DealRoomError):
    """Raised when publish detects divergence from the published deal room.

    Attributes:
        conflict_id: Id of the Conflict record created for resolution.
    """

    def __init__(self, conflict_id: str) -> None:
        self.conflict_id = conflict_id
        super().__init__(f"Conflict detected: {conflict_id}")


class AlreadyResolvedError(DealRoomError):
    """Raised when resolving a conflict that already has a resolution."""

    def __init__(self, conflict_id: str) -> None:
        self.conflict_id = conflict_id
        super().__init__(f"Conflict already resolved: {conflict_id}")


class StorageError(DealRoomError):
    """Raised when a store operation fails unexpectedly.

    Attributes:
        operation: Name of the service operation that failed.
        cause: The underlying exception.
    """

    def __init__(self, operation: str, cause: BaseException | None = None) -> None:
        self.operation = operation
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Storage failure during {operation}{detail}")


class VersionSequenceError(StorageError):
    """Raised when a version append loses the compare-and-swap on the sequence."""

    def __init__(self, project_id: str, expected: int, actual: int) -> None:
        self.project_id = project_id
        self.expected = expected
        self.actual = actual
        self.operation = "append_version"
        self.cause = None
        DealRoomError.__init__(
            self,
            f"Version sequence moved for project {project_id}: "
            f"expected latest {expected}, found {actual}",
        )
