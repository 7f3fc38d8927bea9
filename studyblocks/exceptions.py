"""
Error taxonomy for the scheduling core.

Every error raised by the core derives from StudyBlocksError so callers
(the CLI, a view-model layer) can catch one type and still branch on the
specific failure.
"""

from __future__ import annotations


class StudyBlocksError(Exception):
    """Base class for all scheduling core errors."""


class ValidationError(StudyBlocksError):
    """Raised for bad input before any state is mutated."""


class NoSubjects(ValidationError):
    """Raised when a schedule is requested for a user without subjects."""

    def __init__(self, user_id: str | None = None):
        self.user_id = user_id
        super().__init__("no subjects" if user_id is None else f"no subjects for user {user_id}")


class InvalidTransition(StudyBlocksError):
    """Raised when a block lifecycle change is not allowed from its current status."""

    def __init__(self, block_id: str, status: str, action: str):
        self.block_id = block_id
        self.status = status
        self.action = action
        super().__init__(f"Cannot {action} block {block_id} while it is {status}")


class CannotRescheduleCompleted(InvalidTransition):
    """Raised when a completed block is asked to move."""

    def __init__(self, block_id: str):
        super().__init__(block_id, "COMPLETED", "reschedule")


class NotFound(StudyBlocksError):
    """Raised when a referenced block or subject does not exist."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class ConcurrencyConflict(StudyBlocksError):
    """Raised when a write for the same user could not be serialised."""


class StorageError(StudyBlocksError):
    """Raised when the storage collaborator fails. The batch has been rolled back."""
