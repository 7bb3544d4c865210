"""
Error taxonomy for replicas, reconciliation and stored records.

ReplicaError and its subclasses are always recoverable: callers log them
or surface them for retry, they never corrupt in-memory state.
"""

from __future__ import annotations


class LexicardError(Exception):
    """Base class for all lexicard errors."""


class ReplicaError(LexicardError):
    """A replica store operation failed."""


class TransientIOError(ReplicaError):
    """Network failure, timeout or server error. Retried on the next save."""


class ResourceNotFoundError(ReplicaError):
    """The replica answered definitively that the resource does not exist."""


class AuthStateError(LexicardError):
    """Identity is ambiguous or unavailable; reconciliation cannot proceed."""


class DataShapeError(LexicardError):
    """A stored record does not match the expected shape."""


class RecordNotFoundError(LexicardError):
    """A mutation addressed a list or flashcard id that does not exist."""
