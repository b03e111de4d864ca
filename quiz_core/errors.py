"""Error taxonomy shared by the composer, the attempt engine and the backend client."""
from __future__ import annotations


class QuizError(Exception):
    """Base class for quiz_core failures."""


class CapacityError(QuizError):
    """A structure requirement asks for more than the pool can supply, or is malformed."""


class PoolShrinkageError(QuizError):
    """Raised by a strict ``generate`` when the pool shrank below a validated requirement."""

    def __init__(self, shortfalls):
        self.shortfalls = list(shortfalls)
        parts = [f"{s.topic}/{s.level.value}: {s.delivered}/{s.requested}" for s in self.shortfalls]
        super().__init__("pool shrank below requirement: " + ", ".join(parts))


class AttemptStateError(QuizError):
    """Operation not allowed in the attempt's current state."""


class TransientNetworkError(QuizError):
    """Collaborator unreachable (connection error, timeout, 5xx)."""


class BackendError(QuizError):
    """Collaborator answered with ``status: error``."""


class SubmissionFailure(QuizError):
    """The result could not be handed to the submission collaborator."""


__all__ = [
    "QuizError",
    "CapacityError",
    "PoolShrinkageError",
    "AttemptStateError",
    "TransientNetworkError",
    "BackendError",
    "SubmissionFailure",
]
