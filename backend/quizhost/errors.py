"""
Domain exceptions raised by the quiz event core.

Each one maps to a client-visible failure at the HTTP boundary; anything else
escaping a service is an internal error.
"""


class QuizHostError(Exception):
    """Base exception for recoverable domain failures."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(QuizHostError):
    """Raised when a quiz, event, participant or attempt does not exist."""

    status_code = 404


class ValidationFailedError(QuizHostError):
    """Raised for malformed input."""

    status_code = 400


class ConflictError(QuizHostError):
    """Raised for an illegal state transition."""

    status_code = 409


class ForbiddenError(QuizHostError):
    """Raised when the caller is not the host, owner or an admin."""

    status_code = 403
