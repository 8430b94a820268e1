"""Error kinds raised inside the chat services.

Services catch these, roll back the session and turn them into a failed
envelope (see ``lingua.responses``), so none of them escape to a request
handler.
"""


class LinguaError(Exception):
    """Base class for failures reported back to the caller."""


class ValidationError(LinguaError, ValueError):
    """A schema invariant was violated before anything was persisted."""


class NotFoundError(LinguaError, LookupError):
    pass


class StaleRatingError(ValidationError):
    """The caller's view of a room rating no longer matches what is stored."""


class InsufficientPointsError(LinguaError):
    pass


class PersistenceError(LinguaError):
    """A database read or write failed."""

    @classmethod
    def from_exc(cls, exc):
        error = cls(f'Database error ({type(exc).__name__})')
        error.__cause__ = exc
        return error
