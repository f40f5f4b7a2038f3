class BackendError(Exception):
    """Raised by the game backend. Never retried automatically."""


class AnonymousCallerError(BackendError):
    """A mutation was attempted without any admin token."""


class UnauthorizedError(BackendError):
    """The admin token does not match the room."""


class NotFoundError(BackendError):
    pass


class ConflictError(BackendError):
    """The request does not fit the current state of the game."""
