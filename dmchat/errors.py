class MessagingError(Exception):
    """Base class for errors raised by the messaging core."""


class ValidationError(MessagingError):
    """Rejected input: empty content or a message addressed to its sender."""


class NotFoundError(MessagingError):
    """An identity reference could not be resolved by the directory."""


class PersistenceError(MessagingError):
    """The durable store was unavailable or a write/update failed."""


class AuthorizationError(MessagingError):
    """Caller is not authenticated or is not a participant."""

    def __init__(self, message: str, authenticated: bool = True) -> None:
        super().__init__(message)
        self.authenticated = authenticated


class BroadcastError(MessagingError):
    """The push channel failed while delivering a notification."""
