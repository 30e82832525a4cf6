"""
domain.exceptions - Custom exception hierarchy for the chat engine.

All domain-level errors inherit from DomainError so callers can catch
broad or specific exceptions as needed.
"""


class DomainError(Exception):
    """Base exception for all domain-level errors."""


class ChatValidationError(DomainError):
    """Raised when an operation is rejected locally, before any store call."""


class EmptyMessageError(ChatValidationError):
    """Raised when message text is empty or whitespace-only."""


class IllegalTransitionError(ChatValidationError):
    """Raised when an action is not legal in the chat's current status."""

    def __init__(self, action: str, status: str, detail: str = ""):
        self.action = action
        self.status = status
        message = f"Cannot {action} a chat that is {status}."
        if detail:
            message = f"{message} {detail}"
        super().__init__(message)


class ChatNotFoundError(DomainError):
    """Raised when a chat id does not resolve to a stored chat."""


class ChatAccessError(DomainError):
    """Raised when the caller is not a participant of the chat."""


class RepositoryError(DomainError):
    """Raised when a database operation fails."""


class DocumentNotFoundError(RepositoryError):
    """Raised when updating a document that does not exist."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Document not found: {path}")


class StoreUnavailableError(RepositoryError):
    """Raised on transient store failures (connection, locking, I/O)."""


class AuthenticationError(DomainError):
    """Raised when a bearer token is missing, malformed or expired."""
