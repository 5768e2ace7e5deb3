"""Exceptions raised by :mod:`chatbridge`.

Everything derives from :class:`ChatbridgeError` so callers can catch the
whole family with a single ``except`` clause.
"""

from __future__ import annotations


class ChatbridgeError(Exception):
    """Base class for all errors raised by the package."""
    pass


class DatabaseNotInitializedError(ChatbridgeError):
    """Raised when a storage call is made before :meth:`initialize`."""

    def __init__(self, message: str = "Database client not initialized. Call initialize first.") -> None:
        super().__init__(message)


class MigrationError(ChatbridgeError):
    """Raised when a schema upgrade fails; the whole run was rolled back."""

    def __init__(self, message: str, from_version: int | None = None) -> None:
        super().__init__(message)
        self.from_version = from_version


class ProviderError(ChatbridgeError):
    """Raised when the LLM provider answers with a non-2xx status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class EmptyStreamError(ProviderError):
    """Raised when a streamed completion comes back without a body."""
    pass
