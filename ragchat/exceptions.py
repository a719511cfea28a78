"""
Exception hierarchy for the RAG Chat service.

Errors raised before any side effect (NotAuthenticated, EmptyMessage) and
errors that abort the pipeline before persistence (ConfigurationError,
ProviderError) are surfaced to the caller as a single human-readable message.
RetrievalUnavailable is absorbed by the RAG client and never reaches callers.

A lost update between two concurrent appends for the same user (a "storage
race") is not detected, so it has no exception class.
"""

from typing import Optional


class ChatError(Exception):
    """Base exception for all chat service errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotAuthenticated(ChatError):
    """Raised when no user identity is available."""

    def __init__(self, message: str = "User not logged in"):
        super().__init__(message)


class EmptyMessage(ChatError):
    """Raised when the sanitized user message is empty."""

    def __init__(self, message: str = "Message cannot be empty"):
        super().__init__(message)


class ConfigurationError(ChatError):
    """Raised when required configuration (e.g. a hosted API key) is missing or invalid."""


class RetrievalUnavailable(ChatError):
    """Raised by a search backend when the RAG capability cannot be used."""


class ProviderError(ChatError):
    """
    Raised when the LLM backend fails (network error or non-success response).

    Attributes:
        provider: Name of the provider that failed
        detail: The provider's own error detail
    """

    def __init__(self, detail: str, provider: Optional[str] = None):
        self.provider = provider
        self.detail = detail
        message = f"{provider} request failed: {detail}" if provider else detail
        super().__init__(message)
