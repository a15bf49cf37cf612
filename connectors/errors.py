"""
Error taxonomy for the streaming-service core.

Each error carries a ``user_message`` the HTTP layer can show as-is.
Retry policy per kind:

    ConfigurationError       never retried (fatal, fix the environment)
    AuthExchangeError        never retried (user must connect again)
    NotLinked                no credential on file
    ReauthorizationRequired  never retried (refresh failed, reconnect)
    TransientFetchError      retried with backoff inside the sync engine
    SyncError                raised once library-fetch retries are exhausted
"""

from __future__ import annotations

from typing import Optional


class StreamingServiceError(Exception):
    """Base class for every error raised by the core."""

    user_message = "Something went wrong with this service."

    def __init__(self, message: str = "", *, provider: Optional[str] = None):
        super().__init__(message or self.user_message)
        self.provider = provider


class ConfigurationError(StreamingServiceError):
    user_message = "This service is not configured on the server."


class AuthExchangeError(StreamingServiceError):
    user_message = "Could not connect to the service. Please try connecting again."

    def __init__(
        self,
        message: str = "",
        *,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, provider=provider)
        self.status_code = status_code


class NotLinked(StreamingServiceError):
    user_message = "Please connect this service."


class ReauthorizationRequired(StreamingServiceError):
    user_message = "Your connection to this service expired. Please reconnect."


class TransientFetchError(StreamingServiceError):
    """Timeout, transport failure, HTTP 429 or 5xx while reading a library."""

    user_message = "The service is temporarily unavailable."

    def __init__(
        self,
        message: str = "",
        *,
        provider: Optional[str] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, provider=provider)
        self.retry_after = retry_after


class SyncError(StreamingServiceError):
    user_message = "Refresh failed, showing cached data."


class SnapshotNotFound(StreamingServiceError):
    """No cached library snapshot for the (user, provider) pair."""

    user_message = "No library data yet for this service."
