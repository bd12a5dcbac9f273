"""
Error taxonomy for weatherchat.

Store and relay code raise these; the API layer turns them into status codes
(see weatherchat.main for the handlers).
"""

from __future__ import annotations


class WeatherChatError(Exception):
    """Base class for every error raised by weatherchat."""


class NotFoundError(WeatherChatError):
    """A keyed record does not exist."""


class ValidationError(WeatherChatError):
    """Malformed input to a CRUD operation."""


class UpstreamError(WeatherChatError):
    """The agent endpoint was unreachable or answered non-2xx before streaming."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class StreamError(WeatherChatError):
    """The stream failed after bytes had started flowing."""


class TransportError(WeatherChatError):
    """A realtime channel frame could not be understood."""
