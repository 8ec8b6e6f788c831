#!/usr/bin/env python3
"""
AI Exception Definitions for Monk Manager
=========================================

Every failure the engine surfaces is an AIError carrying a
machine-readable ``kind`` and a human-readable message/hint.
Whether a failure may be retried is decided by ``retryable``.
"""

from enum import Enum
from typing import Optional

from monk_manager.exceptions.base import MonkBaseError


class ErrorKind(str, Enum):
    INVALID_INPUT = "invalid_input"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    TIMEOUT = "timeout"
    MODEL_ERROR = "model_error"
    INVALID_RESPONSE = "invalid_response"
    SESSION_BUSY = "session_busy"
    CANCELLED = "cancelled"


class AIError(MonkBaseError):
    """Base exception for everything the AI engine can surface."""

    kind = ErrorKind.MODEL_ERROR
    retryable = False

    def __init__(self, message: str, **kwargs):
        super().__init__(message, **kwargs)
        self.details.setdefault("kind", self.kind.value)


class InvalidInputError(AIError):
    """Raised for malformed requests (bad line range, empty query)."""

    kind = ErrorKind.INVALID_INPUT

    def __init__(self, message: str, field_name: Optional[str] = None, **kwargs):
        kwargs.setdefault("user_hint", "Check the request and try again.")
        super().__init__(message, **kwargs)
        self.field_name = field_name


class RateLimitExceededError(AIError):
    """Raised when a local or remote rate limit refuses the request."""

    kind = ErrorKind.RATE_LIMIT_EXCEEDED
    retryable = True

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[float] = None,
        attempts: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after
        self.attempts = attempts
        if retry_after is not None:
            self.details["retry_after_seconds"] = retry_after
        if attempts is not None:
            self.details["attempts"] = attempts
        if retry_after:
            self.user_hint = (
                f"Rate limit exceeded. Please wait {retry_after:g} seconds before trying again."
            )
        else:
            self.user_hint = "Rate limit exceeded. Please wait before making additional requests."


class ModelTimeoutError(AIError):
    """Raised when a model request times out."""

    kind = ErrorKind.TIMEOUT
    retryable = True

    def __init__(self, message: str, timeout_seconds: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.timeout_seconds = timeout_seconds
        self.user_hint = "The model took too long to answer. Try again or raise the timeout."


class ModelError(AIError):
    """
    Backend-reported failure.

    Transport failures without a status code and 5xx responses are
    transient; other 4xx responses are not worth repeating.
    """

    kind = ErrorKind.MODEL_ERROR

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        attempts: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.attempts = attempts
        if status_code is not None:
            self.details["status_code"] = status_code
        if attempts is not None:
            self.details["attempts"] = attempts
        self.user_hint = (
            "The model backend reported an error. "
            "Please check your internet connection or try again later."
        )

    @property
    def retryable(self) -> bool:
        return self.status_code is None or self.status_code >= 500


class AuthenticationError(ModelError):
    """Raised when the backend rejects the credentials."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, **kwargs)
        self.user_hint = "Authentication with the provider failed. Please check your API key."

    @property
    def retryable(self) -> bool:
        return False


class InvalidResponseError(AIError):
    """Raised when the backend payload cannot be parsed."""

    kind = ErrorKind.INVALID_RESPONSE

    def __init__(self, message: str, raw_response: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.raw_response = raw_response
        self.user_hint = "The model returned invalid data. Please try again."


class SessionBusyError(AIError):
    """Raised when a turn is submitted while another one is in flight."""

    kind = ErrorKind.SESSION_BUSY

    def __init__(self, message: str = "A request is already in progress", **kwargs):
        super().__init__(message, **kwargs)
        self.user_hint = "Wait for the current answer to finish or interrupt it first."


class OperationCancelledError(AIError):
    """Raised to the presentation layer when the user interrupts a turn."""

    kind = ErrorKind.CANCELLED

    def __init__(self, message: str = "Operation cancelled", **kwargs):
        super().__init__(message, **kwargs)
        self.user_hint = "The current operation was interrupted."
