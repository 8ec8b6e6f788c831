#!/usr/bin/env python3
"""
Monk Manager Exceptions Package

Unified exception hierarchy for the assistant.
"""

# Base exceptions
from .base import MonkBaseError

# AI engine exceptions
from .model import (
    AIError,
    AuthenticationError,
    ErrorKind,
    InvalidInputError,
    InvalidResponseError,
    ModelError,
    ModelTimeoutError,
    OperationCancelledError,
    RateLimitExceededError,
    SessionBusyError,
)

# Config exceptions
from .config import ConfigError, ConfigFileError


__all__ = [
    # Base
    "MonkBaseError",
    # AI engine
    "AIError",
    "ErrorKind",
    "InvalidInputError",
    "RateLimitExceededError",
    "ModelTimeoutError",
    "ModelError",
    "AuthenticationError",
    "InvalidResponseError",
    "SessionBusyError",
    "OperationCancelledError",
    # Config
    "ConfigError",
    "ConfigFileError",
]
