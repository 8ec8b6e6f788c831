#!/usr/bin/env python3
"""
Configuration Exception Definitions for Monk Manager

All configuration-related exceptions inherit from MonkBaseError.
"""

from monk_manager.exceptions.base import MonkBaseError


class ConfigError(MonkBaseError):
    """Raised when configuration values are missing or invalid."""

    def __init__(self, message, field_name=None, original_error=None):
        super().__init__(
            message,
            original_error=original_error,
            user_hint="Check your monk configuration file and MONK_* environment variables.",
        )
        self.field_name = field_name


class ConfigFileError(ConfigError):
    """Raised when a configuration file cannot be read or parsed."""

    def __init__(self, message, file_path=None, original_error=None):
        super().__init__(message, original_error=original_error)
        self.file_path = file_path
        if file_path is not None:
            self.details["file_path"] = str(file_path)
