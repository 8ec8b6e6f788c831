#!/usr/bin/env python3
"""
SensitiveStr - Wrapper for secrets that masks itself in logs, exceptions, and repr.
Prevents accidental leakage of API keys.
"""

import threading

import logging
from typing import Any, Optional, Set, Union

logger = logging.getLogger(__name__)

_thread_local_storage = threading.local()

_SECRET_KEY_NAMES = ("api_key", "authorization", "x-api-key", "token", "secret")


class SensitiveStr:
    """
    A string wrapper that masks its value in every string representation.
    """

    def __init__(self, value: Optional[str]):
        self._value = value

    def __str__(self) -> str:
        return "***REDACTED***" if self._value else ""

    def __repr__(self) -> str:
        if self._value is None:
            return "SensitiveStr(None)"
        prefix = self._value[:7] if len(self._value) > 12 else self._value[:2]
        return f"SensitiveStr('{prefix}...***REDACTED***')"

    def __bool__(self) -> bool:
        return bool(self._value)

    def __eq__(self, other) -> bool:
        if isinstance(other, SensitiveStr):
            return self._value == other._value
        return self._value == other

    def __hash__(self) -> int:
        return hash(self._value)

    def __len__(self) -> int:
        return len(self._value) if self._value else 0

    def get_secret(self) -> str:
        """Explicit method to get the actual secret value."""
        return self._value if self._value else ""

    def is_valid(self) -> bool:
        """Check if the secret is set and not a placeholder."""
        if not self._value:
            return False
        placeholders = [
            "your-api-key-here",
            "YOUR_ANTHROPIC_API_KEY_HERE",
            "demo-api-key",
            "REPLACEME",
            "PLACEHOLDER",
        ]
        return not any(p.lower() in self._value.lower() for p in placeholders)

    def mask_for_display(self, show_chars: int = 4) -> str:
        """Return a masked version suitable for UI display."""
        if not self._value:
            return "***NOT SET***"
        if len(self._value) <= show_chars:
            return "*" * len(self._value)
        visible = self._value[:show_chars]
        masked = "*" * (len(self._value) - show_chars)
        return f"{visible}{masked}"


def sanitize_for_logging(data: Any, max_depth: int = 10) -> Any:
    """Recursively sanitize a value for safe logging."""
    if not hasattr(_thread_local_storage, "visited"):
        _thread_local_storage.visited = set()

    try:
        return _recursive_sanitize(data, max_depth)
    finally:
        if hasattr(_thread_local_storage, "visited"):
            del _thread_local_storage.visited


def _recursive_sanitize(value: Any, max_depth: int) -> Any:
    if max_depth <= 0:
        logger.warning("Max recursion depth reached in sanitize_for_logging.")
        return "<max depth reached>"

    if isinstance(value, (dict, list, tuple)):
        return _sanitize_container(value, max_depth)

    return _sanitize_leaf(value)


def _sanitize_container(value: Union[dict, list, tuple], max_depth: int) -> Any:
    """Handle dictionaries and lists with circular reference checking."""
    visited: Set[int] = _thread_local_storage.visited
    value_id = id(value)

    if value_id in visited:
        logger.warning("Circular reference detected in sanitize. ID: %s", value_id)
        return "<circular reference>"

    visited.add(value_id)
    try:
        if isinstance(value, dict):
            return {
                k: (
                    "***REDACTED***"
                    if isinstance(k, str) and k.lower() in _SECRET_KEY_NAMES
                    else _recursive_sanitize(v, max_depth - 1)
                )
                for k, v in value.items()
            }

        # list or tuple
        return type(value)(_recursive_sanitize(item, max_depth - 1) for item in value)
    finally:
        visited.discard(value_id)


def _sanitize_leaf(value: Any) -> Any:
    if isinstance(value, SensitiveStr):
        return repr(value)

    if isinstance(value, str):
        return "***REDACTED***" if _looks_like_secret(value) else value

    return value


def _looks_like_secret(value: str) -> bool:
    """Heuristic to detect if a string looks like an API key."""
    if not value or len(value) < 20 or any(c.isspace() for c in value):
        return False
    secret_patterns = ["sk-ant-", "sk-or-", "sk-proj-", "sk-"]
    return any(value.startswith(pattern) for pattern in secret_patterns)


def wrap_secret(value: Optional[str]) -> SensitiveStr:
    """Wrap a string in SensitiveStr."""
    return SensitiveStr(value)
