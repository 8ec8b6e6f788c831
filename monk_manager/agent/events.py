#!/usr/bin/env python3
"""
Event System for Monk Manager
Structured engine events delivered to injected observers (logging, UI).
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)


class EngineEvents(Enum):
    """All events the AI engine can emit"""

    REQUEST_STARTED = "request.started"
    REQUEST_COMPLETED = "request.completed"
    REQUEST_FAILED = "request.failed"

    CACHE_HIT = "cache.hit"
    CACHE_MISS = "cache.miss"

    RETRY_ATTEMPT = "retry.attempt"
    RATE_LIMIT_WAIT = "ratelimit.wait"

    STREAM_CANCELLED = "stream.cancelled"


@dataclass
class Event:
    """Event data container"""

    type: str
    data: Dict[str, Any]
    timestamp: float


class EventBus:
    """Publish/subscribe hub between the engine and its observers"""

    def __init__(self):
        self._listeners: Dict[str, List[Callable]] = {}
        self._history: List[Event] = []
        self.keep_history = False

    def subscribe(self, event_type: str, callback: Callable) -> None:
        """Subscribe to a specific event type"""
        if event_type not in self._listeners:
            self._listeners[event_type] = []
        self._listeners[event_type].append(callback)

    def unsubscribe(self, event_type: str, callback: Callable) -> None:
        """Unsubscribe from a specific event type"""
        if event_type in self._listeners:
            if callback in self._listeners[event_type]:
                self._listeners[event_type].remove(callback)

    @property
    def history(self) -> List[Event]:
        return list(self._history)

    async def emit(self, event_type: str, data: Dict[str, Any]) -> None:
        """Emit an event to all subscribers"""
        event = Event(type=event_type, data=data, timestamp=time.time())
        if self.keep_history:
            self._history.append(event)

        tasks = []
        for callback in list(self._listeners.get(event_type, [])):
            try:
                # Handle both sync and async callbacks
                if inspect.iscoroutinefunction(callback):
                    tasks.append(callback(event.data))
                else:
                    callback(event.data)
            except Exception as e:
                logger.error("Error in event callback for %s: %s", event_type, e)

        if tasks:
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.error("Error in event callback for %s: %s", event_type, result)
