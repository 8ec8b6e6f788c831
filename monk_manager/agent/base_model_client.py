#!/usr/bin/env python3
"""
Base Model Client Interface
==========================

Abstract base class defining the capability every backend provides:
``generate`` (complete text) and ``stream`` (lazy sequence of chunks).
The engine depends only on this interface.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import AsyncGenerator, AsyncIterator, FrozenSet, Optional

from monk_manager.agent.prompt_builder import RenderedPrompt
from monk_manager.exceptions import AIError, InvalidResponseError, ModelError


class Capability(str, Enum):
    GENERATE = "generate"
    STREAM = "stream"


@dataclass(frozen=True)
class ModelInfo:
    """Static description of a backend, fixed at client construction."""

    name: str
    provider: str
    capabilities: FrozenSet[Capability] = frozenset({Capability.GENERATE, Capability.STREAM})
    max_tokens: int = 1024
    temperature: float = 0.7

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities


@dataclass(frozen=True)
class StreamChunk:
    """
    One element of a response stream.

    A stream always ends with exactly one terminal element: ``done`` for a
    graceful end, or ``error`` when the transport failed mid-stream.
    """

    text: str = ""
    done: bool = False
    error: Optional[AIError] = None

    @property
    def is_terminal(self) -> bool:
        return self.done or self.error is not None


class BaseModelClient(ABC):
    """
    Contract for all LLM backends.

    Subclasses implement ``generate`` and ``_iter_text``; ``stream`` wraps
    the latter so transport failures become a terminal error element
    instead of a silently truncated sequence.
    """

    def __init__(self, model_info: ModelInfo):
        self.model_info = model_info
        self.logger = logging.getLogger(self.__class__.__module__)

    @property
    def model_name(self) -> str:
        return self.model_info.name

    @abstractmethod
    async def generate(self, prompt: RenderedPrompt) -> str:
        """
        Return the complete response text.

        Raises:
            ModelTimeoutError, ModelError, InvalidResponseError,
            RateLimitExceededError
        """

    @abstractmethod
    def _iter_text(self, prompt: RenderedPrompt) -> AsyncIterator[str]:
        """Yield raw text deltas from the backend."""

    async def stream(self, prompt: RenderedPrompt) -> AsyncGenerator[StreamChunk, None]:
        """
        Lazy, finite, non-restartable sequence of chunks ending in a
        terminal element.
        """
        try:
            async for text in self._iter_text(prompt):
                if text:
                    yield StreamChunk(text=text)
        except AIError as e:
            yield StreamChunk(error=e)
            return
        except (ValueError, KeyError, TypeError) as e:
            yield StreamChunk(
                error=InvalidResponseError(f"Malformed stream payload: {e}", original_error=e)
            )
            return
        except Exception as e:
            self.logger.exception("Unexpected error while streaming from %s", self.model_info.provider)
            yield StreamChunk(
                error=ModelError(f"Stream interrupted: {e}", original_error=e)
            )
            return
        yield StreamChunk(done=True)

    async def close(self) -> None:
        """Release transport resources (HTTP sessions, connections, etc.)."""
