#!/usr/bin/env python3
"""
Mock Model Client
=================
Deterministic, scripted backend. Used by the test-suite and for offline
runs (``provider = "mock"``) without any network access.
"""

import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional, Sequence, Union

from monk_manager.agent.base_model_client import BaseModelClient, ModelInfo
from monk_manager.agent.prompt_builder import RenderedPrompt
from monk_manager.exceptions import AIError


@dataclass
class ScriptedStream:
    """A streamed reply: ``chunks`` are delivered, then ``error`` (if any) is raised."""

    chunks: List[str]
    error: Optional[AIError] = None


ScriptItem = Union[str, AIError, ScriptedStream]


class MockModelClient(BaseModelClient):
    """
    Replays ``script`` one item per call; once it runs out every call
    answers with a canned echo of the question.
    """

    def __init__(
        self,
        script: Sequence[ScriptItem] = (),
        model_info: Optional[ModelInfo] = None,
        chunk_delay: float = 0.0,
    ):
        super().__init__(model_info or ModelInfo(name="mock-model", provider="mock"))
        self._pending = list(script)
        self.chunk_delay = chunk_delay
        self.calls = 0
        self.prompts: List[RenderedPrompt] = []

    def _next_item(self, prompt: RenderedPrompt) -> ScriptItem:
        self.calls += 1
        self.prompts.append(prompt)
        if self._pending:
            return self._pending.pop(0)
        first_line = prompt.user_turn.strip().splitlines()[0]
        return f"(mock) You asked: {first_line}"

    async def generate(self, prompt: RenderedPrompt) -> str:
        item = self._next_item(prompt)
        if isinstance(item, AIError):
            raise item
        if isinstance(item, ScriptedStream):
            if item.error is not None:
                raise item.error
            return "".join(item.chunks)
        return item

    async def _iter_text(self, prompt: RenderedPrompt) -> AsyncIterator[str]:
        item = self._next_item(prompt)
        if isinstance(item, AIError):
            raise item
        if isinstance(item, str):
            item = ScriptedStream(chunks=_split_words(item))

        for chunk in item.chunks:
            if self.chunk_delay:
                await asyncio.sleep(self.chunk_delay)
            yield chunk
        if item.error is not None:
            raise item.error


def _split_words(text: str) -> List[str]:
    words = text.split(" ")
    return [word + (" " if i < len(words) - 1 else "") for i, word in enumerate(words)]
