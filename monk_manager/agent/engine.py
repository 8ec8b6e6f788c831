#!/usr/bin/env python3
"""
AI Engine
=========

Orchestrates one turn: render prompt -> fingerprint -> cache ->
rate limiter -> retry policy -> model client -> session/cache update.

Failures surface as AIError subclasses and never leave an assistant
message in the session for the failed exchange.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, AsyncGenerator, AsyncIterator, Dict, Optional, Tuple

from monk_manager.agent.base_model_client import BaseModelClient, Capability, StreamChunk
from monk_manager.agent.cache import RequestFingerprint, ResponseCache
from monk_manager.agent.events import EngineEvents, EventBus
from monk_manager.agent.prompt_builder import PromptBuilder, RenderedPrompt, UserRequest
from monk_manager.agent.rate_limiter import RateLimiter
from monk_manager.agent.session import ConversationSession
from monk_manager.config.settings import Settings
from monk_manager.exceptions import AIError, ModelTimeoutError
from monk_manager.utils.retry import Backoff, RetryPolicy


@dataclass(frozen=True)
class Response:
    text: str
    fingerprint: RequestFingerprint
    cached: bool
    model: str
    elapsed: float


class AIEngine:
    def __init__(
        self,
        client: BaseModelClient,
        session: Optional[ConversationSession] = None,
        cache: Optional[ResponseCache] = None,
        rate_limiter: Optional[RateLimiter] = None,
        retry_policy: Optional[RetryPolicy] = None,
        prompt_builder: Optional[PromptBuilder] = None,
        event_bus: Optional[EventBus] = None,
        request_timeout: float = 60.0,
    ):
        self.client = client
        self.session = session or ConversationSession()
        self.cache = cache or ResponseCache()
        self.event_bus = event_bus or EventBus()
        self.rate_limiter = rate_limiter or RateLimiter(event_bus=self.event_bus)
        self.retry_policy = retry_policy or RetryPolicy(event_bus=self.event_bus)
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.request_timeout = request_timeout

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: BaseModelClient,
        event_bus: Optional[EventBus] = None,
        cache: Optional[ResponseCache] = None,
        rate_limiter: Optional[RateLimiter] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> "AIEngine":
        """
        Wire an engine from validated settings.

        ``cache`` and ``rate_limiter`` may be shared between engines (and
        therefore sessions); everything else is per engine.
        """
        event_bus = event_bus or EventBus()
        return cls(
            client=client,
            session=ConversationSession(
                metadata=metadata, max_messages=settings.max_history_messages
            ),
            cache=cache
            or ResponseCache(capacity=settings.cache_capacity, max_age=settings.cache_max_age),
            rate_limiter=rate_limiter
            or RateLimiter(
                rate=settings.rate_limit_per_second,
                burst=settings.rate_limit_burst,
                max_concurrency=settings.max_concurrency,
                admission_timeout=settings.admission_timeout,
                event_bus=event_bus,
            ),
            retry_policy=RetryPolicy(
                max_attempts=settings.retry_max_attempts,
                backoff=Backoff(
                    base_delay=settings.retry_base_delay,
                    max_delay=settings.retry_max_delay,
                    jitter=settings.retry_jitter,
                ),
                event_bus=event_bus,
            ),
            prompt_builder=PromptBuilder(
                system_prompt=settings.system_prompt,
                char_budget=settings.history_char_budget,
                default_language=settings.default_language,
            ),
            event_bus=event_bus,
            request_timeout=settings.request_timeout,
        )

    # --- Public API ---

    def render(self, request: UserRequest) -> RenderedPrompt:
        return self.prompt_builder.render(
            request, self.session.history, self.session.metadata
        )

    def fingerprint(self, rendered: RenderedPrompt) -> RequestFingerprint:
        info = self.client.model_info
        return RequestFingerprint.compute(
            rendered.cache_text, info.name, info.temperature, info.max_tokens
        )

    async def answer(self, request: UserRequest) -> Response:
        """Answer one request with a buffered (non-streaming) call."""
        rendered, fingerprint = self._begin_turn(request)
        started = time.monotonic()
        await self._emit(EngineEvents.REQUEST_STARTED, fingerprint, stream=False)

        try:
            cached = await self._lookup(fingerprint)
            if cached is not None:
                self.session.complete(cached)
                return await self._finish(cached, fingerprint, started, cached=True)

            async with self.rate_limiter.acquire():
                text = await self.retry_policy.execute_with_retry(
                    lambda: self._generate_once(rendered)
                )
        except AIError as e:
            self.session.fail()
            await self._emit_failure(e, fingerprint)
            raise
        except asyncio.CancelledError:
            self.session.cancel()
            raise

        self.cache.put(fingerprint, text)
        self.session.complete(text)
        return await self._finish(text, fingerprint, started, cached=False)

    async def answer_stream(self, request: UserRequest) -> AsyncGenerator[str, None]:
        """
        Answer one request, yielding text chunks as they arrive.

        Chunks are buffered in the session and committed as a single
        assistant message once the stream completes. Closing the generator
        early (or cancelling the consuming task) discards the partial text
        and stores nothing in the cache.
        """
        rendered, fingerprint = self._begin_turn(request)
        started = time.monotonic()
        await self._emit(EngineEvents.REQUEST_STARTED, fingerprint, stream=True)

        try:
            cached = await self._lookup(fingerprint)
            if cached is not None:
                self.session.start_streaming()
                self.session.append_chunk(cached)
                yield cached
            elif not self.client.model_info.supports(Capability.STREAM):
                # Buffered backend: the whole answer arrives as one chunk.
                async with self.rate_limiter.acquire():
                    text = await self.retry_policy.execute_with_retry(
                        lambda: self._generate_once(rendered)
                    )
                    self.session.start_streaming()
                    self.session.append_chunk(text)
                    yield text
            else:
                async with self.rate_limiter.acquire():
                    stream, chunk = await self.retry_policy.execute_with_retry(
                        lambda: self._open_stream(rendered)
                    )
                    try:
                        self.session.start_streaming()
                        while not chunk.done:
                            if chunk.error is not None:
                                raise chunk.error
                            self.session.append_chunk(chunk.text)
                            yield chunk.text
                            chunk = await self._next_chunk(stream)
                    finally:
                        await stream.aclose()
        except AIError as e:
            self.session.fail()
            await self._emit_failure(e, fingerprint)
            raise
        except (asyncio.CancelledError, GeneratorExit):
            discarded = self.session.cancel()
            await self._emit(
                EngineEvents.STREAM_CANCELLED, fingerprint, discarded_chars=discarded
            )
            raise

        text = self.session.pending_text
        if cached is None:
            self.cache.put(fingerprint, text)
        self.session.complete()
        await self._finish(text, fingerprint, started, cached=cached is not None)

    def new_session(self) -> ConversationSession:
        """Start a fresh conversation, keeping metadata. Shared cache stays warm."""
        self.session = ConversationSession(
            metadata=self.session.metadata, max_messages=self.session.max_messages
        )
        return self.session

    def status(self) -> Dict[str, Any]:
        info = self.client.model_info
        return {
            "model": info.name,
            "provider": info.provider,
            "session_id": self.session.session_id,
            "state": self.session.state.value,
            "history_messages": len(self.session),
            "cache": self.cache.stats(),
            "in_flight": self.rate_limiter.in_flight,
        }

    # --- Internals ---

    def _begin_turn(self, request: UserRequest) -> Tuple[RenderedPrompt, RequestFingerprint]:
        # Rendering validates the request before any state changes.
        rendered = self.render(request)
        fingerprint = self.fingerprint(rendered)
        self.session.submit(rendered.user_turn)
        return rendered, fingerprint

    async def _lookup(self, fingerprint: RequestFingerprint) -> Optional[str]:
        entry = self.cache.get(fingerprint)
        event = EngineEvents.CACHE_HIT if entry is not None else EngineEvents.CACHE_MISS
        await self._emit(event, fingerprint, result="hit" if entry is not None else "miss")
        return entry.text if entry is not None else None

    async def _generate_once(self, rendered: RenderedPrompt) -> str:
        try:
            return await asyncio.wait_for(
                self.client.generate(rendered), timeout=self.request_timeout
            )
        except asyncio.TimeoutError as exc:
            raise ModelTimeoutError(
                f"AI request timed out after {self.request_timeout:g}s",
                timeout_seconds=self.request_timeout,
            ) from exc

    async def _open_stream(
        self, rendered: RenderedPrompt
    ) -> Tuple[AsyncGenerator[StreamChunk, None], StreamChunk]:
        """
        Start a stream and wait for its first element.

        Retries only cover this part: once a chunk has been delivered to the
        caller a failure ends the turn instead of replaying the stream.
        """
        stream = self.client.stream(rendered)
        try:
            first = await self._next_chunk(stream)
        except BaseException:
            await stream.aclose()
            raise
        if first.error is not None:
            await stream.aclose()
            raise first.error
        return stream, first

    async def _next_chunk(self, stream: AsyncIterator[StreamChunk]) -> StreamChunk:
        # asyncio.timeout keeps the generator in the calling task.
        try:
            async with asyncio.timeout(self.request_timeout):
                return await anext(stream)
        except StopAsyncIteration:
            return StreamChunk(done=True)
        except TimeoutError as exc:
            raise ModelTimeoutError(
                f"No data from the model for {self.request_timeout:g}s",
                timeout_seconds=self.request_timeout,
            ) from exc

    async def _finish(
        self, text: str, fingerprint: RequestFingerprint, started: float, cached: bool
    ) -> Response:
        elapsed = time.monotonic() - started
        await self._emit(
            EngineEvents.REQUEST_COMPLETED,
            fingerprint,
            cached=cached,
            chars=len(text),
            elapsed=elapsed,
        )
        return Response(
            text=text,
            fingerprint=fingerprint,
            cached=cached,
            model=self.client.model_info.name,
            elapsed=elapsed,
        )

    async def _emit_failure(self, error: AIError, fingerprint: RequestFingerprint) -> None:
        await self._emit(
            EngineEvents.REQUEST_FAILED,
            fingerprint,
            kind=error.kind.value,
            error=error.message,
        )

    async def _emit(
        self, event: EngineEvents, fingerprint: RequestFingerprint, **data: Any
    ) -> None:
        payload = {
            "fingerprint": fingerprint.short(),
            "model": self.client.model_info.name,
            "session_id": self.session.session_id,
            **data,
        }
        await self.event_bus.emit(event.value, payload)
