# Tests for the AI engine orchestration

import asyncio
from contextlib import aclosing

import pytest

from monk_manager.agent.base_model_client import Capability, ModelInfo
from monk_manager.agent.engine import AIEngine
from monk_manager.agent.prompt_builder import UserRequest
from monk_manager.agent.providers import MockModelClient, ScriptedStream
from monk_manager.agent.rate_limiter import RateLimiter
from monk_manager.agent.session import ConversationSession
from monk_manager.config.settings import Settings
from monk_manager.exceptions import (
    AuthenticationError,
    InvalidInputError,
    InvalidResponseError,
    ModelError,
    RateLimitExceededError,
    SessionBusyError,
)


class GatedClient(MockModelClient):
    """generate() blocks until the test opens the gate."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.gate = asyncio.Event()
        self.entered = asyncio.Event()
        self.active = 0
        self.max_active = 0

    async def generate(self, prompt):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.entered.set()
        try:
            await self.gate.wait()
            return await super().generate(prompt)
        finally:
            self.active -= 1


class GenerateOnlyClient(MockModelClient):
    """A backend that declares no streaming support."""

    def __init__(self, *args, **kwargs):
        kwargs.setdefault(
            "model_info",
            ModelInfo(
                name="batch-model",
                provider="mock",
                capabilities=frozenset({Capability.GENERATE}),
            ),
        )
        super().__init__(*args, **kwargs)

    def stream(self, prompt):
        raise AssertionError("stream() called on a generate-only backend")


def event_types(bus):
    return [event.type for event in bus.history]


class TestAnswer:
    @pytest.mark.asyncio
    async def test_first_question_calls_the_model_once(self, make_engine, event_bus):
        engine = make_engine(["A closure is a function with captured variables."])
        response = await engine.answer(UserRequest(query="What is a closure?"))

        assert response.text == "A closure is a function with captured variables."
        assert response.cached is False
        assert response.model == "mock-model"
        assert engine.client.calls == 1
        assert len(engine.session) == 2
        assert engine.session.history[0].content == "What is a closure?"
        assert event_types(event_bus) == [
            "request.started",
            "cache.miss",
            "request.completed",
        ]

    @pytest.mark.asyncio
    async def test_repeated_question_is_served_from_cache(self, make_engine, event_bus):
        engine = make_engine(["first answer", "should not be used"])
        await engine.answer(UserRequest(query="What is a closure?"))
        response = await engine.answer(UserRequest(query="What is a closure?"))

        assert response.cached is True
        assert response.text == "first answer"
        assert engine.client.calls == 1
        assert len(engine.session) == 4
        assert "cache.hit" in event_types(event_bus)

    @pytest.mark.asyncio
    async def test_cache_hit_does_not_take_a_rate_limit_token(self, make_engine, clock):
        limiter = RateLimiter(rate=0.001, burst=1, admission_timeout=0.1, clock=clock)
        engine = make_engine(["answer"], rate_limiter=limiter)
        await engine.answer(UserRequest(query="q"))
        # The bucket is now empty; a second remote call would be refused.
        response = await engine.answer(UserRequest(query="q"))
        assert response.cached is True

    @pytest.mark.asyncio
    async def test_history_is_sent_with_the_next_question(self, make_engine):
        engine = make_engine(["one", "two"])
        await engine.answer(UserRequest(query="first"))
        await engine.answer(UserRequest(query="second"))

        second_prompt = engine.client.prompts[1]
        assert [m.content for m in second_prompt.history] == ["first", "one"]

    @pytest.mark.asyncio
    async def test_session_metadata_reaches_the_system_instruction(self, make_engine):
        engine = make_engine(
            ["ok"], session=ConversationSession(metadata={"Current directory": "/work"})
        )
        await engine.answer(UserRequest(query="hi"))
        assert "Current directory: /work" in engine.client.prompts[0].system

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self, make_engine):
        engine = make_engine([ModelError("overloaded", status_code=529), "recovered"])
        response = await engine.answer(UserRequest(query="q"))
        assert response.text == "recovered"
        assert engine.client.calls == 2

    @pytest.mark.asyncio
    async def test_exhausted_retries_leave_history_untouched(self, make_engine, event_bus):
        engine = make_engine([ModelError("down", status_code=503)] * 3, max_attempts=3)
        with pytest.raises(ModelError) as exc_info:
            await engine.answer(UserRequest(query="q"))

        assert exc_info.value.attempts == 3
        assert engine.client.calls == 3
        assert engine.session.is_idle
        assert len(engine.session) == 0
        assert len(engine.cache) == 0
        assert event_types(event_bus)[-1] == "request.failed"

    @pytest.mark.asyncio
    async def test_rate_limit_exhaustion(self, make_engine):
        engine = make_engine([RateLimitExceededError()] * 2, max_attempts=2)
        with pytest.raises(RateLimitExceededError) as exc_info:
            await engine.answer(UserRequest(query="q"))
        assert exc_info.value.attempts == 2

    @pytest.mark.asyncio
    async def test_terminal_errors_fail_after_one_call(self, make_engine):
        engine = make_engine([InvalidResponseError("garbled")])
        with pytest.raises(InvalidResponseError):
            await engine.answer(UserRequest(query="q"))
        assert engine.client.calls == 1

        engine = make_engine([AuthenticationError("bad key", status_code=401)])
        with pytest.raises(AuthenticationError):
            await engine.answer(UserRequest(query="q"))
        assert engine.client.calls == 1

    @pytest.mark.asyncio
    async def test_invalid_input_never_reaches_the_model(self, make_engine):
        engine = make_engine(["unused"])
        with pytest.raises(InvalidInputError):
            await engine.answer(UserRequest(query=""))
        assert engine.client.calls == 0
        assert engine.session.is_idle

    @pytest.mark.asyncio
    async def test_busy_session_rejects_a_second_turn(self, make_engine):
        client = GatedClient(script=["slow answer"])
        engine = make_engine(client=client)
        first = asyncio.ensure_future(engine.answer(UserRequest(query="one")))
        await client.entered.wait()

        with pytest.raises(SessionBusyError):
            await engine.answer(UserRequest(query="two"))

        client.gate.set()
        response = await first
        assert response.text == "slow answer"
        assert len(engine.session) == 2

    @pytest.mark.asyncio
    async def test_cancelled_call_returns_session_to_idle(self, make_engine):
        client = GatedClient(script=["never delivered"])
        engine = make_engine(client=client)
        task = asyncio.ensure_future(engine.answer(UserRequest(query="q")))
        await client.entered.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert engine.session.is_idle
        assert len(engine.session) == 0
        assert engine.rate_limiter.in_flight == 0

    @pytest.mark.asyncio
    async def test_slow_model_times_out(self, make_engine):
        client = GatedClient(script=["late"])
        engine = make_engine(client=client, max_attempts=2, request_timeout=0.05)
        with pytest.raises(ModelError) as exc_info:
            await engine.answer(UserRequest(query="q"))
        assert exc_info.value.attempts == 2
        assert "timed out" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_shared_limiter_caps_concurrent_calls(self, make_engine):
        client = GatedClient()
        limiter = RateLimiter(rate=1000.0, burst=100, max_concurrency=1)
        engines = [make_engine(client=client, rate_limiter=limiter) for _ in range(3)]
        tasks = [
            asyncio.ensure_future(engine.answer(UserRequest(query=f"q{n}")))
            for n, engine in enumerate(engines)
        ]
        await client.entered.wait()
        await asyncio.sleep(0.01)
        client.gate.set()
        responses = await asyncio.gather(*tasks)

        assert client.max_active == 1
        assert [r.text for r in responses] == [f"(mock) You asked: q{n}" for n in range(3)]


class TestAnswerStream:
    async def _collect(self, engine, request):
        chunks = []
        async with aclosing(engine.answer_stream(request)) as stream:
            async for chunk in stream:
                chunks.append(chunk)
        return chunks

    @pytest.mark.asyncio
    async def test_chunks_are_committed_as_one_message(self, make_engine):
        engine = make_engine([ScriptedStream(["Hello ", "streaming ", "world"])])
        chunks = await self._collect(engine, UserRequest(query="q", stream=True))

        assert chunks == ["Hello ", "streaming ", "world"]
        assert len(engine.session) == 2
        assert engine.session.history[-1].content == "Hello streaming world"
        assert len(engine.cache) == 1

    @pytest.mark.asyncio
    async def test_generate_only_backend_streams_one_chunk(self, make_engine):
        engine = make_engine(client=GenerateOnlyClient(["hello world"]))
        chunks = await self._collect(engine, UserRequest(query="q", stream=True))

        assert chunks == ["hello world"]
        assert engine.client.calls == 1
        assert engine.session.history[-1].content == "hello world"
        assert len(engine.cache) == 1
        assert engine.rate_limiter.in_flight == 0

    @pytest.mark.asyncio
    async def test_generate_only_backend_retries_and_fails_cleanly(self, make_engine):
        engine = make_engine(
            client=GenerateOnlyClient([ModelError("overloaded", status_code=503)] * 3),
            max_attempts=3,
        )
        with pytest.raises(ModelError):
            await self._collect(engine, UserRequest(query="q", stream=True))

        assert engine.client.calls == 3
        assert len(engine.session) == 0
        assert engine.session.is_idle

    @pytest.mark.asyncio
    async def test_completed_stream_feeds_the_cache(self, make_engine):
        engine = make_engine([ScriptedStream(["cached ", "text"])])
        await self._collect(engine, UserRequest(query="q", stream=True))

        response = await engine.answer(UserRequest(query="q"))
        assert response.cached is True
        assert response.text == "cached text"

        chunks = await self._collect(engine, UserRequest(query="q", stream=True))
        assert chunks == ["cached text"]
        assert engine.client.calls == 1

    @pytest.mark.asyncio
    async def test_closing_the_stream_early_discards_everything(self, make_engine, event_bus):
        engine = make_engine([ScriptedStream(["a ", "b ", "c"]), ScriptedStream(["fresh"])])
        request = UserRequest(query="q", stream=True)

        stream = engine.answer_stream(request)
        assert await anext(stream) == "a "
        await stream.aclose()

        assert engine.session.is_idle
        assert len(engine.session) == 0
        assert len(engine.cache) == 0
        assert engine.rate_limiter.in_flight == 0
        cancelled = [e.data for e in event_bus.history if e.type == "stream.cancelled"]
        assert cancelled[0]["discarded_chars"] == 2

        # The next identical request is a cache miss
        chunks = await self._collect(engine, request)
        assert chunks == ["fresh"]
        assert engine.client.calls == 2

    @pytest.mark.asyncio
    async def test_cancelling_the_consumer_discards_the_turn(self, make_engine):
        client = MockModelClient(script=["one two three four"], chunk_delay=0.05)
        engine = make_engine(client=client)
        received = []

        async def consume():
            async with aclosing(engine.answer_stream(UserRequest(query="q"))) as stream:
                async for chunk in stream:
                    received.append(chunk)

        task = asyncio.ensure_future(consume())
        while not received:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert engine.session.is_idle
        assert len(engine.session) == 0
        assert len(engine.cache) == 0

    @pytest.mark.asyncio
    async def test_mid_stream_failure_is_not_retried(self, make_engine):
        engine = make_engine(
            [ScriptedStream(["partial "], error=ModelError("reset", status_code=502)), "unused"]
        )
        received = []
        with pytest.raises(ModelError):
            async with aclosing(engine.answer_stream(UserRequest(query="q"))) as stream:
                async for chunk in stream:
                    received.append(chunk)

        assert received == ["partial "]
        assert engine.client.calls == 1
        assert engine.session.is_idle
        assert len(engine.session) == 0
        assert len(engine.cache) == 0

    @pytest.mark.asyncio
    async def test_failure_before_first_chunk_is_retried(self, make_engine):
        engine = make_engine([ModelError("overloaded", status_code=503), "after retry"])
        chunks = await self._collect(engine, UserRequest(query="q"))
        assert "".join(chunks) == "after retry"
        assert engine.client.calls == 2

    @pytest.mark.asyncio
    async def test_terminal_error_surfaces_from_stream(self, make_engine):
        engine = make_engine([AuthenticationError("denied", status_code=403)])
        with pytest.raises(AuthenticationError):
            await self._collect(engine, UserRequest(query="q"))
        assert engine.client.calls == 1
        assert engine.session.is_idle


class TestStatus:
    @pytest.mark.asyncio
    async def test_status_and_new_session(self, make_engine):
        engine = make_engine(["a"], session=ConversationSession(metadata={"k": "v"}))
        await engine.answer(UserRequest(query="q"))
        status = engine.status()
        assert status["model"] == "mock-model"
        assert status["history_messages"] == 2
        assert status["cache"]["entries"] == 1

        old_id = engine.session.session_id
        session = engine.new_session()
        assert session.session_id != old_id
        assert len(session) == 0
        assert session.metadata == {"k": "v"}


class TestFromSettings:
    @pytest.mark.asyncio
    async def test_history_limit_comes_from_settings(self):
        settings = Settings(provider="mock", max_history_messages=4)
        engine = AIEngine.from_settings(
            settings, client=MockModelClient(["one", "two", "three"]), metadata={"k": "v"}
        )
        assert engine.session.max_messages == 4

        for query in ("first", "second", "third"):
            await engine.answer(UserRequest(query=query))

        assert [m.content for m in engine.session.history] == ["second", "two", "third", "three"]
        assert engine.new_session().max_messages == 4
