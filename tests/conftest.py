# Shared fixtures for the monk-manager test-suite

import asyncio
import io
import os
import random

import pytest
from rich.console import Console

from monk_manager.agent.cache import ResponseCache
from monk_manager.agent.engine import AIEngine
from monk_manager.agent.events import EventBus
from monk_manager.agent.prompt_builder import PromptBuilder
from monk_manager.agent.providers import MockModelClient
from monk_manager.agent.rate_limiter import RateLimiter
from monk_manager.agent.session import ConversationSession
from monk_manager.ui.renderer import ConsoleRenderer
from monk_manager.utils.retry import Backoff, RetryPolicy


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement: records delays and advances a FakeClock."""

    def __init__(self, clock: FakeClock = None):
        self.delays = []
        self.clock = clock

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self.clock is not None:
            self.clock.advance(delay)
        await asyncio.sleep(0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def recording_sleep(clock):
    return RecordingSleep(clock)


@pytest.fixture
def event_bus():
    bus = EventBus()
    bus.keep_history = True
    return bus


@pytest.fixture
def make_engine(event_bus):
    """Factory for engines backed by a scripted MockModelClient."""

    def factory(script=(), client=None, max_attempts=3, **kwargs):
        client = client or MockModelClient(script=script)
        sleep = kwargs.pop("sleep", RecordingSleep())
        return AIEngine(
            client=client,
            session=kwargs.pop("session", ConversationSession()),
            cache=kwargs.pop("cache", ResponseCache(capacity=16)),
            rate_limiter=kwargs.pop(
                "rate_limiter",
                RateLimiter(rate=1000.0, burst=100, max_concurrency=4, event_bus=event_bus),
            ),
            retry_policy=RetryPolicy(
                max_attempts=max_attempts,
                backoff=Backoff(base_delay=1.0, max_delay=8.0, jitter=0.0),
                sleep=sleep,
                rng=random.Random(7),
                event_bus=event_bus,
            ),
            prompt_builder=kwargs.pop("prompt_builder", PromptBuilder()),
            event_bus=event_bus,
            **kwargs,
        )

    return factory


@pytest.fixture
def console_output():
    return io.StringIO()


@pytest.fixture
def renderer(console_output):
    console = Console(file=console_output, force_terminal=False, width=120, color_system=None)
    return ConsoleRenderer(console)


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Keep user config files, .env and API keys out of every test."""
    for name in list(os.environ):
        if name.startswith("MONK_") or name in ("ANTHROPIC_API_KEY", "OPENROUTER_API_KEY"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.chdir(tmp_path)
