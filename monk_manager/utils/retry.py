"""
Retry policy for transient errors in model interactions.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import aiohttp
from tenacity import AsyncRetrying, RetryError, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from monk_manager.agent.events import EngineEvents, EventBus
from monk_manager.exceptions import AIError, ModelError, RateLimitExceededError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Backoff:
    """Exponential backoff: ``base * 2**(n-1) * (1 + U(0, jitter))``, capped."""

    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.25


class wait_exponential_with_jitter(wait_base):
    """Multiplicative-jitter exponential wait for tenacity."""

    def __init__(self, backoff: Backoff, rng: random.Random):
        self.backoff = backoff
        self.rng = rng

    def __call__(self, retry_state) -> float:
        attempt = retry_state.attempt_number
        delay = self.backoff.base_delay * 2 ** (attempt - 1)
        delay *= 1 + self.rng.uniform(0, self.backoff.jitter)
        return min(delay, self.backoff.max_delay)


def is_retryable(exc: BaseException) -> bool:
    """
    Classify a failure.

    Retryable: timeouts, transient network failures, rate limits, 5xx.
    Terminal: invalid input, authentication, malformed responses, other 4xx.
    """
    if isinstance(exc, AIError):
        return exc.retryable
    if isinstance(exc, (asyncio.TimeoutError, aiohttp.ClientConnectionError)):
        return True
    return False


class RetryPolicy:
    """
    Runs an async operation with bounded retries.

    This is the single place that decides between retrying and surfacing
    an error; callers only ever see the final outcome.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        backoff: Optional[Backoff] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
        event_bus: Optional[EventBus] = None,
    ):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        self.max_attempts = max_attempts
        self.backoff = backoff or Backoff()
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._event_bus = event_bus

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        max_attempts: Optional[int] = None,
        backoff: Optional[Backoff] = None,
    ) -> T:
        """
        Invoke ``operation`` until it succeeds, fails terminally, or the
        attempt budget is spent.

        Raises:
            AIError: The terminal failure as raised, or a ModelError /
                RateLimitExceededError recording the attempt count once
                retryable failures exhaust the budget.
        """
        attempts = max_attempts or self.max_attempts
        backoff = backoff or self.backoff
        pending: Dict[str, Any] = {}

        def before_sleep(retry_state) -> None:
            error = retry_state.outcome.exception()
            pending["attempt"] = retry_state.attempt_number
            pending["error"] = error
            logger.warning(
                "Model call failed (attempt %d/%d): %s. Retrying in %.2fs...",
                retry_state.attempt_number,
                attempts,
                error,
                retry_state.next_action.sleep,
            )

        async def sleep(delay: float) -> None:
            if self._event_bus is not None:
                await self._event_bus.emit(
                    EngineEvents.RETRY_ATTEMPT.value,
                    {
                        "attempt": pending.get("attempt", 0) + 1,
                        "max_attempts": attempts,
                        "delay": delay,
                        "error": str(pending.get("error")),
                    },
                )
            # Cancellation during the wait propagates to the caller.
            await self._sleep(delay)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential_with_jitter(backoff, self._rng),
            retry=retry_if_exception(is_retryable),
            sleep=sleep,
            before_sleep=before_sleep,
            reraise=False,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    result = await operation()
        except RetryError as e:
            last_error = e.last_attempt.exception()
            logger.error("Model call failed after %d attempts: %s", attempts, last_error)
            raise self._exhausted(last_error, attempts) from last_error
        except AIError:
            raise
        except Exception as e:
            raise ModelError(
                f"Unexpected error during model call: {e}", attempts=1, original_error=e
            ) from e
        return result

    @staticmethod
    def _exhausted(error: BaseException, attempts: int) -> AIError:
        message = getattr(error, "message", str(error))
        if isinstance(error, RateLimitExceededError):
            return RateLimitExceededError(
                f"Rate limit still exceeded after {attempts} attempts: {message}",
                retry_after=error.retry_after,
                attempts=attempts,
                original_error=error,
            )
        return ModelError(
            f"Model request failed after {attempts} attempts: {message}",
            status_code=getattr(error, "status_code", None),
            attempts=attempts,
            original_error=error,
        )
