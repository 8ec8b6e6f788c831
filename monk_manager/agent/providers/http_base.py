#!/usr/bin/env python3
"""
HTTP Model Client Base
======================

Shared aiohttp plumbing for remote providers: session management,
HTTP status mapping onto the error taxonomy, and server-sent-event
line parsing. Provider subclasses only describe their payloads.
"""

import asyncio
import json
from abc import abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

import aiohttp

from monk_manager.agent.base_model_client import BaseModelClient, ModelInfo
from monk_manager.agent.prompt_builder import RenderedPrompt
from monk_manager.exceptions import (
    AIError,
    AuthenticationError,
    InvalidResponseError,
    ModelError,
    ModelTimeoutError,
    RateLimitExceededError,
)
from monk_manager.utils.sensitive_str import SensitiveStr


class HTTPModelClient(BaseModelClient):
    """Base class for providers reached over HTTPS with JSON payloads."""

    default_base_url = ""
    endpoint = ""

    def __init__(
        self,
        model_info: ModelInfo,
        api_key: SensitiveStr,
        base_url: Optional[str] = None,
        timeout: float = 60.0,
    ):
        super().__init__(model_info)
        self._api_key = api_key
        self.base_url = (base_url or self.default_base_url).rstrip("/")
        self.url = f"{self.base_url}{self.endpoint}"
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(model={self.model_name!r}, url={self.url!r})"

    # --- Provider hooks ---

    @abstractmethod
    def _headers(self) -> Dict[str, str]:
        """Request headers including credentials."""

    @abstractmethod
    def _prepare_payload(self, prompt: RenderedPrompt, stream: bool) -> Dict[str, Any]:
        """Convert the rendered prompt to the provider request body."""

    @abstractmethod
    def _extract_content(self, response_data: Dict[str, Any]) -> str:
        """Extract text from a complete (non-streaming) response body."""

    @abstractmethod
    def _extract_chunk(self, event: Dict[str, Any]) -> Optional[str]:
        """Extract a text delta from one stream event; raise on error events."""

    def _is_stream_end(self, data: str, event: Optional[Dict[str, Any]]) -> bool:
        return data == "[DONE]"

    # --- Shared implementation ---

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            self._session = aiohttp.ClientSession(timeout=timeout, headers=self._headers())
        return self._session

    @asynccontextmanager
    async def _post(self, payload: Dict[str, Any]) -> AsyncIterator[aiohttp.ClientResponse]:
        session = await self._get_session()
        provider = self.model_info.provider
        try:
            async with session.post(self.url, json=payload) as response:
                await self._check_error_status(response)
                yield response
        except AIError:
            raise
        except asyncio.TimeoutError as exc:
            raise ModelTimeoutError(
                "Model request timed out",
                timeout_seconds=self.timeout,
                details={"provider": provider, "model": self.model_name},
            ) from exc
        except (json.JSONDecodeError, aiohttp.ContentTypeError) as e:
            raise InvalidResponseError(
                f"Failed to parse {provider} response: {e}", original_error=e
            ) from e
        except aiohttp.ClientError as e:
            raise ModelError(
                f"Server communication error: {e}",
                original_error=e,
                details={"provider": provider, "model": self.model_name},
            ) from e

    async def _check_error_status(self, response: aiohttp.ClientResponse) -> None:
        if response.status < 400:
            return

        error_text = await response.text()
        provider = self.model_info.provider
        if response.status in (401, 403):
            raise AuthenticationError(
                f"{provider} authentication failed: {error_text}",
                status_code=response.status,
            )
        if response.status == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitExceededError(
                f"{provider} rate limit exceeded: {error_text}",
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        kind = "server" if response.status >= 500 else "client"
        raise ModelError(
            f"{provider} {kind} error: {response.status} - {error_text}",
            status_code=response.status,
            details={"provider": provider, "model": self.model_name},
        )

    async def generate(self, prompt: RenderedPrompt) -> str:
        payload = self._prepare_payload(prompt, stream=False)
        async with self._post(payload) as response:
            raw = await response.text()
        try:
            data = json.loads(raw)
            content = self._extract_content(data)
        except (json.JSONDecodeError, KeyError, IndexError, TypeError) as e:
            raise InvalidResponseError(
                f"Failed to parse {self.model_info.provider} response: {e}",
                raw_response=raw[:500],
                original_error=e,
            ) from e
        if not content:
            raise InvalidResponseError(
                f"Empty content in {self.model_info.provider} response", raw_response=raw[:500]
            )
        return content

    async def _iter_text(self, prompt: RenderedPrompt) -> AsyncIterator[str]:
        payload = self._prepare_payload(prompt, stream=True)
        async with self._post(payload) as response:
            # Server-Sent Events format: "data: {json}"
            async for line in response.content:
                line_str = line.decode("utf-8").strip()
                if not line_str.startswith("data:"):
                    continue
                data = line_str[5:].strip()
                event = None if data == "[DONE]" else self._decode_event(data)
                if self._is_stream_end(data, event):
                    return
                text = self._extract_chunk(event)
                if text:
                    yield text
        raise ModelError(
            f"{self.model_info.provider} stream ended before completion",
            details={"provider": self.model_info.provider, "model": self.model_name},
        )

    def _decode_event(self, data: str) -> Dict[str, Any]:
        try:
            return json.loads(data)
        except json.JSONDecodeError as e:
            raise InvalidResponseError(
                f"Invalid JSON chunk in stream: {e}", raw_response=data[:500], original_error=e
            ) from e

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
