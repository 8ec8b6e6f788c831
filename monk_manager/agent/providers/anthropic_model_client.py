#!/usr/bin/env python3
"""
Anthropic Model Client Provider
===============================

Anthropic Messages API backend.
"""

from typing import Any, Dict, Optional

from monk_manager.agent.prompt_builder import RenderedPrompt
from monk_manager.agent.providers.http_base import HTTPModelClient
from monk_manager.exceptions import ModelError, RateLimitExceededError

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicModelClient(HTTPModelClient):
    default_base_url = "https://api.anthropic.com"
    endpoint = "/v1/messages"

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self._api_key.get_secret(),
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }

    def _prepare_payload(self, prompt: RenderedPrompt, stream: bool) -> Dict[str, Any]:
        payload = {
            "model": self.model_name,
            "system": prompt.system,
            "messages": prompt.to_messages(),
            "max_tokens": self.model_info.max_tokens,
            "temperature": self.model_info.temperature,
        }
        if stream:
            payload["stream"] = True
        return payload

    def _extract_content(self, response_data: Dict[str, Any]) -> str:
        blocks = response_data["content"]
        return "".join(block.get("text", "") for block in blocks if block.get("type", "text") == "text")

    def _is_stream_end(self, data: str, event: Optional[Dict[str, Any]]) -> bool:
        if event is None:
            return data == "[DONE]"
        return event.get("type") == "message_stop"

    def _extract_chunk(self, event: Dict[str, Any]) -> Optional[str]:
        event_type = event.get("type")
        if event_type == "content_block_delta":
            return event.get("delta", {}).get("text", "")
        if event_type == "error":
            error = event.get("error", {})
            message = error.get("message", "unknown stream error")
            if error.get("type") == "rate_limit_error":
                raise RateLimitExceededError(f"anthropic rate limit exceeded: {message}")
            # overloaded_error and api_error are transient on Anthropic's side
            status = 400 if error.get("type") == "invalid_request_error" else 529
            raise ModelError(f"anthropic stream error: {message}", status_code=status)
        return None
