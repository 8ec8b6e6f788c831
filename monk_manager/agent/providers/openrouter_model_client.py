#!/usr/bin/env python3
"""
OpenRouter Model Client Provider
================================

OpenAI-compatible chat-completions backend (OpenRouter by default; any
compatible endpoint via ``api_base_url``).
"""

from typing import Any, Dict, Optional

from monk_manager.agent.prompt_builder import RenderedPrompt
from monk_manager.agent.providers.http_base import HTTPModelClient
from monk_manager.exceptions import ModelError


class OpenRouterModelClient(HTTPModelClient):
    default_base_url = "https://openrouter.ai/api/v1"
    endpoint = "/chat/completions"

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key.get_secret()}",
            "Content-Type": "application/json",
            "X-Title": "Monk Manager",
        }

    def _prepare_payload(self, prompt: RenderedPrompt, stream: bool) -> Dict[str, Any]:
        messages = [{"role": "system", "content": prompt.system}]
        messages.extend(prompt.to_messages())
        return {
            "model": self.model_name,
            "messages": messages,
            "stream": stream,
            "max_tokens": self.model_info.max_tokens,
            "temperature": self.model_info.temperature,
        }

    def _extract_content(self, response_data: Dict[str, Any]) -> str:
        return response_data["choices"][0]["message"]["content"]

    def _extract_chunk(self, event: Dict[str, Any]) -> Optional[str]:
        if "error" in event:
            error = event["error"]
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ModelError(
                f"openrouter stream error: {message}",
                status_code=code if isinstance(code, int) else None,
            )
        choices = event.get("choices") or []
        if not choices:
            return None
        return choices[0].get("delta", {}).get("content") or ""
