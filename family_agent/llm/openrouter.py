"""OpenRouter implementation of LLMProvider."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from family_agent.config import Settings
from family_agent.llm.base import LLMProvider
from family_agent.models import LLMResponse

_LOGGER = logging.getLogger(__name__)

# Seconds to wait after each successive 429.
RATE_LIMIT_BACKOFF = (5, 15, 45)


class OpenRouterProvider(LLMProvider):
    """Chat-completions client for classification calls.

    Rate-limited requests are retried with a fixed backoff; every other HTTP
    error is raised to the caller, which turns it into a routing fallback.
    """

    def __init__(self, settings: Settings, temperature: float = 0.2) -> None:
        if not settings.openrouter_api_key:
            raise ValueError("OPENROUTER_API_KEY is required for the OpenRouter provider")
        self._model = settings.openrouter_model
        self._base_url = settings.openrouter_base_url
        self._timeout = httpx.Timeout(settings.request_timeout_seconds)
        self._headers = {
            "Authorization": f"Bearer {settings.openrouter_api_key}",
            "Content-Type": "application/json",
        }
        self._temperature = temperature

    async def generate(
        self,
        messages: list[dict[str, str]],
        tools: list[dict[str, Any]] | None = None,
        response_format: dict[str, Any] | None = None,
    ) -> LLMResponse:
        body: dict[str, Any] = {
            "model": self._model,
            "messages": messages,
            "temperature": self._temperature,
        }
        if tools:
            body["tools"] = tools
        if response_format:
            body["response_format"] = response_format

        async with httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout) as client:
            data = await self._post_with_backoff(client, body)
        return _to_response(data)

    async def _post_with_backoff(self, client: httpx.AsyncClient, body: dict[str, Any]) -> dict[str, Any]:
        waits = list(RATE_LIMIT_BACKOFF)
        while True:
            response = await client.post("/chat/completions", headers=self._headers, json=body)
            if response.status_code != 429 or not waits:
                response.raise_for_status()
                return response.json()
            wait = waits.pop(0)
            _LOGGER.warning(
                "OpenRouter rate limited, retrying in %ds (%d retries left)", wait, len(waits)
            )
            await asyncio.sleep(wait)


def _to_response(data: dict[str, Any]) -> LLMResponse:
    first = data["choices"][0]
    content = first["message"].get("content") or ""
    _LOGGER.debug("LLM response: finish_reason=%r content=%r", first.get("finish_reason"), content[:200])
    return LLMResponse(content=content, raw=data)
