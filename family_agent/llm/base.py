"""LLM provider interface."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any, TypeVar

from pydantic import BaseModel

from family_agent.models import LLMResponse

SchemaT = TypeVar("SchemaT", bound=BaseModel)

_JSON_INSTRUCTION = (
    "\n\nYou MUST respond with valid JSON only. No markdown, no explanations, just the JSON object."
)


class LLMOutputError(ValueError):
    """Raised when a model response is not valid JSON for the requested schema."""


class LLMProvider(ABC):
    """Abstract model provider used for classification."""

    @abstractmethod
    async def generate(
        self,
        messages: list[dict[str, str]],
        tools: list[dict[str, Any]] | None = None,
        response_format: dict[str, Any] | None = None,
    ) -> LLMResponse:
        """Generate a model response."""

    async def complete_json(self, messages: list[dict[str, str]], schema: type[SchemaT]) -> SchemaT:
        """Generate a JSON object and validate it against ``schema``.

        Raises:
            LLMOutputError: if the content is not JSON or fails validation.
        """
        response = await self.generate(
            _with_json_instruction(messages), response_format={"type": "json_object"}
        )
        try:
            data = json.loads(response.content)
        except json.JSONDecodeError as exc:
            raise LLMOutputError(f"Model returned invalid JSON: {response.content[:200]!r}") from exc
        try:
            return schema.model_validate(data)
        except ValueError as exc:
            raise LLMOutputError(f"Model response failed schema validation: {exc}") from exc


def _with_json_instruction(messages: list[dict[str, str]]) -> list[dict[str, str]]:
    if any(m.get("role") == "system" for m in messages):
        return [
            {**m, "content": m["content"] + _JSON_INSTRUCTION} if m.get("role") == "system" else m
            for m in messages
        ]
    return [{"role": "system", "content": _JSON_INSTRUCTION.strip()}, *messages]
