"""LLM-backed intent classification."""

from __future__ import annotations

import logging
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field

from family_agent.llm.base import LLMProvider
from family_agent.models import Domain

LOGGER = logging.getLogger(__name__)

ROUTER_SYSTEM_PROMPT = (
    "You route messages for a family organizer assistant. Classify the user's "
    "message into exactly one domain:\n"
    "- tasks: to-dos, reminders, chores, assignments\n"
    "- calendar: events, appointments, schedules, availability\n"
    "- meals: recipes, meal plans, cooking, what to eat\n"
    "- lists: shopping lists, groceries, things to buy\n"
    "- unknown: anything else\n\n"
    "If the message asks for actions in more than one domain (for example "
    '"add milk to the list and remind me to call mom"), set isMultiIntent to '
    "true and list every domain involved in multiDomains, primary domain first.\n\n"
    'Respond as JSON: {"domain": "...", "confidence": 0.0-1.0, '
    '"reasons": ["..."], "isMultiIntent": false, "multiDomains": ["..."]}'
)


class IntentClassification(BaseModel):
    """Structured classifier output."""

    model_config = ConfigDict(populate_by_name=True)

    domain: Domain
    confidence: float = Field(ge=0.0, le=1.0)
    reasons: list[str] = Field(default_factory=list)
    is_multi_intent: bool = Field(default=False, alias="isMultiIntent")
    multi_domains: list[Domain] | None = Field(default=None, alias="multiDomains")


class IntentClassifier(Protocol):
    """Anything that can classify a message into a domain."""

    async def classify(self, message: str, timezone: str | None = None) -> IntentClassification:
        ...


class LLMIntentClassifier:
    """Classifies messages by asking an LLM for schema-validated JSON."""

    def __init__(self, llm: LLMProvider) -> None:
        self._llm = llm

    async def classify(self, message: str, timezone: str | None = None) -> IntentClassification:
        system = ROUTER_SYSTEM_PROMPT
        if timezone:
            system += f"\n\nThe user's timezone is {timezone}."
        messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": message},
        ]
        result = await self._llm.complete_json(messages, IntentClassification)
        LOGGER.debug(
            "LLM classification: domain=%s confidence=%.2f multi=%s",
            result.domain.value,
            result.confidence,
            result.is_multi_intent,
        )
        return result
