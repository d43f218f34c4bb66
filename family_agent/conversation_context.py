"""Short-term multi-turn memory keyed by conversation, user and family."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from family_agent.models import ConversationContext

LOGGER = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 30 * 60

_MERGEABLE_FIELDS = frozenset(
    {"last_domain", "awaiting_input", "pending_event", "pending_task", "last_results"}
)
_PENDING_KINDS = ("event", "task", "all")

Key = tuple[str, str, str]


class ConversationContextStore:
    """In-memory context store with an inactivity TTL.

    Losing an entry only degrades follow-up handling; nothing here guards data.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._contexts: dict[Key, ConversationContext] = {}
        self._ttl = timedelta(seconds=ttl_seconds)
        self._now = now or (lambda: datetime.now(timezone.utc))

    @property
    def size(self) -> int:
        return len(self._contexts)

    def get(self, conversation_id: str, user_id: str, family_id: str) -> ConversationContext | None:
        key = (conversation_id, user_id, family_id)
        context = self._contexts.get(key)
        if context is None:
            return None
        if self._now() > context.expires_at:
            del self._contexts[key]
            return None
        return context

    def set(self, conversation_id: str, user_id: str, family_id: str, **fields: Any) -> ConversationContext:
        """Merge the given fields into the stored context, creating it if needed.

        Fields passed as None keep their previous value; use ``clear_pending``
        or ``clear`` to drop state.
        """
        unknown = set(fields) - _MERGEABLE_FIELDS
        if unknown:
            raise TypeError(f"Unknown conversation context fields: {sorted(unknown)}")

        key = (conversation_id, user_id, family_id)
        now = self._now()
        existing = self.get(conversation_id, user_id, family_id)
        updates = {name: value for name, value in fields.items() if value is not None}

        if existing is None:
            context = ConversationContext(
                conversation_id=conversation_id,
                user_id=user_id,
                family_id=family_id,
                created_at=now,
                expires_at=now + self._ttl,
                **updates,
            )
        else:
            context = replace(existing, expires_at=now + self._ttl, **updates)

        self._contexts[key] = context
        self.cleanup()
        return context

    def clear(self, conversation_id: str, user_id: str, family_id: str) -> bool:
        return self._contexts.pop((conversation_id, user_id, family_id), None) is not None

    def clear_pending(self, conversation_id: str, user_id: str, family_id: str, kind: str) -> None:
        """Drop partially collected input: ``event``, ``task`` or ``all``."""

        if kind not in _PENDING_KINDS:
            raise ValueError(f"kind must be one of {_PENDING_KINDS}, got {kind!r}")
        key = (conversation_id, user_id, family_id)
        context = self._contexts.get(key)
        if context is None:
            return
        if kind in ("event", "all"):
            context.pending_event = None
        if kind in ("task", "all"):
            context.pending_task = None
        if kind == "all":
            context.awaiting_input = None

    def cleanup(self) -> int:
        now = self._now()
        expired = [key for key, context in self._contexts.items() if now > context.expires_at]
        for key in expired:
            del self._contexts[key]
        if expired:
            LOGGER.debug("Conversation context cleanup removed %d entr(ies)", len(expired))
        return len(expired)
