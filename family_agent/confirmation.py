"""Pending actions awaiting explicit user confirmation.

Tokens are single-use capabilities: ``consume`` removes the entry under a lock,
so two concurrent confirmations with the same token produce exactly one
success. The store is process-local; a multi-instance deployment needs a
shared backing store with atomic compare-and-delete behind the same methods.
"""

from __future__ import annotations

import logging
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from family_agent.models import PendingAction, ToolCall

LOGGER = logging.getLogger(__name__)

DEFAULT_TTL_MS = 5 * 60 * 1000
MAX_ACTIONS_PER_USER = 10
MAX_TOTAL_ACTIONS = 10_000

# Below this routing/parsing confidence a write always asks first.
CONFIDENCE_THRESHOLD = 0.85

_WRITE_MARKERS = (".create", ".update", ".delete", ".assign", ".complete")
_DESTRUCTIVE_MARKERS = (".delete", ".remove")


class PendingActionCapacityError(Exception):
    """Raised when a user or the whole process holds too many pending actions."""


@dataclass(slots=True)
class PendingActionLookup:
    """Result of ``get``/``consume``.

    ``reason`` is one of ``not_found``, ``user_mismatch`` or ``family_mismatch``
    when ``found`` is False.
    """

    found: bool
    action: PendingAction | None = None
    reason: str | None = None


class PendingActionStore:
    """In-memory registry of write operations gated behind confirmation.

    Every read and write, including the capacity checks in ``create``, runs
    under one lock.
    """

    def __init__(
        self,
        max_per_user: int = MAX_ACTIONS_PER_USER,
        max_total: int = MAX_TOTAL_ACTIONS,
        default_ttl_ms: int = DEFAULT_TTL_MS,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._actions: dict[str, PendingAction] = {}
        self._tokens_by_user: dict[str, set[str]] = {}
        self._lock = threading.Lock()
        self._max_per_user = max_per_user
        self._max_total = max_total
        self._default_ttl_ms = default_ttl_ms
        self._now = now or _utc_now

    @property
    def size(self) -> int:
        return len(self._actions)

    def create(
        self,
        user_id: str,
        family_id: str,
        request_id: str,
        conversation_id: str,
        tool_call: ToolCall,
        description: str,
        ttl_ms: int | None = None,
        is_destructive: bool = False,
    ) -> PendingAction:
        """Store a new pending action under a fresh token.

        ``ttl_ms`` defaults to the store's configured TTL.

        Raises:
            PendingActionCapacityError: if the user or the store is full.
        """
        with self._lock:
            now = self._now()
            if len(self._tokens_by_user.get(user_id, ())) >= self._max_per_user:
                if len(self._live_for_user(user_id, now)) >= self._max_per_user:
                    raise PendingActionCapacityError(
                        f"User has too many pending actions (max {self._max_per_user}). "
                        "Please confirm or cancel existing actions first."
                    )
            if len(self._actions) >= self._max_total:
                self._prune_expired(now)
                if len(self._actions) >= self._max_total:
                    raise PendingActionCapacityError("System is at capacity. Please try again later.")

            token = _new_token()
            while token in self._actions:
                token = _new_token()
            action = PendingAction(
                token=token,
                user_id=user_id,
                family_id=family_id,
                request_id=request_id,
                conversation_id=conversation_id,
                tool_call=tool_call,
                description=description,
                created_at=now,
                ttl_ms=self._default_ttl_ms if ttl_ms is None else ttl_ms,
                is_destructive=is_destructive,
            )
            self._actions[token] = action
            self._tokens_by_user.setdefault(user_id, set()).add(token)

        LOGGER.debug(
            "Pending action created: tool=%s request_id=%s destructive=%s",
            tool_call.tool_name,
            request_id,
            is_destructive,
        )
        return action

    def get(self, token: str, user_id: str, family_id: str) -> PendingActionLookup:
        """Validate a token without removing it."""

        with self._lock:
            return self._lookup(token, user_id, family_id)

    def consume(self, token: str, user_id: str, family_id: str) -> PendingActionLookup:
        """Validate a token and remove it in the same critical section."""

        with self._lock:
            result = self._lookup(token, user_id, family_id)
            if result.found:
                self._remove(token)
            return result

    def delete(self, token: str) -> bool:
        with self._lock:
            return self._remove(token) is not None

    def get_by_user(self, user_id: str) -> list[PendingAction]:
        """Return live actions for a user across all families."""

        with self._lock:
            return self._live_for_user(user_id, self._now())

    def cleanup(self) -> int:
        """Drop expired actions and return how many were removed."""

        with self._lock:
            removed = self._prune_expired(self._now())
        if removed:
            LOGGER.info("Pending action cleanup removed %d expired action(s)", removed)
        return removed

    def clear(self) -> None:
        with self._lock:
            self._actions.clear()
            self._tokens_by_user.clear()

    # The helpers below expect the caller to hold ``self._lock``.

    def _live_for_user(self, user_id: str, now: datetime) -> list[PendingAction]:
        actions = (self._actions[token] for token in self._tokens_by_user.get(user_id, ()))
        return [action for action in actions if not action.is_expired(now)]

    def _prune_expired(self, now: datetime) -> int:
        expired = [token for token, action in self._actions.items() if action.is_expired(now)]
        for token in expired:
            self._remove(token)
        return len(expired)

    def _remove(self, token: str) -> PendingAction | None:
        action = self._actions.pop(token, None)
        if action is not None:
            tokens = self._tokens_by_user.get(action.user_id)
            if tokens is not None:
                tokens.discard(token)
                if not tokens:
                    del self._tokens_by_user[action.user_id]
        return action

    def _lookup(self, token: str, user_id: str, family_id: str) -> PendingActionLookup:
        action = self._actions.get(token)
        if action is None:
            return PendingActionLookup(found=False, reason="not_found")
        if action.user_id != user_id:
            return PendingActionLookup(found=False, reason="user_mismatch")
        if action.family_id != family_id:
            return PendingActionLookup(found=False, reason="family_mismatch")
        if action.is_expired(self._now()):
            self._remove(token)
            LOGGER.debug("Pending action expired: tool=%s", action.tool_call.tool_name)
            return PendingActionLookup(found=False, reason="not_found")
        return PendingActionLookup(found=True, action=action)


def is_write_tool(tool_name: str) -> bool:
    """Return True for tools that change state."""

    return any(marker in tool_name for marker in _WRITE_MARKERS)


def is_destructive_tool(tool_name: str) -> bool:
    """Return True for tools whose effect is hard to undo."""

    return any(marker in tool_name for marker in _DESTRUCTIVE_MARKERS)


def requires_confirmation(tool_name: str, confidence: float, is_destructive: bool) -> bool:
    """Decide whether a tool call must wait for the user's confirmation."""

    if not is_write_tool(tool_name):
        return False
    if is_destructive:
        return True
    return confidence < CONFIDENCE_THRESHOLD


def _new_token() -> str:
    return f"pa_{secrets.token_hex(16)}"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)
