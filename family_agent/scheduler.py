"""Async loop that prunes expired in-memory state."""

from __future__ import annotations

import asyncio
import logging

from family_agent.confirmation import PendingActionStore
from family_agent.conversation_context import ConversationContextStore

LOGGER = logging.getLogger(__name__)


class CleanupScheduler:
    """Periodically drops expired pending actions and conversation contexts.

    Expiry is enforced at read time; this only bounds memory held by
    abandoned entries.
    """

    def __init__(
        self,
        pending_actions: PendingActionStore,
        contexts: ConversationContextStore,
        interval_seconds: float = 60.0,
    ) -> None:
        self._pending_actions = pending_actions
        self._contexts = contexts
        self._interval_seconds = interval_seconds
        self._stop_event = asyncio.Event()

    def run_once(self) -> tuple[int, int]:
        """Prune both stores and return (pending actions, contexts) removed."""

        return self._pending_actions.cleanup(), self._contexts.cleanup()

    async def run_forever(self) -> None:
        """Run cleanup loop until stop() is called."""

        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception:  # noqa: BLE001
                LOGGER.exception("Cleanup pass failed")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval_seconds)
            except asyncio.TimeoutError:
                pass

    def stop(self) -> None:
        """Signal the loop to stop."""

        self._stop_event.set()
