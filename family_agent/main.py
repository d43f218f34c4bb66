"""Application entrypoint: an interactive console session against the agent core."""

from __future__ import annotations

import asyncio
import logging
import uuid

from family_agent.config import Settings, load_settings, uses_llm_router
from family_agent.confirmation import PendingActionStore
from family_agent.conversation_context import ConversationContextStore
from family_agent.db import Database
from family_agent.executors import ExecutorRegistry
from family_agent.llm.classifier import LLMIntentClassifier
from family_agent.llm.openrouter import OpenRouterProvider
from family_agent.orchestrator import Orchestrator
from family_agent.runtime import AgentRuntime, Caller
from family_agent.scheduler import CleanupScheduler
from family_agent.tools.registry import ToolRegistry
from family_agent.tools.system_tools import register_system_tools

LOGGER = logging.getLogger(__name__)

APPROVAL_WORDS = frozenset({"ok", "okay", "yes", "y", "sure", "yep", "confirm"})
EXIT_WORDS = frozenset({"exit", "quit"})


def build_orchestrator(settings: Settings) -> tuple[Orchestrator, PendingActionStore, ConversationContextStore]:
    """Wire stores, tools and executors from settings."""

    db = Database(settings.database_path)
    db.initialize()

    tools = ToolRegistry(db)
    register_system_tools(tools)

    pending_actions = PendingActionStore(
        max_per_user=settings.max_pending_actions_per_user,
        max_total=settings.max_pending_actions_total,
        default_ttl_ms=int(settings.pending_action_ttl_seconds * 1000),
    )
    contexts = ConversationContextStore(ttl_seconds=settings.conversation_context_ttl_seconds)
    executors = ExecutorRegistry.with_defaults(pending_actions)

    classifier = None
    if uses_llm_router(settings):
        classifier = LLMIntentClassifier(OpenRouterProvider(settings))
        LOGGER.info("Routing with LLM classifier model=%s", settings.openrouter_model)
    else:
        LOGGER.info("Routing with keyword heuristics")

    orchestrator = Orchestrator(
        executors=executors,
        pending_actions=pending_actions,
        contexts=contexts,
        tools=tools,
        classifier=classifier,
    )
    return orchestrator, pending_actions, contexts


async def run() -> None:
    """Initialize app layers and run a console conversation."""

    settings = load_settings()
    logging.basicConfig(level=settings.log_level.upper())

    orchestrator, pending_actions, contexts = build_orchestrator(settings)
    runtime = AgentRuntime(orchestrator)
    scheduler = CleanupScheduler(pending_actions, contexts, interval_seconds=settings.cleanup_interval_seconds)
    scheduler_task = asyncio.create_task(scheduler.run_forever(), name="state-cleanup")

    caller = Caller(user_id="local-user", family_id="local-family", family_member_id="local-member")
    conversation_id = str(uuid.uuid4())
    pending_token: str | None = None

    try:
        while True:
            line = (await asyncio.to_thread(input, "you> ")).strip()
            if not line:
                continue
            if line.lower() in EXIT_WORDS:
                break

            if pending_token and line.lower() in APPROVAL_WORDS:
                body = {"conversationId": conversation_id, "confirmationToken": pending_token, "confirmed": True}
            else:
                body = {"conversationId": conversation_id, "message": line}
            pending_token = None

            response = await runtime.handle(body, caller)
            print(f"agent [{response.domain.value}]> {response.text}")
            if response.requires_confirmation and response.pending_action is not None:
                pending_token = response.pending_action.token
                print(f"  (reply 'yes' before {response.pending_action.expires_at} to confirm)")
    except (EOFError, KeyboardInterrupt):
        pass
    finally:
        scheduler.stop()
        scheduler_task.cancel()
        LOGGER.info("Assistant shutdown complete")


def main() -> None:
    """Synchronous wrapper for asyncio entrypoint."""

    asyncio.run(run())


if __name__ == "__main__":
    main()
