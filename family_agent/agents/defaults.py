"""Fallback executors used until a real domain executor is registered."""

from __future__ import annotations

from family_agent.executors import AgentExecutor
from family_agent.models import AgentRunContext, Domain, ExecutorResult

UNKNOWN_DOMAIN_TEXT = (
    "I'm not sure how to help with that. I can assist with tasks, calendar events, "
    "meals, and lists. Could you rephrase your request?"
)


async def unknown_executor(message: str, context: AgentRunContext) -> ExecutorResult:
    context.logger.info("Unknown domain executor called: %r", message[:100])
    return ExecutorResult(
        text=UNKNOWN_DOMAIN_TEXT,
        payload={"hint": "Try asking about tasks, events, meals, or shopping lists."},
    )


def make_placeholder_executor(domain: Domain) -> AgentExecutor:
    """Executor that acknowledges a domain whose specialist is not wired yet."""

    async def placeholder(message: str, context: AgentRunContext) -> ExecutorResult:
        context.logger.info("Placeholder executor called: domain=%s", domain.value)
        return ExecutorResult(
            text=(
                f"I understand you want help with {domain.value}. This feature is coming soon! "
                "For now, I've logged your request."
            ),
            payload={"domain": domain.value, "status": "placeholder"},
        )

    return placeholder
