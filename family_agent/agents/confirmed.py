"""Creating and redeeming confirmation-gated writes."""

from __future__ import annotations

from typing import Any

from family_agent.confirmation import PendingActionStore, is_destructive_tool
from family_agent.executors import ConfirmedExecutor, ToolInvoker
from family_agent.models import (
    AgentAction,
    AgentRunContext,
    Domain,
    ExecutorResult,
    PendingActionInfo,
    ToolCall,
)

INVALID_CONFIRMATION_TEXT = (
    "This confirmation is invalid or has expired. Please try your request again."
)


def request_confirmation(
    store: PendingActionStore,
    context: AgentRunContext,
    tool_call: ToolCall,
    description: str,
    text: str | None = None,
    is_destructive: bool | None = None,
    input_preview: dict[str, Any] | None = None,
    payload: dict[str, Any] | None = None,
    ttl_ms: int | None = None,
) -> ExecutorResult:
    """Park ``tool_call`` behind a confirmation token and describe it to the user.

    ``is_destructive`` defaults to what the tool name implies (``.delete``,
    ``.remove``).

    Raises:
        PendingActionCapacityError: if the user already has too many pending actions.
    """
    if is_destructive is None:
        is_destructive = is_destructive_tool(tool_call.tool_name)
    action = store.create(
        user_id=context.user_id,
        family_id=context.family_id,
        request_id=context.request_id,
        conversation_id=context.conversation_id,
        tool_call=tool_call,
        description=description,
        ttl_ms=ttl_ms,
        is_destructive=is_destructive,
    )
    context.logger.info(
        "Confirmation requested: tool=%s destructive=%s", tool_call.tool_name, is_destructive
    )
    return ExecutorResult(
        text=text or f"{description}. Do you want me to go ahead?",
        payload=payload,
        requires_confirmation=True,
        pending_action=PendingActionInfo.from_action(action, input_preview),
    )


def make_confirmed_executor(store: PendingActionStore, domain: Domain) -> ConfirmedExecutor:
    """Executor that redeems a token once and runs the parked tool call."""

    async def execute_confirmed(
        token: str, context: AgentRunContext, invoke_tool: ToolInvoker
    ) -> ExecutorResult:
        lookup = store.consume(token, context.user_id, context.family_id)
        if not lookup.found or lookup.action is None:
            # The reason stays in the logs; callers get one message for every failure.
            context.logger.warning(
                "Confirmation validation failed: domain=%s reason=%s", domain.value, lookup.reason
            )
            return ExecutorResult(
                text=INVALID_CONFIRMATION_TEXT,
                payload={"error": "invalid_confirmation"},
            )

        tool_call = lookup.action.tool_call
        context.logger.info(
            "Executing confirmed action: tool=%s original_request_id=%s",
            tool_call.tool_name,
            lookup.action.request_id,
        )
        result = await invoke_tool(tool_call.tool_name, tool_call.input)
        action = AgentAction(tool=tool_call.tool_name, input=tool_call.input, result=result)

        if not result.success:
            return ExecutorResult(
                text=f"Sorry, the action failed. {result.error or 'Please try again.'}",
                actions=[action],
                payload={"error": result.error},
            )
        payload: dict[str, Any] = {"confirmed": True}
        if isinstance(result.data, dict):
            payload.update(result.data)
        return ExecutorResult(
            text=f"Done! {lookup.action.description}.",
            actions=[action],
            payload=payload,
        )

    return execute_confirmed
