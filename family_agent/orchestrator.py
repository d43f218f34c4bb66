"""Agent orchestrator: routes a message to domain executors and keeps turn state.

Flow for a chat turn:
1. Load conversation context for (conversation, user, family).
2. Use the request's domain hint, or the last domain when a clarifying
   question is pending.
3. Without a hint, check for multi-intent and fan out sequentially.
4. Otherwise route to one domain and run its executor.
5. Remember follow-up state, or clear it after a successful write.

Confirmations take a separate path: the token's tool name picks the domain
whose confirmed-action executor consumes the token and runs the write.
Neither path raises for runtime faults.
"""

from __future__ import annotations

import inspect
import logging
import time
from datetime import datetime, timezone
from typing import Any

from family_agent.confirmation import PendingActionStore
from family_agent.conversation_context import ConversationContextStore
from family_agent.executors import AgentExecutor, ExecutorRegistry, ToolInvoker
from family_agent.llm.classifier import IntentClassifier
from family_agent.models import (
    AgentRequest,
    AgentResponse,
    AgentRunContext,
    ConversationContext,
    Domain,
    EventSummary,
    ExecutorResult,
    IntentRoute,
    LastResultsContext,
    ToolResult,
)
from family_agent.router import detect_multi_intent, route_intent
from family_agent.tools.base import ToolContext
from family_agent.tools.registry import ToolRegistry

LOGGER = logging.getLogger(__name__)

EXECUTOR_ERROR_TEXT = "Sorry, I encountered an error processing your request. Please try again."
MULTI_INTENT_ERROR_TEXT = "Sorry, I had trouble processing your request. Please try again."
MULTI_INTENT_SEPARATOR = "\n\n---\n\n"

_FOLLOW_UP_KEYS = ("awaitingInput", "pendingEvent", "pendingTask")


def confirmation_domain(tool_name: str) -> Domain:
    """Domain whose confirmed-action executor finishes ``tool_name``."""

    if tool_name.startswith("calendar."):
        return Domain.CALENDAR
    if tool_name.startswith(("meals.", "shopping.")):
        return Domain.MEALS
    return Domain.TASKS


class Orchestrator:
    """Single entry point turning one request into one response."""

    def __init__(
        self,
        executors: ExecutorRegistry,
        pending_actions: PendingActionStore,
        contexts: ConversationContextStore,
        tools: ToolRegistry,
        classifier: IntentClassifier | None = None,
    ) -> None:
        self._executors = executors
        self._pending_actions = pending_actions
        self._contexts = contexts
        self._tools = tools
        self._classifier = classifier

    async def handle(self, request: AgentRequest, context: AgentRunContext) -> AgentResponse:
        if request.is_confirmation:
            return await self.confirm(request.confirmation_token or "", context)
        return await self.orchestrate(request, context)

    async def orchestrate(self, request: AgentRequest, context: AgentRunContext) -> AgentResponse:
        started = time.perf_counter()
        log = context.logger
        log.info(
            "Orchestrator: starting request conversation_id=%s domain_hint=%s message=%r",
            context.conversation_id,
            request.domain_hint.value if request.domain_hint else None,
            request.message[:100],
        )

        previous = self._load_context(context)
        context.previous_context = previous

        hint = request.domain_hint
        if hint is None and previous is not None and previous.awaiting_input and previous.last_domain:
            hint = previous.last_domain
            log.info("Orchestrator: continuing %s conversation awaiting %s", hint.value, previous.awaiting_input)

        route: IntentRoute | None = None
        if hint is None:
            multi = await detect_multi_intent(
                request.message, classifier=self._classifier, timezone=context.timezone, logger=log
            )
            route = multi.route
            if multi.is_multi_intent and len(multi.domains) > 1:
                log.info(
                    "Orchestrator: detected multi-intent domains=%s reasons=%s",
                    [d.value for d in multi.domains],
                    multi.reasons,
                )
                result = await self._run_multi_intent(multi.domains, request.message, context)
                self._remember(multi.domains[0], multi.domains, result, context)
                return self._respond(multi.domains[0], result, context, started)

        if route is None:
            route = await route_intent(
                request.message,
                domain_hint=hint,
                classifier=self._classifier,
                timezone=context.timezone,
                logger=log,
            )
        log.info(
            "Orchestrator: intent routed domain=%s confidence=%.2f reasons=%s",
            route.domain.value,
            route.confidence,
            route.reasons,
        )

        try:
            executor = self._executors.resolve(route.domain)
            result = await _call_executor(executor, request.message, context)
        except Exception as exc:  # noqa: BLE001
            log.exception("Orchestrator: executor failed domain=%s error=%s", route.domain.value, exc)
            result = ExecutorResult(text=EXECUTOR_ERROR_TEXT, payload={"error": True})

        self._remember(route.domain, [route.domain], result, context)
        return self._respond(route.domain, result, context, started)

    async def confirm(self, token: str, context: AgentRunContext) -> AgentResponse:
        """Redeem a confirmation token through the owning domain's executor."""

        started = time.perf_counter()
        log = context.logger

        # Read-only peek; the confirmed executor does the consuming.
        lookup = self._pending_actions.get(token, context.user_id, context.family_id)
        domain = Domain.TASKS
        if lookup.found and lookup.action is not None:
            domain = confirmation_domain(lookup.action.tool_call.tool_name)
        log.info("Orchestrator: processing confirmation domain=%s found=%s", domain.value, lookup.found)

        confirmed = self._executors.resolve_confirmed(domain)
        if confirmed is None:
            log.error("Orchestrator: no confirmed-action executor for domain=%s", domain.value)
            result = ExecutorResult(text=EXECUTOR_ERROR_TEXT, payload={"error": True})
        else:
            try:
                result = await confirmed(token, context, self._tool_invoker(context))
            except Exception as exc:  # noqa: BLE001
                log.exception("Orchestrator: confirmed action failed domain=%s error=%s", domain.value, exc)
                result = ExecutorResult(text=EXECUTOR_ERROR_TEXT, payload={"error": True})

        if any(action.result.success for action in result.actions):
            self._clear_context(context)
        return self._respond(domain, result, context, started)

    async def _run_multi_intent(
        self, domains: list[Domain], message: str, context: AgentRunContext
    ) -> ExecutorResult:
        log = context.logger
        results: list[ExecutorResult] = []

        for domain in domains:
            executor = self._executors.get(domain)
            if executor is None:
                log.warning("Multi-intent: no executor registered for domain=%s", domain.value)
                continue
            try:
                result = await _call_executor(executor, message, context)
            except Exception as exc:  # noqa: BLE001
                log.error("Multi-intent: executor failed domain=%s error=%s", domain.value, exc)
                continue

            if result.requires_confirmation:
                payload = {**(result.payload or {}), "multiIntent": True, "domains": [d.value for d in domains]}
                return ExecutorResult(
                    text=result.text,
                    actions=result.actions,
                    payload=payload,
                    requires_confirmation=True,
                    pending_action=result.pending_action,
                )
            results.append(result)

        if not results:
            return ExecutorResult(text=MULTI_INTENT_ERROR_TEXT, payload={"error": True})

        merged: dict[str, Any] = {"multiIntent": True, "domains": [d.value for d in domains]}
        for result in results:
            if result.payload:
                merged.update(result.payload)
        return ExecutorResult(
            text=MULTI_INTENT_SEPARATOR.join(result.text for result in results),
            actions=[action for result in results for action in result.actions],
            payload=merged,
        )

    def _remember(
        self, domain: Domain, domains: list[Domain], result: ExecutorResult, context: AgentRunContext
    ) -> None:
        payload = result.payload or {}
        last_results = None
        if Domain.CALENDAR in domains:
            last_results = _summarize_events(payload)

        try:
            if last_results is not None or any(payload.get(key) for key in _FOLLOW_UP_KEYS):
                self._contexts.set(
                    context.conversation_id,
                    context.user_id,
                    context.family_id,
                    last_domain=domain,
                    awaiting_input=payload.get("awaitingInput"),
                    pending_event=payload.get("pendingEvent"),
                    pending_task=payload.get("pendingTask"),
                    last_results=last_results,
                )
            elif any(action.result.success for action in result.actions):
                self._contexts.clear(context.conversation_id, context.user_id, context.family_id)
        except Exception as exc:  # noqa: BLE001
            context.logger.warning("Failed to update conversation context: %s", exc)

    def _load_context(self, context: AgentRunContext) -> ConversationContext | None:
        try:
            return self._contexts.get(context.conversation_id, context.user_id, context.family_id)
        except Exception as exc:  # noqa: BLE001
            context.logger.warning("Failed to load conversation context: %s", exc)
            return None

    def _clear_context(self, context: AgentRunContext) -> None:
        try:
            self._contexts.clear(context.conversation_id, context.user_id, context.family_id)
        except Exception as exc:  # noqa: BLE001
            context.logger.warning("Failed to clear conversation context: %s", exc)

    def _tool_invoker(self, context: AgentRunContext) -> ToolInvoker:
        tool_context = ToolContext(
            request_id=context.request_id,
            user_id=context.user_id,
            family_id=context.family_id,
            family_member_id=context.family_member_id,
            logger=context.logger,
            roles=list(context.roles or ["member"]),
            timezone=context.timezone,
        )

        async def invoke(tool_name: str, arguments: dict[str, Any]) -> ToolResult:
            return await self._tools.invoke(tool_name, arguments, tool_context)

        return invoke

    def _respond(
        self, domain: Domain, result: ExecutorResult, context: AgentRunContext, started: float
    ) -> AgentResponse:
        context.logger.info(
            "Orchestrator: request completed domain=%s duration_ms=%d actions=%d requires_confirmation=%s",
            domain.value,
            int((time.perf_counter() - started) * 1000),
            len(result.actions),
            result.requires_confirmation,
        )
        return AgentResponse(
            text=result.text,
            actions=result.actions,
            payload=result.payload,
            domain=domain,
            conversation_id=context.conversation_id,
            request_id=context.request_id,
            requires_confirmation=result.requires_confirmation,
            pending_action=result.pending_action,
        )


async def _call_executor(executor: AgentExecutor, message: str, context: AgentRunContext) -> ExecutorResult:
    result = executor(message, context)
    if inspect.isawaitable(result):
        result = await result
    return result


def _summarize_events(payload: dict[str, Any]) -> LastResultsContext | None:
    events = payload.get("events")
    if not isinstance(events, list):
        return None
    summaries = [
        EventSummary(
            id=str(event["id"]),
            title=event.get("title"),
            start_at=event.get("startAt"),
            all_day=bool(event.get("allDay", False)),
            recurrence=event.get("recurrence") or event.get("recurrenceRule"),
        )
        for event in events
        if isinstance(event, dict) and event.get("id") is not None
    ]
    if not summaries:
        return None

    is_analysis = bool(payload.get("analysis") or payload.get("isAnalysis")) or payload.get("queryType") == "analyze"
    query_type = "analyze" if is_analysis else "search"
    return LastResultsContext(
        domain=Domain.CALENDAR,
        query_type=query_type,
        description=str(payload.get("description") or f"{len(summaries)} calendar event(s)"),
        events=summaries,
        timestamp=datetime.now(timezone.utc),
    )
