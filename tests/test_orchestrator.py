"""Tests for the orchestrator: routing, fan-out, context bookkeeping and confirmations."""

from __future__ import annotations

import logging
from typing import Any
from unittest.mock import AsyncMock

import pytest

from family_agent.agents.confirmed import INVALID_CONFIRMATION_TEXT, request_confirmation
from family_agent.agents.defaults import UNKNOWN_DOMAIN_TEXT
from family_agent.confirmation import PendingActionStore
from family_agent.conversation_context import ConversationContextStore
from family_agent.executors import ExecutorRegistry
from family_agent.llm.classifier import IntentClassification
from family_agent.models import (
    AgentAction,
    AgentRequest,
    AgentRunContext,
    Domain,
    ExecutorResult,
    ToolCall,
    ToolResult,
)
from family_agent.orchestrator import (
    EXECUTOR_ERROR_TEXT,
    MULTI_INTENT_ERROR_TEXT,
    MULTI_INTENT_SEPARATOR,
    Orchestrator,
    confirmation_domain,
)
from family_agent.tools.base import Tool, ToolContext
from family_agent.tools.registry import ToolRegistry

MULTI_MESSAGE = "add milk to the list and also remind me to call mom"


class CreateTaskTool(Tool):
    name = "tasks.create"
    description = "Create a task."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {"title": {"type": "string"}},
        "required": ["title"],
    }

    def __init__(self) -> None:
        self.calls = 0

    async def run(self, context: ToolContext, **kwargs: Any) -> dict[str, Any]:
        self.calls += 1
        return {"task": {"id": "t1", "title": kwargs["title"]}}


class Harness:
    def __init__(self, executors: ExecutorRegistry | None = None, classifier: Any = None) -> None:
        self.pending = PendingActionStore()
        self.contexts = ConversationContextStore()
        self.tools = ToolRegistry()
        self.create_task = CreateTaskTool()
        self.tools.register(self.create_task)
        self.executors = executors or ExecutorRegistry.with_defaults(self.pending)
        self.orchestrator = Orchestrator(
            executors=self.executors,
            pending_actions=self.pending,
            contexts=self.contexts,
            tools=self.tools,
            classifier=classifier,
        )

    async def send(self, message: str, user_id: str = "u1", timezone: str | None = None, **fields: Any):  # noqa: ANN201
        request = AgentRequest(message=message, conversation_id="c1", **fields)
        return await self.orchestrator.handle(request, _run_context(user_id, timezone))

    async def confirm(self, token: str, user_id: str = "u1"):  # noqa: ANN201
        request = AgentRequest(confirmation_token=token, confirmed=True, conversation_id="c1")
        return await self.orchestrator.handle(request, _run_context(user_id))

    def context(self):  # noqa: ANN201
        return self.contexts.get("c1", "u1", "f1")


def _run_context(user_id: str = "u1", timezone: str | None = None) -> AgentRunContext:
    return AgentRunContext(
        request_id="r1",
        user_id=user_id,
        family_id="f1",
        family_member_id="m1",
        conversation_id="c1",
        logger=logging.getLogger("test"),
        timezone=timezone,
    )


def _created_task_result(text: str = "I've created the task.") -> ExecutorResult:
    action = AgentAction(
        tool="tasks.create",
        input={"title": "buy milk"},
        result=ToolResult(success=True, data={"id": "t1"}),
    )
    return ExecutorResult(text=text, actions=[action])


def _confirming_tasks_executor(harness: Harness):  # noqa: ANN202
    async def executor(message: str, context: AgentRunContext) -> ExecutorResult:
        return request_confirmation(
            harness.pending,
            context,
            ToolCall("tasks.create", {"title": "buy milk"}),
            description="Create task buy milk",
        )

    return executor


@pytest.mark.asyncio
async def test_single_domain_end_to_end_clears_context():
    harness = Harness()
    harness.executors.register(Domain.TASKS, AsyncMock(return_value=_created_task_result()))
    harness.contexts.set("c1", "u1", "f1", last_domain=Domain.CALENDAR)

    response = await harness.send("Create a task to buy milk")

    assert response.domain == Domain.TASKS
    assert len(response.actions) == 1
    assert response.actions[0].tool == "tasks.create"
    assert response.conversation_id == "c1"
    assert response.requires_confirmation is False
    assert harness.context() is None


@pytest.mark.asyncio
async def test_answer_to_clarifying_question_clears_context_after_write():
    harness = Harness()
    created = AgentAction(
        tool="calendar.create",
        input={"title": "Dentist", "startAt": "15:00"},
        result=ToolResult(success=True, data={"id": "e1"}),
    )
    harness.executors.register(
        Domain.CALENDAR, AsyncMock(return_value=ExecutorResult(text="Booked.", actions=[created]))
    )
    harness.contexts.set("c1", "u1", "f1", last_domain=Domain.CALENDAR, awaiting_input="time")

    response = await harness.send("3pm")

    assert response.domain == Domain.CALENDAR
    assert response.actions == [created]
    assert harness.context() is None


@pytest.mark.asyncio
async def test_classifier_runs_once_per_single_intent_turn():
    classifier = AsyncMock()
    classifier.classify.return_value = IntentClassification(domain=Domain.MEALS, confidence=0.8)
    harness = Harness(classifier=classifier)

    response = await harness.send("what should we have tonight", timezone="Europe/Oslo")

    assert response.domain == Domain.MEALS
    classifier.classify.assert_awaited_once_with("what should we have tonight", timezone="Europe/Oslo")


@pytest.mark.asyncio
async def test_unknown_message_uses_unknown_executor():
    harness = Harness()

    response = await harness.send("hello there")

    assert response.domain == Domain.UNKNOWN
    assert response.text == UNKNOWN_DOMAIN_TEXT
    assert response.actions == []


@pytest.mark.asyncio
async def test_placeholder_executor_for_unwired_domain():
    harness = Harness()

    response = await harness.send("What's for dinner tonight?")

    assert response.domain == Domain.MEALS
    assert response.payload == {"domain": "meals", "status": "placeholder"}


@pytest.mark.asyncio
async def test_executor_error_becomes_apology():
    harness = Harness()
    harness.executors.register(Domain.TASKS, AsyncMock(side_effect=RuntimeError("boom")))

    response = await harness.send("Create a task to buy milk")

    assert response.text == EXECUTOR_ERROR_TEXT
    assert response.actions == []
    assert response.domain == Domain.TASKS
    assert response.payload == {"error": True}


@pytest.mark.asyncio
async def test_executor_raising_on_call_becomes_apology():
    def failing_executor(message: str, context: AgentRunContext) -> ExecutorResult:
        raise RuntimeError("executor crashed before returning")

    harness = Harness()
    harness.executors.register(Domain.TASKS, failing_executor)

    response = await harness.send("Create a task to buy milk")

    assert response.text == EXECUTOR_ERROR_TEXT
    assert response.actions == []
    assert response.domain == Domain.TASKS


@pytest.mark.asyncio
async def test_sync_executor_is_supported():
    harness = Harness()
    harness.executors.register(Domain.TASKS, lambda message, context: ExecutorResult(text="sync"))

    response = await harness.send("Create a task to buy milk")

    assert response.text == "sync"


@pytest.mark.asyncio
async def test_request_domain_hint_wins():
    harness = Harness()
    calendar = AsyncMock(return_value=ExecutorResult(text="calendar"))
    harness.executors.register(Domain.CALENDAR, calendar)

    response = await harness.send(MULTI_MESSAGE, domain_hint=Domain.CALENDAR)

    assert response.domain == Domain.CALENDAR
    calendar.assert_awaited_once()


@pytest.mark.asyncio
async def test_follow_up_state_is_remembered_and_used_as_hint():
    harness = Harness()
    calendar = AsyncMock(
        side_effect=[
            ExecutorResult(
                text="What time?",
                payload={"awaitingInput": "time", "pendingEvent": {"title": "Dentist"}},
            ),
            ExecutorResult(text="Booked."),
        ]
    )
    harness.executors.register(Domain.CALENDAR, calendar)

    first = await harness.send("Add a dentist appointment on Friday")
    stored = harness.context()

    assert first.domain == Domain.CALENDAR
    assert stored.last_domain == Domain.CALENDAR
    assert stored.awaiting_input == "time"
    assert stored.pending_event == {"title": "Dentist"}

    second = await harness.send("3pm")

    assert second.domain == Domain.CALENDAR
    _, context = calendar.await_args.args
    assert context.previous_context.pending_event == {"title": "Dentist"}


@pytest.mark.asyncio
async def test_calendar_results_are_summarized_for_follow_ups():
    harness = Harness()
    events = [
        {"id": "e1", "title": "Swim", "startAt": "2024-01-02T17:00:00Z", "allDay": False},
        {"id": "e2", "title": "Holiday", "allDay": True, "recurrenceRule": "FREQ=YEARLY"},
        {"title": "no id"},
        {"id": None, "title": "null id"},
    ]
    harness.executors.register(
        Domain.CALENDAR,
        AsyncMock(return_value=ExecutorResult(text="Two events.", payload={"events": events})),
    )

    await harness.send("What's on the calendar this week?")
    last_results = harness.context().last_results

    assert last_results.domain == Domain.CALENDAR
    assert last_results.query_type == "search"
    assert [event.id for event in last_results.events] == ["e1", "e2"]
    assert last_results.events[0].start_at == "2024-01-02T17:00:00Z"
    assert last_results.events[1].all_day is True
    assert last_results.events[1].recurrence == "FREQ=YEARLY"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "flags",
    [{"analysis": {"busiestDay": "Monday"}}, {"isAnalysis": True}, {"queryType": "analyze"}],
)
async def test_calendar_analysis_results_are_marked(flags):
    harness = Harness()
    payload = {"events": [{"id": "e1", "title": "Swim"}], **flags}
    harness.executors.register(
        Domain.CALENDAR, AsyncMock(return_value=ExecutorResult(text="Mostly Mondays.", payload=payload))
    )

    await harness.send("When is swim practice usually scheduled?")

    assert harness.context().last_results.query_type == "analyze"


@pytest.mark.asyncio
async def test_calendar_events_with_falsy_ids_are_kept():
    harness = Harness()
    events = [{"id": 0, "title": "Imported"}, {"id": "", "title": "Draft"}]
    harness.executors.register(
        Domain.CALENDAR,
        AsyncMock(return_value=ExecutorResult(text="Two events.", payload={"events": events})),
    )

    await harness.send("What's on the calendar this week?")

    assert [event.id for event in harness.context().last_results.events] == ["0", ""]


@pytest.mark.asyncio
async def test_multi_intent_runs_each_domain_and_merges():
    harness = Harness()
    tasks = AsyncMock(return_value=ExecutorResult(text="Reminder set.", payload={"taskId": "t1"}))
    lists = AsyncMock(return_value=ExecutorResult(text="Milk added.", payload={"listId": "l1"}))
    harness.executors.register(Domain.TASKS, tasks)
    harness.executors.register(Domain.LISTS, lists)

    response = await harness.send(MULTI_MESSAGE)

    assert response.domain == Domain.TASKS
    assert response.text == f"Reminder set.{MULTI_INTENT_SEPARATOR}Milk added."
    assert response.payload == {
        "multiIntent": True,
        "domains": ["tasks", "lists"],
        "taskId": "t1",
        "listId": "l1",
    }
    tasks.assert_awaited_once()
    lists.assert_awaited_once()


@pytest.mark.asyncio
async def test_multi_intent_skips_unregistered_domains():
    executors = ExecutorRegistry()
    executors.register(Domain.TASKS, AsyncMock(return_value=ExecutorResult(text="Reminder set.")))
    harness = Harness(executors)

    response = await harness.send(MULTI_MESSAGE)

    assert response.text == "Reminder set."
    assert response.payload["domains"] == ["tasks", "lists"]


@pytest.mark.asyncio
async def test_multi_intent_stops_at_first_confirmation():
    harness = Harness()
    lists = AsyncMock(return_value=ExecutorResult(text="Milk added."))
    harness.executors.register(Domain.TASKS, _confirming_tasks_executor(harness))
    harness.executors.register(Domain.LISTS, lists)

    response = await harness.send(MULTI_MESSAGE)

    assert response.requires_confirmation is True
    assert response.pending_action.tool_name == "tasks.create"
    assert response.payload == {"multiIntent": True, "domains": ["tasks", "lists"]}
    lists.assert_not_awaited()


@pytest.mark.asyncio
async def test_multi_intent_all_failures():
    harness = Harness()
    harness.executors.register(Domain.TASKS, AsyncMock(side_effect=RuntimeError("a")))
    harness.executors.register(Domain.LISTS, AsyncMock(side_effect=RuntimeError("b")))

    response = await harness.send(MULTI_MESSAGE)

    assert response.text == MULTI_INTENT_ERROR_TEXT
    assert response.actions == []


@pytest.mark.parametrize(
    ("tool_name", "domain"),
    [
        ("calendar.update", Domain.CALENDAR),
        ("meals.plan", Domain.MEALS),
        ("shopping.addItem", Domain.MEALS),
        ("tasks.create", Domain.TASKS),
        ("lists.create", Domain.TASKS),
    ],
)
def test_confirmation_domain(tool_name, domain):
    assert confirmation_domain(tool_name) == domain


@pytest.mark.asyncio
async def test_confirmation_executes_once():
    harness = Harness()
    harness.executors.register(Domain.TASKS, _confirming_tasks_executor(harness))
    harness.contexts.set("c1", "u1", "f1", last_domain=Domain.TASKS, pending_task={"title": "buy milk"})

    proposal = await harness.send("Create a task to buy milk")
    token = proposal.pending_action.token

    assert proposal.requires_confirmation is True
    assert proposal.actions == []
    assert harness.create_task.calls == 0

    first = await harness.confirm(token)
    second = await harness.confirm(token)

    assert first.domain == Domain.TASKS
    assert first.text == "Done! Create task buy milk."
    assert first.payload["confirmed"] is True
    assert first.actions[0].result.success is True
    assert harness.context() is None

    assert second.text == INVALID_CONFIRMATION_TEXT
    assert second.payload == {"error": "invalid_confirmation"}
    assert second.actions == []
    assert harness.create_task.calls == 1


@pytest.mark.asyncio
async def test_confirmation_by_another_user_is_rejected():
    harness = Harness()
    harness.executors.register(Domain.TASKS, _confirming_tasks_executor(harness))
    proposal = await harness.send("Create a task to buy milk")

    response = await harness.confirm(proposal.pending_action.token, user_id="u2")

    assert response.text == INVALID_CONFIRMATION_TEXT
    assert harness.create_task.calls == 0
    assert harness.pending.size == 1


@pytest.mark.asyncio
async def test_confirmation_dispatches_by_tool_namespace():
    harness = Harness()
    calendar_confirmed = AsyncMock(return_value=ExecutorResult(text="Event updated."))
    harness.executors.register_confirmed(Domain.CALENDAR, calendar_confirmed)
    action = harness.pending.create(
        user_id="u1",
        family_id="f1",
        request_id="r0",
        conversation_id="c1",
        tool_call=ToolCall("calendar.update", {"eventId": "e1"}),
        description="Move swim practice",
    )

    response = await harness.confirm(action.token)

    assert response.domain == Domain.CALENDAR
    assert response.text == "Event updated."
    token, _, invoke_tool = calendar_confirmed.await_args.args
    assert token == action.token
    assert callable(invoke_tool)


@pytest.mark.asyncio
async def test_confirmed_executor_error_becomes_apology():
    harness = Harness()
    harness.executors.register_confirmed(Domain.TASKS, AsyncMock(side_effect=RuntimeError("boom")))

    response = await harness.confirm("pa_" + "0" * 32)

    assert response.text == EXECUTOR_ERROR_TEXT
    assert response.payload == {"error": True}


@pytest.mark.asyncio
async def test_failed_confirmed_tool_keeps_context():
    harness = Harness()
    harness.contexts.set("c1", "u1", "f1", last_domain=Domain.TASKS)
    action = harness.pending.create(
        user_id="u1",
        family_id="f1",
        request_id="r0",
        conversation_id="c1",
        tool_call=ToolCall("tasks.create", {}),
        description="Create an untitled task",
    )

    response = await harness.confirm(action.token)

    assert response.text.startswith("Sorry, the action failed.")
    assert response.actions[0].result.success is False
    assert harness.context() is not None


def test_pending_action_wire_format():
    store = PendingActionStore()
    result = request_confirmation(
        store,
        _run_context(),
        ToolCall("tasks.delete", {"taskId": "t1"}),
        description="Delete task",
        is_destructive=True,
    )

    info = result.pending_action.to_dict()

    assert result.text == "Delete task. Do you want me to go ahead?"
    assert store.size == 1
    assert set(info) == {"token", "description", "toolName", "inputPreview", "expiresAt", "isDestructive"}
    assert info["isDestructive"] is True
    assert info["inputPreview"] == {"taskId": "t1"}


@pytest.mark.parametrize(
    ("tool_name", "destructive"),
    [("tasks.delete", True), ("shopping.remove", True), ("tasks.create", False)],
)
def test_destructive_flag_follows_tool_name(tool_name, destructive):
    store = PendingActionStore()

    result = request_confirmation(store, _run_context(), ToolCall(tool_name, {}), description="Change it")

    assert result.pending_action.is_destructive is destructive
    assert store.get_by_user("u1")[0].is_destructive is destructive
