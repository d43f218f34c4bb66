"""Core domain models used across layers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

TOKEN_PATTERN = r"^pa_[a-f0-9]{32}$"


class Domain(str, Enum):
    """Area of the organizer a message is routed to."""

    TASKS = "tasks"
    CALENDAR = "calendar"
    MEALS = "meals"
    LISTS = "lists"
    UNKNOWN = "unknown"


@dataclass(slots=True)
class IntentRoute:
    """Routing decision for one message."""

    domain: Domain
    confidence: float
    reasons: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ToolCall:
    """A side-effecting tool invocation that has not run yet."""

    tool_name: str
    input: dict[str, Any] = field(default_factory=dict)

    @property
    def namespace(self) -> str:
        return self.tool_name.split(".", 1)[0]


@dataclass(slots=True)
class ToolResult:
    """Outcome of one tool invocation."""

    success: bool
    data: Any = None
    error: str | None = None
    execution_ms: int | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            out["data"] = self.data
        if self.error is not None:
            out["error"] = self.error
        if self.execution_ms is not None:
            out["executionMs"] = self.execution_ms
        return out


@dataclass(slots=True)
class AgentAction:
    """Audit record of a tool call made during a turn."""

    tool: str
    input: dict[str, Any]
    result: ToolResult

    def to_dict(self) -> dict[str, Any]:
        return {"tool": self.tool, "input": self.input, "result": self.result.to_dict()}


@dataclass(slots=True)
class PendingAction:
    """A write operation waiting for the user to confirm it."""

    token: str
    user_id: str
    family_id: str
    request_id: str
    conversation_id: str
    tool_call: ToolCall
    description: str
    created_at: datetime
    ttl_ms: int = 300_000
    is_destructive: bool = False

    @property
    def expires_at(self) -> datetime:
        return self.created_at + timedelta(milliseconds=self.ttl_ms)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass(slots=True)
class PendingActionInfo:
    """User-facing view of a pending action."""

    token: str
    description: str
    tool_name: str
    input_preview: dict[str, Any]
    expires_at: str
    is_destructive: bool

    @classmethod
    def from_action(
        cls, action: PendingAction, input_preview: dict[str, Any] | None = None
    ) -> PendingActionInfo:
        preview = input_preview if input_preview is not None else dict(action.tool_call.input)
        return cls(
            token=action.token,
            description=action.description,
            tool_name=action.tool_call.tool_name,
            input_preview=preview,
            expires_at=action.expires_at.isoformat(),
            is_destructive=action.is_destructive,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "token": self.token,
            "description": self.description,
            "toolName": self.tool_name,
            "inputPreview": self.input_preview,
            "expiresAt": self.expires_at,
            "isDestructive": self.is_destructive,
        }


@dataclass(slots=True)
class EventSummary:
    """Lightweight calendar event kept for follow-up references."""

    id: str
    title: str | None = None
    start_at: str | None = None
    all_day: bool = False
    recurrence: Any = None


@dataclass(slots=True)
class LastResultsContext:
    """Results of the last search or analysis in a conversation."""

    domain: Domain
    query_type: str
    description: str
    events: list[EventSummary]
    timestamp: datetime


@dataclass(slots=True)
class ConversationContext:
    """Short-lived memory for one conversation of one user in one family."""

    conversation_id: str
    user_id: str
    family_id: str
    created_at: datetime
    expires_at: datetime
    last_domain: Domain | None = None
    awaiting_input: str | None = None
    pending_event: dict[str, Any] | None = None
    pending_task: dict[str, Any] | None = None
    last_results: LastResultsContext | None = None


@dataclass(slots=True)
class AgentRunContext:
    """Per-request execution context threaded through the agent core."""

    request_id: str
    user_id: str
    family_id: str
    family_member_id: str
    conversation_id: str
    logger: logging.Logger | logging.LoggerAdapter
    roles: list[str] = field(default_factory=lambda: ["member"])
    timezone: str | None = None
    previous_context: ConversationContext | None = None


@dataclass(slots=True)
class ExecutorResult:
    """What a domain executor hands back to the orchestrator."""

    text: str
    actions: list[AgentAction] = field(default_factory=list)
    payload: dict[str, Any] | None = None
    requires_confirmation: bool = False
    pending_action: PendingActionInfo | None = None


@dataclass(slots=True)
class AgentResponse:
    """Uniform response envelope returned for every turn."""

    text: str
    actions: list[AgentAction]
    domain: Domain
    conversation_id: str
    request_id: str
    payload: dict[str, Any] | None = None
    requires_confirmation: bool = False
    pending_action: PendingActionInfo | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "text": self.text,
            "actions": [a.to_dict() for a in self.actions],
            "domain": self.domain.value,
            "conversationId": self.conversation_id,
            "requestId": self.request_id,
            "requiresConfirmation": self.requires_confirmation,
        }
        if self.payload is not None:
            out["payload"] = self.payload
        if self.pending_action is not None:
            out["pendingAction"] = self.pending_action.to_dict()
        return out


class AgentRequest(BaseModel):
    """Inbound chat request, validated at the boundary."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    message: str = Field(default="", max_length=4000)
    conversation_id: str | None = Field(default=None, alias="conversationId")
    domain_hint: Domain | None = Field(default=None, alias="domainHint")
    confirmation_token: str | None = Field(
        default=None, alias="confirmationToken", pattern=TOKEN_PATTERN
    )
    confirmed: bool | None = None
    timezone: str | None = None

    @model_validator(mode="after")
    def _message_or_confirmation(self) -> AgentRequest:
        if self.is_confirmation:
            return self
        if not self.message.strip():
            raise ValueError("Message is required")
        return self

    @property
    def is_confirmation(self) -> bool:
        return self.confirmation_token is not None and self.confirmed is True


@dataclass(slots=True)
class LLMResponse:
    """Result from an LLM generation request."""

    content: str
    raw: dict[str, Any] | None = None
