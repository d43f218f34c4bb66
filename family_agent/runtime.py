"""Request boundary between a transport (HTTP, console) and the orchestrator."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from family_agent.models import AgentRequest, AgentResponse, AgentRunContext
from family_agent.orchestrator import Orchestrator

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class Caller:
    """Authenticated identity resolved by the transport layer."""

    user_id: str
    family_id: str
    family_member_id: str
    roles: list[str] = field(default_factory=lambda: ["member"])
    timezone: str | None = None


def request_logger(request_id: str) -> logging.LoggerAdapter:
    """Logger that tags every record with the request id."""

    return logging.LoggerAdapter(logging.getLogger("family_agent.request"), {"request_id": request_id})


class AgentRuntime:
    """Validates requests, builds the run context and delegates to the orchestrator."""

    def __init__(self, orchestrator: Orchestrator) -> None:
        self._orchestrator = orchestrator

    async def handle(self, body: dict[str, Any] | AgentRequest, caller: Caller) -> AgentResponse:
        """Handle one inbound request.

        Raises:
            pydantic.ValidationError: if ``body`` is not a valid request.
        """
        request = body if isinstance(body, AgentRequest) else AgentRequest.model_validate(body)
        request_id = str(uuid.uuid4())
        context = AgentRunContext(
            request_id=request_id,
            user_id=caller.user_id,
            family_id=caller.family_id,
            family_member_id=caller.family_member_id,
            conversation_id=request.conversation_id or str(uuid.uuid4()),
            logger=request_logger(request_id),
            roles=list(caller.roles),
            timezone=request.timezone or caller.timezone,
        )
        LOGGER.info(
            "Agent request received: request_id=%s user_id=%s family_id=%s confirmation=%s",
            request_id,
            caller.user_id,
            caller.family_id,
            request.is_confirmation,
        )
        return await self._orchestrator.handle(request, context)

    async def handle_json(self, body: dict[str, Any], caller: Caller) -> dict[str, Any]:
        """Same as ``handle`` but returns the wire-format dict."""

        response = await self.handle(body, caller)
        return response.to_dict()
