"""Tool contracts."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class ToolContext:
    """Caller identity and scope handed to every tool invocation."""

    request_id: str
    user_id: str
    family_id: str
    family_member_id: str
    logger: logging.Logger | logging.LoggerAdapter
    roles: list[str] = field(default_factory=lambda: ["member"])
    timezone: str | None = None


class Tool(ABC):
    """Base class for all domain tools.

    ``name`` follows the ``domain.verb`` convention (``tasks.create``); the
    prefix decides which domain finishes a confirmed action.
    """

    name: str
    description: str
    parameters_schema: dict[str, Any]

    @abstractmethod
    async def run(self, context: ToolContext, **kwargs: Any) -> Any:
        """Execute tool with validated arguments.

        Return plain data on success, or a ``ToolResult`` to report a handled
        failure. Raised exceptions become failed results in the registry.
        """
