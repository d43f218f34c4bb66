"""Per-domain executor wiring.

Built once at startup and handed to the orchestrator, so tests can swap in
fake executors without touching shared state.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Awaitable, Callable, Union

from family_agent.models import AgentRunContext, Domain, ExecutorResult, ToolResult

if TYPE_CHECKING:
    from family_agent.confirmation import PendingActionStore

AgentExecutor = Callable[[str, AgentRunContext], Union[ExecutorResult, Awaitable[ExecutorResult]]]
ToolInvoker = Callable[[str, dict[str, Any]], Awaitable[ToolResult]]
ConfirmedExecutor = Callable[[str, AgentRunContext, ToolInvoker], Awaitable[ExecutorResult]]

# Domains that own confirmed writes; lists are finished by the meals executor.
CONFIRMING_DOMAINS = (Domain.TASKS, Domain.CALENDAR, Domain.MEALS)


class ExecutorRegistry:
    """One executor and at most one confirmed-action executor per domain."""

    def __init__(self) -> None:
        self._executors: dict[Domain, AgentExecutor] = {}
        self._confirmed: dict[Domain, ConfirmedExecutor] = {}

    @classmethod
    def with_defaults(cls, pending_actions: PendingActionStore) -> ExecutorRegistry:
        """Registry with help/placeholder executors and generic confirmation handling."""

        from family_agent.agents.confirmed import make_confirmed_executor
        from family_agent.agents.defaults import make_placeholder_executor, unknown_executor

        registry = cls()
        registry.register(Domain.UNKNOWN, unknown_executor)
        for domain in (Domain.TASKS, Domain.CALENDAR, Domain.MEALS, Domain.LISTS):
            registry.register(domain, make_placeholder_executor(domain))
        for domain in CONFIRMING_DOMAINS:
            registry.register_confirmed(domain, make_confirmed_executor(pending_actions, domain))
        return registry

    def register(self, domain: Domain, executor: AgentExecutor) -> None:
        self._executors[Domain(domain)] = executor

    def register_confirmed(self, domain: Domain, executor: ConfirmedExecutor) -> None:
        self._confirmed[Domain(domain)] = executor

    def get(self, domain: Domain) -> AgentExecutor | None:
        return self._executors.get(domain)

    def resolve(self, domain: Domain) -> AgentExecutor:
        """Executor for ``domain``, falling back to the unknown-domain executor."""

        executor = self._executors.get(domain) or self._executors.get(Domain.UNKNOWN)
        if executor is None:
            raise LookupError("No executor registered for the unknown domain")
        return executor

    def resolve_confirmed(self, domain: Domain) -> ConfirmedExecutor | None:
        return self._confirmed.get(domain) or self._confirmed.get(Domain.TASKS)
