"""Collaborator: capability-matching dispatcher over a registry of agents."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass

from pydantic import BaseModel

from aicollab.agents.base import Agent
from aicollab.agents.models import AgentConfiguration, AgentExchangeId
from aicollab.config.models import CollaboratorConfig
from aicollab.context.models import MessageSender
from aicollab.context.store import ContextStore
from aicollab.exceptions import (
    AICollabError,
    InvalidCredentials,
    NoSuitableAgent,
    TaskCancelled,
    TaskTimeout,
)
from aicollab.tasks.capabilities import Capability, has_required_capabilities
from aicollab.tasks.models import Task, TaskResult

logger = logging.getLogger("aicollab.core.collaborator")

_LOCAL_AGENT_TYPES = {"local", "ollama"}


class Credentials(BaseModel):
    api_key: str = ""
    token: str = ""
    endpoint: str = ""


@dataclass
class ConnectionResult:
    success: bool
    message: str = ""


class Collaborator:
    """Dispatches tasks to the first registered agent that can run them.

    Matching is first-match in registration order: when several agents
    qualify, the one registered earliest wins. Every ``execute`` call records
    the task before dispatch and exactly one result afterwards, and always
    returns a result instead of raising.
    """

    def __init__(
        self,
        config: CollaboratorConfig | None = None,
        context: ContextStore | None = None,
    ) -> None:
        self.config = config or CollaboratorConfig()
        self._context = context or ContextStore(max_history_size=self.config.max_history_size)
        self._agents: dict[AgentExchangeId, Agent] = {}
        self._sessions: dict[str, ContextStore] = {}
        self._credentials: tuple[str, Credentials] | None = None
        self._semaphore = asyncio.Semaphore(self.config.max_concurrent_tasks)

    @property
    def context(self) -> ContextStore:
        return self._context

    # -- Registry --------------------------------------------------------------

    def register(self, agent: Agent) -> AgentExchangeId:
        """Register *agent* under a fresh id. The same agent may be registered twice."""
        agent_id = AgentExchangeId()
        self._agents[agent_id] = agent
        logger.info("Registered agent %s as %s", agent.name, agent_id)
        return agent_id

    def unregister(self, agent_id: AgentExchangeId) -> bool:
        agent = self._agents.pop(agent_id, None)
        if agent is None:
            return False
        logger.info("Unregistered agent %s (%s)", agent.name, agent_id)
        return True

    def get_registered_agents(self) -> dict[AgentExchangeId, Agent]:
        return dict(self._agents)

    def get_agent(self, agent_id: AgentExchangeId | str) -> Agent | None:
        if isinstance(agent_id, str):
            agent_id = AgentExchangeId.parse(agent_id)
        return self._agents.get(agent_id)

    def find_agents(self, required: Iterable[Capability]) -> list[tuple[AgentExchangeId, Agent]]:
        """All agents whose capabilities cover *required*, in registration order."""
        required = frozenset(required)
        return [
            (agent_id, agent)
            for agent_id, agent in self._agents.items()
            if has_required_capabilities(agent.capabilities(), required)
        ]

    def find_agent(self, task: Task) -> tuple[AgentExchangeId, Agent] | None:
        """First matching agent in registration order, or None."""
        for agent_id, agent in self._agents.items():
            if agent.can_execute(task):
                return agent_id, agent
        return None

    def _missing_for(self, task: Task) -> frozenset[Capability]:
        available: set[Capability] = set()
        for agent in self._agents.values():
            available |= agent.capabilities()
        missing = task.required_capabilities - available
        # Every capability exists somewhere, just not on one agent
        return missing or task.required_capabilities

    # -- Execution -------------------------------------------------------------

    async def execute(self, task: Task, timeout: float | None = None) -> TaskResult:
        """Run *task* on the first capable agent and return its result.

        Never raises for agent failures: missing agents, agent errors and
        timeouts all come back as recorded ``failed``/``timed_out`` results.
        The run is bounded by *timeout* (default ``task.timeout``) and by the
        agent's ``configuration.timeout``, whichever is shorter.
        """
        context = self._context
        context.record_task(task)
        timeout = timeout if timeout is not None else task.timeout

        try:
            async with self._semaphore:
                match = self.find_agent(task)
                if match is None:
                    error = NoSuitableAgent(self._missing_for(task))
                    logger.warning("Task %s: %s", task.id, error)
                    result = TaskResult.failure(
                        task.id,
                        str(error),
                        metadata={
                            "error_type": type(error).__name__,
                            "missing_capabilities": sorted(str(c) for c in error.missing),
                        },
                    )
                else:
                    agent_id, agent = match
                    result = await self._dispatch(agent_id, agent, task, timeout)
        except asyncio.CancelledError:
            reason = TaskCancelled(task.id)
            logger.info("%s", reason)
            context.record_result(
                TaskResult.cancelled(task.id, metadata={"error_type": type(reason).__name__})
            )
            raise

        context.record_result(result)
        if self.config.enable_auto_context_management:
            self._log_conversation(task, result)
        return result

    async def _dispatch(
        self, agent_id: AgentExchangeId, agent: Agent, task: Task, timeout: float
    ) -> TaskResult:
        configuration = getattr(agent, "configuration", None)
        if isinstance(configuration, AgentConfiguration):
            timeout = min(timeout, configuration.timeout)
        logger.info("Dispatching task %s to %s (%s)", task.id, agent.name, agent_id)
        try:
            result = await asyncio.wait_for(agent.process_task(task), timeout)
        except TimeoutError:
            error = TaskTimeout(task.id, timeout)
            logger.warning("%s", error)
            result = TaskResult.timed_out(
                task.id, str(error), metadata={"error_type": type(error).__name__}
            )
        except AICollabError as exc:
            logger.warning("Agent %s rejected task %s: %s", agent.name, task.id, exc)
            result = TaskResult.failure(task.id, str(exc), metadata={"error_type": type(exc).__name__})
        except Exception as exc:
            logger.error("Agent %s error on task %s: %s", agent.name, task.id, exc, exc_info=True)
            result = TaskResult.failure(
                task.id, str(exc) or type(exc).__name__, metadata={"error_type": type(exc).__name__}
            )
        return result.with_agent(str(agent_id))

    async def execute_many(self, tasks: Iterable[Task]) -> list[TaskResult]:
        """Execute tasks concurrently, at most ``max_concurrent_tasks`` at a time."""
        return list(await asyncio.gather(*(self.execute(task) for task in tasks)))

    def create_task(self, query: str, capabilities: Iterable[Capability] = (), **kwargs) -> Task:
        """Build a Task using this collaborator's default timeout."""
        kwargs.setdefault("timeout", self.config.default_task_timeout)
        return Task(query=query, required_capabilities=frozenset(capabilities), **kwargs)

    def _log_conversation(self, task: Task, result: TaskResult) -> None:
        conversation_id = task.context.get("conversation_id")
        if not isinstance(conversation_id, str) or not result.succeeded:
            return
        self._context.add_text(conversation_id, MessageSender.USER, task.query, task_id=task.id)
        self._context.add_text(conversation_id, MessageSender.AGENT, result.text, task_id=task.id)

    # -- Sessions --------------------------------------------------------------

    def get_context(self, session_id: str | None = None) -> ContextStore:
        """The shared context, or a per-session one created on first use."""
        if session_id is None:
            return self._context
        if session_id not in self._sessions:
            self._sessions[session_id] = ContextStore(
                max_history_size=self.config.max_history_size, context_id=session_id
            )
        return self._sessions[session_id]

    def clear_context(self, session_id: str | None = None) -> None:
        if session_id is None:
            self._context.clear()
        else:
            self._sessions.pop(session_id, None)

    # -- Connections -----------------------------------------------------------

    async def connect(self, agent_type: str, credentials: Credentials) -> ConnectionResult:
        """Validate *credentials* for *agent_type*. No retries at this layer."""
        try:
            self._validate_credentials(agent_type, credentials)
        except InvalidCredentials as exc:
            logger.warning("Connection to %s rejected: %s", agent_type, exc)
            return ConnectionResult(False, str(exc))
        self._credentials = (agent_type, credentials)
        logger.info("Connected to %s", agent_type)
        return ConnectionResult(True, f"Connected to {agent_type}")

    @staticmethod
    def _validate_credentials(agent_type: str, credentials: Credentials) -> None:
        if not agent_type.strip():
            raise InvalidCredentials("agent type must not be empty")
        if credentials.endpoint and not credentials.endpoint.startswith(("http://", "https://")):
            raise InvalidCredentials(f"endpoint must be an http(s) URL: {credentials.endpoint}")
        if agent_type.lower() in _LOCAL_AGENT_TYPES:
            return
        if not (credentials.api_key.strip() or credentials.token.strip()):
            raise InvalidCredentials("an api_key or token is required")

    @property
    def connected_agent_type(self) -> str | None:
        return self._credentials[0] if self._credentials else None

    # -- Lifecycle -------------------------------------------------------------

    async def shutdown(self) -> None:
        """Shut down every registered agent."""
        await asyncio.gather(*(agent.shutdown() for agent in self._agents.values()))
