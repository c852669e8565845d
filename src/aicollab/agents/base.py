"""Agent contract and the shared processing pipeline."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Iterable
from typing import Protocol, runtime_checkable

from aicollab.agents.fallback import FallbackResponder
from aicollab.agents.models import (
    AgentConfiguration,
    AgentInitResult,
    AgentState,
    AgentStateKind,
)
from aicollab.agents.progress import ProgressMonitor, estimate_duration
from aicollab.agents.throttle import SlidingWindow
from aicollab.config.constants import AGENT_RESULT_HISTORY_SIZE
from aicollab.exceptions import (
    AgentTerminated,
    AICollabError,
    CapabilityNotSupported,
    ExternalServiceError,
    RequestFailed,
    ResponseParseError,
)
from aicollab.services.ollama import GenerationOptions
from aicollab.tasks.capabilities import Capability, has_required_capabilities, missing_capabilities
from aicollab.tasks.models import Task, TaskResult

logger = logging.getLogger("aicollab.agents.base")


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class Agent(Protocol):
    """What the dispatcher needs from a worker."""

    name: str

    def capabilities(self) -> frozenset[Capability]: ...

    def can_execute(self, task: Task) -> bool: ...

    async def process_task(self, task: Task) -> TaskResult: ...

    def get_state(self) -> AgentState: ...

    async def initialize(self, configuration: AgentConfiguration) -> AgentInitResult: ...

    async def shutdown(self) -> None: ...


class TextBackend(Protocol):
    """Streaming text generation (see ``OllamaService``)."""

    @property
    def selected_model(self) -> str | None: ...

    def generate_text(
        self,
        prompt: str,
        options: GenerationOptions | None = None,
        model: str | None = None,
    ) -> AsyncIterator[str]: ...

    async def select_model(self, name: str) -> None: ...

    async def check_availability(self) -> bool: ...


# ---------------------------------------------------------------------------
# BaseAgent
# ---------------------------------------------------------------------------

_RETRYABLE = (RequestFailed, ResponseParseError)


class BaseAgent:
    """Common pipeline: capability check → preprocess → route → generate → postprocess.

    Subclasses override the ``handle_*`` routes, ``optimize_prompt`` or
    ``execute_task`` as a whole. ``process_task`` calls are serialized per
    agent; ``get_state`` never waits.
    """

    def __init__(
        self,
        name: str,
        capabilities: Iterable[Capability],
        version: str = "1.0",
        description: str = "",
        backend: TextBackend | None = None,
        configuration: AgentConfiguration | None = None,
        fallback: FallbackResponder | None = None,
    ) -> None:
        self.name = name
        self.version = version
        self.description = description
        self.backend = backend
        self.configuration = configuration or AgentConfiguration()
        self.fallback = fallback or FallbackResponder()
        self._capabilities = frozenset(capabilities)
        self._state = AgentState.idle()
        self._monitors: dict[str, ProgressMonitor] = {}
        self._history: dict[str, TaskResult] = {}
        self._lock = asyncio.Lock()
        self._window = SlidingWindow(self.configuration.rate_limit)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, state={self._state})"

    # -- Contract --------------------------------------------------------------

    def capabilities(self) -> frozenset[Capability]:
        return self._capabilities

    def can_execute(self, task: Task) -> bool:
        return has_required_capabilities(self._capabilities, task.required_capabilities)

    def get_state(self) -> AgentState:
        return self._state

    def get_progress(self, task_id: str) -> ProgressMonitor | None:
        return self._monitors.get(task_id)

    def get_result_history(self) -> list[TaskResult]:
        return sorted(self._history.values(), key=lambda r: r.completed_at)

    def check_capabilities(self, task: Task) -> None:
        """Raise CapabilityNotSupported for the first missing capability."""
        missing = missing_capabilities(self._capabilities, task.required_capabilities)
        if missing:
            raise CapabilityNotSupported(min(missing))

    async def process_task(self, task: Task) -> TaskResult:
        """Run *task* and return its result.

        Raises CapabilityNotSupported or AgentTerminated before doing any
        work. Any other failure comes back as a ``failed`` result.
        """
        self.check_ready(task)
        async with self._lock:
            return await self._run(task)

    def check_ready(self, task: Task) -> None:
        if self._state.kind in (AgentStateKind.SHUTTING_DOWN, AgentStateKind.TERMINATED):
            raise AgentTerminated(self.name)
        self.check_capabilities(task)

    async def _run(self, task: Task) -> TaskResult:
        if task.has_timed_out():
            result = TaskResult.timed_out(task.id, f"Task {task.id} expired before it started")
            self._record(result)
            return result

        self._state = AgentState.busy(task.id)
        monitor = ProgressMonitor(task.id, estimate_duration(task))
        self._monitors[task.id] = monitor
        start = time.monotonic()
        logger.info("%s processing task %s", self.name, task.id)

        try:
            monitor.update_progress("Preprocessing", 0.1)
            prepared = self.preprocess(task)
            monitor.update_progress("Generating", 0.3)
            text, used_fallback = await self.execute_task(prepared)
            monitor.update_progress("Postprocessing", 0.9)
            output = self.postprocess(text, prepared)
            result = TaskResult.success(
                task.id,
                output,
                execution_duration=time.monotonic() - start,
                metadata={"agent": self.name, "fallback": used_fallback},
            )
            monitor.update_progress("Completed", 1.0)
        except Exception as exc:
            logger.error("%s failed on task %s: %s", self.name, task.id, exc, exc_info=True)
            self._settle(AgentState.error(str(exc)))
            result = TaskResult.failure(
                task.id,
                str(exc) or type(exc).__name__,
                execution_duration=time.monotonic() - start,
                metadata={"agent": self.name, "error_type": type(exc).__name__},
            )
        else:
            self._settle(AgentState.idle())
        finally:
            self._monitors.pop(task.id, None)
            if self._state.kind is AgentStateKind.BUSY:
                # Cancelled mid-flight
                self._state = AgentState.idle()

        self._record(result)
        return result

    def _settle(self, state: AgentState) -> None:
        # A shutdown during the task wins
        if self._state.kind is AgentStateKind.BUSY:
            self._state = state

    def _record(self, result: TaskResult) -> None:
        self._history[result.result_id] = result
        while len(self._history) > AGENT_RESULT_HISTORY_SIZE:
            oldest = min(self._history.values(), key=lambda r: r.completed_at)
            del self._history[oldest.result_id]

    # -- Pipeline hooks --------------------------------------------------------

    def preprocess(self, task: Task) -> Task:
        """Stamp the context and make code requests explicit."""
        query = task.query
        if task.requires(Capability.CODE_GENERATION) and "code" not in query.lower():
            query = f"Generate code for: {query}"
        prepared = task.with_context(preprocess_timestamp=time.time())
        return prepared.model_copy(update={"query": query})

    async def execute_task(self, task: Task) -> tuple[str, bool]:
        """Route by capability. Returns ``(text, used_fallback)``."""
        if task.requires(Capability.CODE_GENERATION):
            return await self.handle_code_generation(task)
        if task.requires(Capability.TEXT_ANALYSIS):
            return await self.handle_text_analysis(task)
        if task.requires(Capability.CONVERSATIONAL):
            return await self.handle_conversation(task)
        return await self.handle_basic(task)

    def postprocess(self, text: str, task: Task) -> str:
        text = text.strip()
        if text.startswith("Assistant:"):
            text = text[len("Assistant:"):].strip()
        if task.requires(Capability.CODE_GENERATION) and "```" not in text:
            text = f"```\n{text}\n```"
        return text

    def optimize_prompt(self, prompt: str, task: Task) -> str:
        return prompt

    # -- Routes ----------------------------------------------------------------

    def options(self, temperature: float, top_p: float, num_predict: int) -> GenerationOptions:
        """Generation options with ``num_predict`` capped at ``max_tokens``."""
        return GenerationOptions(
            temperature=temperature,
            top_p=top_p,
            num_predict=min(num_predict, self.configuration.max_tokens),
        )

    async def handle_basic(self, task: Task) -> tuple[str, bool]:
        options = self.options(self.configuration.temperature, 0.9, 512)
        return await self.generate(task.query, options, task)

    async def handle_code_generation(self, task: Task) -> tuple[str, bool]:
        options = self.options(max(0.1, self.configuration.temperature - 0.2), 0.95, 1024)
        return await self.generate(task.query, options, task)

    async def handle_text_analysis(self, task: Task) -> tuple[str, bool]:
        options = self.options(self.configuration.temperature, 0.9, 768)
        prompt = f"Analyze the following text and describe its key points:\n\n{task.query}"
        return await self.generate(prompt, options, task)

    async def handle_conversation(self, task: Task) -> tuple[str, bool]:
        options = self.options(min(1.0, self.configuration.temperature + 0.1), 0.95, 1024)
        history = format_history(task.context.get("conversation_history"))
        if history:
            prompt = f"Continue this conversation:\n\n{history}\nUser: {task.query}\n\nAssistant:"
        else:
            prompt = f"Respond to this user query:\n\nUser: {task.query}\n\nAssistant:"
        return await self.generate(prompt, options, task)

    # -- Generation ------------------------------------------------------------

    @property
    def active_model(self) -> str | None:
        """Model this agent generates with; sent with every request."""
        if self.backend is None:
            return None
        return self.configuration.model_id or self.backend.selected_model

    async def generate(
        self, prompt: str, options: GenerationOptions, task: Task
    ) -> tuple[str, bool]:
        """Generate through the backend, retrying transient failures.

        Falls back to the local responder when no model is selected or the
        backend keeps failing. Each attempt counts against ``rate_limit``.
        """
        backend = self.backend
        model = self.active_model
        if backend is None or not model:
            return await self.fallback.respond(task), True

        prompt = self.optimize_prompt(prompt, task)
        policy = self.configuration.retry_policy
        attempt = 0
        while True:
            await self._window.acquire()
            try:
                chunks = [
                    chunk async for chunk in backend.generate_text(prompt, options, model=model)
                ]
                return "".join(chunks), False
            except _RETRYABLE as exc:
                attempt += 1
                if attempt > policy.max_retries:
                    logger.warning("%s: backend failed after %d attempts (%s), using fallback",
                                   self.name, attempt, exc)
                    return await self.fallback.respond(task), True
                delay = policy.delay_for(attempt)
                logger.debug("%s: retry %d in %.1fs (%s)", self.name, attempt, delay, exc)
                await asyncio.sleep(delay)
            except ExternalServiceError as exc:
                logger.warning("%s: backend unavailable (%s), using fallback", self.name, exc)
                return await self.fallback.respond(task), True

    # -- Lifecycle -------------------------------------------------------------

    async def initialize(self, configuration: AgentConfiguration) -> AgentInitResult:
        """Apply *configuration* and select its model. Safe to call repeatedly."""
        self._state = AgentState.initializing()
        self.configuration = configuration
        self._window = SlidingWindow(configuration.rate_limit)
        if configuration.model_id:
            try:
                await self.apply_model(configuration.model_id)
            except AICollabError as exc:
                self._state = AgentState.error(str(exc))
                return AgentInitResult.failure(str(exc))
        self._state = AgentState.idle()
        logger.info("%s initialized", self.name)
        return AgentInitResult.ok()

    async def apply_model(self, name: str) -> None:
        """Make *name* the model used for generation."""
        if self.backend is not None:
            await self.backend.select_model(name)

    async def shutdown(self) -> None:
        """Release cached state. Safe to call repeatedly."""
        if self._state.kind is AgentStateKind.TERMINATED:
            return
        self._state = AgentState.shutting_down()
        self._history.clear()
        self._monitors.clear()
        self.release_resources()
        self._state = AgentState.terminated()
        logger.info("%s shut down", self.name)

    def release_resources(self) -> None:
        """Subclass hook run during shutdown."""


def format_history(history: object) -> str:
    """Render ``[{"role": ..., "content": ...}]`` as User/Assistant lines."""
    if not isinstance(history, list):
        return ""
    lines = []
    for entry in history:
        if not isinstance(entry, dict):
            continue
        role = str(entry.get("role", "user")).lower()
        speaker = "User" if role == "user" else "Assistant"
        lines.append(f"{speaker}: {entry.get('content', '')}")
    return "\n".join(lines)
