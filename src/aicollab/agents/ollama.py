"""LLM-backed agent on top of a local Ollama model."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from datetime import UTC, datetime
from enum import StrEnum

from aicollab.agents.base import BaseAgent
from aicollab.agents.cache import TTLCache
from aicollab.agents.fallback import FallbackResponder
from aicollab.agents.models import AgentConfiguration
from aicollab.config.constants import RESPONSE_CACHE_MAX_ENTRIES, RESPONSE_CACHE_TTL_SECONDS
from aicollab.config.models import AgentDefaults
from aicollab.exceptions import ExternalServiceError, NoModelSelected
from aicollab.services.ollama import OllamaModel, OllamaService
from aicollab.tasks.capabilities import Capability
from aicollab.tasks.models import Task, TaskResult, TaskResultStatus

logger = logging.getLogger("aicollab.agents.ollama")

_GENERAL = frozenset({
    Capability.BASIC_COMPLETION,
    Capability.TEXT_ANALYSIS,
    Capability.CONVERSATIONAL,
    Capability.CONTEXT_RETRIEVAL,
    Capability.DATA_SUMMARIZATION,
})


class ModelFamily(StrEnum):
    LLAMA = "llama"
    CODELLAMA = "codellama"
    MISTRAL = "mistral"
    PHI = "phi"
    GEMMA = "gemma"
    MIXTRAL = "mixtral"
    STABLE = "stable"
    OTHER = "other"

    @classmethod
    def detect(cls, model_name: str) -> ModelFamily:
        name = model_name.lower()
        if "llama" in name:
            return cls.CODELLAMA if "code" in name else cls.LLAMA
        if "mixtral" in name:
            return cls.MIXTRAL
        if "mistral" in name:
            return cls.MISTRAL
        if "phi" in name:
            return cls.PHI
        if "gemma" in name:
            return cls.GEMMA
        if "stable" in name:
            return cls.STABLE
        return cls.OTHER

    @property
    def default_capabilities(self) -> frozenset[Capability]:
        if self in (ModelFamily.LLAMA, ModelFamily.MISTRAL, ModelFamily.GEMMA, ModelFamily.MIXTRAL):
            return _GENERAL
        if self is ModelFamily.CODELLAMA:
            return frozenset({
                Capability.BASIC_COMPLETION,
                Capability.CODE_GENERATION,
                Capability.CODE_COMPLETION,
                Capability.TEXT_ANALYSIS,
            })
        if self is ModelFamily.PHI:
            return frozenset({
                Capability.BASIC_COMPLETION,
                Capability.TEXT_ANALYSIS,
                Capability.CODE_GENERATION,
            })
        if self is ModelFamily.STABLE:
            return frozenset({Capability.IMAGE_GENERATION, Capability.MULTIMODAL})
        return frozenset({Capability.BASIC_COMPLETION})

    @property
    def recommended_temperature(self) -> float:
        return {
            ModelFamily.CODELLAMA: 0.3,
            ModelFamily.GEMMA: 0.8,
            ModelFamily.MIXTRAL: 0.75,
            ModelFamily.STABLE: 0.8,
        }.get(self, 0.7)


def cache_key(model: str, capabilities: Iterable[Capability], query: str) -> str:
    caps = ",".join(sorted(str(c) for c in capabilities))
    return f"{model}|{caps}|{query}"


class OllamaAgent(BaseAgent):
    """Agent whose capabilities follow the model family it was built for.

    Completed, non-fallback responses are cached per (model, capabilities,
    query) for ten minutes.
    """

    def __init__(
        self,
        service: OllamaService,
        model_name: str | None = None,
        capabilities: Iterable[Capability] | None = None,
        configuration: AgentConfiguration | None = None,
        name: str = "OllamaAgent",
        fallback: FallbackResponder | None = None,
    ) -> None:
        self.service = service
        self.model_name = model_name or service.selected_model
        self.family = ModelFamily.detect(self.model_name or "")
        if configuration is None:
            configuration = AgentConfiguration(
                model_id=self.model_name, temperature=self.family.recommended_temperature
            )
        super().__init__(
            name=name,
            capabilities=capabilities if capabilities is not None else self.family.default_capabilities,
            description=f"Ollama agent ({self.model_name or 'no model'})",
            backend=service,
            configuration=configuration,
            fallback=fallback,
        )
        self._cache: TTLCache[TaskResult] = TTLCache(
            RESPONSE_CACHE_TTL_SECONDS, RESPONSE_CACHE_MAX_ENTRIES
        )
        self._model_resolved = False

    # -- Models ----------------------------------------------------------------

    async def list_models(self, force_refresh: bool = False) -> list[OllamaModel]:
        return await self.service.list_models(force_refresh=force_refresh)

    async def select_model(self, name: str) -> None:
        """Switch this agent's model. Raises ModelNotFound if *name* is not installed.

        The service's own selection is left alone, so agents sharing one
        service can run different models.
        """
        self.model_name = await self.service.resolve_model(name)
        self._model_resolved = True
        self.family = ModelFamily.detect(self.model_name)
        self.configuration = self.configuration.model_copy(update={"model_id": self.model_name})
        logger.info("%s now using %s (%s)", self.name, self.model_name, self.family)

    async def apply_model(self, name: str) -> None:
        await self.select_model(name)

    @property
    def active_model(self) -> str | None:
        return self.model_name

    @classmethod
    def from_defaults(
        cls,
        service: OllamaService,
        defaults: AgentDefaults,
        model_name: str | None = None,
        **kwargs,
    ) -> OllamaAgent:
        """Build an agent configured from ``Settings.agent``.

        A ``None`` temperature means the model family's recommendation.
        """
        model_name = model_name or service.selected_model
        temperature = defaults.temperature
        if temperature is None:
            temperature = ModelFamily.detect(model_name or "").recommended_temperature
        configuration = AgentConfiguration.from_defaults(
            defaults, model_id=model_name, temperature=temperature
        )
        return cls(service, model_name=model_name, configuration=configuration, **kwargs)

    # -- Processing ------------------------------------------------------------

    async def process_task(self, task: Task) -> TaskResult:
        self.check_ready(task)
        if not self.model_name:
            raise NoModelSelected()
        if not self._model_resolved:
            try:
                self.model_name = await self.service.resolve_model(self.model_name)
            except ExternalServiceError as exc:
                # Generation falls back to the local responder
                logger.warning("Could not resolve %s: %s", self.model_name, exc)
            else:
                self._model_resolved = True

        key = cache_key(self.model_name, task.required_capabilities, task.query)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("Cache hit for task %s", task.id)
            result = cached.model_copy(update={
                "result_id": str(uuid.uuid4()),
                "task_id": task.id,
                "completed_at": datetime.now(UTC),
                "metadata": {**cached.metadata, "cached": True},
            })
            self._record(result)
            return result

        result = await super().process_task(task)
        if result.status == TaskResultStatus.COMPLETED and not result.metadata.get("fallback"):
            self._cache.put(key, result)
        return result

    def optimize_prompt(self, prompt: str, task: Task) -> str:
        if self.family is ModelFamily.CODELLAMA and task.requires(Capability.CODE_GENERATION):
            return (
                "[INST] Write clean, well-structured code for the request below. "
                f"Return only the code.\n\n{prompt} [/INST]"
            )
        lowered = task.query.lower()
        if "analyze" in lowered or "summarize" in lowered:
            return f"Analyze the following and provide a detailed response:\n\n{prompt}"
        return prompt

    def clear_cache(self) -> None:
        self._cache.clear()

    def release_resources(self) -> None:
        self.clear_cache()
