"""Ollama HTTP client: model listing, selection and streaming generation."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import AsyncIterator
from datetime import datetime
from typing import Any

import httpx
from pydantic import BaseModel, Field

from aicollab.config.constants import DEFAULT_OLLAMA_URL, MODELS_CACHE_TTL_SECONDS
from aicollab.exceptions import (
    ModelNotFound,
    NoModelSelected,
    RequestFailed,
    ResponseParseError,
    ServiceUnavailable,
)

logger = logging.getLogger("aicollab.services.ollama")


class GenerationOptions(BaseModel, frozen=True):
    temperature: float = 0.7
    top_p: float = 0.9
    num_predict: int = 512


class OllamaModel(BaseModel):
    """One entry from ``/api/tags``."""

    name: str
    size: int = 0
    modified_at: datetime | None = None
    digest: str = ""
    details: dict[str, Any] = Field(default_factory=dict)

    @property
    def family(self) -> str:
        return str(self.details.get("family", ""))

    @property
    def parameter_size(self) -> str:
        return str(self.details.get("parameter_size", ""))


class PullProgress(BaseModel):
    status: str
    digest: str = ""
    total: int | None = None
    completed: int | None = None

    @property
    def fraction(self) -> float | None:
        if not self.total or self.completed is None:
            return None
        return self.completed / self.total


def _same_model(a: str, b: str) -> bool:
    """``llama3`` and ``llama3:latest`` name the same model."""
    def norm(name: str) -> str:
        return name if ":" in name else f"{name}:latest"

    return norm(a) == norm(b)


class OllamaService:
    """Text-generation backend talking to a local Ollama server.

    Each request opens its own ``httpx.AsyncClient``. Pass *transport* to
    route requests somewhere other than the network (tests use
    ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str = DEFAULT_OLLAMA_URL,
        timeout: float = 120.0,
        models_cache_ttl: float = MODELS_CACHE_TTL_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._models_cache_ttl = models_cache_ttl
        self._transport = transport
        self._models: list[OllamaModel] = []
        self._models_fetched_at: float | None = None
        self._selected_model: str | None = None

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url, timeout=self._timeout, transport=self._transport
        )

    @property
    def selected_model(self) -> str | None:
        return self._selected_model

    # -- Models ----------------------------------------------------------------

    async def list_models(self, force_refresh: bool = False) -> list[OllamaModel]:
        """Return installed models, cached for ``models_cache_ttl`` seconds."""
        if (
            not force_refresh
            and self._models_fetched_at is not None
            and time.monotonic() - self._models_fetched_at < self._models_cache_ttl
        ):
            return list(self._models)

        try:
            async with self._client() as client:
                resp = await client.get("/api/tags")
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            raise ServiceUnavailable(str(exc)) from exc
        except httpx.HTTPError as exc:
            raise RequestFailed(str(exc)) from exc

        if resp.status_code != 200:
            raise RequestFailed(f"HTTP {resp.status_code}", status_code=resp.status_code)
        try:
            raw = resp.json().get("models", [])
            models = [OllamaModel.model_validate(m) for m in raw]
        except ValueError as exc:
            raise ResponseParseError(str(exc)) from exc

        self._models = models
        self._models_fetched_at = time.monotonic()
        logger.debug("Fetched %d models from %s", len(models), self.base_url)
        return list(models)

    async def resolve_model(self, name: str) -> str:
        """Installed name for *name* (``llama3`` -> ``llama3:latest``).

        Raises ModelNotFound if it is not installed. Does not change the
        selected model.
        """
        models = await self.list_models()
        match = next((m for m in models if _same_model(m.name, name)), None)
        if match is None:
            raise ModelNotFound(name)
        return match.name

    async def select_model(self, name: str) -> None:
        """Select *name* as the default model. Raises ModelNotFound if it is not installed."""
        self._selected_model = await self.resolve_model(name)
        logger.info("Selected model %s", self._selected_model)

    async def check_availability(self) -> bool:
        try:
            async with self._client() as client:
                resp = await client.get("/api/tags")
        except httpx.HTTPError as exc:
            logger.debug("Ollama not reachable at %s: %s", self.base_url, exc)
            return False
        return resp.status_code == 200

    # -- Generation ------------------------------------------------------------

    async def generate_text(
        self,
        prompt: str,
        options: GenerationOptions | None = None,
        model: str | None = None,
    ) -> AsyncIterator[str]:
        """Stream response text chunks for *prompt*.

        Runs on *model* when given, otherwise on the selected model. Ends
        after the chunk marked ``done`` or raises exactly once. Closing the
        iterator early closes the HTTP response.
        """
        model = model or self._selected_model
        if not model:
            raise NoModelSelected()
        options = options or GenerationOptions()
        body = {
            "model": model,
            "prompt": prompt,
            "stream": True,
            "options": options.model_dump(),
        }

        try:
            async with self._client() as client:
                async with client.stream("POST", "/api/generate", json=body) as resp:
                    if resp.status_code != 200:
                        detail = (await resp.aread()).decode(errors="replace")
                        raise RequestFailed(
                            f"HTTP {resp.status_code}: {detail.strip()}", status_code=resp.status_code
                        )
                    async for line in resp.aiter_lines():
                        if not line.strip():
                            continue
                        try:
                            event = json.loads(line)
                        except json.JSONDecodeError as exc:
                            raise ResponseParseError(f"bad stream line: {line[:80]!r}") from exc
                        if "error" in event:
                            raise RequestFailed(str(event["error"]))
                        chunk = event.get("response", "")
                        if chunk:
                            yield chunk
                        if event.get("done"):
                            return
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            raise ServiceUnavailable(str(exc)) from exc
        except httpx.HTTPError as exc:
            raise RequestFailed(str(exc)) from exc

    async def generate(
        self, prompt: str, options: GenerationOptions | None = None, model: str | None = None
    ) -> str:
        """Collect the full streamed response."""
        parts = [chunk async for chunk in self.generate_text(prompt, options, model=model)]
        return "".join(parts)

    async def pull_model(self, name: str) -> AsyncIterator[PullProgress]:
        """Download *name*, yielding progress events until ``success``."""
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=None, transport=self._transport
            ) as client:
                async with client.stream(
                    "POST", "/api/pull", json={"name": name, "stream": True}
                ) as resp:
                    if resp.status_code != 200:
                        raise RequestFailed(f"HTTP {resp.status_code}", status_code=resp.status_code)
                    async for line in resp.aiter_lines():
                        if not line.strip():
                            continue
                        try:
                            event = json.loads(line)
                        except json.JSONDecodeError as exc:
                            raise ResponseParseError(f"bad pull line: {line[:80]!r}") from exc
                        if "error" in event:
                            raise RequestFailed(str(event["error"]))
                        progress = PullProgress.model_validate(event)
                        yield progress
                        if progress.status == "success":
                            break
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            raise ServiceUnavailable(str(exc)) from exc
        except httpx.HTTPError as exc:
            raise RequestFailed(str(exc)) from exc
        # New model shows up on the next listing
        self._models_fetched_at = None
