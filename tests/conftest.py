"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import patch

import pytest

from aicollab.agents.base import BaseAgent
from aicollab.agents.models import AgentConfiguration, RetryPolicy
from aicollab.config.settings import Settings
from aicollab.exceptions import ServiceUnavailable
from aicollab.tasks.capabilities import Capability


class FakeBackend:
    """In-memory text backend; records every prompt it is asked to generate.

    With ``echo_model`` the reply names the model the request ran on.
    """

    def __init__(self, chunks=("Hello", " world"), model="llama3:latest", error=None, echo_model=False):
        self.chunks = list(chunks)
        self.model = model
        self.error = error
        self.echo_model = echo_model
        self.prompts: list[str] = []
        self.options = []
        self.models: list[str | None] = []

    @property
    def selected_model(self):
        return self.model

    async def generate_text(self, prompt, options=None, model=None):
        model = model or self.model
        self.prompts.append(prompt)
        self.options.append(options)
        self.models.append(model)
        if self.error is not None:
            raise self.error
        if self.echo_model:
            await asyncio.sleep(0)
            yield f"answer from {model}"
            return
        for chunk in self.chunks:
            yield chunk

    async def resolve_model(self, name):
        return name

    async def select_model(self, name):
        self.model = name

    async def check_availability(self):
        return self.error is None

    @property
    def calls(self) -> int:
        return len(self.prompts)


@pytest.fixture
def make_backend():
    """Factory for FakeBackends with custom chunks, model or error."""
    return FakeBackend


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def offline_backend() -> FakeBackend:
    return FakeBackend(error=ServiceUnavailable("connection refused"))


@pytest.fixture
def no_retry_config() -> AgentConfiguration:
    return AgentConfiguration(retry_policy=RetryPolicy.no_retry(), rate_limit=0)


@pytest.fixture
def make_agent(backend, no_retry_config):
    """Factory for BaseAgents backed by the fake backend."""

    def _make(*capabilities: Capability, name: str = "TestAgent", **kwargs) -> BaseAgent:
        kwargs.setdefault("backend", backend)
        kwargs.setdefault("configuration", no_retry_config)
        return BaseAgent(
            name=name,
            capabilities=capabilities or (Capability.BASIC_COMPLETION,),
            **kwargs,
        )

    return _make


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Settings isolated from the real ~/.aicollab/config.json."""
    with patch("aicollab.config.settings.CONFIG_FILE", tmp_path / "config.json"):
        return Settings(
            log_level="DEBUG",
            context_file="",
        )
