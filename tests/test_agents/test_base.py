"""Tests for the shared agent pipeline."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from aicollab.agents.base import Agent, format_history
from aicollab.agents.models import AgentConfiguration, AgentStateKind, RetryPolicy
from aicollab.config.constants import AGENT_RESULT_HISTORY_SIZE
from aicollab.exceptions import (
    AgentTerminated,
    CapabilityNotSupported,
    ModelNotFound,
    RequestFailed,
)
from aicollab.tasks.capabilities import Capability
from aicollab.tasks.models import Task, TaskResultStatus


class TestContract:
    def test_satisfies_protocol(self, make_agent):
        assert isinstance(make_agent(), Agent)

    def test_starts_idle(self, make_agent):
        assert make_agent().get_state().kind is AgentStateKind.IDLE

    def test_can_execute_is_subset_check(self, make_agent):
        agent = make_agent(Capability.TEXT_ANALYSIS, Capability.BASIC_COMPLETION)
        assert agent.can_execute(Task(query="q"))
        assert agent.can_execute(Task(query="q", required_capabilities={Capability.TEXT_ANALYSIS}))
        assert not agent.can_execute(
            Task(query="q", required_capabilities={Capability.TEXT_ANALYSIS, Capability.PLANNING})
        )

    @pytest.mark.asyncio
    async def test_missing_capability_raises_before_work(self, make_agent, backend):
        agent = make_agent(Capability.BASIC_COMPLETION)
        task = Task(query="q", required_capabilities={Capability.PLANNING})
        with pytest.raises(CapabilityNotSupported) as exc_info:
            await agent.process_task(task)
        assert exc_info.value.capability == Capability.PLANNING
        assert backend.calls == 0
        assert agent.get_result_history() == []


class TestPipeline:
    @pytest.mark.asyncio
    async def test_basic_completion(self, make_agent, backend):
        agent = make_agent()
        task = Task(query="Say hello")
        result = await agent.process_task(task)
        assert result.status is TaskResultStatus.COMPLETED
        assert result.task_id == task.id
        assert result.text == "Hello world"
        assert result.metadata["fallback"] is False
        assert backend.prompts == ["Say hello"]
        assert agent.get_state().kind is AgentStateKind.IDLE

    @pytest.mark.asyncio
    async def test_code_generation_prompt_and_fences(self, make_agent, backend):
        agent = make_agent(Capability.CODE_GENERATION)
        task = Task(query="a fizzbuzz function", required_capabilities={Capability.CODE_GENERATION})
        result = await agent.process_task(task)
        assert backend.prompts[0] == "Generate code for: a fizzbuzz function"
        assert result.text.startswith("```") and result.text.endswith("```")
        assert backend.options[0].num_predict == 1024

    @pytest.mark.asyncio
    async def test_text_analysis_route(self, make_agent, backend):
        agent = make_agent(Capability.TEXT_ANALYSIS)
        await agent.process_task(
            Task(query="The quick brown fox", required_capabilities={Capability.TEXT_ANALYSIS})
        )
        assert backend.prompts[0].startswith("Analyze the following text")
        assert backend.prompts[0].endswith("The quick brown fox")

    @pytest.mark.asyncio
    async def test_conversation_uses_history(self, make_agent, backend):
        agent = make_agent(Capability.CONVERSATIONAL)
        history = [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}]
        await agent.process_task(
            Task(
                query="how are you?",
                context={"conversation_history": history},
                required_capabilities={Capability.CONVERSATIONAL},
            )
        )
        prompt = backend.prompts[0]
        assert "User: hi\nAssistant: hello\nUser: how are you?" in prompt
        assert prompt.endswith("Assistant:")

    @pytest.mark.asyncio
    async def test_strips_assistant_prefix(self, make_agent, make_backend):
        agent = make_agent(backend=make_backend(chunks=["Assistant:  fine, thanks  "]))
        result = await agent.process_task(Task(query="q"))
        assert result.text == "fine, thanks"

    @pytest.mark.asyncio
    async def test_num_predict_capped_by_max_tokens(self, make_agent, backend):
        config = AgentConfiguration(max_tokens=300, retry_policy=RetryPolicy.no_retry())
        agent = make_agent(Capability.CODE_GENERATION, configuration=config)
        await agent.process_task(
            Task(query="code please", required_capabilities={Capability.CODE_GENERATION})
        )
        assert backend.options[0].num_predict == 300

    @pytest.mark.asyncio
    async def test_configured_model_sent_with_request(self, make_agent, backend):
        config = AgentConfiguration(model_id="phi3", retry_policy=RetryPolicy.no_retry())
        agent = make_agent(configuration=config)
        await agent.process_task(Task(query="q"))
        assert backend.models == ["phi3"]

    @pytest.mark.asyncio
    async def test_expired_task_times_out_without_backend(self, make_agent, backend):
        agent = make_agent()
        task = Task(query="q", timeout=1)
        task.created_at = task.created_at - timedelta(seconds=5)
        result = await agent.process_task(task)
        assert result.status is TaskResultStatus.TIMED_OUT
        assert result.error
        assert backend.calls == 0

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_failed_result(self, make_agent):
        agent = make_agent()
        with patch.object(agent, "execute_task", AsyncMock(side_effect=RuntimeError("kaput"))):
            result = await agent.process_task(Task(query="q"))
        assert result.status is TaskResultStatus.FAILED
        assert result.error == "kaput"
        assert result.metadata["error_type"] == "RuntimeError"
        assert agent.get_state().kind is AgentStateKind.ERROR

    @pytest.mark.asyncio
    async def test_monitor_removed_after_task(self, make_agent):
        agent = make_agent()
        task = Task(query="q")
        await agent.process_task(task)
        assert agent.get_progress(task.id) is None

    @pytest.mark.asyncio
    async def test_history_is_bounded(self, make_agent):
        agent = make_agent()
        for i in range(AGENT_RESULT_HISTORY_SIZE + 5):
            await agent.process_task(Task(query=str(i)))
        assert len(agent.get_result_history()) == AGENT_RESULT_HISTORY_SIZE

    @pytest.mark.asyncio
    async def test_calls_are_serialized(self, make_agent):
        agent = make_agent()
        active = 0
        peak = 0

        async def slow(task):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return "ok", False

        with patch.object(agent, "execute_task", side_effect=slow):
            await asyncio.gather(*(agent.process_task(Task(query=str(i))) for i in range(3)))
        assert peak == 1


class TestFallback:
    @pytest.mark.asyncio
    async def test_no_backend_uses_fallback(self, make_agent):
        agent = make_agent(backend=None)
        result = await agent.process_task(Task(query="anything"))
        assert result.status is TaskResultStatus.COMPLETED
        assert result.metadata["fallback"] is True
        assert "anything" in result.text

    @pytest.mark.asyncio
    async def test_no_model_uses_fallback(self, make_agent, make_backend):
        agent = make_agent(backend=make_backend(model=None))
        result = await agent.process_task(Task(query="q"))
        assert result.metadata["fallback"] is True

    @pytest.mark.asyncio
    async def test_unavailable_backend_falls_back_immediately(self, make_agent, offline_backend):
        agent = make_agent(backend=offline_backend)
        result = await agent.process_task(Task(query="q"))
        assert result.succeeded
        assert result.metadata["fallback"] is True
        assert offline_backend.calls == 1

    @pytest.mark.asyncio
    async def test_retries_transient_failures(self, make_agent, make_backend):
        backend = make_backend(error=RequestFailed("HTTP 500", status_code=500))
        config = AgentConfiguration(retry_policy=RetryPolicy(max_retries=2, initial_delay=0.0))
        agent = make_agent(backend=backend, configuration=config)
        result = await agent.process_task(Task(query="q"))
        assert backend.calls == 3
        assert result.metadata["fallback"] is True

    def test_retry_delays(self):
        policy = RetryPolicy(max_retries=3, initial_delay=1.0, backoff_factor=2.0)
        assert [policy.delay_for(n) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_initialize_selects_model(self, make_agent, backend):
        agent = make_agent()
        result = await agent.initialize(AgentConfiguration(model_id="mistral"))
        assert result.success
        assert backend.model == "mistral"
        assert agent.get_state().kind is AgentStateKind.IDLE

    @pytest.mark.asyncio
    async def test_initialize_failure(self, make_agent, backend):
        agent = make_agent()
        with patch.object(backend, "select_model", AsyncMock(side_effect=ModelNotFound("x"))):
            result = await agent.initialize(AgentConfiguration(model_id="x"))
        assert not result.success
        assert "x" in result.message
        assert agent.get_state().kind is AgentStateKind.ERROR

    @pytest.mark.asyncio
    async def test_shutdown_is_idempotent(self, make_agent):
        agent = make_agent()
        await agent.process_task(Task(query="q"))
        await agent.shutdown()
        await agent.shutdown()
        assert agent.get_state().kind is AgentStateKind.TERMINATED
        assert agent.get_result_history() == []

    @pytest.mark.asyncio
    async def test_terminated_agent_rejects_tasks(self, make_agent, backend):
        agent = make_agent()
        await agent.shutdown()
        with pytest.raises(AgentTerminated):
            await agent.process_task(Task(query="q"))
        assert backend.calls == 0
        assert agent.get_state().kind is AgentStateKind.TERMINATED

    @pytest.mark.asyncio
    async def test_shutdown_during_task_stays_terminated(self, make_agent):
        agent = make_agent()

        async def shut_down_midway(task):
            await agent.shutdown()
            return "ok", False

        with patch.object(agent, "execute_task", side_effect=shut_down_midway):
            await agent.process_task(Task(query="q"))
        assert agent.get_state().kind is AgentStateKind.TERMINATED


def test_format_history_skips_garbage():
    assert format_history("not a list") == ""
    assert format_history([{"role": "user", "content": "a"}, 42, {"role": "bot", "content": "b"}]) == (
        "User: a\nAssistant: b"
    )
