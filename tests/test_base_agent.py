# =============================================================================
# Unit Tests — Worker Lifecycle, State and Metrics
# =============================================================================
#
# Exercises the execute()/execute_stream() template through a tiny
# in-test worker whose behaviour is scripted per test.
# =============================================================================

from __future__ import annotations

import asyncio
import threading
from collections.abc import AsyncIterator
from unittest.mock import AsyncMock

import pytest

from app.agents.base import AgentMetrics, AgentState, BaseAgent, format_supplementary_data
from app.agents.errors import AgentExecutionError
from app.agents.message import AgentMessage
from app.agents.roles import AgentRole
from app.services.llm import LLMResponse


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


async def _collect(stream: AsyncIterator[str]) -> list[str]:
    return [chunk async for chunk in stream]


class _ScriptedAgent(BaseAgent):
    """Worker whose reply, chunks and failure are set by the test."""

    def __init__(self, reply="ok", chunks=("a", "b"), error=None, llm=None):
        super().__init__(AgentRole.LOAN_EXPERT, llm)
        self.reply = reply
        self.chunks = list(chunks)
        self.error = error

    @property
    def system_prompt(self) -> str:
        return "test prompt"

    async def handle_message(self, message: AgentMessage) -> AgentMessage:
        if self.error is not None:
            raise self.error
        return message.create_response(self.reply)

    async def handle_message_stream(self, message: AgentMessage):
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error


def _task(session_id: str | None = "s-1") -> AgentMessage:
    return AgentMessage.create_task_assignment(
        sender=AgentRole.COORDINATOR,
        receiver=AgentRole.LOAN_EXPERT,
        content="贷款20万",
        session_id=session_id,
    )


# ---------------------------------------------------------------------------
# Test: execute()
# ---------------------------------------------------------------------------


class TestExecute:
    def test_success_updates_counters_and_returns_to_idle(self):
        agent = _ScriptedAgent(reply="月供 5949.37")
        result = _run(agent.execute(_task()))

        assert result.content == "月供 5949.37"
        assert agent.state is AgentState.IDLE
        assert agent.metrics.total_processed == 1
        assert agent.metrics.total_errors == 0
        assert agent.metrics.total_response_time_ms >= 0

    def test_failure_sets_error_and_reraises(self):
        agent = _ScriptedAgent(error=RuntimeError("llm down"))
        with pytest.raises(RuntimeError, match="llm down"):
            _run(agent.execute(_task()))

        assert agent.state is AgentState.ERROR
        assert agent.metrics.total_processed == 1
        assert agent.metrics.total_errors == 1

    def test_error_state_persists_until_reset(self):
        agent = _ScriptedAgent(error=RuntimeError("boom"))
        with pytest.raises(RuntimeError):
            _run(agent.execute(_task()))
        assert agent.state is AgentState.ERROR
        assert not agent.is_idle()

        agent.reset()
        assert agent.is_idle()

    def test_next_message_leaves_error_state(self):
        agent = _ScriptedAgent(error=RuntimeError("boom"))
        with pytest.raises(RuntimeError):
            _run(agent.execute(_task()))

        agent.error = None
        _run(agent.execute(_task()))
        assert agent.state is AgentState.IDLE
        assert agent.metrics.total_processed == 2
        assert agent.metrics.total_errors == 1

    def test_cancellation_recorded_as_failure(self):
        agent = _ScriptedAgent(error=asyncio.CancelledError())
        with pytest.raises(asyncio.CancelledError):
            _run(agent.execute(_task()))
        assert agent.metrics.total_errors == 1

    def test_can_handle_checks_receiver(self):
        agent = _ScriptedAgent()
        assert agent.can_handle(_task())
        other = AgentMessage.create_task_assignment(
            AgentRole.COORDINATOR, AgentRole.POLICY_EXPERT, "x", None,
        )
        assert not agent.can_handle(other)


# ---------------------------------------------------------------------------
# Test: execute_stream()
# ---------------------------------------------------------------------------


class TestExecuteStream:
    def test_exhausted_stream_counts_success(self):
        agent = _ScriptedAgent(chunks=["第一段", "第二段"])
        chunks = _run(_collect(agent.execute_stream(_task())))

        assert chunks == ["第一段", "第二段"]
        assert agent.state is AgentState.IDLE
        assert agent.metrics.total_processed == 1
        assert agent.metrics.total_errors == 0

    def test_nothing_happens_before_first_iteration(self):
        agent = _ScriptedAgent()
        agent.execute_stream(_task())
        assert agent.metrics.total_processed == 0

    def test_failure_mid_stream(self):
        agent = _ScriptedAgent(chunks=["partial"], error=RuntimeError("cut"))

        async def consume():
            received = []
            with pytest.raises(RuntimeError, match="cut"):
                async for chunk in agent.execute_stream(_task()):
                    received.append(chunk)
            return received

        assert _run(consume()) == ["partial"]
        assert agent.state is AgentState.ERROR
        assert agent.metrics.total_errors == 1

    def test_early_close_counts_as_completion(self):
        agent = _ScriptedAgent(chunks=["a", "b", "c"])

        async def consume_one():
            stream = agent.execute_stream(_task())
            first = await stream.__anext__()
            await stream.aclose()
            return first

        assert _run(consume_one()) == "a"
        assert agent.state is AgentState.IDLE
        assert agent.metrics.total_processed == 1
        assert agent.metrics.total_errors == 0


# ---------------------------------------------------------------------------
# Test: Metrics
# ---------------------------------------------------------------------------


class TestMetrics:
    def test_average_is_zero_before_any_call(self):
        assert AgentMetrics().average_response_time_ms() == 0.0

    def test_average(self):
        metrics = AgentMetrics()
        for elapsed in (100, 300):
            metrics.record_start()
            metrics.record_success(elapsed)
        assert metrics.average_response_time_ms() == 200.0
        assert metrics.last_response_time_ms == 300

    def test_reset(self):
        metrics = AgentMetrics()
        metrics.record_start()
        metrics.record_error()
        metrics.reset()
        assert metrics.snapshot() == {
            "totalProcessed": 0,
            "totalErrors": 0,
            "totalResponseTimeMs": 0,
            "lastResponseTimeMs": 0,
        }

    def test_concurrent_updates_are_not_lost(self):
        metrics = AgentMetrics()

        def worker():
            for _ in range(1000):
                metrics.record_start()
                metrics.record_success(1)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert metrics.total_processed == 8000
        assert metrics.total_response_time_ms == 8000

    def test_concurrent_executions_on_one_agent(self):
        agent = _ScriptedAgent()

        async def many():
            await asyncio.gather(*(agent.execute(_task()) for _ in range(50)))

        _run(many())
        assert agent.metrics.total_processed == 50
        assert agent.metrics.total_errors == 0

    def test_status_shape(self):
        agent = _ScriptedAgent()
        _run(agent.execute(_task()))
        status = agent.status()
        assert status["state"] == "IDLE"
        assert status["totalProcessed"] == 1
        assert status["totalErrors"] == 0
        assert "averageResponseTimeMs" in status

    def test_reset_metrics(self):
        agent = _ScriptedAgent()
        _run(agent.execute(_task()))
        agent.reset_metrics()
        assert agent.get_metrics()["totalProcessed"] == 0


# ---------------------------------------------------------------------------
# Test: LLM Helpers
# ---------------------------------------------------------------------------


class _CompletingAgent(_ScriptedAgent):
    async def handle_message(self, message: AgentMessage) -> AgentMessage:
        return message.create_response(await self._complete(message, message.content))


class TestLLMHelpers:
    def test_complete_passes_system_prompt(self):
        llm = AsyncMock()
        llm.complete.return_value = LLMResponse(
            content="answer", model="m", input_tokens=3, output_tokens=5,
        )
        agent = _CompletingAgent(llm=llm)

        result = _run(agent.execute(_task()))

        assert result.content == "answer"
        kwargs = llm.complete.call_args.kwargs
        assert kwargs["system"] == "test prompt"
        assert kwargs["messages"] == [{"role": "user", "content": "贷款20万"}]

    def test_missing_llm_is_execution_error(self):
        agent = _CompletingAgent(llm=None)
        with pytest.raises(AgentExecutionError, match="no LLM provider"):
            _run(agent.execute(_task()))
        assert agent.state is AgentState.ERROR


class TestFormatSupplementaryData:
    def test_empty(self):
        assert format_supplementary_data(_task()) == ""

    def test_renders_each_key(self):
        msg = _task().add_data("userId", "u-1")
        assert format_supplementary_data(msg) == "补充信息:\n- userId: u-1\n"
