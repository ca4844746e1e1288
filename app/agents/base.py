# =============================================================================
# Base Agent — Worker Lifecycle, State Machine and Metrics
# =============================================================================
#
# Every worker (coordinator, experts, reflector) subclasses BaseAgent and
# implements only its domain logic:
#   - handle_message()        → one response AgentMessage
#   - handle_message_stream() → async iterator of text chunks
#
# The fixed execution template wraps that logic:
#
#   pre:      state ← PROCESSING, start timer, total_processed += 1
#   handler:  domain logic (may await LLM / retrieval calls)
#   success:  state ← IDLE, add elapsed to total_response_time_ms
#   failure:  state ← ERROR, total_errors += 1, re-raise
#
# STATE MACHINE:
#   IDLE ──message──▶ PROCESSING ──ok──▶ IDLE
#                         └──────fail──▶ ERROR ──reset()──▶ IDLE
#
# There is no automatic ERROR → IDLE transition. An errored worker
# keeps reporting ERROR until reset() or its next message.
#
# CONCURRENCY NOTE: Workers are long-lived singletons, one per role, and
# the same instance serves many requests at once. `state` therefore only
# reflects the most recent transition; it is for status reporting and
# must never be used as a gate. Counters are guarded by a lock so that
# concurrent updates are never lost; no invariant spans two counters.
# =============================================================================

from __future__ import annotations

import abc
import asyncio
import enum
import logging
import threading
import time
from collections.abc import AsyncIterator, Mapping
from typing import Any

from app.agents.errors import AgentExecutionError
from app.agents.message import AgentMessage
from app.agents.roles import AgentRole
from app.services.llm import LLMProvider
from app.services.tools import Tool

logger = logging.getLogger(__name__)


class AgentState(enum.Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    WAITING = "waiting"
    ERROR = "error"
    COMPLETED = "completed"


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


class AgentMetrics:
    """
    Per-worker counters with atomic updates.

    Each update takes the lock for a single counter change. Readers may
    see counters from slightly different moments; average_response_time_ms()
    tolerates that.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.total_processed = 0
        self.total_errors = 0
        self.total_response_time_ms = 0
        self.last_response_time_ms = 0

    def record_start(self) -> None:
        with self._lock:
            self.total_processed += 1

    def record_success(self, elapsed_ms: int) -> None:
        with self._lock:
            self.total_response_time_ms += elapsed_ms
            self.last_response_time_ms = elapsed_ms

    def record_error(self) -> None:
        with self._lock:
            self.total_errors += 1

    def reset(self) -> None:
        with self._lock:
            self.total_processed = 0
            self.total_errors = 0
            self.total_response_time_ms = 0
            self.last_response_time_ms = 0

    def average_response_time_ms(self) -> float:
        """total_response_time_ms / total_processed, or 0 before any call."""
        processed = self.total_processed
        if processed == 0:
            return 0.0
        return self.total_response_time_ms / processed

    def snapshot(self) -> dict[str, int]:
        return {
            "totalProcessed": self.total_processed,
            "totalErrors": self.total_errors,
            "totalResponseTimeMs": self.total_response_time_ms,
            "lastResponseTimeMs": self.last_response_time_ms,
        }


# ---------------------------------------------------------------------------
# Base Agent
# ---------------------------------------------------------------------------


class BaseAgent(abc.ABC):
    """
    Abstract worker with a fixed execute() template.

    Subclasses must provide `system_prompt`, `handle_message()` and
    `handle_message_stream()`. `llm` may be None for workers that never
    call the model (or for a coordinator running rules only).

    `toolbox` supplies handlers for the tool names in `available_tools`;
    only names present in both are offered to the model.
    """

    def __init__(
        self,
        role: AgentRole,
        llm: LLMProvider | None = None,
        toolbox: Mapping[str, Tool] | None = None,
    ) -> None:
        self._role = role
        self._llm = llm
        self._toolbox: Mapping[str, Tool] = toolbox or {}
        self._state = AgentState.IDLE
        self.metrics = AgentMetrics()
        logger.info("[%s] Agent initialised", role.display_name)

    # -----------------------------------------------------------------------
    # Domain logic (subclasses)
    # -----------------------------------------------------------------------

    @property
    @abc.abstractmethod
    def system_prompt(self) -> str:
        """Instructions defining this worker's domain and behaviour."""

    @property
    def available_tools(self) -> list[str]:
        """Names of the tools this worker may offer the model."""
        return []

    def offered_tools(self) -> list[Tool]:
        return [
            self._toolbox[name]
            for name in self.available_tools
            if name in self._toolbox
        ]

    @abc.abstractmethod
    async def handle_message(self, message: AgentMessage) -> AgentMessage:
        """Process one message and return the response message."""

    @abc.abstractmethod
    def handle_message_stream(self, message: AgentMessage) -> AsyncIterator[str]:
        """Process one message, yielding the answer as text chunks."""

    # -----------------------------------------------------------------------
    # Execution template
    # -----------------------------------------------------------------------

    async def execute(self, message: AgentMessage) -> AgentMessage:
        """Run handle_message() inside the lifecycle bracket."""
        start = self._pre_process(message)
        try:
            result = await self.handle_message(message)
        except (Exception, asyncio.CancelledError) as e:
            self._handle_error(message, e)
            raise
        self._post_process(message, start)
        return result

    async def execute_stream(self, message: AgentMessage) -> AsyncIterator[str]:
        """
        Run handle_message_stream() inside the lifecycle bracket.

        Pre-processing happens on first iteration. Post-processing runs
        when the stream is exhausted or when the consumer closes it early;
        an exception (or cancellation) is recorded as a failure.
        """
        start = self._pre_process(message)
        stream = self.handle_message_stream(message)
        try:
            async for chunk in stream:
                yield chunk
        except GeneratorExit:
            logger.info(
                "[%s] Stream for message %s closed by consumer",
                self._role.display_name, message.message_id,
            )
            self._post_process(message, start)
            raise
        except (Exception, asyncio.CancelledError) as e:
            self._handle_error(message, e)
            raise
        else:
            self._post_process(message, start)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------

    def _pre_process(self, message: AgentMessage) -> float:
        logger.info(
            "[%s] Received message %s from %s (session=%s)",
            self._role.display_name,
            message.message_id,
            message.sender.display_name,
            message.session_id,
        )
        self._set_state(AgentState.PROCESSING)
        self.metrics.record_start()
        return time.monotonic()

    def _post_process(self, message: AgentMessage, start: float) -> None:
        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "[%s] Completed message %s in %dms (session=%s)",
            self._role.display_name,
            message.message_id,
            elapsed_ms,
            message.session_id,
        )
        self._set_state(AgentState.IDLE)
        self.metrics.record_success(elapsed_ms)

    def _handle_error(self, message: AgentMessage, error: BaseException) -> None:
        logger.error(
            "[%s] Error processing message %s (session=%s): %r",
            self._role.display_name,
            message.message_id,
            message.session_id,
            error,
        )
        self._set_state(AgentState.ERROR)
        self.metrics.record_error()

    # -----------------------------------------------------------------------
    # LLM helpers
    # -----------------------------------------------------------------------

    def _require_llm(self, message: AgentMessage) -> LLMProvider:
        if self._llm is None:
            raise AgentExecutionError(
                self._role,
                "no LLM provider configured",
                session_id=message.session_id,
            )
        return self._llm

    async def _complete(self, message: AgentMessage, prompt: str) -> str:
        """One request/response LLM call with this worker's system prompt."""
        llm = self._require_llm(message)
        response = await llm.complete(
            messages=[{"role": "user", "content": prompt}],
            system=self.system_prompt,
            tools=self.offered_tools() or None,
        )
        logger.debug(
            "[%s] LLM reply: model=%s, tokens=%d+%d",
            self._role.display_name,
            response.model,
            response.input_tokens,
            response.output_tokens,
        )
        return response.content

    def _stream(self, message: AgentMessage, prompt: str) -> AsyncIterator[str]:
        llm = self._require_llm(message)
        return llm.stream(
            messages=[{"role": "user", "content": prompt}],
            system=self.system_prompt,
            tools=self.offered_tools() or None,
        )

    # -----------------------------------------------------------------------
    # Accessors
    # -----------------------------------------------------------------------

    @property
    def role(self) -> AgentRole:
        return self._role

    @property
    def state(self) -> AgentState:
        return self._state

    def _set_state(self, new_state: AgentState) -> None:
        logger.debug(
            "[%s] State changed: %s -> %s",
            self._role.display_name, self._state.name, new_state.name,
        )
        self._state = new_state

    def can_handle(self, message: AgentMessage) -> bool:
        return message.receiver == self._role

    def is_idle(self) -> bool:
        return self._state is AgentState.IDLE

    def average_response_time_ms(self) -> float:
        return self.metrics.average_response_time_ms()

    def get_metrics(self) -> dict[str, int]:
        return self.metrics.snapshot()

    def reset_metrics(self) -> None:
        self.metrics.reset()
        logger.info("[%s] Metrics reset", self._role.display_name)

    def reset(self) -> None:
        """Clear an ERROR state. The only way out of ERROR besides new work."""
        self._set_state(AgentState.IDLE)

    def status(self) -> dict[str, Any]:
        return {
            "state": self._state.name,
            "totalProcessed": self.metrics.total_processed,
            "totalErrors": self.metrics.total_errors,
            "averageResponseTimeMs": self.average_response_time_ms(),
        }


def format_supplementary_data(message: AgentMessage) -> str:
    """Render the message side channel as a '补充信息' bullet block."""
    if not message.data:
        return ""
    lines = ["补充信息:"]
    for key, value in message.data.items():
        lines.append(f"- {key}: {value}")
    return "\n".join(lines) + "\n"
