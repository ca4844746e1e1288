# =============================================================================
# Multi-Agent Orchestrator — Routing, Fan-out, Aggregation, Reflection
# =============================================================================
#
# Top-level entry point of the agent system. Owns one worker per role
# and answers requests by:
#
#   1. Asking the coordinator for a routing decision
#   2. Single route → one expert, failures propagate to the caller
#      Multi route  → all experts concurrently, failures isolated per
#                     expert, sections restored to classifier order
#   3. Optionally passing the draft through the reflector
#
# GRAPH TOPOLOGY (non-streaming path):
#
#   START ──▶ classify ──┬──▶ single ──┬──▶ reflect ──▶ END
#                        └──▶ multi  ──┴──────────────▶ END
#
# The non-streaming path is a LangGraph graph compiled once per
# orchestrator; its nodes are bound methods over the registry. The
# streaming path yields chunks as they arrive, so it is a plain async
# generator over the same dispatch helpers.
#
# CONCURRENCY:
#   - Fan-out is asyncio.gather over at most four expert tasks (a join,
#     not a pool). Each task is wrapped in asyncio.wait_for with the
#     expert deadline.
#   - Completion order never leaks into the output: every result is
#     tagged with its role and re-ordered after the join.
#   - The registry is built once and exposed read-only.
#
# KNOWN LIMITATION: Multi-route streaming is batch-only. The caller gets
# a "coordinating" notice, then the whole aggregated answer as one chunk.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, cast

from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from app.agents.base import BaseAgent
from app.agents.coordinator import (
    CoordinatorAgent,
    MultiRoute,
    RoutingDecision,
    SingleRoute,
)
from app.agents.errors import AgentNotFoundError, ExpertTimeoutError
from app.agents.experts import (
    CustomerServiceAgent,
    LoanExpertAgent,
    PolicyExpertAgent,
    RiskAssessmentAgent,
)
from app.agents.message import AgentMessage, MessageType
from app.agents.reflector import ReflectorAgent
from app.agents.roles import AgentRole
from app.agents.tools import build_financial_tools
from app.config import settings
from app.services.llm import LLMProvider, get_llm_provider
from app.services.retrieval import PolicyRetriever, get_policy_retriever

logger = logging.getLogger(__name__)

COORDINATING_NOTICE = "正在协调多个专家Agent为您服务...\n\n"
REFLECTION_INSTRUCTION = "请审阅以下回答的合规性与风险提示是否充分。"

_SECTION_RULE = "━━━━━━━━━━━━━━━━━━━━━━━━"
_AGGREGATE_HEADER = "📋 综合多位专家的分析结果：\n\n"


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


@dataclass
class AggregatedResult:
    """
    Expert outputs in priority order plus the composite answer text.

    `sections` order is the classifier's order, never completion order.
    """

    sections: list[tuple[AgentRole, str]]
    text: str = field(init=False)

    def __post_init__(self) -> None:
        self.text = format_aggregated(self.sections)


def format_aggregated(sections: list[tuple[AgentRole, str]]) -> str:
    """
    Render expert sections as one answer.

    Example:
        📋 综合多位专家的分析结果：

        ━━━━━━━━━━━━━━━━━━━━━━━━
        【贷款专家】

        月供约 5949.37 元...

        ━━━━━━━━━━━━━━━━━━━━━━━━
        以上是 2 位专家的综合意见。
    """
    parts = [_AGGREGATE_HEADER]
    for role, content in sections:
        parts.append(f"{_SECTION_RULE}\n【{role.display_name}】\n\n{content}\n\n")
    parts.append(f"{_SECTION_RULE}\n以上是 {len(sections)} 位专家的综合意见。")
    return "".join(parts)


def failure_placeholder(role: AgentRole, error: BaseException) -> str:
    return f"{role.display_name} failed: {error}"


@dataclass(frozen=True)
class ReflectedAnswer:
    """Outcome of a reflection request; `reflected` is False when the draft came back."""

    answer: str
    reflected: bool


# ---------------------------------------------------------------------------
# Graph State
# ---------------------------------------------------------------------------


class OrchestratorState(TypedDict, total=False):
    """State flowing through the orchestration graph."""

    # --- Input (set by caller) ---
    question: str
    session_id: str | None
    user_id: str | None
    with_reflection: bool

    # --- Intermediate (set by nodes) ---
    decision: RoutingDecision
    draft_answer: str
    source_agent: str

    # --- Output ---
    answer: str
    reflected: bool


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class MultiAgentOrchestrator:
    """
    Owns the role → worker registry and runs requests through it.

    All six workers are required. Timeouts default to settings.
    """

    def __init__(
        self,
        coordinator: CoordinatorAgent,
        loan_expert: BaseAgent,
        policy_expert: BaseAgent,
        risk_assessment: BaseAgent,
        customer_service: BaseAgent,
        reflector: BaseAgent,
        expert_timeout_seconds: float | None = None,
        reflection_timeout_seconds: float | None = None,
    ) -> None:
        registry: dict[AgentRole, BaseAgent] = {}
        for expected, agent in (
            (AgentRole.COORDINATOR, coordinator),
            (AgentRole.LOAN_EXPERT, loan_expert),
            (AgentRole.POLICY_EXPERT, policy_expert),
            (AgentRole.RISK_ASSESSMENT, risk_assessment),
            (AgentRole.CUSTOMER_SERVICE, customer_service),
            (AgentRole.REFLECTOR, reflector),
        ):
            if agent is None:
                raise ValueError(f"No agent registered for {expected.name}")
            if agent.role is not expected:
                raise ValueError(
                    f"Agent for {expected.name} has role {agent.role.name}"
                )
            registry[expected] = agent

        self._coordinator = coordinator
        self._registry: Mapping[AgentRole, BaseAgent] = MappingProxyType(registry)
        self._expert_timeout = (
            expert_timeout_seconds
            if expert_timeout_seconds is not None
            else settings.expert_timeout_seconds
        )
        self._reflection_timeout = (
            reflection_timeout_seconds
            if reflection_timeout_seconds is not None
            else settings.reflection_timeout_seconds
        )
        self._graph = self._build_graph()

        logger.info(
            "MultiAgentOrchestrator initialised with %d agents", len(self._registry),
        )

    @property
    def registry(self) -> Mapping[AgentRole, BaseAgent]:
        return self._registry

    @property
    def coordinator(self) -> CoordinatorAgent:
        return self._coordinator

    def get_agent(self, role: AgentRole) -> BaseAgent:
        try:
            return self._registry[role]
        except KeyError:
            raise AgentNotFoundError(role) from None

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    async def process_request(
        self,
        user_message: str,
        session_id: str | None,
        user_id: str | None,
    ) -> str:
        """
        Answer a request via single- or multi-route dispatch.

        Raises:
            Exception: Whatever the single routed expert raised.
            ExpertTimeoutError: The single routed expert missed its deadline.
        """
        logger.info(
            "[Orchestrator] Request received: session=%s, user=%s, message='%s'",
            session_id, user_id, user_message[:100],
        )
        result = await self._graph.ainvoke(
            self._initial_state(user_message, session_id, user_id, False),
        )
        return result["answer"]

    async def process_request_with_reflection(
        self,
        user_message: str,
        session_id: str | None,
        user_id: str | None,
    ) -> ReflectedAnswer:
        """
        Answer a request, then have the reflector review the draft.

        A reflector failure, timeout or empty review returns the draft
        unchanged with `reflected=False`.
        """
        logger.info(
            "[Orchestrator] Reflection request received: session=%s, user=%s",
            session_id, user_id,
        )
        result = await self._graph.ainvoke(
            self._initial_state(user_message, session_id, user_id, True),
        )
        return ReflectedAnswer(
            answer=result["answer"], reflected=result.get("reflected", False),
        )

    async def process_request_stream(
        self,
        user_message: str,
        session_id: str | None,
        user_id: str | None,
    ) -> AsyncIterator[str]:
        """
        Answer a request as a stream of text chunks.

        Single route streams the expert directly; each chunk must arrive
        within the expert deadline. Multi route yields a notice, then the
        aggregated answer as one chunk. Closing the stream (or cancelling
        its consumer) cancels in-flight experts.

        Raises:
            ExpertTimeoutError: The single routed expert went silent for
                longer than the expert deadline.
        """
        logger.info(
            "[Orchestrator] Streaming request received: session=%s, user=%s, "
            "message='%s'",
            session_id, user_id, user_message[:100],
        )

        if self._coordinator.requires_multi_agent(user_message):
            roles = await self._coordinator.identify_required_agents(
                user_message, session_id,
            )
            logger.info(
                "[Orchestrator] Streaming multi-agent mode: %s",
                [r.name for r in roles],
            )
            yield COORDINATING_NOTICE
            aggregated = await self._dispatch_all(
                roles, user_message, session_id, user_id,
            )
            yield aggregated.text
            return

        role = await self._coordinator.identify_intent(user_message, session_id)
        logger.info("[Orchestrator] Streaming single-agent route: %s", role.name)
        message = self._task_for(role, user_message, session_id, user_id)
        stream = self.get_agent(role).execute_stream(message)
        try:
            while True:
                try:
                    chunk = await asyncio.wait_for(
                        anext(stream, None), self._expert_timeout,
                    )
                except asyncio.TimeoutError:
                    raise ExpertTimeoutError(
                        role, self._expert_timeout, session_id=session_id,
                    ) from None
                if chunk is None:
                    break
                yield chunk
        finally:
            await stream.aclose()

    async def process_multi_agent_request(
        self,
        user_message: str,
        session_id: str | None,
        user_id: str | None,
    ) -> str:
        """Force the multi-route path using the classifier's role list."""
        roles = await self._coordinator.identify_required_agents(
            user_message, session_id,
        )
        aggregated = await self._dispatch_all(roles, user_message, session_id, user_id)
        return aggregated.text

    def get_agent_status_summary(self) -> dict[str, dict[str, Any]]:
        """Live status and counters per role, keyed by role name."""
        return {role.name: agent.status() for role, agent in self._registry.items()}

    def reset_all_metrics(self) -> None:
        for agent in self._registry.values():
            agent.reset_metrics()
        logger.info("[Orchestrator] All agent metrics reset")

    # -----------------------------------------------------------------------
    # Graph
    # -----------------------------------------------------------------------

    def _build_graph(self):
        builder = StateGraph(OrchestratorState)
        builder.add_node("classify", self._classify_node)
        builder.add_node("single", self._single_node)
        builder.add_node("multi", self._multi_node)
        builder.add_node("reflect", self._reflect_node)

        builder.add_edge(START, "classify")
        builder.add_conditional_edges(
            "classify", _select_route, {"single": "single", "multi": "multi"},
        )
        builder.add_conditional_edges(
            "single", _after_dispatch, {"reflect": "reflect", "done": END},
        )
        builder.add_conditional_edges(
            "multi", _after_dispatch, {"reflect": "reflect", "done": END},
        )
        builder.add_edge("reflect", END)
        return builder.compile()

    @staticmethod
    def _initial_state(
        user_message: str,
        session_id: str | None,
        user_id: str | None,
        with_reflection: bool,
    ) -> OrchestratorState:
        return {
            "question": user_message,
            "session_id": session_id,
            "user_id": user_id,
            "with_reflection": with_reflection,
        }

    async def _classify_node(self, state: OrchestratorState) -> dict:
        """Run the coordinator as a worker and decode its routing reply."""
        request = AgentMessage(
            sender=AgentRole.COORDINATOR,
            receiver=AgentRole.COORDINATOR,
            message_type=MessageType.TASK_ASSIGNMENT,
            content=state["question"],
            session_id=state.get("session_id"),
        )
        request.add_data("userId", state.get("user_id"))

        reply = await self._coordinator.execute(request)
        decision = decision_from_reply(reply)

        if isinstance(decision, MultiRoute):
            logger.info(
                "[Orchestrator] Multi-agent mode: %s",
                [r.name for r in decision.roles],
            )
        else:
            logger.info("[Orchestrator] Single-agent route: %s", decision.role.name)
        return {"decision": decision}

    async def _single_node(self, state: OrchestratorState) -> dict:
        decision = cast(SingleRoute, state["decision"])
        agent = self.get_agent(decision.role)
        result = await self._execute_with_timeout(
            agent, decision.message, self._expert_timeout,
        )
        return {
            "draft_answer": result.content,
            "answer": result.content,
            "source_agent": decision.role.name,
        }

    async def _multi_node(self, state: OrchestratorState) -> dict:
        decision = cast(MultiRoute, state["decision"])
        aggregated = await self._dispatch_all(
            list(decision.roles),
            state["question"],
            state.get("session_id"),
            state.get("user_id"),
        )
        return {
            "draft_answer": aggregated.text,
            "answer": aggregated.text,
            "source_agent": ",".join(r.name for r in decision.roles),
        }

    async def _reflect_node(self, state: OrchestratorState) -> dict:
        draft = state["draft_answer"]
        session_id = state.get("session_id")

        message = AgentMessage.create_task_assignment(
            sender=AgentRole.COORDINATOR,
            receiver=AgentRole.REFLECTOR,
            content=REFLECTION_INSTRUCTION,
            session_id=session_id,
        )
        message.add_data("userId", state.get("user_id"))
        message.add_data("userQuestion", state["question"])
        message.add_data("draftAnswer", draft)
        message.add_data("sourceAgent", state.get("source_agent", "AUTO"))

        try:
            result = await self._execute_with_timeout(
                self.get_agent(AgentRole.REFLECTOR), message, self._reflection_timeout,
            )
        except Exception as e:
            logger.warning(
                "[Orchestrator] Reflection failed, returning draft (session=%s): %s",
                session_id, e,
            )
            return {"answer": draft, "reflected": False}

        if not result.content.strip():
            logger.warning(
                "[Orchestrator] Reflector returned empty text, returning draft "
                "(session=%s)",
                session_id,
            )
            return {"answer": draft, "reflected": False}
        return {"answer": result.content, "reflected": True}

    # -----------------------------------------------------------------------
    # Dispatch helpers
    # -----------------------------------------------------------------------

    @staticmethod
    def _task_for(
        role: AgentRole,
        user_message: str,
        session_id: str | None,
        user_id: str | None,
    ) -> AgentMessage:
        message = AgentMessage.create_task_assignment(
            sender=AgentRole.COORDINATOR,
            receiver=role,
            content=user_message,
            session_id=session_id,
        )
        return message.add_data("userId", user_id)

    @staticmethod
    async def _execute_with_timeout(
        agent: BaseAgent,
        message: AgentMessage,
        timeout_seconds: float,
    ) -> AgentMessage:
        try:
            return await asyncio.wait_for(agent.execute(message), timeout_seconds)
        except asyncio.TimeoutError:
            raise ExpertTimeoutError(
                agent.role, timeout_seconds, session_id=message.session_id,
            ) from None

    async def _dispatch_all(
        self,
        roles: list[AgentRole],
        user_message: str,
        session_id: str | None,
        user_id: str | None,
    ) -> AggregatedResult:
        """
        Run every role concurrently and aggregate in `roles` order.

        Each expert's failure is caught on its own leg and rendered as a
        placeholder section; one bad expert never aborts the request.
        """
        logger.info(
            "[Orchestrator] Dispatching to %d agents: %s (session=%s)",
            len(roles), [r.name for r in roles], session_id,
        )

        async def run_one(role: AgentRole) -> tuple[AgentRole, str]:
            try:
                agent = self.get_agent(role)
                message = self._task_for(role, user_message, session_id, user_id)
                result = await self._execute_with_timeout(
                    agent, message, self._expert_timeout,
                )
            except Exception as e:
                logger.warning(
                    "[Orchestrator] Agent %s failed (session=%s): %s",
                    role.name, session_id, e,
                )
                return role, failure_placeholder(role, e)
            return role, result.content

        completed = await asyncio.gather(*(run_one(role) for role in roles))

        # Restore classifier order from the role tags
        by_role = dict(completed)
        return AggregatedResult(sections=[(role, by_role[role]) for role in roles])


# ---------------------------------------------------------------------------
# Routing helpers
# ---------------------------------------------------------------------------


def decision_from_reply(reply: AgentMessage) -> RoutingDecision:
    """Decode the coordinator's routing reply into a RoutingDecision."""
    if reply.get_data("requiresMultiAgent", False, bool):
        roles = reply.get_data("requiredAgents", [], list)
        return MultiRoute(roles=tuple(roles))

    role = AgentRole[reply.get_data("targetAgent", expected_type=str)]
    routing_message = reply.get_data("routingMessage", expected_type=AgentMessage)
    return SingleRoute(role=role, message=routing_message)


def _select_route(state: OrchestratorState) -> str:
    return "multi" if isinstance(state["decision"], MultiRoute) else "single"


def _after_dispatch(state: OrchestratorState) -> str:
    return "reflect" if state.get("with_reflection") else "done"


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def build_orchestrator(
    llm: LLMProvider | None = None,
    retriever: PolicyRetriever | None = None,
) -> MultiAgentOrchestrator:
    """
    Wire the six workers around shared collaborators.

    Raises:
        ValueError: If no LLM is given and none is configured.
    """
    llm = llm or get_llm_provider()
    retriever = retriever or get_policy_retriever()
    toolbox = build_financial_tools(retriever)
    return MultiAgentOrchestrator(
        coordinator=CoordinatorAgent(llm),
        loan_expert=LoanExpertAgent(llm, toolbox=toolbox),
        policy_expert=PolicyExpertAgent(llm, retriever, toolbox=toolbox),
        risk_assessment=RiskAssessmentAgent(llm),
        customer_service=CustomerServiceAgent(llm, toolbox=toolbox),
        reflector=ReflectorAgent(llm),
    )
