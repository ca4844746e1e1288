# =============================================================================
# Expert Agents — Domain Workers
# =============================================================================
#
# Four thin workers, one per business domain:
#   LoanExpertAgent        — loan maths, repayment plans
#   PolicyExpertAgent      — policy lookup (retrieval-augmented)
#   RiskAssessmentAgent    — eligibility, limits, risk level
#   CustomerServiceAgent   — complaints, penalty waivers, transactions
#
# Each builds a prompt from the task message and calls the LLM with its
# role's system prompt, offering the tools its role lists (see
# app.agents.tools). What the model says is its own business; the
# contract is only "one response message" (execute) or "a finite stream
# of text chunks" (execute_stream).
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Mapping

from app.agents.base import BaseAgent, format_supplementary_data
from app.agents.message import AgentMessage
from app.agents.prompts import SYSTEM_PROMPTS
from app.agents.roles import AgentRole
from app.agents.tools import build_financial_tools
from app.config import settings
from app.services.llm import LLMProvider
from app.services.retrieval import PolicyRetriever, PolicySearchResult
from app.services.tools import Tool

logger = logging.getLogger(__name__)


class _PromptedExpert(BaseAgent):
    """Shared request/stream plumbing for experts driven by one prompt."""

    _question_label = "用户问题"

    @property
    def system_prompt(self) -> str:
        return SYSTEM_PROMPTS[self.role]

    async def build_prompt(self, message: AgentMessage) -> str:
        return (
            f"{self._question_label}: {message.content}\n\n"
            f"{format_supplementary_data(message)}"
        )

    async def handle_message(self, message: AgentMessage) -> AgentMessage:
        logger.info(
            "[%s] Handling task: %s", self.role.display_name, message.content[:80],
        )
        prompt = await self.build_prompt(message)
        reply = await self._complete(message, prompt)
        return message.create_response(reply)

    async def handle_message_stream(
        self,
        message: AgentMessage,
    ) -> AsyncIterator[str]:
        logger.info(
            "[%s] Handling streaming task: %s",
            self.role.display_name, message.content[:80],
        )
        prompt = await self.build_prompt(message)
        async for chunk in self._stream(message, prompt):
            yield chunk


# ---------------------------------------------------------------------------
# Loan Expert
# ---------------------------------------------------------------------------


class LoanExpertAgent(_PromptedExpert):
    """Loan calculation and repayment advice."""

    def __init__(
        self,
        llm: LLMProvider | None = None,
        toolbox: Mapping[str, Tool] | None = None,
    ) -> None:
        super().__init__(
            AgentRole.LOAN_EXPERT,
            llm,
            toolbox if toolbox is not None else build_financial_tools(),
        )

    @property
    def available_tools(self) -> list[str]:
        return ["calculateLoan"]


# ---------------------------------------------------------------------------
# Policy Expert
# ---------------------------------------------------------------------------


class PolicyExpertAgent(_PromptedExpert):
    """
    Policy Q&A grounded in retrieved policy text.

    A retrieval failure is not fatal: the expert answers without context
    and the prompt tells the model nothing was found.
    """

    def __init__(
        self,
        llm: LLMProvider | None = None,
        retriever: PolicyRetriever | None = None,
        top_k: int | None = None,
        toolbox: Mapping[str, Tool] | None = None,
    ) -> None:
        super().__init__(
            AgentRole.POLICY_EXPERT,
            llm,
            toolbox if toolbox is not None else build_financial_tools(retriever),
        )
        self._retriever = retriever
        self._top_k = top_k or settings.retrieval_top_k

    @property
    def available_tools(self) -> list[str]:
        return ["queryPolicy"]

    async def retrieve(self, message: AgentMessage) -> list[PolicySearchResult]:
        if self._retriever is None:
            return []
        try:
            return await self._retriever.search(message.content, top_k=self._top_k)
        except Exception as e:
            logger.warning(
                "[%s] Policy retrieval failed (session=%s): %s",
                self.role.display_name, message.session_id, e,
            )
            return []

    async def build_prompt(self, message: AgentMessage) -> str:
        policies = await self.retrieve(message)
        return _format_policy_prompt(message, policies)

    async def handle_message(self, message: AgentMessage) -> AgentMessage:
        logger.info("[%s] Handling task: %s", self.role.display_name, message.content[:80])
        policies = await self.retrieve(message)
        reply = await self._complete(message, _format_policy_prompt(message, policies))
        result = message.create_response(reply)
        result.add_data("retrievedPolicies", len(policies))
        return result


def _format_policy_prompt(
    message: AgentMessage,
    policies: list[PolicySearchResult],
) -> str:
    """
    Inject retrieved policies as numbered context.

    Example:
        用户问题: 小微企业贷款有什么优惠？

        --- 检索到的相关政策 ---
        [政策 1]
        小微企业首贷利率下浮 20 个基点...
        相似度: 0.91
        --- 检索结束 ---
    """
    parts = [f"用户问题: {message.content}\n"]
    if policies:
        parts.append("--- 检索到的相关政策 ---")
        for i, policy in enumerate(policies, 1):
            parts.append(f"[政策 {i}]\n{policy.content}\n相似度: {policy.similarity_score}")
        parts.append("--- 检索结束 ---\n")
    else:
        parts.append("[注意] 未检索到相关政策，请勿编造政策条款。\n")
    parts.append(format_supplementary_data(message))
    return "\n".join(parts)


# ---------------------------------------------------------------------------
# Risk Assessment
# ---------------------------------------------------------------------------


class RiskAssessmentAgent(_PromptedExpert):
    """Eligibility and limit assessment; tags the reply with a risk level."""

    _question_label = "评估请求"

    def __init__(self, llm: LLMProvider | None = None) -> None:
        super().__init__(AgentRole.RISK_ASSESSMENT, llm)

    async def build_prompt(self, message: AgentMessage) -> str:
        user_id = message.get_data("userId")
        prompt = await super().build_prompt(message)
        if user_id is None:
            prompt += "\n[注意] 未提供用户标识，将基于当前请求进行初步评估。\n"
        return prompt

    async def handle_message(self, message: AgentMessage) -> AgentMessage:
        result = await super().handle_message(message)
        result.add_data("riskLevel", extract_risk_level(result.content))
        return result


def extract_risk_level(reply: str) -> str:
    """GREEN / RED when the reply says so, YELLOW otherwise."""
    if "GREEN" in reply or "低风险" in reply:
        return "GREEN"
    if "RED" in reply or "高风险" in reply:
        return "RED"
    return "YELLOW"


# ---------------------------------------------------------------------------
# Customer Service
# ---------------------------------------------------------------------------


class CustomerServiceAgent(_PromptedExpert):
    """Complaints, penalty-interest waivers and account transactions."""

    _question_label = "客户请求"

    def __init__(
        self,
        llm: LLMProvider | None = None,
        toolbox: Mapping[str, Tool] | None = None,
    ) -> None:
        super().__init__(
            AgentRole.CUSTOMER_SERVICE,
            llm,
            toolbox if toolbox is not None else build_financial_tools(),
        )

    @property
    def available_tools(self) -> list[str]:
        return ["applyWaiver", "queryWaiverStatus"]
