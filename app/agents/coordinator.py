# =============================================================================
# Coordinator Agent — Hybrid Rule + AI Intent Classification
# =============================================================================
#
# Decides which expert(s) should handle a request.
#
# CLASSIFICATION (identify_all_intents):
#   1. Rule pass — match the text against DOMAIN_KEYWORDS for all four
#      domains, collecting every hit in precedence order. A non-empty
#      result is returned immediately: rules always win over AI.
#   2. AI pass — only when no rule matched. The LLM is asked for a
#      comma-separated, priority-ordered subset of the four experts.
#      Unknown tokens (and COORDINATOR / REFLECTOR) are discarded,
#      duplicates removed keeping first-seen order.
#   3. Fallback — [LOAN_EXPERT] when the AI pass yields nothing, fails,
#      misses its deadline, or is disabled. Classification never raises.
#
# ROUTING (route):
#   requires_multi_agent(text) → MultiRoute(ordered roles)
#   otherwise                  → SingleRoute(role, prepared task message)
#
# requires_multi_agent() is rules-only and synchronous. It counts matched
# domains in the same keyword table as the rule pass, so a multi route
# always carries at least two rule-matched roles.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

from app.agents.base import BaseAgent
from app.agents.message import AgentMessage
from app.agents.prompts import COORDINATOR_PROMPT, INTENT_CLASSIFICATION_PROMPT
from app.agents.roles import AgentRole, matching_roles
from app.config import settings
from app.services.llm import LLMProvider

logger = logging.getLogger(__name__)

FALLBACK_ROLE = AgentRole.LOAN_EXPERT

# ASCII comma, full-width comma, enumeration comma, any whitespace
_TOKEN_SEPARATORS = re.compile(r"[,，、\s]+")
_TOKEN_PUNCTUATION = ".。;；:：'\"`[]()"


# ---------------------------------------------------------------------------
# Routing Decision
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SingleRoute:
    """Dispatch to exactly one expert with a prepared task message."""

    role: AgentRole
    message: AgentMessage


@dataclass(frozen=True)
class MultiRoute:
    """Fan out to several experts; order is the aggregation order."""

    roles: tuple[AgentRole, ...]


RoutingDecision = SingleRoute | MultiRoute


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------


class CoordinatorAgent(BaseAgent):
    """
    Classification worker. Its "domain logic" is the routing decision.

    Args:
        llm: Collaborator for the AI pass. None → rules + fallback only.
        ai_enabled: Overrides settings.intent_ai_enabled.
        ai_timeout_seconds: Deadline for the AI pass; overrides
            settings.intent_timeout_seconds.
    """

    def __init__(
        self,
        llm: LLMProvider | None = None,
        ai_enabled: bool | None = None,
        ai_timeout_seconds: float | None = None,
    ) -> None:
        super().__init__(AgentRole.COORDINATOR, llm)
        self._ai_enabled = (
            settings.intent_ai_enabled if ai_enabled is None else ai_enabled
        )
        self._ai_timeout = (
            settings.intent_timeout_seconds
            if ai_timeout_seconds is None
            else ai_timeout_seconds
        )

    @property
    def system_prompt(self) -> str:
        return COORDINATOR_PROMPT

    # -----------------------------------------------------------------------
    # Classification
    # -----------------------------------------------------------------------

    def requires_multi_agent(self, user_message: str) -> bool:
        """True iff at least two distinct domains match the text."""
        return len(matching_roles(user_message)) >= 2

    async def identify_all_intents(
        self,
        user_message: str,
        session_id: str | None = None,
    ) -> list[AgentRole]:
        """Every expert the request involves, highest priority first."""
        agents = matching_roles(user_message)
        if agents:
            logger.debug(
                "[Coordinator] Rule match: '%s' -> %s",
                user_message[:80], [r.name for r in agents],
            )
            return agents

        logger.debug(
            "[Coordinator] No rule matched, asking LLM: '%s'",
            user_message[:80],
        )
        agents = await self._identify_with_ai(user_message, session_id)

        if not agents:
            logger.warning(
                "[Coordinator] Intent not recognised, falling back to %s "
                "(session=%s)",
                FALLBACK_ROLE.name, session_id,
            )
            agents = [FALLBACK_ROLE]
        return agents

    async def identify_intent(
        self,
        user_message: str,
        session_id: str | None = None,
    ) -> AgentRole:
        """The single highest-priority expert for the request."""
        primary = (await self.identify_all_intents(user_message, session_id))[0]
        logger.debug(
            "[Coordinator] Single-agent intent: '%s' -> %s",
            user_message[:80], primary.name,
        )
        return primary

    async def identify_required_agents(
        self,
        user_message: str,
        session_id: str | None = None,
    ) -> list[AgentRole]:
        """Experts to consult in a multi-route request, in priority order."""
        agents = await self.identify_all_intents(user_message, session_id)
        logger.info(
            "[Coordinator] Required agents for '%s': %s",
            user_message[:80], [r.name for r in agents],
        )
        return agents

    async def _identify_with_ai(
        self,
        user_message: str,
        session_id: str | None,
    ) -> list[AgentRole]:
        if not self._ai_enabled or self._llm is None:
            return []

        prompt = INTENT_CLASSIFICATION_PROMPT.format(user_message=user_message)
        try:
            response = await asyncio.wait_for(
                self._llm.complete(messages=[{"role": "user", "content": prompt}]),
                self._ai_timeout,
            )
        except asyncio.TimeoutError:
            logger.error(
                "[Coordinator] AI intent recognition timed out after %ss "
                "(session=%s)",
                self._ai_timeout, session_id,
            )
            return []
        except Exception as e:
            logger.error(
                "[Coordinator] AI intent recognition failed (session=%s): %s",
                session_id, e,
            )
            return []

        agents = parse_agent_roles(response.content)
        logger.info(
            "[Coordinator] AI intent result: %s (session=%s)",
            [r.name for r in agents], session_id,
        )
        return agents

    # -----------------------------------------------------------------------
    # Routing
    # -----------------------------------------------------------------------

    async def route(
        self,
        user_message: str,
        session_id: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> RoutingDecision:
        """Compute the single- or multi-route decision for a request."""
        if self.requires_multi_agent(user_message):
            roles = await self.identify_required_agents(user_message, session_id)
            return MultiRoute(roles=tuple(roles))

        role = await self.identify_intent(user_message, session_id)
        routing_message = AgentMessage.create_task_assignment(
            sender=AgentRole.COORDINATOR,
            receiver=role,
            content=user_message,
            session_id=session_id,
        )
        if data:
            routing_message.data.update(data)
        return SingleRoute(role=role, message=routing_message)

    async def handle_message(self, message: AgentMessage) -> AgentMessage:
        logger.info("[Coordinator] Analysing task: %s", message.content[:80])
        decision = await self.route(
            message.content, message.session_id, message.data,
        )

        if isinstance(decision, MultiRoute):
            result = message.create_response("任务需要多Agent协作")
            result.add_data("requiresMultiAgent", True)
            result.add_data("requiredAgents", list(decision.roles))
            result.add_data("originalMessage", message.content)
            return result

        result = message.create_response(
            f"任务已路由到 [{decision.role.display_name}]"
        )
        result.add_data("requiresMultiAgent", False)
        result.add_data("targetAgent", decision.role.name)
        result.add_data("routingMessage", decision.message)
        return result

    async def handle_message_stream(
        self,
        message: AgentMessage,
    ) -> AsyncIterator[str]:
        yield "正在分析您的请求...\n"
        role = await self.identify_intent(message.content, message.session_id)
        yield f"已路由到 [{role.display_name}]\n"


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def parse_agent_roles(reply: str) -> list[AgentRole]:
    """
    Map an LLM reply like "LOAN_EXPERT, POLICY_EXPERT" to expert roles.

    Unknown tokens and non-expert roles are dropped; order is kept and
    duplicates removed.
    """
    agents: list[AgentRole] = []
    for raw in _TOKEN_SEPARATORS.split(reply.strip().upper()):
        token = raw.strip(_TOKEN_PUNCTUATION)
        if not token:
            continue
        role = AgentRole.from_name(token)
        if role is None or not role.is_domain_expert:
            logger.warning("[Coordinator] Unrecognised agent name from AI: %s", raw)
            continue
        if role not in agents:
            agents.append(role)
    return agents
