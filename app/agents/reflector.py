# =============================================================================
# Reflector Agent — Post-hoc Compliance Review
# =============================================================================
#
# Reviews a draft answer produced by the experts and returns either the
# draft with extra risk notes or a fully revised answer.
#
# INPUT CONTRACT (message.data):
#   userQuestion — the user's original request
#   draftAnswer  — the text to review
#   sourceAgent  — which expert(s) produced the draft
#
# All three are passed into the prompt verbatim.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

from app.agents.base import BaseAgent
from app.agents.message import AgentMessage
from app.agents.prompts import REFLECTOR_PROMPT
from app.agents.roles import AgentRole
from app.services.llm import LLMProvider

logger = logging.getLogger(__name__)


class ReflectorAgent(BaseAgent):
    def __init__(self, llm: LLMProvider | None = None) -> None:
        super().__init__(AgentRole.REFLECTOR, llm)

    @property
    def system_prompt(self) -> str:
        return REFLECTOR_PROMPT

    async def handle_message(self, message: AgentMessage) -> AgentMessage:
        logger.info(
            "[Reflector] Reviewing draft (session=%s, parent=%s)",
            message.session_id, message.parent_message_id,
        )
        reviewed = await self._complete(message, build_reflect_prompt(message))
        return message.create_response(reviewed)

    async def handle_message_stream(
        self,
        message: AgentMessage,
    ) -> AsyncIterator[str]:
        logger.info("[Reflector] Streaming review (session=%s)", message.session_id)
        async for chunk in self._stream(message, build_reflect_prompt(message)):
            yield chunk


def build_reflect_prompt(message: AgentMessage) -> str:
    user_question = message.get_data("userQuestion", expected_type=str)
    draft_answer = message.get_data("draftAnswer", expected_type=str)
    source_agent = message.get_data("sourceAgent", expected_type=str)

    return (
        f"【用户原始问题】\n{user_question if user_question is not None else '（未知）'}\n\n"
        f"【来源Agent】\n{source_agent if source_agent is not None else 'UNKNOWN'}\n\n"
        f"【初稿回答】\n{draft_answer if draft_answer is not None else '（无内容）'}\n\n"
        "请根据系统提示词，对上述初稿进行审阅与必要的修订。"
    )
