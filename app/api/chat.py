# =============================================================================
# Chat API — Multi-Agent Endpoints
# =============================================================================
#
# POST /api/chat/multi-agent          → one answer (single or multi route)
# POST /api/chat/multi-agent/reflect  → same, reviewed by the reflector
# GET  /api/chat/multi-agent/stream   → Server-Sent Events, one chunk per event
# GET  /api/agents/status             → live state and counters per role
#
# The handlers are thin: fill in defaults, call the orchestrator, map
# errors to status codes.
#
# ERROR MAPPING:
#   ValueError (configuration)      → 503 Service Unavailable
#   Any other worker failure        → 502 Bad Gateway, with a message
#                                     asking the user to retry
#   Multi-route expert failures never reach here; they are inline
#   placeholders in the aggregated answer.
# =============================================================================

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator
from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse

from app.agents.orchestrator import MultiAgentOrchestrator
from app.api.deps import get_orchestrator
from app.config import settings
from app.models.requests import ChatRequest
from app.models.responses import (
    AgentStatus,
    AgentStatusSummaryResponse,
    ChatResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Multi-Agent Chat"])

DEGRADED_DETAIL = "抱歉，服务暂时不可用，请稍后重试。"


def _resolve_ids(session_id: str | None, user_id: str | None) -> tuple[str, str]:
    return session_id or uuid.uuid4().hex, user_id or settings.default_user_id


def _raise_for(e: Exception, session_id: str) -> NoReturn:
    if isinstance(e, ValueError):
        logger.error("Configuration error (session=%s): %s", session_id, e)
        raise HTTPException(
            status_code=503,
            detail=f"Service configuration error: {e}",
        ) from e
    logger.exception("Multi-agent request failed (session=%s): %s", session_id, e)
    raise HTTPException(status_code=502, detail=DEGRADED_DETAIL) from e


# ---------------------------------------------------------------------------
# POST /api/chat/multi-agent
# ---------------------------------------------------------------------------


@router.post(
    "/chat/multi-agent",
    response_model=ChatResponse,
    summary="Answer a request with the expert team",
)
async def multi_agent_chat(
    request: ChatRequest,
    orchestrator: MultiAgentOrchestrator = Depends(get_orchestrator),
) -> ChatResponse:
    session_id, user_id = _resolve_ids(request.session_id, request.user_id)
    try:
        answer = await orchestrator.process_request(
            request.message, session_id, user_id,
        )
    except Exception as e:
        _raise_for(e, session_id)

    return ChatResponse(answer=answer, session_id=session_id, user_id=user_id)


# ---------------------------------------------------------------------------
# POST /api/chat/multi-agent/reflect
# ---------------------------------------------------------------------------


@router.post(
    "/chat/multi-agent/reflect",
    response_model=ChatResponse,
    summary="Answer a request, then review it for compliance",
)
async def multi_agent_chat_with_reflection(
    request: ChatRequest,
    orchestrator: MultiAgentOrchestrator = Depends(get_orchestrator),
) -> ChatResponse:
    session_id, user_id = _resolve_ids(request.session_id, request.user_id)
    try:
        result = await orchestrator.process_request_with_reflection(
            request.message, session_id, user_id,
        )
    except Exception as e:
        _raise_for(e, session_id)

    return ChatResponse(
        answer=result.answer,
        session_id=session_id,
        user_id=user_id,
        reflected=result.reflected,
    )


# ---------------------------------------------------------------------------
# GET /api/chat/multi-agent/stream
# ---------------------------------------------------------------------------


def format_sse(chunk: str) -> str:
    """
    Encode one chunk as an SSE event.

    Every line gets its own "data:" field so embedded newlines survive.
    """
    return "".join(f"data: {line}\n" for line in chunk.split("\n")) + "\n"


async def _event_stream(
    orchestrator: MultiAgentOrchestrator,
    message: str,
    session_id: str,
    user_id: str,
) -> AsyncIterator[str]:
    stream = orchestrator.process_request_stream(message, session_id, user_id)
    try:
        async for chunk in stream:
            yield format_sse(chunk)
    except Exception as e:
        logger.exception("Streaming request failed (session=%s): %s", session_id, e)
        yield f"event: error\n{format_sse(DEGRADED_DETAIL)}"
    finally:
        await stream.aclose()
    yield "data: [DONE]\n\n"


@router.get(
    "/chat/multi-agent/stream",
    summary="Stream an answer as Server-Sent Events",
)
async def multi_agent_chat_stream(
    message: str = Query(..., min_length=1, max_length=2000),
    session_id: str | None = Query(default=None, max_length=128),
    user_id: str | None = Query(default=None, max_length=128),
    orchestrator: MultiAgentOrchestrator = Depends(get_orchestrator),
) -> StreamingResponse:
    session_id, user_id = _resolve_ids(session_id, user_id)
    logger.info(
        "Stream request: session=%s, user=%s, message='%s'",
        session_id, user_id, message[:80],
    )
    return StreamingResponse(
        _event_stream(orchestrator, message, session_id, user_id),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# ---------------------------------------------------------------------------
# GET /api/agents/status
# ---------------------------------------------------------------------------


@router.get(
    "/agents/status",
    response_model=AgentStatusSummaryResponse,
    response_model_by_alias=True,
    summary="Live state and counters for every agent",
)
async def agent_status(
    orchestrator: MultiAgentOrchestrator = Depends(get_orchestrator),
) -> AgentStatusSummaryResponse:
    summary = orchestrator.get_agent_status_summary()
    return AgentStatusSummaryResponse(
        agents={
            role: AgentStatus.model_validate(status)
            for role, status in summary.items()
        }
    )
