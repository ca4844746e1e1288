# =============================================================================
# API Dependencies — Orchestrator Injection
# =============================================================================
#
# get_orchestrator() is the one place route handlers obtain the
# MultiAgentOrchestrator. The instance is built lazily on first use and
# cached for the life of the process, so workers (and their metrics)
# are shared by every request.
#
# Tests replace it through app.dependency_overrides[get_orchestrator].
#
# A misconfigured provider raises ValueError from the factory. That is
# reported as 503 on the request that needed it, not at import time.
# =============================================================================

from __future__ import annotations

import logging
from functools import lru_cache

from fastapi import HTTPException

from app.agents.orchestrator import MultiAgentOrchestrator, build_orchestrator

logger = logging.getLogger(__name__)


@lru_cache
def _cached_orchestrator() -> MultiAgentOrchestrator:
    logger.info("Building multi-agent orchestrator")
    return build_orchestrator()


def get_orchestrator() -> MultiAgentOrchestrator:
    """
    FastAPI dependency returning the process-wide orchestrator.

    Raises:
        HTTPException 503: The LLM provider is not configured.
    """
    try:
        return _cached_orchestrator()
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        raise HTTPException(
            status_code=503,
            detail=f"Service configuration error: {e}",
        ) from e
