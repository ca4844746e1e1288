# =============================================================================
# Application Entry Point
# =============================================================================
#
# Creates the FastAPI app, configures logging once, and mounts routers.
#
# Run locally:
#   uvicorn app.main:app --reload
#
# The orchestrator is NOT built here. It is created on the first request
# that needs it (see app/api/deps.py), so the app starts, and /health
# answers, even before an LLM key is configured.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import FastAPI

from app.api.chat import router as chat_router
from app.config import settings
from app.models.responses import HealthResponse

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    debug=settings.debug,
    description=(
        "Multi-agent financial assistant: a coordinator routes each request "
        "to loan, policy, risk and customer-service experts, runs them "
        "concurrently when several apply, and optionally reviews the "
        "answer for compliance."
    ),
)

app.include_router(chat_router)


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health() -> HealthResponse:
    return HealthResponse(version=settings.app_version, service=settings.app_name)


logger.info("%s v%s ready", settings.app_name, settings.app_version)
