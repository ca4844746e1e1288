# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# Shape of data coming OUT of the chat API. Agent internals (messages,
# side-channel data, routing decisions) never cross this boundary; the
# client sees the answer text and the status counters only.
# =============================================================================

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    """Response for GET /health: the API process is up."""

    status: str = "ok"
    version: str
    service: str


class ChatResponse(BaseModel):
    """Response for POST /api/chat/multi-agent and its reflect variant."""

    answer: str = Field(description="Final answer text (aggregated when multi-route)")
    session_id: str = Field(description="Session id used for this request")
    user_id: str
    reflected: bool = Field(
        default=False,
        description="Whether the reflector reviewed the answer (False when the draft was returned)",
    )


class AgentStatus(BaseModel):
    """Live state and counters for one worker."""

    state: str = Field(description="IDLE, PROCESSING, WAITING, ERROR or COMPLETED")
    total_processed: int = Field(alias="totalProcessed")
    total_errors: int = Field(alias="totalErrors")
    average_response_time_ms: float = Field(alias="averageResponseTimeMs")

    model_config = ConfigDict(populate_by_name=True)


class AgentStatusSummaryResponse(BaseModel):
    """Response for GET /api/agents/status, keyed by role name."""

    agents: dict[str, AgentStatus]
