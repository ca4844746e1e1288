# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# Shape of data coming INTO the chat API. FastAPI uses these for body
# validation (automatic 422 errors) and the OpenAPI docs at /docs.
#
# session_id and user_id are optional on the wire; the router fills in
# a fresh session id and settings.default_user_id respectively.
# =============================================================================

from pydantic import BaseModel, ConfigDict, Field


class ChatRequest(BaseModel):
    """
    Request body for POST /api/chat/multi-agent(/reflect).

    Example:
        {
            "message": "我想贷款20万，有什么优惠政策吗？",
            "session_id": "3f1c...",
            "user_id": "u-1001"
        }
    """

    message: str = Field(
        ...,
        min_length=1,
        max_length=2000,
        description="The user's request in natural language",
        examples=["贷款20万，3年，利率4.5%，每月还多少？"],
    )

    # Correlates log lines across all agents that touch this request
    session_id: str | None = Field(
        default=None,
        max_length=128,
        description="Conversation id. Generated when omitted.",
    )

    user_id: str | None = Field(
        default=None,
        max_length=128,
        description="Caller id passed to experts as 'userId'. Defaults to anonymous.",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {"message": "贷款20万，3年，利率4.5%，每月还多少？"},
                {
                    "message": "我想贷款20万，有什么优惠政策吗？",
                    "session_id": "demo-session",
                    "user_id": "u-1001",
                },
            ]
        }
    )
