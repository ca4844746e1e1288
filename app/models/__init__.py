# =============================================================================
# Models Package — Pydantic V2 Schemas
# =============================================================================
# Request/response schemas for the HTTP API. These are separate from the
# agent-internal AgentMessage so that routing metadata and side-channel
# data never leak to clients.
# =============================================================================
