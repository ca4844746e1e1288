# =============================================================================
# Aero-Fin Multi-Agent Assistant
# =============================================================================
# A coordinator/expert agent system for a consumer-finance assistant.
# Each request is classified (keyword rules first, LLM second), routed to
# one or several domain experts, and optionally reviewed by a reflector.
#
# Package structure:
#   app/
#   ├── api/          → FastAPI route handlers (chat, streaming, status)
#   ├── agents/       → Message protocol, worker lifecycle, coordinator,
#   │                    experts, reflector and the orchestrator graph
#   ├── models/       → Pydantic V2 request/response schemas
#   ├── services/     → Collaborators (LLM providers, policy retrieval)
#   ├── config.py     → pydantic-settings configuration
#   └── main.py       → FastAPI application
# =============================================================================
