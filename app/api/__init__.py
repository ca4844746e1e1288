# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
#   - chat.py: multi-agent chat, reflection, SSE streaming, agent status
#   - deps.py: orchestrator dependency (overridable in tests)
# =============================================================================
