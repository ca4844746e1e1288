# =============================================================================
# Services Package — Agent Collaborators
# =============================================================================
#   - llm.py: multi-provider LLM abstraction (Anthropic, OpenAI-compatible),
#     request/response and streaming
#   - retrieval.py: policy retrieval over a Chroma collection
# =============================================================================
