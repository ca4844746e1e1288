# =============================================================================
# Aero-Fin Configuration — Pydantic Settings
# =============================================================================
#
# Every tunable of the agent system lives here and can be overridden from
# the environment or a local .env file (environment wins, then .env,
# then the defaults below).
#
#   from app.config import settings
#   settings.expert_timeout_seconds   # deadline per expert call
#
# Only an LLM key is required to answer requests. Without one the app
# still starts; the first chat request reports 503.
# =============================================================================

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings for the multi-agent assistant."""

    # -------------------------------------------------------------------------
    # Service
    # -------------------------------------------------------------------------
    app_name: str = "Aero-Fin Multi-Agent Assistant"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"

    # -------------------------------------------------------------------------
    # Model Provider
    # -------------------------------------------------------------------------
    # llm_provider selects the SDK:
    #   "openai_compatible" → openai SDK; works with DeepSeek, Qwen (DashScope
    #                         compatible mode), GLM and OpenAI. Set
    #                         llm_base_url for anything but OpenAI.
    #   "anthropic"         → anthropic SDK (Claude).
    #
    # llm_api_key wins over the provider-specific keys when both are set.
    # -------------------------------------------------------------------------
    llm_provider: str = "openai_compatible"
    llm_base_url: str | None = None
    llm_api_key: str | None = None
    anthropic_api_key: str = ""
    openai_api_key: str = ""
    llm_model: str = "deepseek-chat"
    # Low temperature: loan figures and policy terms must be reproducible
    llm_temperature: float = 0.3
    llm_max_tokens: int = 2048

    # -------------------------------------------------------------------------
    # Orchestration
    # -------------------------------------------------------------------------
    # expert_timeout_seconds: deadline for one expert's execute(). A late
    #   expert becomes a failure placeholder in a multi-route answer and
    #   an ExpertTimeoutError on the single route.
    # reflection_timeout_seconds: deadline for the reviewer pass; on
    #   timeout the draft is returned unchanged.
    # intent_ai_enabled: False skips the LLM classification pass, so
    #   unmatched requests go straight to the loan expert.
    # intent_timeout_seconds: deadline for that pass; a late reply counts
    #   as a classification failure and falls back to the loan expert.
    # default_user_id: passed as userId when the caller sends none.
    # -------------------------------------------------------------------------
    expert_timeout_seconds: float = 60.0
    reflection_timeout_seconds: float = 60.0
    intent_ai_enabled: bool = True
    intent_timeout_seconds: float = 15.0
    default_user_id: str = "anonymous"

    # -------------------------------------------------------------------------
    # Policy Retrieval — ChromaDB
    # -------------------------------------------------------------------------
    # chroma_url: None → in-process client (local development, testing).
    # retrieval_top_k: number of policy snippets injected into the prompt.
    # retrieval_similarity_threshold: snippets below this cosine similarity
    #   are dropped before prompting.
    # -------------------------------------------------------------------------
    chroma_url: str | None = None
    policy_collection: str = "policies"
    retrieval_top_k: int = 5
    retrieval_similarity_threshold: float = 0.7

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()
