# =============================================================================
# Agent Errors
# =============================================================================
#
# Error taxonomy of the orchestration layer:
#   - Classification failures never surface; the coordinator logs them
#     and falls back to the loan expert.
#   - Worker failures propagate in single-route mode and are rendered as
#     inline placeholders in multi-route mode.
#   - Reflection failures degrade to the draft answer.
#
# Collaborator exceptions (SDK errors, timeouts) are re-raised as-is by
# the worker template; these classes cover failures the orchestration
# layer itself detects.
# =============================================================================

from __future__ import annotations

from app.agents.roles import AgentRole


class AgentError(Exception):
    """Base class for orchestration-layer errors."""


class AgentNotFoundError(AgentError):
    """A role has no registered worker."""

    def __init__(self, role: AgentRole) -> None:
        self.role = role
        super().__init__(f"No agent registered for role {role.name}")


class AgentExecutionError(AgentError):
    """A worker produced no usable result."""

    def __init__(
        self,
        role: AgentRole,
        reason: str,
        session_id: str | None = None,
    ) -> None:
        self.role = role
        self.reason = reason
        self.session_id = session_id
        super().__init__(reason)


class ExpertTimeoutError(AgentExecutionError):
    """A worker did not finish within its deadline."""

    def __init__(
        self,
        role: AgentRole,
        timeout_seconds: float,
        session_id: str | None = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(
            role,
            f"timed out after {timeout_seconds:g}s",
            session_id=session_id,
        )
