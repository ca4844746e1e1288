# =============================================================================
# Agents Package — Coordinator/Expert Orchestration
# =============================================================================
#   - message.py: AgentMessage, the unit of dispatcher ↔ worker traffic
#   - roles.py: AgentRole and the single domain keyword table
#   - base.py: BaseAgent lifecycle template, state machine, metrics
#   - coordinator.py: hybrid rule + AI intent classification and routing
#   - experts.py: loan, policy, risk and customer-service workers
#   - reflector.py: post-hoc compliance review of a draft answer
#   - orchestrator.py: LangGraph pipeline, concurrent fan-out, aggregation
#
# Routing: rules → AI → fallback (loan expert)
# Dispatch: one expert, or all matched experts concurrently
# =============================================================================
