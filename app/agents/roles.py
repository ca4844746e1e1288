# =============================================================================
# Agent Roles — Worker Identities and the Domain Keyword Table
# =============================================================================
#
# The set of workers is closed: one coordinator, four domain experts and
# one reviewer. Each role has a display name (used as the section heading
# in aggregated answers), a description and an expertise weight.
#
# DOMAIN_KEYWORDS is the ONE keyword table in the system. Both the
# single-role primitive (role_from_keywords) and the coordinator's
# multi-domain checks read it, so they cannot drift apart.
#
# Precedence order (dict insertion order is significant):
#   LOAN_EXPERT → POLICY_EXPERT → RISK_ASSESSMENT → CUSTOMER_SERVICE
# =============================================================================

from __future__ import annotations

import enum


class AgentRole(enum.Enum):
    """Worker identity: (display name, description, expertise weight)."""

    COORDINATOR = ("协调器", "负责任务分发和结果聚合", 1.0)
    LOAN_EXPERT = ("贷款专家", "专注于贷款计算和还款咨询", 0.9)
    POLICY_EXPERT = ("政策专家", "专注于政策查询和解读", 0.85)
    RISK_ASSESSMENT = ("风控专家", "专注于风险评估和资格审核", 0.95)
    CUSTOMER_SERVICE = ("客服专家", "专注于客户服务和投诉处理", 0.8)
    REFLECTOR = ("反思专家", "负责对其他Agent的回答进行审阅和风险合规检查", 0.9)

    def __init__(
        self,
        display_name: str,
        description: str,
        expertise_weight: float,
    ) -> None:
        self.display_name = display_name
        self.description = description
        # Only meaningful for weighted aggregation; not used for routing
        self.expertise_weight = expertise_weight

    @classmethod
    def from_name(cls, token: str) -> AgentRole | None:
        """Parse an enum name such as 'loan_expert'; None if unknown."""
        try:
            return cls[token.strip().upper()]
        except KeyError:
            return None

    @property
    def is_domain_expert(self) -> bool:
        return self in DOMAIN_KEYWORDS


DOMAIN_KEYWORDS: dict[AgentRole, tuple[str, ...]] = {
    AgentRole.LOAN_EXPERT: ("贷款", "月供", "利率", "计算", "还款", "本金", "利息"),
    AgentRole.POLICY_EXPERT: ("政策", "优惠", "条件", "活动", "要求", "规定"),
    AgentRole.RISK_ASSESSMENT: ("额度", "审批", "征信", "资格", "能贷", "评估"),
    AgentRole.CUSTOMER_SERVICE: ("投诉", "减免", "罚息", "申请", "办理", "修改"),
}

DOMAIN_ROLES: tuple[AgentRole, ...] = tuple(DOMAIN_KEYWORDS)


def _matches(text_lower: str, keywords: tuple[str, ...]) -> bool:
    return any(keyword.lower() in text_lower for keyword in keywords)


def role_from_keywords(text: str) -> AgentRole | None:
    """
    Return the first domain (in precedence order) whose keywords appear
    in `text`, or None when nothing matches.

    Pure and case-insensitive. Callers decide the fallback.
    """
    text_lower = text.lower()
    for role, keywords in DOMAIN_KEYWORDS.items():
        if _matches(text_lower, keywords):
            return role
    return None


def matching_roles(text: str) -> list[AgentRole]:
    """Every domain whose keywords appear in `text`, in precedence order."""
    text_lower = text.lower()
    return [
        role
        for role, keywords in DOMAIN_KEYWORDS.items()
        if _matches(text_lower, keywords)
    ]
