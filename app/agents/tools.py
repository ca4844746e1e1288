# =============================================================================
# Financial Tools — What the Experts Can Call
# =============================================================================
#
# The four tools experts offer the model, keyed by name:
#
#   calculateLoan      — loan expert; delegates to an injected calculator
#   queryPolicy        — policy expert; searches the policy retriever
#   applyWaiver        — customer service; files a penalty-interest waiver
#   queryWaiverStatus  — customer service; reports a waiver's status
#
# An expert's `available_tools` names which of these it offers; the
# toolbox built here supplies the handlers.
#
# calculateLoan has no built-in repayment formula. Without a calculator
# it tells the model that figures must come from the official calculator,
# so the model never presents its own arithmetic as a quote. Waivers are
# acknowledged with a generated application number and are not persisted.
# =============================================================================

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import date
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from app.config import settings
from app.services.retrieval import PolicyRetriever
from app.services.tools import Tool

logger = logging.getLogger(__name__)

CALCULATOR_UNAVAILABLE = (
    "贷款计算服务暂不可用。请向用户说明月供的计算方式，"
    "并提示具体金额以正式测算和审批结果为准。"
)
NO_POLICY_FOUND = "暂未找到相关政策。建议咨询客服了解最新政策信息。"


# ---------------------------------------------------------------------------
# Tool Parameters
# ---------------------------------------------------------------------------


class LoanCalculationInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    principal: float = Field(gt=0, description="贷款本金（元）")
    annual_rate: float = Field(
        alias="annualRate", ge=0, lt=1, description="年利率（如 0.045 表示 4.5%）",
    )
    term_months: int = Field(alias="termMonths", gt=0, description="贷款期限（月）")
    repayment_type: Literal["EQUAL_INSTALLMENT", "EQUAL_PRINCIPAL"] = Field(
        default="EQUAL_INSTALLMENT",
        alias="repaymentType",
        description="还款方式：EQUAL_INSTALLMENT（等额本息）或 EQUAL_PRINCIPAL（等额本金）",
    )


class PolicyQueryInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    policy_type: str | None = Field(
        default=None, alias="policyType", description="政策类型（如：个人贷款、小微企业贷款）",
    )
    keyword: str = Field(min_length=1, description="查询关键词")


class WaiverApplicationInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    loan_account_no: str = Field(
        alias="loanAccountNo", min_length=1, description="贷款账号",
    )
    amount: float = Field(gt=0, description="申请减免金额（元）")
    reason: str = Field(min_length=1, description="申请原因")


class WaiverStatusInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    application_no: str = Field(
        alias="applicationNo", min_length=1, description="减免申请编号",
    )


LoanCalculator = Callable[[LoanCalculationInput], Awaitable[str]]


# ---------------------------------------------------------------------------
# Toolbox
# ---------------------------------------------------------------------------


def build_financial_tools(
    retriever: PolicyRetriever | None = None,
    loan_calculator: LoanCalculator | None = None,
) -> dict[str, Tool]:
    """
    Build the name → Tool mapping the experts draw from.

    Args:
        retriever: Backs queryPolicy. None → queryPolicy finds nothing.
        loan_calculator: Backs calculateLoan. None → calculateLoan reports
            that the calculator is unavailable.
    """

    async def calculate_loan(params: LoanCalculationInput) -> str:
        if loan_calculator is None:
            return CALCULATOR_UNAVAILABLE
        return await loan_calculator(params)

    async def query_policy(params: PolicyQueryInput) -> str:
        if retriever is None:
            return NO_POLICY_FOUND
        query = " ".join(p for p in (params.policy_type, params.keyword) if p)
        policies = await retriever.search(query, top_k=settings.retrieval_top_k)
        if not policies:
            return NO_POLICY_FOUND
        lines = ["【政策查询】"]
        for i, policy in enumerate(policies, 1):
            lines.append(f"[政策 {i}] {policy.content}")
        return "\n".join(lines)

    async def apply_waiver(params: WaiverApplicationInput) -> str:
        application_no = (
            f"WAIVER-{date.today():%Y%m%d}-{uuid.uuid4().hex[:8].upper()}"
        )
        logger.info(
            "Waiver application %s filed for account %s",
            application_no, params.loan_account_no,
        )
        return (
            "【罚息减免申请】\n"
            f"申请编号：{application_no}\n"
            f"贷款账号：{params.loan_account_no}\n"
            f"申请金额：{params.amount:.2f} 元\n"
            f"申请原因：{params.reason}\n"
            "申请已提交，请在 3-5 个工作日内完成审核。"
        )

    async def query_waiver_status(params: WaiverStatusInput) -> str:
        return (
            "【申请状态查询】\n"
            f"申请编号：{params.application_no}\n"
            "当前状态：待审核\n"
            "您的申请正在审核中，请耐心等待。"
        )

    tools = [
        Tool(
            name="calculateLoan",
            description="计算贷款月供、总利息等信息。支持等额本息和等额本金两种还款方式。",
            parameters=LoanCalculationInput,
            handler=calculate_loan,
        ),
        Tool(
            name="queryPolicy",
            description="查询金融政策信息，返回相关政策的详细内容。",
            parameters=PolicyQueryInput,
            handler=query_policy,
        ),
        Tool(
            name="applyWaiver",
            description="申请罚息减免，提交减免申请并获取申请编号。",
            parameters=WaiverApplicationInput,
            handler=apply_waiver,
        ),
        Tool(
            name="queryWaiverStatus",
            description="查询罚息减免申请的审核状态。",
            parameters=WaiverStatusInput,
            handler=query_waiver_status,
        ),
    ]
    return {tool.name: tool for tool in tools}
