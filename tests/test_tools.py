# =============================================================================
# Unit Tests — Tool Calling and the Financial Toolbox
# =============================================================================
#
# Argument validation, provider schema shapes, error text returned to the
# model, and the four financial tools. The retriever and the loan
# calculator are mocks.
# =============================================================================

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock

from pydantic import BaseModel

from app.agents.tools import (
    CALCULATOR_UNAVAILABLE,
    NO_POLICY_FOUND,
    LoanCalculationInput,
    build_financial_tools,
)
from app.services.retrieval import PolicySearchResult
from app.services.tools import Tool, call_tool


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


class _EchoArgs(BaseModel):
    text: str


async def _echo(params: _EchoArgs) -> str:
    return f"echo:{params.text}"


ECHO = Tool(name="echo", description="Echo text", parameters=_EchoArgs, handler=_echo)


# ---------------------------------------------------------------------------
# Test: Tool
# ---------------------------------------------------------------------------


class TestTool:
    def test_json_string_arguments(self):
        assert _run(ECHO.invoke('{"text": "hi"}')) == "echo:hi"

    def test_dict_arguments(self):
        assert _run(ECHO.invoke({"text": "hi"})) == "echo:hi"

    def test_invalid_arguments_reported_to_model(self):
        result = _run(ECHO.invoke({"wrong": 1}))
        assert result.startswith("参数错误")

    def test_malformed_json_reported_to_model(self):
        assert _run(ECHO.invoke('{"text": ')).startswith("参数错误")

    def test_handler_failure_reported_to_model(self):
        async def broken(params):
            raise RuntimeError("backend down")

        tool = Tool(name="broken", description="", parameters=_EchoArgs, handler=broken)
        assert _run(tool.invoke({"text": "x"})) == "工具调用出错：backend down"

    def test_anthropic_shape(self):
        shape = ECHO.to_anthropic()
        assert shape["name"] == "echo"
        assert shape["input_schema"]["properties"]["text"]["type"] == "string"

    def test_openai_shape(self):
        shape = ECHO.to_openai()
        assert shape["type"] == "function"
        assert shape["function"]["name"] == "echo"
        assert shape["function"]["parameters"]["required"] == ["text"]

    def test_unknown_tool(self):
        assert _run(call_tool({"echo": ECHO}, "missing", {})) == "未知工具：missing"


# ---------------------------------------------------------------------------
# Test: Financial Toolbox
# ---------------------------------------------------------------------------


class TestFinancialTools:
    def test_all_four_tools(self):
        assert list(build_financial_tools()) == [
            "calculateLoan", "queryPolicy", "applyWaiver", "queryWaiverStatus",
        ]

    def test_schema_uses_camel_case(self):
        schema = build_financial_tools()["calculateLoan"].input_schema()
        assert set(schema["properties"]) == {
            "principal", "annualRate", "termMonths", "repaymentType",
        }

    def test_calculator_receives_validated_input(self):
        calculator = AsyncMock(return_value="月供 5949.37 元")
        tool = build_financial_tools(loan_calculator=calculator)["calculateLoan"]

        result = _run(tool.invoke(json.dumps(
            {"principal": 200000, "annualRate": 0.045, "termMonths": 36},
        )))

        assert result == "月供 5949.37 元"
        params = calculator.await_args.args[0]
        assert isinstance(params, LoanCalculationInput)
        assert params.term_months == 36
        assert params.repayment_type == "EQUAL_INSTALLMENT"

    def test_calculator_missing(self):
        tool = build_financial_tools()["calculateLoan"]
        result = _run(tool.invoke({"principal": 1000, "annualRate": 0.04, "termMonths": 12}))
        assert result == CALCULATOR_UNAVAILABLE

    def test_negative_principal_rejected(self):
        calculator = AsyncMock()
        tool = build_financial_tools(loan_calculator=calculator)["calculateLoan"]
        result = _run(tool.invoke({"principal": -1, "annualRate": 0.04, "termMonths": 12}))
        assert result.startswith("参数错误")
        calculator.assert_not_awaited()

    def test_query_policy_searches_retriever(self):
        retriever = AsyncMock()
        retriever.search.return_value = [
            PolicySearchResult(content="小微企业首贷利率下浮20个基点", similarity_score=0.9),
        ]
        tool = build_financial_tools(retriever)["queryPolicy"]

        result = _run(tool.invoke({"policyType": "小微企业贷款", "keyword": "首贷"}))

        assert "[政策 1] 小微企业首贷利率下浮20个基点" in result
        assert retriever.search.await_args.args[0] == "小微企业贷款 首贷"

    def test_query_policy_nothing_found(self):
        retriever = AsyncMock()
        retriever.search.return_value = []
        tool = build_financial_tools(retriever)["queryPolicy"]
        assert _run(tool.invoke({"keyword": "外汇"})) == NO_POLICY_FOUND

    def test_apply_waiver(self):
        tool = build_financial_tools()["applyWaiver"]
        result = _run(tool.invoke(
            {"loanAccountNo": "LN-001", "amount": 500, "reason": "首次逾期"},
        ))
        assert "申请编号：WAIVER-" in result
        assert "申请金额：500.00 元" in result

    def test_query_waiver_status(self):
        tool = build_financial_tools()["queryWaiverStatus"]
        result = _run(tool.invoke({"applicationNo": "WAIVER-20260101-ABCD1234"}))
        assert "WAIVER-20260101-ABCD1234" in result
        assert "待审核" in result
