# =============================================================================
# Tool Calling — Named Tools with Structured Parameters
# =============================================================================
#
# A Tool is what an LLM provider offers the model alongside the prompt:
# a name, a description, a pydantic model describing the arguments, and
# an async handler that turns validated arguments into text.
#
#   Tool.to_anthropic()  → {"name", "description", "input_schema"}
#   Tool.to_openai()     → {"type": "function", "function": {...}}
#   Tool.invoke(args)    → text returned to the model as the tool result
#
# The model sees a tool's outcome as text, including its failures: bad
# arguments and handler errors come back as an error string the model
# can explain or correct. Providers call tools through call_tool(), which
# also answers calls to names that were never offered.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

ToolHandler = Callable[[Any], Awaitable[str]]


@dataclass(frozen=True)
class Tool:
    """One callable tool; `parameters` validates what the model sends."""

    name: str
    description: str
    parameters: type[BaseModel]
    handler: ToolHandler

    def input_schema(self) -> dict[str, Any]:
        return self.parameters.model_json_schema(by_alias=True)

    def to_anthropic(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema(),
        }

    def to_openai(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema(),
            },
        }

    async def invoke(self, arguments: str | Mapping[str, Any] | None) -> str:
        """
        Validate the model's arguments and run the handler.

        Args:
            arguments: A JSON string (OpenAI) or a decoded dict (Anthropic).
        """
        try:
            if isinstance(arguments, str):
                params = self.parameters.model_validate_json(arguments or "{}")
            else:
                params = self.parameters.model_validate(dict(arguments or {}))
        except ValidationError as e:
            logger.warning("Tool '%s' called with invalid arguments: %s", self.name, e)
            return f"参数错误：{e.errors(include_url=False)}"

        logger.info("Tool '%s' called: %s", self.name, params.model_dump(by_alias=True))
        try:
            return await self.handler(params)
        except Exception as e:
            logger.error("Tool '%s' failed: %s", self.name, e)
            return f"工具调用出错：{e}"


async def call_tool(
    toolbox: Mapping[str, Tool],
    name: str,
    arguments: str | Mapping[str, Any] | None,
) -> str:
    """Run the named tool from `toolbox`, or explain that it does not exist."""
    tool = toolbox.get(name)
    if tool is None:
        logger.warning("Model called unknown tool '%s'", name)
        return f"未知工具：{name}"
    return await tool.invoke(arguments)
