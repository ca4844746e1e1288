# =============================================================================
# LLM Collaborator — Text Completion for Every Agent
# =============================================================================
#
# Agents never touch an SDK directly. They hold an LLMProvider and call
# one of two shapes:
#
#   complete(messages, system=..., tools=...)  → LLMResponse (text + usage)
#   stream(messages, system=..., tools=...)    → async iterator of non-empty
#                                                text deltas; lazy, finite,
#                                                consumed once
#
# LLMProvider is a Protocol: any object with matching complete() and
# stream() methods qualifies, including an AsyncMock in tests.
#
# TOOL CALLING: when `tools` is given, the provider offers them to the
# model and runs the tool loop itself: each round the model may call
# tools, the provider runs them (app.services.tools) and sends the
# results back, until the model answers in text. After MAX_TOOL_ROUNDS
# rounds the tools are withdrawn so the next reply must be text.
#
# Retries belong to the SDK clients; the orchestration layer never retries.
#
#   LLMProvider (Protocol)
#   ├── AnthropicProvider        — anthropic SDK, `system=` is a kwarg
#   ├── OpenAICompatibleProvider — openai SDK, system is the first message
#   └── get_llm_provider()       — process-wide instance chosen by settings
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from typing import Protocol

from app.config import settings
from app.services.tools import Tool, call_tool

logger = logging.getLogger(__name__)

ChatMessages = list[dict]

MAX_TOOL_ROUNDS = 4


@dataclass
class LLMResponse:
    """One completed model call, normalised across providers."""

    content: str
    model: str
    input_tokens: int
    output_tokens: int
    tool_calls: list[str] = field(default_factory=list)  # tool names, call order


class LLMProvider(Protocol):
    async def complete(
        self,
        messages: ChatMessages,
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        tools: Sequence[Tool] | None = None,
    ) -> LLMResponse:
        ...

    def stream(
        self,
        messages: ChatMessages,
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        tools: Sequence[Tool] | None = None,
    ) -> AsyncIterator[str]:
        ...


def _sampling(temperature: float | None, max_tokens: int | None) -> dict:
    """Per-call overrides on top of the configured sampling defaults."""
    return {
        "temperature": (
            settings.llm_temperature if temperature is None else temperature
        ),
        "max_tokens": max_tokens or settings.llm_max_tokens,
    }


def _offered(toolbox: dict[str, Tool], round_no: int) -> list[Tool]:
    return list(toolbox.values()) if round_no < MAX_TOOL_ROUNDS else []


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------


class AnthropicProvider:
    """Claude through the anthropic SDK."""

    def __init__(self, api_key: str | None = None, model: str | None = None) -> None:
        from anthropic import AsyncAnthropic

        key = api_key or settings.llm_api_key or settings.anthropic_api_key
        if not key:
            raise ValueError(
                "Anthropic provider selected but no API key configured "
                "(set LLM_API_KEY or ANTHROPIC_API_KEY)"
            )
        self._client = AsyncAnthropic(api_key=key)
        self._model = model or settings.llm_model
        logger.info("LLM provider: anthropic (model=%s)", self._model)

    def _request(
        self,
        messages: ChatMessages,
        system: str | None,
        temperature: float | None,
        max_tokens: int | None,
        tools: list[Tool],
    ) -> dict:
        request = {
            "model": self._model,
            "messages": list(messages),
            **_sampling(temperature, max_tokens),
        }
        if system:
            request["system"] = system
        if tools:
            request["tools"] = [tool.to_anthropic() for tool in tools]
        return request

    @staticmethod
    async def _tool_results(toolbox: dict[str, Tool], uses: list) -> dict:
        """Run every tool_use block and pack the results as one user turn."""
        results = []
        for use in uses:
            output = await call_tool(toolbox, use.name, use.input)
            results.append(
                {"type": "tool_result", "tool_use_id": use.id, "content": output}
            )
        return {"role": "user", "content": results}

    async def complete(
        self,
        messages: ChatMessages,
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        tools: Sequence[Tool] | None = None,
    ) -> LLMResponse:
        toolbox = {tool.name: tool for tool in tools or ()}
        conversation = list(messages)
        used: list[str] = []
        input_tokens = output_tokens = 0

        for round_no in range(MAX_TOOL_ROUNDS + 1):
            offered = _offered(toolbox, round_no)
            reply = await self._client.messages.create(
                **self._request(conversation, system, temperature, max_tokens, offered),
            )
            input_tokens += reply.usage.input_tokens
            output_tokens += reply.usage.output_tokens

            uses = [block for block in reply.content if block.type == "tool_use"]
            if not offered or not uses:
                break
            used.extend(use.name for use in uses)
            conversation.append({"role": "assistant", "content": reply.content})
            conversation.append(await self._tool_results(toolbox, uses))

        return LLMResponse(
            content="".join(
                block.text for block in reply.content if block.type == "text"
            ),
            model=reply.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            tool_calls=used,
        )

    async def stream(
        self,
        messages: ChatMessages,
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        tools: Sequence[Tool] | None = None,
    ) -> AsyncIterator[str]:
        toolbox = {tool.name: tool for tool in tools or ()}
        conversation = list(messages)

        for round_no in range(MAX_TOOL_ROUNDS + 1):
            offered = _offered(toolbox, round_no)
            request = self._request(
                conversation, system, temperature, max_tokens, offered,
            )
            async with self._client.messages.stream(**request) as events:
                async for text in events.text_stream:
                    if text:
                        yield text
                if not offered:
                    return
                final = await events.get_final_message()

            uses = [block for block in final.content if block.type == "tool_use"]
            if not uses:
                return
            conversation.append({"role": "assistant", "content": final.content})
            conversation.append(await self._tool_results(toolbox, uses))


# ---------------------------------------------------------------------------
# OpenAI-compatible (DeepSeek, Qwen, GLM, OpenAI)
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider:
    """
    Any chat-completions API that speaks the OpenAI wire format.

    Switching vendor is configuration only:
        LLM_PROVIDER=openai_compatible
        LLM_BASE_URL=https://api.deepseek.com/v1
        LLM_MODEL=deepseek-chat
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
    ) -> None:
        from openai import AsyncOpenAI

        key = api_key or settings.llm_api_key or settings.openai_api_key
        if not key:
            raise ValueError(
                "OpenAI-compatible provider selected but no API key "
                "configured (set LLM_API_KEY)"
            )
        endpoint = base_url or settings.llm_base_url
        self._client = (
            AsyncOpenAI(api_key=key, base_url=endpoint)
            if endpoint
            else AsyncOpenAI(api_key=key)
        )
        self._model = model or settings.llm_model
        logger.info(
            "LLM provider: openai_compatible (model=%s, endpoint=%s)",
            self._model, endpoint or "default",
        )

    def _request(
        self,
        messages: ChatMessages,
        system: str | None,
        temperature: float | None,
        max_tokens: int | None,
        tools: list[Tool],
    ) -> dict:
        prefix = [{"role": "system", "content": system}] if system else []
        request = {
            "model": self._model,
            "messages": prefix + list(messages),
            **_sampling(temperature, max_tokens),
        }
        if tools:
            request["tools"] = [tool.to_openai() for tool in tools]
        return request

    @staticmethod
    async def _tool_turns(
        toolbox: dict[str, Tool],
        content: str | None,
        calls: list[dict],
    ) -> list[dict]:
        """
        The assistant turn that requested `calls`, then one tool turn each.

        `calls` items are {"id", "name", "arguments"}; arguments is the raw
        JSON string the model produced.
        """
        turns: list[dict] = [{
            "role": "assistant",
            "content": content,
            "tool_calls": [
                {
                    "id": call["id"],
                    "type": "function",
                    "function": {"name": call["name"], "arguments": call["arguments"]},
                }
                for call in calls
            ],
        }]
        for call in calls:
            output = await call_tool(toolbox, call["name"], call["arguments"])
            turns.append({"role": "tool", "tool_call_id": call["id"], "content": output})
        return turns

    async def complete(
        self,
        messages: ChatMessages,
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        tools: Sequence[Tool] | None = None,
    ) -> LLMResponse:
        toolbox = {tool.name: tool for tool in tools or ()}
        conversation = list(messages)
        used: list[str] = []
        input_tokens = output_tokens = 0

        for round_no in range(MAX_TOOL_ROUNDS + 1):
            offered = _offered(toolbox, round_no)
            reply = await self._client.chat.completions.create(
                **self._request(conversation, system, temperature, max_tokens, offered),
            )
            usage = reply.usage
            if usage:
                input_tokens += usage.prompt_tokens
                output_tokens += usage.completion_tokens

            message = reply.choices[0].message
            if not offered or not message.tool_calls:
                break
            calls = [
                {
                    "id": call.id,
                    "name": call.function.name,
                    "arguments": call.function.arguments,
                }
                for call in message.tool_calls
            ]
            used.extend(call["name"] for call in calls)
            conversation.extend(
                await self._tool_turns(toolbox, message.content, calls)
            )

        return LLMResponse(
            content=message.content or "",
            model=reply.model or self._model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            tool_calls=used,
        )

    async def stream(
        self,
        messages: ChatMessages,
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        tools: Sequence[Tool] | None = None,
    ) -> AsyncIterator[str]:
        toolbox = {tool.name: tool for tool in tools or ()}
        conversation = list(messages)

        for round_no in range(MAX_TOOL_ROUNDS + 1):
            offered = _offered(toolbox, round_no)
            chunks = await self._client.chat.completions.create(
                **self._request(conversation, system, temperature, max_tokens, offered),
                stream=True,
            )
            text: list[str] = []
            # Tool calls arrive as fragments keyed by index
            pending: dict[int, dict] = {}
            async for chunk in chunks:
                # Usage-only trailer chunks carry no choices
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                if delta.content:
                    text.append(delta.content)
                    yield delta.content
                if offered:
                    for part in delta.tool_calls or ():
                        call = pending.setdefault(
                            part.index, {"id": "", "name": "", "arguments": ""},
                        )
                        if part.id:
                            call["id"] = part.id
                        if part.function and part.function.name:
                            call["name"] += part.function.name
                        if part.function and part.function.arguments:
                            call["arguments"] += part.function.arguments

            if not pending:
                return
            calls = [pending[index] for index in sorted(pending)]
            conversation.extend(
                await self._tool_turns(toolbox, "".join(text) or None, calls)
            )


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_PROVIDERS = {
    "anthropic": AnthropicProvider,
    "openai_compatible": OpenAICompatibleProvider,
}

_provider: AnthropicProvider | OpenAICompatibleProvider | None = None


def get_llm_provider() -> AnthropicProvider | OpenAICompatibleProvider:
    """
    Return the configured provider, creating it on first call.

    Raises:
        ValueError: Unknown `llm_provider`, or no API key for it.
    """
    global _provider
    if _provider is None:
        provider_cls = _PROVIDERS.get(settings.llm_provider)
        if provider_cls is None:
            raise ValueError(
                f"Unknown LLM provider '{settings.llm_provider}'. "
                f"Supported: {', '.join(sorted(_PROVIDERS))}"
            )
        _provider = provider_cls()
    return _provider
