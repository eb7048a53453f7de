"""LLM gateway: a thin async wrapper around ``litellm.acompletion()``."""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

import litellm

from agentworker.agent.messages import Message, ToolCall
from agentworker.agent.result import UsageRecord

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """The provider rejected the request; retrying will not help."""


class TransientGatewayError(GatewayError):
    """Rate limit, timeout or provider-side outage; safe to retry."""


_TRANSIENT_ERRORS: tuple[type[Exception], ...] = (
    litellm.RateLimitError,
    litellm.APIConnectionError,
    litellm.Timeout,
    litellm.ServiceUnavailableError,
    litellm.InternalServerError,
)


def estimate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """Return estimated USD cost (input + output) for a single LLM call.

    Uses litellm's pricing table, falling back to a conservative $3/$15 per
    1M tokens for models it does not know.
    """
    try:
        prompt_cost, completion_cost = litellm.cost_per_token(
            model=model,
            prompt_tokens=input_tokens,
            completion_tokens=output_tokens,
        )
        return float(prompt_cost + completion_cost)
    except Exception:
        return (input_tokens / 1_000_000) * 3.0 + (output_tokens / 1_000_000) * 15.0


def resolve_model_id(provider: str | None, model: str) -> str:
    """Return a litellm model id (``provider/model``)."""
    if not provider or "/" in model:
        return model
    return f"{provider}/{model}"


@dataclass
class ChatOptions:
    provider: str
    model: str
    tools: list[dict[str, Any]] | None = None
    max_tokens: int = 4096
    temperature: float = 0.7
    workspace_id: str | None = None
    project_id: str | None = None
    agent_id: str | None = None


@dataclass
class ChatResponse:
    """Standardised response from a single gateway call."""

    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: UsageRecord = field(default_factory=UsageRecord)
    provider: str = ""
    model: str = ""
    stop_reason: str = ""
    latency_ms: int = 0

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


class ChatGateway(Protocol):
    async def chat(self, messages: Sequence[Message], options: ChatOptions) -> ChatResponse: ...


class LLMGateway:
    """Async-only gateway over ``litellm.acompletion()``.

    Usage::

        gateway = LLMGateway(markup=2.0)
        resp = await gateway.chat(
            [Message(role="system", content="..."), Message(role="user", content="...")],
            ChatOptions(provider="anthropic", model="claude-sonnet-4-20250514"),
        )

    ``billed_amount`` on the returned usage is the provider cost times
    ``markup``.
    """

    def __init__(self, markup: float = 2.0, api_keys: dict[str, str] | None = None) -> None:
        self._markup = markup
        self._api_keys = api_keys or {}

    async def chat(self, messages: Sequence[Message], options: ChatOptions) -> ChatResponse:
        model_id = resolve_model_id(options.provider, options.model)
        kwargs: dict[str, Any] = {
            "model": model_id,
            "messages": [m.to_openai() for m in messages],
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
            "metadata": {
                "workspace_id": options.workspace_id,
                "project_id": options.project_id,
                "agent_id": options.agent_id,
            },
        }
        if options.tools:
            kwargs["tools"] = options.tools
        api_key = self._api_keys.get(options.provider)
        if api_key:
            kwargs["api_key"] = api_key

        t0 = time.monotonic()
        try:
            raw = await litellm.acompletion(**kwargs)
        except _TRANSIENT_ERRORS as exc:
            raise TransientGatewayError(str(exc)) from exc
        except litellm.APIError as exc:
            if (getattr(exc, "status_code", 0) or 0) >= 500:
                raise TransientGatewayError(str(exc)) from exc
            raise GatewayError(str(exc)) from exc
        except Exception as exc:
            raise GatewayError(str(exc)) from exc
        latency_ms = int((time.monotonic() - t0) * 1000)

        choice = raw.choices[0]
        message = choice.message
        tool_calls = [
            ToolCall.from_openai(
                {
                    "id": tc.id,
                    "function": {"name": tc.function.name, "arguments": tc.function.arguments},
                }
            )
            for tc in (message.tool_calls or [])
        ]

        usage = raw.usage or litellm.Usage()
        input_tokens = usage.prompt_tokens or 0
        output_tokens = usage.completion_tokens or 0
        try:
            cost = float(litellm.completion_cost(completion_response=raw))
        except Exception:
            cost = estimate_cost(model_id, input_tokens, output_tokens)

        logger.debug(
            "gateway response model=%s tools=%d in=%d out=%d latency_ms=%d",
            model_id,
            len(tool_calls),
            input_tokens,
            output_tokens,
            latency_ms,
        )
        return ChatResponse(
            content=message.content or "",
            tool_calls=tool_calls,
            usage=UsageRecord(
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                provider_cost=cost,
                billed_amount=cost * self._markup,
            ),
            provider=options.provider,
            model=options.model,
            stop_reason=choice.finish_reason or "",
            latency_ms=latency_ms,
        )
