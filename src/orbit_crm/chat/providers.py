"""Streaming chat-completion providers.

Each provider posts a streaming request with httpx and yields a uniform
sequence of events: ``TextDelta`` chunks as they arrive, any ``ToolCall``
requests once the round is complete, and a final ``Usage``.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

import httpx

from orbit_crm.common.config import OrbitSettings
from orbit_crm.common.exceptions import UpstreamError, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: str  # JSON-encoded


@dataclass
class ChatMessage:
    role: str  # "user", "assistant" or "tool"
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None


@dataclass
class TextDelta:
    text: str


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def add(self, other: "Usage") -> None:
        self.prompt_tokens += other.prompt_tokens
        self.completion_tokens += other.completion_tokens


StreamEvent = TextDelta | ToolCall | Usage


class ChatProvider(ABC):
    """Base class for streaming completion backends."""

    name: str = ""
    supports_tools: bool = False

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: float = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @abstractmethod
    def stream(
        self,
        model: str,
        system: str,
        messages: list[ChatMessage],
        tools: list[dict] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream one completion round."""

    async def _sse_lines(
        self, url: str, payload: dict[str, Any], headers: dict[str, str]
    ) -> AsyncIterator[dict]:
        """POST ``payload`` and yield each decoded ``data:`` frame."""
        async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
            async with client.stream("POST", url, json=payload, headers=headers) as response:
                if response.status_code != 200:
                    body = await response.aread()
                    logger.warning(
                        "%s error: %s %s", self.name, response.status_code, body[:500]
                    )
                    raise UpstreamError(f"{self.name} returned HTTP {response.status_code}")
                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    data = line[5:].strip()
                    if not data or data == "[DONE]":
                        continue
                    try:
                        yield json.loads(data)
                    except json.JSONDecodeError:
                        logger.warning("%s sent a malformed stream frame", self.name)


class OpenAIProvider(ChatProvider):
    """OpenAI chat completions (also any OpenAI-compatible endpoint)."""

    name = "OpenAI"
    supports_tools = True

    @staticmethod
    def _encode(system: str, messages: list[ChatMessage]) -> list[dict]:
        encoded: list[dict] = [{"role": "system", "content": system}]
        for m in messages:
            if m.role == "tool":
                encoded.append({"role": "tool", "tool_call_id": m.tool_call_id, "content": m.content})
            elif m.tool_calls:
                encoded.append({
                    "role": "assistant",
                    "content": m.content or None,
                    "tool_calls": [
                        {
                            "id": c.id,
                            "type": "function",
                            "function": {"name": c.name, "arguments": c.arguments},
                        }
                        for c in m.tool_calls
                    ],
                })
            else:
                encoded.append({"role": m.role, "content": m.content})
        return encoded

    async def stream(self, model, system, messages, tools=None):
        payload: dict[str, Any] = {
            "model": model,
            "messages": self._encode(system, messages),
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            payload["tools"] = tools

        pending: dict[int, dict] = {}
        usage = Usage()
        async for frame in self._sse_lines(
            f"{self.base_url}/chat/completions",
            payload,
            {"Authorization": f"Bearer {self.api_key}"},
        ):
            if frame.get("usage"):
                usage = Usage(
                    prompt_tokens=frame["usage"].get("prompt_tokens", 0),
                    completion_tokens=frame["usage"].get("completion_tokens", 0),
                )
            for choice in frame.get("choices") or []:
                delta = choice.get("delta") or {}
                if delta.get("content"):
                    yield TextDelta(delta["content"])
                # Tool call arguments arrive in fragments keyed by index
                for part in delta.get("tool_calls") or []:
                    slot = pending.setdefault(part.get("index", 0), {"id": "", "name": "", "arguments": ""})
                    fn = part.get("function") or {}
                    slot["id"] = part.get("id") or slot["id"]
                    slot["name"] = fn.get("name") or slot["name"]
                    slot["arguments"] += fn.get("arguments") or ""

        for index in sorted(pending):
            slot = pending[index]
            yield ToolCall(id=slot["id"], name=slot["name"], arguments=slot["arguments"] or "{}")
        yield usage


class AnthropicProvider(ChatProvider):
    """Anthropic Messages API."""

    name = "Anthropic"
    API_VERSION = "2023-06-01"
    MAX_TOKENS = 2000

    async def stream(self, model, system, messages, tools=None):
        payload = {
            "model": model,
            "system": system,
            "max_tokens": self.MAX_TOKENS,
            "stream": True,
            "messages": [
                {"role": m.role, "content": m.content}
                for m in messages
                if m.role in ("user", "assistant") and m.content
            ],
        }
        headers = {"x-api-key": self.api_key, "anthropic-version": self.API_VERSION}

        usage = Usage()
        async for frame in self._sse_lines(f"{self.base_url}/messages", payload, headers):
            kind = frame.get("type")
            if kind == "message_start":
                start = (frame.get("message") or {}).get("usage") or {}
                usage.prompt_tokens = start.get("input_tokens", 0)
                usage.completion_tokens = start.get("output_tokens", 0)
            elif kind == "content_block_delta":
                delta = frame.get("delta") or {}
                if delta.get("type") == "text_delta" and delta.get("text"):
                    yield TextDelta(delta["text"])
            elif kind == "message_delta":
                usage.completion_tokens = (frame.get("usage") or {}).get(
                    "output_tokens", usage.completion_tokens
                )
            elif kind == "error":
                raise UpstreamError(f"Anthropic stream error: {frame.get('error')}")
        yield usage


class GoogleProvider(ChatProvider):
    """Google Gemini streamGenerateContent."""

    name = "Google"

    async def stream(self, model, system, messages, tools=None):
        contents = [
            {
                "role": "user" if m.role == "user" else "model",
                "parts": [{"text": m.content}],
            }
            for m in messages
            if m.role in ("user", "assistant") and m.content
        ]
        payload = {
            "contents": contents,
            "systemInstruction": {"parts": [{"text": system}]},
        }
        url = f"{self.base_url}/models/{model}:streamGenerateContent?alt=sse"

        usage = Usage()
        async for frame in self._sse_lines(url, payload, {"x-goog-api-key": self.api_key}):
            for candidate in frame.get("candidates") or []:
                for part in (candidate.get("content") or {}).get("parts") or []:
                    if part.get("text"):
                        yield TextDelta(part["text"])
            # usageMetadata is cumulative; the last frame wins
            meta = frame.get("usageMetadata")
            if meta:
                usage = Usage(
                    prompt_tokens=meta.get("promptTokenCount", 0),
                    completion_tokens=meta.get("candidatesTokenCount", 0),
                )
        yield usage


_PREFIXES = (
    ("gpt-", OpenAIProvider),
    ("claude-", AnthropicProvider),
    ("gemini-", GoogleProvider),
)


def provider_name(model: str) -> str:
    for prefix, cls in _PREFIXES:
        if model.startswith(prefix):
            return cls.name
    return "Unknown"


def provider_for_model(
    model: str,
    settings: OrbitSettings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ChatProvider:
    """Build the provider that serves ``model`` from configured credentials."""
    credentials = {
        OpenAIProvider: (settings.openai_api_key, settings.openai_base_url),
        AnthropicProvider: (settings.anthropic_api_key, settings.anthropic_base_url),
        GoogleProvider: (settings.google_api_key, settings.google_base_url),
    }
    for prefix, cls in _PREFIXES:
        if model.startswith(prefix):
            api_key, base_url = credentials[cls]
            return cls(api_key, base_url, timeout=settings.chat_timeout, transport=transport)
    raise ValidationError(f"No provider serves model {model}")
