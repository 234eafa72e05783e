"""LLM client: streaming HTTP connection to a chat-completion backend.

The session engine talks to any object matching the protocol:

    def generate_stream(self, request: GenerateRequest) -> AsyncIterator[StreamChunk]

A stream is zero or more "text" chunks followed by one terminal chunk:
"done" (optionally carrying token usage) or "error". Transport failures are
raised as LLMError instead.

Two implementations are provided:

    HttpLLM  : real HTTP client, supports OpenAI-compatible chat streaming
                 and KoboldCpp. Selected by provider_format.
    EchoLLM  : streams the last user message back. Useful for smoke-testing
                 the engine wiring without a running model.

Production code constructs an HttpLLM from config and hands it to the
SessionEngine. Tests use StubLLM (defined in conftest.py) instead.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Literal, Protocol

import httpx
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Wire types
# ---------------------------------------------------------------------------

class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str
    images: list[str] = Field(default_factory=list)


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class GenerateRequest(BaseModel):
    model: str = ""
    messages: list[ChatMessage]
    max_tokens: int | None = None
    temperature: float | None = None
    response_format: Literal["text", "json_object"] = "text"


class StreamChunk(BaseModel):
    type: Literal["text", "done", "error"]
    content: str = ""
    usage: Usage | None = None


# ---------------------------------------------------------------------------
# Protocol: every LLM implementation must match this signature
# ---------------------------------------------------------------------------

class LLM(Protocol):
    def generate_stream(self, request: GenerateRequest) -> AsyncIterator[StreamChunk]: ...


# ---------------------------------------------------------------------------
# HttpLLM: connects to a real backend
# ---------------------------------------------------------------------------

ProviderFormat = Literal["koboldcpp", "openai"]


class HttpLLM:
    """Async HTTP client for chat backends.

    Supported formats:
      "openai"    : POST /v1/chat/completions  {"stream": true, ...}
                     Response: server-sent events, one JSON delta per line,
                     terminated by "data: [DONE]"
      "koboldcpp" : POST /api/v1/generate  {"prompt": ...}
                     Response: {"results": [{"text": "..."}]}, delivered as a
                     single text chunk

    Args:
        provider_url:    Base URL of the backend, e.g. "http://localhost:5001".
        api_key:         Bearer token, or empty string if not required.
        provider_format: Wire format to use. Defaults to "openai".
        model:           Model used when the request doesn't name one.
        timeout:         HTTP timeout in seconds. Defaults to 120.
        transport:       Optional httpx transport (tests pass a MockTransport).
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        provider_format: ProviderFormat = "openai",
        model: str = "",
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._format = provider_format
        self._model = model
        self._timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    def _openai_message(self, message: ChatMessage) -> dict:
        if not message.images:
            return {"role": message.role, "content": message.content}
        parts: list[dict] = [{"type": "text", "text": message.content}]
        parts.extend({"type": "image_url", "image_url": {"url": url}} for url in message.images)
        return {"role": message.role, "content": parts}

    def _build_request(self, request: GenerateRequest) -> tuple[str, dict]:
        """Return (url, body) for the configured format."""
        if self._format == "openai":
            body: dict = {
                "messages": [self._openai_message(m) for m in request.messages],
                "stream": True,
                "stream_options": {"include_usage": True},
            }
            model = request.model or self._model
            if model:
                body["model"] = model
            if request.max_tokens is not None:
                body["max_tokens"] = request.max_tokens
            if request.temperature is not None:
                body["temperature"] = request.temperature
            if request.response_format == "json_object":
                body["response_format"] = {"type": "json_object"}
            return f"{self._base_url}/v1/chat/completions", body

        # koboldcpp
        prompt = "\n\n".join(f"{m.role}: {m.content}" for m in request.messages)
        body = {"prompt": f"{prompt}\n\nassistant:"}
        if request.max_tokens is not None:
            body["max_length"] = request.max_tokens
        if request.temperature is not None:
            body["temperature"] = request.temperature
        return f"{self._base_url}/api/v1/generate", body

    def _transport_error(self, e: httpx.HTTPError) -> LLMError:
        if isinstance(e, httpx.ConnectError):
            return LLMError(f"Cannot connect to LLM backend at {self._base_url}")
        if isinstance(e, httpx.TimeoutException):
            return LLMError(f"LLM backend timed out after {self._timeout}s")
        if isinstance(e, httpx.HTTPStatusError):
            return LLMError(f"LLM backend returned HTTP {e.response.status_code}")
        return LLMError(f"LLM request failed: {e}")

    async def generate_stream(self, request: GenerateRequest) -> AsyncIterator[StreamChunk]:
        url, body = self._build_request(request)
        logger.debug(
            "llm call url=%s messages=%d prompt_len=%d",
            url, len(request.messages), sum(len(m.content) for m in request.messages),
        )
        if self._format == "openai":
            stream = self._stream_openai(url, body)
        else:
            stream = self._stream_koboldcpp(url, body)
        async for chunk in stream:
            yield chunk

    async def _stream_openai(self, url: str, body: dict) -> AsyncIterator[StreamChunk]:
        usage: Usage | None = None
        try:
            async with self._client() as client:
                async with client.stream("POST", url, json=body, headers=self._headers()) as resp:
                    if resp.status_code >= 400:
                        await resp.aread()
                        resp.raise_for_status()
                    async for line in resp.aiter_lines():
                        if not line.startswith("data:"):
                            continue
                        data = line[len("data:"):].strip()
                        if data == "[DONE]":
                            break
                        try:
                            event = json.loads(data)
                        except json.JSONDecodeError:
                            logger.debug("Skipping malformed stream line: %r", data[:200])
                            continue
                        if event.get("error"):
                            message = event["error"].get("message") if isinstance(event["error"], dict) else event["error"]
                            yield StreamChunk(type="error", content=str(message))
                            return
                        if event.get("usage"):
                            usage = Usage.model_validate(event["usage"])
                        for choice in event.get("choices") or []:
                            text = (choice.get("delta") or {}).get("content")
                            if text:
                                yield StreamChunk(type="text", content=text)
        except httpx.HTTPError as e:
            raise self._transport_error(e) from e
        yield StreamChunk(type="done", usage=usage)

    async def _stream_koboldcpp(self, url: str, body: dict) -> AsyncIterator[StreamChunk]:
        try:
            async with self._client() as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.HTTPError as e:
            raise self._transport_error(e) from e

        results = resp.json().get("results")
        if not results or "text" not in results[0]:
            raise LLMError("Unexpected response format from KoboldCpp backend")
        text = results[0]["text"]
        logger.debug("llm response len=%d", len(text))
        if text:
            yield StreamChunk(type="text", content=text)
        yield StreamChunk(type="done")


# ---------------------------------------------------------------------------
# EchoLLM: streams the last user message back; useful for smoke tests
# ---------------------------------------------------------------------------

class EchoLLM:
    """Streams the last user message back word by word. No network calls.

    Lets you verify that the engine wiring (retrieval, assembly, parsing,
    storage writes) works end-to-end without a running model. Directives in
    the echoed text are parsed like any model output.
    """

    async def generate_stream(self, request: GenerateRequest) -> AsyncIterator[StreamChunk]:
        last = next((m.content for m in reversed(request.messages) if m.role == "user"), "")
        logger.debug("EchoLLM messages=%d len=%d", len(request.messages), len(last))
        words = last.split(" ")
        for i, word in enumerate(words):
            yield StreamChunk(type="text", content=word if i == 0 else f" {word}")
        yield StreamChunk(type="done")


# ---------------------------------------------------------------------------
# LLMError: raised by HttpLLM for all connection and protocol failures
# ---------------------------------------------------------------------------

class LLMError(RuntimeError):
    """Raised when the LLM backend cannot be reached or returns an error."""
