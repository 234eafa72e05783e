"""Tests for world_tavern.llm: HttpLLM and EchoLLM."""

import json

import httpx
import pytest

from world_tavern.llm import ChatMessage, EchoLLM, GenerateRequest, HttpLLM, LLMError


def _request(**kwargs) -> GenerateRequest:
    return GenerateRequest(messages=[ChatMessage(role="user", content="Describe the tavern.")], **kwargs)


async def _drain(llm, request: GenerateRequest) -> list:
    return [chunk async for chunk in llm.generate_stream(request)]


def _sse(*events) -> bytes:
    lines = [f"data: {json.dumps(e)}\n\n" for e in events]
    lines.append("data: [DONE]\n\n")
    return "".join(lines).encode()


def _delta(text: str) -> dict:
    return {"choices": [{"delta": {"content": text}}]}


class Recorder:
    """MockTransport handler that records requests and replays a canned response."""

    def __init__(self, response: httpx.Response | Exception) -> None:
        self.response = response
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if isinstance(self.response, Exception):
            raise self.response
        return self.response

    def llm(self, **kwargs) -> HttpLLM:
        return HttpLLM(transport=httpx.MockTransport(self), **{"provider_url": "http://llm.local/", **kwargs})


# ---------------------------------------------------------------------------
# EchoLLM
# ---------------------------------------------------------------------------

class TestEchoLLM:
    async def test_streams_last_user_message(self) -> None:
        chunks = await _drain(EchoLLM(), _request())
        assert "".join(c.content for c in chunks if c.type == "text") == "Describe the tavern."
        assert chunks[-1].type == "done"


# ---------------------------------------------------------------------------
# HttpLLM, OpenAI-compatible streaming
# ---------------------------------------------------------------------------

class TestHttpLLMOpenAI:
    async def test_streams_deltas_and_usage(self) -> None:
        body = _sse(_delta("The tavern"), _delta(" is smoky."), {"choices": [], "usage": {"completion_tokens": 4}})
        rec = Recorder(httpx.Response(200, content=body))
        chunks = await _drain(rec.llm(), _request())
        assert [c.content for c in chunks if c.type == "text"] == ["The tavern", " is smoky."]
        assert chunks[-1].type == "done"
        assert chunks[-1].usage.completion_tokens == 4

    async def test_request_body(self) -> None:
        rec = Recorder(httpx.Response(200, content=_sse(_delta("ok"))))
        await _drain(rec.llm(model="default-model", api_key="sk-1"), _request(max_tokens=50, temperature=0.2))
        sent = rec.requests[0]
        assert str(sent.url) == "http://llm.local/v1/chat/completions"
        assert sent.headers["Authorization"] == "Bearer sk-1"
        body = json.loads(sent.content)
        assert body["stream"] is True
        assert body["model"] == "default-model"
        assert body["max_tokens"] == 50
        assert body["temperature"] == 0.2
        assert body["messages"] == [{"role": "user", "content": "Describe the tavern."}]

    async def test_request_model_wins_and_json_mode(self) -> None:
        rec = Recorder(httpx.Response(200, content=_sse(_delta("{}"))))
        await _drain(rec.llm(model="default-model"), _request(model="other", response_format="json_object"))
        body = json.loads(rec.requests[0].content)
        assert body["model"] == "other"
        assert body["response_format"] == {"type": "json_object"}
        assert "Authorization" not in rec.requests[0].headers

    async def test_images_become_content_parts(self) -> None:
        rec = Recorder(httpx.Response(200, content=_sse(_delta("ok"))))
        request = GenerateRequest(messages=[ChatMessage(role="user", content="Look", images=["data:x"])])
        await _drain(rec.llm(), request)
        content = json.loads(rec.requests[0].content)["messages"][0]["content"]
        assert content == [
            {"type": "text", "text": "Look"},
            {"type": "image_url", "image_url": {"url": "data:x"}},
        ]

    async def test_error_event_becomes_error_chunk(self) -> None:
        body = _sse(_delta("Half"), {"error": {"message": "context overflow"}})
        chunks = await _drain(Recorder(httpx.Response(200, content=body)).llm(), _request())
        assert chunks[-1].type == "error"
        assert chunks[-1].content == "context overflow"

    async def test_malformed_lines_are_skipped(self) -> None:
        body = b"data: {not json\n\n: comment\n\n" + _sse(_delta("fine"))
        chunks = await _drain(Recorder(httpx.Response(200, content=body)).llm(), _request())
        assert [c.content for c in chunks if c.type == "text"] == ["fine"]

    async def test_http_error_raises_llm_error(self) -> None:
        rec = Recorder(httpx.Response(500, content=b"boom"))
        with pytest.raises(LLMError, match="HTTP 500"):
            await _drain(rec.llm(), _request())

    async def test_connect_error_raises_llm_error(self) -> None:
        rec = Recorder(httpx.ConnectError("refused"))
        with pytest.raises(LLMError, match="Cannot connect"):
            await _drain(rec.llm(), _request())


# ---------------------------------------------------------------------------
# HttpLLM, KoboldCpp format
# ---------------------------------------------------------------------------

class TestHttpLLMKoboldCpp:
    async def test_single_text_chunk(self) -> None:
        rec = Recorder(httpx.Response(200, json={"results": [{"text": "Smoke hangs low."}]}))
        chunks = await _drain(rec.llm(provider_format="koboldcpp"), _request(max_tokens=80))
        assert [(c.type, c.content) for c in chunks] == [("text", "Smoke hangs low."), ("done", "")]
        sent = rec.requests[0]
        assert str(sent.url) == "http://llm.local/api/v1/generate"
        body = json.loads(sent.content)
        assert body["max_length"] == 80
        assert body["prompt"].endswith("assistant:")

    async def test_malformed_response_raises_llm_error(self) -> None:
        rec = Recorder(httpx.Response(200, json={"unexpected": True}))
        with pytest.raises(LLMError):
            await _drain(rec.llm(provider_format="koboldcpp"), _request())

    async def test_timeout_raises_llm_error(self) -> None:
        rec = Recorder(httpx.ReadTimeout("slow"))
        with pytest.raises(LLMError, match="timed out"):
            await _drain(rec.llm(provider_format="koboldcpp"), _request())
