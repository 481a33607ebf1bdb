"""End-to-end tests for /v1/chat/completions over the fake upstream."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from playground_proxy.api.routes.chat import _relay
from playground_proxy.completions import ChatCompletionStreamAdapter
from playground_proxy.testing import FakeUpstream, ProxyHarness, UpstreamResponse, build_sse_body
from playground_proxy.usage_metrics import USAGE_COUNTERS

USAGE = {"promptTokens": 3, "completionTokens": 2}


def _parse_sse(body: bytes) -> list:
    frames = []
    for block in body.decode("utf-8").split("\n\n"):
        if not block:
            continue
        assert block.startswith("data: ")
        data = block[len("data: "):]
        frames.append(data if data == "[DONE]" else json.loads(data))
    return frames


def _request(stream: bool = False, **extra) -> dict:
    payload = {
        "model": "Deepseek R1",
        "messages": [{"role": "user", "content": "Say hello"}],
        "stream": stream,
    }
    payload.update(extra)
    return payload


@pytest.mark.asyncio
async def test_non_streaming_aggregates_legacy_stream():
    fake = FakeUpstream()
    fake.enqueue_legacy_stream(["Hello", " world"], usage=USAGE, chunk_sizes=[4, 9, 1, 30])

    async with ProxyHarness(fake) as proxy:
        async with proxy.make_async_client() as client:
            response = await client.post("/v1/chat/completions", json=_request())

    assert response.status_code == 200
    body = response.json()
    assert body["object"] == "chat.completion"
    assert body["model"] == "Deepseek R1"
    assert body["id"].startswith("chatcmpl-")
    assert body["choices"] == [
        {
            "index": 0,
            "message": {"role": "assistant", "content": "Hello world"},
            "finish_reason": "stop",
        }
    ]
    assert body["usage"] == {"prompt_tokens": 3, "completion_tokens": 2, "total_tokens": 5}


@pytest.mark.asyncio
async def test_non_streaming_aggregates_sse_stream():
    fake = FakeUpstream()
    fake.enqueue_sse_stream(["Hi", "!"], finish_reason="length")

    async with ProxyHarness(fake) as proxy:
        async with proxy.make_async_client() as client:
            response = await client.post("/v1/chat/completions", json=_request())

    body = response.json()
    assert body["choices"][0]["message"]["content"] == "Hi!"
    assert body["choices"][0]["finish_reason"] == "length"


@pytest.mark.asyncio
async def test_streaming_relays_chunks_and_single_sentinel():
    fake = FakeUpstream()
    fake.enqueue_legacy_stream(["Hel", "lo"], usage=USAGE, chunk_sizes=[2, 2, 2, 2, 2])

    async with ProxyHarness(fake) as proxy:
        async with proxy.make_async_client() as client:
            response = await client.post("/v1/chat/completions", json=_request(stream=True))

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"
    frames = _parse_sse(response.content)
    assert frames[-1] == "[DONE]"
    assert frames.count("[DONE]") == 1
    choices = [frame["choices"][0] for frame in frames[:-1]]
    assert choices == [
        {"index": 0, "delta": {"role": "assistant"}, "finish_reason": None},
        {"index": 0, "delta": {"content": "Hel"}, "finish_reason": None},
        {"index": 0, "delta": {"content": "lo"}, "finish_reason": None},
        {"index": 0, "delta": {}, "finish_reason": "stop"},
    ]
    assert len({frame["id"] for frame in frames[:-1]}) == 1


@pytest.mark.asyncio
async def test_streaming_with_configured_sse_envelope():
    fake = FakeUpstream()
    fake.enqueue_sse_stream(["Hi"])

    async with ProxyHarness(fake, envelope="sse") as proxy:
        async with proxy.make_async_client() as client:
            response = await client.post("/v1/chat/completions", json=_request(stream=True))

    frames = _parse_sse(response.content)
    assert [f["choices"][0]["delta"] for f in frames[:-1]] == [
        {"role": "assistant"},
        {"content": "Hi"},
        {},
    ]
    assert frames[-1] == "[DONE]"


@pytest.mark.asyncio
async def test_forwards_request_parameters_upstream():
    fake = FakeUpstream()
    fake.enqueue_legacy_stream(["ok"])

    async with ProxyHarness(fake, api_keys=("server-key",)) as proxy:
        async with proxy.make_async_client() as client:
            await client.post(
                "/v1/chat/completions",
                json=_request(temperature=0.2, max_tokens=50),
            )

    sent = fake.chat_requests()[0]["json"]
    assert sent["model"] == "Deepseek R1"
    assert sent["config"] == {"temperature": 0.2, "maxTokens": 50}
    assert sent["apiKey"] == "ai-server-key"
    assert sent["messages"][0]["content"] == "Say hello"


@pytest.mark.asyncio
async def test_request_bearer_keys_take_precedence():
    fake = FakeUpstream()
    fake.enqueue_legacy_stream(["ok"])

    async with ProxyHarness(fake, api_keys=("server-key",)) as proxy:
        async with proxy.make_async_client() as client:
            await client.post(
                "/v1/chat/completions",
                json=_request(),
                headers={"Authorization": "Bearer client-key"},
            )

    assert fake.chat_requests()[0]["json"]["apiKey"] == "ai-client-key"


@pytest.mark.asyncio
async def test_missing_model_uses_default():
    fake = FakeUpstream()
    fake.enqueue_legacy_stream(["ok"])

    async with ProxyHarness(fake) as proxy:
        async with proxy.make_async_client() as client:
            response = await client.post(
                "/v1/chat/completions",
                json={"messages": [{"role": "user", "content": "hi"}]},
            )

    assert response.status_code == 200
    assert response.json()["model"] == "Deepseek R1"


@pytest.mark.asyncio
async def test_unknown_model_returns_404():
    fake = FakeUpstream()

    async with ProxyHarness(fake) as proxy:
        async with proxy.make_async_client() as client:
            response = await client.post("/v1/chat/completions", json=_request(model="nope"))

    assert response.status_code == 404
    error = response.json()["error"]
    assert error["code"] == "model_not_found"
    assert error["message"] == 'Model "nope" not found'
    assert fake.chat_requests() == []


@pytest.mark.asyncio
async def test_no_api_keys_returns_401():
    fake = FakeUpstream()

    async with ProxyHarness(fake, api_keys=()) as proxy:
        async with proxy.make_async_client() as client:
            response = await client.post(
                "/v1/chat/completions",
                json=_request(),
                headers={"Authorization": "Bearer none"},
            )

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "missing_api_key"
    assert fake.received == []


@pytest.mark.asyncio
async def test_upstream_error_status_returns_502():
    fake = FakeUpstream()
    fake.enqueue_error_response(500, "upstream exploded")

    async with ProxyHarness(fake) as proxy:
        async with proxy.make_async_client() as client:
            response = await client.post("/v1/chat/completions", json=_request(stream=True))

    assert response.status_code == 502
    error = response.json()["error"]
    assert error["type"] == "upstream_error"
    assert "upstream exploded" in error["message"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "content,code",
    [
        (b"{not json", "invalid_json"),
        (b"[1, 2]", "invalid_json_shape"),
        (b'{"messages": "hi"}', "invalid_parameter"),
        (b'{"messages": [], "temperature": "hot"}', "invalid_parameter"),
        (b'{"model": 5}', "invalid_parameter"),
    ],
)
async def test_invalid_requests_return_400(content, code):
    fake = FakeUpstream()

    async with ProxyHarness(fake) as proxy:
        async with proxy.make_async_client() as client:
            response = await client.post(
                "/v1/chat/completions",
                content=content,
                headers={"Content-Type": "application/json"},
            )

    assert response.status_code == 400
    assert response.json()["error"]["code"] == code


@pytest.mark.asyncio
async def test_usage_counters_track_requests():
    fake = FakeUpstream()
    fake.enqueue_legacy_stream(["a"], usage=USAGE)
    fake.enqueue_legacy_stream(["b"], usage=USAGE)
    fake.enqueue(UpstreamResponse(status_code=500, body="boom"))

    async with ProxyHarness(fake) as proxy:
        async with proxy.make_async_client() as client:
            await client.post("/v1/chat/completions", json=_request())
            await client.post("/v1/chat/completions", json=_request(stream=True))
            await client.post("/v1/chat/completions", json=_request())
            usage = (await client.get("/api/usage")).json()["realtime"]

    assert usage["received"] == 3
    assert usage["served"] == 3
    assert usage["failed"] == 1
    assert usage["streams"] == 1
    assert usage["ongoing"] == 0
    assert usage["prompt_tokens"] == 6
    assert usage["completion_tokens"] == 4
    assert USAGE_COUNTERS.snapshot()["total_tokens"] == 10


@pytest.mark.asyncio
async def test_streaming_counts_usage_sent_after_finish():
    body = build_sse_body(["Hi"], add_done=False) + (
        b'data: {"choices":[],"usage":{"prompt_tokens":4,"completion_tokens":1}}\n\n'
        b"data: [DONE]\n\n"
    )
    fake = FakeUpstream()
    fake.enqueue(UpstreamResponse(body=body, media_type="text/event-stream"))

    async with ProxyHarness(fake) as proxy:
        async with proxy.make_async_client() as client:
            response = await client.post("/v1/chat/completions", json=_request(stream=True))
            usage = (await client.get("/api/usage")).json()["realtime"]

    frames = _parse_sse(response.content)
    assert frames.count("[DONE]") == 1
    assert frames[-2]["choices"][0]["finish_reason"] == "stop"
    assert usage["prompt_tokens"] == 4
    assert usage["completion_tokens"] == 1
    assert usage["failed"] == 0


class _ClosableStream(httpx.AsyncByteStream):
    def __init__(self, chunks: list[bytes]) -> None:
        self.chunks = chunks
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


@pytest.mark.asyncio
async def test_client_disconnect_counts_stream_as_failed():
    checks = {"count": 0}

    async def disconnect_checker() -> bool:
        checks["count"] += 1
        return checks["count"] > 1

    stream = _ClosableStream([b'0:"a"\n', b'0:"b"\n'])
    upstream = httpx.Response(200, stream=stream)
    adapter = ChatCompletionStreamAdapter(None, "m", disconnect_checker=disconnect_checker)
    tracker = USAGE_COUNTERS.start_request(stream=True)

    with pytest.raises(asyncio.CancelledError):
        async for _ in _relay(adapter, upstream, tracker):
            pass

    snapshot = USAGE_COUNTERS.snapshot()
    assert snapshot["failed"] == 1
    assert snapshot["ongoing"] == 0
    assert stream.closed is True
