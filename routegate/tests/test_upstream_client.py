import asyncio
import json

import httpx
import pytest

from routegate.adapters.openai_compat.upstream import (
    BackendClient,
    BackendEndpoint,
    _normalize_upstream_base,
    first_delta_text,
)
from routegate.core.errors import (
    BackendAuthError,
    BackendNotFound,
    BackendRateLimited,
    UnclassifiedBackendError,
)

ENDPOINT = BackendEndpoint(base_url="https://backend.example.com/v1", api_key="sk-test")


def _client(handler) -> BackendClient:
    return BackendClient(httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def test_complete_posts_to_chat_completions_with_bearer():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "cmpl-1", "object": "chat.completion"})

    async def run_case():
        client = _client(handler)
        try:
            return await client.complete(ENDPOINT, {"model": "m", "messages": []})
        finally:
            await client.aclose()

    body = asyncio.run(run_case())
    assert body == {"id": "cmpl-1", "object": "chat.completion"}
    assert seen["url"] == "https://backend.example.com/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["model"] == "m"


@pytest.mark.parametrize(
    ("status", "error_type"),
    [
        (401, BackendAuthError),
        (404, BackendNotFound),
        (429, BackendRateLimited),
        (500, UnclassifiedBackendError),
    ],
)
def test_complete_maps_status_to_error(status, error_type):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={"error": {"message": f"status {status}"}})

    async def run_case():
        client = _client(handler)
        try:
            await client.complete(ENDPOINT, {"model": "m"})
        finally:
            await client.aclose()

    with pytest.raises(error_type) as exc_info:
        asyncio.run(run_case())
    assert exc_info.value.status_code == status
    assert exc_info.value.detail == f"status {status}"


def test_complete_transport_error_is_unclassified():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("dns lookup failed", request=request)

    async def run_case():
        client = _client(handler)
        try:
            await client.complete(ENDPOINT, {"model": "m"})
        finally:
            await client.aclose()

    with pytest.raises(UnclassifiedBackendError) as exc_info:
        asyncio.run(run_case())
    assert "backend_unreachable" in str(exc_info.value)


def test_stream_parses_sse_chunks_until_done():
    sse = (
        ": keep-alive\n\n"
        'data: {"choices":[{"delta":{"content":"Hel"}}]}\n\n'
        'data: {"choices":[{"delta":{"content":"lo"}}]}\n\n'
        "data: [DONE]\n\n"
    )

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers.get("accept") == "text/event-stream"
        return httpx.Response(200, content=sse.encode("utf-8"), headers={"content-type": "text/event-stream"})

    async def run_case():
        client = _client(handler)
        try:
            async with client.stream(ENDPOINT, {"model": "m", "stream": True}) as chunks:
                return [first_delta_text(chunk) async for chunk in chunks]
        finally:
            await client.aclose()

    assert asyncio.run(run_case()) == ["Hel", "lo"]


def test_stream_error_status_raises_on_open():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": {"message": "Incorrect API key"}})

    async def run_case():
        client = _client(handler)
        try:
            async with client.stream(ENDPOINT, {"model": "m", "stream": True}):
                raise AssertionError("stream should not open")
        finally:
            await client.aclose()

    with pytest.raises(BackendAuthError) as exc_info:
        asyncio.run(run_case())
    assert exc_info.value.detail == "Incorrect API key"


def test_stream_error_event_raises_mid_stream():
    sse = (
        'data: {"choices":[{"delta":{"content":"a"}}]}\n\n'
        'data: {"error":{"message":"overloaded"}}\n\n'
    )

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=sse.encode("utf-8"))

    async def run_case():
        client = _client(handler)
        seen = []
        try:
            async with client.stream(ENDPOINT, {"model": "m", "stream": True}) as chunks:
                async for chunk in chunks:
                    seen.append(first_delta_text(chunk))
        finally:
            await client.aclose()
        return seen

    with pytest.raises(UnclassifiedBackendError) as exc_info:
        asyncio.run(run_case())
    assert "overloaded" in str(exc_info.value)


def test_first_delta_text_ignores_non_text_deltas():
    assert first_delta_text({"choices": [{"delta": {"role": "assistant"}}]}) == ""
    assert first_delta_text({"choices": []}) == ""
    assert first_delta_text({}) == ""
    assert first_delta_text({"choices": [{"delta": {"content": "x"}}]}) == "x"


def test_normalize_upstream_base_rules():
    assert _normalize_upstream_base("https://llm.example.com/v1/") == "https://llm.example.com/v1"
    for bad in ("llm.example.com", "ftp://llm.example.com", "https://llm.example.com/v1?x=1"):
        with pytest.raises(ValueError):
            _normalize_upstream_base(bad)
