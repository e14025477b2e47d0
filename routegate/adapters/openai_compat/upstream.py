"""
OpenAI 兼容后端的 HTTP 调用：单次 JSON 请求与 SSE 流式请求。
错误在这里按状态码归类，上层只处理 BackendError。
"""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Mapping
from urllib.parse import urlparse, urlunparse

import httpx

from routegate.config.settings import Settings
from routegate.core.errors import (
    UnclassifiedBackendError,
    backend_error_for_status,
)
from routegate.util.logger import logger

CHAT_COMPLETIONS_PATH = "/chat/completions"
_SSE_DONE = "[DONE]"


@dataclass(frozen=True, slots=True)
class BackendEndpoint:
    base_url: str
    api_key: str = ""

    @property
    def chat_url(self) -> str:
        return f"{self.base_url.rstrip('/')}{CHAT_COMPLETIONS_PATH}"


def _normalize_upstream_base(raw_base: str) -> str:
    candidate = raw_base.strip()
    parsed = urlparse(candidate)
    if parsed.scheme not in {"http", "https"}:
        raise ValueError("invalid_upstream_scheme")
    if not parsed.netloc:
        raise ValueError("invalid_upstream_host")
    if parsed.query or parsed.fragment:
        raise ValueError("invalid_upstream_query_fragment")
    cleaned_path = parsed.path.rstrip("/")
    return urlunparse((parsed.scheme, parsed.netloc, cleaned_path, "", "", ""))


def _backend_http_limits(source: Settings) -> httpx.Limits:
    return httpx.Limits(
        max_connections=max(10, int(source.backend_max_connections)),
        max_keepalive_connections=max(5, int(source.backend_max_keepalive_connections)),
    )


def _backend_http_timeout(source: Settings) -> httpx.Timeout:
    timeout = float(source.backend_timeout_seconds)
    return httpx.Timeout(connect=timeout, read=timeout, write=timeout, pool=timeout)


def build_http_client(source: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        http2=False,
        timeout=_backend_http_timeout(source),
        limits=_backend_http_limits(source),
    )


def _build_headers(endpoint: BackendEndpoint, *, stream: bool) -> dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if endpoint.api_key:
        headers["Authorization"] = f"Bearer {endpoint.api_key}"
    if stream:
        headers["Accept"] = "text/event-stream"
    return headers


def _decode_json_or_text(body: bytes) -> dict[str, Any] | str:
    text = body.decode("utf-8", errors="replace")
    if not text:
        return ""
    try:
        parsed = json.loads(text)
        if isinstance(parsed, dict):
            return parsed
        return text
    except json.JSONDecodeError:
        return text


def _safe_error_detail(payload: dict[str, Any] | str) -> str:
    if isinstance(payload, str):
        return payload[:600]
    error = payload.get("error")
    if isinstance(error, str):
        return error[:600]
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"][:600]
    return json.dumps(payload, ensure_ascii=False)[:600]


def _transport_error(exc: httpx.HTTPError) -> UnclassifiedBackendError:
    detail = (str(exc) or "").strip() or "connection_failed_or_timeout"
    return UnclassifiedBackendError(f"backend_unreachable: {detail}")


def _extract_sse_data_payload(line: str) -> str | None:
    stripped = line.strip()
    if not stripped.startswith("data:"):
        return None
    return stripped[5:].strip()


def _parse_sse_data(data: str) -> dict[str, Any]:
    try:
        chunk = json.loads(data)
    except json.JSONDecodeError as exc:
        raise UnclassifiedBackendError(f"malformed_stream_chunk: {data[:200]}") from exc
    if not isinstance(chunk, dict):
        raise UnclassifiedBackendError(f"malformed_stream_chunk: {data[:200]}")
    if "error" in chunk and "choices" not in chunk:
        raise UnclassifiedBackendError(f"backend_stream_error: {_safe_error_detail(chunk)}")
    return chunk


class BackendClient:
    """Thin OpenAI-compatible chat completions client over a shared httpx client."""

    def __init__(self, http_client: httpx.AsyncClient) -> None:
        self._client = http_client

    async def aclose(self) -> None:
        await self._client.aclose()

    async def complete(self, endpoint: BackendEndpoint, payload: Mapping[str, Any]) -> dict[str, Any]:
        body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        url = endpoint.chat_url
        logger.debug("backend complete start url=%s payload_bytes=%d", url, len(body))
        try:
            response = await self._client.post(url, content=body, headers=_build_headers(endpoint, stream=False))
        except httpx.HTTPError as exc:
            logger.warning("backend complete http_error url=%s error=%s", url, exc)
            raise _transport_error(exc) from exc
        logger.debug("backend complete done url=%s status=%s", url, response.status_code)
        decoded = _decode_json_or_text(response.content)
        if response.status_code >= 400:
            raise backend_error_for_status(response.status_code, _safe_error_detail(decoded))
        if not isinstance(decoded, dict):
            raise UnclassifiedBackendError("backend returned a non-JSON body", response.status_code)
        return decoded

    @asynccontextmanager
    async def stream(
        self, endpoint: BackendEndpoint, payload: Mapping[str, Any]
    ) -> AsyncIterator[AsyncIterator[dict[str, Any]]]:
        """Open a streaming completion; the connection lives as long as the context."""
        body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        url = endpoint.chat_url
        logger.debug("backend stream start url=%s payload_bytes=%d", url, len(body))
        request = self._client.build_request(
            "POST", url, content=body, headers=_build_headers(endpoint, stream=True)
        )
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as exc:
            logger.warning("backend stream http_error url=%s error=%s", url, exc)
            raise _transport_error(exc) from exc
        try:
            logger.debug("backend stream connected url=%s status=%s", url, response.status_code)
            if response.status_code >= 400:
                detail = _safe_error_detail(_decode_json_or_text(await response.aread()))
                raise backend_error_for_status(response.status_code, detail)
            yield _iter_chunks(response)
        finally:
            await response.aclose()
            logger.debug("backend stream released url=%s", url)


async def _iter_chunks(response: httpx.Response) -> AsyncIterator[dict[str, Any]]:
    try:
        async for line in response.aiter_lines():
            data = _extract_sse_data_payload(line)
            if not data:
                continue
            if data == _SSE_DONE:
                return
            yield _parse_sse_data(data)
    except httpx.HTTPError as exc:
        raise _transport_error(exc) from exc


def first_delta_text(chunk: Mapping[str, Any]) -> str:
    """Incremental text of the first candidate in a chat.completion.chunk."""
    choices = chunk.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    first = choices[0]
    if not isinstance(first, dict):
        return ""
    delta = first.get("delta")
    if not isinstance(delta, dict):
        return ""
    content = delta.get("content")
    return content if isinstance(content, str) else ""

