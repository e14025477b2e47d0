"""
SSE 帧构建与流式响应。从 relay 拆出，便于单测。
"""

from __future__ import annotations

import json
from typing import Any, AsyncIterable, Iterable, Mapping

from fastapi.responses import StreamingResponse

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _sse_chunk(chunk: Mapping[str, Any]) -> bytes:
    return f"data: {json.dumps(chunk, ensure_ascii=False)}\n\n".encode("utf-8")


def _stream_error_sse_chunk(message: str, code: str | None = None) -> bytes:
    """SSE chunk 携带上游失败原因，兼容 error.message / error.code 解析。"""
    detail = (message or "backend_error").strip() or "backend_error"
    error_code = (code or "backend_error").strip() or "backend_error"
    payload: dict[str, Any] = {
        "type": "error",
        "error": {
            "message": detail,
            "type": "routegate_error",
            "code": error_code,
        },
    }
    return _sse_chunk(payload)


def _build_streaming_response(generator: Iterable[bytes] | AsyncIterable[bytes]) -> StreamingResponse:
    return StreamingResponse(
        generator,
        media_type="text/event-stream",
        headers=dict(STREAM_HEADERS),
    )
