"""Relay of a chosen backend's response to the caller.

Both modes account for the outbound connection on the request's
``RelaySession`` so that the connection is opened at most once and
released exactly once, whatever way the request ends.
"""

from __future__ import annotations

import asyncio
from contextlib import AsyncExitStack
from typing import Any, AsyncGenerator, AsyncIterator, Awaitable, Callable, Mapping

from routegate.adapters.openai_compat.stream_utils import _sse_chunk, _stream_error_sse_chunk
from routegate.adapters.openai_compat.upstream import BackendClient, BackendEndpoint
from routegate.core.context import STATE_ABORTED, STATE_COMPLETED, STATE_ERRORED, RelaySession
from routegate.core.errors import BackendError, ClientDisconnected
from routegate.util.logger import get_logger

logger = get_logger("relay")

DisconnectCheck = Callable[[], Awaitable[bool]]

SELECTOR_KEYS = frozenset({"fastModel", "slowModel"})


async def _never_disconnected() -> bool:
    return False


def build_forward_payload(payload: Mapping[str, Any], model: str) -> dict[str, Any]:
    """Request body for the backend: selectors stripped, resolved model name set."""
    forwarded = {key: value for key, value in payload.items() if key not in SELECTOR_KEYS}
    forwarded["model"] = model
    return forwarded


async def relay_json(
    backend: BackendClient,
    endpoint: BackendEndpoint,
    payload: Mapping[str, Any],
    *,
    session: RelaySession,
) -> dict[str, Any]:
    session.mark_opened()
    try:
        body = await session.token.guard(backend.complete(endpoint, payload))
    except ClientDisconnected:
        session.finish(STATE_ABORTED)
        raise
    except BaseException:
        session.finish(STATE_ERRORED)
        raise
    finally:
        session.mark_released()
    session.finish(STATE_COMPLETED)
    logger.info("relay json completed request_id=%s elapsed_ms=%d", session.request_id, session.elapsed_ms)
    return body


async def _release(stack: AsyncExitStack, session: RelaySession) -> None:
    if not session.connection_open:
        return
    session.mark_released()
    try:
        await stack.aclose()
    except Exception as exc:
        logger.warning("relay release failed request_id=%s error=%s", session.request_id, exc)
    logger.debug("relay connection released request_id=%s", session.request_id)


async def open_relay_stream(
    backend: BackendClient,
    endpoint: BackendEndpoint,
    payload: Mapping[str, Any],
    *,
    session: RelaySession,
    client_disconnected: DisconnectCheck | None = None,
) -> AsyncGenerator[bytes, None]:
    """Connect to the backend, then hand the open stream to an SSE generator.

    Failures while connecting (auth, unknown model, ...) are raised here so the
    caller can still answer with a plain JSON error.  After that the returned
    generator owns the connection.
    """
    stack = AsyncExitStack()
    session.mark_opened()
    try:
        chunks = await session.token.guard(stack.enter_async_context(backend.stream(endpoint, payload)))
    except BaseException as exc:
        session.finish(STATE_ABORTED if isinstance(exc, ClientDisconnected) else STATE_ERRORED)
        await _release(stack, session)
        raise
    logger.info("relay stream connected request_id=%s model=%s", session.request_id, session.model)
    return _relay_chunks(chunks, stack, session, client_disconnected or _never_disconnected)


async def _relay_chunks(
    chunks: AsyncIterator[dict[str, Any]],
    stack: AsyncExitStack,
    session: RelaySession,
    client_disconnected: DisconnectCheck,
) -> AsyncGenerator[bytes, None]:
    async def caller_gone() -> bool:
        return session.token.cancelled or await client_disconnected()

    try:
        async for chunk in chunks:
            if await caller_gone():
                logger.info(
                    "relay stream stopped, client disconnected request_id=%s forwarded=%d elapsed_ms=%d",
                    session.request_id,
                    session.forwarded_chunks,
                    session.elapsed_ms,
                )
                session.finish(STATE_ABORTED)
                return
            session.forwarded_chunks += 1
            yield _sse_chunk(chunk)
        session.finish(STATE_COMPLETED)
        logger.info(
            "relay stream completed request_id=%s chunks=%d elapsed_ms=%d",
            session.request_id,
            session.forwarded_chunks,
            session.elapsed_ms,
        )
    except asyncio.CancelledError:
        session.finish(STATE_ABORTED)
        logger.info("relay stream cancelled by client request_id=%s", session.request_id)
        raise
    except Exception as exc:
        if await caller_gone():
            # 客户端已断开，错误无需再上报
            session.finish(STATE_ABORTED)
            logger.info("relay stream error after disconnect suppressed request_id=%s", session.request_id)
            return
        session.finish(STATE_ERRORED)
        code = "backend_error" if isinstance(exc, BackendError) else "relay_error"
        logger.error("relay stream failure request_id=%s error=%s", session.request_id, exc)
        yield _stream_error_sse_chunk(str(exc), code=code)
    finally:
        if not session.finished:
            # 生成器被提前关闭（aclose / GeneratorExit）
            session.finish(STATE_ABORTED)
        await _release(stack, session)
