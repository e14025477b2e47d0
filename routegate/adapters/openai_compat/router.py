"""OpenAI-compatible chat completions route with fast/slow model switching."""

from __future__ import annotations

import asyncio
import json
import uuid
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError

from routegate.adapters.openai_compat.relay import build_forward_payload, open_relay_stream, relay_json
from routegate.adapters.openai_compat.stream_utils import _build_streaming_response
from routegate.adapters.openai_compat.upstream import BackendClient
from routegate.config.settings import RouterConfig
from routegate.core.cancellation import CancelToken
from routegate.core.context import RelaySession
from routegate.core.errors import (
    InputValidationError,
    MalformedJSON,
    RouteGateError,
    classify_error,
)
from routegate.core.models import ChatRequest
from routegate.routing.classifier import classify_request, log_model_determination
from routegate.routing.probe import ProbeClassifier
from routegate.routing.resolver import resolve_model
from routegate.util.logger import logger


router = APIRouter()


def _bearer_credential(request: Request) -> str:
    raw = (request.headers.get("authorization") or "").strip()
    scheme, _, credential = raw.partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return credential.strip()


def _parse_payload(raw_body: bytes) -> dict[str, Any]:
    if not raw_body.strip():
        raise MalformedJSON("empty request body")
    try:
        payload = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedJSON(str(exc)) from exc
    if not isinstance(payload, dict):
        raise InputValidationError([{"path": "", "message": "Request body must be a JSON object"}])
    return payload


def _validate_request(payload: dict[str, Any], config: RouterConfig, caller_key: str) -> ChatRequest:
    try:
        chat = ChatRequest.model_validate(payload)
    except ValidationError as exc:
        raise InputValidationError.from_pydantic(exc) from exc
    if chat.fast_model is None and chat.slow_model is None and not (config.api_key or caller_key):
        raise InputValidationError(
            [
                {
                    "path": "",
                    "message": "At least one model configuration or a backend API key must be provided",
                }
            ]
        )
    return chat


async def _watch_disconnect(request: Request, token: CancelToken, interval: float) -> None:
    while not token.cancelled:
        if await request.is_disconnected():
            logger.info("client disconnected, cancelling in-flight backend work")
            token.cancel("client_disconnected")
            return
        await asyncio.sleep(interval)


def _error_response(exc: Exception, request_id: str) -> Response:
    outcome = classify_error(exc)
    if outcome.body is None:
        logger.info("chat request aborted by client request_id=%s", request_id)
        return Response(status_code=outcome.status_code)
    if isinstance(exc, RouteGateError):
        logger.warning(
            "chat request failed request_id=%s status=%s error=%s",
            request_id,
            outcome.status_code,
            exc,
        )
    else:
        logger.exception("chat request unexpected failure request_id=%s", request_id)
    return JSONResponse(status_code=outcome.status_code, content=outcome.body)


async def _execute_chat_once(
    *,
    request: Request,
    request_id: str,
    config: RouterConfig,
    backend: BackendClient,
    token: CancelToken,
) -> Response:
    caller_key = _bearer_credential(request)
    payload = _parse_payload(await request.body())
    chat = _validate_request(payload, config, caller_key)
    fallback_key = caller_key or config.api_key
    logger.info(
        "chat request start request_id=%s stream=%s messages=%d",
        request_id,
        chat.wants_stream,
        len(chat.messages),
    )

    # 请求体读完后再监听断开，避免 is_disconnected 吞掉 body 消息
    watcher = asyncio.create_task(_watch_disconnect(request, token, config.disconnect_poll_interval))
    try:
        prompt = chat.last_user_content()
        outcome = await classify_request(
            prompt,
            payload["messages"],
            probe=ProbeClassifier(backend, config),
            api_key=fallback_key,
            token=token,
        )
        if outcome.use_slow_model:
            target = resolve_model(chat.slow_model, config.slow_model_default)
        else:
            target = resolve_model(chat.fast_model, config.fast_model_default)
        log_model_determination(prompt, outcome, target, request_id=request_id)

        endpoint = target.endpoint(fallback_key=fallback_key, default_base_url=config.base_url)
        forward_payload = build_forward_payload(payload, target.name)
        session = RelaySession(request_id=request_id, token=token.child(), model=target.name)

        if chat.wants_stream:
            generator = await open_relay_stream(
                backend,
                endpoint,
                forward_payload,
                session=session,
                client_disconnected=request.is_disconnected,
            )
            return _build_streaming_response(generator)

        body = await relay_json(backend, endpoint, forward_payload, session=session)
        return JSONResponse(content=body)
    finally:
        watcher.cancel()


@router.post("/chat/completions")
async def chat_completions(request: Request) -> Response:
    request_id = f"rg-{uuid.uuid4().hex[:12]}"
    token = CancelToken()
    try:
        return await _execute_chat_once(
            request=request,
            request_id=request_id,
            config=request.app.state.router_config,
            backend=request.app.state.backend,
            token=token,
        )
    except Exception as exc:
        token.cancel("request_failed")
        return _error_response(exc, request_id)
