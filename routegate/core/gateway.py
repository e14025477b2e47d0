"""FastAPI app entry."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.datastructures import MutableHeaders

from routegate.adapters.openai_compat.router import router as openai_router
from routegate.adapters.openai_compat.upstream import BackendClient, build_http_client
from routegate.config.settings import RouterConfig, settings
from routegate.util.logger import logger


class GetCacheControlMiddleware:
    """
    GET 响应补 Cache-Control。其余请求原样透传，receive 不经包装，路由仍能感知客户端断开。
    """

    def __init__(self, app, max_age: int) -> None:
        self.app = app
        self.max_age = max_age

    async def __call__(self, scope, receive, send) -> None:
        if scope.get("type") != "http" or str(scope.get("method") or "").upper() != "GET":
            await self.app(scope, receive, send)
            return

        async def send_with_cache_control(message) -> None:
            if message.get("type") == "http.response.start":
                headers = MutableHeaders(scope=message)
                if "cache-control" not in headers:
                    headers.append("Cache-Control", f"max-age={self.max_age}")
            await send(message)

        await self.app(scope, receive, send_with_cache_control)


def create_app(
    *,
    backend: BackendClient | None = None,
    config: RouterConfig | None = None,
) -> FastAPI:
    """Build the app; ``backend``/``config`` are injectable for tests."""

    router_config = config or RouterConfig.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = backend is None
        app.state.backend = backend or BackendClient(build_http_client(settings))
        logger.info(
            "routegate started base_url=%s fast_default=%s slow_default=%s probe_model=%s",
            router_config.base_url,
            router_config.fast_model_default,
            router_config.slow_model_default,
            router_config.probe_model,
        )
        try:
            yield
        finally:
            if owned:
                await app.state.backend.aclose()
            logger.info("routegate stopped")

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.router_config = router_config
    if backend is not None:
        app.state.backend = backend
    app.include_router(openai_router, prefix="/v1")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=settings.cors_max_age_seconds,
    )
    app.add_middleware(GetCacheControlMiddleware, max_age=settings.get_cache_max_age_seconds)

    @app.get("/")
    def index() -> dict:
        return {
            "name": settings.app_name,
            "description": "Routes each chat completion to a fast or a slow model",
            "endpoints": {"chat_completions": "/v1/chat/completions", "health": "/health"},
            "defaults": {
                "fastModel": router_config.fast_model_default,
                "slowModel": router_config.slow_model_default,
            },
        }

    @app.get("/health")
    def health() -> dict:
        logger.debug("health check")
        return {"status": "ok"}

    return app


app = create_app()
