"""Runtime settings."""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="ROUTEGATE_", extra="ignore", populate_by_name=True)

    app_name: str = "RouteGate"
    log_level: str = "info"
    log_dir: str = "logs"
    host: str = "127.0.0.1"
    port: int = 18080

    backend_base_url: str = "https://api.openai.com/v1"
    # 也接受标准的 OPENAI_API_KEY，便于直接复用已有环境
    backend_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("ROUTEGATE_BACKEND_API_KEY", "OPENAI_API_KEY"),
    )
    backend_timeout_seconds: float = 120.0
    backend_max_connections: int = 100
    backend_max_keepalive_connections: int = 20

    fast_model_default: str = "gpt-4o-mini"
    slow_model_default: str = "gpt-4o"
    probe_model: str = "gpt-4o"
    probe_max_tokens: int = Field(default=10, ge=1)

    disconnect_poll_interval_seconds: float = Field(default=0.25, gt=0.0)
    cors_max_age_seconds: int = 3600 * 6
    get_cache_max_age_seconds: int = 3600


@dataclass(frozen=True, slots=True)
class RouterConfig:
    """Immutable per-process routing configuration, built once at startup."""

    base_url: str
    api_key: str
    fast_model_default: str
    slow_model_default: str
    probe_model: str
    probe_max_tokens: int
    disconnect_poll_interval: float

    @classmethod
    def from_settings(cls, source: Settings) -> "RouterConfig":
        return cls(
            base_url=source.backend_base_url.rstrip("/"),
            api_key=source.backend_api_key.strip(),
            fast_model_default=source.fast_model_default,
            slow_model_default=source.slow_model_default,
            probe_model=source.probe_model,
            probe_max_tokens=int(source.probe_max_tokens),
            disconnect_poll_interval=float(source.disconnect_poll_interval_seconds),
        )


settings = Settings()
