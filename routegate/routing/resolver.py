"""Fast/slow backend selector resolution."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Union

from routegate.adapters.openai_compat.upstream import BackendEndpoint, _normalize_upstream_base
from routegate.core.errors import InvalidModelConfig


@dataclass(frozen=True, slots=True)
class ModelName:
    name: str


@dataclass(frozen=True, slots=True)
class ModelConfig:
    name: str
    api_key: Any = None
    api_url: Any = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "ModelConfig":
        return cls(name=raw.get("name") or "", api_key=raw.get("apiKey"), api_url=raw.get("apiUrl"))


BackendSelector = Union[ModelName, ModelConfig]


@dataclass(frozen=True, slots=True)
class ModelTarget:
    """A validated selector: non-empty name, optional key and normalized URL."""

    name: str
    api_key: str | None = None
    api_url: str | None = None

    def endpoint(self, *, fallback_key: str, default_base_url: str) -> BackendEndpoint:
        return BackendEndpoint(
            base_url=self.api_url or default_base_url,
            api_key=self.api_key or fallback_key,
        )


def to_selector(raw: str | Mapping[str, Any] | None, default_name: str) -> BackendSelector:
    if raw is None:
        return ModelName(default_name)
    if isinstance(raw, str):
        return ModelName(raw)
    if isinstance(raw, Mapping):
        return ModelConfig.from_mapping(raw)
    raise InvalidModelConfig("Model must be a name or a configuration object", field="model")


def validate_selector(selector: BackendSelector) -> ModelTarget:
    if isinstance(selector, ModelName):
        if not selector.name:
            raise InvalidModelConfig("Model name is required", field="name")
        return ModelTarget(name=selector.name)

    if not isinstance(selector.name, str) or not selector.name:
        raise InvalidModelConfig("Model name is required", field="name")
    if selector.api_key is not None and not isinstance(selector.api_key, str):
        raise InvalidModelConfig("API key must be a string", field="apiKey")
    api_url = None
    if selector.api_url is not None and selector.api_url != "":
        if not isinstance(selector.api_url, str):
            raise InvalidModelConfig("Invalid API URL", field="apiUrl")
        try:
            api_url = _normalize_upstream_base(selector.api_url)
        except ValueError as exc:
            raise InvalidModelConfig("Invalid API URL", field="apiUrl") from exc
    return ModelTarget(name=selector.name, api_key=selector.api_key or None, api_url=api_url)


def resolve_model(raw: str | Mapping[str, Any] | None, default_name: str) -> ModelTarget:
    """Resolve the chosen side's selector, falling back to ``default_name`` when absent."""
    return validate_selector(to_selector(raw, default_name))
