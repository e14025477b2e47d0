"""Classification pipeline: heuristics first, probe only when they are inconclusive."""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from routegate.core.cancellation import CancelToken
from routegate.observability.logging import log_event
from routegate.routing.extract import extract_text
from routegate.routing.heuristics import classify_heuristic
from routegate.routing.outcome import Classification
from routegate.routing.probe import ProbeClassifier
from routegate.routing.resolver import ModelTarget

_PREVIEW_CHARS = 50


async def classify_request(
    content: str | Sequence[Any],
    messages: Sequence[Mapping[str, Any]],
    *,
    probe: ProbeClassifier,
    api_key: str,
    token: CancelToken,
) -> Classification:
    text = extract_text(content)
    decided = classify_heuristic(text)
    if decided is not None:
        return decided
    return await probe.classify(messages, api_key=api_key, token=token)


def _preview(text: str) -> str:
    if len(text) > _PREVIEW_CHARS:
        return f"{text[:_PREVIEW_CHARS]}..."
    return text


def log_model_determination(
    content: str | Sequence[Any],
    outcome: Classification,
    target: ModelTarget,
    *,
    request_id: str = "",
) -> None:
    text = extract_text(content)
    log_event(
        "model_selection",
        request_id=request_id,
        selected=outcome.label,
        model=target.name,
        content=_preview(text),
        length=len(text),
        reason=outcome.reason,
    )
