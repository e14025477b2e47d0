"""Cheap synchronous routing rules, evaluated before any probe call."""

from __future__ import annotations

from routegate.routing.outcome import REASON_KEYWORDS, REASON_LENGTH, Classification

LENGTH_THRESHOLD = 1000
SLOW_KEYWORDS: tuple[str, ...] = ("legal", "medical", "analysis", "philosophy")


def classify_heuristic(text: str) -> Classification | None:
    """Return a slow classification when a rule fires, ``None`` when inconclusive."""
    if len(text) > LENGTH_THRESHOLD:
        return Classification(use_slow_model=True, reason=REASON_LENGTH)

    lowered = text.lower()
    if any(keyword in lowered for keyword in SLOW_KEYWORDS):
        return Classification(use_slow_model=True, reason=REASON_KEYWORDS)

    return None
