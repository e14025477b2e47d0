"""Classification outcome shared by the routing stages."""

from __future__ import annotations

from dataclasses import dataclass

REASON_LENGTH = "length"
REASON_KEYWORDS = "keywords"
REASON_MODEL_DETECTED = "model-detected"
REASON_MODEL_SIMPLE = "model-simple"
REASON_CHECK_FAILED = "check-failed"

REASONS = frozenset(
    {REASON_LENGTH, REASON_KEYWORDS, REASON_MODEL_DETECTED, REASON_MODEL_SIMPLE, REASON_CHECK_FAILED}
)


@dataclass(frozen=True, slots=True)
class Classification:
    use_slow_model: bool
    reason: str

    def __post_init__(self) -> None:
        if self.reason not in REASONS:
            raise ValueError(f"unknown classification reason: {self.reason}")

    @property
    def label(self) -> str:
        return "SLOW" if self.use_slow_model else "FAST"
