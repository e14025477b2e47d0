"""Message content -> plain text for the routing heuristics."""

from __future__ import annotations

from typing import Any, Sequence

from pydantic import BaseModel

from routegate.core.models import TextPart


def _part_text(part: Any) -> str | None:
    if isinstance(part, TextPart):
        return part.text
    if isinstance(part, BaseModel):
        return None
    if isinstance(part, dict) and part.get("type") == "text":
        text = part.get("text")
        return text if isinstance(text, str) else None
    return None


def extract_text(content: str | Sequence[Any]) -> str:
    """Join the text parts of ``content`` with single spaces; strings pass through."""
    if isinstance(content, str):
        return content
    texts = [text for text in (_part_text(part) for part in content) if text is not None]
    return " ".join(texts)
