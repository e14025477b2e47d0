"""Structured logging bridge: one ``key=value`` line per event."""

from __future__ import annotations

import json
from typing import Any, Mapping

from routegate.util.logger import get_logger

logger = get_logger("events")


def _format_value(value: Any) -> str:
    if isinstance(value, str):
        # 带引号，预览里的空格不会拆开字段
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def format_event(event: str, fields: Mapping[str, Any]) -> str:
    parts = [f"event={event}"]
    parts.extend(f"{key}={_format_value(value)}" for key, value in fields.items())
    return " ".join(parts)


def log_event(event: str, **fields: Any) -> None:
    logger.info("%s", format_event(event, fields))
