"""Live complexity probe against the reference model.

The probe asks the reference model to prefix its answer with ``==`` for
queries that need real reasoning, then reads only the first non-empty text
fragment of the streamed answer.  The probe connection is closed as soon as
that fragment arrives; the answer itself is never used.
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from routegate.adapters.openai_compat.upstream import BackendClient, BackendEndpoint, first_delta_text
from routegate.config.settings import RouterConfig
from routegate.core.cancellation import CancelToken
from routegate.core.errors import ClientDisconnected
from routegate.routing.outcome import (
    REASON_CHECK_FAILED,
    REASON_MODEL_DETECTED,
    REASON_MODEL_SIMPLE,
    Classification,
)
from routegate.util.logger import get_logger

logger = get_logger("probe")

COMPLEXITY_MARKER = "=="
COMPLEXITY_CHECK_PROMPT: dict[str, str] = {
    "role": "system",
    "content": (
        "If the user's query requires analysis, reasoning, mathematics, knowledge, explanations, "
        f"or problem solving, start your response with '{COMPLEXITY_MARKER}' and then continue normally. "
        "For simple queries like greetings, basic facts, or straightforward questions, "
        "respond normally without any prefix."
    ),
}


def build_probe_messages(messages: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """Copy ``{role, content}`` of each message and insert the check prompt before the last one."""
    probe_messages = [{"role": message.get("role"), "content": message.get("content")} for message in messages]
    probe_messages.insert(max(len(probe_messages) - 1, 0), dict(COMPLEXITY_CHECK_PROMPT))
    return probe_messages


class ProbeClassifier:
    def __init__(self, backend: BackendClient, config: RouterConfig) -> None:
        self.backend = backend
        self.config = config

    def build_payload(self, messages: Sequence[Mapping[str, Any]]) -> dict[str, Any]:
        return {
            "model": self.config.probe_model,
            "messages": build_probe_messages(messages),
            "stream": True,
            "max_tokens": self.config.probe_max_tokens,
        }

    async def _first_fragment(self, endpoint: BackendEndpoint, payload: Mapping[str, Any]) -> str | None:
        async with self.backend.stream(endpoint, payload) as chunks:
            async for chunk in chunks:
                piece = first_delta_text(chunk)
                if piece:
                    logger.debug("probe first fragment=%r", piece)
                    return piece
        return None

    async def classify(
        self,
        messages: Sequence[Mapping[str, Any]],
        *,
        api_key: str,
        token: CancelToken,
    ) -> Classification:
        """Never raises for backend trouble; only a client disconnect propagates."""
        endpoint = BackendEndpoint(base_url=self.config.base_url, api_key=api_key)
        payload = self.build_payload(messages)
        logger.info("probe start model=%s messages=%d", self.config.probe_model, len(payload["messages"]))
        try:
            fragment = await token.guard(self._first_fragment(endpoint, payload))
        except ClientDisconnected:
            logger.info("probe aborted, client disconnected")
            raise
        except Exception as exc:
            logger.warning("probe failed, falling back to fast model error=%s", exc)
            return Classification(use_slow_model=False, reason=REASON_CHECK_FAILED)

        if fragment is None:
            logger.info("probe stream ended without content")
            return Classification(use_slow_model=False, reason=REASON_MODEL_SIMPLE)
        if fragment.startswith(COMPLEXITY_MARKER):
            logger.info("probe detected complex query marker")
            return Classification(use_slow_model=True, reason=REASON_MODEL_DETECTED)
        return Classification(use_slow_model=False, reason=REASON_MODEL_SIMPLE)
