"""Relay runtime context."""

from __future__ import annotations

from dataclasses import dataclass, field
from time import time

from routegate.core.cancellation import CancelToken

STATE_PENDING = "pending"
STATE_COMPLETED = "completed"
STATE_ABORTED = "aborted"
STATE_ERRORED = "errored"


@dataclass(slots=True)
class RelaySession:
    """Association between one inbound request and its outbound backend connection."""

    request_id: str
    token: CancelToken
    model: str = ""
    state: str = STATE_PENDING
    opened_connections: int = 0
    released_connections: int = 0
    forwarded_chunks: int = 0
    started_at: float = field(default_factory=time)

    @property
    def finished(self) -> bool:
        return self.state != STATE_PENDING

    @property
    def elapsed_ms(self) -> int:
        return int((time() - self.started_at) * 1000)

    @property
    def connection_open(self) -> bool:
        return self.opened_connections > self.released_connections

    def mark_opened(self) -> None:
        if self.connection_open:
            raise RuntimeError(f"relay session {self.request_id} already holds a backend connection")
        self.opened_connections += 1

    def mark_released(self) -> None:
        if self.connection_open:
            self.released_connections += 1

    def finish(self, state: str) -> bool:
        """Record the terminal state; only the first transition counts."""
        if self.finished:
            return False
        self.state = state
        # 终态后关联的出站连接一并取消
        self.token.cancel(state)
        return True
