"""Invocation deadline shared by every outbound collaborator call."""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

from .errors import DeadlineExceeded


@dataclass(frozen=True, slots=True)
class Deadline:
    expires_at: float

    @classmethod
    def after(cls, seconds: float) -> Deadline:
        return cls(expires_at=time.monotonic() + seconds)

    @classmethod
    def from_context(cls, context: Any, default_seconds: float) -> Deadline:
        """Use the runtime's remaining time when it exposes one."""
        remaining = getattr(context, "get_remaining_time_in_millis", None)
        if callable(remaining):
            return cls.after(remaining() / 1000.0)
        return cls.after(default_seconds)

    def remaining(self) -> float:
        return max(0.0, self.expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0

    def ensure(self, operation: str, target: str | None = None) -> float:
        """Return the remaining seconds, raising once the deadline has passed."""
        remaining = self.remaining()
        if remaining <= 0.0:
            raise DeadlineExceeded("invocation deadline exceeded", operation=operation, target=target)
        return remaining
