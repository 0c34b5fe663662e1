"""Per-invocation logger scope."""
from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from typing import Any, Iterator, MutableMapping

LOGGER = logging.getLogger("backend.responder")


class InvocationLogger(logging.LoggerAdapter):
    """Prefix every record with the rule and invocation id."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        extra = self.extra or {}
        return f"[{extra.get('rule')}:{extra.get('invocation_id')}] {msg}", kwargs


@contextmanager
def invocation_logger(rule: str, invocation_id: str | None = None) -> Iterator[InvocationLogger]:
    """Yield a logger bound to one invocation; handlers are flushed on every exit path."""
    adapter = InvocationLogger(LOGGER, {"rule": rule, "invocation_id": invocation_id or uuid.uuid4().hex[:12]})
    try:
        yield adapter
    finally:
        _flush(LOGGER)


def _flush(logger: logging.Logger) -> None:
    current: logging.Logger | None = logger
    while current is not None:
        for handler in current.handlers:
            handler.flush()
        current = current.parent if current.propagate else None
