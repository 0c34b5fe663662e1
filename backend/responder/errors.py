"""Error taxonomy for remediation invocations.

Every error carries an :class:`ErrorKind` so the entry point (and anything
wrapping it) can branch on the kind instead of parsing messages.
"""
from __future__ import annotations

from contextlib import contextmanager
from enum import Enum
from typing import Iterator, Mapping, Sequence


class ErrorKind(str, Enum):
    CONFIGURATION = "configuration"
    PARSE = "parse"
    COLLABORATOR = "collaborator"
    PARTIAL_FAILURE = "partial_failure"


class RemediationError(Exception):
    kind: ErrorKind = ErrorKind.COLLABORATOR

    def __init__(self, message: str, *, operation: str | None = None, target: str | None = None):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.target = target

    def __str__(self) -> str:
        context = [f"{key}={value}" for key, value in (("operation", self.operation), ("target", self.target)) if value]
        if not context:
            return self.message
        return f"{self.message} ({', '.join(context)})"


class ConfigurationError(RemediationError):
    kind = ErrorKind.CONFIGURATION


class ParseError(RemediationError):
    kind = ErrorKind.PARSE


class UnmarshalError(ParseError):
    """Payload could not be decoded into the expected finding schema."""


class ValueNotFoundError(ParseError):
    """Category unsupported or a required identifier is missing."""


class CollaboratorError(RemediationError):
    kind = ErrorKind.COLLABORATOR


class DeadlineExceeded(CollaboratorError):
    pass


class PartialFailure(RemediationError):
    """Some independent sub-operations failed while others succeeded."""

    kind = ErrorKind.PARTIAL_FAILURE

    def __init__(
        self,
        failures: Mapping[str, BaseException],
        *,
        succeeded: Sequence[str] = (),
        operation: str | None = None,
        target: str | None = None,
    ):
        self.failures = dict(failures)
        self.succeeded = tuple(succeeded)
        detail = "; ".join(f"{name}: {exc}" for name, exc in self.failures.items())
        super().__init__(f"{len(self.failures)} sub-operation(s) failed: {detail}", operation=operation, target=target)


@contextmanager
def collaborator_call(operation: str, target: str) -> Iterator[None]:
    """Wrap foreign exceptions raised by a collaborator call with its context."""
    try:
        yield
    except RemediationError:
        raise
    except Exception as exc:
        raise CollaboratorError(f"{type(exc).__name__}: {exc}", operation=operation, target=target) from exc


__all__ = [
    "collaborator_call",
    "CollaboratorError",
    "ConfigurationError",
    "DeadlineExceeded",
    "ErrorKind",
    "ParseError",
    "PartialFailure",
    "RemediationError",
    "UnmarshalError",
    "ValueNotFoundError",
]
