"""Responder package applying automated fixes for security findings."""

__all__ = [
    "acl_lib",
    "cli",
    "deadline",
    "errors",
    "finding",
    "gcp_client",
    "handler",
    "logs",
    "membership",
    "notifier",
    "scope",
    "settings",
    "snapshot",
    "types",
]
