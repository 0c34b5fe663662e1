"""Helpers for detecting and removing public grants on bucket policies."""
from __future__ import annotations

from .types import Policy

PUBLIC_MEMBERS = ("allUsers", "allAuthenticatedUsers")


def public_members(policy: Policy | None) -> list[str]:
    """Return public principals in binding order, once per binding."""
    if not policy:
        return []
    return [m for b in policy.bindings for m in b.members if m in PUBLIC_MEMBERS]


def has_public_access(policy: Policy | None) -> bool:
    """Return True when any binding grants access to a public principal."""
    return bool(public_members(policy))


def diff_policy(before: Policy | None, after: Policy | None) -> str:
    """Produce a concise summary of policy changes."""
    if before == after:
        return "Policy unchanged"
    before_public = has_public_access(before)
    after_public = has_public_access(after)
    if before_public and not after_public:
        return "Removed public grants"
    if not before_public and after_public:
        return "Introduced public grants"
    return "Policy bindings updated"


__all__ = ["PUBLIC_MEMBERS", "diff_policy", "has_public_access", "public_members"]
