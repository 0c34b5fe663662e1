"""Select IAM principals to revoke and derive the updated policy."""
from __future__ import annotations

from typing import Iterable, Sequence

from .types import Binding, Policy

USER_PREFIX = "user:"


def filter_non_org_members(
    organization_display_name: str,
    bindings: Sequence[Binding],
    allowed_domains: Sequence[str],
) -> list[str]:
    """Return user members that belong neither to the organization nor to an allowed domain.

    Members are returned in binding order, then member order. A principal bound
    to several roles appears once per binding.
    """
    selected: list[str] = []
    for binding in bindings:
        for member in binding.members:
            if _not_from_org(member, organization_display_name) and not _allowlisted(member, allowed_domains):
                selected.append(member)
    return selected


def filter_disallowed_members(members: Iterable[str], disallowed_domains: Sequence[str]) -> list[str]:
    """Return user members whose email domain is one of ``disallowed_domains``."""
    disallowed = {d.strip().lower().lstrip("@") for d in disallowed_domains if d.strip()}
    return [m for m in members if m.startswith(USER_PREFIX) and email_domain(m) in disallowed]


def present_members(policy: Policy, members: Iterable[str]) -> list[str]:
    """Drop principals the policy no longer grants anything to."""
    bound = policy.members()
    return [m for m in members if m in bound]


def remove_members(policy: Policy, members: Iterable[str], *, drop_empty_bindings: bool = False) -> Policy:
    """Return a copy of ``policy`` without ``members`` in any binding.

    Role, condition, etag and version are kept. A binding emptied by the removal
    is retained unless ``drop_empty_bindings`` is set.
    """
    removal = frozenset(members)
    bindings: list[Binding] = []
    for binding in policy.bindings:
        kept = tuple(m for m in binding.members if m not in removal)
        if not kept and binding.members and drop_empty_bindings:
            continue
        bindings.append(Binding(role=binding.role, members=kept, condition=binding.condition))
    return Policy(bindings=tuple(bindings), etag=policy.etag, version=policy.version)


def email_domain(member: str) -> str:
    _, _, identifier = member.partition(":")
    return identifier.rpartition("@")[2].lower()


def _not_from_org(member: str, organization_domain: str) -> bool:
    return member.startswith(USER_PREFIX) and organization_domain not in member


def _allowlisted(member: str, domains: Sequence[str]) -> bool:
    return any(domain in member for domain in domains)


__all__ = [
    "USER_PREFIX",
    "email_domain",
    "filter_disallowed_members",
    "filter_non_org_members",
    "present_members",
    "remove_members",
]
