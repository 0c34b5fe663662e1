"""Typed value objects shared across responder modules."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Mapping, Sequence


class Rule(str, Enum):
    """Remediation rules, one per deployed entry point."""

    REMOVE_NON_ORG_MEMBERS = "remove_non_org_members"
    REVOKE_EXTERNAL_GRANTS = "revoke_external_grants"
    SNAPSHOT_DISK = "snapshot_disk"
    CLOSE_PUBLIC_BUCKET = "close_public_bucket"


class ActionKind(str, Enum):
    REVOKE_MEMBERS = "RevokeMembers"
    REMOVE_PUBLIC_ACCESS = "RemovePublicAccess"
    CREATE_SNAPSHOT = "CreateSnapshot"


@dataclass(frozen=True, slots=True)
class RuleConfiguration:
    """Enablement and parameters for a single rule, read once per invocation."""

    enabled: bool
    allowed_domains: tuple[str, ...] = ()
    scope_ids: frozenset[str] = frozenset()
    disallowed_domains: tuple[str, ...] = ()
    max_snapshot_age: timedelta | None = None


@dataclass(frozen=True, slots=True)
class Binding:
    """A role and the principals granted it."""

    role: str
    members: tuple[str, ...]
    condition: Mapping[str, Any] | None = None

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> Binding:
        return cls(
            role=str(payload.get("role", "")),
            members=tuple(payload.get("members") or ()),
            condition=payload.get("condition"),
        )

    def to_api(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"role": self.role, "members": list(self.members)}
        if self.condition is not None:
            payload["condition"] = dict(self.condition)
        return payload


@dataclass(frozen=True, slots=True)
class Policy:
    """Snapshot of an IAM policy as fetched from a collaborator."""

    bindings: tuple[Binding, ...] = ()
    etag: str | None = None
    version: int | None = None

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> Policy:
        return cls(
            bindings=tuple(Binding.from_api(b) for b in payload.get("bindings") or ()),
            etag=payload.get("etag"),
            version=payload.get("version"),
        )

    def to_api(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"bindings": [b.to_api() for b in self.bindings]}
        if self.etag is not None:
            payload["etag"] = self.etag
        if self.version is not None:
            payload["version"] = self.version
        return payload

    def members(self) -> frozenset[str]:
        return frozenset(m for b in self.bindings for m in b.members)


@dataclass(frozen=True, slots=True)
class Organization:
    name: str
    display_name: str


@dataclass(frozen=True, slots=True)
class Ancestor:
    """One step of a resource's ancestry, e.g. ``folder`` / ``123``."""

    type: str
    id: str


@dataclass(frozen=True, slots=True)
class Disk:
    name: str
    project: str
    zone: str
    self_link: str = ""


@dataclass(frozen=True, slots=True)
class Snapshot:
    name: str
    created_at: datetime
    source_disk: str = ""


@dataclass(frozen=True, slots=True)
class Action:
    """A single mutation the dispatcher applied or would apply."""

    kind: ActionKind
    target: str
    payload: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "target": self.target, "payload": list(self.payload)}


@dataclass(slots=True)
class RemediationSummary:
    """Aggregated outcome for a remediation invocation."""

    rule: Rule
    target: str
    status: str
    actions: Sequence[Action] = field(default_factory=tuple)
    message: str | None = None
    dry_run: bool = False

    @property
    def changed(self) -> bool:
        return self.status == "success" and bool(self.actions)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule": self.rule.value,
            "target": self.target,
            "status": self.status,
            "actions": [action.to_dict() for action in self.actions],
            "message": self.message,
            "dryRun": self.dry_run,
        }


Event = Mapping[str, Any]
"""Alias for raw background-function event payloads."""
