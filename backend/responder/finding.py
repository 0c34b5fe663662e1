"""Decode raw finding payloads into typed, rule-specific requests.

Two payload shapes are accepted:

* Security Command Center notifications, ``{"finding": {"category": ...}}``.
* Event Threat Detection log entries,
  ``{"jsonPayload": {"detectionCategory": {"subRuleName": ...}}}``.

Every supported category registers a decoder below. Anything else is rejected
with :class:`ValueNotFoundError`; nothing is silently accepted.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, ClassVar, Mapping, Sequence

from .errors import UnmarshalError, ValueNotFoundError
from .types import Rule

LOGGER = logging.getLogger(__name__)

STORAGE_RESOURCE_PREFIX = "//storage.googleapis.com/"


@dataclass(frozen=True, slots=True)
class Finding:
    category: str
    resource_parent: str
    organization_name: str
    project_id: str

    rule: ClassVar[Rule]

    @property
    def target(self) -> str:
        return self.organization_name or f"projects/{self.project_id}"


@dataclass(frozen=True, slots=True)
class NonOrgMemberFinding(Finding):
    """A user from outside the organization holds a role on the organization."""

    rule: ClassVar[Rule] = Rule.REMOVE_NON_ORG_MEMBERS


@dataclass(frozen=True, slots=True)
class ExternalGrantFinding(Finding):
    """An anomalous grant added external members to a project policy."""

    external_members: tuple[str, ...] = ()

    rule: ClassVar[Rule] = Rule.REVOKE_EXTERNAL_GRANTS

    @property
    def target(self) -> str:
        return f"projects/{self.project_id}"


@dataclass(frozen=True, slots=True)
class BadIpFinding(Finding):
    """An instance talked to a known bad IP address."""

    zone: str = ""
    instance: str = ""

    rule: ClassVar[Rule] = Rule.SNAPSHOT_DISK

    @property
    def target(self) -> str:
        return f"projects/{self.project_id}/zones/{self.zone}/instances/{self.instance}"


@dataclass(frozen=True, slots=True)
class PublicBucketFinding(Finding):
    """A storage bucket grants access to allUsers or allAuthenticatedUsers."""

    bucket: str = ""

    rule: ClassVar[Rule] = Rule.CLOSE_PUBLIC_BUCKET

    @property
    def target(self) -> str:
        return f"buckets/{self.bucket}"


Decoder = Callable[[Mapping[str, Any]], Finding]

_DECODERS: dict[str, Decoder] = {}
FINDING_TYPES: dict[str, type[Finding]] = {}


def decoder(category: str, finding_type: type[Finding]) -> Callable[[Decoder], Decoder]:
    """Register the decoder for ``category``; each category may be claimed once."""

    def register(fn: Decoder) -> Decoder:
        if category in _DECODERS:
            raise ValueError(f"duplicate decoder for category {category}")
        _DECODERS[category] = fn
        FINDING_TYPES[category] = finding_type
        return fn

    return register


def parse_finding(payload: bytes | str) -> Finding:
    """Deserialize ``payload`` and return the typed finding for its category."""
    document = _load(payload)
    category = category_of(document)
    decode = _DECODERS.get(category)
    if decode is None:
        raise ValueNotFoundError(f"unsupported finding category {category!r}")
    finding = decode(document)
    LOGGER.debug("Parsed %s finding for %s", category, finding.target)
    return finding


def supported_categories() -> Sequence[str]:
    return tuple(_DECODERS)


def category_of(document: Mapping[str, Any]) -> str:
    sha = _section(document, "finding")
    if sha:
        return str(sha.get("category") or "")
    detection = _section(_section(document, "jsonPayload"), "detectionCategory")
    return str(detection.get("subRuleName") or detection.get("ruleName") or "")


def organization_name(parent: str) -> str:
    """Return ``organizations/<id>`` from a finding parent path, or ``""``."""
    parts = [part for part in parent.strip().split("/") if part]
    if len(parts) >= 2 and parts[0] == "organizations":
        return f"organizations/{parts[1]}"
    return ""


@decoder("NON_ORG_IAM_MEMBER", NonOrgMemberFinding)
def _non_org_member(document: Mapping[str, Any]) -> Finding:
    sha = _section(document, "finding")
    parent = str(sha.get("parent") or "")
    org = organization_name(parent)
    if not org:
        raise ValueNotFoundError("organization name not found in finding parent")
    return NonOrgMemberFinding(
        category="NON_ORG_IAM_MEMBER",
        resource_parent=parent,
        organization_name=org,
        project_id=str(_section(sha, "sourceProperties").get("ProjectId") or ""),
    )


@decoder("external_member_added_to_policy", ExternalGrantFinding)
def _external_grant(document: Mapping[str, Any]) -> Finding:
    properties = _section(_section(document, "jsonPayload"), "properties")
    project_id = _etd_project(document, properties)
    members = properties.get("externalMembers") or []
    if not isinstance(members, list):
        raise UnmarshalError("externalMembers must be a list")
    if not project_id:
        raise ValueNotFoundError("project id not found in finding")
    if not members:
        raise ValueNotFoundError("no external members listed in finding")
    return ExternalGrantFinding(
        category="external_member_added_to_policy",
        resource_parent=f"projects/{project_id}",
        organization_name="",
        project_id=project_id,
        external_members=tuple(str(m) for m in members),
    )


@decoder("bad_ip", BadIpFinding)
def _bad_ip(document: Mapping[str, Any]) -> Finding:
    properties = _section(_section(document, "jsonPayload"), "properties")
    project_id = _etd_project(document, properties)
    zone, instance = _instance_from_path(str(properties.get("sourceInstance") or ""))
    zone = zone or str(properties.get("location") or "")
    if not (project_id and zone and instance):
        raise ValueNotFoundError("instance, zone or project not found in finding")
    return BadIpFinding(
        category="bad_ip",
        resource_parent=f"projects/{project_id}",
        organization_name="",
        project_id=project_id,
        zone=zone,
        instance=instance,
    )


@decoder("PUBLIC_BUCKET_ACL", PublicBucketFinding)
def _public_bucket(document: Mapping[str, Any]) -> Finding:
    sha = _section(document, "finding")
    resource = str(sha.get("resourceName") or "")
    bucket = resource[len(STORAGE_RESOURCE_PREFIX):] if resource.startswith(STORAGE_RESOURCE_PREFIX) else ""
    project_id = str(_section(sha, "sourceProperties").get("ProjectId") or "")
    if not bucket or not project_id:
        raise ValueNotFoundError("bucket or project id not found in finding")
    parent = str(sha.get("parent") or "")
    return PublicBucketFinding(
        category="PUBLIC_BUCKET_ACL",
        resource_parent=parent,
        organization_name=organization_name(parent),
        project_id=project_id,
        bucket=bucket,
    )


def _load(payload: bytes | str) -> Mapping[str, Any]:
    try:
        document = json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise UnmarshalError(f"failed to decode finding: {exc}") from exc
    if not isinstance(document, Mapping):
        raise UnmarshalError("finding payload must be a JSON object")
    return document


def _section(document: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = document.get(key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise UnmarshalError(f"expected object for {key!r}, got {type(value).__name__}")
    return value


def _etd_project(document: Mapping[str, Any], properties: Mapping[str, Any]) -> str:
    project_id = properties.get("project_id") or properties.get("projectId")
    if not project_id:
        project_id = _section(_section(document, "resource"), "labels").get("project_id")
    return str(project_id or "")


def _instance_from_path(path: str) -> tuple[str, str]:
    # /projects/<p>/zones/<zone>/instances/<name>
    parts = [part for part in path.split("/") if part]
    zone = instance = ""
    for key, value in zip(parts, parts[1:]):
        if key == "zones":
            zone = value
        elif key == "instances":
            instance = value
    return zone, instance


__all__ = [
    "BadIpFinding",
    "ExternalGrantFinding",
    "FINDING_TYPES",
    "Finding",
    "NonOrgMemberFinding",
    "PublicBucketFinding",
    "category_of",
    "decoder",
    "organization_name",
    "parse_finding",
    "supported_categories",
]
