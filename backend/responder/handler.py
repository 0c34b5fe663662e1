"""Cloud Function entry points and the remediation dispatcher.

Each entry point handles exactly one finding: parse, gate, scope, compute the
minimal change, apply it through a collaborator and log one summary line.
Errors are raised so the delivery layer redelivers the message; every rule is
safe to run again against the same finding.
"""
from __future__ import annotations

import base64
import binascii
import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence

from . import notifier
from .acl_lib import diff_policy, public_members
from .deadline import Deadline
from .errors import ConfigurationError, PartialFailure, RemediationError, UnmarshalError, ValueNotFoundError, collaborator_call
from .finding import (
    FINDING_TYPES,
    BadIpFinding,
    ExternalGrantFinding,
    Finding,
    NonOrgMemberFinding,
    PublicBucketFinding,
    parse_finding,
)
from .gcp_client import Host, HostClient, Resource, ResourceClient, Storage, StorageClient
from .logs import invocation_logger
from .membership import filter_disallowed_members, filter_non_org_members, present_members, remove_members
from .scope import check_scope
from .settings import Settings, gate
from .snapshot import now as utcnow
from .snapshot import snapshot_disks
from .types import Action, ActionKind, Event, RemediationSummary, Rule, RuleConfiguration

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class Clients:
    resource: Resource
    host: Host
    storage: Storage


@dataclass(frozen=True, slots=True)
class Invocation:
    settings: Settings
    clients: Clients
    deadline: Deadline


RuleHandler = Callable[[Any, RuleConfiguration, Invocation], RemediationSummary]

_CLIENTS: Clients | None = None
_CLIENTS_LOCK = threading.Lock()


def remove_non_org_members(event: Event, context: Any = None) -> dict[str, Any]:
    """Remove users outside the organization from the organization IAM policy."""
    return handle_event(Rule.REMOVE_NON_ORG_MEMBERS, event, context)


def revoke_external_grants(event: Event, context: Any = None) -> dict[str, Any]:
    """Revoke anomalous grants to disallowed domains on projects inside the configured folders.

    Lets one deployment act on, for example, a production folder while grants
    in a development folder are left alone.
    """
    return handle_event(Rule.REVOKE_EXTERNAL_GRANTS, event, context)


def snapshot_disk(event: Event, context: Any = None) -> dict[str, Any]:
    """Snapshot the disks of an instance seen talking to a bad IP, unless a recent snapshot exists."""
    return handle_event(Rule.SNAPSHOT_DISK, event, context)


def close_public_bucket(event: Event, context: Any = None) -> dict[str, Any]:
    """Remove allUsers and allAuthenticatedUsers from buckets inside the configured folders."""
    return handle_event(Rule.CLOSE_PUBLIC_BUCKET, event, context)


def handle_event(
    rule: Rule,
    event: Event | bytes | str,
    context: Any = None,
    *,
    environ: Mapping[str, str] | None = None,
    collaborators: Clients | None = None,
) -> dict[str, Any]:
    settings = Settings.from_env(environ)
    deadline = Deadline.from_context(context, settings.timeout_seconds)
    invocation_id = getattr(context, "event_id", None) or getattr(context, "aws_request_id", None)
    with invocation_logger(rule.value, invocation_id) as log:
        log.info("Initializing %s", rule.value)
        try:
            summary = execute(
                decode_event(event),
                rule,
                settings=settings,
                clients=collaborators or default_clients(),
                deadline=deadline,
                log=log,
            )
        except RemediationError as exc:
            log.error("%s failed [%s]: %s", rule.value, exc.kind.value, exc)
            raise
    notifier.publish_summary(summary, settings.sns_topic_arn)
    return summary.to_dict()


def execute(
    payload: bytes | str,
    rule: Rule,
    *,
    settings: Settings,
    clients: Clients,
    deadline: Deadline,
    log: logging.Logger | logging.LoggerAdapter = LOGGER,
) -> RemediationSummary:
    """Run ``rule`` against ``payload``; the finding must belong to that rule."""
    finding = parse_finding(payload)
    if finding.rule is not rule:
        raise ValueNotFoundError(f"category {finding.category} is not handled by {rule.value}", target=finding.target)
    return _run(finding, Invocation(settings, clients, deadline), log)


def dispatch(
    payload: bytes | str,
    *,
    settings: Settings,
    clients: Clients,
    deadline: Deadline,
    log: logging.Logger | logging.LoggerAdapter = LOGGER,
) -> RemediationSummary:
    """Run whichever rule handles the finding's category."""
    finding = parse_finding(payload)
    return _run(finding, Invocation(settings, clients, deadline), log)


def decode_event(event: Event | bytes | str) -> bytes:
    """Extract the finding bytes from a Pub/Sub background event or a raw payload."""
    if isinstance(event, bytes):
        return event
    if isinstance(event, str):
        return event.encode("utf-8")
    data = event.get("data")
    if isinstance(data, bytes):
        return data
    if isinstance(data, str):
        try:
            return base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise UnmarshalError(f"event data is not valid base64: {exc}") from exc
    return json.dumps(event).encode("utf-8")


def default_clients() -> Clients:
    """Collaborator handles, created once per process and never mutated afterwards."""
    global _CLIENTS
    with _CLIENTS_LOCK:
        if _CLIENTS is None:
            _CLIENTS = Clients(resource=ResourceClient(), host=HostClient(), storage=StorageClient())
        return _CLIENTS


def _run(finding: Finding, invocation: Invocation, log: logging.Logger | logging.LoggerAdapter) -> RemediationSummary:
    conf = gate(invocation.settings, finding.rule)
    if conf is None:
        summary = RemediationSummary(
            rule=finding.rule,
            target=finding.target,
            status="skip",
            message="rule disabled",
            dry_run=invocation.settings.dry_run,
        )
    else:
        summary = RULE_HANDLERS[finding.rule](finding, conf, invocation)
    log.info("%s %s on %s: %s", summary.rule.value, summary.status, summary.target, summary.message)
    return summary


def _remove_non_org_members(finding: NonOrgMemberFinding, conf: RuleConfiguration, inv: Invocation) -> RemediationSummary:
    resource, deadline = inv.clients.resource, inv.deadline
    with collaborator_call("get-organization", finding.organization_name):
        organization = resource.organization(finding.organization_name, deadline=deadline)
    with collaborator_call("get-organization-policy", organization.name):
        policy = resource.policy_organization(organization.name, deadline=deadline)
    members = filter_non_org_members(organization.display_name, policy.bindings, conf.allowed_domains)
    return _apply_removal(
        inv,
        finding.rule,
        organization.name,
        members,
        ActionKind.REVOKE_MEMBERS,
        "set-organization-policy",
        lambda: resource.remove_members_organization(
            organization.name,
            members,
            policy,
            deadline=deadline,
            drop_empty_bindings=inv.settings.drop_empty_bindings,
        ),
    )


def _revoke_external_grants(finding: ExternalGrantFinding, conf: RuleConfiguration, inv: Invocation) -> RemediationSummary:
    resource, deadline = inv.clients.resource, inv.deadline
    if not _in_scope(inv, finding.project_id, conf):
        return _out_of_scope(finding, inv)
    with collaborator_call("get-project-policy", finding.project_id):
        policy = resource.policy_project(finding.project_id, deadline=deadline)
    members = present_members(policy, filter_disallowed_members(finding.external_members, conf.disallowed_domains))
    return _apply_removal(
        inv,
        finding.rule,
        finding.target,
        members,
        ActionKind.REVOKE_MEMBERS,
        "set-project-policy",
        lambda: resource.remove_members_project(
            finding.project_id,
            members,
            policy,
            deadline=deadline,
            drop_empty_bindings=inv.settings.drop_empty_bindings,
        ),
    )


def _close_public_bucket(finding: PublicBucketFinding, conf: RuleConfiguration, inv: Invocation) -> RemediationSummary:
    storage, deadline = inv.clients.storage, inv.deadline
    if not _in_scope(inv, finding.project_id, conf):
        return _out_of_scope(finding, inv)
    with collaborator_call("get-bucket-policy", finding.bucket):
        policy = storage.bucket_policy(finding.bucket, deadline=deadline)
    members = public_members(policy)
    summary = _apply_removal(
        inv,
        finding.rule,
        finding.target,
        members,
        ActionKind.REMOVE_PUBLIC_ACCESS,
        "set-bucket-policy",
        lambda: storage.remove_bucket_members(
            finding.bucket,
            members,
            policy,
            deadline=deadline,
            drop_empty_bindings=inv.settings.drop_empty_bindings,
        ),
    )
    if members:
        change = diff_policy(policy, remove_members(policy, members, drop_empty_bindings=inv.settings.drop_empty_bindings))
        summary.message = f"{change}; {summary.message}"
    return summary


def _snapshot_disk(finding: BadIpFinding, conf: RuleConfiguration, inv: Invocation) -> RemediationSummary:
    host, deadline, settings = inv.clients.host, inv.deadline, inv.settings
    if conf.max_snapshot_age is None:
        raise ConfigurationError(
            "required configuration not found: SNAPSHOT_DISK_MAX_AGE_MINUTES", operation="gate", target=finding.rule.value
        )
    if conf.scope_ids and not _in_scope(inv, finding.project_id, conf):
        return _out_of_scope(finding, inv)
    with collaborator_call("list-disks", finding.target):
        disks = host.list_disks(finding.project_id, finding.zone, finding.instance, deadline=deadline)
    if not disks:
        return RemediationSummary(finding.rule, finding.target, "noop", message="instance has no disks", dry_run=settings.dry_run)
    report = snapshot_disks(
        host,
        disks,
        max_age=conf.max_snapshot_age,
        now=utcnow(),
        deadline=deadline,
        max_workers=settings.snapshot_max_workers,
        prefix=settings.snapshot_prefix,
        dry_run=settings.dry_run,
    )
    if report.failures:
        raise PartialFailure(report.failures, succeeded=report.created, operation="create-snapshot", target=finding.target)
    if not report.created:
        return RemediationSummary(
            finding.rule,
            finding.target,
            "noop",
            message=f"recent snapshots exist for: {', '.join(report.fresh)}",
            dry_run=settings.dry_run,
        )
    verb = "would create" if settings.dry_run else "created"
    return RemediationSummary(
        finding.rule,
        finding.target,
        "dry-run" if settings.dry_run else "success",
        actions=report.actions,
        message=f"{verb} snapshots for: {', '.join(report.created)}",
        dry_run=settings.dry_run,
    )


def _apply_removal(
    inv: Invocation,
    rule: Rule,
    target: str,
    members: Sequence[str],
    kind: ActionKind,
    operation: str,
    apply: Callable[[], object],
) -> RemediationSummary:
    dry_run = inv.settings.dry_run
    if not members:
        return RemediationSummary(rule, target, "noop", message="no members to remove", dry_run=dry_run)
    action = Action(kind=kind, target=target, payload=tuple(members))
    if dry_run:
        return RemediationSummary(
            rule, target, "dry-run", actions=(action,), message=f"would remove members: {', '.join(members)}", dry_run=True
        )
    with collaborator_call(operation, target):
        apply()
    return RemediationSummary(rule, target, "success", actions=(action,), message=f"removed members: {', '.join(members)}")


def _in_scope(inv: Invocation, project_id: str, conf: RuleConfiguration) -> bool:
    with collaborator_call("get-ancestry", project_id):
        return check_scope(inv.clients.resource, project_id, conf.scope_ids, deadline=inv.deadline)


def _out_of_scope(finding: Finding, inv: Invocation) -> RemediationSummary:
    return RemediationSummary(
        finding.rule,
        finding.target,
        "skip",
        message=f"project {finding.project_id} is outside the configured folders",
        dry_run=inv.settings.dry_run,
    )


RULE_HANDLERS: Mapping[Rule, RuleHandler] = {
    Rule.REMOVE_NON_ORG_MEMBERS: _remove_non_org_members,
    Rule.REVOKE_EXTERNAL_GRANTS: _revoke_external_grants,
    Rule.SNAPSHOT_DISK: _snapshot_disk,
    Rule.CLOSE_PUBLIC_BUCKET: _close_public_bucket,
}


def _check_exhaustive() -> None:
    unhandled = ({t.rule for t in FINDING_TYPES.values()} | set(Rule)) - set(RULE_HANDLERS)
    if unhandled:
        raise RuntimeError(f"no handler registered for rules: {sorted(r.value for r in unhandled)}")


_check_exhaustive()


__all__ = [
    "Clients",
    "Invocation",
    "RULE_HANDLERS",
    "close_public_bucket",
    "decode_event",
    "default_clients",
    "dispatch",
    "execute",
    "handle_event",
    "remove_non_org_members",
    "revoke_external_grants",
    "snapshot_disk",
]
