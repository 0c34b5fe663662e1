"""Collaborator contracts and their Google Cloud REST adapters.

The dispatcher only depends on the :class:`Resource`, :class:`Host` and
:class:`Storage` protocols. The ``*Client`` classes implement them on top of
``googleapiclient``; discovery services are built lazily, once per process,
and every request is sent with a socket timeout equal to the time left on the
invocation deadline.
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Protocol, Sequence

import google.auth
import google_auth_httplib2
import httplib2
from googleapiclient import discovery

from .deadline import Deadline
from .membership import remove_members
from .types import Ancestor, Disk, Organization, Policy, Snapshot

LOGGER = logging.getLogger(__name__)
logging.getLogger("googleapiclient").setLevel(logging.ERROR)

SCOPES = ["https://www.googleapis.com/auth/cloud-platform"]
IAM_POLICY_VERSION = 3
DEFAULT_RETRIES = 2

# Store the discovery function as separate variable.
# Tests swap it for a fake service builder.
_discovery_function = discovery.build


class Resource(Protocol):
    def organization(self, name: str, *, deadline: Deadline) -> Organization: ...

    def policy_organization(self, name: str, *, deadline: Deadline) -> Policy: ...

    def remove_members_organization(
        self,
        name: str,
        members: Sequence[str],
        base_policy: Policy,
        *,
        deadline: Deadline,
        drop_empty_bindings: bool = False,
    ) -> Policy: ...

    def project_ancestry(self, project_id: str, *, deadline: Deadline) -> Sequence[Ancestor]: ...

    def policy_project(self, project_id: str, *, deadline: Deadline) -> Policy: ...

    def remove_members_project(
        self,
        project_id: str,
        members: Sequence[str],
        base_policy: Policy,
        *,
        deadline: Deadline,
        drop_empty_bindings: bool = False,
    ) -> Policy: ...


class Host(Protocol):
    def list_disks(self, project: str, zone: str, instance: str, *, deadline: Deadline) -> Sequence[Disk]: ...

    def list_snapshots(self, disk: Disk, *, deadline: Deadline) -> Sequence[Snapshot]: ...

    def create_snapshot(self, disk: Disk, name: str, *, deadline: Deadline) -> None: ...


class Storage(Protocol):
    def bucket_policy(self, bucket: str, *, deadline: Deadline) -> Policy: ...

    def remove_bucket_members(
        self,
        bucket: str,
        members: Sequence[str],
        base_policy: Policy,
        *,
        deadline: Deadline,
        drop_empty_bindings: bool = False,
    ) -> Policy: ...


class _ApiClient:
    service_name: str = ""
    version: str = ""

    def __init__(self, credentials: Any = None, *, retries: int = DEFAULT_RETRIES):
        self._credentials = credentials
        self._retries = retries
        self._service: Any = None
        self._lock = threading.Lock()

    @property
    def service(self) -> Any:
        with self._lock:
            if self._service is None:
                if self._credentials is None:
                    self._credentials, _ = google.auth.default(scopes=SCOPES)
                self._service = _discovery_function(
                    self.service_name,
                    self.version,
                    credentials=self._credentials,
                    cache_discovery=False,
                )
            return self._service

    def _execute(self, request: Any, operation: str, target: str, deadline: Deadline) -> Any:
        timeout = deadline.ensure(operation, target)
        LOGGER.debug("%s %s (timeout %.1fs)", operation, target, timeout)
        return request.execute(http=self._http(timeout), num_retries=self._retries)

    def _http(self, timeout: float) -> Any:
        if self._credentials is None:
            return None
        return google_auth_httplib2.AuthorizedHttp(self._credentials, http=httplib2.Http(timeout=max(1.0, timeout)))


class ResourceClient(_ApiClient):
    """Cloud Resource Manager v1: organizations, projects and their IAM policies."""

    service_name = "cloudresourcemanager"
    version = "v1"

    def organization(self, name: str, *, deadline: Deadline) -> Organization:
        request = self.service.organizations().get(name=name)
        response = self._execute(request, "get-organization", name, deadline)
        return Organization(name=response.get("name", name), display_name=response.get("displayName", ""))

    def policy_organization(self, name: str, *, deadline: Deadline) -> Policy:
        request = self.service.organizations().getIamPolicy(resource=name, body=_policy_options())
        return Policy.from_api(self._execute(request, "get-organization-policy", name, deadline))

    def remove_members_organization(
        self,
        name: str,
        members: Sequence[str],
        base_policy: Policy,
        *,
        deadline: Deadline,
        drop_empty_bindings: bool = False,
    ) -> Policy:
        updated = remove_members(base_policy, members, drop_empty_bindings=drop_empty_bindings)
        request = self.service.organizations().setIamPolicy(resource=name, body={"policy": updated.to_api()})
        return Policy.from_api(self._execute(request, "set-organization-policy", name, deadline))

    def project_ancestry(self, project_id: str, *, deadline: Deadline) -> Sequence[Ancestor]:
        request = self.service.projects().getAncestry(projectId=project_id, body={})
        response = self._execute(request, "get-ancestry", project_id, deadline)
        ancestry = []
        for entry in response.get("ancestor", []):
            resource_id = entry.get("resourceId", {})
            ancestry.append(Ancestor(type=str(resource_id.get("type", "")), id=str(resource_id.get("id", ""))))
        return tuple(ancestry)

    def policy_project(self, project_id: str, *, deadline: Deadline) -> Policy:
        request = self.service.projects().getIamPolicy(resource=project_id, body=_policy_options())
        return Policy.from_api(self._execute(request, "get-project-policy", project_id, deadline))

    def remove_members_project(
        self,
        project_id: str,
        members: Sequence[str],
        base_policy: Policy,
        *,
        deadline: Deadline,
        drop_empty_bindings: bool = False,
    ) -> Policy:
        updated = remove_members(base_policy, members, drop_empty_bindings=drop_empty_bindings)
        request = self.service.projects().setIamPolicy(resource=project_id, body={"policy": updated.to_api()})
        return Policy.from_api(self._execute(request, "set-project-policy", project_id, deadline))


class HostClient(_ApiClient):
    """Compute Engine v1: instance disks and snapshots."""

    service_name = "compute"
    version = "v1"

    def list_disks(self, project: str, zone: str, instance: str, *, deadline: Deadline) -> Sequence[Disk]:
        request = self.service.instances().get(project=project, zone=zone, instance=instance)
        response = self._execute(request, "get-instance", instance, deadline)
        disks = []
        for attached in response.get("disks", []):
            source = attached.get("source", "")
            if not source:
                continue
            disks.append(Disk(name=source.rsplit("/", 1)[-1], project=project, zone=zone, self_link=source))
        return tuple(disks)

    def list_snapshots(self, disk: Disk, *, deadline: Deadline) -> Sequence[Snapshot]:
        snapshots = self.service.snapshots()
        request = snapshots.list(project=disk.project, filter=f'sourceDisk = "{disk.self_link}"')
        result: list[Snapshot] = []
        while request is not None:
            response = self._execute(request, "list-snapshots", disk.name, deadline)
            for item in response.get("items", []):
                result.append(
                    Snapshot(
                        name=item.get("name", ""),
                        created_at=parse_timestamp(item["creationTimestamp"]),
                        source_disk=item.get("sourceDisk", ""),
                    )
                )
            request = snapshots.list_next(previous_request=request, previous_response=response)
        return tuple(result)

    def create_snapshot(self, disk: Disk, name: str, *, deadline: Deadline) -> None:
        request = self.service.disks().createSnapshot(
            project=disk.project,
            zone=disk.zone,
            disk=disk.name,
            body={"name": name, "labels": {"created-by": "finding-responder"}},
        )
        self._execute(request, "create-snapshot", disk.name, deadline)


class StorageClient(_ApiClient):
    """Cloud Storage v1 bucket IAM policies."""

    service_name = "storage"
    version = "v1"

    def bucket_policy(self, bucket: str, *, deadline: Deadline) -> Policy:
        request = self.service.buckets().getIamPolicy(bucket=bucket, optionsRequestedPolicyVersion=IAM_POLICY_VERSION)
        return Policy.from_api(self._execute(request, "get-bucket-policy", bucket, deadline))

    def remove_bucket_members(
        self,
        bucket: str,
        members: Sequence[str],
        base_policy: Policy,
        *,
        deadline: Deadline,
        drop_empty_bindings: bool = False,
    ) -> Policy:
        updated = remove_members(base_policy, members, drop_empty_bindings=drop_empty_bindings)
        request = self.service.buckets().setIamPolicy(bucket=bucket, body=updated.to_api())
        return Policy.from_api(self._execute(request, "set-bucket-policy", bucket, deadline))


def parse_timestamp(value: str) -> datetime:
    """Parse an RFC 3339 timestamp as returned by the Compute API."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _policy_options() -> dict[str, Any]:
    return {"options": {"requestedPolicyVersion": IAM_POLICY_VERSION}}


__all__ = [
    "Host",
    "HostClient",
    "Resource",
    "ResourceClient",
    "Storage",
    "StorageClient",
    "parse_timestamp",
]
