"""Snapshot freshness decisions and collect-and-continue snapshot creation."""
from __future__ import annotations

import hashlib
import logging
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Mapping, Sequence

from .errors import DeadlineExceeded, collaborator_call
from .types import Action, ActionKind, Disk, Snapshot

if TYPE_CHECKING:
    from .deadline import Deadline
    from .gcp_client import Host

LOGGER = logging.getLogger(__name__)

MAX_NAME_LENGTH = 63
DIGEST_LENGTH = 8
TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"


@dataclass(slots=True)
class SnapshotReport:
    """Per-disk outcome, always listed in the order the disks were given."""

    created: list[str] = field(default_factory=list)
    fresh: list[str] = field(default_factory=list)
    failures: dict[str, BaseException] = field(default_factory=dict)

    @property
    def actions(self) -> tuple[Action, ...]:
        return tuple(Action(kind=ActionKind.CREATE_SNAPSHOT, target=disk) for disk in self.created)


def now() -> datetime:
    return datetime.now(timezone.utc)


def latest_snapshot(snapshots: Sequence[Snapshot]) -> Snapshot | None:
    return max(snapshots, key=lambda s: s.created_at, default=None)


def needs_snapshot(snapshots: Sequence[Snapshot], *, max_age: timedelta, now: datetime) -> bool:
    """True when there is no snapshot or the newest one is older than ``max_age``."""
    latest = latest_snapshot(snapshots)
    if latest is None:
        return True
    return now - latest.created_at > max_age


def plan_snapshots(
    disks: Sequence[Disk],
    history: Mapping[str, Sequence[Snapshot]],
    *,
    max_age: timedelta,
    now: datetime,
) -> list[Action]:
    return [
        Action(kind=ActionKind.CREATE_SNAPSHOT, target=disk.name)
        for disk in disks
        if needs_snapshot(history.get(disk.name, ()), max_age=max_age, now=now)
    ]


def snapshot_name(prefix: str, disk: Disk, now: datetime) -> str:
    """Build ``<prefix>-<disk>-<digest>-<UTC timestamp>`` within the 63 character limit.

    Only the prefix and disk part are shortened. The digest identifies the
    source disk, so long names that share a prefix stay distinct, and the
    full timestamp keeps every run unique.
    """
    stamp = now.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)
    source = disk.self_link or f"{disk.project}/{disk.zone}/{disk.name}"
    digest = hashlib.sha256(source.encode("utf-8")).hexdigest()[:DIGEST_LENGTH]
    room = MAX_NAME_LENGTH - len(stamp) - len(digest) - 2
    head = f"{prefix}-{disk.name}".lower()[:room].rstrip("-")
    return f"{head}-{digest}-{stamp}"


def snapshot_disks(
    host: Host,
    disks: Sequence[Disk],
    *,
    max_age: timedelta,
    now: datetime,
    deadline: Deadline,
    max_workers: int = 4,
    prefix: str = "forensic",
    dry_run: bool = False,
) -> SnapshotReport:
    """Snapshot every disk whose newest snapshot is missing or stale.

    Each disk is handled independently; a failure on one disk is recorded and
    the remaining disks are still attempted.
    """
    report = SnapshotReport()
    if not disks:
        return report

    def _process(disk: Disk) -> bool:
        deadline.ensure("list-snapshots", disk.name)
        with collaborator_call("list-snapshots", disk.name):
            snapshots = host.list_snapshots(disk, deadline=deadline)
        if not needs_snapshot(snapshots, max_age=max_age, now=now):
            LOGGER.info("Disk %s has a snapshot newer than %s; skipping", disk.name, max_age)
            return False
        name = snapshot_name(prefix, disk, now)
        if dry_run:
            LOGGER.info("Dry run: would create snapshot %s for disk %s", name, disk.name)
            return True
        with collaborator_call("create-snapshot", disk.name):
            host.create_snapshot(disk, name, deadline=deadline)
        LOGGER.info("Created snapshot %s for disk %s", name, disk.name)
        return True

    outcomes: dict[str, bool] = {}
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(disks)))) as pool:
        futures = {disk.name: pool.submit(_process, disk) for disk in disks}
        _, pending = wait(futures.values(), timeout=deadline.remaining())
        for future in pending:
            # Disks not yet started are dropped; requests in flight are bounded
            # by the deadline socket timeout and joined when the pool exits.
            future.cancel()

    for disk in disks:
        future = futures[disk.name]
        if future.cancelled():
            report.failures[disk.name] = DeadlineExceeded(
                "invocation deadline exceeded", operation="list-snapshots", target=disk.name
            )
            continue
        exc = future.exception()
        if exc is not None:
            LOGGER.error("Snapshot of disk %s failed: %s", disk.name, exc)
            report.failures[disk.name] = exc
        else:
            outcomes[disk.name] = future.result()

    for disk in disks:
        if disk.name in outcomes:
            (report.created if outcomes[disk.name] else report.fresh).append(disk.name)
    return report


__all__ = [
    "SnapshotReport",
    "latest_snapshot",
    "needs_snapshot",
    "now",
    "plan_snapshots",
    "snapshot_disks",
    "snapshot_name",
]
