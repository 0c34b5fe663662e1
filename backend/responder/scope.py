"""Restrict remediation to projects under an allowed set of folders."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable, Sequence

from .types import Ancestor

if TYPE_CHECKING:
    from .deadline import Deadline
    from .gcp_client import Resource

LOGGER = logging.getLogger(__name__)

FOLDER = "folder"


def normalize_folder_id(value: str) -> str:
    """Accept ``123`` or ``folders/123`` and return ``123``."""
    value = value.strip()
    if value.startswith("folders/"):
        return value[len("folders/"):]
    return value


def folder_ids(ancestry: Sequence[Ancestor]) -> frozenset[str]:
    return frozenset(a.id for a in ancestry if a.type == FOLDER)


def in_scope(ancestry: Sequence[Ancestor], allowed_ids: Iterable[str]) -> bool:
    """True when any folder in ``ancestry`` is one of ``allowed_ids``."""
    allowed = {normalize_folder_id(i) for i in allowed_ids if i.strip()}
    return bool(folder_ids(ancestry) & allowed)


def check_scope(resource: Resource, project_id: str, allowed_ids: Iterable[str], *, deadline: Deadline) -> bool:
    ancestry = resource.project_ancestry(project_id, deadline=deadline)
    if in_scope(ancestry, allowed_ids):
        return True
    LOGGER.info(
        "Project %s is outside the configured folders (ancestry: %s); skipping",
        project_id,
        ", ".join(f"{a.type}s/{a.id}" for a in ancestry) or "none",
    )
    return False


__all__ = ["check_scope", "folder_ids", "in_scope", "normalize_folder_id"]
