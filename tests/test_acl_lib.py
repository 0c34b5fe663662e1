"""Public grant detection tests."""
from __future__ import annotations

from backend.responder import acl_lib
from backend.responder.membership import remove_members
from backend.responder.types import Binding, Policy


PUBLIC_POLICY = Policy(
    bindings=(
        Binding(role="roles/storage.objectViewer", members=("allUsers", "projectViewer:sec-prod")),
        Binding(role="roles/storage.legacyBucketReader", members=("allAuthenticatedUsers", "user:bob@example.com")),
    )
)


def test_public_members_in_binding_order():
    assert acl_lib.public_members(PUBLIC_POLICY) == ["allUsers", "allAuthenticatedUsers"]
    assert acl_lib.has_public_access(PUBLIC_POLICY) is True


def test_private_policy_has_no_public_members():
    private = Policy(bindings=(Binding(role="roles/storage.admin", members=("user:bob@example.com",)),))

    assert acl_lib.public_members(private) == []
    assert acl_lib.public_members(None) == []
    assert acl_lib.has_public_access(private) is False


def test_diff_policy_summaries():
    closed = remove_members(PUBLIC_POLICY, acl_lib.public_members(PUBLIC_POLICY))

    assert acl_lib.diff_policy(PUBLIC_POLICY, closed) == "Removed public grants"
    assert acl_lib.diff_policy(closed, PUBLIC_POLICY) == "Introduced public grants"
    assert acl_lib.diff_policy(closed, closed) == "Policy unchanged"
