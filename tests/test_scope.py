"""Folder scope filter tests."""
from __future__ import annotations

from backend.responder import scope
from backend.responder.deadline import Deadline
from backend.responder.types import Ancestor


ANCESTRY = (
    Ancestor(type="project", id="aerial-jigsaw-235219"),
    Ancestor(type="folder", id="670032686187"),
    Ancestor(type="organization", id="1055058813388"),
)


class FakeResource:
    def __init__(self, ancestry):
        self.ancestry = ancestry
        self.calls: list[str] = []

    def project_ancestry(self, project_id, *, deadline):
        self.calls.append(project_id)
        return self.ancestry


def test_folder_in_ancestry_is_in_scope():
    assert scope.in_scope(ANCESTRY, ["670032686187"])
    assert scope.in_scope(ANCESTRY, ["folders/670032686187", "999"])


def test_other_folders_are_out_of_scope():
    assert not scope.in_scope(ANCESTRY, ["123"])
    assert not scope.in_scope(ANCESTRY, [])


def test_scope_compares_ids_not_substrings():
    assert not scope.in_scope(ANCESTRY, ["6700326"])
    assert not scope.in_scope(ANCESTRY, ["670032686187123"])


def test_only_folder_ancestors_count():
    assert not scope.in_scope(ANCESTRY, ["1055058813388"])
    assert not scope.in_scope(ANCESTRY, ["aerial-jigsaw-235219"])


def test_check_scope_uses_resource_ancestry():
    resource = FakeResource(ANCESTRY)

    assert scope.check_scope(resource, "aerial-jigsaw-235219", {"670032686187"}, deadline=Deadline.after(5))
    assert not scope.check_scope(resource, "aerial-jigsaw-235219", {"1"}, deadline=Deadline.after(5))
    assert resource.calls == ["aerial-jigsaw-235219", "aerial-jigsaw-235219"]
