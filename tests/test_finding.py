"""Finding payload decoding tests."""
from __future__ import annotations

import json

import pytest

from backend.responder import finding
from backend.responder.errors import ParseError, UnmarshalError, ValueNotFoundError
from backend.responder.types import Rule


def _sha(category: str, **overrides) -> bytes:
    body = {
        "name": "organizations/1055058813388/sources/1986930501971458034/findings/abc",
        "parent": "organizations/1055058813388/sources/1986930501971458034",
        "resourceName": "//cloudresourcemanager.googleapis.com/organizations/1055058813388",
        "category": category,
        "sourceProperties": {"ProjectId": "aerial-jigsaw-235219"},
    }
    body.update(overrides)
    return json.dumps({"notificationConfigName": "organizations/1055058813388/notificationConfigs/sra", "finding": body}).encode()


def _etd(sub_rule: str, **properties) -> bytes:
    return json.dumps(
        {
            "jsonPayload": {
                "detectionCategory": {"ruleName": "iam_anomalous_grant", "subRuleName": sub_rule},
                "properties": properties,
            },
            "logName": "projects/aerial-jigsaw-235219/logs/threatdetection.googleapis.com%2Fdetection",
        }
    ).encode()


def test_non_org_member_finding_derives_organization_name():
    parsed = finding.parse_finding(_sha("NON_ORG_IAM_MEMBER"))

    assert isinstance(parsed, finding.NonOrgMemberFinding)
    assert parsed.organization_name == "organizations/1055058813388"
    assert parsed.project_id == "aerial-jigsaw-235219"
    assert parsed.rule is Rule.REMOVE_NON_ORG_MEMBERS


def test_external_grant_finding_lists_members():
    payload = _etd(
        "external_member_added_to_policy",
        project_id="aerial-jigsaw-235219",
        externalMembers=["user:eve@gmail.com", "user:mallory@evil.com"],
    )

    parsed = finding.parse_finding(payload)

    assert isinstance(parsed, finding.ExternalGrantFinding)
    assert parsed.external_members == ("user:eve@gmail.com", "user:mallory@evil.com")
    assert parsed.target == "projects/aerial-jigsaw-235219"


def test_bad_ip_finding_extracts_instance():
    payload = json.dumps(
        {
            "jsonPayload": {
                "detectionCategory": {"ruleName": "bad_ip"},
                "properties": {
                    "project_id": "sec-prod",
                    "sourceInstance": "/projects/sec-prod/zones/us-central1-a/instances/web-1",
                },
            }
        }
    )

    parsed = finding.parse_finding(payload)

    assert isinstance(parsed, finding.BadIpFinding)
    assert (parsed.project_id, parsed.zone, parsed.instance) == ("sec-prod", "us-central1-a", "web-1")


def test_public_bucket_finding_extracts_bucket():
    parsed = finding.parse_finding(_sha("PUBLIC_BUCKET_ACL", resourceName="//storage.googleapis.com/public-bucket"))

    assert isinstance(parsed, finding.PublicBucketFinding)
    assert parsed.bucket == "public-bucket"
    assert parsed.rule is Rule.CLOSE_PUBLIC_BUCKET


@pytest.mark.parametrize("payload", [b"{not json", b"[1, 2, 3]", b"\xc3\x28", b'{"finding": "oops"}'])
def test_malformed_payload_is_unmarshal_error(payload):
    with pytest.raises(UnmarshalError):
        finding.parse_finding(payload)


def test_unsupported_category_is_rejected():
    with pytest.raises(ValueNotFoundError, match="unsupported finding category"):
        finding.parse_finding(_sha("OPEN_FIREWALL"))


def test_missing_identifier_is_value_not_found():
    with pytest.raises(ValueNotFoundError):
        finding.parse_finding(_sha("NON_ORG_IAM_MEMBER", parent="projects/foo/sources/1"))
    with pytest.raises(ValueNotFoundError):
        finding.parse_finding(_etd("external_member_added_to_policy", project_id="p", externalMembers=[]))
    with pytest.raises(ParseError):
        finding.parse_finding(b"{}")


@pytest.mark.parametrize(
    "parent, expected",
    [
        ("organizations/1234/sources/5678", "organizations/1234"),
        ("organizations/1234", "organizations/1234"),
        ("folders/1/sources/2", ""),
        ("organizations/", ""),
    ],
)
def test_organization_name(parent, expected):
    assert finding.organization_name(parent) == expected


def test_every_category_has_exactly_one_finding_type():
    assert set(finding.supported_categories()) == set(finding.FINDING_TYPES)
    assert {t.rule for t in finding.FINDING_TYPES.values()} == set(Rule)
