"""Configuration loading and rule gate tests."""
from __future__ import annotations

from datetime import timedelta

import pytest

from backend.responder.errors import ConfigurationError
from backend.responder.settings import Settings, gate, split_list
from backend.responder.types import Rule


def test_split_list_keeps_order_and_drops_blanks():
    assert split_list(" b.com, ,a.com,,c.com ") == ("b.com", "a.com", "c.com")
    assert split_list("") == ()
    assert split_list(None) == ()


def test_rules_disabled_by_default():
    settings = Settings.from_env({})

    for rule in Rule:
        assert gate(settings, rule) is None
    assert settings.dry_run is False
    assert settings.timeout_seconds == 60.0


def test_enabled_rule_reads_parameters():
    settings = Settings.from_env(
        {
            "REVOKE_EXTERNAL_GRANTS_ENABLED": "true",
            "REVOKE_EXTERNAL_GRANTS_FOLDER_IDS": "670032686187,folders/123",
            "REVOKE_EXTERNAL_GRANTS_DISALLOWED_DOMAINS": "gmail.com,evil.com",
        }
    )

    conf = gate(settings, Rule.REVOKE_EXTERNAL_GRANTS)

    assert conf is not None
    assert conf.scope_ids == frozenset({"670032686187", "folders/123"})
    assert conf.disallowed_domains == ("gmail.com", "evil.com")


def test_enabled_rule_missing_parameter_is_configuration_error():
    settings = Settings.from_env({"CLOSE_PUBLIC_BUCKET_ENABLED": "true"})

    with pytest.raises(ConfigurationError, match="CLOSE_PUBLIC_BUCKET_FOLDER_IDS"):
        gate(settings, Rule.CLOSE_PUBLIC_BUCKET)


def test_snapshot_rule_requires_threshold():
    with pytest.raises(ConfigurationError, match="SNAPSHOT_DISK_MAX_AGE_MINUTES"):
        gate(Settings.from_env({"SNAPSHOT_DISK_ENABLED": "true"}), Rule.SNAPSHOT_DISK)

    conf = gate(
        Settings.from_env({"SNAPSHOT_DISK_ENABLED": "true", "SNAPSHOT_DISK_MAX_AGE_MINUTES": "90"}),
        Rule.SNAPSHOT_DISK,
    )
    assert conf is not None
    assert conf.max_snapshot_age == timedelta(minutes=90)


def test_non_org_rule_accepts_empty_allowlist():
    conf = gate(Settings.from_env({"REMOVE_NON_ORG_MEMBERS_ENABLED": "true"}), Rule.REMOVE_NON_ORG_MEMBERS)

    assert conf is not None
    assert conf.allowed_domains == ()


@pytest.mark.parametrize(
    "env",
    [
        {"DRY_RUN": "maybe"},
        {"INVOCATION_TIMEOUT_SECONDS": "soon"},
        {"SNAPSHOT_DISK_MAX_AGE_MINUTES": "-5"},
        {"SNAPSHOT_DISK_MAX_AGE_MINUTES": "inf"},
        {"SNAPSHOT_DISK_MAX_AGE_MINUTES": "nan"},
        {"SNAPSHOT_DISK_MAX_AGE_MINUTES": "1e300"},
        {"SNAPSHOT_MAX_WORKERS": "inf"},
        {"INVOCATION_TIMEOUT_SECONDS": "nan"},
    ],
)
def test_malformed_values_are_rejected(env):
    with pytest.raises(ConfigurationError):
        Settings.from_env(env)


def test_global_flags():
    settings = Settings.from_env(
        {
            "DRY_RUN": "true",
            "DROP_EMPTY_BINDINGS": "1",
            "SNAPSHOT_MAX_WORKERS": "0",
            "SNS_TOPIC_ARN": "arn:aws:sns:us-east-1:123456789012:responder",
        }
    )

    assert settings.dry_run is True
    assert settings.drop_empty_bindings is True
    assert settings.snapshot_max_workers == 1
    assert settings.sns_topic_arn.endswith(":responder")
