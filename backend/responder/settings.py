"""Process configuration and the per-rule enablement gate.

Settings are built once per invocation from the environment and passed
explicitly to everything downstream.
"""
from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Mapping

from .errors import ConfigurationError
from .types import Rule, RuleConfiguration

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_SNAPSHOT_WORKERS = 4
DEFAULT_SNAPSHOT_PREFIX = "forensic"

# Parameters that must be present when the rule is enabled.
REQUIRED_PARAMETERS: Mapping[Rule, tuple[str, ...]] = {
    Rule.REMOVE_NON_ORG_MEMBERS: (),
    Rule.REVOKE_EXTERNAL_GRANTS: ("FOLDER_IDS", "DISALLOWED_DOMAINS"),
    Rule.SNAPSHOT_DISK: ("MAX_AGE_MINUTES",),
    Rule.CLOSE_PUBLIC_BUCKET: ("FOLDER_IDS",),
}


@dataclass(frozen=True, slots=True)
class Settings:
    rules: Mapping[Rule, RuleConfiguration] = field(default_factory=dict)
    dry_run: bool = False
    sns_topic_arn: str | None = None
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    snapshot_max_workers: int = DEFAULT_SNAPSHOT_WORKERS
    snapshot_prefix: str = DEFAULT_SNAPSHOT_PREFIX
    drop_empty_bindings: bool = False
    # Names of rule parameters that were not supplied, keyed by rule.
    missing: Mapping[Rule, tuple[str, ...]] = field(default_factory=dict)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ
        rules: dict[Rule, RuleConfiguration] = {}
        missing: dict[Rule, tuple[str, ...]] = {}
        for rule in Rule:
            rules[rule], missing[rule] = _rule_from_env(env, rule)
        return cls(
            rules=rules,
            dry_run=_flag(env, "DRY_RUN"),
            sns_topic_arn=env.get("SNS_TOPIC_ARN") or None,
            timeout_seconds=_number(env, "INVOCATION_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS),
            snapshot_max_workers=max(1, int(_number(env, "SNAPSHOT_MAX_WORKERS", DEFAULT_SNAPSHOT_WORKERS))),
            snapshot_prefix=env.get("SNAPSHOT_PREFIX") or DEFAULT_SNAPSHOT_PREFIX,
            drop_empty_bindings=_flag(env, "DROP_EMPTY_BINDINGS"),
            missing=missing,
        )

    def rule(self, rule: Rule) -> RuleConfiguration:
        return self.rules.get(rule) or RuleConfiguration(enabled=False)


def gate(settings: Settings, rule: Rule) -> RuleConfiguration | None:
    """Return the rule configuration, or ``None`` when the rule is disabled.

    Raises :class:`ConfigurationError` when the rule is enabled but one of its
    required parameters was not supplied.
    """
    conf = settings.rule(rule)
    if not conf.enabled:
        LOGGER.info("%s execution disabled; set %s=true to enable", rule.value, _env_name(rule, "ENABLED"))
        return None
    missing = [name for name in REQUIRED_PARAMETERS[rule] if name in settings.missing.get(rule, ())]
    if missing:
        names = ", ".join(_env_name(rule, name) for name in missing)
        raise ConfigurationError(f"required configuration not found: {names}", operation="gate", target=rule.value)
    return conf


def split_list(value: str | None) -> tuple[str, ...]:
    """Split a comma-delimited list, dropping blanks and keeping order."""
    if not value:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _rule_from_env(env: Mapping[str, str], rule: Rule) -> tuple[RuleConfiguration, tuple[str, ...]]:
    age_key = _env_name(rule, "MAX_AGE_MINUTES")
    max_age = None
    if env.get(age_key, "").strip():
        try:
            max_age = timedelta(minutes=_number(env, age_key, 0))
        except OverflowError as exc:
            raise ConfigurationError(f"{age_key} is out of range") from exc
    conf = RuleConfiguration(
        enabled=_flag(env, _env_name(rule, "ENABLED")),
        allowed_domains=split_list(env.get(_env_name(rule, "ALLOW_DOMAINS"))),
        scope_ids=frozenset(split_list(env.get(_env_name(rule, "FOLDER_IDS")))),
        disallowed_domains=split_list(env.get(_env_name(rule, "DISALLOWED_DOMAINS"))),
        max_snapshot_age=max_age,
    )
    supplied = {
        "ALLOW_DOMAINS": bool(conf.allowed_domains),
        "FOLDER_IDS": bool(conf.scope_ids),
        "DISALLOWED_DOMAINS": bool(conf.disallowed_domains),
        "MAX_AGE_MINUTES": max_age is not None,
    }
    return conf, tuple(name for name, present in supplied.items() if not present)


def _env_name(rule: Rule, parameter: str) -> str:
    return f"{rule.value.upper()}_{parameter}"


def _flag(env: Mapping[str, str], key: str) -> bool:
    value = env.get(key, "").strip().lower()
    if value in ("", "false", "0", "no"):
        return False
    if value in ("true", "1", "yes"):
        return True
    raise ConfigurationError(f"invalid boolean for {key}: {value!r}")


def _number(env: Mapping[str, str], key: str, default: float) -> float:
    value = env.get(key, "").strip()
    if not value:
        return default
    try:
        number = float(value)
    except ValueError as exc:
        raise ConfigurationError(f"invalid number for {key}: {value!r}") from exc
    if not math.isfinite(number):
        raise ConfigurationError(f"invalid number for {key}: {value!r}")
    if number < 0:
        raise ConfigurationError(f"{key} must not be negative")
    return number


__all__ = ["REQUIRED_PARAMETERS", "Settings", "gate", "split_list"]
