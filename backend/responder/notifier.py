"""Formats and publishes SNS notifications for remediation outcomes."""
from __future__ import annotations

import json
import logging
from typing import Any, Mapping

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .types import RemediationSummary

LOGGER = logging.getLogger(__name__)


def publish(topic_arn: str | None, subject: str, summary_dict: Mapping[str, Any]) -> None:
    """Publish the provided summary payload to the configured SNS topic."""
    message = json.dumps(dict(summary_dict), default=str, ensure_ascii=False)
    LOGGER.debug("Publishing remediation summary subject=%s payload=%s", subject, message)

    if not topic_arn:
        return

    client = boto3.client("sns", region_name=_region(topic_arn))
    try:
        client.publish(
            TopicArn=topic_arn,
            Message=message,
            Subject=subject[:100],  # SNS limits subjects to 100 characters
        )
    except (BotoCoreError, ClientError) as exc:
        LOGGER.error("Failed to publish remediation summary: %s", exc)


def publish_summary(summary: RemediationSummary, topic_arn: str | None) -> None:
    """Serialize a RemediationSummary and publish it to SNS."""
    publish(topic_arn, render_subject(summary), summary.to_dict())


def render_subject(summary: RemediationSummary) -> str:
    return f"[Responder] {summary.rule.value} {summary.target} :: {summary.status.upper()}"


def _region(topic_arn: str) -> str | None:
    # arn:aws:sns:<region>:<account>:<topic>
    parts = topic_arn.split(":")
    return parts[3] if len(parts) > 5 and parts[3] else None
