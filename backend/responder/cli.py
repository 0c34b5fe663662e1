"""Command-line interface for replaying a finding against live collaborators."""
from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from pathlib import Path
from typing import Sequence

from . import handler
from .deadline import Deadline
from .errors import RemediationError
from .finding import supported_categories
from .logs import invocation_logger
from .settings import Settings
from .types import Rule


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    _configure_logging(args.log_level)

    settings = Settings.from_env()
    if args.dry_run:
        settings = dataclasses.replace(settings, dry_run=True)
    payload = sys.stdin.buffer.read() if args.finding == "-" else Path(args.finding).read_bytes()
    deadline = Deadline.after(args.timeout or settings.timeout_seconds)

    with invocation_logger(args.rule or "dispatch") as log:
        try:
            if args.rule:
                summary = handler.execute(
                    payload,
                    Rule(args.rule),
                    settings=settings,
                    clients=handler.default_clients(),
                    deadline=deadline,
                    log=log,
                )
            else:
                summary = handler.dispatch(payload, settings=settings, clients=handler.default_clients(), deadline=deadline, log=log)
        except RemediationError as exc:
            log.error("Remediation failed [%s]: %s", exc.kind.value, exc)
            return 1

    print(json.dumps(summary.to_dict(), indent=2, default=str))
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Apply automated remediation to a single security finding",
        epilog=f"Supported categories: {', '.join(supported_categories())}",
    )
    parser.add_argument("finding", help="Path to the finding JSON, or - for stdin")
    parser.add_argument("--rule", choices=[rule.value for rule in Rule], default=None, help="Require this rule to handle the finding")
    parser.add_argument("--dry-run", action="store_true", help="Log intended actions without applying")
    parser.add_argument("--timeout", type=float, default=None, help="Deadline in seconds for all API calls")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    return parser


def _configure_logging(level: str) -> None:
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=log_level, format="%(asctime)s %(levelname)s %(name)s - %(message)s")


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
