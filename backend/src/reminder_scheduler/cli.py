from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone

from .config import get_settings, runtime_config_issues
from .errors import RunInProgressError, SchedulerConfigurationError
from .models import CAMPAIGN_NAMES
from .record_store import create_record_store
from .scheduler import NotificationScheduler
from .transport import create_transport

EXIT_CONFIG_ERROR = 2
EXIT_RUN_IN_PROGRESS = 3


def _parse_now(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the escalation notification scheduler once.")
    parser.add_argument(
        "campaign",
        nargs="?",
        default="all",
        choices=[*CAMPAIGN_NAMES, "all"],
        help="Campaign to run (default: all)",
    )
    parser.add_argument("--now", type=_parse_now, default=None, help="Override the run instant (ISO 8601)")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    issues = runtime_config_issues(settings)
    if issues:
        for issue in issues:
            print(f"configuration error: {issue}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    try:
        store = create_record_store(backend=settings.record_store_backend, database_url=settings.database_url)
        transport = create_transport(settings)
        scheduler = NotificationScheduler(store=store, transport=transport, settings=settings)
        if args.campaign == "all":
            summary = scheduler.run_all(now=args.now).model_dump(mode="json")
        else:
            summary = scheduler.run(args.campaign, now=args.now).model_dump(mode="json")
    except RunInProgressError as exc:
        print(f"run already in progress: {exc}", file=sys.stderr)
        return EXIT_RUN_IN_PROGRESS
    except SchedulerConfigurationError as exc:
        print(f"configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    print(json.dumps(summary, indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
