"""Purge soft-deleted finance records older than the retention window.

Meant to run from cron (e.g. hourly) so retention holds even when nobody
opens the deletion log:

    APP_ENV=production python scripts/purge_expired.py
"""

from __future__ import annotations

import argparse
import importlib
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from dotenv import load_dotenv

from config import get_settings_module

from src.site_finance.site_finance.container import build_container_from_settings
from src.site_finance.site_finance.core.exceptions import DomainError
from src.site_finance.site_finance.core.logging import get_logger, setup_logging

logger = get_logger("purge_expired")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL from settings")
    args = parser.parse_args(argv)

    load_dotenv(override=False)
    settings = importlib.import_module(get_settings_module())
    setup_logging(args.log_level or getattr(settings, "LOG_LEVEL", "INFO"), getattr(settings, "LOG_FORMAT", "standard"))

    container = build_container_from_settings(settings)
    try:
        report = container.sweeper.sweep_expired()
    except DomainError as e:
        logger.error("retention sweep aborted: %s", e)
        return 2

    logger.info(
        "retention sweep done: examined=%d purged=%d failed=%d (retention=%d days)",
        report.examined,
        report.purged_count,
        len(report.failed),
        container.sweeper.retention_days,
    )
    return 1 if report.failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
