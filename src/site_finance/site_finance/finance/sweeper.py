"""Retention sweep for soft-deleted finance records.

Two call paths share ``CleanupSweeper``: ``FinanceService.list_deleted`` runs
it opportunistically over the rows it just fetched, and
``scripts/purge_expired.py`` runs ``sweep_expired`` from cron. Only the cron
path bounds retention independently of traffic.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from ..common.datetime_utils import as_utc, now_utc
from ..core.constants import DEFAULT_LIST_LIMIT, DEFAULT_RETENTION_DAYS
from ..core.exceptions import DomainError
from .model import FinanceRecord
from .policy import is_expired, retention_window
from .repository import FinanceRepository

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    examined: int = 0
    purged: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def purged_count(self) -> int:
        return len(self.purged)


class CleanupSweeper:
    def __init__(
        self,
        finance: FinanceRepository,
        *,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        batch_limit: int = DEFAULT_LIST_LIMIT,
    ):
        self._finance = finance
        self._retention_days = int(retention_days)
        self._batch_limit = int(batch_limit)

    @property
    def retention_days(self) -> int:
        return self._retention_days

    def cutoff(self, now: datetime) -> datetime:
        """Latest ``deleted_at`` that is past retention at ``now``."""
        return as_utc(now) - retention_window(self._retention_days)

    def sweep(self, candidates: Iterable[FinanceRecord], *, now: Optional[datetime] = None) -> SweepReport:
        """Purge the expired subset of ``candidates``.

        ``candidates`` may be stale. Each purge re-checks the stored row, so a
        record restored or deleted again since the fetch is left alone. A failed
        purge is logged and skipped so the rest of the batch still runs.
        """
        now = now or now_utc()
        report = SweepReport()
        self._purge_batch(candidates, now, report)
        self._log_summary(report)
        return report

    def sweep_expired(self, *, now: Optional[datetime] = None) -> SweepReport:
        """Purge every expired record, regardless of owner, oldest first.

        Batches are fetched until none are left. A batch that purges nothing
        ends the pass so rows that keep failing are not retried forever.
        """
        now = now or now_utc()
        cutoff = self.cutoff(now)
        report = SweepReport()

        while True:
            batch = self._finance.list_expired(cutoff=cutoff, limit=self._batch_limit)
            if not batch:
                break
            purged = self._purge_batch(batch, now, report)
            if purged == 0 or len(batch) < self._batch_limit:
                break

        self._log_summary(report)
        return report

    def _purge_batch(self, candidates: Iterable[FinanceRecord], now: datetime, report: SweepReport) -> int:
        cutoff = self.cutoff(now)
        purged = 0

        for record in candidates:
            report.examined += 1
            if not is_expired(record, now, retention_days=self._retention_days):
                continue
            try:
                if self._finance.purge_if_expired(record.record_id, cutoff=cutoff):
                    purged += 1
                    report.purged.append(record.record_id)
                    logger.info(
                        "purged expired finance record %s (deleted_at=%s)",
                        record.record_id,
                        record.deleted_at,
                    )
                else:
                    logger.debug("finance record %s changed since it was listed; not purged", record.record_id)
            except DomainError as e:
                report.failed[record.record_id] = str(e)
                logger.warning("failed to purge expired finance record %s: %s", record.record_id, e)
        return purged

    @staticmethod
    def _log_summary(report: SweepReport) -> None:
        if report.purged or report.failed:
            logger.info(
                "retention sweep: examined=%d purged=%d failed=%d",
                report.examined,
                report.purged_count,
                len(report.failed),
            )
