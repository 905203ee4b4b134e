from __future__ import annotations

from datetime import date, datetime
from typing import Optional, Protocol, Sequence

from .model import FinanceRecord, FinanceRevision


class FinanceRepository(Protocol):
    def get(self, record_id: str) -> Optional[FinanceRecord]:
        """Return the record in any lifecycle state."""

        raise NotImplementedError

    def list_active(
        self,
        *,
        billing_month: date,
        created_by: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 1000,
    ) -> Sequence[FinanceRecord]:
        raise NotImplementedError

    def list_deleted(self, *, created_by: Optional[str] = None, limit: int = 1000) -> Sequence[FinanceRecord]:
        raise NotImplementedError

    def insert(self, record: FinanceRecord) -> None:
        raise NotImplementedError

    def update(self, record: FinanceRecord, *, revision: Optional[FinanceRevision] = None) -> bool:
        """Update an active record and append its revision in one transaction."""

        raise NotImplementedError

    def save_many(self, entries: Sequence[tuple[FinanceRecord, bool, Optional[FinanceRevision]]]) -> None:
        """Persist ``(record, is_new, revision)`` entries all-or-nothing."""

        raise NotImplementedError

    def mark_deleted(
        self,
        *,
        record_id: str,
        deleted_at: datetime,
        deleted_by: str,
        deleted_by_name: str,
        deleted_reason: str,
    ) -> bool:
        """Stamp the deletion group only if the record is currently active."""

        raise NotImplementedError

    def clear_deleted(self, *, record_id: str) -> bool:
        """Clear the deletion group only if the record is currently deleted."""

        raise NotImplementedError

    def list_expired(self, *, cutoff: datetime, limit: int = 1000) -> Sequence[FinanceRecord]:
        """Deleted records with ``deleted_at <= cutoff``, oldest first."""

        raise NotImplementedError

    def delete(self, record_id: str) -> bool:
        raise NotImplementedError

    def purge_if_expired(self, record_id: str, *, cutoff: datetime) -> bool:
        """Delete the record only if it is still deleted with ``deleted_at <= cutoff``."""

        raise NotImplementedError

    def list_revisions(self, record_id: str, *, limit: int = 50) -> Sequence[FinanceRevision]:
        raise NotImplementedError
