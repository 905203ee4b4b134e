from __future__ import annotations

import json
from datetime import date, datetime, timezone
from typing import Any, Optional, Sequence

from ..core.enums import FinanceStatus
from ..core.exceptions import NotFoundError
from ..database.connection import DatabaseConnection
from ..database.mysql_base import (
    db_cursor,
    fetchall,
    fetchone,
    normalize_mysql_decimal,
    normalize_mysql_json,
)
from .model import FinanceRecord, FinanceRevision
from .repository import FinanceRepository

_COLUMNS = """
    id, site_id, site_name, company_name, billing_month,
    contract_amount, contract_management_fee, billed_amount, billed_management_fee,
    total_billed_amount, status, remarks, revision_count,
    created_by, created_by_name, created_by_role, created_at, updated_at,
    deleted_at, deleted_by, deleted_by_name, deleted_reason
"""


def _to_db_datetime(value: Optional[datetime]) -> Optional[datetime]:
    # DATETIME columns hold naive UTC.
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _from_db_datetime(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)


def _to_record(r: dict) -> FinanceRecord:
    return FinanceRecord(
        record_id=str(r["id"]),
        site_id=str(r["site_id"]),
        site_name=r["site_name"],
        company_name=r.get("company_name"),
        billing_month=r["billing_month"],
        contract_amount=normalize_mysql_decimal(r.get("contract_amount")),
        contract_management_fee=normalize_mysql_decimal(r.get("contract_management_fee")),
        billed_amount=normalize_mysql_decimal(r.get("billed_amount")),
        billed_management_fee=normalize_mysql_decimal(r.get("billed_management_fee")),
        total_billed_amount=normalize_mysql_decimal(r.get("total_billed_amount")),
        status=FinanceStatus(r.get("status") or FinanceStatus.PENDING.value),
        remarks=r.get("remarks"),
        revision_count=int(r.get("revision_count") or 0),
        created_by=r.get("created_by"),
        created_by_name=r.get("created_by_name"),
        created_by_role=r.get("created_by_role"),
        created_at=_from_db_datetime(r.get("created_at")),
        updated_at=_from_db_datetime(r.get("updated_at")),
        deleted_at=_from_db_datetime(r.get("deleted_at")),
        deleted_by=r.get("deleted_by"),
        deleted_by_name=r.get("deleted_by_name"),
        deleted_reason=r.get("deleted_reason"),
    )


def _insert_params(rec: FinanceRecord) -> tuple[Any, ...]:
    return (
        rec.record_id,
        rec.site_id,
        rec.site_name,
        rec.company_name,
        rec.billing_month,
        rec.contract_amount,
        rec.contract_management_fee,
        rec.billed_amount,
        rec.billed_management_fee,
        rec.total_billed_amount,
        rec.status.value,
        rec.remarks,
        rec.revision_count,
        rec.created_by,
        rec.created_by_name,
        rec.created_by_role,
        _to_db_datetime(rec.created_at),
        _to_db_datetime(rec.updated_at),
    )


def _update_params(rec: FinanceRecord) -> tuple[Any, ...]:
    return (
        rec.site_id,
        rec.site_name,
        rec.company_name,
        rec.billing_month,
        rec.contract_amount,
        rec.contract_management_fee,
        rec.billed_amount,
        rec.billed_management_fee,
        rec.total_billed_amount,
        rec.status.value,
        rec.remarks,
        rec.revision_count,
        _to_db_datetime(rec.updated_at),
        rec.record_id,
    )


_INSERT_SQL = """
    INSERT INTO site_finance_tracker(
        id, site_id, site_name, company_name, billing_month,
        contract_amount, contract_management_fee, billed_amount, billed_management_fee,
        total_billed_amount, status, remarks, revision_count,
        created_by, created_by_name, created_by_role, created_at, updated_at
    )
    VALUES(%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s)
"""

# Provenance and the deletion group are never touched by an edit.
_UPDATE_SQL = """
    UPDATE site_finance_tracker
    SET site_id=%s, site_name=%s, company_name=%s, billing_month=%s,
        contract_amount=%s, contract_management_fee=%s,
        billed_amount=%s, billed_management_fee=%s, total_billed_amount=%s,
        status=%s, remarks=%s, revision_count=%s, updated_at=%s
    WHERE id=%s AND deleted_at IS NULL
"""

_REVISION_SQL = """
    INSERT INTO site_finance_revisions(
        record_id, revision_number, revised_by, revised_by_name, revised_at, diff
    )
    VALUES(%s,%s,%s,%s,%s,%s)
"""


def _revision_params(rev: FinanceRevision) -> tuple[Any, ...]:
    return (
        rev.record_id,
        int(rev.revision_number),
        rev.revised_by,
        rev.revised_by_name,
        _to_db_datetime(rev.revised_at),
        json.dumps(rev.diff, default=str),
    )


class MySQLFinanceRepository(FinanceRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def get(self, record_id: str) -> Optional[FinanceRecord]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(f"SELECT {_COLUMNS} FROM site_finance_tracker WHERE id=%s", (str(record_id),))
            r = fetchone(cur)
            return _to_record(r) if r else None

    def list_active(
        self,
        *,
        billing_month: date,
        created_by: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 1000,
    ) -> Sequence[FinanceRecord]:
        clauses = ["deleted_at IS NULL", "billing_month=%s"]
        params: list[object] = [billing_month]
        if created_by is not None:
            clauses.append("created_by=%s")
            params.append(str(created_by))
        if search:
            clauses.append("(LOWER(site_name) LIKE %s OR LOWER(COALESCE(company_name,'')) LIKE %s)")
            like = f"%{search.strip().lower()}%"
            params.extend([like, like])
        params.append(int(limit))

        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT {_COLUMNS}
                FROM site_finance_tracker
                WHERE {' AND '.join(clauses)}
                ORDER BY site_name
                LIMIT %s
                """,
                tuple(params),
            )
            return [_to_record(r) for r in fetchall(cur)]

    def list_deleted(self, *, created_by: Optional[str] = None, limit: int = 1000) -> Sequence[FinanceRecord]:
        clauses = ["deleted_at IS NOT NULL"]
        params: list[object] = []
        if created_by is not None:
            clauses.append("created_by=%s")
            params.append(str(created_by))
        params.append(int(limit))

        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT {_COLUMNS}
                FROM site_finance_tracker
                WHERE {' AND '.join(clauses)}
                ORDER BY deleted_at DESC
                LIMIT %s
                """,
                tuple(params),
            )
            return [_to_record(r) for r in fetchall(cur)]

    def list_expired(self, *, cutoff: datetime, limit: int = 1000) -> Sequence[FinanceRecord]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT {_COLUMNS}
                FROM site_finance_tracker
                WHERE deleted_at IS NOT NULL AND deleted_at <= %s
                ORDER BY deleted_at ASC
                LIMIT %s
                """,
                (_to_db_datetime(cutoff), int(limit)),
            )
            return [_to_record(r) for r in fetchall(cur)]

    def insert(self, record: FinanceRecord) -> None:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(_INSERT_SQL, _insert_params(record))

    def update(self, record: FinanceRecord, *, revision: Optional[FinanceRevision] = None) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(_UPDATE_SQL, _update_params(record))
            if cur.rowcount <= 0:
                return False
            if revision is not None:
                cur.execute(_REVISION_SQL, _revision_params(revision))
            return True

    def save_many(self, entries: Sequence[tuple[FinanceRecord, bool, Optional[FinanceRevision]]]) -> None:
        if not entries:
            return
        with db_cursor(self._conn_factory) as (_, cur):
            for record, is_new, revision in entries:
                if is_new:
                    cur.execute(_INSERT_SQL, _insert_params(record))
                    continue
                cur.execute(_UPDATE_SQL, _update_params(record))
                if cur.rowcount <= 0:
                    raise NotFoundError(
                        f"Finance record {record.record_id} is no longer active", record_id=record.record_id
                    )
                if revision is not None:
                    cur.execute(_REVISION_SQL, _revision_params(revision))

    def mark_deleted(
        self,
        *,
        record_id: str,
        deleted_at: datetime,
        deleted_by: str,
        deleted_by_name: str,
        deleted_reason: str,
    ) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                UPDATE site_finance_tracker
                SET deleted_at=%s, deleted_by=%s, deleted_by_name=%s, deleted_reason=%s
                WHERE id=%s AND deleted_at IS NULL
                """,
                (_to_db_datetime(deleted_at), deleted_by, deleted_by_name, deleted_reason, str(record_id)),
            )
            return cur.rowcount > 0

    def clear_deleted(self, *, record_id: str) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                UPDATE site_finance_tracker
                SET deleted_at=NULL, deleted_by=NULL, deleted_by_name=NULL, deleted_reason=NULL
                WHERE id=%s AND deleted_at IS NOT NULL
                """,
                (str(record_id),),
            )
            return cur.rowcount > 0

    def delete(self, record_id: str) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            # Revisions go with the record (ON DELETE CASCADE).
            cur.execute("DELETE FROM site_finance_tracker WHERE id=%s", (str(record_id),))
            return cur.rowcount > 0

    def purge_if_expired(self, record_id: str, *, cutoff: datetime) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                DELETE FROM site_finance_tracker
                WHERE id=%s AND deleted_at IS NOT NULL AND deleted_at <= %s
                """,
                (str(record_id), _to_db_datetime(cutoff)),
            )
            return cur.rowcount > 0

    def list_revisions(self, record_id: str, *, limit: int = 50) -> Sequence[FinanceRevision]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT id, record_id, revision_number, revised_by, revised_by_name, revised_at, diff
                FROM site_finance_revisions
                WHERE record_id=%s
                ORDER BY revision_number DESC
                LIMIT %s
                """,
                (str(record_id), int(limit)),
            )
            return [
                FinanceRevision(
                    revision_id=int(r["id"]),
                    record_id=str(r["record_id"]),
                    revision_number=int(r["revision_number"]),
                    revised_by=r.get("revised_by"),
                    revised_by_name=r.get("revised_by_name"),
                    revised_at=_from_db_datetime(r["revised_at"]),
                    diff=normalize_mysql_json(r.get("diff")),
                )
                for r in fetchall(cur)
            ]
