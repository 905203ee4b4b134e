from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Optional, Sequence

from ..common.datetime_utils import first_of_month, now_utc, parse_iso_date
from ..common.validators import require_amount, require_non_empty
from ..core.constants import DEFAULT_REVISION_LIMIT, TRACKED_FIELDS
from ..core.enums import FinanceAction, FinanceStatus
from ..core.exceptions import AuthorizationError, DomainError, NotFoundError, ValidationError
from ..sites.model import Site, SiteInvoiceDefault
from ..sites.service import SiteDirectoryService
from .model import (
    ActingUser,
    BulkItemResult,
    BulkResult,
    FinanceRecord,
    FinanceRecordInput,
    FinanceRevision,
    FinanceSummary,
)
from .policy import FinancePolicy, summarize
from .repository import FinanceRepository
from .sweeper import CleanupSweeper

logger = logging.getLogger(__name__)

_AMOUNT_FIELDS = (
    "contract_amount",
    "contract_management_fee",
    "billed_amount",
    "billed_management_fee",
)

_Prepared = tuple[FinanceRecord, bool, Optional[FinanceRevision]]


def _diff_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (Decimal, date, datetime)):
        return str(value)
    return value


def _parse_month(value: Any, *, record_id: Optional[str] = None) -> date:
    if isinstance(value, datetime):
        return first_of_month(value.date())
    if isinstance(value, date):
        return first_of_month(value)
    text = (str(value) if value is not None else "").strip()
    if not text:
        raise ValidationError("billing_month is required", field="billing_month", record_id=record_id)
    try:
        return first_of_month(parse_iso_date(text[:10]))
    except ValueError:
        raise ValidationError("billing_month must be YYYY-MM-DD", field="billing_month", record_id=record_id)


def _parse_status(value: Any, *, record_id: Optional[str] = None) -> Optional[FinanceStatus]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        return FinanceStatus(str(getattr(value, "value", value)).strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown status {value!r}", field="status", record_id=record_id)


def _clean_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class FinanceService:
    """Record store for site finance rows: CRUD split by lifecycle state.

    Every operation takes the acting user explicitly; role checks go through
    the injected FinancePolicy.
    """

    def __init__(
        self,
        finance: FinanceRepository,
        *,
        policy: Optional[FinancePolicy] = None,
        sweeper: Optional[CleanupSweeper] = None,
        sites: Optional[SiteDirectoryService] = None,
        clock: Callable[[], datetime] = now_utc,
    ):
        self._finance = finance
        self._policy = policy or FinancePolicy()
        self._sweeper = sweeper or CleanupSweeper(finance, retention_days=self._policy.retention_days)
        self._sites = sites
        self._clock = clock

    @property
    def policy(self) -> FinancePolicy:
        return self._policy

    def now(self) -> datetime:
        return self._clock()

    # -------- helpers --------
    def _require(self, actor: ActingUser, action: FinanceAction) -> None:
        if not self._policy.is_allowed(actor.role, action):
            raise AuthorizationError(f"Role '{actor.role}' may not {action.value.replace('_', ' ')} finance records")

    def _is_visible(self, actor: ActingUser, record: FinanceRecord) -> bool:
        owner = self._policy.scope_owner(actor.role, actor.user_id)
        return owner is None or record.created_by == owner

    def _get_visible(self, actor: ActingUser, record_id: str) -> Optional[FinanceRecord]:
        record = self._finance.get(str(record_id))
        if record is None or not self._is_visible(actor, record):
            return None
        return record

    def _resolve_site(
        self,
        data: FinanceRecordInput,
        *,
        directory: Optional[dict[str, Site]],
        record_id: Optional[str],
    ) -> Site:
        if self._sites is None:
            return Site(
                site_id=require_non_empty(data.site_id, "site_id", record_id=record_id),
                site_name=require_non_empty(data.site_name, "site_name", record_id=record_id),
                company_name=_clean_text(data.company_name),
            )
        return self._sites.resolve_site(data.site_id, data.site_name, directory=directory, record_id=record_id)

    def _prepare(
        self,
        actor: ActingUser,
        data: FinanceRecordInput,
        *,
        now: datetime,
        directory: Optional[dict[str, Site]] = None,
    ) -> _Prepared:
        """Validate one payload and build the row to write.

        Returns ``(record, is_new, revision)``; ``revision`` is None for inserts
        and for updates that change nothing.
        """
        rid = _clean_text(data.record_id)
        site = self._resolve_site(data, directory=directory, record_id=rid)
        month = _parse_month(data.billing_month, record_id=rid)
        amounts = {f: require_amount(getattr(data, f), f, record_id=rid) for f in _AMOUNT_FIELDS}
        status = _parse_status(data.status, record_id=rid)
        company = _clean_text(data.company_name) or site.company_name

        existing = self._finance.get(rid) if rid else None
        if existing is not None and (existing.is_deleted or not self._is_visible(actor, existing)):
            raise NotFoundError(f"No active finance record {rid}", record_id=rid)

        total = amounts["billed_amount"] + amounts["billed_management_fee"]

        if existing is None:
            record = FinanceRecord(
                record_id=rid or str(uuid.uuid4()),
                site_id=site.site_id,
                site_name=site.site_name,
                company_name=company,
                billing_month=month,
                total_billed_amount=total,
                status=status or FinanceStatus.PENDING,
                remarks=_clean_text(data.remarks),
                revision_count=0,
                created_by=actor.user_id,
                created_by_name=actor.name,
                created_by_role=actor.role,
                created_at=now,
                updated_at=now,
                **amounts,
            )
            return record, True, None

        candidate = replace(
            existing,
            site_id=site.site_id,
            site_name=site.site_name,
            company_name=company,
            billing_month=month,
            total_billed_amount=total,
            status=status or existing.status,
            remarks=_clean_text(data.remarks),
            **amounts,
        )
        diff = {
            f: {"old": _diff_value(getattr(existing, f)), "new": _diff_value(getattr(candidate, f))}
            for f in TRACKED_FIELDS
            if getattr(existing, f) != getattr(candidate, f)
        }
        if not diff:
            return existing, False, None

        updated = replace(candidate, revision_count=existing.revision_count + 1, updated_at=now)
        revision = FinanceRevision(
            record_id=updated.record_id,
            revision_number=updated.revision_count,
            revised_at=now,
            diff=diff,
            revised_by=actor.user_id,
            revised_by_name=actor.name,
        )
        return updated, False, revision

    @staticmethod
    def _failure(key: str, exc: DomainError, record_id: Optional[str] = None) -> BulkItemResult:
        return BulkItemResult(
            key=key,
            success=False,
            error=type(exc).__name__,
            message=str(exc),
            field=getattr(exc, "field", None),
            record_id=getattr(exc, "record_id", None) or record_id,
        )

    # -------- reads --------
    def list_active(
        self,
        actor: ActingUser,
        *,
        billing_month: Any,
        search: Optional[str] = None,
    ) -> Sequence[FinanceRecord]:
        month = _parse_month(billing_month)
        owner = self._policy.scope_owner(actor.role, actor.user_id)
        return self._finance.list_active(billing_month=month, created_by=owner, search=_clean_text(search))

    def list_deleted(self, actor: ActingUser, *, now: Optional[datetime] = None) -> Sequence[FinanceRecord]:
        """Deletion log for the caller; expired rows are purged on the way out."""
        owner = self._policy.scope_owner(actor.role, actor.user_id)
        deleted = self._finance.list_deleted(created_by=owner)

        report = self._sweeper.sweep(deleted, now=now or self._clock())
        if not report.purged:
            return deleted

        try:
            return self._finance.list_deleted(created_by=owner)
        except DomainError as e:
            logger.warning("refetch after retention sweep failed, returning pre-sweep view: %s", e)
            purged = set(report.purged)
            return [r for r in deleted if r.record_id not in purged]

    def get(self, actor: ActingUser, record_id: str) -> FinanceRecord:
        record = self._get_visible(actor, record_id)
        if record is None:
            raise NotFoundError(f"Finance record {record_id} not found", record_id=str(record_id))
        return record

    def list_revisions(self, actor: ActingUser, record_id: str) -> Sequence[FinanceRevision]:
        self.get(actor, record_id)
        return self._finance.list_revisions(str(record_id), limit=DEFAULT_REVISION_LIMIT)

    def summary(self, actor: ActingUser, *, billing_month: Any) -> FinanceSummary:
        return summarize(self.list_active(actor, billing_month=billing_month))

    def new_record_template(self, *, site_id: str, billing_month: Any) -> FinanceRecordInput:
        """Unsaved payload pre-filled from the site's invoice defaults."""
        if self._sites is None:
            raise ValidationError("Site directory is not configured", field="site_id")
        month = _parse_month(billing_month)
        site = self._sites.directory().get(str(site_id))
        if site is None:
            raise ValidationError(f"Unknown site {site_id}", field="site_id")
        default = self._sites.get_invoice_default(site.site_id)
        return FinanceRecordInput(
            site_id=site.site_id,
            site_name=site.site_name,
            company_name=(default.company_name if default else None) or site.company_name,
            billing_month=month,
            contract_amount=default.contract_amount if default else None,
            contract_management_fee=default.contract_management_fee if default else None,
        )

    # -------- writes --------
    def save(self, actor: ActingUser, data: FinanceRecordInput) -> FinanceRecord:
        self._require(actor, FinanceAction.SAVE)
        record, is_new, revision = self._prepare(actor, data, now=self._clock())

        if is_new:
            self._finance.insert(record)
            logger.info("finance record %s created by %s", record.record_id, actor.user_id)
        elif revision is not None:
            if not self._finance.update(record, revision=revision):
                raise NotFoundError(f"No active finance record {record.record_id}", record_id=record.record_id)
            logger.info(
                "finance record %s updated by %s (revision %d)",
                record.record_id,
                actor.user_id,
                revision.revision_number,
            )
        return record

    def bulk_save(self, actor: ActingUser, rows: Sequence[FinanceRecordInput]) -> BulkResult:
        """Validate every row, then persist all valid rows in one transaction.

        Invalid rows are reported and skipped. If the write itself fails, every
        valid row is reported with that error and nothing is persisted.
        """
        self._require(actor, FinanceAction.SAVE)
        now = self._clock()
        directory = self._sites.directory() if self._sites is not None else None

        results: dict[int, BulkItemResult] = {}
        pending: list[tuple[int, _Prepared]] = []

        for idx, row in enumerate(rows):
            key = f"row {idx + 1}"
            try:
                pending.append((idx, self._prepare(actor, row, now=now, directory=directory)))
            except DomainError as e:
                results[idx] = self._failure(key, e, _clean_text(row.record_id))

        writes = [prepared for _, prepared in pending if prepared[1] or prepared[2] is not None]
        try:
            self._finance.save_many(writes)
        except DomainError as e:
            logger.warning("bulk save of %d finance rows failed: %s", len(writes), e)
            for idx, (record, _, _) in pending:
                results[idx] = self._failure(f"row {idx + 1}", e, record.record_id)
        else:
            for idx, (record, _, _) in pending:
                results[idx] = BulkItemResult(key=f"row {idx + 1}", success=True, record_id=record.record_id)

        result = BulkResult(action="saved", items=[results[i] for i in sorted(results)])
        logger.info("bulk save by %s: %s", actor.user_id, result.summary_message())
        return result

    def import_rows(self, actor: ActingUser, rows: Sequence[FinanceRecordInput]) -> BulkResult:
        """Bulk save imported rows, then copy their contract terms back to the site defaults."""
        if not rows:
            raise ValidationError("No valid records found in file")
        result = self.bulk_save(actor, rows)
        if self._sites is None or not result.succeeded:
            return result

        saved_ids = {i.record_id for i in result.succeeded}
        defaults: dict[str, SiteInvoiceDefault] = {}
        for rec_id in saved_ids:
            record = self._finance.get(rec_id)
            if record is None:
                continue
            defaults[record.site_id] = SiteInvoiceDefault(
                site_id=record.site_id,
                site_name=record.site_name,
                company_name=record.company_name,
                contract_amount=record.contract_amount,
                contract_management_fee=record.contract_management_fee,
            )
        # Rows are already committed here; a sync failure is reported as a note.
        try:
            self._sites.sync_contract_defaults(defaults.values())
        except DomainError as e:
            logger.warning("import by %s saved records but site defaults were not synced: %s", actor.user_id, e)
            result.notes.append(f"site invoice defaults not updated: {e}")
        return result

    def soft_delete(
        self,
        actor: ActingUser,
        record_id: str,
        reason: str,
        *,
        now: Optional[datetime] = None,
    ) -> None:
        self._require(actor, FinanceAction.SOFT_DELETE)
        rid = str(record_id)
        reason = require_non_empty(reason, "reason", record_id=rid)

        record = self._get_visible(actor, rid)
        if record is None or record.is_deleted:
            raise NotFoundError(f"No active finance record {rid}", record_id=rid)

        ok = self._finance.mark_deleted(
            record_id=rid,
            deleted_at=now or self._clock(),
            deleted_by=actor.user_id,
            deleted_by_name=actor.name or "Admin",
            deleted_reason=reason,
        )
        if not ok:
            raise NotFoundError(f"No active finance record {rid}", record_id=rid)
        logger.info("finance record %s soft-deleted by %s: %s", rid, actor.user_id, reason)

    def restore(self, actor: ActingUser, record_id: str) -> None:
        self._require(actor, FinanceAction.RESTORE)
        rid = str(record_id)

        record = self._get_visible(actor, rid)
        if record is None or not record.is_deleted:
            raise NotFoundError(f"No deleted finance record {rid}", record_id=rid)

        if not self._finance.clear_deleted(record_id=rid):
            raise NotFoundError(f"No deleted finance record {rid}", record_id=rid)
        logger.info("finance record %s restored by %s", rid, actor.user_id)

    def purge(self, actor: ActingUser, record_id: str) -> None:
        """Irreversible; allowed from either lifecycle state."""
        self._require(actor, FinanceAction.PURGE)
        rid = str(record_id)

        if self._get_visible(actor, rid) is None or not self._finance.delete(rid):
            raise NotFoundError(f"Finance record {rid} not found", record_id=rid)
        logger.info("finance record %s purged by %s", rid, actor.user_id)

    def _bulk(self, action: str, ids: Sequence[str], op: Callable[[str], None]) -> BulkResult:
        result = BulkResult(action=action)
        for rid in ids:
            rid = str(rid)
            try:
                op(rid)
            except DomainError as e:
                result.items.append(self._failure(rid, e, rid))
            else:
                result.items.append(BulkItemResult(key=rid, success=True, record_id=rid))
        if not result.ok:
            logger.warning("bulk %s: %s", action, result.summary_message())
        return result

    def bulk_soft_delete(self, actor: ActingUser, record_ids: Sequence[str], reason: str) -> BulkResult:
        self._require(actor, FinanceAction.SOFT_DELETE)
        now = self._clock()
        return self._bulk("deleted", record_ids, lambda rid: self.soft_delete(actor, rid, reason, now=now))

    def bulk_restore(self, actor: ActingUser, record_ids: Sequence[str]) -> BulkResult:
        self._require(actor, FinanceAction.RESTORE)
        return self._bulk("restored", record_ids, lambda rid: self.restore(actor, rid))

    def bulk_purge(self, actor: ActingUser, record_ids: Sequence[str]) -> BulkResult:
        self._require(actor, FinanceAction.PURGE)
        return self._bulk("permanently deleted", record_ids, lambda rid: self.purge(actor, rid))
