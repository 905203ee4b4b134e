from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from ..core.enums import FinanceStatus, LifecycleState

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class ActingUser:
    user_id: str
    name: str
    role: str


@dataclass(frozen=True)
class FinanceRecord:
    record_id: str
    site_id: str
    site_name: str
    billing_month: date
    contract_amount: Decimal = ZERO
    contract_management_fee: Decimal = ZERO
    billed_amount: Decimal = ZERO
    billed_management_fee: Decimal = ZERO
    total_billed_amount: Decimal = ZERO
    status: FinanceStatus = FinanceStatus.PENDING
    company_name: Optional[str] = None
    remarks: Optional[str] = None
    revision_count: int = 0
    created_by: Optional[str] = None
    created_by_name: Optional[str] = None
    created_by_role: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[str] = None
    deleted_by_name: Optional[str] = None
    deleted_reason: Optional[str] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def state(self) -> LifecycleState:
        return LifecycleState.DELETED if self.is_deleted else LifecycleState.ACTIVE


@dataclass(frozen=True)
class FinanceRecordInput:
    """Unvalidated write payload (form, JSON body or spreadsheet row).

    Amounts are accepted as str/int/float/Decimal/None and coerced by the service.
    """

    site_id: Optional[str]
    site_name: Optional[str]
    billing_month: Any
    contract_amount: Any = None
    contract_management_fee: Any = None
    billed_amount: Any = None
    billed_management_fee: Any = None
    record_id: Optional[str] = None
    company_name: Optional[str] = None
    status: Any = None
    remarks: Optional[str] = None


@dataclass(frozen=True)
class FinanceRevision:
    record_id: str
    revision_number: int
    revised_at: datetime
    diff: dict[str, dict[str, Any]]
    revised_by: Optional[str] = None
    revised_by_name: Optional[str] = None
    revision_id: Optional[int] = None


@dataclass(frozen=True)
class FinanceSummary:
    record_count: int
    total_contract: Decimal
    total_billed: Decimal
    billing_variation: Decimal
    fee_variation: Decimal
    net_variation: Decimal
    profit_sites: int
    loss_sites: int


@dataclass(frozen=True)
class BulkItemResult:
    key: str
    success: bool
    error: Optional[str] = None
    message: str = ""
    field: Optional[str] = None
    record_id: Optional[str] = None


@dataclass
class BulkResult:
    action: str
    items: list[BulkItemResult] = field(default_factory=list)
    # Follow-up steps that failed after the items were written.
    notes: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> list[BulkItemResult]:
        return [i for i in self.items if i.success]

    @property
    def failed(self) -> list[BulkItemResult]:
        return [i for i in self.items if not i.success]

    @property
    def ok(self) -> bool:
        return not self.failed

    def summary_message(self) -> str:
        return "; ".join([self._outcome_message(), *self.notes])

    def _outcome_message(self) -> str:
        total = len(self.items)
        done = len(self.succeeded)
        if total == 0:
            return f"No records {self.action}"
        if self.ok:
            return f"{done} record{'s' if done != 1 else ''} {self.action}"
        problems = "; ".join(f"{i.key}: {i.message}" for i in self.failed[:5])
        more = f" (+{len(self.failed) - 5} more)" if len(self.failed) > 5 else ""
        return f"{done} of {total} records {self.action}; {len(self.failed)} failed - {problems}{more}"
