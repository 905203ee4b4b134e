"""Lifecycle rules for finance records.

Everything here is side-effect free: callers pass ``now`` and the caller's
role explicitly instead of reading session state.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import AbstractSet, Iterable, Optional

from ..common.datetime_utils import as_utc
from ..core.constants import DEFAULT_RETENTION_DAYS, STRICT_ADMIN_ROLES, VIEW_ALL_ROLES
from ..core.enums import FinanceAction
from .model import FinanceRecord, FinanceSummary, ZERO

_DAY_SECONDS = 86400


def retention_window(days: int = DEFAULT_RETENTION_DAYS) -> timedelta:
    return timedelta(days=int(days))


def expires_at(record: FinanceRecord, *, retention_days: int = DEFAULT_RETENTION_DAYS) -> Optional[datetime]:
    if record.deleted_at is None:
        return None
    return as_utc(record.deleted_at) + retention_window(retention_days)


def days_remaining(record: FinanceRecord, now: datetime, *, retention_days: int = DEFAULT_RETENTION_DAYS) -> int:
    """Whole days (rounded up) until the record is purged; 0 for active or expired rows."""
    expiry = expires_at(record, retention_days=retention_days)
    if expiry is None:
        return 0
    seconds = (expiry - as_utc(now)).total_seconds()
    return max(0, math.ceil(seconds / _DAY_SECONDS))


def is_expired(record: FinanceRecord, now: datetime, *, retention_days: int = DEFAULT_RETENTION_DAYS) -> bool:
    if record.deleted_at is None:
        return False
    return as_utc(now) - as_utc(record.deleted_at) >= retention_window(retention_days)


def billing_variation(record: FinanceRecord) -> Decimal:
    return record.billed_amount - record.contract_amount


def fee_variation(record: FinanceRecord) -> Decimal:
    return record.billed_management_fee - record.contract_management_fee


def net_variation(record: FinanceRecord) -> Decimal:
    """Billed total minus contracted total; positive is profit, negative is loss.

    Independent of lifecycle state, so deleted rows show the same figure.
    """
    billed = record.billed_amount + record.billed_management_fee
    contracted = record.contract_amount + record.contract_management_fee
    return billed - contracted


def variation_label(value: Decimal) -> str:
    return "Profit" if value >= 0 else "Loss"


def summarize(records: Iterable[FinanceRecord]) -> FinanceSummary:
    count = 0
    total_contract = ZERO
    total_billed = ZERO
    billing_var = ZERO
    fee_var = ZERO
    profit = 0
    loss = 0

    for r in records:
        count += 1
        total_contract += r.contract_amount + r.contract_management_fee
        total_billed += r.billed_amount + r.billed_management_fee
        billing_var += billing_variation(r)
        fee_var += fee_variation(r)
        if net_variation(r) >= 0:
            profit += 1
        else:
            loss += 1

    return FinanceSummary(
        record_count=count,
        total_contract=total_contract,
        total_billed=total_billed,
        billing_variation=billing_var,
        fee_variation=fee_var,
        net_variation=billing_var + fee_var,
        profit_sites=profit,
        loss_sites=loss,
    )


def _normalize_roles(roles: Optional[Iterable[str]]) -> Optional[frozenset[str]]:
    if roles is None:
        return None
    return frozenset(str(r).strip().lower() for r in roles if str(r).strip())


@dataclass(frozen=True)
class FinancePolicy:
    """Who may do what with finance records.

    A role set of ``None`` means the action is open to every authenticated role.
    """

    restore_roles: AbstractSet[str] = STRICT_ADMIN_ROLES
    purge_roles: AbstractSet[str] = STRICT_ADMIN_ROLES
    view_all_roles: AbstractSet[str] = VIEW_ALL_ROLES
    soft_delete_roles: Optional[AbstractSet[str]] = None
    save_roles: Optional[AbstractSet[str]] = None
    retention_days: int = DEFAULT_RETENTION_DAYS

    @classmethod
    def from_settings(
        cls,
        *,
        restore_roles: Optional[Iterable[str]] = None,
        purge_roles: Optional[Iterable[str]] = None,
        view_all_roles: Optional[Iterable[str]] = None,
        retention_days: int = DEFAULT_RETENTION_DAYS,
    ) -> "FinancePolicy":
        return cls(
            restore_roles=_normalize_roles(restore_roles) or STRICT_ADMIN_ROLES,
            purge_roles=_normalize_roles(purge_roles) or STRICT_ADMIN_ROLES,
            view_all_roles=_normalize_roles(view_all_roles) or VIEW_ALL_ROLES,
            retention_days=int(retention_days),
        )

    def _roles_for(self, action: FinanceAction) -> Optional[AbstractSet[str]]:
        return {
            FinanceAction.VIEW_ALL: self.view_all_roles,
            FinanceAction.RESTORE: self.restore_roles,
            FinanceAction.PURGE: self.purge_roles,
            FinanceAction.SOFT_DELETE: self.soft_delete_roles,
            FinanceAction.SAVE: self.save_roles,
        }[action]

    def is_allowed(self, role: Optional[str], action: FinanceAction) -> bool:
        allowed = self._roles_for(action)
        if allowed is None:
            return bool(role)
        return (role or "").strip().lower() in allowed

    def can_restore(self, role: Optional[str]) -> bool:
        return self.is_allowed(role, FinanceAction.RESTORE)

    def can_purge(self, role: Optional[str]) -> bool:
        return self.is_allowed(role, FinanceAction.PURGE)

    def scope_owner(self, role: Optional[str], user_id: str) -> Optional[str]:
        """Owner id to filter by, or None when the caller sees every record."""
        if self.is_allowed(role, FinanceAction.VIEW_ALL):
            return None
        return user_id

    def allowed_actions(self, role: Optional[str], record: FinanceRecord) -> list[str]:
        if record.is_deleted:
            candidates = (FinanceAction.RESTORE, FinanceAction.PURGE)
        else:
            candidates = (FinanceAction.SAVE, FinanceAction.SOFT_DELETE)
        return [a.value for a in candidates if self.is_allowed(role, a)]
