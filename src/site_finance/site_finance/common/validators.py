from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from ..core.exceptions import ValidationError

_CENT = Decimal("0.01")


def require_non_empty(value: Optional[str], field_name: str, *, record_id: Optional[str] = None) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field_name} is required", field=field_name, record_id=record_id)
    return str(value).strip()


def require_amount(value: Any, field_name: str, *, record_id: Optional[str] = None) -> Decimal:
    """Coerce a monetary input to a non-negative Decimal with two places.

    ``None`` and empty strings count as zero, matching the column default.
    Booleans and anything that does not parse as a number are rejected.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return Decimal("0.00")
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a number", field=field_name, record_id=record_id)
    try:
        amount = Decimal(str(value).strip().replace(",", ""))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field_name} must be a number", field=field_name, record_id=record_id)
    if not amount.is_finite():
        raise ValidationError(f"{field_name} must be a number", field=field_name, record_id=record_id)
    if amount < 0:
        raise ValidationError(f"{field_name} cannot be negative", field=field_name, record_id=record_id)
    return amount.quantize(_CENT)
