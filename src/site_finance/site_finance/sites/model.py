from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional


@dataclass(frozen=True)
class Site:
    site_id: str
    site_name: str
    company_name: Optional[str] = None


@dataclass(frozen=True)
class SiteInvoiceDefault:
    """Default contract terms used to pre-fill a new finance record."""

    site_id: str
    site_name: str
    company_name: Optional[str] = None
    contract_amount: Decimal = Decimal("0.00")
    contract_management_fee: Decimal = Decimal("0.00")
