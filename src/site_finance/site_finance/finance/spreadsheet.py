"""Excel template, import and export for site finance records."""

from __future__ import annotations

import io
import zipfile
from datetime import date
from typing import Any, BinaryIO, Iterable, Optional, Union

import pandas as pd

from ..core.exceptions import ValidationError
from ..sites.model import SiteInvoiceDefault
from .model import FinanceRecord, FinanceRecordInput
from .policy import billing_variation, fee_variation, net_variation

TEMPLATE_COLUMNS = [
    "Site Name",
    "Company Name",
    "Contract Amount",
    "Contract Management Fee",
    "Billed Amount",
    "Billed Management Fee",
]

EXPORT_COLUMNS = [
    "Site Name",
    "Contract Amount",
    "Contract Fee",
    "Billed Amount",
    "Billed Fee",
    "Total Billed",
    "Billing Variation",
    "Fee Variation",
    "Net Variation",
]

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _to_xlsx(df: pd.DataFrame, sheet_name: str) -> bytes:
    out = io.BytesIO()
    with pd.ExcelWriter(out, engine="openpyxl") as writer:
        df.to_excel(writer, index=False, sheet_name=sheet_name)
    return out.getvalue()


def _cell(value: Any) -> Any:
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    if isinstance(value, str):
        return value.strip() or None
    return value


def _cell_text(value: Any) -> Optional[str]:
    v = _cell(value)
    return None if v is None else str(v).strip() or None


def template_filename(billing_month: date) -> str:
    return f"Site_Finance_Template_{billing_month.strftime('%Y-%m')}.xlsx"


def export_filename(billing_month: date) -> str:
    return f"Finance_Export_{billing_month.strftime('%Y-%m')}.xlsx"


def build_template(defaults: Iterable[SiteInvoiceDefault]) -> bytes:
    """One row per site with contract terms pre-filled and billed columns left blank."""
    rows = [
        {
            "Site Name": d.site_name,
            "Company Name": d.company_name or "",
            "Contract Amount": float(d.contract_amount or 0),
            "Contract Management Fee": float(d.contract_management_fee or 0),
            "Billed Amount": None,
            "Billed Management Fee": None,
        }
        for d in defaults
    ]
    return _to_xlsx(pd.DataFrame(rows, columns=TEMPLATE_COLUMNS), "Finance Template")


def parse_import(
    source: Union[bytes, BinaryIO],
    *,
    billing_month: date,
    defaults: Iterable[SiteInvoiceDefault],
) -> list[FinanceRecordInput]:
    """Read the first sheet of an uploaded template.

    Columns are positional (the template's order). Rows without a site name are
    skipped. Amount cells are passed through untouched so that save-time
    validation reports bad values per row instead of silently zeroing them.
    """
    data = source if isinstance(source, (bytes, bytearray)) else source.read()
    try:
        df = pd.read_excel(io.BytesIO(data), sheet_name=0, dtype=object, engine="openpyxl")
    except (ValueError, OSError, KeyError, zipfile.BadZipFile) as e:
        raise ValidationError(f"Could not read spreadsheet: {e}")

    if df.shape[1] < len(TEMPLATE_COLUMNS):
        raise ValidationError(f"Spreadsheet must have columns: {', '.join(TEMPLATE_COLUMNS)}")

    by_name = {d.site_name: d for d in defaults}
    parsed: list[FinanceRecordInput] = []

    for values in df.itertuples(index=False, name=None):
        site_name = _cell_text(values[0])
        if not site_name:
            continue
        site_default = by_name.get(site_name)
        parsed.append(
            FinanceRecordInput(
                site_id=site_default.site_id if site_default else None,
                site_name=site_name,
                company_name=_cell_text(values[1]),
                billing_month=billing_month,
                contract_amount=_cell(values[2]),
                contract_management_fee=_cell(values[3]),
                billed_amount=_cell(values[4]),
                billed_management_fee=_cell(values[5]),
            )
        )
    return parsed


def export_records(records: Iterable[FinanceRecord]) -> bytes:
    rows = []
    for r in records:
        rows.append(
            {
                "Site Name": r.site_name,
                "Contract Amount": float(r.contract_amount),
                "Contract Fee": float(r.contract_management_fee),
                "Billed Amount": float(r.billed_amount),
                "Billed Fee": float(r.billed_management_fee),
                "Total Billed": float(r.total_billed_amount),
                "Billing Variation": float(billing_variation(r)),
                "Fee Variation": float(fee_variation(r)),
                "Net Variation": float(net_variation(r)),
            }
        )
    return _to_xlsx(pd.DataFrame(rows, columns=EXPORT_COLUMNS), "Finance Records")
