from __future__ import annotations

import io
from datetime import date
from decimal import Decimal

import pandas as pd
import pytest

from src.site_finance.site_finance.core.exceptions import ValidationError
from src.site_finance.site_finance.finance.spreadsheet import (
    EXPORT_COLUMNS,
    TEMPLATE_COLUMNS,
    build_template,
    export_filename,
    export_records,
    parse_import,
    template_filename,
)
from src.site_finance.site_finance.sites.model import SiteInvoiceDefault
from tests.fakes import make_record

DEFAULTS = [
    SiteInvoiceDefault(
        site_id="S1",
        site_name="Alpha Tower",
        company_name="Alpha Co",
        contract_amount=Decimal("100000.00"),
        contract_management_fee=Decimal("5000.00"),
    ),
]


def _xlsx(rows: list[list]) -> bytes:
    out = io.BytesIO()
    pd.DataFrame(rows, columns=TEMPLATE_COLUMNS).to_excel(out, index=False, engine="openpyxl")
    return out.getvalue()


def test_template_prefills_contract_terms():
    df = pd.read_excel(io.BytesIO(build_template(DEFAULTS)), engine="openpyxl")

    assert list(df.columns) == TEMPLATE_COLUMNS
    assert df.iloc[0]["Site Name"] == "Alpha Tower"
    assert df.iloc[0]["Contract Amount"] == 100000
    assert pd.isna(df.iloc[0]["Billed Amount"])


def test_parse_import_resolves_site_and_skips_blank_rows():
    data = _xlsx(
        [
            ["Alpha Tower", "Alpha Co", 100000, 5000, 110000, 6000],
            [None, None, 1, 2, 3, 4],
            ["Unknown Site", None, "abc", None, None, None],
        ]
    )

    rows = parse_import(data, billing_month=date(2026, 3, 1), defaults=DEFAULTS)

    assert len(rows) == 2
    assert rows[0].site_id == "S1"
    assert rows[0].billing_month == date(2026, 3, 1)
    assert rows[0].billed_amount == 110000
    assert rows[1].site_id is None
    assert rows[1].contract_amount == "abc"
    assert rows[1].billed_amount is None


def test_parse_import_rejects_garbage():
    with pytest.raises(ValidationError):
        parse_import(b"not a spreadsheet", billing_month=date(2026, 3, 1), defaults=DEFAULTS)


def test_parse_import_rejects_missing_columns():
    out = io.BytesIO()
    pd.DataFrame([["Alpha Tower", 1]], columns=["Site Name", "Contract Amount"]).to_excel(
        out, index=False, engine="openpyxl"
    )

    with pytest.raises(ValidationError, match="columns"):
        parse_import(out.getvalue(), billing_month=date(2026, 3, 1), defaults=DEFAULTS)


def test_export_includes_variations():
    df = pd.read_excel(io.BytesIO(export_records([make_record()])), engine="openpyxl")

    assert list(df.columns) == EXPORT_COLUMNS
    row = df.iloc[0]
    assert row["Total Billed"] == 116000
    assert row["Billing Variation"] == 10000
    assert row["Fee Variation"] == 1000
    assert row["Net Variation"] == 11000


def test_filenames_carry_the_month():
    assert template_filename(date(2026, 3, 1)) == "Site_Finance_Template_2026-03.xlsx"
    assert export_filename(date(2026, 3, 1)) == "Finance_Export_2026-03.xlsx"
