from __future__ import annotations

from decimal import Decimal

import pytest

from src.site_finance.site_finance.finance.model import ActingUser
from src.site_finance.site_finance.sites.model import Site, SiteInvoiceDefault
from tests.fakes import FakeFinanceRepo, FakeSiteRepo


@pytest.fixture
def sites_repo():
    return FakeSiteRepo(
        sites=[
            Site(site_id="S1", site_name="Alpha Tower", company_name="Alpha Co"),
            Site(site_id="S2", site_name="Beta Plaza", company_name="Beta Ltd"),
        ],
        defaults=[
            SiteInvoiceDefault(
                site_id="S1",
                site_name="Alpha Tower",
                company_name="Alpha Co",
                contract_amount=Decimal("100000.00"),
                contract_management_fee=Decimal("5000.00"),
            ),
            SiteInvoiceDefault(
                site_id="S2",
                site_name="Beta Plaza",
                company_name="Beta Ltd",
                contract_amount=Decimal("40000.00"),
                contract_management_fee=Decimal("2000.00"),
            ),
        ],
    )


@pytest.fixture
def finance_repo():
    return FakeFinanceRepo()


@pytest.fixture
def admin():
    return ActingUser(user_id="admin-1", name="Ada", role="admin")


@pytest.fixture
def clerk():
    return ActingUser(user_id="u1", name="Uma", role="finance")
