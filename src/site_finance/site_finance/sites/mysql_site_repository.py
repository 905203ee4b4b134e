from __future__ import annotations

from typing import Optional, Sequence

from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, fetchall, fetchone, normalize_mysql_decimal
from .model import Site, SiteInvoiceDefault
from .repository import SiteRepository


def _to_default(r: dict) -> SiteInvoiceDefault:
    return SiteInvoiceDefault(
        site_id=str(r["site_id"]),
        site_name=r["site_name"],
        company_name=r.get("company_name"),
        contract_amount=normalize_mysql_decimal(r.get("contract_amount")),
        contract_management_fee=normalize_mysql_decimal(r.get("contract_management_fee")),
    )


class MySQLSiteRepository(SiteRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def list_sites(self) -> Sequence[Site]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT site_id, site_name, company_name
                FROM sites
                WHERE is_active=1
                ORDER BY site_name
                """
            )
            return [
                Site(site_id=str(r["site_id"]), site_name=r["site_name"], company_name=r.get("company_name"))
                for r in fetchall(cur)
            ]

    def get_site(self, site_id: str) -> Optional[Site]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                "SELECT site_id, site_name, company_name FROM sites WHERE site_id=%s",
                (str(site_id),),
            )
            r = fetchone(cur)
            if not r:
                return None
            return Site(site_id=str(r["site_id"]), site_name=r["site_name"], company_name=r.get("company_name"))

    def list_invoice_defaults(self) -> Sequence[SiteInvoiceDefault]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT site_id, site_name, company_name, contract_amount, contract_management_fee
                FROM site_invoice_defaults
                ORDER BY site_name
                """
            )
            return [_to_default(r) for r in fetchall(cur)]

    def get_invoice_default(self, site_id: str) -> Optional[SiteInvoiceDefault]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT site_id, site_name, company_name, contract_amount, contract_management_fee
                FROM site_invoice_defaults
                WHERE site_id=%s
                """,
                (str(site_id),),
            )
            r = fetchone(cur)
            return _to_default(r) if r else None

    def bulk_save_invoice_defaults(self, defaults: Sequence[SiteInvoiceDefault]) -> int:
        if not defaults:
            return 0
        with db_cursor(self._conn_factory) as (_, cur):
            cur.executemany(
                """
                INSERT INTO site_invoice_defaults(
                    site_id, site_name, company_name, contract_amount, contract_management_fee
                )
                VALUES(%s,%s,%s,%s,%s)
                ON DUPLICATE KEY UPDATE
                    site_name=VALUES(site_name),
                    company_name=VALUES(company_name),
                    contract_amount=VALUES(contract_amount),
                    contract_management_fee=VALUES(contract_management_fee)
                """,
                [
                    (d.site_id, d.site_name, d.company_name, d.contract_amount, d.contract_management_fee)
                    for d in defaults
                ],
            )
            return len(defaults)
