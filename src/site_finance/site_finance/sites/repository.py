from __future__ import annotations

from typing import Optional, Protocol, Sequence

from .model import Site, SiteInvoiceDefault


class SiteRepository(Protocol):
    def list_sites(self) -> Sequence[Site]:
        raise NotImplementedError

    def get_site(self, site_id: str) -> Optional[Site]:
        raise NotImplementedError

    def list_invoice_defaults(self) -> Sequence[SiteInvoiceDefault]:
        raise NotImplementedError

    def get_invoice_default(self, site_id: str) -> Optional[SiteInvoiceDefault]:
        raise NotImplementedError

    def bulk_save_invoice_defaults(self, defaults: Sequence[SiteInvoiceDefault]) -> int:
        """Upsert by site_id; returns number of rows written."""

        raise NotImplementedError
