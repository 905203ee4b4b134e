from __future__ import annotations

import logging
from typing import Iterable, Optional, Sequence

from ..common.validators import require_non_empty
from ..core.exceptions import ValidationError
from .model import Site, SiteInvoiceDefault
from .repository import SiteRepository

logger = logging.getLogger(__name__)


class SiteDirectoryService:
    """Site directory and per-site contract defaults used by the finance module."""

    def __init__(self, sites: SiteRepository):
        self._sites = sites

    def get_organizations(self) -> Sequence[Site]:
        return self._sites.list_sites()

    def get_site_invoice_defaults(self) -> Sequence[SiteInvoiceDefault]:
        return sorted(self._sites.list_invoice_defaults(), key=lambda d: d.site_name.lower())

    def get_invoice_default(self, site_id: str) -> Optional[SiteInvoiceDefault]:
        return self._sites.get_invoice_default(site_id)

    def directory(self) -> dict[str, Site]:
        return {s.site_id: s for s in self._sites.list_sites()}

    def resolve_site(
        self,
        site_id: Optional[str],
        site_name: Optional[str],
        *,
        directory: Optional[dict[str, Site]] = None,
        record_id: Optional[str] = None,
    ) -> Site:
        """Validate a siteId/siteName pair; the directory name wins over the supplied copy."""
        sid = require_non_empty(site_id, "site_id", record_id=record_id)
        name = require_non_empty(site_name, "site_name", record_id=record_id)

        site = directory.get(sid) if directory is not None else self._sites.get_site(sid)
        if site is None:
            raise ValidationError(f"Unknown site {sid}", field="site_id", record_id=record_id)
        if site.site_name != name:
            logger.debug("site name %r replaced by directory name %r for %s", name, site.site_name, sid)
        return site

    def sync_contract_defaults(self, defaults: Iterable[SiteInvoiceDefault]) -> int:
        rows = [d for d in defaults if d.site_id]
        written = self._sites.bulk_save_invoice_defaults(rows)
        logger.info("synced %d site invoice defaults", written)
        return written
