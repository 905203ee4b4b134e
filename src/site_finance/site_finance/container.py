from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from .core.constants import DEFAULT_RETENTION_DAYS
from .database.connection import DBConfig, DatabaseConnection
from .finance.mysql_finance_repository import MySQLFinanceRepository
from .finance.policy import FinancePolicy
from .finance.service import FinanceService
from .finance.sweeper import CleanupSweeper
from .sites.mysql_site_repository import MySQLSiteRepository
from .sites.service import SiteDirectoryService


@dataclass(frozen=True)
class Container:
    conn: DatabaseConnection

    finance_repo: MySQLFinanceRepository
    sites_repo: MySQLSiteRepository

    finance_policy: FinancePolicy
    sweeper: CleanupSweeper
    site_service: SiteDirectoryService
    finance_service: FinanceService


def build_container(
    *,
    db_config: dict,
    retention_days: int = DEFAULT_RETENTION_DAYS,
    restore_roles: Optional[Iterable[str]] = None,
    purge_roles: Optional[Iterable[str]] = None,
    view_all_roles: Optional[Iterable[str]] = None,
) -> Container:
    conn = DatabaseConnection.get_instance(DBConfig.from_dict(db_config))

    finance_repo = MySQLFinanceRepository(conn)
    sites_repo = MySQLSiteRepository(conn)

    finance_policy = FinancePolicy.from_settings(
        restore_roles=restore_roles,
        purge_roles=purge_roles,
        view_all_roles=view_all_roles,
        retention_days=retention_days,
    )
    sweeper = CleanupSweeper(finance_repo, retention_days=finance_policy.retention_days)
    site_service = SiteDirectoryService(sites_repo)
    finance_service = FinanceService(
        finance_repo,
        policy=finance_policy,
        sweeper=sweeper,
        sites=site_service,
    )

    return Container(
        conn=conn,
        finance_repo=finance_repo,
        sites_repo=sites_repo,
        finance_policy=finance_policy,
        sweeper=sweeper,
        site_service=site_service,
        finance_service=finance_service,
    )


def build_container_from_settings(settings) -> Container:
    """Wire the container from a ``config.*`` settings module."""
    return build_container(
        db_config=dict(getattr(settings, "DB_CONFIG")),
        retention_days=int(getattr(settings, "FINANCE_RETENTION_DAYS", DEFAULT_RETENTION_DAYS)),
        restore_roles=getattr(settings, "FINANCE_RESTORE_ROLES", None),
        purge_roles=getattr(settings, "FINANCE_PURGE_ROLES", None),
        view_all_roles=getattr(settings, "FINANCE_VIEW_ALL_ROLES", None),
    )
