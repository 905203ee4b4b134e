from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """Roles named by the restore, purge and view-all presets.

    Stored as plain strings on users; unknown strings are kept as-is by callers.
    """

    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"
    MANAGEMENT = "management"
    HR = "hr"


class FinanceStatus(str, Enum):
    """Informational tag on a finance record; not used for lifecycle gating."""

    PENDING = "pending"
    APPROVED = "approved"
    INVOICED = "invoiced"


class LifecycleState(str, Enum):
    ACTIVE = "ACTIVE"
    DELETED = "DELETED"


class FinanceAction(str, Enum):
    """Role-gated operations on finance records."""

    VIEW_ALL = "view_all"
    SAVE = "save"
    SOFT_DELETE = "soft_delete"
    RESTORE = "restore"
    PURGE = "purge"
