"""Constants and defaults.

Note: Keep constants here to avoid magic numbers spread across code.
"""

from .enums import Role

DEFAULT_RETENTION_DAYS = 7
DEFAULT_LIST_LIMIT = 1000
DEFAULT_REVISION_LIMIT = 50

# Role presets for restore/purge. Call sites in the web client disagree on
# which one applies, so the active set is chosen in settings.
STRICT_ADMIN_ROLES = frozenset({Role.ADMIN.value})
ADMIN_TIER_ROLES = frozenset({Role.ADMIN.value, Role.SUPER_ADMIN.value, Role.MANAGEMENT.value, Role.HR.value})
VIEW_ALL_ROLES = frozenset({Role.ADMIN.value, Role.SUPER_ADMIN.value})

# Fields diffed into site_finance_revisions on update.
TRACKED_FIELDS = (
    "site_id",
    "site_name",
    "company_name",
    "billing_month",
    "contract_amount",
    "contract_management_fee",
    "billed_amount",
    "billed_management_fee",
    "total_billed_amount",
    "status",
    "remarks",
)
