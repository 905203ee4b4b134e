import os

from config import roles_from_env

SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")

DB_CONFIG = {
    "host": os.getenv("DB_HOST", "localhost"),
    "port": int(os.getenv("DB_PORT", "3306")),
    "user": os.getenv("DB_USER", "root"),
    "password": os.getenv("DB_PASSWORD", ""),
    "database": os.getenv("DB_NAME", "site_finance_db"),
}

DEBUG = True

LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG")
LOG_FORMAT = os.getenv("LOG_FORMAT", "standard")

# If enabled, app will apply schema.sql on startup (idempotent: CREATE IF NOT EXISTS)
AUTO_INIT_DB = bool(int(os.getenv("AUTO_INIT_DB", "1")))

FINANCE_RETENTION_DAYS = int(os.getenv("FINANCE_RETENTION_DAYS", "7"))
FINANCE_RESTORE_ROLES = roles_from_env("FINANCE_RESTORE_ROLES", "admin")
FINANCE_PURGE_ROLES = roles_from_env("FINANCE_PURGE_ROLES", "admin")
FINANCE_VIEW_ALL_ROLES = roles_from_env("FINANCE_VIEW_ALL_ROLES", "admin,super_admin")
