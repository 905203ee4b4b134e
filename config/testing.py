import os

from config import roles_from_env

SECRET_KEY = "test-secret"

DB_CONFIG = {
    "host": os.getenv("DB_HOST", "localhost"),
    "port": int(os.getenv("DB_PORT", "3306")),
    "user": os.getenv("DB_USER", "root"),
    "password": os.getenv("DB_PASSWORD", ""),
    "database": os.getenv("DB_NAME", "site_finance_test"),
}

DEBUG = False
TESTING = True

LOG_LEVEL = os.getenv("LOG_LEVEL", "WARNING")
LOG_FORMAT = "standard"

AUTO_INIT_DB = bool(int(os.getenv("AUTO_INIT_DB", "0")))

FINANCE_RETENTION_DAYS = 7
FINANCE_RESTORE_ROLES = roles_from_env("FINANCE_RESTORE_ROLES", "admin")
FINANCE_PURGE_ROLES = roles_from_env("FINANCE_PURGE_ROLES", "admin")
FINANCE_VIEW_ALL_ROLES = roles_from_env("FINANCE_VIEW_ALL_ROLES", "admin,super_admin")
