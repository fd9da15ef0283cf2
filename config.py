"""
Name Resolver – config and credentials (from .env in this folder).
"""

import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

# Load .env from this project folder
_ROOT = Path(__file__).resolve().parent
_ENV_FILE = _ROOT / ".env"
if _ENV_FILE.exists():
    load_dotenv(_ENV_FILE)

# Snowflake (AUTH_METHOD PASSWORD | KEYPAIR; KEYPAIR avoids MFA/TOTP)
SNOWFLAKE_ACCOUNT = os.getenv("SNOWFLAKE_ACCOUNT", "")
SNOWFLAKE_USER = os.getenv("SNOWFLAKE_USER", "")
SNOWFLAKE_PASSWORD = os.getenv("SNOWFLAKE_PASSWORD", "")
SNOWFLAKE_AUTH_METHOD = (os.getenv("SNOWFLAKE_AUTH_METHOD", "KEYPAIR") or "KEYPAIR").upper()
SNOWFLAKE_WAREHOUSE = os.getenv("SNOWFLAKE_WAREHOUSE", "")
SNOWFLAKE_DATABASE = os.getenv("SNOWFLAKE_DATABASE", "")
SNOWFLAKE_SCHEMA = os.getenv("SNOWFLAKE_SCHEMA", "PUBLIC")
SNOWFLAKE_ROLE = os.getenv("SNOWFLAKE_ROLE", "")
# KEYPAIR: use SNOWFLAKE_PRIVATE_KEY (inline PEM) or SNOWFLAKE_PRIVATE_KEY_PATH (file path)
SNOWFLAKE_PRIVATE_KEY = os.getenv("SNOWFLAKE_PRIVATE_KEY", "")
SNOWFLAKE_PRIVATE_KEY_PATH = os.getenv("SNOWFLAKE_PRIVATE_KEY_PATH", "")
SNOWFLAKE_PRIVATE_KEY_PASSPHRASE = os.getenv("SNOWFLAKE_PRIVATE_KEY_PASSPHRASE", "")

# Snapshot selection: how far past the export date a bulk snapshot may be used
SNAPSHOT_FORWARD_TOLERANCE_DAYS = int(os.getenv("SNAPSHOT_FORWARD_TOLERANCE_DAYS", "7"))

# Fact rows per INSERT batch
FACT_INSERT_BATCH_SIZE = int(os.getenv("FACT_INSERT_BATCH_SIZE", "500"))

# Accounts to process (comma-separated)
NAME_RESOLVER_ACCOUNTS = os.getenv("NAME_RESOLVER_ACCOUNTS", "")

LOG_LEVEL = (os.getenv("LOG_LEVEL", "INFO") or "INFO").upper()


def normalize_account_id(account_id: Optional[str]) -> str:
    """Normalize an advertising account id for storage (no surrounding whitespace)."""
    if not account_id:
        return ""
    return str(account_id).strip()


def get_accounts() -> List[str]:
    return [normalize_account_id(a) for a in NAME_RESOLVER_ACCOUNTS.split(",") if a.strip()]
