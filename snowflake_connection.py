"""
Name Resolver – Snowflake connection.
Key-pair auth: AUTH_METHOD=KEYPAIR, SNOWFLAKE_PRIVATE_KEY or SNOWFLAKE_PRIVATE_KEY_PATH, insecure_mode.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd
import snowflake.connector
from cryptography.hazmat.primitives import serialization

from config import (
    SNOWFLAKE_ACCOUNT,
    SNOWFLAKE_AUTH_METHOD,
    SNOWFLAKE_DATABASE,
    SNOWFLAKE_PASSWORD,
    SNOWFLAKE_PRIVATE_KEY,
    SNOWFLAKE_PRIVATE_KEY_PASSPHRASE,
    SNOWFLAKE_PRIVATE_KEY_PATH,
    SNOWFLAKE_ROLE,
    SNOWFLAKE_SCHEMA,
    SNOWFLAKE_USER,
    SNOWFLAKE_WAREHOUSE,
)

logger = logging.getLogger(__name__)


def _read_private_key_pem() -> bytes:
    """PEM bytes from SNOWFLAKE_PRIVATE_KEY (inline, \\n-escaped allowed) or SNOWFLAKE_PRIVATE_KEY_PATH."""
    if SNOWFLAKE_PRIVATE_KEY:
        pem = SNOWFLAKE_PRIVATE_KEY.strip().replace("\\n", "\n").strip()
        if not pem.startswith("-----BEGIN") or "-----END" not in pem:
            raise ValueError("SNOWFLAKE_PRIVATE_KEY must be a PEM block (-----BEGIN ... -----END ...)")
        return pem.encode("utf-8")
    if SNOWFLAKE_PRIVATE_KEY_PATH:
        with Path(SNOWFLAKE_PRIVATE_KEY_PATH).open("rb") as f:
            return f.read()
    raise ValueError("KEYPAIR auth requires SNOWFLAKE_PRIVATE_KEY or SNOWFLAKE_PRIVATE_KEY_PATH in .env")


def _private_key_der() -> bytes:
    passphrase = SNOWFLAKE_PRIVATE_KEY_PASSPHRASE.encode("utf-8") if SNOWFLAKE_PRIVATE_KEY_PASSPHRASE else None
    p_key = serialization.load_pem_private_key(_read_private_key_pem(), password=passphrase)
    return p_key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _get_connection_params() -> Dict[str, Any]:
    # Longer timeouts for slow proxy/VPN (insecure_mode avoids OCSP issues)
    params = {
        "account": SNOWFLAKE_ACCOUNT,
        "user": SNOWFLAKE_USER,
        "warehouse": SNOWFLAKE_WAREHOUSE,
        "database": SNOWFLAKE_DATABASE,
        "schema": SNOWFLAKE_SCHEMA,
        "login_timeout": 60,
        "network_timeout": 120,
        "insecure_mode": True,
    }
    if SNOWFLAKE_ROLE:
        params["role"] = SNOWFLAKE_ROLE
    if SNOWFLAKE_AUTH_METHOD == "KEYPAIR":
        params["private_key"] = _private_key_der()
    else:
        params["password"] = SNOWFLAKE_PASSWORD
    return params


@contextmanager
def get_connection():
    """Yield a Snowflake connection. Commits on exit, rolls back on exception."""
    conn = None
    try:
        conn = snowflake.connector.connect(**_get_connection_params())
        yield conn
        conn.commit()
    except Exception:
        if conn:
            conn.rollback()
        raise
    finally:
        if conn:
            conn.close()


def execute_query(conn: Any, query: str, params: Optional[Dict[str, Any]] = None) -> pd.DataFrame:
    """Run a SELECT and return a DataFrame."""
    cur = conn.cursor()
    try:
        if params:
            cur.execute(query, params)
        else:
            cur.execute(query)
        rows = cur.fetchall()
        columns = [d[0] for d in cur.description]
        return pd.DataFrame(rows, columns=columns)
    finally:
        cur.close()


def fetch_records(conn: Any, query: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    """Run a SELECT and return rows as dicts with lowercase keys; SQL NULL/NaN become None."""
    df = execute_query(conn, query, params)
    if df.empty:
        return []
    df.columns = [c.lower() for c in df.columns]
    df = df.astype(object).where(pd.notna(df), None)
    return df.to_dict("records")


def execute(conn: Any, query: str, params: Optional[Dict[str, Any]] = None) -> None:
    """Run a non-SELECT (INSERT/UPDATE/DELETE/MERGE)."""
    cur = conn.cursor()
    try:
        if params:
            cur.execute(query, params)
        else:
            cur.execute(query)
    finally:
        cur.close()


def execute_many(conn: Any, query: str, params_list: List[Dict[str, Any]]) -> None:
    """Run a query multiple times with different params."""
    if not params_list:
        return
    cur = conn.cursor()
    try:
        cur.executemany(query, params_list)
    finally:
        cur.close()
