"""
Name Resolver – Storage (Snowflake).
Reads bulk snapshots, overrides, name history and raw report rows; writes facts, mapping
issues, name history intervals and snapshot change rows. Every function takes an optional
connection so a job can run clear-then-insert on one connection and commit once.
"""

import logging
import re
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from config import FACT_INSERT_BATCH_SIZE, SNOWFLAKE_DATABASE, SNOWFLAKE_SCHEMA
from models import (
    AdGroupRow,
    CampaignRow,
    HistoryClose,
    HistoryInsert,
    ManualOverrideRow,
    MappingIssue,
    NameHistoryRow,
    PlacementRow,
    PortfolioRow,
    ProductAdRow,
    Snapshot,
    TargetRow,
)
from row_mapper import get_report_definition
from snowflake_connection import execute, execute_many, fetch_records, get_connection
from synthetic_keys import canonical_json

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")

HISTORY_TABLES = {
    "campaign": "campaign_name_history",
    "ad_group": "ad_group_name_history",
    "portfolio": "portfolio_name_history",
}

SNAPSHOT_TABLES = (
    ("campaigns", "bulk_campaigns", CampaignRow),
    ("ad_groups", "bulk_ad_groups", AdGroupRow),
    ("targets", "bulk_targets", TargetRow),
    ("product_ads", "bulk_product_ads", ProductAdRow),
    ("placements", "bulk_placements", PlacementRow),
    ("portfolios", "bulk_portfolios", PortfolioRow),
)


def _table(name: str) -> str:
    """Return fully qualified table name (database.schema.table). Unquoted identifiers resolve to uppercase (matches DDL)."""
    if SNOWFLAKE_DATABASE and SNOWFLAKE_SCHEMA:
        return f"{SNOWFLAKE_DATABASE}.{SNOWFLAKE_SCHEMA}.{name}"
    return name


def _safe_str(v: Any, max_len: int = 65535) -> Optional[str]:
    if v is None:
        return None
    s = str(v)
    return s[:max_len] if len(s) > max_len else s


def _sql_value(v: Any) -> Any:
    if isinstance(v, (date, datetime)):
        return v.isoformat()
    if isinstance(v, (dict, list)):
        return canonical_json(v)
    return v


def _run_with_conn(conn: Optional[Any], use_connection: Callable[[Any], Any]):
    """If conn is provided, run use_connection(conn) and return its result. Else open get_connection() and run inside it."""
    if conn is not None:
        return use_connection(conn)
    with get_connection() as c:
        return use_connection(c)


def _history_table(level: str) -> str:
    if level not in HISTORY_TABLES:
        raise ValueError(f"No name history table for level {level!r}")
    return _table(HISTORY_TABLES[level])


def _report_table(report_type: str, suffix: str) -> str:
    get_report_definition(report_type)
    return _table(f"{report_type}_{suffix}")


# ---------------------------------------------------------------------------
# Bulk snapshots
# ---------------------------------------------------------------------------

def get_bulk_snapshot_dates(account_id: str, conn: Optional[Any] = None) -> List[date]:
    """Snapshot dates available for an account (a snapshot exists when its campaigns were stored)."""
    tbl = _table("bulk_campaigns")

    def do(conn):
        q = f"SELECT DISTINCT snapshot_date FROM {tbl} WHERE account_id = %(account_id)s ORDER BY snapshot_date"
        return fetch_records(conn, q, {"account_id": account_id})

    return [r["snapshot_date"] for r in _run_with_conn(conn, do)]


def load_snapshot(account_id: str, snapshot_date: date, conn: Optional[Any] = None) -> Snapshot:
    def do(conn):
        parts: Dict[str, List[Any]] = {}
        params = {"account_id": account_id, "snapshot_date": snapshot_date.isoformat()}
        for attr, name, model in SNAPSHOT_TABLES:
            q = f"SELECT * FROM {_table(name)} WHERE account_id = %(account_id)s AND snapshot_date = %(snapshot_date)s::DATE"
            parts[attr] = [model.model_validate(r) for r in fetch_records(conn, q, params)]
        return parts

    parts = _run_with_conn(conn, do)
    logger.info(
        "name_resolver: loaded snapshot account_id=%s @ %s (%s campaigns, %s ad groups, %s targets)",
        account_id, snapshot_date.isoformat(), len(parts["campaigns"]), len(parts["ad_groups"]), len(parts["targets"]),
    )
    return Snapshot(account_id=account_id, snapshot_date=snapshot_date, **parts)


def get_manual_overrides(account_id: str, conn: Optional[Any] = None) -> List[ManualOverrideRow]:
    tbl = _table("manual_name_overrides")

    def do(conn):
        q = f"SELECT entity_level, entity_id, name_norm, valid_from, valid_to, notes FROM {tbl} WHERE account_id = %(account_id)s"
        return fetch_records(conn, q, {"account_id": account_id})

    return [ManualOverrideRow.model_validate(r) for r in _run_with_conn(conn, do)]


def get_name_history(level: str, account_id: str, open_only: bool = False, conn: Optional[Any] = None) -> List[NameHistoryRow]:
    tbl = _history_table(level)

    def do(conn):
        q = f"SELECT entity_id, parent_id, name_raw, name_norm, valid_from, valid_to FROM {tbl} WHERE account_id = %(account_id)s"
        if open_only:
            q += " AND valid_to IS NULL"
        return fetch_records(conn, q, {"account_id": account_id})

    return [NameHistoryRow.model_validate({**r, "entity_level": level}) for r in _run_with_conn(conn, do)]


def get_category_map(conn: Optional[Any] = None) -> Dict[str, str]:
    """category name (normalized) -> category id, first row per name wins."""
    tbl = _table("category_id_map")

    def do(conn):
        return fetch_records(conn, f"SELECT category_name_norm, category_id FROM {tbl} ORDER BY category_name_norm, category_id")

    out: Dict[str, str] = {}
    for r in _run_with_conn(conn, do):
        if r.get("category_name_norm") and r.get("category_id") is not None:
            out.setdefault(r["category_name_norm"], str(r["category_id"]))
    return out


# ---------------------------------------------------------------------------
# Uploads and raw report rows
# ---------------------------------------------------------------------------

def get_upload(upload_id: str, conn: Optional[Any] = None) -> Optional[Dict[str, Any]]:
    tbl = _table("report_uploads")

    def do(conn):
        q = f"SELECT upload_id, account_id, report_type, exported_at FROM {tbl} WHERE upload_id = %(upload_id)s"
        return fetch_records(conn, q, {"upload_id": upload_id})

    rows = _run_with_conn(conn, do)
    return rows[0] if rows else None


def get_report_rows(report_type: str, upload_id: str, conn: Optional[Any] = None) -> List[Dict[str, Any]]:
    tbl = _report_table(report_type, "daily_raw")

    def do(conn):
        rows = fetch_records(conn, f"SELECT * FROM {tbl} WHERE upload_id = %(upload_id)s", {"upload_id": upload_id})
        for r in rows:
            r.pop("upload_id", None)
        return rows

    return _run_with_conn(conn, do)


# ---------------------------------------------------------------------------
# Mapping output (facts, issues)
# ---------------------------------------------------------------------------

def clear_mapping_output(upload_id: str, report_type: str, conn: Optional[Any] = None) -> None:
    """Remove facts and issues an earlier mapping run produced for this upload."""
    fact_tbl = _report_table(report_type, "fact")
    issue_tbl = _table("mapping_issues")

    def do(conn):
        execute(conn, f"DELETE FROM {fact_tbl} WHERE upload_id = %(upload_id)s", {"upload_id": upload_id})
        execute(
            conn,
            f"DELETE FROM {issue_tbl} WHERE upload_id = %(upload_id)s AND report_type = %(report_type)s",
            {"upload_id": upload_id, "report_type": report_type},
        )
        logger.info("name_resolver: cleared %s facts and issues for upload_id=%s", report_type, upload_id)

    _run_with_conn(conn, do)


def _fact_columns(facts: List[Dict[str, Any]]) -> List[str]:
    columns = sorted({k for f in facts for k in f})
    bad = [c for c in columns if not _IDENTIFIER.match(c)]
    if bad:
        raise ValueError(f"Fact columns are not plain identifiers: {bad}")
    return columns


def insert_facts(
    report_type: str,
    facts: List[Dict[str, Any]],
    conn: Optional[Any] = None,
    batch_size: int = FACT_INSERT_BATCH_SIZE,
) -> int:
    if not facts:
        return 0
    tbl = _report_table(report_type, "fact")
    columns = _fact_columns(facts)
    insert_sql = (
        f"INSERT INTO {tbl} ({', '.join(columns)}) "
        f"VALUES ({', '.join(f'%({c})s' for c in columns)})"
    )

    def do(conn):
        for start in range(0, len(facts), batch_size):
            batch = facts[start:start + batch_size]
            execute_many(conn, insert_sql, [{c: _sql_value(f.get(c)) for c in columns} for f in batch])
        logger.info("name_resolver: inserted %s %s facts for upload_id=%s", len(facts), report_type, facts[0].get("upload_id"))

    _run_with_conn(conn, do)
    return len(facts)


def insert_mapping_issues(
    account_id: str,
    upload_id: str,
    report_type: str,
    issues: Iterable[MappingIssue],
    conn: Optional[Any] = None,
) -> int:
    issues = list(issues)
    if not issues:
        return 0
    tbl = _table("mapping_issues")

    def do(conn):
        insert_sql = (
            f"INSERT INTO {tbl} (account_id, upload_id, report_type, entity_level, issue_type, key_json, candidates_json, row_count) "
            "VALUES (%(account_id)s, %(upload_id)s, %(report_type)s, %(entity_level)s, %(issue_type)s, %(key_json)s, %(candidates_json)s, %(row_count)s)"
        )
        params_list = [
            {
                "account_id": account_id,
                "upload_id": upload_id,
                "report_type": report_type,
                "entity_level": i.entity_level,
                "issue_type": i.issue_type,
                "key_json": canonical_json(i.key_json),
                "candidates_json": canonical_json(i.candidates_json) if i.candidates_json else None,
                "row_count": i.row_count,
            }
            for i in issues
        ]
        execute_many(conn, insert_sql, params_list)
        logger.info("name_resolver: inserted %s mapping issues for upload_id=%s (%s)", len(issues), upload_id, report_type)

    _run_with_conn(conn, do)
    return len(issues)


# ---------------------------------------------------------------------------
# Name history
# ---------------------------------------------------------------------------

def close_name_history(level: str, account_id: str, closes: List[HistoryClose], conn: Optional[Any] = None) -> int:
    """Set valid_to on the open interval that started at valid_from."""
    if not closes:
        return 0
    tbl = _history_table(level)

    def do(conn):
        update_sql = (
            f"UPDATE {tbl} SET valid_to = %(valid_to)s::DATE "
            "WHERE account_id = %(account_id)s AND entity_id = %(entity_id)s "
            "AND valid_from = %(valid_from)s::DATE AND valid_to IS NULL"
        )
        params_list = [
            {
                "account_id": account_id,
                "entity_id": c.entity_id,
                "valid_from": c.valid_from.isoformat(),
                "valid_to": c.valid_to.isoformat(),
            }
            for c in closes
        ]
        execute_many(conn, update_sql, params_list)
        logger.info("name_resolver: closed %s %s name history rows for account_id=%s", len(closes), level, account_id)

    _run_with_conn(conn, do)
    return len(closes)


def replace_name_history(level: str, account_id: str, rows: List[NameHistoryRow], conn: Optional[Any] = None) -> int:
    """Replace every name history row of an account at one level (full rebuild)."""
    tbl = _history_table(level)

    def do(conn):
        execute(conn, f"DELETE FROM {tbl} WHERE account_id = %(account_id)s", {"account_id": account_id})
        insert_sql = (
            f"INSERT INTO {tbl} (account_id, entity_id, parent_id, name_raw, name_norm, valid_from, valid_to) "
            "VALUES (%(account_id)s, %(entity_id)s, %(parent_id)s, %(name_raw)s, %(name_norm)s, %(valid_from)s::DATE, %(valid_to)s::DATE)"
        )
        params_list = [
            {
                "account_id": account_id,
                "entity_id": r.entity_id,
                "parent_id": r.parent_id,
                "name_raw": _safe_str(r.name_raw, 1024),
                "name_norm": _safe_str(r.name_norm, 1024),
                "valid_from": r.valid_from.isoformat(),
                "valid_to": r.valid_to.isoformat() if r.valid_to else None,
            }
            for r in rows
        ]
        execute_many(conn, insert_sql, params_list)
        logger.info("name_resolver: rebuilt %s %s name history rows for account_id=%s", len(rows), level, account_id)

    _run_with_conn(conn, do)
    return len(rows)


def insert_name_history(level: str, account_id: str, inserts: List[HistoryInsert], conn: Optional[Any] = None) -> int:
    if not inserts:
        return 0
    tbl = _history_table(level)

    def do(conn):
        insert_sql = (
            f"INSERT INTO {tbl} (account_id, entity_id, parent_id, name_raw, name_norm, valid_from, valid_to) "
            "VALUES (%(account_id)s, %(entity_id)s, %(parent_id)s, %(name_raw)s, %(name_norm)s, %(valid_from)s::DATE, NULL)"
        )
        params_list = [
            {
                "account_id": account_id,
                "entity_id": i.entity_id,
                "parent_id": i.parent_id,
                "name_raw": _safe_str(i.name_raw, 1024),
                "name_norm": _safe_str(i.name_norm, 1024),
                "valid_from": i.valid_from.isoformat(),
            }
            for i in inserts
        ]
        execute_many(conn, insert_sql, params_list)
        logger.info("name_resolver: inserted %s %s name history rows for account_id=%s", len(inserts), level, account_id)

    _run_with_conn(conn, do)
    return len(inserts)


# ---------------------------------------------------------------------------
# Snapshot change log
# ---------------------------------------------------------------------------

def insert_bulk_changes(
    account_id: str,
    from_date: date,
    to_date: date,
    change_rows: List[Dict[str, Any]],
    conn: Optional[Any] = None,
) -> int:
    """Replace the change rows stored for (account, from_date, to_date)."""
    tbl = _table("bulk_change_log")
    from_str, to_str = from_date.isoformat(), to_date.isoformat()

    def do(conn):
        execute(
            conn,
            f"DELETE FROM {tbl} WHERE account_id = %(account_id)s AND from_snapshot_date = %(from_date)s::DATE AND to_snapshot_date = %(to_date)s::DATE",
            {"account_id": account_id, "from_date": from_str, "to_date": to_str},
        )
        insert_sql = (
            f"INSERT INTO {tbl} (account_id, from_snapshot_date, to_snapshot_date, entity_type, entity_id, campaign_id, ad_group_id, changed_metric_name, old_value, new_value) "
            "VALUES (%(account_id)s, %(from_date)s::DATE, %(to_date)s::DATE, %(entity_type)s, %(entity_id)s, %(campaign_id)s, %(ad_group_id)s, %(changed_metric_name)s, %(old_value)s, %(new_value)s)"
        )
        params_list = [
            {
                "account_id": account_id,
                "from_date": from_str,
                "to_date": to_str,
                "entity_type": r["entity_type"],
                "entity_id": r["entity_id"],
                "campaign_id": r.get("campaign_id"),
                "ad_group_id": r.get("ad_group_id"),
                "changed_metric_name": _safe_str(r["changed_metric_name"], 128),
                "old_value": _safe_str(r.get("old_value")),
                "new_value": _safe_str(r.get("new_value")),
            }
            for r in change_rows
        ]
        execute_many(conn, insert_sql, params_list)
        logger.info("name_resolver: inserted %s bulk change rows for account_id=%s %s -> %s", len(change_rows), account_id, from_str, to_str)

    _run_with_conn(conn, do)
    return len(change_rows)
