"""
Name Resolver – jobs: map an upload's report rows to entity ids, keep name history current
from a new bulk snapshot, and log changes between two snapshots.

  pip install -e .
  copy env.example.txt to .env and set credentials
  python mapping_job.py map --account A1 --upload U1 --report-type sp_targeting
  python mapping_job.py history --date 2026-02-01 [--account A1]
  python mapping_job.py history --rebuild [--account A1]
  python mapping_job.py diff --from-date 2026-01-01 --to-date 2026-02-01 [--account A1]
"""

import argparse
import logging
import sys
from datetime import date
from typing import Any, Callable, Dict, List, Optional

import storage
from config import LOG_LEVEL, SNAPSHOT_FORWARD_TOLERANCE_DAYS, get_accounts, normalize_account_id
from lookup_index import LookupIndex, build_lookup_index
from models import DiffResult, MappingIssue, MappingResult, Snapshot
from name_history import (
    HISTORY_LEVELS,
    build_name_history,
    entity_names,
    plan_missing_closures,
    plan_name_history_updates,
)
from normalize import to_date
from row_mapper import REPORT_TYPES, get_report_definition, map_report_rows
from snapshot_diff import diff_snapshots, diff_to_change_rows
from snapshot_selector import pick_snapshot_date
from snowflake_connection import get_connection

logger = logging.getLogger(__name__)


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def missing_snapshot_issue(reference_date: date, row_count: int) -> MappingIssue:
    return MappingIssue(
        entity_level="snapshot",
        issue_type="missing_bulk_snapshot",
        key_json={"exported_at_date": reference_date.isoformat()},
        row_count=max(row_count, 1),
    )


def map_upload(
    upload: Dict[str, Any],
    report_type: str,
    raw_rows: List[Dict[str, Any]],
    snapshot_dates: List[date],
    load_index: Callable[[date], LookupIndex],
    forward_tolerance_days: int = SNAPSHOT_FORWARD_TOLERANCE_DAYS,
) -> MappingResult:
    """Pick the snapshot for the upload's export date and map its rows against it.
    Without a usable snapshot the whole upload becomes one missing_bulk_snapshot issue."""
    get_report_definition(report_type)
    if upload.get("report_type") and upload["report_type"] != report_type:
        raise ValueError(f"Upload {upload.get('upload_id')} is {upload['report_type']}, not {report_type}")
    reference_date = to_date(upload.get("exported_at"))
    if reference_date is None:
        raise ValueError(f"Upload {upload.get('upload_id')} has no exported_at")

    snapshot_date = pick_snapshot_date(reference_date, snapshot_dates, forward_tolerance_days)
    if snapshot_date is None:
        logger.warning(
            "No bulk snapshot within %s days of %s for upload_id=%s; %s rows parked",
            forward_tolerance_days, reference_date.isoformat(), upload.get("upload_id"), len(raw_rows),
        )
        return MappingResult(issues=[missing_snapshot_issue(reference_date, len(raw_rows))])

    index = load_index(snapshot_date)
    return map_report_rows(
        report_type,
        raw_rows,
        index,
        upload_id=upload.get("upload_id"),
        account_id=upload.get("account_id"),
        exported_at=upload.get("exported_at"),
        reference_date=reference_date,
    )


def load_lookup_index(account_id: str, snapshot_date: date, conn: Any) -> LookupIndex:
    snapshot = storage.load_snapshot(account_id, snapshot_date, conn=conn)
    return build_lookup_index(
        snapshot,
        overrides=storage.get_manual_overrides(account_id, conn=conn),
        campaign_history=storage.get_name_history("campaign", account_id, conn=conn),
        ad_group_history=storage.get_name_history("ad_group", account_id, conn=conn),
        category_map=storage.get_category_map(conn=conn),
    )


def run_mapping(account_id: str, upload_id: str, report_type: str, conn: Optional[Any] = None) -> MappingResult:
    """Clear then re-insert the facts and issues of one upload, on one connection."""
    if conn is None:
        with get_connection() as c:
            return run_mapping(account_id, upload_id, report_type, conn=c)

    account_id = normalize_account_id(account_id)
    try:
        upload = storage.get_upload(upload_id, conn=conn)
        if upload is None:
            raise ValueError(f"Unknown upload_id {upload_id}")
        if normalize_account_id(upload.get("account_id")) != account_id:
            raise ValueError(f"Upload {upload_id} belongs to account {upload.get('account_id')}, not {account_id}")
        upload = {**upload, "account_id": account_id}
        raw_rows = storage.get_report_rows(report_type, upload_id, conn=conn)
        snapshot_dates = storage.get_bulk_snapshot_dates(account_id, conn=conn)
        logger.info("Mapping %s upload_id=%s (%s rows) for account_id=%s", report_type, upload_id, len(raw_rows), account_id)

        result = map_upload(
            upload,
            report_type,
            raw_rows,
            snapshot_dates,
            lambda d: load_lookup_index(account_id, d, conn),
        )

        storage.clear_mapping_output(upload_id, report_type, conn=conn)
        storage.insert_facts(report_type, result.facts, conn=conn)
        storage.insert_mapping_issues(account_id, upload_id, report_type, result.issues, conn=conn)
        if result.issues:
            logger.warning("upload_id=%s: %s mapping issues parked for review", upload_id, len(result.issues))
        return result
    except Exception as e:
        logger.exception("Mapping failed for upload_id=%s (%s): %s", upload_id, report_type, e)
        raise


def run_name_history_update(account_id: str, snapshot: Snapshot, conn: Optional[Any] = None) -> Dict[str, Dict[str, int]]:
    """Apply one snapshot to the name history tables: renames, new entities, disappeared entities."""
    if conn is None:
        with get_connection() as c:
            return run_name_history_update(account_id, snapshot, conn=c)

    counts: Dict[str, Dict[str, int]] = {}
    try:
        for level in HISTORY_LEVELS:
            names = entity_names(snapshot, level)
            open_rows = storage.get_name_history(level, account_id, open_only=True, conn=conn)
            plan = plan_name_history_updates(names, open_rows, snapshot.snapshot_date)
            missing = plan_missing_closures(open_rows, {n.entity_id for n in names}, snapshot.snapshot_date)
            storage.close_name_history(level, account_id, plan.to_close + missing, conn=conn)
            storage.insert_name_history(level, account_id, plan.to_insert, conn=conn)
            counts[level] = {"inserted": len(plan.to_insert), "renamed": len(plan.to_close), "closed": len(missing)}
        logger.info("Name history updated for account_id=%s @ %s: %s", account_id, snapshot.snapshot_date.isoformat(), counts)
        return counts
    except Exception as e:
        logger.exception("Name history update failed for account_id=%s @ %s: %s", account_id, snapshot.snapshot_date, e)
        raise


def run_name_history_rebuild(account_id: str, conn: Optional[Any] = None) -> Dict[str, int]:
    """Rebuild name history from scratch by replaying every stored snapshot of the account."""
    if conn is None:
        with get_connection() as c:
            return run_name_history_rebuild(account_id, conn=c)

    try:
        snapshot_dates = storage.get_bulk_snapshot_dates(account_id, conn=conn)
        snapshots = [storage.load_snapshot(account_id, d, conn=conn) for d in snapshot_dates]
        history = build_name_history(snapshots)
        counts = {}
        for level in HISTORY_LEVELS:
            rows = [r for r in history if r.entity_level == level]
            counts[level] = storage.replace_name_history(level, account_id, rows, conn=conn)
        logger.info("Name history rebuilt for account_id=%s from %s snapshots: %s", account_id, len(snapshots), counts)
        return counts
    except Exception as e:
        logger.exception("Name history rebuild failed for account_id=%s: %s", account_id, e)
        raise


def run_snapshot_diff(account_id: str, old_date: date, new_date: date, conn: Optional[Any] = None) -> DiffResult:
    if conn is None:
        with get_connection() as c:
            return run_snapshot_diff(account_id, old_date, new_date, conn=c)

    try:
        old = storage.load_snapshot(account_id, old_date, conn=conn)
        new = storage.load_snapshot(account_id, new_date, conn=conn)
        diff = diff_snapshots(old, new)
        rows = diff_to_change_rows(diff)
        storage.insert_bulk_changes(account_id, old_date, new_date, rows, conn=conn)
        logger.info("Snapshot diff %s -> %s for account_id=%s: %s change rows", old_date, new_date, account_id, len(rows))
        return diff
    except Exception as e:
        logger.exception("Snapshot diff failed for account_id=%s (%s -> %s): %s", account_id, old_date, new_date, e)
        raise


def _parse_date(value: str, flag: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        logger.error("Invalid %s: %s", flag, value)
        sys.exit(1)


def main() -> None:
    parser = argparse.ArgumentParser(description="Name Resolver jobs (report mapping, name history, snapshot diff)")
    sub = parser.add_subparsers(dest="command", required=True)

    p_map = sub.add_parser("map", help="Map one report upload to entity ids")
    p_map.add_argument("--account", type=str, required=True, help="Advertising account id")
    p_map.add_argument("--upload", type=str, required=True, help="Upload id of the report")
    p_map.add_argument("--report-type", type=str, required=True, choices=sorted(REPORT_TYPES))

    p_hist = sub.add_parser("history", help="Update name history from the bulk snapshot of a date")
    p_hist.add_argument("--date", type=str, default=None, help="Snapshot date YYYY-MM-DD")
    p_hist.add_argument("--rebuild", action="store_true", help="Replay every stored snapshot instead of applying one date")
    p_hist.add_argument("--account", type=str, default=None, help="Single account (default: all from NAME_RESOLVER_ACCOUNTS)")

    p_diff = sub.add_parser("diff", help="Log changes between two bulk snapshots")
    p_diff.add_argument("--from-date", type=str, required=True, help="Older snapshot date YYYY-MM-DD")
    p_diff.add_argument("--to-date", type=str, required=True, help="Newer snapshot date YYYY-MM-DD")
    p_diff.add_argument("--account", type=str, default=None, help="Single account (default: all from NAME_RESOLVER_ACCOUNTS)")

    args = parser.parse_args()
    configure_logging()

    if args.command == "map":
        result = run_mapping(args.account, args.upload, args.report_type)
        logger.info("Mapped %s facts, %s issues (snapshot %s)", len(result.facts), len(result.issues), result.snapshot_date)
        return

    accounts = [normalize_account_id(args.account)] if args.account else get_accounts()
    if not accounts:
        logger.error("No account given and NAME_RESOLVER_ACCOUNTS is empty")
        sys.exit(1)

    if args.command == "history" and args.rebuild:
        with get_connection() as conn:
            for account_id in accounts:
                run_name_history_rebuild(account_id, conn=conn)
        return

    if args.command == "history":
        if not args.date:
            logger.error("history needs --date or --rebuild")
            sys.exit(1)
        snapshot_date = _parse_date(args.date, "--date")
        with get_connection() as conn:
            for account_id in accounts:
                snapshot = storage.load_snapshot(account_id, snapshot_date, conn=conn)
                run_name_history_update(account_id, snapshot, conn=conn)
        return

    old_date = _parse_date(args.from_date, "--from-date")
    new_date = _parse_date(args.to_date, "--to-date")
    if old_date >= new_date:
        logger.error("--from-date must be before --to-date")
        sys.exit(1)
    with get_connection() as conn:
        for account_id in accounts:
            run_snapshot_diff(account_id, old_date, new_date, conn=conn)


if __name__ == "__main__":
    main()
