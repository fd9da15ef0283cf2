from datetime import date

import pytest

import mapping_job
import storage
from conftest import make_snapshot
from lookup_index import build_lookup_index
from models import NameHistoryRow
from row_mapper import MappingInputError

CONN = object()


def upload(**overrides):
    row = {"upload_id": "u1", "account_id": "A1", "exported_at": "2025-01-10T06:00:00", "report_type": "sp_campaign"}
    row.update(overrides)
    return row


def campaign_rows(*names):
    return [{"date": "2025-01-09", "campaign_name_norm": n} for n in names]


def never_loaded(snapshot_date):
    raise AssertionError(f"index loaded for {snapshot_date}")


# ---- map_upload ----

def test_missing_snapshot_parks_whole_upload():
    result = mapping_job.map_upload(
        upload(), "sp_campaign", campaign_rows("a", "b", "c"), [date(2025, 2, 1)], never_loaded
    )
    assert result.facts == []
    assert result.snapshot_date is None
    [issue] = result.issues
    assert issue.issue_type == "missing_bulk_snapshot"
    assert issue.row_count == 3
    assert issue.key_json == {"exported_at_date": "2025-01-10"}


def test_map_upload_uses_selected_snapshot(sp_snapshot):
    loaded = []

    def load(snapshot_date):
        loaded.append(snapshot_date)
        return build_lookup_index(sp_snapshot)

    dates = [date(2024, 12, 1), date(2025, 1, 1), date(2025, 2, 1)]
    result = mapping_job.map_upload(upload(), "sp_campaign", campaign_rows("generic"), dates, load)
    assert loaded == [date(2025, 1, 1)]
    assert result.facts[0]["campaign_id"] == "c2"
    assert result.facts[0]["upload_id"] == "u1"


def test_map_upload_rejects_mismatched_report_type():
    with pytest.raises(ValueError, match="sp_targeting"):
        mapping_job.map_upload(upload(report_type="sp_targeting"), "sp_campaign", [], [], never_loaded)


def test_map_upload_requires_export_timestamp():
    with pytest.raises(ValueError, match="exported_at"):
        mapping_job.map_upload(upload(exported_at=None), "sp_campaign", [], [], never_loaded)


def test_map_upload_rejects_unknown_report_type():
    with pytest.raises(MappingInputError):
        mapping_job.map_upload(upload(), "sx_campaign", [], [], never_loaded)


# ---- run_mapping ----

@pytest.fixture
def fake_storage(monkeypatch, sp_snapshot):
    calls = []
    monkeypatch.setattr(storage, "get_upload", lambda upload_id, conn=None: upload(account_id=" A1 "))
    monkeypatch.setattr(storage, "get_report_rows", lambda rt, upload_id, conn=None: campaign_rows("generic", "missing"))
    monkeypatch.setattr(storage, "get_bulk_snapshot_dates", lambda account_id, conn=None: [date(2025, 1, 1)])
    monkeypatch.setattr(storage, "load_snapshot", lambda account_id, d, conn=None: sp_snapshot)
    monkeypatch.setattr(storage, "get_manual_overrides", lambda account_id, conn=None: [])
    monkeypatch.setattr(storage, "get_name_history", lambda level, account_id, open_only=False, conn=None: [])
    monkeypatch.setattr(storage, "get_category_map", lambda conn=None: {})
    monkeypatch.setattr(
        storage, "clear_mapping_output", lambda upload_id, rt, conn=None: calls.append(("clear", upload_id, rt))
    )
    monkeypatch.setattr(storage, "insert_facts", lambda rt, facts, conn=None: calls.append(("facts", len(facts))))
    monkeypatch.setattr(
        storage,
        "insert_mapping_issues",
        lambda account_id, upload_id, rt, issues, conn=None: calls.append(("issues", account_id, len(issues))),
    )
    return calls


def test_run_mapping_clears_before_inserting(fake_storage):
    result = mapping_job.run_mapping("A1", "u1", "sp_campaign", conn=CONN)
    assert fake_storage == [("clear", "u1", "sp_campaign"), ("facts", 2), ("issues", "A1", 1)]
    assert [f["campaign_id"] for f in result.facts] == ["c2", None]
    assert {f["account_id"] for f in result.facts} == {"A1"}


def test_run_mapping_is_repeatable(fake_storage):
    first = mapping_job.run_mapping("A1", "u1", "sp_campaign", conn=CONN)
    second = mapping_job.run_mapping("A1", "u1", "sp_campaign", conn=CONN)
    assert first == second
    assert [c[0] for c in fake_storage] == ["clear", "facts", "issues", "clear", "facts", "issues"]


def test_run_mapping_rejects_upload_of_other_account(fake_storage):
    with pytest.raises(ValueError, match="belongs to account"):
        mapping_job.run_mapping("B2", "u1", "sp_campaign", conn=CONN)
    assert fake_storage == []


def test_run_mapping_rejects_unknown_upload(fake_storage, monkeypatch):
    monkeypatch.setattr(storage, "get_upload", lambda upload_id, conn=None: None)
    with pytest.raises(ValueError, match="Unknown upload_id"):
        mapping_job.run_mapping("A1", "u404", "sp_campaign", conn=CONN)


# ---- run_name_history_update ----

def test_run_name_history_update_writes_plan(monkeypatch):
    open_rows = {
        "campaign": [
            NameHistoryRow(entity_id="c1", name_norm="old", valid_from=date(2026, 1, 1)),
            NameHistoryRow(entity_id="c9", name_norm="gone", valid_from=date(2026, 1, 1)),
        ],
    }
    closed, inserted = {}, {}
    monkeypatch.setattr(storage, "get_name_history", lambda level, account_id, open_only=False, conn=None: open_rows.get(level, []))
    monkeypatch.setattr(storage, "close_name_history", lambda level, account_id, closes, conn=None: closed.update({level: closes}))
    monkeypatch.setattr(storage, "insert_name_history", lambda level, account_id, inserts, conn=None: inserted.update({level: inserts}))

    snapshot = make_snapshot(
        date(2026, 2, 1),
        campaigns=[{"campaign_id": "c1", "campaign_name_raw": "New"}],
        portfolios=[{"portfolio_id": "p1", "portfolio_name_raw": "Core"}],
    )
    counts = mapping_job.run_name_history_update("A1", snapshot, conn=CONN)

    assert counts["campaign"] == {"inserted": 1, "renamed": 1, "closed": 1}
    assert counts["portfolio"] == {"inserted": 1, "renamed": 0, "closed": 0}
    assert [(c.entity_id, c.valid_to) for c in closed["campaign"]] == [("c1", date(2026, 1, 31)), ("c9", date(2026, 2, 1))]
    assert [(i.entity_id, i.name_norm) for i in inserted["campaign"]] == [("c1", "new")]
    assert inserted["ad_group"] == []


# ---- run_snapshot_diff ----

def test_run_snapshot_diff_stores_change_rows(monkeypatch):
    snapshots = {
        date(2025, 1, 1): make_snapshot(date(2025, 1, 1), campaigns=[{"campaign_id": "c1", "campaign_name_raw": "A"}]),
        date(2025, 1, 8): make_snapshot(date(2025, 1, 8), campaigns=[{"campaign_id": "c1", "campaign_name_raw": "B"}]),
    }
    stored = []
    monkeypatch.setattr(storage, "load_snapshot", lambda account_id, d, conn=None: snapshots[d])
    monkeypatch.setattr(
        storage, "insert_bulk_changes", lambda account_id, f, t, rows, conn=None: stored.append((f, t, rows))
    )
    diff = mapping_job.run_snapshot_diff("A1", date(2025, 1, 1), date(2025, 1, 8), conn=CONN)
    assert len(diff.campaign_renames) == 1
    [(from_date, to_date, rows)] = stored
    assert (from_date, to_date) == (date(2025, 1, 1), date(2025, 1, 8))
    assert [r["changed_metric_name"] for r in rows] == ["name"]


# ---- run_name_history_rebuild ----

def test_run_name_history_rebuild_replays_stored_snapshots(monkeypatch):
    snapshots = {
        date(2025, 1, 1): make_snapshot(date(2025, 1, 1), campaigns=[{"campaign_id": "c1", "campaign_name_raw": "A"}]),
        date(2025, 2, 1): make_snapshot(date(2025, 2, 1), campaigns=[{"campaign_id": "c1", "campaign_name_raw": "B"}]),
    }
    replaced = {}

    def replace(level, account_id, rows, conn=None):
        replaced[level] = rows
        return len(rows)

    monkeypatch.setattr(storage, "get_bulk_snapshot_dates", lambda account_id, conn=None: sorted(snapshots))
    monkeypatch.setattr(storage, "load_snapshot", lambda account_id, d, conn=None: snapshots[d])
    monkeypatch.setattr(storage, "replace_name_history", replace)

    counts = mapping_job.run_name_history_rebuild("A1", conn=CONN)

    assert counts == {"campaign": 2, "ad_group": 0, "portfolio": 0}
    assert [(r.name_norm, r.valid_from, r.valid_to) for r in replaced["campaign"]] == [
        ("a", date(2025, 1, 1), date(2025, 1, 31)),
        ("b", date(2025, 2, 1), None),
    ]
    assert replaced["portfolio"] == []
