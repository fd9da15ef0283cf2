from datetime import date

import pytest

from conftest import make_snapshot
from models import EntityName, HistoryClose, HistoryInsert, NameHistoryRow
from name_history import (
    build_name_history,
    entity_names,
    plan_missing_closures,
    plan_name_history_updates,
)


def name(entity_id, norm, parent_id=None):
    return EntityName(entity_id=entity_id, name_raw=norm.title(), name_norm=norm, parent_id=parent_id)


def open_row(entity_id, norm, valid_from):
    return NameHistoryRow(entity_id=entity_id, name_norm=norm, valid_from=valid_from)


# ---- plan_name_history_updates ----

def test_rename_closes_day_before_and_opens_new_interval():
    plan = plan_name_history_updates([name("1", "new")], [open_row("1", "old", date(2026, 1, 1))], date(2026, 2, 1))
    assert plan.to_close == [HistoryClose(entity_id="1", valid_from=date(2026, 1, 1), valid_to=date(2026, 1, 31))]
    assert plan.to_insert == [HistoryInsert(entity_id="1", name_raw="New", name_norm="new", valid_from=date(2026, 2, 1))]


def test_new_entity_opens_interval():
    plan = plan_name_history_updates([name("ag1", "x", parent_id="c1")], [], date(2026, 2, 1))
    assert plan.to_close == []
    [insert] = plan.to_insert
    assert (insert.entity_id, insert.valid_from, insert.parent_id) == ("ag1", date(2026, 2, 1), "c1")


def test_unchanged_name_is_a_no_op():
    plan = plan_name_history_updates([name("1", "same")], [open_row("1", "same", date(2026, 1, 1))], date(2026, 2, 1))
    assert plan.to_close == [] and plan.to_insert == []


def test_snapshot_not_newer_than_open_interval_is_ignored():
    plan = plan_name_history_updates([name("1", "new")], [open_row("1", "old", date(2026, 2, 1))], date(2026, 2, 1))
    assert plan.to_close == [] and plan.to_insert == []


def test_duplicate_current_entity_is_planned_once():
    plan = plan_name_history_updates([name("1", "a"), name("1", "b")], [], date(2026, 2, 1))
    assert [i.name_norm for i in plan.to_insert] == ["a"]


# ---- plan_missing_closures ----

def test_missing_entities_close_at_snapshot_date():
    rows = [open_row("1", "a", date(2026, 1, 1)), open_row("2", "b", date(2026, 1, 1))]
    closes = plan_missing_closures(rows, {"1"}, date(2026, 2, 1))
    assert closes == [HistoryClose(entity_id="2", valid_from=date(2026, 1, 1), valid_to=date(2026, 2, 1))]


def test_closed_and_future_rows_are_not_closed_again():
    rows = [
        NameHistoryRow(entity_id="1", name_norm="a", valid_from=date(2026, 1, 1), valid_to=date(2026, 1, 15)),
        open_row("2", "b", date(2026, 3, 1)),
    ]
    assert plan_missing_closures(rows, set(), date(2026, 2, 1)) == []


# ---- build_name_history ----

def test_entity_names_for_unknown_level_raises():
    with pytest.raises(ValueError):
        entity_names(make_snapshot(), "target")


def test_build_name_history_replays_snapshots_in_date_order():
    snapshots = [
        make_snapshot(date(2025, 4, 1), campaigns=[{"campaign_id": "c1", "campaign_name_raw": "B"}]),
        make_snapshot(date(2025, 1, 1), campaigns=[{"campaign_id": "c1", "campaign_name_raw": "A"}]),
        make_snapshot(date(2025, 3, 1)),
        make_snapshot(date(2025, 2, 1), campaigns=[{"campaign_id": "c1", "campaign_name_raw": "B"}]),
    ]
    history = [(r.name_norm, r.valid_from, r.valid_to) for r in build_name_history(snapshots) if r.entity_level == "campaign"]
    assert history == [
        ("a", date(2025, 1, 1), date(2025, 1, 31)),
        ("b", date(2025, 2, 1), date(2025, 3, 1)),
        ("b", date(2025, 4, 1), None),
    ]


def test_build_name_history_keeps_one_open_interval_per_entity():
    snapshots = [
        make_snapshot(
            date(2025, 1, d),
            ad_groups=[{"ad_group_id": "ag1", "campaign_id": "c1", "ad_group_name_raw": f"Name {d % 2}"}],
        )
        for d in range(1, 6)
    ]
    history = build_name_history(snapshots)
    assert all(r.entity_level == "ad_group" and r.parent_id == "c1" for r in history)
    assert len(history) == 5
    assert [r for r in history if r.valid_to is None] == [history[-1]]
