"""
Name Resolver – valid-time name history for campaigns, ad groups and portfolios.

plan_name_history_updates() compares one snapshot's names with the open intervals and says
which intervals to close and which to open; plan_missing_closures() closes intervals of
entities the snapshot no longer contains. build_name_history() replays dated snapshots
through both to rebuild history from scratch.
"""

import logging
from datetime import date
from typing import Dict, Iterable, List, Set

from models import EntityName, HistoryClose, HistoryInsert, HistoryPlan, NameHistoryRow, Snapshot
from normalize import add_days

logger = logging.getLogger(__name__)

HISTORY_LEVELS = ("campaign", "ad_group", "portfolio")


def entity_names(snapshot: Snapshot, level: str) -> List[EntityName]:
    """Current (id, name) pairs of one level; rows without an id are skipped."""
    if level == "campaign":
        pairs = [(r.campaign_id, r.campaign_name_raw, r.campaign_name_norm, None) for r in snapshot.campaigns]
    elif level == "ad_group":
        pairs = [(r.ad_group_id, r.ad_group_name_raw, r.ad_group_name_norm, r.campaign_id) for r in snapshot.ad_groups]
    elif level == "portfolio":
        pairs = [(r.portfolio_id, r.portfolio_name_raw, r.portfolio_name_norm, None) for r in snapshot.portfolios]
    else:
        raise ValueError(f"No name history for level {level!r}")
    return [
        EntityName(entity_id=eid, name_raw=raw, name_norm=norm, parent_id=parent)
        for eid, raw, norm, parent in pairs
        if eid
    ]


def plan_name_history_updates(
    current: Iterable[EntityName],
    open_rows: Iterable[NameHistoryRow],
    snapshot_date: date,
) -> HistoryPlan:
    open_by_id: Dict[str, NameHistoryRow] = {}
    for row in open_rows:
        open_by_id.setdefault(row.entity_id, row)

    plan = HistoryPlan()
    planned: Set[str] = set()
    for entity in current:
        if not entity.entity_id or entity.entity_id in planned:
            continue
        planned.add(entity.entity_id)
        open_row = open_by_id.get(entity.entity_id)
        if open_row is not None and open_row.name_norm == entity.name_norm:
            continue
        if open_row is not None:
            if open_row.valid_from >= snapshot_date:
                # Snapshot is not newer than the open interval; history stays as it is
                logger.debug("skip rename of %s: open since %s, snapshot %s", entity.entity_id, open_row.valid_from, snapshot_date)
                continue
            plan.to_close.append(
                HistoryClose(entity_id=entity.entity_id, valid_from=open_row.valid_from, valid_to=add_days(snapshot_date, -1))
            )
        plan.to_insert.append(
            HistoryInsert(
                entity_id=entity.entity_id,
                name_raw=entity.name_raw,
                name_norm=entity.name_norm,
                valid_from=snapshot_date,
                parent_id=entity.parent_id,
            )
        )
    return plan


def plan_missing_closures(
    open_rows: Iterable[NameHistoryRow],
    seen_ids: Set[str],
    snapshot_date: date,
) -> List[HistoryClose]:
    """Close, at the snapshot date, every open interval whose entity the snapshot does not contain."""
    closes = []
    for row in open_rows:
        if row.entity_id in seen_ids or row.valid_to is not None or row.valid_from > snapshot_date:
            continue
        closes.append(HistoryClose(entity_id=row.entity_id, valid_from=row.valid_from, valid_to=snapshot_date))
    return closes


def build_name_history(snapshots: Iterable[Snapshot]) -> List[NameHistoryRow]:
    history: List[NameHistoryRow] = []
    open_at: Dict[str, Dict[str, int]] = {level: {} for level in HISTORY_LEVELS}

    def close(level: str, closing: HistoryClose) -> None:
        i = open_at[level].pop(closing.entity_id)
        history[i] = history[i].model_copy(update={"valid_to": closing.valid_to})

    for snapshot in sorted(snapshots, key=lambda s: s.snapshot_date):
        for level in HISTORY_LEVELS:
            names = entity_names(snapshot, level)
            open_rows = [history[i] for i in open_at[level].values()]
            plan = plan_name_history_updates(names, open_rows, snapshot.snapshot_date)
            for closing in plan.to_close:
                close(level, closing)
            for ins in plan.to_insert:
                open_at[level][ins.entity_id] = len(history)
                history.append(
                    NameHistoryRow(
                        entity_level=level,
                        entity_id=ins.entity_id,
                        name_raw=ins.name_raw,
                        name_norm=ins.name_norm,
                        valid_from=ins.valid_from,
                        parent_id=ins.parent_id,
                    )
                )
            seen = {n.entity_id for n in names}
            still_open = [history[i] for i in open_at[level].values()]
            for closing in plan_missing_closures(still_open, seen, snapshot.snapshot_date):
                close(level, closing)

    logger.debug("built %s name history rows", len(history))
    return history
