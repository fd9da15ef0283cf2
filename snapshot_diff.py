"""
Name Resolver – compare two bulk snapshots of one account.

Output is change-only: renames, tracked field changes, placement percentage changes and
added/removed ids. Entities present in both snapshots with no differing tracked field
do not appear.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from models import (
    DiffResult,
    EntityIdSets,
    NameChange,
    PlacementChange,
    Snapshot,
    ValueChange,
)

logger = logging.getLogger(__name__)

# (DiffResult field, entity attribute) per entity type
CAMPAIGN_TRACKED_FIELDS = (
    ("campaign_budget_changes", "daily_budget"),
    ("campaign_bidding_strategy_changes", "bidding_strategy"),
    ("campaign_state_changes", "state"),
)
AD_GROUP_TRACKED_FIELDS = (
    ("ad_group_default_bid_changes", "default_bid"),
    ("ad_group_state_changes", "state"),
)
TARGET_TRACKED_FIELDS = (
    ("target_bid_changes", "bid"),
    ("target_state_changes", "state"),
)


def values_differ(old: Any, new: Any) -> bool:
    """None vs None is unchanged; any other inequality, None vs value included, is a change."""
    if old is None and new is None:
        return False
    return old != new


def _by_id(rows: Iterable[Any], id_attr: str) -> Dict[str, Any]:
    """First occurrence of each id wins."""
    out: Dict[str, Any] = {}
    for row in rows:
        entity_id = getattr(row, id_attr)
        if entity_id and entity_id not in out:
            out[entity_id] = row
    return out


def _added_removed(old: Dict[str, Any], new: Dict[str, Any]) -> Tuple[List[str], List[str]]:
    return [i for i in new if i not in old], [i for i in old if i not in new]


def _value_changes(
    result: DiffResult,
    old: Dict[str, Any],
    new: Dict[str, Any],
    tracked: Tuple[Tuple[str, str], ...],
) -> None:
    for entity_id, cur in new.items():
        prev = old.get(entity_id)
        if prev is None:
            continue
        campaign_id = getattr(cur, "campaign_id", None) or getattr(prev, "campaign_id", None)
        ad_group_id = getattr(cur, "ad_group_id", None) or getattr(prev, "ad_group_id", None)
        for result_field, attr in tracked:
            ov, nv = getattr(prev, attr), getattr(cur, attr)
            if values_differ(ov, nv):
                getattr(result, result_field).append(
                    ValueChange(
                        entity_id=entity_id,
                        campaign_id=campaign_id if campaign_id != entity_id else None,
                        ad_group_id=ad_group_id if ad_group_id != entity_id else None,
                        from_value=ov,
                        to_value=nv,
                    )
                )


def _renames(
    old: Dict[str, Any],
    new: Dict[str, Any],
    raw_attr: str,
    norm_attr: str,
    parent_attr: Optional[str] = None,
) -> List[NameChange]:
    renames = []
    for entity_id, cur in new.items():
        prev = old.get(entity_id)
        if prev is None or getattr(prev, norm_attr) == getattr(cur, norm_attr):
            continue
        parent_id = (getattr(cur, parent_attr) or getattr(prev, parent_attr)) if parent_attr else None
        renames.append(
            NameChange(
                entity_id=entity_id,
                parent_id=parent_id,
                from_name_raw=getattr(prev, raw_attr),
                to_name_raw=getattr(cur, raw_attr),
                from_name_norm=getattr(prev, norm_attr),
                to_name_norm=getattr(cur, norm_attr),
            )
        )
    return renames


def _placements_by_key(snapshot: Snapshot) -> Dict[Tuple[str, str], Any]:
    out: Dict[Tuple[str, str], Any] = {}
    for row in snapshot.placements:
        key = (row.campaign_id or "", row.placement_code)
        out.setdefault(key, row)
    return out


def diff_snapshots(old: Snapshot, new: Snapshot) -> DiffResult:
    result = DiffResult()

    old_campaigns, new_campaigns = _by_id(old.campaigns, "campaign_id"), _by_id(new.campaigns, "campaign_id")
    old_ad_groups, new_ad_groups = _by_id(old.ad_groups, "ad_group_id"), _by_id(new.ad_groups, "ad_group_id")
    old_targets, new_targets = _by_id(old.targets, "target_id"), _by_id(new.targets, "target_id")
    old_ads, new_ads = _by_id(old.product_ads, "ad_id"), _by_id(new.product_ads, "ad_id")

    added, removed = EntityIdSets(), EntityIdSets()
    for attr, o, n in (
        ("campaigns", old_campaigns, new_campaigns),
        ("ad_groups", old_ad_groups, new_ad_groups),
        ("targets", old_targets, new_targets),
        ("product_ads", old_ads, new_ads),
    ):
        plus, minus = _added_removed(o, n)
        setattr(added, attr, plus)
        setattr(removed, attr, minus)
    result.added, result.removed = added, removed

    result.campaign_renames = _renames(old_campaigns, new_campaigns, "campaign_name_raw", "campaign_name_norm")
    result.ad_group_renames = _renames(
        old_ad_groups, new_ad_groups, "ad_group_name_raw", "ad_group_name_norm", parent_attr="campaign_id"
    )
    _value_changes(result, old_campaigns, new_campaigns, CAMPAIGN_TRACKED_FIELDS)
    _value_changes(result, old_ad_groups, new_ad_groups, AD_GROUP_TRACKED_FIELDS)
    _value_changes(result, old_targets, new_targets, TARGET_TRACKED_FIELDS)

    old_placements = _placements_by_key(old)
    for key, cur in _placements_by_key(new).items():
        prev = old_placements.get(key)
        if prev is None or not values_differ(prev.percentage, cur.percentage):
            continue
        result.placement_changes.append(
            PlacementChange(
                campaign_id=key[0],
                placement_code=key[1],
                placement_raw=cur.placement_raw or prev.placement_raw,
                from_percentage=prev.percentage,
                to_percentage=cur.percentage,
            )
        )

    logger.debug(
        "diff %s -> %s for account=%s: %s renames, %s placement changes, +%s/-%s campaigns",
        old.snapshot_date, new.snapshot_date, new.account_id,
        len(result.campaign_renames) + len(result.ad_group_renames),
        len(result.placement_changes), len(added.campaigns), len(removed.campaigns),
    )
    return result


# ---------------------------------------------------------------------------
# Change rows for the change-audit table
# ---------------------------------------------------------------------------

_ENTITY_TYPE_BY_FIELD = {
    "campaign_budget_changes": ("campaign", "daily_budget"),
    "campaign_bidding_strategy_changes": ("campaign", "bidding_strategy"),
    "campaign_state_changes": ("campaign", "state"),
    "ad_group_default_bid_changes": ("ad_group", "default_bid"),
    "ad_group_state_changes": ("ad_group", "state"),
    "target_bid_changes": ("target", "bid"),
    "target_state_changes": ("target", "state"),
}


def _str_or_none(v: Any) -> Optional[str]:
    return str(v) if v is not None else None


def _change_row(entity_type, entity_id, campaign_id, ad_group_id, metric, old_value, new_value) -> Dict[str, Any]:
    return {
        "entity_type": entity_type,
        "entity_id": entity_id,
        "campaign_id": campaign_id,
        "ad_group_id": ad_group_id,
        "changed_metric_name": metric,
        "old_value": _str_or_none(old_value),
        "new_value": _str_or_none(new_value),
    }


def diff_to_change_rows(diff: DiffResult) -> List[Dict[str, Any]]:
    """Flatten a DiffResult into {entity_type, entity_id, changed_metric_name, old_value, new_value} rows."""
    rows = []
    for c in diff.campaign_renames:
        rows.append(_change_row("campaign", c.entity_id, c.entity_id, None, "name", c.from_name_raw, c.to_name_raw))
    for c in diff.ad_group_renames:
        rows.append(_change_row("ad_group", c.entity_id, c.parent_id, c.entity_id, "name", c.from_name_raw, c.to_name_raw))
    for field, (entity_type, metric) in _ENTITY_TYPE_BY_FIELD.items():
        for c in getattr(diff, field):
            campaign_id = c.entity_id if entity_type == "campaign" else c.campaign_id
            ad_group_id = c.entity_id if entity_type == "ad_group" else c.ad_group_id
            rows.append(_change_row(entity_type, c.entity_id, campaign_id, ad_group_id, metric, c.from_value, c.to_value))
    for p in diff.placement_changes:
        rows.append(
            _change_row("placement", p.placement_code, p.campaign_id, None, "percentage", p.from_percentage, p.to_percentage)
        )
    # Presence: added is None -> "present", removed is "present" -> None
    for values, id_sets in (((None, "present"), diff.added), (("present", None), diff.removed)):
        for attr, entity_type in (("campaigns", "campaign"), ("ad_groups", "ad_group"), ("targets", "target"), ("product_ads", "ad")):
            for entity_id in getattr(id_sets, attr):
                rows.append(_change_row(entity_type, entity_id, None, None, "presence", *values))
    return rows
