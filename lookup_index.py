"""
Name Resolver – in-memory lookup index over one bulk snapshot plus manual overrides,
name history and the category-name map. Built once per mapping run, read-only afterwards.
"""

import logging
from collections import defaultdict
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple

from models import (
    AdGroupRow,
    CampaignRow,
    ManualOverrideRow,
    NameHistoryRow,
    ProductAdRow,
    Snapshot,
    TargetRow,
)
from normalize import category_name, effective_match_type, norm_text

logger = logging.getLogger(__name__)


def name_key(level: str, name_norm: str, parent_id: Optional[str] = None) -> str:
    """Override/history key: "{level}::{name_norm}", or "{level}::{parent_id}::{name_norm}" when scoped."""
    if parent_id:
        return f"{level}::{parent_id}::{name_norm}"
    return f"{level}::{name_norm}"


def target_key(ad_group_id: str, expression_norm: str, match_type_norm: str, is_negative: bool) -> Tuple[str, str, str, bool]:
    return (ad_group_id, expression_norm, match_type_norm, bool(is_negative))


class LookupIndex:
    """Maps from names to candidate rows and from ids to rows. Name maps keep every
    candidate in snapshot order so ambiguity is never hidden."""

    def __init__(self, account_id: str, snapshot_date: date):
        self.account_id = account_id
        self.snapshot_date = snapshot_date

        self.campaigns_by_name: Dict[str, List[CampaignRow]] = defaultdict(list)
        self.campaign_by_id: Dict[str, CampaignRow] = {}
        self.portfolio_ids_by_name: Dict[str, List[str]] = defaultdict(list)

        self.ad_groups_by_campaign_name: Dict[Tuple[str, str], List[AdGroupRow]] = defaultdict(list)
        self.ad_group_by_id: Dict[str, AdGroupRow] = {}

        self.targets_by_key: Dict[Tuple[str, str, str, bool], List[TargetRow]] = defaultdict(list)
        self.targets_by_expression: Dict[Tuple[str, str], List[TargetRow]] = defaultdict(list)
        self.targets_by_campaign_expression: Dict[Tuple[str, str], List[TargetRow]] = defaultdict(list)
        self.target_by_id: Dict[str, TargetRow] = {}

        self.ads_by_sku: Dict[Tuple[str, str], List[ProductAdRow]] = defaultdict(list)
        self.ads_by_asin: Dict[Tuple[str, str], List[ProductAdRow]] = defaultdict(list)
        self.ad_by_id: Dict[str, ProductAdRow] = {}

        self.overrides_by_name: Dict[str, List[ManualOverrideRow]] = defaultdict(list)
        self.history_by_name: Dict[str, List[NameHistoryRow]] = defaultdict(list)
        self.category_id_by_name: Dict[str, str] = {}

    # Read access never creates empty entries in the defaultdicts.

    def overrides(self, level: str, name_norm: str) -> List[ManualOverrideRow]:
        return self.overrides_by_name.get(name_key(level, name_norm), [])

    def history(self, level: str, name_norm: str, parent_id: Optional[str] = None) -> List[NameHistoryRow]:
        return self.history_by_name.get(name_key(level, name_norm, parent_id), [])

    def normalize_expression(self, expression_norm: str) -> str:
        """Rewrite category="<name>" to category="<id>" when the category map knows the name."""
        name = category_name(expression_norm)
        if name is None:
            return expression_norm
        category_id = self.category_id_by_name.get(name)
        return f'category="{category_id}"' if category_id else expression_norm


def build_lookup_index(
    snapshot: Snapshot,
    overrides: Iterable[ManualOverrideRow] = (),
    campaign_history: Iterable[NameHistoryRow] = (),
    ad_group_history: Iterable[NameHistoryRow] = (),
    category_map: Optional[Dict[str, str]] = None,
) -> LookupIndex:
    index = LookupIndex(snapshot.account_id, snapshot.snapshot_date)

    for row in snapshot.campaigns:
        if not row.campaign_id:
            continue
        index.campaign_by_id.setdefault(row.campaign_id, row)
        if row.campaign_name_norm:
            index.campaigns_by_name[row.campaign_name_norm].append(row)

    for row in snapshot.portfolios:
        if row.portfolio_id and row.portfolio_name_norm:
            ids = index.portfolio_ids_by_name[row.portfolio_name_norm]
            if row.portfolio_id not in ids:
                ids.append(row.portfolio_id)

    for row in snapshot.ad_groups:
        if not row.ad_group_id:
            continue
        index.ad_group_by_id.setdefault(row.ad_group_id, row)
        if row.campaign_id and row.ad_group_name_norm:
            index.ad_groups_by_campaign_name[(row.campaign_id, row.ad_group_name_norm)].append(row)

    for row in snapshot.targets:
        if not row.target_id:
            continue
        index.target_by_id.setdefault(row.target_id, row)
        if not row.expression_norm:
            continue
        if row.ad_group_id:
            match_type = effective_match_type(row.expression_norm, match_type_raw=row.match_type)
            index.targets_by_key[target_key(row.ad_group_id, row.expression_norm, match_type, row.is_negative)].append(row)
            index.targets_by_expression[(row.ad_group_id, row.expression_norm)].append(row)
        if row.campaign_id:
            index.targets_by_campaign_expression[(row.campaign_id, row.expression_norm)].append(row)

    for row in snapshot.product_ads:
        if not row.ad_id:
            continue
        index.ad_by_id.setdefault(row.ad_id, row)
        if not row.ad_group_id:
            continue
        if row.sku_norm:
            index.ads_by_sku[(row.ad_group_id, row.sku_norm)].append(row)
        if row.asin_norm:
            index.ads_by_asin[(row.ad_group_id, row.asin_norm)].append(row)

    for row in overrides:
        index.overrides_by_name[name_key(row.entity_level, row.name_norm)].append(row)

    for row in campaign_history:
        index.history_by_name[name_key("campaign", row.name_norm)].append(row)

    skipped = 0
    for row in ad_group_history:
        parent_id = row.parent_id
        if not parent_id:
            known = index.ad_group_by_id.get(row.entity_id)
            parent_id = known.campaign_id if known else None
        if not parent_id:
            # Without a parent the row can never satisfy parent scoping
            skipped += 1
            continue
        index.history_by_name[name_key("ad_group", row.name_norm, parent_id)].append(row)

    for name, category_id in (category_map or {}).items():
        index.category_id_by_name.setdefault(norm_text(name), str(category_id))

    logger.debug(
        "lookup index for account=%s @ %s: %s campaigns, %s ad groups, %s targets, %s ads, %s overrides, %s history rows (%s ad group rows without parent skipped)",
        snapshot.account_id,
        snapshot.snapshot_date,
        len(index.campaign_by_id),
        len(index.ad_group_by_id),
        len(index.target_by_id),
        len(index.ad_by_id),
        sum(len(v) for v in index.overrides_by_name.values()),
        sum(len(v) for v in index.history_by_name.values()),
        skipped,
    )
    return index
