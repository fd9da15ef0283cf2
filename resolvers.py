"""
Name Resolver – resolve report names to stable entity ids on a reference date.

Precedence for every level: manual override valid on the date, then the snapshot,
then name history (campaigns and ad groups only), else Unmapped. Children are only
ever resolved inside the resolved parent.
"""

import logging
from datetime import date
from typing import Iterable, List, Optional

from lookup_index import LookupIndex, target_key
from models import (
    Ambiguous,
    CandidateInfo,
    ManualOverrideRow,
    NameHistoryRow,
    Ok,
    ResolvedId,
    Unmapped,
)
from normalize import effective_match_type

logger = logging.getLogger(__name__)

UNMAPPED = Unmapped()


def _unique_sorted(ids: Iterable[str]) -> List[str]:
    return sorted(set(ids))


def _from_candidates(candidates: List[CandidateInfo]) -> Optional[ResolvedId]:
    """None when there is nothing to decide, so the caller falls through to the next source."""
    if not candidates:
        return None
    ids = _unique_sorted(c.entity_id for c in candidates)
    if len(ids) == 1:
        return Ok(id=ids[0], source=candidates[0].source)
    unique = {}
    for c in sorted(candidates, key=lambda c: (c.entity_id, c.valid_from or date.min)):
        unique.setdefault(c.entity_id, c)
    return Ambiguous(candidates=list(unique.values()))


def _snapshot_candidates(ids: Iterable[Optional[str]]) -> List[CandidateInfo]:
    return [CandidateInfo(entity_id=i, source="snapshot") for i in ids if i]


def _resolve_by_overrides(rows: List[ManualOverrideRow], reference_date: date) -> Optional[ResolvedId]:
    valid = [
        CandidateInfo(entity_id=r.entity_id, source="override", valid_from=r.valid_from, valid_to=r.valid_to)
        for r in rows
        if r.is_valid_on(reference_date)
    ]
    return _from_candidates(valid)


def _resolve_by_history(rows: List[NameHistoryRow], reference_date: date) -> Optional[ResolvedId]:
    valid = [
        CandidateInfo(entity_id=r.entity_id, source="history", valid_from=r.valid_from, valid_to=r.valid_to)
        for r in rows
        if r.is_valid_on(reference_date)
    ]
    return _from_candidates(valid)


def resolve_campaign_id(
    index: LookupIndex,
    campaign_name_norm: str,
    reference_date: date,
    portfolio_name_norm: Optional[str] = None,
) -> ResolvedId:
    result = _resolve_by_overrides(index.overrides("campaign", campaign_name_norm), reference_date)
    if result is not None:
        return result

    candidates = index.campaigns_by_name.get(campaign_name_norm, [])
    if portfolio_name_norm:
        portfolio_ids = index.portfolio_ids_by_name.get(portfolio_name_norm, [])
        if len(portfolio_ids) == 1:
            candidates = [c for c in candidates if c.portfolio_id == portfolio_ids[0]]
    result = _from_candidates(_snapshot_candidates(c.campaign_id for c in candidates))
    if result is not None:
        return result

    result = _resolve_by_history(index.history("campaign", campaign_name_norm), reference_date)
    return result or UNMAPPED


def resolve_ad_group_id(
    index: LookupIndex,
    campaign_id: str,
    ad_group_name_norm: str,
    reference_date: date,
) -> ResolvedId:
    result = _resolve_by_overrides(index.overrides("ad_group", ad_group_name_norm), reference_date)
    if isinstance(result, Ok):
        known = index.ad_group_by_id.get(result.id)
        if known is None or known.campaign_id != campaign_id:
            logger.debug("override %s for ad group %r is outside campaign %s", result.id, ad_group_name_norm, campaign_id)
            return UNMAPPED
        return result
    if result is not None:
        return result

    rows = index.ad_groups_by_campaign_name.get((campaign_id, ad_group_name_norm), [])
    result = _from_candidates(_snapshot_candidates(r.ad_group_id for r in rows))
    if result is not None:
        return result

    result = _resolve_by_history(index.history("ad_group", ad_group_name_norm, campaign_id), reference_date)
    return result or UNMAPPED


def _target_override(index: LookupIndex, expression_norm: str, reference_date: date, parent_attr: str, parent_id: str) -> Optional[ResolvedId]:
    result = _resolve_by_overrides(index.overrides("target", expression_norm), reference_date)
    if isinstance(result, Ok):
        known = index.target_by_id.get(result.id)
        if known is None or getattr(known, parent_attr) != parent_id:
            return UNMAPPED
    return result


def resolve_target_id(
    index: LookupIndex,
    ad_group_id: str,
    expression_norm: str,
    reference_date: date,
    match_type_norm: Optional[str] = None,
    match_type_raw: Optional[str] = None,
    is_negative: bool = False,
    by_match_type: bool = True,
) -> ResolvedId:
    """Target under an ad group. by_match_type=False looks up on the expression alone
    (display targets have no match type)."""
    result = _target_override(index, expression_norm, reference_date, "ad_group_id", ad_group_id)
    if result is not None:
        return result

    expression = index.normalize_expression(expression_norm)
    if by_match_type:
        match_type = effective_match_type(expression, match_type_norm, match_type_raw)
        rows = index.targets_by_key.get(target_key(ad_group_id, expression, match_type, is_negative), [])
    else:
        rows = index.targets_by_expression.get((ad_group_id, expression), [])
    return _from_candidates(_snapshot_candidates(r.target_id for r in rows)) or UNMAPPED


def resolve_target_id_by_campaign(
    index: LookupIndex,
    campaign_id: str,
    ad_group_id: Optional[str],
    expression_norm: str,
    reference_date: date,
) -> ResolvedId:
    """Ad-group scoped expression lookup first, then the same expression anywhere in the campaign."""
    if ad_group_id:
        result = resolve_target_id(index, ad_group_id, expression_norm, reference_date, by_match_type=False)
        if not isinstance(result, Unmapped):
            return result

    result = _target_override(index, expression_norm, reference_date, "campaign_id", campaign_id)
    if result is not None:
        return result

    expression = index.normalize_expression(expression_norm)
    rows = index.targets_by_campaign_expression.get((campaign_id, expression), [])
    return _from_candidates(_snapshot_candidates(r.target_id for r in rows)) or UNMAPPED


def resolve_ad_id(
    index: LookupIndex,
    ad_group_id: str,
    sku_norm: Optional[str],
    asin_norm: Optional[str],
    reference_date: date,
) -> ResolvedId:
    """SKU under the ad group first, then ASIN. Ok.matched_on tells which one matched."""
    result = _resolve_by_overrides(index.overrides("ad", sku_norm or asin_norm or ""), reference_date)
    if isinstance(result, Ok):
        known = index.ad_by_id.get(result.id)
        if known is None or known.ad_group_id != ad_group_id:
            return UNMAPPED
        return result
    if result is not None:
        return result

    for basis, value, table in (("sku", sku_norm, index.ads_by_sku), ("asin", asin_norm, index.ads_by_asin)):
        if not value:
            continue
        found = _from_candidates(_snapshot_candidates(r.ad_id for r in table.get((ad_group_id, value), [])))
        if isinstance(found, Ok):
            return found.model_copy(update={"matched_on": basis})
        if found is not None:
            return found
    return UNMAPPED
