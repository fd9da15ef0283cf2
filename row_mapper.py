"""
Name Resolver – map raw report rows to fact rows carrying resolved ids.

Each report type is a declarative definition (levels to resolve, target mode, natural-key
fields); one engine drives the resolvers over every row. A row whose resolution stops at
some level still produces a fact: ids from that level down are None and every level gets
a key (the resolved id, else a synthetic key from the row's natural key).
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from issues import IssueCollector
from lookup_index import LookupIndex
from models import MappingResult, Ok, ResolvedId
from normalize import infer_is_negative
from resolvers import (
    resolve_ad_group_id,
    resolve_ad_id,
    resolve_campaign_id,
    resolve_target_id,
    resolve_target_id_by_campaign,
)
from synthetic_keys import build_synthetic_key, natural_key

logger = logging.getLogger(__name__)

ROLLUP_TARGETING = "*"


class MappingInputError(ValueError):
    """Raw rows do not honour the typed row contract (missing required fields, unknown report type)."""


class ReportDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    levels: Tuple[str, ...] = ("campaign",)
    # match_type: (ad_group, expression, match type, negative); expression: (ad_group, expression);
    # campaign_fallback: expression under the ad group, then anywhere in the campaign
    target_mode: Optional[str] = None
    leaf_fields: Tuple[str, ...] = ()
    sku_field: Optional[str] = None
    asin_field: Optional[str] = None
    has_cost_type: bool = False
    search_term_field: Optional[str] = None
    # Fact fields that tell apart rows sharing the same entity keys (placement, search term, ...)
    conflict_fields: Tuple[str, ...] = ()

    @property
    def leaf_level(self) -> str:
        return self.levels[-1]

    def required_fields(self) -> Tuple[str, ...]:
        fields = ["date", "campaign_name_norm"]
        if "ad_group" in self.levels:
            fields.append("ad_group_name_norm")
        if "target" in self.levels:
            fields.append("targeting_norm")
        return tuple(fields)

    def upsert_key_fields(self) -> Tuple[str, ...]:
        """Fact fields that identify one fact row of an upload."""
        fields = ("account_id", "upload_id", "date") + tuple(f"{level}_key" for level in self.levels) + self.conflict_fields
        return fields + (("cost_type",) if self.has_cost_type else ())


_TARGET_FIELDS = ("targeting_norm", "match_type_norm")
_PLACEMENT_FIELDS = ("placement_code", "placement_raw_norm")


def _campaign(name: str, cost_type: bool = False, conflict_fields: Tuple[str, ...] = ()) -> ReportDefinition:
    return ReportDefinition(name=name, has_cost_type=cost_type, conflict_fields=conflict_fields)


REPORT_TYPES: Dict[str, ReportDefinition] = {
    d.name: d
    for d in (
        _campaign("sp_campaign"),
        _campaign("sp_placement", conflict_fields=_PLACEMENT_FIELDS),
        ReportDefinition(
            name="sp_targeting", levels=("campaign", "ad_group", "target"), target_mode="match_type", leaf_fields=_TARGET_FIELDS
        ),
        ReportDefinition(
            name="sp_stis",
            levels=("campaign", "ad_group", "target"),
            target_mode="match_type",
            leaf_fields=_TARGET_FIELDS + ("customer_search_term_norm",),
            search_term_field="customer_search_term_norm",
            conflict_fields=("customer_search_term_norm",),
        ),
        _campaign("sb_campaign"),
        _campaign("sb_campaign_placement", conflict_fields=_PLACEMENT_FIELDS),
        ReportDefinition(
            name="sb_keyword", levels=("campaign", "ad_group", "target"), target_mode="match_type", leaf_fields=_TARGET_FIELDS
        ),
        ReportDefinition(
            name="sb_stis",
            levels=("campaign", "ad_group", "target"),
            target_mode="match_type",
            leaf_fields=_TARGET_FIELDS + ("customer_search_term_norm",),
            search_term_field="customer_search_term_norm",
            conflict_fields=("customer_search_term_norm",),
        ),
        _campaign("sd_campaign", cost_type=True),
        ReportDefinition(
            name="sd_advertised_product",
            levels=("campaign", "ad_group", "ad"),
            leaf_fields=("advertised_sku_norm", "advertised_asin_norm"),
            sku_field="advertised_sku_norm",
            asin_field="advertised_asin_norm",
            has_cost_type=True,
        ),
        ReportDefinition(
            name="sd_targeting",
            levels=("campaign", "ad_group", "target"),
            target_mode="expression",
            leaf_fields=_TARGET_FIELDS,
            has_cost_type=True,
        ),
        ReportDefinition(
            name="sd_matched_target",
            levels=("campaign", "ad_group", "target"),
            target_mode="campaign_fallback",
            leaf_fields=("targeting_norm", "matched_target_norm"),
            has_cost_type=True,
            conflict_fields=("matched_target_norm",),
        ),
        ReportDefinition(
            name="sd_purchased_product",
            levels=("campaign", "ad_group", "ad"),
            leaf_fields=("purchased_sku_norm", "purchased_asin_norm"),
            sku_field="purchased_sku_norm",
            asin_field="purchased_asin_norm",
            has_cost_type=True,
            conflict_fields=("purchased_sku_norm", "purchased_asin_norm"),
        ),
    )
}


def get_report_definition(report_type: str) -> ReportDefinition:
    definition = REPORT_TYPES.get(report_type)
    if definition is None:
        raise MappingInputError(f"Unknown report type: {report_type!r}")
    return definition


def validate_rows(definition: ReportDefinition, rows: List[Dict[str, Any]]) -> None:
    """Raise MappingInputError naming the first rows that lack a required field."""
    required = definition.required_fields()
    problems = []
    for i, row in enumerate(rows):
        missing = [f for f in required if row.get(f) is None]
        if missing:
            problems.append(f"row {i}: missing {', '.join(missing)}")
    if problems:
        shown = "; ".join(problems[:5])
        more = f" (+{len(problems) - 5} more)" if len(problems) > 5 else ""
        raise MappingInputError(f"{definition.name}: {shown}{more}")


def level_keys(definition: ReportDefinition, row: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """Natural key of the row at each level; later levels extend the earlier ones."""
    key = natural_key(row, ("campaign_name_norm", "portfolio_name_norm"))
    keys = {"campaign": dict(key)}
    if "ad_group" in definition.levels:
        key["ad_group_name_norm"] = row.get("ad_group_name_norm")
        keys["ad_group"] = dict(key)
    if definition.leaf_level in ("target", "ad"):
        key.update(natural_key(row, definition.leaf_fields))
        if definition.target_mode == "match_type":
            key["is_negative"] = infer_is_negative(row.get("match_type_raw"))
        if definition.has_cost_type:
            key["cost_type"] = row.get("cost_type")
        keys[definition.leaf_level] = dict(key)
    return keys


def _skips_target(definition: ReportDefinition, row: Dict[str, Any]) -> bool:
    """Search-term rows and '*' roll-up rows do not name a single target."""
    if definition.search_term_field and row.get(definition.search_term_field):
        return True
    return row.get("targeting_norm") == ROLLUP_TARGETING


def _resolve_level(
    definition: ReportDefinition,
    level: str,
    row: Dict[str, Any],
    ids: Dict[str, str],
    index: LookupIndex,
    reference_date: date,
) -> ResolvedId:
    if level == "campaign":
        return resolve_campaign_id(index, row["campaign_name_norm"], reference_date, row.get("portfolio_name_norm"))
    if level == "ad_group":
        return resolve_ad_group_id(index, ids["campaign"], row["ad_group_name_norm"], reference_date)
    if level == "ad":
        return resolve_ad_id(
            index, ids["ad_group"], row.get(definition.sku_field), row.get(definition.asin_field), reference_date
        )
    if definition.target_mode == "campaign_fallback":
        return resolve_target_id_by_campaign(index, ids["campaign"], ids["ad_group"], row["targeting_norm"], reference_date)
    return resolve_target_id(
        index,
        ids["ad_group"],
        row["targeting_norm"],
        reference_date,
        match_type_norm=row.get("match_type_norm"),
        match_type_raw=row.get("match_type_raw"),
        is_negative=infer_is_negative(row.get("match_type_raw")),
        by_match_type=definition.target_mode == "match_type",
    )


def map_row(
    definition: ReportDefinition,
    row: Dict[str, Any],
    index: LookupIndex,
    reference_date: date,
    collector: IssueCollector,
) -> Dict[str, Any]:
    """Resolve one row level by level and return its fact (without upload metadata)."""
    keys = level_keys(definition, row)
    fact = dict(row)
    ids: Dict[str, str] = {}
    failed: Optional[Tuple[str, ResolvedId]] = None

    for level in definition.levels:
        result: Optional[ResolvedId] = None
        if failed is None and not (level == "target" and _skips_target(definition, row)):
            result = _resolve_level(definition, level, row, ids, index, reference_date)
            collector.record(level, keys[level], result)
            if isinstance(result, Ok):
                ids[level] = result.id
            else:
                failed = (level, result)
        resolved_id = ids.get(level)
        fact[f"{level}_id"] = resolved_id
        fact[f"{level}_key"] = resolved_id or build_synthetic_key(keys[level])
        if level == "ad":
            fact["ad_match_basis"] = _ad_match_basis(result)

    campaign = index.campaign_by_id.get(ids.get("campaign", ""))
    fact["portfolio_id"] = campaign.portfolio_id if campaign else None
    fact["entity_key"] = fact[f"{definition.leaf_level}_key"]
    fact["mapping_status"] = failed[1].status if failed else "mapped"
    fact["unresolved_level"] = failed[0] if failed else None
    return fact


def _ad_match_basis(result: Optional[ResolvedId]) -> Optional[str]:
    if not isinstance(result, Ok):
        return None
    if result.source == "override":
        return "override"
    return result.matched_on


def dedupe_facts(definition: ReportDefinition, facts: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """One fact per upsert key; the last row wins and keeps the position of the first."""
    fields = definition.upsert_key_fields()
    by_key: Dict[Tuple[Any, ...], Dict[str, Any]] = {}
    for fact in facts:
        by_key[tuple(fact.get(f) for f in fields)] = fact
    return list(by_key.values())


def map_report_rows(
    report_type: str,
    rows: List[Dict[str, Any]],
    index: LookupIndex,
    upload_id: str,
    account_id: str,
    exported_at: Any,
    reference_date: date,
) -> MappingResult:
    """Map a whole upload's rows. Issues are only final once every row has been seen."""
    definition = get_report_definition(report_type)
    validate_rows(definition, rows)
    collector = IssueCollector()
    facts = []
    for row in rows:
        fact = map_row(definition, row, index, reference_date, collector)
        fact.update(
            upload_id=upload_id,
            account_id=account_id,
            exported_at=exported_at,
            snapshot_date=index.snapshot_date,
            report_type=report_type,
        )
        facts.append(fact)
    issues = collector.finalize()

    deduped = dedupe_facts(definition, facts)
    if len(deduped) < len(facts):
        logger.debug("%s upload=%s: dropped %s duplicate fact rows", report_type, upload_id, len(facts) - len(deduped))
    facts = deduped

    unresolved = sum(1 for f in facts if f["mapping_status"] != "mapped")
    ambiguous = sum(1 for i in issues if i.issue_type == "ambiguous")
    logger.debug(
        "%s upload=%s: %s facts (%s unresolved), %s issues (%s ambiguous)",
        report_type, upload_id, len(facts), unresolved, len(issues), ambiguous,
    )
    return MappingResult(snapshot_date=index.snapshot_date, facts=facts, issues=issues)
