"""
Name Resolver – typed records: bulk snapshot entities, overrides, name history,
resolution results, mapping issues, history plans and snapshot diffs.
"""

from datetime import date
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from normalize import clean_id, norm_text

EntityLevel = Literal["campaign", "ad_group", "target", "ad", "portfolio", "snapshot"]
CandidateSource = Literal["override", "snapshot", "history"]


def _fill(values: Any, ids: tuple = (), norms: Optional[Dict[str, str]] = None, optional_raw: bool = False) -> Any:
    """Clean id fields and derive *_norm fields from their *_raw counterpart when absent.
    Unless optional_raw, a missing raw/norm name becomes ""."""
    if not isinstance(values, dict):
        return values
    values = dict(values)
    for f in ids:
        if f in values:
            values[f] = clean_id(values[f])
    for norm_field, raw_field in (norms or {}).items():
        raw = values.get(raw_field)
        if not values.get(norm_field):
            if raw is not None:
                values[norm_field] = norm_text(raw)
            elif not optional_raw:
                values[norm_field] = ""
            else:
                values[norm_field] = None
        if raw is None and not optional_raw:
            values[raw_field] = ""
    return values


# ---------------------------------------------------------------------------
# Bulk snapshot entities
# ---------------------------------------------------------------------------

class CampaignRow(BaseModel):
    campaign_id: Optional[str] = None
    campaign_name_raw: str = ""
    campaign_name_norm: str = ""
    portfolio_id: Optional[str] = None
    state: Optional[str] = None
    daily_budget: Optional[float] = None
    bidding_strategy: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, values: Any) -> Any:
        return _fill(values, ("campaign_id", "portfolio_id"), {"campaign_name_norm": "campaign_name_raw"})


class AdGroupRow(BaseModel):
    ad_group_id: Optional[str] = None
    campaign_id: Optional[str] = None
    ad_group_name_raw: str = ""
    ad_group_name_norm: str = ""
    state: Optional[str] = None
    default_bid: Optional[float] = None

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, values: Any) -> Any:
        return _fill(values, ("ad_group_id", "campaign_id"), {"ad_group_name_norm": "ad_group_name_raw"})


class TargetRow(BaseModel):
    """Keyword or product/audience target. match_type is the raw bulk value; display
    targets carry target_type and cost_type instead of a match type."""

    target_id: Optional[str] = None
    ad_group_id: Optional[str] = None
    campaign_id: Optional[str] = None
    expression_raw: str = ""
    expression_norm: str = ""
    match_type: Optional[str] = None
    is_negative: bool = False
    target_type: Optional[str] = None
    cost_type: Optional[str] = None
    state: Optional[str] = None
    bid: Optional[float] = None

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, values: Any) -> Any:
        values = _fill(values, ("target_id", "ad_group_id", "campaign_id"), {"expression_norm": "expression_raw"})
        if isinstance(values, dict) and values.get("is_negative") is None:
            values["is_negative"] = False
        return values


class ProductAdRow(BaseModel):
    ad_id: Optional[str] = None
    ad_group_id: Optional[str] = None
    campaign_id: Optional[str] = None
    sku_raw: Optional[str] = None
    sku_norm: Optional[str] = None
    asin_raw: Optional[str] = None
    asin_norm: Optional[str] = None
    state: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, values: Any) -> Any:
        return _fill(
            values, ("ad_id", "ad_group_id", "campaign_id"), {"sku_norm": "sku_raw", "asin_norm": "asin_raw"}, optional_raw=True
        )


class PlacementRow(BaseModel):
    campaign_id: Optional[str] = None
    placement_raw: str = ""
    placement_code: str = ""
    percentage: Optional[float] = None

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, values: Any) -> Any:
        return _fill(values, ("campaign_id",), {"placement_code": "placement_raw"})


class PortfolioRow(BaseModel):
    portfolio_id: Optional[str] = None
    portfolio_name_raw: str = ""
    portfolio_name_norm: str = ""

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, values: Any) -> Any:
        return _fill(values, ("portfolio_id",), {"portfolio_name_norm": "portfolio_name_raw"})


class Snapshot(BaseModel):
    """One dated bulk export of an account's entity tree."""

    account_id: str
    snapshot_date: date
    campaigns: List[CampaignRow] = Field(default_factory=list)
    ad_groups: List[AdGroupRow] = Field(default_factory=list)
    targets: List[TargetRow] = Field(default_factory=list)
    product_ads: List[ProductAdRow] = Field(default_factory=list)
    placements: List[PlacementRow] = Field(default_factory=list)
    portfolios: List[PortfolioRow] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Overrides and name history
# ---------------------------------------------------------------------------

def is_valid_on(reference_date: date, valid_from: Optional[date], valid_to: Optional[date]) -> bool:
    """Closed interval check; a missing bound is unbounded on that side."""
    if valid_from is not None and reference_date < valid_from:
        return False
    if valid_to is not None and reference_date > valid_to:
        return False
    return True


class ManualOverrideRow(BaseModel):
    entity_level: str
    entity_id: str
    name_norm: str
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None
    notes: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, values: Any) -> Any:
        values = _fill(values, ("entity_id",))
        if isinstance(values, dict) and values.get("name_norm") is not None:
            values["name_norm"] = norm_text(values["name_norm"])
        return values

    def is_valid_on(self, reference_date: date) -> bool:
        return is_valid_on(reference_date, self.valid_from, self.valid_to)


class NameHistoryRow(BaseModel):
    """One interval during which an entity carried a name. valid_to None means still open.
    parent_id is the campaign id for ad-group rows."""

    entity_id: str
    name_norm: str
    valid_from: date
    valid_to: Optional[date] = None
    name_raw: Optional[str] = None
    parent_id: Optional[str] = None
    entity_level: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, values: Any) -> Any:
        values = _fill(values, ("entity_id", "parent_id"))
        if isinstance(values, dict) and not values.get("name_norm") and values.get("name_raw") is not None:
            values["name_norm"] = norm_text(values["name_raw"])
        return values

    def is_valid_on(self, reference_date: date) -> bool:
        return is_valid_on(reference_date, self.valid_from, self.valid_to)


class EntityName(BaseModel):
    """Current name of an entity as seen in one snapshot."""

    entity_id: str
    name_raw: str
    name_norm: str
    parent_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Resolution results
# ---------------------------------------------------------------------------

class CandidateInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    entity_id: str
    source: CandidateSource
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None


class Ok(BaseModel):
    """Resolved to exactly one id. matched_on records which ad identifier matched (sku/asin)."""

    model_config = ConfigDict(frozen=True)

    status: Literal["ok"] = "ok"
    id: str
    source: Optional[CandidateSource] = None
    matched_on: Optional[str] = None


class Ambiguous(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["ambiguous"] = "ambiguous"
    candidates: List[CandidateInfo]

    @property
    def candidate_ids(self) -> List[str]:
        return [c.entity_id for c in self.candidates]


class Unmapped(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["unmapped"] = "unmapped"


ResolvedId = Union[Ok, Ambiguous, Unmapped]


class MappingIssue(BaseModel):
    entity_level: str
    issue_type: Literal["unmapped", "ambiguous", "missing_bulk_snapshot"]
    key_json: Dict[str, Any]
    candidates_json: Optional[List[CandidateInfo]] = None
    row_count: int = 1


class MappingResult(BaseModel):
    snapshot_date: Optional[date] = None
    facts: List[Dict[str, Any]] = Field(default_factory=list)
    issues: List[MappingIssue] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Name history planning
# ---------------------------------------------------------------------------

class HistoryInsert(BaseModel):
    entity_id: str
    name_raw: str
    name_norm: str
    valid_from: date
    parent_id: Optional[str] = None


class HistoryClose(BaseModel):
    entity_id: str
    valid_from: date
    valid_to: date


class HistoryPlan(BaseModel):
    to_insert: List[HistoryInsert] = Field(default_factory=list)
    to_close: List[HistoryClose] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Snapshot diff
# ---------------------------------------------------------------------------

class NameChange(BaseModel):
    entity_id: str
    parent_id: Optional[str] = None
    from_name_raw: str
    to_name_raw: str
    from_name_norm: str
    to_name_norm: str


class ValueChange(BaseModel):
    entity_id: str
    campaign_id: Optional[str] = None
    ad_group_id: Optional[str] = None
    from_value: Any = None
    to_value: Any = None


class PlacementChange(BaseModel):
    campaign_id: str
    placement_code: str
    placement_raw: Optional[str] = None
    from_percentage: Optional[float] = None
    to_percentage: Optional[float] = None


class EntityIdSets(BaseModel):
    campaigns: List[str] = Field(default_factory=list)
    ad_groups: List[str] = Field(default_factory=list)
    targets: List[str] = Field(default_factory=list)
    product_ads: List[str] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.campaigns or self.ad_groups or self.targets or self.product_ads)


class DiffResult(BaseModel):
    campaign_renames: List[NameChange] = Field(default_factory=list)
    ad_group_renames: List[NameChange] = Field(default_factory=list)
    campaign_budget_changes: List[ValueChange] = Field(default_factory=list)
    campaign_bidding_strategy_changes: List[ValueChange] = Field(default_factory=list)
    campaign_state_changes: List[ValueChange] = Field(default_factory=list)
    ad_group_default_bid_changes: List[ValueChange] = Field(default_factory=list)
    ad_group_state_changes: List[ValueChange] = Field(default_factory=list)
    placement_changes: List[PlacementChange] = Field(default_factory=list)
    target_bid_changes: List[ValueChange] = Field(default_factory=list)
    target_state_changes: List[ValueChange] = Field(default_factory=list)
    added: EntityIdSets = Field(default_factory=EntityIdSets)
    removed: EntityIdSets = Field(default_factory=EntityIdSets)

    def is_empty(self) -> bool:
        changes = (
            self.campaign_renames, self.ad_group_renames, self.campaign_budget_changes,
            self.campaign_bidding_strategy_changes, self.campaign_state_changes,
            self.ad_group_default_bid_changes, self.ad_group_state_changes,
            self.placement_changes, self.target_bid_changes, self.target_state_changes,
        )
        return not any(changes) and self.added.is_empty() and self.removed.is_empty()
