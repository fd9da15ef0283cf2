from datetime import date

import pytest

from models import Snapshot


def make_snapshot(snapshot_date=date(2025, 1, 1), account_id="A1", **parts) -> Snapshot:
    """Snapshot from plain dicts: make_snapshot(campaigns=[{...}], ad_groups=[{...}])."""
    return Snapshot(account_id=account_id, snapshot_date=snapshot_date, **parts)


@pytest.fixture
def sp_snapshot() -> Snapshot:
    """Two campaigns named "dup" in different portfolios, an ad group "X" under each of
    campaigns c1 and c2, keyword and product targets, and two product ads."""
    return make_snapshot(
        campaigns=[
            {"campaign_id": "c1", "campaign_name_raw": "Brand Exact", "portfolio_id": "p1", "daily_budget": 50.0},
            {"campaign_id": "c2", "campaign_name_raw": "Generic", "portfolio_id": None},
            {"campaign_id": "c3", "campaign_name_raw": "Dup", "portfolio_id": "p1"},
            {"campaign_id": "c4", "campaign_name_raw": "Dup", "portfolio_id": "p2"},
        ],
        portfolios=[
            {"portfolio_id": "p1", "portfolio_name_raw": "Core"},
            {"portfolio_id": "p2", "portfolio_name_raw": "Test"},
        ],
        ad_groups=[
            {"ad_group_id": "ag1", "campaign_id": "c1", "ad_group_name_raw": "X"},
            {"ad_group_id": "ag2", "campaign_id": "c2", "ad_group_name_raw": "X"},
        ],
        targets=[
            {"target_id": "t1", "ad_group_id": "ag1", "campaign_id": "c1", "expression_raw": "Blue Mug", "match_type": "Exact"},
            {"target_id": "t2", "ad_group_id": "ag1", "campaign_id": "c1", "expression_raw": "blue mug", "match_type": "Negative Exact", "is_negative": True},
            {"target_id": "t3", "ad_group_id": "ag1", "campaign_id": "c1", "expression_raw": "substitutes", "match_type": "TARGETING_EXPRESSION"},
            {"target_id": "t4", "ad_group_id": "ag1", "campaign_id": "c1", "expression_raw": 'category="13218451"', "match_type": "TARGETING_EXPRESSION"},
        ],
        product_ads=[
            {"ad_id": "ad1", "ad_group_id": "ag1", "campaign_id": "c1", "sku_raw": "SKU-1", "asin_raw": "B000000001"},
            {"ad_id": "ad2", "ad_group_id": "ag1", "campaign_id": "c1", "sku_raw": "SKU-2", "asin_raw": "B000000002"},
        ],
    )
