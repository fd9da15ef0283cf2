from datetime import date, datetime

import pytest

from normalize import (
    category_name,
    clean_id,
    effective_match_type,
    infer_is_negative,
    norm_text,
    normalize_match_type,
    to_date,
)
from synthetic_keys import build_synthetic_key, natural_key


def test_norm_text():
    assert norm_text("  Brand   Exact \t KW ") == "brand exact kw"
    assert norm_text(None) == ""


def test_clean_id_strips_float_suffix():
    assert clean_id(123456789.0) == "123456789"
    assert clean_id(" 42 ") == "42"
    assert clean_id("") is None


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Exact", "EXACT"),
        ("Negative Phrase", "PHRASE"),
        ("broad", "BROAD"),
        ("Targeting Expression", "TARGETING_EXPRESSION"),
        ("THEME", "UNKNOWN"),
        (None, "UNKNOWN"),
    ],
)
def test_normalize_match_type(raw, expected):
    assert normalize_match_type(raw) == expected


def test_effective_match_type_prefers_expression_shape():
    assert effective_match_type("close-match", "BROAD") == "TARGETING_EXPRESSION"
    assert effective_match_type('asin="b0abc"', None) == "TARGETING_EXPRESSION"
    assert effective_match_type("blue mug", match_type_raw="Negative Exact") == "EXACT"
    assert effective_match_type("blue mug") == "UNKNOWN"


def test_infer_is_negative():
    assert infer_is_negative("Negative Exact")
    assert not infer_is_negative("Exact")
    assert not infer_is_negative(None)


def test_category_name():
    assert category_name('category="kitchen & dining"') == "kitchen & dining"
    assert category_name('asin="b0abc"') is None


def test_to_date():
    assert to_date("2025-01-20T13:45:00Z") == date(2025, 1, 20)
    assert to_date(datetime(2025, 1, 20, 23, 59)) == date(2025, 1, 20)
    assert to_date("") is None


def test_synthetic_key_ignores_field_order():
    a = build_synthetic_key({"b": 1, "a": "Zürich"})
    b = build_synthetic_key({"a": "Zürich", "b": 1})
    assert a == b == '{"a":"Zürich","b":1}'


def test_natural_key_keeps_absent_fields_as_null():
    key = natural_key({"campaign_name_norm": "brand"}, ("campaign_name_norm", "portfolio_name_norm"))
    assert build_synthetic_key(key) == '{"campaign_name_norm":"brand","portfolio_name_norm":null}'
    assert build_synthetic_key(key) != build_synthetic_key({"campaign_name_norm": "brand"})
