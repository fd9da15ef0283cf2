from issues import IssueCollector
from models import Ambiguous, CandidateInfo, Ok, Unmapped

KEY = {"campaign_name_norm": "brand", "portfolio_name_norm": None}


def test_unmapped_issue_is_suppressed_when_key_resolves_later():
    collector = IssueCollector()
    collector.record("campaign", KEY, Unmapped())
    collector.record("campaign", KEY, Ok(id="c1", source="snapshot"))
    assert collector.finalize() == []


def test_suppression_is_per_level():
    collector = IssueCollector()
    collector.record("campaign", KEY, Ok(id="c1"))
    collector.record("ad_group", KEY, Unmapped())
    issues = collector.finalize()
    assert [(i.entity_level, i.issue_type) for i in issues] == [("ad_group", "unmapped")]


def test_repeated_failures_are_counted_once():
    collector = IssueCollector()
    for _ in range(3):
        collector.record("campaign", KEY, Unmapped())
    collector.add_issue("campaign", "unmapped", dict(reversed(list(KEY.items()))), row_count=2)
    [issue] = collector.finalize()
    assert issue.row_count == 5
    assert issue.key_json == KEY


def test_ambiguous_issue_keeps_first_candidates():
    first = [CandidateInfo(entity_id="c3", source="snapshot"), CandidateInfo(entity_id="c4", source="snapshot")]
    second = [CandidateInfo(entity_id="c9", source="history")]
    collector = IssueCollector()
    collector.record("campaign", KEY, Ambiguous(candidates=first))
    collector.record("campaign", KEY, Ambiguous(candidates=second))
    [issue] = collector.finalize()
    assert issue.issue_type == "ambiguous"
    assert issue.row_count == 2
    assert [c.entity_id for c in issue.candidates_json] == ["c3", "c4"]


def test_unmapped_and_ambiguous_for_same_key_are_separate_issues():
    collector = IssueCollector()
    collector.record("campaign", KEY, Unmapped())
    collector.record("campaign", KEY, Ambiguous(candidates=[CandidateInfo(entity_id="c1", source="override")]))
    assert sorted(i.issue_type for i in collector.finalize()) == ["ambiguous", "unmapped"]


def test_keys_differing_in_one_field_are_not_merged():
    collector = IssueCollector()
    collector.record("campaign", KEY, Unmapped())
    collector.record("campaign", {**KEY, "portfolio_name_norm": "core"}, Unmapped())
    assert len(collector.finalize()) == 2
