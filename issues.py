"""
Name Resolver – batch-level collection of unmapped/ambiguous resolution issues.

Failures are buffered per (entity_level, key). A key that resolved for any row of the
batch is dropped at finalize(); the rest are deduplicated by
(entity_level, issue_type, key_json) with row counts summed.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from models import Ambiguous, CandidateInfo, MappingIssue, Ok, ResolvedId
from synthetic_keys import canonical_json

logger = logging.getLogger(__name__)


class IssueCollector:
    def __init__(self) -> None:
        self._pending: Dict[Tuple[str, str, str], MappingIssue] = {}
        self._resolved: set = set()

    def add_issue(
        self,
        entity_level: str,
        issue_type: str,
        key_json: Dict[str, Any],
        candidates: Optional[List[CandidateInfo]] = None,
        row_count: int = 1,
    ) -> None:
        dedupe_key = (entity_level, issue_type, canonical_json(key_json))
        existing = self._pending.get(dedupe_key)
        if existing is not None:
            # First occurrence keeps its candidates
            existing.row_count += row_count
            return
        self._pending[dedupe_key] = MappingIssue(
            entity_level=entity_level,
            issue_type=issue_type,
            key_json=dict(key_json),
            candidates_json=list(candidates) if candidates else None,
            row_count=row_count,
        )

    def mark_resolved(self, entity_level: str, key_json: Dict[str, Any]) -> None:
        self._resolved.add((entity_level, canonical_json(key_json)))

    def record(self, entity_level: str, key_json: Dict[str, Any], result: ResolvedId) -> None:
        """Record one resolver outcome for one report row."""
        if isinstance(result, Ok):
            self.mark_resolved(entity_level, key_json)
        elif isinstance(result, Ambiguous):
            self.add_issue(entity_level, "ambiguous", key_json, candidates=result.candidates)
        else:
            self.add_issue(entity_level, "unmapped", key_json)

    def finalize(self) -> List[MappingIssue]:
        issues = [
            issue
            for (level, _, key), issue in self._pending.items()
            if (level, key) not in self._resolved
        ]
        suppressed = len(self._pending) - len(issues)
        if suppressed:
            logger.debug("suppressed %s issues whose key resolved elsewhere in the batch", suppressed)
        return issues
