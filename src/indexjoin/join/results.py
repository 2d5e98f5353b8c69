"""Transient join tuples and the result models returned to callers."""
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from indexjoin.data.fetcher import FetchedRecord
from indexjoin.data.keys import CanonicalKey, key_label, qualified_label


class MatchStatus(str, Enum):
    MATCHED = 'matched'
    LEFT_ONLY = 'leftOnly'
    RIGHT_ONLY = 'rightOnly'


@dataclass
class JoinedTuple:
    """One join output: the records of every source joined so far, keyed by source id."""
    join_key: Optional[CanonicalKey]
    match_status: MatchStatus
    records_by_source_id: Dict[str, Optional[FetchedRecord]] = field(default_factory=dict)

    @property
    def key_label(self) -> str:
        return key_label(self.join_key)

    def record(self, source_id: str) -> Optional[FetchedRecord]:
        return self.records_by_source_id.get(source_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'joinKey': self.key_label,
            'matchStatus': self.match_status.value,
            'records': {
                source_id: (rec.flattened if rec is not None else None)
                for source_id, rec in self.records_by_source_id.items()
            },
        }


class _ResultModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class JoinSummary(_ResultModel):
    left_total: int = 0
    right_total: int = 0
    matched_count: int = 0
    left_only_count: int = 0
    right_only_count: int = 0

    @classmethod
    def from_tuples(cls, tuples: Iterable[JoinedTuple], left_total: int, right_total: int) -> 'JoinSummary':
        counts = Counter(t.match_status for t in tuples)
        return cls(
            left_total=left_total,
            right_total=right_total,
            matched_count=counts[MatchStatus.MATCHED],
            left_only_count=counts[MatchStatus.LEFT_ONLY],
            right_only_count=counts[MatchStatus.RIGHT_ONLY],
        )

    @property
    def total(self) -> int:
        return self.matched_count + self.left_only_count + self.right_only_count


class StageSummary(JoinSummary):
    stage: int
    condition_id: str
    left_source_id: str
    right_source_id: str
    join_type: str


class KeyDistribution(_ResultModel):
    total_unique_keys: int = 0
    distribution: Dict[str, int] = Field(default_factory=dict)


def top_keys(keys: Iterable[Optional[CanonicalKey]], limit: int, include_missing: bool = False) -> KeyDistribution:
    """
    Count key occurrences and keep the ``limit`` most common, ties broken by label.

    Keys are counted as canonical keys, so ``5`` and ``"5"`` stay separate buckets
    in typed mode. Keys whose plain label is shared by another kind get a
    qualified label (``"5"``, ``5 (number)``).
    """
    counts: Counter = Counter()
    for key in keys:
        if key is None and not include_missing:
            continue
        counts[key] += 1

    by_label: Counter = Counter(key_label(key) for key in counts)
    labelled = [
        (qualified_label(key) if by_label[key_label(key)] > 1 else key_label(key), n)
        for key, n in counts.items()
    ]
    ranked = sorted(labelled, key=lambda item: (-item[1], item[0]))[:limit]
    return KeyDistribution(total_unique_keys=len(counts), distribution=dict(ranked))


class JoinResult(_ResultModel):
    summary: JoinSummary
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    total_rows: int = 0
    from_: int = Field(default=0, alias='from')
    size: int = 100
    took: int = 0                     # milliseconds
    stages: List[StageSummary] = Field(default_factory=list)
    source_totals: Dict[str, int] = Field(default_factory=dict)
    key_distribution: KeyDistribution = Field(default_factory=KeyDistribution)


class PreviewResult(_ResultModel):
    summary: JoinSummary
    sample_tuples: List[Dict[str, Any]] = Field(default_factory=list)
    sample_key_distribution: Dict[str, int] = Field(default_factory=dict)
    total_tuples: int = 0
    took: int = 0
