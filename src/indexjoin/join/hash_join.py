"""Hash join primitive and N-way chaining."""
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Generic, Iterator, List, Optional, Sequence, TypeVar

from indexjoin.data.fetcher import FetchedRecord
from indexjoin.data.keys import CanonicalKey, KeyMode, extract_key
from indexjoin.join.results import JoinedTuple, MatchStatus

T = TypeVar('T')
U = TypeVar('U')

JOIN_TYPES = ('inner', 'left', 'right', 'full')


@dataclass(frozen=True)
class KeyedItem(Generic[T]):
    key: Optional[CanonicalKey]
    item: T


@dataclass(frozen=True)
class JoinMatch(Generic[T, U]):
    status: MatchStatus
    key: Optional[CanonicalKey]
    left: Optional[T]
    right: Optional[U]


def hash_join(left: Sequence[KeyedItem[T]], right: Sequence[KeyedItem[U]],
              join_type: str) -> Iterator[JoinMatch[T, U]]:
    """
    Two-way hash join.

    Builds a one-to-many hash index over the right side, then streams the left
    side through it. Duplicate keys produce the cross product. Items without a
    key never enter the index and never match; they are still emitted as
    unmatched under left/right/full semantics.

    Output order: left-pass tuples in left order (matches in right order),
    followed by unconsumed right items in right order.
    """
    if join_type not in JOIN_TYPES:
        raise ValueError(f"Unknown join type: {join_type}")

    index: Dict[CanonicalKey, List[int]] = defaultdict(list)
    for pos, entry in enumerate(right):
        if entry.key is not None:
            index[entry.key].append(pos)

    consumed = [False] * len(right)
    keep_left = join_type in ('left', 'full')
    keep_right = join_type in ('right', 'full')

    for entry in left:
        positions = index.get(entry.key) if entry.key is not None else None
        if positions:
            for pos in positions:
                consumed[pos] = True
                yield JoinMatch(MatchStatus.MATCHED, entry.key, entry.item, right[pos].item)
        elif keep_left:
            yield JoinMatch(MatchStatus.LEFT_ONLY, entry.key, entry.item, None)

    if keep_right:
        for pos, entry in enumerate(right):
            if not consumed[pos]:
                yield JoinMatch(MatchStatus.RIGHT_ONLY, entry.key, None, entry.item)


def key_records(records: Sequence[FetchedRecord], field: str,
                mode: KeyMode = 'typed') -> List[KeyedItem[FetchedRecord]]:
    return [KeyedItem(extract_key(r.flattened, field, r.raw_document, mode), r) for r in records]


def key_tuples(tuples: Sequence[JoinedTuple], source_id: str, field: str,
               mode: KeyMode = 'typed') -> List[KeyedItem[JoinedTuple]]:
    """Key accumulated tuples by the sub-record of ``source_id``; tuples lacking it have no key."""
    keyed = []
    for t in tuples:
        rec = t.record(source_id)
        key = extract_key(rec.flattened, field, rec.raw_document, mode) if rec is not None else None
        keyed.append(KeyedItem(key, t))
    return keyed


def join_records(left_source_id: str, left: Sequence[FetchedRecord], left_field: str,
                 right_source_id: str, right: Sequence[FetchedRecord], right_field: str,
                 join_type: str, mode: KeyMode = 'typed') -> List[JoinedTuple]:
    """Join two fetched record sets into tuples keyed by source id."""
    tuples = []
    for m in hash_join(key_records(left, left_field, mode), key_records(right, right_field, mode), join_type):
        records: Dict[str, Optional[FetchedRecord]] = {left_source_id: m.left, right_source_id: m.right}
        tuples.append(JoinedTuple(m.key, m.status, records))
    return tuples


def join_stage(accumulated: Sequence[JoinedTuple], left_source_id: str, left_field: str,
               right: Sequence[FetchedRecord], right_source_id: str, right_field: str,
               join_type: str, known_sources: Sequence[str],
               mode: KeyMode = 'typed') -> List[JoinedTuple]:
    """
    Join the tuples of earlier stages (pseudo-left) with a newly fetched source.

    Every output tuple maps all of ``known_sources`` plus ``right_source_id``;
    sources absent from a tuple map to None.
    """
    left_keyed = key_tuples(accumulated, left_source_id, left_field, mode)
    right_keyed = key_records(right, right_field, mode)

    tuples = []
    for m in hash_join(left_keyed, right_keyed, join_type):
        if m.left is not None:
            records = dict(m.left.records_by_source_id)
        else:
            records = {sid: None for sid in known_sources}
        records[right_source_id] = m.right
        tuples.append(JoinedTuple(m.key, m.status, records))
    return tuples
