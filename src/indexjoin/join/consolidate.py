"""Projection of joined tuples into flat output rows."""
from typing import Any, Dict, List, Sequence

from indexjoin.config import ConsolidatedFieldSpec
from indexjoin.data.keys import extract_value
from indexjoin.join.results import JoinedTuple

JOIN_KEY_COLUMN = '_joinKey'
MATCH_STATUS_COLUMN = '_matchStatus'


def consolidate(joined: JoinedTuple, fields: Sequence[ConsolidatedFieldSpec],
                placeholder: Any = None, include_join_metadata: bool = False) -> Dict[str, Any]:
    """
    Project one joined tuple into an output row.

    Each spec reads ``records_by_source_id[source_id].flattened[source_field]``
    and writes it under its alias; a missing record or path yields
    ``placeholder``. Aliases are not checked for collisions: when two specs
    share an alias the later one wins.
    """
    row: Dict[str, Any] = {}
    for spec in fields:
        record = joined.record(spec.source_id)
        if record is None:
            row[spec.alias] = placeholder
            continue
        value = extract_value(record.flattened, spec.source_field, record.raw_document)
        row[spec.alias] = placeholder if value is None else value
    if include_join_metadata:
        row[JOIN_KEY_COLUMN] = joined.key_label
        row[MATCH_STATUS_COLUMN] = joined.match_status.value
    return row


def consolidate_all(tuples: Sequence[JoinedTuple], fields: Sequence[ConsolidatedFieldSpec],
                    placeholder: Any = None, include_join_metadata: bool = False) -> List[Dict[str, Any]]:
    included = [f for f in fields if f.include]
    return [consolidate(t, included, placeholder, include_join_metadata) for t in tuples]
