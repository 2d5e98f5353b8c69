"""Search backend interface and an in-memory implementation."""
import json
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, runtime_checkable

import pandas as pd
from loguru import logger

from indexjoin.data.flatten import flatten_document
from indexjoin.data.keys import extract_value
from indexjoin.exceptions import IndexAccessDeniedError, SearchBackendError

MATCH_ALL: Dict[str, Any] = {'match_all': {}}


@runtime_checkable
class SearchBackend(Protocol):
    """What the join engine needs from a search engine."""

    def search(self, index: str, query: Mapping[str, Any], limit: int) -> List[Dict[str, Any]]:
        """Return up to ``limit`` raw documents from ``index`` matching ``query``."""
        ...

    def get_fields(self, index: str) -> List[str]:
        """Return the flattened field paths known for ``index``."""
        ...

    def get_document(self, index: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Return one stored document by id, or None."""
        ...


def check_index_access(index: str, allowed_indices: Iterable[str]) -> None:
    """Raise IndexAccessDeniedError when ``index`` is outside a non-empty allow-list."""
    allowed = [a for a in allowed_indices if a]
    if not allowed:
        return
    for pattern in allowed:
        if pattern == index or (pattern.endswith('*') and index.startswith(pattern[:-1])):
            return
    raise IndexAccessDeniedError(f"Access denied to index '{index}'", index=index, status_code=403)


class InMemorySearchBackend:
    """
    Search backend holding documents in memory.

    Evaluates the subset of the query DSL used for scoping queries:
    ``match_all``, ``term``, ``terms``, ``match``, ``exists`` and ``bool``.
    Used for offline runs (``--data-dir``) and tests.
    """

    def __init__(self, indices: Optional[Dict[str, List[Dict[str, Any]]]] = None,
                 allowed_indices: Optional[List[str]] = None):
        self.indices: Dict[str, List[Dict[str, Any]]] = {k: list(v) for k, v in (indices or {}).items()}
        self.allowed_indices = allowed_indices or []
        self.search_calls: List[Dict[str, Any]] = []

    @classmethod
    def from_directory(cls, path: str, allowed_indices: Optional[List[str]] = None) -> 'InMemorySearchBackend':
        """Load one index per ``.json``, ``.jsonl`` or ``.csv`` file in ``path``."""
        if not os.path.isdir(path):
            logger.error(f"Data directory not found: {path}")
            raise FileNotFoundError(path)

        indices: Dict[str, List[Dict[str, Any]]] = {}
        for file in sorted(Path(path).iterdir()):
            suffix = file.suffix.lower()
            if suffix == '.json':
                data = json.loads(file.read_text(encoding='utf-8'))
                docs = data if isinstance(data, list) else [data]
            elif suffix == '.jsonl':
                docs = [json.loads(line) for line in file.read_text(encoding='utf-8').splitlines() if line.strip()]
            elif suffix == '.csv':
                df = pd.read_csv(file)
                # Empty cells become missing fields rather than NaN values
                docs = [{k: v for k, v in row.items() if not pd.isna(v)} for row in df.to_dict(orient='records')]
            else:
                continue
            indices[file.stem] = docs
            logger.info(f"Loaded index '{file.stem}': {len(docs)} documents from {file.name}")

        return cls(indices, allowed_indices)

    def add_documents(self, index: str, documents: Iterable[Dict[str, Any]]) -> None:
        self.indices.setdefault(index, []).extend(documents)

    def _documents(self, index: str) -> List[Dict[str, Any]]:
        check_index_access(index, self.allowed_indices)
        if index not in self.indices:
            raise SearchBackendError(f"no such index [{index}]", index=index, status_code=404)
        return self.indices[index]

    def search(self, index: str, query: Mapping[str, Any], limit: int) -> List[Dict[str, Any]]:
        self.search_calls.append({'index': index, 'query': query, 'limit': limit})
        docs = self._documents(index)
        hits = []
        for doc in docs:
            if len(hits) >= limit:
                break
            if _matches(doc, query or MATCH_ALL):
                hits.append(doc)
        logger.debug(f"In-memory search on {index}: {len(hits)} hits (limit {limit})")
        return hits

    def get_fields(self, index: str) -> List[str]:
        fields: Dict[str, None] = {}
        for doc in self._documents(index):
            for path in flatten_document(doc):
                fields.setdefault(path)
        return sorted(fields)

    def get_document(self, index: str, doc_id: str) -> Optional[Dict[str, Any]]:
        for doc in self._documents(index):
            if str(doc.get('id', doc.get('_id'))) == str(doc_id):
                return doc
        return None

    def ping(self) -> bool:
        return True


def _field_values(doc: Mapping[str, Any], field: str) -> List[Any]:
    value = extract_value(flatten_document(doc), field, doc)
    if value is None:
        return []
    return list(value) if isinstance(value, list) else [value]


def _term_value(spec: Any) -> Any:
    return spec.get('value', spec.get('query')) if isinstance(spec, Mapping) else spec


def _matches(doc: Mapping[str, Any], query: Mapping[str, Any]) -> bool:
    if not isinstance(query, Mapping) or len(query) != 1:
        raise ValueError(f"Malformed query clause: {query!r}")

    clause, body = next(iter(query.items()))
    if clause == 'match_all':
        return True
    if clause in ('term', 'match'):
        field, spec = next(iter(body.items()))
        expected = _term_value(spec)
        values = _field_values(doc, field)
        if clause == 'match' and isinstance(expected, str):
            return any(str(v).lower() == expected.lower() for v in values)
        return expected in values
    if clause == 'terms':
        field, expected = next(iter(body.items()))
        return any(v in expected for v in _field_values(doc, field))
    if clause == 'exists':
        return bool(_field_values(doc, body['field']))
    if clause == 'bool':
        def _clauses(name: str) -> List[Mapping[str, Any]]:
            value = body.get(name, [])
            return value if isinstance(value, list) else [value]

        must = _clauses('must') + _clauses('filter')
        if not all(_matches(doc, q) for q in must):
            return False
        if any(_matches(doc, q) for q in _clauses('must_not')):
            return False
        should = _clauses('should')
        return not should or any(_matches(doc, q) for q in should)
    raise ValueError(f"Unsupported query clause: {clause}")
