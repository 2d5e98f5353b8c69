"""Resolution of join sources to a target index and scoping query."""
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol

from loguru import logger

from indexjoin.config import JoinSource
from indexjoin.exceptions import SearchBackendError, SourceResolutionError
from indexjoin.search.backend import MATCH_ALL


@dataclass
class StoredQuery:
    """A named query saved against one target index."""
    id: str
    name: str
    target_index: str
    query: Dict[str, Any] = field(default_factory=lambda: dict(MATCH_ALL))


@dataclass(frozen=True)
class ResolvedSource:
    source_id: str
    index: str
    query: Mapping[str, Any]


class StoredQueryRepository(Protocol):
    def get(self, query_id: str) -> Optional[StoredQuery]:
        ...


class InMemoryStoredQueryRepository:
    def __init__(self, queries: Optional[Dict[str, StoredQuery]] = None):
        self.queries = dict(queries or {})

    def add(self, query: StoredQuery) -> None:
        self.queries[query.id] = query

    def get(self, query_id: str) -> Optional[StoredQuery]:
        return self.queries.get(query_id)


class SearchIndexStoredQueryRepository:
    """Reads stored queries kept as documents in a search index.

    Documents carry ``name``, ``targetIndex`` and ``queryData`` (either the query
    itself or ``{"query": ...}``).
    """

    def __init__(self, backend, index: str):
        self.backend = backend
        self.index = index

    def get(self, query_id: str) -> Optional[StoredQuery]:
        doc = self.backend.get_document(self.index, query_id)
        if doc is None:
            return None
        query_data = doc.get('queryData') or doc.get('query') or MATCH_ALL
        if isinstance(query_data, Mapping) and 'query' in query_data and len(query_data) == 1:
            query_data = query_data['query']
        return StoredQuery(
            id=query_id,
            name=doc.get('name', query_id),
            target_index=doc.get('targetIndex') or doc.get('target_index', ''),
            query=dict(query_data),
        )


def _check_query(source_id: str, query: Any) -> Dict[str, Any]:
    if not isinstance(query, Mapping) or len(query) != 1:
        raise SourceResolutionError(
            f"Malformed scoping query for source '{source_id}': expected a single-clause object",
            source_id=source_id,
        )
    return dict(query)


class SourceResolver:
    """Maps a JoinSource to the index and query that scope its records."""

    def __init__(self, stored_queries: Optional[StoredQueryRepository] = None):
        self.stored_queries = stored_queries

    def resolve(self, source: JoinSource) -> ResolvedSource:
        if source.kind == 'index':
            query = _check_query(source.id, source.scoping_query) if source.scoping_query else dict(MATCH_ALL)
            return ResolvedSource(source.id, source.reference, query)

        # Inline stored-query sources carry their own target and query
        if source.target_index and source.scoping_query:
            logger.debug(f"Source {source.id}: inline stored query on {source.target_index}")
            return ResolvedSource(source.id, source.target_index, _check_query(source.id, source.scoping_query))

        if self.stored_queries is None:
            raise SourceResolutionError(
                f"Source '{source.id}' references stored query '{source.reference}' but no stored-query repository is configured",
                source_id=source.id,
            )
        try:
            stored = self.stored_queries.get(source.reference)
        except SearchBackendError as e:
            raise SourceResolutionError(
                f"Failed to load stored query '{source.reference}' for source '{source.id}': {e.message}",
                source_id=source.id, cause=e,
            ) from e
        if stored is None:
            raise SourceResolutionError(
                f"Stored query '{source.reference}' not found for source '{source.id}'",
                source_id=source.id,
            )
        if not stored.target_index:
            raise SourceResolutionError(
                f"Stored query '{stored.name}' has no target index",
                source_id=source.id,
            )

        query = stored.query
        if source.scoping_query:
            # Narrow the stored query with the source's own scoping query
            query = {'bool': {'filter': [stored.query, _check_query(source.id, source.scoping_query)]}}
        logger.info(f"Source {source.id}: stored query '{stored.name}' on {stored.target_index}")
        return ResolvedSource(source.id, stored.target_index, _check_query(source.id, query))
