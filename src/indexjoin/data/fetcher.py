"""Bounded record fetching for join sources."""
import time
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from loguru import logger

from indexjoin.config import JoinSource
from indexjoin.data.flatten import flatten_document
from indexjoin.exceptions import FetchError, IndexJoinError, SearchBackendError
from indexjoin.sources.resolver import SourceResolver


@dataclass
class FetchedRecord:
    """One document fetched for one source. Lives for a single execution."""
    source_id: str
    raw_document: Dict[str, Any]
    flattened: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_document(cls, source_id: str, document: Dict[str, Any]) -> 'FetchedRecord':
        return cls(source_id=source_id, raw_document=document, flattened=flatten_document(document))


class RecordFetcher:
    """
    Runs one bounded search per source.

    The result is a snapshot of at most ``limit`` documents; there is no
    further pagination. Any failure is raised as FetchError naming the source.
    """

    def __init__(self, backend, resolver: SourceResolver, max_workers: int = 2):
        self.backend = backend
        self.resolver = resolver
        self.max_workers = max(1, max_workers)

    def fetch(self, source: JoinSource, limit: int, stage: Optional[int] = None) -> List[FetchedRecord]:
        start = time.perf_counter()
        try:
            resolved = self.resolver.resolve(source)
            documents = self.backend.search(resolved.index, resolved.query, limit)
        except FetchError as e:
            if e.stage is None and stage is not None:
                e.stage = stage
                e.details['stage'] = stage
            raise
        except SearchBackendError as e:
            raise FetchError(f"Fetch failed for source '{source.id}': {e.message}",
                             source_id=source.id, stage=stage, cause=e) from e
        except Exception as e:
            # Includes ValueError for scoping queries the backend cannot evaluate
            raise FetchError(f"Fetch failed for source '{source.id}': {e}",
                             source_id=source.id, stage=stage, cause=e) from e

        records = [FetchedRecord.from_document(source.id, doc) for doc in documents[:limit]]
        elapsed = (time.perf_counter() - start) * 1000
        logger.info(f"Fetched {len(records)} records for source '{source.id}' "
                    f"from {resolved.index} in {elapsed:.0f}ms")
        return records

    def fetch_many(self, sources: Sequence[JoinSource], limit: int,
                   stage: Optional[int] = None) -> Dict[str, List[FetchedRecord]]:
        """
        Fetch several sources concurrently.

        Fails fast: the first error cancels fetches that have not started and
        is raised immediately. Fetches already running are not waited for and
        their results are discarded; no partial result is kept.
        """
        if len(sources) <= 1 or self.max_workers == 1:
            return {s.id: self.fetch(s, limit, stage) for s in sources}

        executor = ThreadPoolExecutor(max_workers=min(self.max_workers, len(sources)),
                                      thread_name_prefix='indexjoin-fetch')
        try:
            future_to_source = {executor.submit(self.fetch, s, limit, stage): s for s in sources}
            done, pending = wait(future_to_source, return_when=FIRST_EXCEPTION)
            for future in done:
                error = future.exception()
                if error is not None:
                    for other in pending:
                        other.cancel()
                    source = future_to_source[future]
                    logger.error(f"✗ Fetch failed for source '{source.id}', aborting join: {error}")
                    if isinstance(error, IndexJoinError):
                        raise error
                    raise FetchError(f"Fetch failed for source '{source.id}': {error}",
                                     source_id=source.id, stage=stage, cause=error) from error
            return {future_to_source[f].id: f.result() for f in future_to_source}
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
