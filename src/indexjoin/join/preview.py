"""Cheap single-pair join preview for interactive configuration feedback."""
import time
import uuid
from itertools import chain

from loguru import logger

from indexjoin.config import PreviewRequest
from indexjoin.data.fetcher import RecordFetcher
from indexjoin.data.keys import KeyMode
from indexjoin.join.hash_join import join_records, key_records
from indexjoin.join.results import JoinSummary, PreviewResult, top_keys


class PreviewSampler:
    """
    Runs fetch and hash join for one source pair and returns a summary plus a
    capped sample instead of a full result set.

    Summary counts cover the whole bounded fetch; only the returned tuples are
    capped. The result is approximate and not meant as final output.
    """

    def __init__(self, fetcher: RecordFetcher, fetch_limit: int = 1000, sample_size: int = 20,
                 top_n: int = 10, key_mode: KeyMode = 'typed'):
        self.fetcher = fetcher
        self.fetch_limit = fetch_limit
        self.sample_size = sample_size
        self.top_n = top_n
        self.key_mode = key_mode

    def preview(self, request: PreviewRequest) -> PreviewResult:
        operation_id = uuid.uuid4().hex[:9]
        start = time.perf_counter()
        fetch_limit = request.fetch_limit or self.fetch_limit
        sample_size = request.sample_size or self.sample_size
        top_n = request.top_keys or self.top_n

        logger.info(f"[JOIN-PREVIEW-{operation_id}] {request.left_source.id}.{request.left_field} "
                    f"{request.join_type.upper()} {request.right_source.id}.{request.right_field} "
                    f"(limit {fetch_limit}, sample {sample_size})")

        fetched = self.fetcher.fetch_many([request.left_source, request.right_source], fetch_limit, stage=1)
        left = fetched[request.left_source.id]
        right = fetched[request.right_source.id]

        tuples = join_records(request.left_source.id, left, request.left_field,
                              request.right_source.id, right, request.right_field,
                              request.join_type, self.key_mode)
        summary = JoinSummary.from_tuples(tuples, len(left), len(right))

        keys = chain(
            (k.key for k in key_records(left, request.left_field, self.key_mode)),
            (k.key for k in key_records(right, request.right_field, self.key_mode)),
        )
        distribution = top_keys(keys, top_n)

        took = int((time.perf_counter() - start) * 1000)
        logger.info(f"[JOIN-PREVIEW-{operation_id}] Preview completed in {took}ms: "
                    f"{summary.matched_count} matched, {summary.left_only_count} left-only, "
                    f"{summary.right_only_count} right-only")

        return PreviewResult(
            summary=summary,
            sample_tuples=[t.to_dict() for t in tuples[:sample_size]],
            sample_key_distribution=distribution.distribution,
            total_tuples=len(tuples),
            took=took,
        )
