"""Join engine: execute and preview entry points."""
import time
import uuid
from typing import Dict, List, Optional

from loguru import logger

from indexjoin.config import JoinConfiguration, PreviewRequest
from indexjoin.data.fetcher import FetchedRecord, RecordFetcher
from indexjoin.exceptions import ConfigurationError, FetchError, SearchBackendError
from indexjoin.join.consolidate import consolidate_all
from indexjoin.join.hash_join import join_records, join_stage
from indexjoin.join.paginate import paginate
from indexjoin.join.preview import PreviewSampler
from indexjoin.join.results import (
    JoinResult, JoinSummary, JoinedTuple, PreviewResult, StageSummary, top_keys,
)
from indexjoin.join.validator import JoinStage, validate_join_configuration
from indexjoin.search.mapping import FieldMappingService
from indexjoin.settings import EngineSettings
from indexjoin.sources.resolver import SourceResolver, StoredQueryRepository


class JoinEngine:
    """
    Joins records across independently queried indices.

    Each call builds its own hash indices and tuple lists, so one engine can
    serve concurrent calls without locking.
    """

    def __init__(self, backend, settings: Optional[EngineSettings] = None,
                 stored_queries: Optional[StoredQueryRepository] = None):
        self.backend = backend
        self.settings = settings or EngineSettings()
        self.resolver = SourceResolver(stored_queries)
        self.fetcher = RecordFetcher(backend, self.resolver, max_workers=self.settings.fetch_workers)
        self.mapping = FieldMappingService(backend, self.resolver)
        self.sampler = PreviewSampler(
            self.fetcher,
            fetch_limit=self.settings.preview_fetch_limit,
            sample_size=self.settings.preview_sample_size,
            top_n=self.settings.preview_top_keys,
            key_mode=self.settings.key_mode,
        )

    def validate(self, cfg: JoinConfiguration) -> List[JoinStage]:
        """Structural checks, plus the optional field check against index mappings."""
        stages = validate_join_configuration(cfg)
        if self.settings.strict_fields:
            self._check_fields(cfg)
        return stages

    def _check_fields(self, cfg: JoinConfiguration) -> None:
        wanted: Dict[str, set] = {}
        for cond in cfg.conditions:
            wanted.setdefault(cond.left_source_id, set()).add(cond.left_field)
            wanted.setdefault(cond.right_source_id, set()).add(cond.right_field)
        for spec in cfg.included_fields:
            wanted.setdefault(spec.source_id, set()).add(spec.source_field)

        errors = []
        for source_id, fields in wanted.items():
            source = cfg.source(source_id)
            try:
                known = set(self.mapping.get_fields(source))
            except SearchBackendError as e:
                raise FetchError(f"Mapping unavailable for source '{source_id}': {e.message}",
                                 source_id=source_id, cause=e) from e
            for field in sorted(fields):
                if field not in known:
                    errors.append(f"Unknown field '{field}' for source '{source_id}'")
        if errors:
            raise ConfigurationError(errors)

    def execute(self, cfg: JoinConfiguration) -> JoinResult:
        """
        Execute a (possibly multi-way) join and return one page of consolidated rows.

        Raises:
            ConfigurationError: Before any fetch, for invalid configurations
            FetchError: When any source cannot be fetched; no partial result is returned
        """
        operation_id = uuid.uuid4().hex[:9]
        start = time.perf_counter()
        logger.info(f"[JOIN-{operation_id}] Starting join: {len(cfg.conditions)} condition(s), "
                    f"from={cfg.from_}, size={cfg.size}")

        stages = self.validate(cfg)
        limit = cfg.per_source_fetch_limit
        mode = self.settings.key_mode

        source_totals: Dict[str, int] = {}
        stage_summaries: List[StageSummary] = []
        tuples: List[JoinedTuple] = []
        joined_sources: List[str] = []
        left_total = right_total = 0

        try:
            for stage in stages:
                stage_start = time.perf_counter()
                if stage.index == 1:
                    fetched = self.fetcher.fetch_many(
                        [cfg.source(stage.left_source_id), cfg.source(stage.right_source_id)], limit, stage=1)
                    left: List[FetchedRecord] = fetched[stage.left_source_id]
                    right = fetched[stage.right_source_id]
                    source_totals[stage.left_source_id] = len(left)
                    source_totals[stage.right_source_id] = len(right)
                    left_total = len(left)
                    tuples = join_records(stage.left_source_id, left, stage.left_field,
                                          stage.right_source_id, right, stage.right_field,
                                          stage.join_type, mode)
                    joined_sources = [stage.left_source_id, stage.right_source_id]
                else:
                    right = self.fetcher.fetch(cfg.source(stage.right_source_id), limit, stage=stage.index)
                    source_totals[stage.right_source_id] = len(right)
                    left_total = len(tuples)
                    tuples = join_stage(tuples, stage.left_source_id, stage.left_field,
                                        right, stage.right_source_id, stage.right_field,
                                        stage.join_type, joined_sources, mode)
                    joined_sources.append(stage.right_source_id)
                right_total = len(right)

                summary = JoinSummary.from_tuples(tuples, left_total, right_total)
                stage_summaries.append(StageSummary(
                    stage=stage.index,
                    condition_id=stage.condition.id,
                    left_source_id=stage.left_source_id,
                    right_source_id=stage.right_source_id,
                    join_type=stage.join_type,
                    **summary.model_dump(),
                ))
                logger.info(f"[JOIN-{operation_id}] Stage {stage.index} ({stage.condition.id}) "
                            f"{stage.join_type}: {len(tuples)} tuples in "
                            f"{(time.perf_counter() - stage_start) * 1000:.0f}ms")
        except FetchError as e:
            logger.error(f"[JOIN-{operation_id}] Join aborted after "
                         f"{(time.perf_counter() - start) * 1000:.0f}ms: {e}")
            raise

        rows = consolidate_all(tuples, cfg.consolidated_fields,
                               include_join_metadata=cfg.include_join_metadata)
        page = paginate(rows, cfg.from_, cfg.size)
        took = int((time.perf_counter() - start) * 1000)

        final_summary = summary

        logger.info(f"[JOIN-{operation_id}] Join completed in {took}ms: {len(rows)} rows, "
                    f"returning {len(page)} (matched={final_summary.matched_count}, "
                    f"left_only={final_summary.left_only_count}, right_only={final_summary.right_only_count})")

        return JoinResult(
            summary=final_summary,
            rows=page,
            total_rows=len(rows),
            from_=cfg.from_,
            size=cfg.size,
            took=took,
            stages=stage_summaries,
            source_totals=source_totals,
            key_distribution=top_keys((t.join_key for t in tuples), self.settings.result_top_keys,
                                      include_missing=True),
        )

    def preview(self, request: PreviewRequest) -> PreviewResult:
        return self.sampler.preview(request)

    def get_fields(self, source) -> List[str]:
        return self.mapping.get_fields(source)
