"""HTTP routes for multi-index joins."""
import time
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query, Request
from loguru import logger

from indexjoin.api.responses import envelope
from indexjoin.config import JoinConfiguration, JoinSource, JoinType, PreviewRequest
from indexjoin.join.engine import JoinEngine

router = APIRouter()


def get_engine(request: Request) -> JoinEngine:
    return request.app.state.engine


@router.post("/multi-index-join")
def execute_join(payload: Dict[str, Any] = Body(...), engine: JoinEngine = Depends(get_engine)):
    """Execute a multi-index join and return one page of consolidated rows."""
    started = time.perf_counter()
    cfg = JoinConfiguration.model_validate(payload)
    result = engine.execute(cfg)
    return envelope(result.model_dump(by_alias=True), started)


@router.get("/multi-index-join/preview")
def preview_join(
    left_index: str = Query(..., alias="leftIndex", min_length=1),
    right_index: str = Query(..., alias="rightIndex", min_length=1),
    left_field: str = Query(..., alias="leftField", min_length=1),
    right_field: str = Query(..., alias="rightField", min_length=1),
    join_type: Optional[JoinType] = Query(None, alias="joinType"),
    sample_size: Optional[int] = Query(None, alias="sampleSize", ge=1, le=1000),
    engine: JoinEngine = Depends(get_engine),
):
    """Preview a single index pair: summary counts, sample tuples and top join keys."""
    started = time.perf_counter()
    request = PreviewRequest.for_indices(
        left_index, right_index, left_field, right_field,
        join_type=join_type, sample_size=sample_size,
    )
    result = engine.preview(request)
    return envelope(result.model_dump(by_alias=True), started)


@router.get("/fields/{index}")
def list_fields(index: str, engine: JoinEngine = Depends(get_engine)):
    """List the flattened field paths of an index."""
    started = time.perf_counter()
    fields = engine.get_fields(JoinSource(id=index, kind='index', reference=index))
    return envelope({'index': index, 'fields': fields}, started)


@router.get("/health")
def health(request: Request):
    backend = request.app.state.backend
    ping = getattr(backend, 'ping', None)
    reachable = bool(ping()) if ping else True
    if not reachable:
        logger.warning("Health check: search backend unreachable")
    return {'status': 'ok' if reachable else 'degraded', 'searchBackend': reachable}
