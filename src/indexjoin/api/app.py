"""FastAPI application exposing the join engine over HTTP."""
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from pydantic import ValidationError

from indexjoin.api.responses import error_response
from indexjoin.api.routes import router
from indexjoin.exceptions import (
    ConfigurationError, FetchError, IndexAccessDeniedError, IndexJoinError, SearchBackendError,
)
from indexjoin.join.engine import JoinEngine
from indexjoin.settings import EngineSettings, get_settings
from indexjoin.sources.resolver import SearchIndexStoredQueryRepository, StoredQueryRepository


def _validation_details(errors) -> list:
    return [f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}" for err in errors]


def register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError):
        logger.warning(f"Rejected join configuration on {request.url.path}: {exc.errors}")
        return error_response(400, 'INVALID_JOIN_CONFIGURATION', exc.message, exc.errors)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return error_response(400, 'VALIDATION_ERROR', 'Request validation failed',
                              _validation_details(exc.errors()))

    @app.exception_handler(ValidationError)
    async def model_validation_handler(request: Request, exc: ValidationError):
        return error_response(400, 'VALIDATION_ERROR', 'Request validation failed',
                              _validation_details(exc.errors()))

    @app.exception_handler(FetchError)
    async def fetch_error_handler(request: Request, exc: FetchError):
        if exc.access_denied:
            return error_response(403, 'ACCESS_DENIED', exc.message, exc.details)
        logger.error(f"Join fetch failed on {request.url.path}: {exc}")
        return error_response(502, 'JOIN_FETCH_ERROR', exc.message, exc.details)

    @app.exception_handler(SearchBackendError)
    async def backend_error_handler(request: Request, exc: SearchBackendError):
        if isinstance(exc, IndexAccessDeniedError):
            return error_response(403, 'ACCESS_DENIED', exc.message, exc.details)
        if exc.status_code == 404:
            return error_response(404, 'INDEX_NOT_FOUND', exc.message, exc.details)
        logger.error(f"Search backend failed on {request.url.path}: {exc}")
        return error_response(502, 'SEARCH_BACKEND_ERROR', exc.message, exc.details)

    @app.exception_handler(IndexJoinError)
    async def join_error_handler(request: Request, exc: IndexJoinError):
        logger.error(f"Join failed on {request.url.path}: {exc}")
        return error_response(500, exc.error_code, exc.message, exc.details)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unexpected error on {request.url.path}")
        return error_response(500, 'INTERNAL_ERROR', 'Internal server error')


def create_app(settings: Optional[EngineSettings] = None, backend=None,
               stored_queries: Optional[StoredQueryRepository] = None) -> FastAPI:
    """
    Build the HTTP application.

    Without an explicit backend the app talks to Elasticsearch using
    ``settings`` and reads stored queries from ``settings.stored_query_index``.
    """
    settings = settings or get_settings()
    if backend is None:
        from indexjoin.search.elasticsearch import ElasticsearchBackend
        backend = ElasticsearchBackend(settings)
    if stored_queries is None:
        stored_queries = SearchIndexStoredQueryRepository(backend, settings.stored_query_index)

    app = FastAPI(title=settings.project_name, description="Multi-index join service")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.settings = settings
    app.state.backend = backend
    app.state.engine = JoinEngine(backend, settings, stored_queries)

    register_exception_handlers(app)
    app.include_router(router)
    logger.info(f"{settings.project_name} API ready (backend: {type(backend).__name__}, "
                f"key mode: {settings.key_mode})")
    return app
