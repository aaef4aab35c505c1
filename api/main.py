from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from starlette.background import BackgroundTask

from auth import router as auth_router
from auth.security import TokenService
from auth.service import AuthService
from core import db
from core.config import Settings, load_settings
from core.errors import ServiceError
from core.range_store import RangeStore, TableSchema
from core.responses import error_response
from earthquakes import router as earthquakes_router
from earthquakes.ingestion import IngestionPipeline
from earthquakes.query import QueryEngine
from earthquakes.schemas import events_table
from request_stats import router as stats_router
from request_stats.aggregation import RequestStatsService
from request_stats.geolocation import GeoLocator
from request_stats.request_log import (
    CompletedCall,
    RequestLogRecorder,
    endpoint_name,
)
from request_stats.schemas import request_log_table

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def table_schemas(settings: Settings) -> list[TableSchema]:
    return [events_table(settings.events_table), request_log_table(settings.request_log_table)]


def _wire_store(app: FastAPI, store: RangeStore) -> None:
    settings: Settings = app.state.settings
    app.state.store = store
    app.state.ingestion_pipeline = IngestionPipeline.from_settings(store, settings)
    app.state.query_engine = QueryEngine.from_settings(store, settings)
    app.state.request_stats = RequestStatsService.from_settings(store, settings)
    app.state.request_log_recorder = None
    if settings.request_logging_enabled:
        locator = GeoLocator.from_settings(settings)
        app.state.request_log_recorder = RequestLogRecorder.from_settings(store, settings, locator)


def _close_locator(app: FastAPI) -> None:
    recorder: RequestLogRecorder | None = app.state.request_log_recorder
    if recorder is not None and recorder.locator is not None:
        recorder.locator.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    if app.state.store is not None:
        try:
            yield
        finally:
            _close_locator(app)
        return

    # Create the DB pool and table layout once per process.
    settings: Settings = app.state.settings
    pool = await db.create_pool(settings)
    try:
        store = RangeStore(pool, table_schemas(settings))
        await store.ensure_schema()
        _wire_store(app, store)
        yield
    finally:
        _close_locator(app)
        await pool.close()


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        if exc.status_code >= 500:
            logger.error(
                "request_failed path=%s status=%s error=%s",
                request.url.path,
                exc.status_code,
                exc.message,
                exc_info=exc,
            )
        else:
            logger.info("request_rejected path=%s status=%s reason=%s", request.url.path, exc.status_code, exc.message)
        return error_response(request, exc.status_code, exc.message, exc.data)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = jsonable_encoder(exc.errors(), exclude={"input", "ctx", "url"})
        in_query = all((e.get("loc") or ["query"])[0] == "query" for e in errors)
        message = "Invalid query parameters." if in_query else "Invalid request body."
        logger.info("request_invalid path=%s errors=%s", request.url.path, len(errors))
        return error_response(request, 400, message, errors)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        return unexpected_error_response(request, exc)


def unexpected_error_response(request: Request, exc: Exception):
    logger.error(
        "request_crashed path=%s error=%s",
        request.url.path,
        type(exc).__name__,
        exc_info=exc,
    )
    return error_response(request, 500, "Internal Server Error.")


def _register_request_log_hook(app: FastAPI) -> None:
    @app.middleware("http")
    async def request_log_hook(request: Request, call_next):
        recorder: RequestLogRecorder | None = request.app.state.request_log_recorder
        started = time.perf_counter()
        metadata = await recorder.collect_metadata(request) if recorder is not None else None

        try:
            response = await call_next(request)
        except Exception as exc:
            response = unexpected_error_response(request, exc)

        if recorder is None:
            return response

        call = CompletedCall(
            metadata=metadata,
            endpoint_name=endpoint_name(request),
            status_code=response.status_code,
            response_payload=getattr(request.state, "response_payload", None),
            elapsed_s=time.perf_counter() - started,
        )
        # Runs after the response has been sent.
        response.background = BackgroundTask(recorder.record, call)
        return response


def create_app(settings: Settings | None = None, store: RangeStore | None = None) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    app = FastAPI(title="Earthquake Data API", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = None
    app.state.request_log_recorder = None

    token_service = TokenService.from_settings(settings)
    app.state.token_service = token_service
    app.state.auth_service = AuthService(settings, token_service)
    if store is not None:
        _wire_store(app, store)

    _register_error_handlers(app)
    _register_request_log_hook(app)

    app.include_router(auth_router.router, tags=["auth"])
    app.include_router(earthquakes_router.router, tags=["earthquakes"])
    app.include_router(stats_router.router, tags=["statistics"])

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    return app


app = create_app()
