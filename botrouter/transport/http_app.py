# botrouter/transport/http_app.py
"""
HTTP surface of the router.

Public:
  GET  /health              - liveness
  POST /gateway/messages    - inbound messages pushed by the gateway
Admin (Bearer ADMIN_TOKEN):
  POST /admin/contexts/cleanup - reap expired contexts now
  GET  /admin/stats            - processor, handler, command and metric stats
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from botrouter.config import Settings, settings as default_settings, validate_or_warn
from botrouter.core.assembly import build_processor
from botrouter.core.errors import RouterError
from botrouter.core.ports import CanSendMessage, ContextStore, UserDirectory, WatermarkSnapshotStore
from botrouter.core.processor import MessageProcessor
from botrouter.infra.context_scheduler import ContextCleanupScheduler
from botrouter.infra.logging_config import get_logger, setup_logging
from botrouter.infra.metrics import get_metrics_collector
from botrouter.infra.watermark_file_store import WatermarkFileStore
from botrouter.transport.schemas import ClassifyOut, CleanupOut, InboundMessageIn, ProcessOut
from botrouter.transport.security import require_admin_auth

logger = get_logger(__name__)


def get_processor(request: Request) -> MessageProcessor:
    """Get processor from app state"""
    return request.app.state.processor


async def _build_collaborators(
    s: Settings,
) -> tuple[UserDirectory, Optional[ContextStore], bool]:
    """User directory + context store for the configured backend. Returns (users, contexts, uses_pool)."""
    if s.database_url:
        from botrouter.infra.db_async import init_pool
        from botrouter.infra.pg_context_store_async import AsyncPostgresContextStore
        from botrouter.infra.pg_user_directory_async import AsyncPostgresUserDirectory

        await init_pool(s.database_url, s.pg_pool_min, s.pg_pool_max)
        return AsyncPostgresUserDirectory(), AsyncPostgresContextStore(), True

    from botrouter.infra.memory_stores import InMemoryContextStore, InMemoryUserDirectory
    logger.warning("DATABASE_URL not set: using in-memory user directory and context store")
    return InMemoryUserDirectory(), InMemoryContextStore(), False


def create_app(
    app_settings: Settings | None = None,
    *,
    users: UserDirectory | None = None,
    gateway: CanSendMessage | None = None,
    watermark_store: WatermarkSnapshotStore | None = None,
    context_store: ContextStore | None = None,
    start_scheduler: bool = True,
) -> FastAPI:
    """
    Build the FastAPI application.

    Collaborators can be injected (tests); anything left as None is built
    from settings during startup.
    """
    s = app_settings or default_settings

    @asynccontextmanager
    async def lifespan(fastapi_app: FastAPI):
        setup_logging(level=s.log_level, use_json=s.is_production)
        logger.info(f"Starting botrouter: env={s.app_env}, plugins={s.plugin_list}")
        validate_or_warn(s)

        uses_pool = False
        directory, contexts_store = users, context_store
        if directory is None:
            directory, built_store, uses_pool = await _build_collaborators(s)
            if contexts_store is None:
                contexts_store = built_store

        sender = gateway
        if sender is None:
            from botrouter.transport.gateway_client import GatewayClient
            sender = GatewayClient(s.gateway_url, s.gateway_token, s.gateway_timeout_seconds)

        processor = build_processor(
            s,
            users=directory,
            gateway=sender,
            watermark_store=(
                watermark_store if watermark_store is not None else WatermarkFileStore(s.watermark_state_file)
            ),
            context_store=contexts_store,
        )
        # Aborts startup with DirectoryUnavailable if the directory is down
        await processor.initialize()
        fastapi_app.state.processor = processor

        scheduler = ContextCleanupScheduler(
            processor.cleanup_expired,
            interval_seconds=s.context_cleanup_interval_seconds,
        )
        if start_scheduler:
            await scheduler.start()
        fastapi_app.state.scheduler = scheduler

        logger.info("Application startup complete")

        yield

        logger.info("Shutting down application")
        await scheduler.stop()
        await processor.shutdown()

        from botrouter.infra.http_client import close_all_sessions
        await close_all_sessions()

        if uses_pool:
            from botrouter.infra.db_async import close_pool
            await close_pool()
        logger.info("Application shutdown complete")

    fastapi_app = FastAPI(
        title="botrouter",
        description="Inbound chat message router",
        version="1.0.0",
        lifespan=lifespan,
        docs_url=None if s.is_production else "/docs",
        redoc_url=None if s.is_production else "/redoc",
        openapi_url=None if s.is_production else "/openapi.json",
    )
    fastapi_app.state.settings = s

    @fastapi_app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        if exc.status_code >= 500:
            logger.error(f"Server error: {exc.detail}", extra={"status_code": exc.status_code})
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )

    @fastapi_app.exception_handler(RouterError)
    async def router_error_handler(request: Request, exc: RouterError):
        logger.error(f"Routing error: {exc.__class__.__name__}: {exc.detail}")
        return JSONResponse(
            status_code=500,
            content={"error": exc.__class__.__name__, "detail": None if s.is_production else exc.detail},
        )

    @fastapi_app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc.__class__.__name__}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error" if s.is_production else str(exc)},
        )

    # ------------------------------------------------------------------
    # PUBLIC
    # ------------------------------------------------------------------

    @fastapi_app.get("/health")
    def health():
        return {"status": "healthy"}

    @fastapi_app.post("/gateway/messages", response_model=ProcessOut)
    async def gateway_message(
        payload: InboundMessageIn,
        processor: MessageProcessor = Depends(get_processor),
    ):
        result = await processor.process_message(payload.to_message())
        return ProcessOut.from_result(result)

    # ------------------------------------------------------------------
    # ADMIN
    # ------------------------------------------------------------------

    @fastapi_app.post(
        "/admin/contexts/cleanup",
        response_model=CleanupOut,
        dependencies=[Depends(require_admin_auth)],
    )
    async def admin_cleanup(processor: MessageProcessor = Depends(get_processor)):
        expired = await processor.cleanup_expired()
        logger.info(f"Manual context cleanup: expired={expired}")
        return CleanupOut(expired=expired)

    @fastapi_app.get("/admin/stats", dependencies=[Depends(require_admin_auth)])
    async def admin_stats(processor: MessageProcessor = Depends(get_processor)):
        stats = processor.stats()
        stats["metrics"] = get_metrics_collector().get_metrics()
        return stats

    @fastapi_app.get(
        "/admin/classify",
        response_model=ClassifyOut,
        dependencies=[Depends(require_admin_auth)],
    )
    async def admin_classify(
        text: str = Query(..., max_length=4096),
        processor: MessageProcessor = Depends(get_processor),
    ):
        """Show how a text would be classified, with every family that matched."""
        return ClassifyOut.from_detailed(processor.classifier.classify_detailed(text))

    return fastapi_app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "botrouter.transport.http_app:app",
        host="0.0.0.0",
        port=8080,
        reload=not default_settings.is_production,
        log_level=default_settings.log_level.lower(),
        access_log=not default_settings.is_production,
    )
