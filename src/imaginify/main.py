from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from imaginify.api.users import router as users_router
from imaginify.api.webhooks import router as webhooks_router
from imaginify.config import settings
from imaginify.database import connection_manager
from imaginify.errors import LedgerError

# Configure structlog
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        (
            structlog.dev.ConsoleRenderer()
            if settings.APP_ENV == "development"
            else structlog.processors.JSONRenderer()
        ),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(0),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    log.info("starting_up", env=settings.APP_ENV)
    try:
        await connection_manager.get_connection()
    except LedgerError as e:
        # Requests retry the connection lazily; a missing URL fails them fast.
        log.warning("store_unavailable_at_startup", error=e.detail)

    yield

    # Shutdown
    log.info("shutting_down")
    await connection_manager.dispose()


app = FastAPI(
    title="Imaginify Ledger",
    lifespan=lifespan,
)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    """Translate typed ledger failures into JSON error responses."""
    if exc.status_code >= 500:
        log.error("request_failed", path=request.url.path, error=exc.kind, detail=exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "error": exc.kind},
    )


app.include_router(users_router)
app.include_router(webhooks_router)


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
