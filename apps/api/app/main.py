"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from app.core.config import settings
from app.core.exceptions import AppError
from app.core.redis_client import close_async_redis_client
from app.core.structured_logging import configure_logging
from app.core.websocket import ConversationEventHub
from app.db.session import engine

configure_logging()
logger = logging.getLogger(__name__)

# ============================================================================
# Sentry Integration (optional, for production error tracking)
# ============================================================================

if settings.SENTRY_DSN and settings.ENV != "dev":
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=0.1,  # 10% of requests for performance monitoring
        send_default_pii=False,  # Message bodies must never reach Sentry
    )
    logger.info("Sentry initialized for error tracking")

# ============================================================================
# Rate Limiting
# ============================================================================

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from app.core.rate_limit import limiter


# ============================================================================
# Lifespan
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    hub = ConversationEventHub()
    await hub.start()
    app.state.event_hub = hub
    logger.info("Event hub started (instance %s)", hub.instance_id)
    try:
        yield
    finally:
        await hub.stop()
        await close_async_redis_client()


# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="Messaging API",
    description="Multilingual case messaging between workers and managers",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
    lifespan=lifespan,
)

# Add rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


# CORS middleware - must be added before routers
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,  # Required for cookies
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
)

# ============================================================================
# Routers
# ============================================================================

from app.routers import (
    broadcast,
    compliance,
    consultations,
    conversations,
    groups,
    organizations,
    usage_logs,
    users,
    websocket as ws_router,
)

app.include_router(conversations.router, prefix="/conversations", tags=["conversations"])
app.include_router(consultations.router, prefix="/consultations", tags=["consultations"])
app.include_router(broadcast.router, prefix="/broadcast", tags=["broadcast"])
app.include_router(groups.router, prefix="/groups", tags=["groups"])
app.include_router(organizations.router, prefix="/organizations", tags=["organizations"])
app.include_router(users.router, prefix="/users", tags=["users"])
app.include_router(compliance.router)  # Router already has prefix="/compliance"
app.include_router(usage_logs.router, tags=["logs"])
app.include_router(ws_router.router)


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
def health():
    """
    Health check endpoint.

    Verifies database connectivity and returns environment info.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}
