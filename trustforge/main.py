import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from trustforge.api import endpoints
from trustforge.core.config import settings
from trustforge.core.errors import (
    InfrastructureError,
    InvalidStateTransition,
    JobNotFound,
    TrustForgeError,
    ValidationError,
)
from trustforge.core.limiter import limiter
from trustforge.core.logging_config import configure_logging
from trustforge.db import close_async_db, init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    try:
        init_db()
    except Exception as e:
        logger.error(f"DATABASE INIT FAILED: {e}")
    yield
    await close_async_db()


app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

# Rate Limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

_cors_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
if settings.DATABASE_URL and any("localhost" in o for o in _cors_origins):
    logger.warning(
        "CORS allows localhost origins while DATABASE_URL is set (production?). "
        "Set CORS_ORIGINS env var to restrict origins in production."
    )

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─── Error Mapping ───────────────────────────────────────────────────────────
# Messages are logged; clients get a fixed description per class.
_ERROR_RESPONSES = (
    (ValidationError, 400, None),
    (InvalidStateTransition, 400, "Operation not allowed in the scan's current state"),
    (JobNotFound, 404, "Scan not found"),
    (InfrastructureError, 503, "Service temporarily unavailable"),
)


@app.exception_handler(TrustForgeError)
async def trustforge_error_handler(request: Request, exc: TrustForgeError):
    for error_cls, status_code, detail in _ERROR_RESPONSES:
        if isinstance(exc, error_cls):
            logger.warning(f"{request.method} {request.url.path} -> {status_code}: {exc}")
            # Validation messages describe the caller's own input and are safe to echo.
            return JSONResponse(status_code=status_code, content={"detail": detail or str(exc)})
    logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app.include_router(endpoints.router, prefix="/api", tags=["scans"])


@app.get("/health")
def health_check():
    return {"status": "healthy", "project": settings.PROJECT_NAME}
