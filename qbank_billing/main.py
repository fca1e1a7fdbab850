"""
FastAPI application entrypoint.

Lifespan:
  • On startup: verify DB connectivity.
  • On shutdown: dispose the engine cleanly.

Routers:
  • /ai-analysis — metered AI analysis, usage summary, model catalogue
  • /health      — shallow liveness probe

Every failure leaves the API as `{"error": "<message>"}` with a non-2xx
status; the handlers below own that mapping.
"""

import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from qbank_billing.auth.errors import AuthenticationError
from qbank_billing.core.config import settings
from qbank_billing.core.database import engine
from qbank_billing.routers.ai_analysis import router as ai_analysis_router
from qbank_billing.services.errors import (
    BillingError,
    GenerationBackendError,
    InsufficientFunds,
    PersistenceError,
    ProfileNotFound,
    TrialLimitReached,
)

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)

# Status code per billing failure; anything unlisted is a 400
_BILLING_STATUS: dict[type[BillingError], int] = {
    ProfileNotFound: status.HTTP_404_NOT_FOUND,
    TrialLimitReached: status.HTTP_402_PAYMENT_REQUIRED,
    InsufficientFunds: status.HTTP_402_PAYMENT_REQUIRED,
    GenerationBackendError: status.HTTP_502_BAD_GATEWAY,
    PersistenceError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


# ── Lifespan ────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Startup / shutdown lifecycle."""

    # Startup: verify DB is reachable
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("Database connection verified ✓")
    except Exception:
        logger.warning(
            "Could not reach the database on startup. "
            "The app will start, but requests will fail until the DB is available."
        )

    yield  # ← application runs here

    # Shutdown: clean up connection pool
    await engine.dispose()
    logger.info("Database engine disposed ✓")


# ── App ─────────────────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    version="0.1.0",
    description=(
        "AI analysis metering & billing for the question bank — "
        "entitlements, shared analysis cache, per-user wallet."
    ),
    lifespan=lifespan,
)

# Mount routers
app.include_router(ai_analysis_router, prefix="/ai-analysis")


# ── Error handlers ──────────────────────────────────────────
def _error(status_code: int, message: str, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message}, headers=headers)


@app.exception_handler(AuthenticationError)
async def authentication_error_handler(_request: Request, exc: AuthenticationError) -> JSONResponse:
    # Same message for every auth failure; the reason is logged, not returned
    logger.info("Authentication failed: %s", exc)
    return _error(
        status.HTTP_401_UNAUTHORIZED,
        "Invalid or missing API key.",
        headers={"WWW-Authenticate": "Bearer"},
    )


@app.exception_handler(BillingError)
async def billing_error_handler(_request: Request, exc: BillingError) -> JSONResponse:
    status_code = _BILLING_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
    return _error(status_code, str(exc))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    return _error(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        f"{location}: {message}" if location else message,
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


# ── Health check ────────────────────────────────────────────
@app.get(
    "/health",
    tags=["System"],
    summary="Liveness probe",
)
async def health_check() -> dict[str, str]:
    """Shallow health check — confirms the process is alive."""
    return {"status": "healthy"}
