"""
FastAPI application factory and entry point.

This module creates and configures the FastAPI application:
  1. Logging — JSON lines on the `bankcore` logger
  2. Lifespan manager — handles startup/shutdown (DB table creation, cleanup)
  3. CORS middleware — allows frontend origins to make cross-origin requests
  4. Exception handlers — maps domain errors to HTTP responses
  5. Router registration — mounts all API endpoint groups

Running locally:
    uvicorn bankcore.main:app --reload
"""

from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.engine import make_url

from bankcore.config import settings
from bankcore.database import engine, Base
from bankcore.exceptions import register_exception_handlers
from bankcore.logging_config import setup_logging
from bankcore.routers import (
    accounts,
    admin,
    auth,
    cards,
    movements,
    notifications,
    statements,
    verification,
)

# Register every table on Base.metadata before create_all runs
import bankcore.models  # noqa: F401


setup_logging(settings.LOG_LEVEL, json_output=settings.LOG_JSON)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup:
      Creates the SQLite data directory if needed, then all database tables
      if they don't exist. In production, use migrations instead.

    Shutdown:
      Disposes of the database engine, closing all connections cleanly.
    """
    # --- Startup ---
    url = make_url(settings.DATABASE_URL)
    if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    # --- Shutdown ---
    await engine.dispose()


# Create the FastAPI application instance
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Banking core: idempotent money movements, read views and operator alerts",
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

# CORS: Allow specified frontend origins to make requests.
# In production, lock this down to your actual frontend domain(s).
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------

register_exception_handlers(app)

# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(auth.router, prefix="/auth", tags=["Authentication"])
app.include_router(accounts.router, prefix="/accounts", tags=["Accounts"])
app.include_router(statements.router, prefix="/accounts", tags=["Statements"])
app.include_router(movements.router, prefix="/movements", tags=["Movements"])
app.include_router(cards.router, prefix="/cards", tags=["Cards"])
app.include_router(verification.router, prefix="/verification", tags=["Verification"])
app.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])
app.include_router(admin.router, prefix="/admin", tags=["Admin"])


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for load balancers."""
    return {"status": "ok", "version": settings.APP_VERSION}
