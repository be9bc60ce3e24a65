"""FastAPI application entry point."""

from fastapi import FastAPI
from sqlalchemy import text

from fieldops.core.config import settings
from fieldops.db.session import engine

app = FastAPI(
    title="Fieldops API",
    description="Job store, booking capacity and sales autopilot",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
)

# ============================================================================
# Routers
# ============================================================================

from fieldops.routers import booking, internal, jobs  # noqa: E402

app.include_router(booking.router)
app.include_router(jobs.router)
# Internal endpoints (scheduler ticks - protected by INTERNAL_SECRET)
app.include_router(internal.router)


@app.get("/health")
def health() -> dict:
    return {"status": "ok", "version": settings.VERSION}


@app.get("/health/db")
def health_db() -> dict:
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {"status": "ok"}
