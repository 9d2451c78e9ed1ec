"""
Touchline — ecommerce revenue attribution.
Main application entry point.
"""

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.attribution import router as attribution_router
from app.api.collect import router as collect_router
from app.api.settings import router as settings_router
from app.api.webhooks import router as webhooks_router
from app.middleware.security import SecurityHeadersMiddleware
from app.models.database import get_db
from app.config import get_settings

import structlog

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.dev.ConsoleRenderer() if get_settings().debug else structlog.processors.JSONRenderer(),
    ],
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info(
        "touchline_starting",
        attribution_window_days=settings.attribution_window_days,
        default_model=settings.default_attribution_model,
    )
    yield
    logger.info("touchline_shutting_down")


app = FastAPI(
    title="Touchline",
    description="Ecommerce revenue attribution — touchpoints to orders.",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if get_settings().debug else None,
    redoc_url="/redoc" if get_settings().debug else None,
    openapi_url="/openapi.json" if get_settings().debug else None,
)

app.add_middleware(SecurityHeadersMiddleware)

# The tracker posts cross-origin from the storefront; an empty allowlist means any origin
ALLOWED_ORIGINS = get_settings().allowed_origins or ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=ALLOWED_ORIGINS != ["*"],
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["X-API-Key", "Content-Type"],
)

# --- Routes ---
app.include_router(collect_router)
app.include_router(webhooks_router)
app.include_router(attribution_router)
app.include_router(settings_router)


@app.get("/health")
async def health(db: AsyncSession = Depends(get_db)):
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("health_database_unreachable", error=str(e))
        return JSONResponse(
            status_code=503,
            content={"status": "error", "service": "touchline", "database": "disconnected"},
        )
    return {"status": "ok", "service": "touchline", "database": "connected"}
