"""
Tool Catalog - FastAPI Backend
Main application entry point with health check and API routing.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from sqlalchemy.exc import SQLAlchemyError

from config import settings, validate_security_settings
from database import engine, Base
import models  # noqa: F401
from routers import (
    health,
    catalog,
    bookmarks,
    moderation,
)
from services.errors import DependencyFailureError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting Tool Catalog API...")
    validate_security_settings()
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    if not settings.SMTP_HOST or not settings.ADMIN_EMAIL:
        print("⚠️ SMTP_HOST or ADMIN_EMAIL missing; moderation emails will not be delivered.")
    yield
    # Shutdown
    await engine.dispose()
    print("👋 Shutting down API...")


app = FastAPI(
    title="Tool Catalog API",
    description="Browse, bookmark and submit AI tools and news",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SQLAlchemyError)
async def store_failure_handler(request: Request, exc: SQLAlchemyError):
    logger.error("store_failure path=%s error=%s", request.url.path, exc)
    return JSONResponse(
        status_code=503,
        content={"detail": DependencyFailureError.GENERIC_DETAIL},
    )


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(catalog.router, tags=["Catalog"])
app.include_router(bookmarks.router, tags=["Bookmarks"])
app.include_router(moderation.router, tags=["Moderation"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Tool Catalog API",
        "version": "0.1.0",
        "status": "running"
    }
