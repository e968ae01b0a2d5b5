"""FastAPI application for the public-contracts person and office linker.

Registers the persons, companies, organizations and names routers under
``/api`` and closes the office feed client on shutdown.
"""

# Load environment variables before any other imports
from dotenv import load_dotenv

load_dotenv()

import logging
import os
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from contractes.config import LOG_LEVEL

# Configure logging
logging.basicConfig(level=getattr(logging, LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)

# API version and metadata
API_VERSION = "0.1.0"
API_TITLE = "Contractes Linker API"
API_DESCRIPTION = """
Links people named in public-procurement data to the corporate registry
and to the public offices they hold or held.

This API provides endpoints for:
- Searching registry identities and resolving their company roles
- Listing the administration history of a company
- Listing the current office holders of a public body
- Reconstructing tenure periods from appointment records
"""


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Logs which backing stores are configured on startup and closes the
    office feed HTTP client on shutdown.

    Args:
        app: The FastAPI application instance.

    Yields:
        None after startup is complete.
    """
    from contractes.services.office_service import get_office_service
    from contractes.services.registry_service import get_registry_service

    registry = get_registry_service()
    logger.info(f"Registry store configured: {registry.is_configured}")
    logger.info("Application startup complete")

    yield

    logger.info("Shutting down application...")
    await get_office_service().close()
    logger.info("Office feed client closed")


app = FastAPI(
    title=API_TITLE,
    description=API_DESCRIPTION,
    version=API_VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


# Can be overridden via CORS_ORIGINS environment variable (comma-separated list)
_default_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]

_cors_origins_env = os.getenv("CORS_ORIGINS", "")
if _cors_origins_env:
    ALLOWED_ORIGINS = [
        origin.strip() for origin in _cors_origins_env.split(",") if origin.strip()
    ]
else:
    ALLOWED_ORIGINS = _default_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=False,
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["Content-Type", "Accept", "Origin"],
)


@app.get("/", tags=["Root"])
async def root() -> dict[str, Any]:
    """Root endpoint returning API information."""
    return {
        "name": API_TITLE,
        "version": API_VERSION,
        "docs": {
            "swagger": "/docs",
            "redoc": "/redoc",
            "openapi": "/openapi.json",
        },
        "status": "operational",
    }


@app.get("/health", tags=["Health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint for monitoring and load balancers."""
    return {"status": "healthy"}


# Router registration
from contractes.routers import companies, names, organizations, persons

app.include_router(persons.router, prefix="/api", tags=["persons"])
app.include_router(companies.router, prefix="/api", tags=["companies"])
app.include_router(organizations.router, prefix="/api", tags=["organizations"])
app.include_router(names.router, prefix="/api", tags=["names"])
