"""
FastAPI application entry point for the Funnel Sentinel API.

Configures logging and CORS, registers the alert and issue routers, and
starts the ASGI server when run directly.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from funnel_sentinel import __version__
from funnel_sentinel.api import api_router
from funnel_sentinel.core.config import get_settings
from funnel_sentinel.services.detectors import registered_detectors

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Log startup with the registered detector catalog, and shutdown.
    """
    logger.info(f"Funnel Sentinel API starting with detectors: {registered_detectors()}")
    yield
    logger.info("Funnel Sentinel API shutting down")


app = FastAPI(
    title="Funnel Sentinel API",
    version=__version__,
    description=(
        "Threshold-based anomaly detection and issue lifecycle tracking "
        "for loan-funnel lead data."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring and load balancer probes.

    Returns:
        Dict with status 'healthy'
    """
    return {"status": "healthy"}


@app.get("/")
async def root():
    """
    Root endpoint providing API information.
    """
    return {
        "name": "Funnel Sentinel API",
        "version": __version__,
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


# Run with uvicorn when executed directly
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "funnel_sentinel.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
