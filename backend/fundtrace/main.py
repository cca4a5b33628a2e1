"""FastAPI application for fundtrace"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fundtrace.config import settings
from fundtrace.services.address_directory import get_directory
from fundtrace.services.ledger_db import close_ledger_database
from fundtrace.services.transaction_source import close_remote_source, get_remote_source
from fundtrace.api import address, patterns, trace


def configure_logging() -> int:
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("fundtrace").setLevel(log_level)
    return log_level


configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for startup/shutdown"""
    # Startup
    logger.info("Starting fundtrace backend...")
    directory = get_directory()
    logger.info(
        "Address directory loaded: %d exchange accounts, %d seeds",
        len(directory.exchanges),
        len(directory.seed_addresses),
    )
    await get_remote_source()
    logger.info("Transaction source initialized")

    yield

    # Shutdown
    logger.info("Shutting down fundtrace backend...")
    await close_remote_source()
    close_ledger_database()


# Create FastAPI app
app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description="ICP ledger fund tracing and pattern detection API",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(trace.router, prefix="/api/trace", tags=["Trace"])
app.include_router(patterns.router, prefix="/api/patterns", tags=["Patterns"])
app.include_router(address.router, prefix="/api/address", tags=["Address"])


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "name": "fundtrace API",
        "version": settings.api_version,
        "status": "running",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        log_level=settings.log_level.lower(),
        access_log=True,
    )
