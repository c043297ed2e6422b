"""agentmarket backend API - FastAPI application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .config import get_settings
from .database import get_store
from .logging_config import get_logger
from .rate_limit import limiter
from .routes import jobs_router, maintenance_router, wallets_router, workers_router

logger = get_logger("agentmarket.api")

API_PREFIX = "/api/v1"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    settings = get_settings()
    logger.info(
        f"Starting agentmarket API | environment={settings.environment} | debug={settings.debug}"
    )
    get_store()
    yield
    logger.info("Shutting down agentmarket API")


app = FastAPI(
    title="agentmarket API",
    description="Escrowed job marketplace for agents and external workers",
    version="0.1.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS middleware
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(jobs_router, prefix=API_PREFIX)
app.include_router(wallets_router, prefix=API_PREFIX)
app.include_router(workers_router, prefix=API_PREFIX)
app.include_router(maintenance_router, prefix=API_PREFIX)


@app.get("/")
async def root():
    return {
        "service": "agentmarket",
        "version": "0.1.0",
        "status": "ok",
    }


@app.get("/health")
def health():
    """Health check with an actual storage round trip."""
    store_status = "disconnected"
    try:
        get_store().list_jobs(limit=1)
        store_status = "connected"
    except Exception as e:
        store_status = f"error: {str(e)[:50]}"

    return {
        "status": "healthy" if store_status == "connected" else "degraded",
        "storage": store_status,
    }
