"""API routes."""

from .jobs import router as jobs_router
from .maintenance import router as maintenance_router
from .wallets import router as wallets_router
from .workers import router as workers_router

__all__ = [
    "jobs_router",
    "wallets_router",
    "workers_router",
    "maintenance_router",
]
