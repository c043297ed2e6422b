"""Service wiring for the agentmarket backend.

One commerce store, worker directory, payment backend and webhook dispatcher
per process; the job and wallet services are built on top of them. Routes
receive services through the ``Jobs`` / ``Wallets`` / ``Workers`` /
``Dispatcher`` dependency aliases, which tests replace with
``app.dependency_overrides``.
"""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from agentmarket.commerce.jobs.service import JobService
from agentmarket.commerce.payments import InMemoryPaymentBackend
from agentmarket.commerce.storage import InMemoryCommerceStore, SQLiteCommerceStore
from agentmarket.commerce.storage.base import CommerceStore
from agentmarket.commerce.wallet.service import WalletService
from agentmarket.commerce.workers import InMemoryWorkerDirectory
from agentmarket.webhooks.dispatcher import WebhookDispatcher

from .config import get_settings


@lru_cache
def get_store() -> CommerceStore:
    """Get the process-wide commerce store."""
    settings = get_settings()
    if settings.database_path:
        return SQLiteCommerceStore(settings.database_path)
    return InMemoryCommerceStore()


@lru_cache
def get_worker_directory() -> InMemoryWorkerDirectory:
    return InMemoryWorkerDirectory()


@lru_cache
def get_webhook_dispatcher() -> WebhookDispatcher:
    return WebhookDispatcher(timeout=get_settings().dispatch_timeout_seconds)


@lru_cache
def get_payment_backend() -> InMemoryPaymentBackend:
    return InMemoryPaymentBackend()


def get_job_service() -> JobService:
    """FastAPI dependency for the job service."""
    return JobService(
        get_store(),
        get_worker_directory(),
        get_payment_backend(),
        get_settings().commerce_config(),
        dispatcher=get_webhook_dispatcher(),
    )


def get_wallet_service() -> WalletService:
    """FastAPI dependency for the wallet service."""
    return WalletService(get_store(), get_settings().commerce_config())


# Type aliases for dependency injection
Jobs = Annotated[JobService, Depends(get_job_service)]
Wallets = Annotated[WalletService, Depends(get_wallet_service)]
Workers = Annotated[InMemoryWorkerDirectory, Depends(get_worker_directory)]
Dispatcher = Annotated[WebhookDispatcher, Depends(get_webhook_dispatcher)]
