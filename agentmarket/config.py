"""Commerce configuration for agentmarket.

Settings are plain dataclass fields so services can be built directly in
tests. ``CommerceConfig.from_env()`` reads ``AGENTMARKET_*`` variables for
local runs and the CLI.
"""

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

VALID_ENVIRONMENTS = ("development", "test", "production")


def _env_bool(name: str) -> Optional[bool]:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return None
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class CommerceConfig:
    """Configuration for jobs, escrow and webhook handling.

    Attributes:
        platform_fee_percent: Percentage of each escrow kept by the platform.
            Applied once at lock time; later changes never touch locked escrows.
        environment: Deployment environment name.
        require_webhook_secret: Refuse dispatch to, and delivery from, workers
            without a shared secret. Defaults to True only in production.
        webhook_max_age_seconds: Oldest webhook timestamp accepted.
        webhook_future_skew_seconds: How far in the future a timestamp may be.
        dispatch_timeout_seconds: Timeout for the outbound worker POST.
        payment_timeout_seconds: Timeout handed to the payment backend for payouts.
            Kept below the SQLite busy timeout (5s), since the transfer runs
            while the release unit holds the write lock.
        timeout_multiplier: Job deadline is this many times the worker's p90.
        callback_base_url: Public base URL used to build delivery callbacks.
        low_balance_threshold: Wallet balance below which an alert is raised.
        max_for_each_items: Upper bound on items a skill ``for_each`` may visit.
        max_for_each_depth: Upper bound on ``for_each`` nesting.
    """

    platform_fee_percent: Decimal = Decimal("10")
    environment: str = "development"
    require_webhook_secret: Optional[bool] = None
    webhook_max_age_seconds: int = 300
    webhook_future_skew_seconds: int = 30
    dispatch_timeout_seconds: float = 10.0
    payment_timeout_seconds: float = 4.0
    timeout_multiplier: int = 2
    callback_base_url: str = "http://localhost:8000"
    low_balance_threshold: Decimal = Decimal("20")
    max_for_each_items: int = 1000
    max_for_each_depth: int = 4

    def __post_init__(self):
        self.platform_fee_percent = Decimal(str(self.platform_fee_percent))
        self.low_balance_threshold = Decimal(str(self.low_balance_threshold))

        if self.platform_fee_percent < 0 or self.platform_fee_percent >= 100:
            raise ValueError("Platform fee percent must be in [0, 100)")
        if self.environment not in VALID_ENVIRONMENTS:
            raise ValueError(
                f"Invalid environment: {self.environment}. Must be one of {VALID_ENVIRONMENTS}"
            )
        if self.webhook_max_age_seconds <= 0:
            raise ValueError("Webhook max age must be positive")
        if self.webhook_future_skew_seconds < 0:
            raise ValueError("Webhook future skew cannot be negative")
        if self.dispatch_timeout_seconds <= 0:
            raise ValueError("Dispatch timeout must be positive")
        if self.payment_timeout_seconds <= 0:
            raise ValueError("Payment timeout must be positive")
        if self.timeout_multiplier < 1:
            raise ValueError("Timeout multiplier must be at least 1")
        if self.max_for_each_items < 1 or self.max_for_each_depth < 1:
            raise ValueError("for_each bounds must be positive")

        if self.require_webhook_secret is None:
            self.require_webhook_secret = self.is_production
        self.callback_base_url = self.callback_base_url.rstrip("/")

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def callback_url(self, job_id: str) -> str:
        """Delivery callback URL handed to the worker for ``job_id``."""
        return f"{self.callback_base_url}/api/v1/jobs/{job_id}/deliver"

    @classmethod
    def from_env(cls) -> "CommerceConfig":
        """Build a config from ``AGENTMARKET_*`` environment variables."""
        kwargs = {}

        fee = os.environ.get("AGENTMARKET_PLATFORM_FEE_PERCENT")
        if fee:
            try:
                kwargs["platform_fee_percent"] = Decimal(fee)
            except InvalidOperation:
                raise ValueError(f"Invalid AGENTMARKET_PLATFORM_FEE_PERCENT: {fee!r}")

        env = os.environ.get("AGENTMARKET_ENV")
        if env:
            kwargs["environment"] = env.strip().lower()

        require_secret = _env_bool("AGENTMARKET_REQUIRE_WEBHOOK_SECRET")
        if require_secret is not None:
            kwargs["require_webhook_secret"] = require_secret

        timeout = os.environ.get("AGENTMARKET_DISPATCH_TIMEOUT")
        if timeout:
            kwargs["dispatch_timeout_seconds"] = float(timeout)

        payment_timeout = os.environ.get("AGENTMARKET_PAYMENT_TIMEOUT")
        if payment_timeout:
            kwargs["payment_timeout_seconds"] = float(payment_timeout)

        callback = os.environ.get("AGENTMARKET_CALLBACK_BASE_URL")
        if callback:
            kwargs["callback_base_url"] = callback

        low_balance = os.environ.get("AGENTMARKET_MIN_BALANCE_ALERT")
        if low_balance:
            kwargs["low_balance_threshold"] = Decimal(low_balance)

        return cls(**kwargs)
