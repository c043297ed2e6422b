"""Logging setup for agentmarket.

Two sinks:
- ``local-YYYY-MM-DD.log``: the regular ``agentmarket`` logger output.
- ``commerce-events-YYYY-MM-DD.log``: one line per money- or trust-relevant
  event (job transitions, escrow movements, rejected webhooks, rollbacks),
  kept separately so it can be grepped during reconciliation.
"""

import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_event_lock = threading.Lock()


def get_data_dir() -> Path:
    """Return the agentmarket data directory (``$AGENTMARKET_DATA_DIR`` or ~/.agentmarket)."""
    raw = os.environ.get("AGENTMARKET_DATA_DIR")
    if raw:
        return Path(raw).expanduser()
    return Path.home() / ".agentmarket"


def get_log_dir() -> Path:
    return get_data_dir() / "logs"


def _today() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


def setup_agentmarket_logging(level: str = "INFO", log_dir: Optional[Path] = None) -> logging.Logger:
    """Configure the ``agentmarket`` logger with a dated file handler.

    Args:
        level: Logging level name (case-insensitive). Unknown names fall back to INFO.
        log_dir: Directory for log files. Defaults to ``<data dir>/logs``.

    Returns:
        The configured ``agentmarket`` logger. Calling this twice does not
        add duplicate handlers.
    """
    logger = logging.getLogger("agentmarket")

    numeric_level = getattr(logging, str(level).upper(), None)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
    logger.setLevel(numeric_level)

    target_dir = Path(log_dir) if log_dir else get_log_dir()
    target_dir.mkdir(parents=True, exist_ok=True)
    log_file = target_dir / f"local-{_today()}.log"

    formatter = logging.Formatter(LOG_FORMAT)

    has_file = any(
        isinstance(h, logging.FileHandler) and Path(h.baseFilename) == log_file.resolve()
        for h in logger.handlers
    )
    if not has_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if numeric_level <= logging.DEBUG:
        has_console = any(
            isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
            for h in logger.handlers
        )
        if not has_console:
            console = logging.StreamHandler()
            console.setFormatter(formatter)
            logger.addHandler(console)

    return logger


def log_commerce_event(event_type: str, details: str, log_dir: Optional[Path] = None) -> None:
    """Append one line to the commerce event log.

    Format: ``<iso timestamp> | <event_type> | <details>``
    """
    target_dir = Path(log_dir) if log_dir else get_log_dir()
    target_dir.mkdir(parents=True, exist_ok=True)
    event_file = target_dir / f"commerce-events-{_today()}.log"
    line = f"{datetime.now(timezone.utc).isoformat()} | {event_type} | {details}\n"
    with _event_lock:
        with open(event_file, "a", encoding="utf-8") as f:
            f.write(line)


def log_job_transition(
    job_id: str, from_status: Optional[str], to_status: str, actor_id: Optional[str] = None
) -> None:
    log_commerce_event(
        "job",
        f"job={job_id} | {from_status or '-'} -> {to_status} | actor={actor_id or 'system'}",
    )


def log_escrow_event(job_id: str, action: str, amount, reference: Optional[str] = None) -> None:
    """Record an escrow lock/release/refund with the amount moved."""
    details = f"job={job_id} | action={action} | amount={amount}"
    if reference:
        details += f" | ref={reference}"
    log_commerce_event("escrow", details)


def log_webhook_rejection(source: str, reason: str, job_id: Optional[str] = None) -> None:
    """Record why a webhook was refused. Callers still answer with a uniform 401."""
    details = f"source={source} | reason={reason}"
    if job_id:
        details += f" | job={job_id}"
    log_commerce_event("webhook_rejected", details)


def log_rollback(workspace: str, restored: int, failed: int) -> None:
    log_commerce_event(
        "skill_rollback", f"workspace={workspace} | restored={restored} | failed={failed}"
    )
