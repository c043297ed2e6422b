"""Logging helpers for the agentmarket backend.

Route modules log one line per request in the form
``METHOD /path | key=value | ...``.
"""

import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_configured = False


def _configure_root() -> None:
    global _configured
    if _configured:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root = logging.getLogger("agentmarket")
    if not root.handlers:
        root.addHandler(handler)
    root.setLevel(logging.INFO)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the ``agentmarket`` hierarchy with stdout output."""
    _configure_root()
    return logging.getLogger(name)


def log_webhook_event(direction: str, job_id: str, outcome: str, detail: str | None = None) -> None:
    """Record an inbound or outbound webhook outcome."""
    logger = get_logger("agentmarket.webhooks")
    message = f"webhook {direction} | job={job_id} | outcome={outcome}"
    if detail:
        message += f" | {detail}"
    if outcome == "ok":
        logger.info(message)
    else:
        logger.warning(message)
