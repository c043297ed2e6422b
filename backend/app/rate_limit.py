"""Rate limiting for the agentmarket backend.

Requests are keyed by client IP. ``X-Forwarded-For`` is honored only when
the direct peer is a trusted proxy, so callers cannot pick their own key.
"""

import ipaddress
import os
from functools import lru_cache

from slowapi import Limiter
from slowapi.util import get_remote_address

from .logging_config import get_logger

logger = get_logger("agentmarket.rate_limit")

# Private ranges and loopback. Override with AGENTMARKET_TRUSTED_PROXY_CIDRS
# (comma-separated).
DEFAULT_TRUSTED_CIDRS = (
    "10.0.0.0/8",
    "172.16.0.0/12",
    "192.168.0.0/16",
    "127.0.0.0/8",
    "::1/128",
)

Network = ipaddress.IPv4Network | ipaddress.IPv6Network


def parse_trusted_cidrs(raw: str | None) -> tuple[Network, ...]:
    """Parse a comma-separated CIDR list; invalid entries are logged and skipped."""
    entries = [s.strip() for s in raw.split(",") if s.strip()] if raw else DEFAULT_TRUSTED_CIDRS
    networks = []
    for entry in entries:
        try:
            networks.append(ipaddress.ip_network(entry, strict=False))
        except ValueError:
            logger.warning(f"Ignoring invalid trusted proxy CIDR: {entry!r}")
    return tuple(networks)


@lru_cache
def trusted_networks() -> tuple[Network, ...]:
    return parse_trusted_cidrs(os.environ.get("AGENTMARKET_TRUSTED_PROXY_CIDRS"))


def is_trusted_proxy(ip_str: str, networks: tuple[Network, ...] | None = None) -> bool:
    try:
        addr = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    return any(addr in network for network in (networks or trusted_networks()))


def get_client_ip(request) -> str:
    """Resolve the rate-limit key for a request.

    The leftmost ``X-Forwarded-For`` entry is used only when the direct
    connection comes from a trusted proxy; otherwise the peer address is.
    """
    direct_ip = get_remote_address(request)
    if is_trusted_proxy(direct_ip):
        forwarded = request.headers.get("x-forwarded-for", "")
        client_ip = forwarded.split(",")[0].strip()
        if client_ip:
            return client_ip
    return direct_ip


limiter = Limiter(key_func=get_client_ip)
