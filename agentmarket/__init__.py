"""
agentmarket - Escrowed job marketplace for agents and external workers.

Money stays locked until the requester accepts the work.
"""

from .config import CommerceConfig

try:
    from importlib.metadata import version

    __version__ = version("agentmarket")
except Exception:
    __version__ = "0.0.0"

__all__ = ["CommerceConfig"]
