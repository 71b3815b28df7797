"""
Remote console (RCON) package.

- transport: asyncio Source RCON connections
- session:   the single shared, lazily connected session
"""

from minerelay.services.rcon.session import RconDisabledError, RconSessionManager
from minerelay.services.rcon.transport import RconAuthError, RconError, RconTransport

__all__ = [
    "RconAuthError",
    "RconDisabledError",
    "RconError",
    "RconSessionManager",
    "RconTransport",
]
