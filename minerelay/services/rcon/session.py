"""
RCON Session Manager

Owns the single shared remote-console session, created lazily on first use.

Rules:
- at most one live connection at a time
- concurrent callers never start a second connect while one is in flight;
  they back off and re-check instead
- any failed command invalidates the session; the next call reconnects
- failed commands are never retried here
"""

from __future__ import annotations

import asyncio
from typing import Optional

from minerelay.shared.config.bridge import RconSettings
from minerelay.shared.logging.logger import get_logger
from minerelay.services.rcon.transport import RconConnection, RconError, RconTransport

log = get_logger("rcon.session", runtime="rcon")

CONNECT_BACKOFF_SECONDS = 0.25


class RconDisabledError(RuntimeError):
    """Raised when RCON is used while disabled by configuration."""


class RconSessionManager:
    def __init__(self, settings: RconSettings, transport: Optional[RconTransport] = None):
        self._settings = settings
        self._transport = transport or RconTransport()

        self._session: Optional[RconConnection] = None
        self._connected = False
        self._connecting = False

    @property
    def enabled(self) -> bool:
        return self._settings.enabled

    @property
    def connected(self) -> bool:
        return self._connected and self._session is not None

    @property
    def connecting(self) -> bool:
        return self._connecting

    # --------------------------------------------------
    # Connection
    # --------------------------------------------------

    async def ensure_connected(self) -> None:
        if not self._settings.enabled:
            raise RconDisabledError("RCON is disabled")

        while self._connecting:
            await asyncio.sleep(CONNECT_BACKOFF_SECONDS)

        if self.connected:
            return

        self._connecting = True
        try:
            session = await self._transport.connect(
                self._settings.host,
                self._settings.port,
                self._settings.password,
                self._settings.connect_timeout_seconds,
            )
            self._session = session
            self._connected = True
            session.on_terminated(lambda: self._on_terminated(session))
            log.info(f"RCON connected to {self._settings.host}:{self._settings.port}")
        finally:
            self._connecting = False

    def _on_terminated(self, session: RconConnection) -> None:
        # A late handler from an old session must not clear a newer one.
        if self._session is not session:
            return
        log.warning("RCON session ended")
        self._session = None
        self._connected = False

    # --------------------------------------------------
    # Commands
    # --------------------------------------------------

    async def send(self, command: str) -> str:
        await self.ensure_connected()

        session = self._session
        if session is None:
            raise RconError("RCON not connected")

        try:
            result = await session.exec(command)
        except Exception:
            self._session = None
            self._connected = False
            await self._end_quietly(session)
            raise

        return result if isinstance(result, str) else str(result)

    # --------------------------------------------------
    # Teardown
    # --------------------------------------------------

    async def close(self) -> None:
        session = self._session
        self._session = None
        self._connected = False
        if session is not None:
            await self._end_quietly(session)
            log.info("RCON session closed")

    async def _end_quietly(self, session: RconConnection) -> None:
        try:
            await session.end()
        except Exception as e:
            log.debug(f"RCON end error ignored: {e}")
