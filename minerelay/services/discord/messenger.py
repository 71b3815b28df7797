"""
Discord Messenger

Outbound-only view of the destination text channel. Every send is
best-effort: failures are logged and reported as False, never raised.

The channel is attached after the client has resolved it; until then
the messenger reports itself unavailable and sends are no-ops.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Optional

import discord

from minerelay.shared.logging.logger import get_logger
from minerelay.services.discord.embeds import notice_embed

log = get_logger("discord.messenger", runtime="discord")


class DiscordMessenger:
    def __init__(self, disconnect: Optional[Callable[[], Awaitable[None]]] = None):
        self._channel: Optional[discord.abc.Messageable] = None
        self._disconnect = disconnect

    def attach(self, channel: discord.abc.Messageable) -> None:
        self._channel = channel
        log.info(f"Messenger attached to channel {getattr(channel, 'id', '?')}")

    @property
    def available(self) -> bool:
        return self._channel is not None

    async def send(self, content: str) -> bool:
        if self._channel is None:
            return False
        try:
            await self._channel.send(content=content)
            return True
        except Exception as e:
            log.error(f"[Discord] send failed: {e}")
            return False

    async def send_embed(self, text: str, color: int) -> bool:
        if self._channel is None:
            return False
        try:
            await self._channel.send(embed=notice_embed(text, color))
            return True
        except Exception as e:
            log.error(f"[Discord] embed send failed: {e}")
            return False

    async def disconnect(self) -> None:
        self._channel = None
        if self._disconnect is not None:
            await self._disconnect()
