"""
Discord Client

This module owns the Discord connection itself.
It is intentionally minimal and lifecycle-focused.

Responsibilities:
- connect to Discord
- handle ready / resume / disconnect events
- resolve the bridge text channel
- route incoming messages to the command handler
- expose a clean async run() / shutdown() contract

IMPORTANT:
- This client MUST be controlled by BridgeRuntime
- This client MUST NOT create its own event loop
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

import discord
from discord.ext import commands

from minerelay.shared.config.bridge import DiscordSettings
from minerelay.shared.logging.logger import get_logger

# NOTE: routed to Discord runtime log file
log = get_logger("discord.client", runtime="discord")

MessageHandler = Callable[[discord.Message], Awaitable[None]]


class ChannelResolutionError(RuntimeError):
    """The configured channel is missing, inaccessible or not a text channel."""


class DiscordClient:
    """
    Thin wrapper around discord.py Bot.
    """

    def __init__(
        self,
        settings: DiscordSettings,
        *,
        on_message: Optional[MessageHandler] = None,
    ):
        self._settings = settings
        self._bot: Optional[commands.Bot] = None
        self._ready_event = asyncio.Event()
        self._on_message = on_message

    # --------------------------------------------------

    def _build_bot(self) -> commands.Bot:
        intents = discord.Intents.default()
        intents.guilds = True
        intents.messages = True
        intents.message_content = True  # prefix commands

        bot = commands.Bot(
            command_prefix=commands.when_mentioned,
            intents=intents,
            help_command=None,
        )

        @bot.event
        async def on_ready():
            log.info(
                f"Discord connected as {bot.user} "
                f"(id={bot.user.id}) "
                f"guilds={len(bot.guilds)}"
            )
            self._ready_event.set()

        @bot.event
        async def on_resumed():
            log.info("Discord connection resumed")

        @bot.event
        async def on_disconnect():
            log.warning("Discord connection lost")

        @bot.event
        async def on_message(message: discord.Message):
            if self._on_message is None:
                return
            try:
                await self._on_message(message)
            except Exception as e:
                log.error(f"Message handler failed: {e}")

        return bot

    # --------------------------------------------------

    async def run(self):
        """
        Start the Discord client and block until shutdown.
        """
        if self._bot is not None:
            raise RuntimeError("Discord client already running")

        log.info("Initializing Discord client")

        self._bot = self._build_bot()

        try:
            await self._bot.start(self._settings.token)
        except asyncio.CancelledError:
            log.info("Discord client task cancelled")
            raise
        except Exception as e:
            log.error(f"Discord client crashed: {e}")
            raise
        finally:
            log.info("Discord client stopped")

    async def wait_until_ready(self) -> None:
        await self._ready_event.wait()

    # --------------------------------------------------

    async def resolve_channel(self) -> discord.TextChannel:
        """
        Fetch the configured guild text channel.
        """
        bot = self._bot
        if bot is None:
            raise ChannelResolutionError("Discord client is not running")

        try:
            guild = bot.get_guild(self._settings.guild_id) or await bot.fetch_guild(
                self._settings.guild_id
            )
            channel = guild.get_channel(self._settings.channel_id) or await guild.fetch_channel(
                self._settings.channel_id
            )
        except discord.HTTPException as e:
            raise ChannelResolutionError(f"Guild or channel not accessible: {e}") from e

        if not isinstance(channel, discord.TextChannel):
            raise ChannelResolutionError(
                "Provided DISCORD_CHANNEL_ID is not a text channel or not accessible."
            )

        log.info(f"Resolved channel #{channel.name} in {guild.name}")
        return channel

    # --------------------------------------------------

    async def shutdown(self):
        """
        Gracefully close the Discord connection.
        """
        if not self._bot:
            return

        log.info("Closing Discord connection")

        try:
            await self._bot.close()
        except Exception as e:
            log.warning(f"Discord close error ignored: {e}")

        self._bot = None
        self._ready_event.clear()
