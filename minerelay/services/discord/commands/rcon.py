"""
RCON chat command (prefix based).

A message in the bridge channel that starts with the configured prefix is
forwarded to the game server's remote console. The reply is the command
output, wrapped in a code block and split to fit Discord's length limit.

Errors are echoed back to the requester (truncated); nothing is retried.
"""

from __future__ import annotations

from typing import List, Optional

import discord

from minerelay.shared.config.bridge import DISCORD_HARD_LIMIT, RconSettings
from minerelay.shared.logging.logger import get_logger
from minerelay.services.discord.formatting import code_block_chunks
from minerelay.services.discord.permissions import RconPermissionResolver
from minerelay.services.rcon.session import RconSessionManager

log = get_logger("discord.commands.rcon", runtime="discord")

NOT_ALLOWED_REPLY = "❌ You are not allowed to use RCON here."
NO_OUTPUT_REPLY = "✅ Executed (no output)"
ERROR_DETAIL_LIMIT = 1800


class RconCommandHandler:
    def __init__(
        self,
        *,
        settings: RconSettings,
        channel_id: int,
        permissions: RconPermissionResolver,
        rcon: RconSessionManager,
    ):
        self._settings = settings
        self._channel_id = channel_id
        self._permissions = permissions
        self._rcon = rcon

    def matches(self, message: discord.Message) -> bool:
        if not self._settings.enabled:
            return False
        if message.author.bot:
            return False
        if message.channel.id != self._channel_id:
            return False
        return (message.content or "").startswith(self._settings.prefix)

    async def handle_message(self, message: discord.Message) -> None:
        if not self.matches(message):
            return

        try:
            await self._execute(message)
        except Exception as e:
            log.error(f"[RCON] Error: {e}")
            detail = (str(e) or type(e).__name__)[:ERROR_DETAIL_LIMIT]
            try:
                await message.reply(f"❌ RCON error: `{detail}`")
            except Exception as reply_error:
                log.warning(f"[RCON] Error reply failed: {reply_error}")

    async def _execute(self, message: discord.Message) -> None:
        user_id = message.author.id

        allowed = self._permissions.check_user(user_id)
        if allowed and self._permissions.requires_role:
            allowed = self._permissions.check_role(
                user_id, await self._resolve_role_ids(message)
            )
        if not allowed:
            log.info(f"[RCON] Refused {message.author} ({user_id}): {allowed.reason}")
            await message.reply(NOT_ALLOWED_REPLY)
            return

        command = message.content[len(self._settings.prefix):].strip()
        if not command:
            await message.reply(f"ℹ️ Usage: `{self._settings.prefix}<minecraft command>`")
            return

        log.info(f"[RCON] {message.author} ({user_id}) -> {command!r}")

        async with message.channel.typing():
            result = await self._rcon.send(command)

        reply = (result or "").strip() or NO_OUTPUT_REPLY
        for chunk in code_block_chunks(reply, DISCORD_HARD_LIMIT):
            await message.reply(content=chunk)

    async def _resolve_role_ids(self, message: discord.Message) -> Optional[List[int]]:
        guild = message.guild
        if guild is None:
            return None
        member = guild.get_member(message.author.id)
        if member is None:
            try:
                member = await guild.fetch_member(message.author.id)
            except Exception as e:
                log.warning(f"[RCON] Member lookup failed for {message.author.id}: {e}")
                return None
        return [role.id for role in member.roles]
