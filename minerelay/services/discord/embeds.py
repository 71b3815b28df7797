from __future__ import annotations

import discord

COLORS = {
    "blue": 0x3498DB,
    "green": 0x2ECC71,
    "yellow": 0xF1C40F,
    "red": 0xE74C3C,
}


def notice_embed(description: str, color: int) -> discord.Embed:
    return discord.Embed(
        description=description,
        color=discord.Color(color),
    )
