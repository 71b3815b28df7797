"""MineRelay: stream a Minecraft server console into Discord."""

from minerelay.runtime.version import VERSION

__all__ = ["VERSION"]
