"""
Console passthrough: bytes typed into the bridge's own stdin are forwarded
verbatim to the game server's stdin.

Best-effort only. Input arriving while the child is not writable is dropped.
"""

from __future__ import annotations

import asyncio
import sys
from typing import IO, Optional

from minerelay.shared.logging.logger import get_logger
from minerelay.core.process import ProcessSupervisor

log = get_logger("core.console")

READ_SIZE = 4096


class ConsoleRelay:
    def __init__(self, supervisor: ProcessSupervisor, stream: Optional[IO] = None):
        self._supervisor = supervisor
        self._stream = stream if stream is not None else sys.stdin
        self._task: Optional[asyncio.Task] = None
        self._transport: Optional[asyncio.BaseTransport] = None

    async def start(self) -> bool:
        if self._task is not None:
            return True

        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        protocol = asyncio.StreamReaderProtocol(reader)

        try:
            self._transport, _ = await loop.connect_read_pipe(lambda: protocol, self._stream)
        except (OSError, ValueError) as e:
            # e.g. stdin redirected from a regular file
            log.warning(f"Console passthrough unavailable: {e}")
            return False

        self._task = asyncio.create_task(self._relay(reader))
        log.info("Console passthrough attached")
        return True

    async def _relay(self, reader: asyncio.StreamReader) -> None:
        while True:
            chunk = await reader.read(READ_SIZE)
            if not chunk:
                log.info("Console input closed")
                return
            self._supervisor.write_input(chunk)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        if self._transport is not None:
            self._transport.close()
            self._transport = None
