"""Tests for the stdin console passthrough."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

import pytest

from minerelay.core.console import ConsoleRelay


class RecordingSupervisor:
    def __init__(self, writable: bool = True):
        self.writable = writable
        self.received = []

    def write_input(self, data: bytes) -> bool:
        if not self.writable:
            return False
        self.received.append(data)
        return True


@pytest.mark.asyncio
async def test_bytes_forwarded_verbatim() -> None:
    read_fd, write_fd = os.pipe()
    supervisor = RecordingSupervisor()
    with os.fdopen(read_fd, "rb", buffering=0) as stream:
        relay = ConsoleRelay(supervisor, stream)
        assert await relay.start()

        os.write(write_fd, b"whitelist add Steve\n")
        for _ in range(100):
            if supervisor.received:
                break
            await asyncio.sleep(0.01)

        os.close(write_fd)
        await relay.stop()

    assert b"".join(supervisor.received) == b"whitelist add Steve\n"


@pytest.mark.asyncio
async def test_regular_file_is_not_attached(tmp_path: Path) -> None:
    path = tmp_path / "input.txt"
    path.write_bytes(b"stop\n")
    with path.open("rb") as stream:
        relay = ConsoleRelay(RecordingSupervisor(), stream)
        assert await relay.start() is False
        await relay.stop()
