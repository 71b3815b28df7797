"""
Outbound Batch Queue

Buffers sanitized process output and packs it into Discord messages.

Flush policy:
- a recurring timer drains the queue every interval while lines are pending
- forced flushes (process exit, shutdown) drain and stop the timer

Packing rules (per batch):
- joined length (newline separated) <= max_content
- line count <= max_lines
- a line longer than max_content on its own is never batched; it is sent
  as ordered fragments labelled [i/total]

Delivery is best-effort. A failed send is logged and its lines are dropped;
the rest of the drain continues. Relative line order is always preserved.

The queue is owned by a single event loop. enqueue() never awaits, and
flush passes are serialized by a lock, so a drain is atomic with respect
to other drains while producers may keep appending behind it.
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Deque, List, Optional, Protocol

from minerelay.shared.config.bridge import MAX_CONTENT
from minerelay.shared.logging.logger import get_logger
from minerelay.services.discord.formatting import fragment_line, sanitize_line

log = get_logger("core.batch_queue")


class Destination(Protocol):
    @property
    def available(self) -> bool: ...

    async def send(self, content: str) -> bool: ...


class BatchQueue:
    def __init__(
        self,
        destination: Destination,
        *,
        interval_seconds: float = 3.0,
        max_lines: int = 40,
        max_content: int = MAX_CONTENT,
    ):
        if max_lines <= 0 or max_content <= 0:
            raise ValueError("max_lines and max_content must be positive")

        self._destination = destination
        self._interval = interval_seconds
        self._max_lines = max_lines
        self._max_content = max_content

        self._pending: Deque[str] = deque()
        self._lock = asyncio.Lock()
        self._timer: Optional[asyncio.Task] = None

    # --------------------------------------------------
    # Introspection
    # --------------------------------------------------

    @property
    def pending(self) -> int:
        return len(self._pending)

    @property
    def timer_active(self) -> bool:
        return self._timer is not None and not self._timer.done()

    # --------------------------------------------------
    # Producer side
    # --------------------------------------------------

    def enqueue(self, raw_line: str) -> None:
        """
        Sanitize and buffer one line. Must be called from the event loop.
        """
        self._pending.append(sanitize_line(raw_line))
        self._start_timer()

    # --------------------------------------------------
    # Consumer side
    # --------------------------------------------------

    async def flush(self, force: bool = False) -> int:
        """
        Drain pending lines into outbound messages.

        Returns the number of messages attempted.
        """
        async with self._lock:
            if not self._destination.available or not self._pending:
                if force:
                    self._stop_timer()
                return 0

            attempted = 0
            batch: List[str] = []
            batch_len = 0

            while self._pending:
                line = self._pending.popleft()

                if len(line) > self._max_content:
                    if batch:
                        attempted += await self._send_packed(batch)
                        batch, batch_len = [], 0
                    for fragment in fragment_line(line, self._max_content):
                        attempted += await self._send_packed([fragment.render()])
                    continue

                add_len = len(line) + (1 if batch else 0)
                if batch_len + add_len > self._max_content or len(batch) >= self._max_lines:
                    attempted += await self._send_packed(batch)
                    batch, batch_len = [], 0
                    add_len = len(line)

                batch.append(line)
                batch_len += add_len

            attempted += await self._send_packed(batch)

            if force:
                self._stop_timer()

            log.debug(f"Flush complete: {attempted} message(s) (force={force})")
            return attempted

    async def _send_packed(self, lines: List[str]) -> int:
        if not lines:
            return 0
        try:
            ok = await self._destination.send("\n".join(lines))
            if not ok:
                log.warning(f"Dropped batch of {len(lines)} line(s) after failed send")
        except Exception as e:
            log.error(f"[Discord] send failed: {e}")
        return 1

    # --------------------------------------------------
    # Timer
    # --------------------------------------------------

    def _start_timer(self) -> None:
        if self.timer_active:
            return
        self._timer = asyncio.get_running_loop().create_task(self._tick_loop())

    def _stop_timer(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None and timer is not asyncio.current_task() and not timer.done():
            timer.cancel()

    async def _tick_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self._interval)
                try:
                    await self.flush()
                except Exception as e:
                    log.error(f"Timed flush failed: {e}")

                # Idle: stop ticking until the next enqueue.
                if not self._pending:
                    break
        finally:
            if self._timer is asyncio.current_task():
                self._timer = None
