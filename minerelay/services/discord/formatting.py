"""Text helpers for content posted to Discord."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

ZWSP = "\u200b"
FENCE = "```"


def sanitize_line(line: str) -> str:
    """
    Neutralize mentions and code fences in a line of process output.

    Not idempotent: each pass inserts another zero-width marker, so lines
    are sanitized exactly once, when they enter the queue.
    """
    return line.replace("@", "@" + ZWSP).replace(FENCE, "`" + ZWSP + "``")


def split_to_chunks(text: str, max_len: int) -> List[str]:
    if max_len <= 0:
        raise ValueError("max_len must be positive")
    return [text[i:i + max_len] for i in range(0, len(text), max_len)]


@dataclass(frozen=True)
class OversizedFragment:
    text: str
    index: int
    total: int

    def render(self) -> str:
        if self.total > 1:
            return f"{self.text} [{self.index}/{self.total}]"
        return self.text


def fragment_line(line: str, max_len: int) -> List[OversizedFragment]:
    chunks = split_to_chunks(line, max_len)
    return [
        OversizedFragment(text=chunk, index=i, total=len(chunks))
        for i, chunk in enumerate(chunks, start=1)
    ]


def code_block_chunks(text: str, limit: int) -> List[str]:
    # One character of the limit is kept back for the fence overhead.
    return split_to_chunks(FENCE + text + FENCE, limit - 1)
