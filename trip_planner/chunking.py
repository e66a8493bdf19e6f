"""Overlapping text windows for document retrieval.

Text is whitespace-normalized, then cut into windows of at most
``window_size`` characters.  Cuts back off to the last space so words stay
whole, and each window re-includes the last ``overlap`` characters of the
previous one for context continuity.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List

DEFAULT_WINDOW_SIZE = 500
DEFAULT_OVERLAP = 50

_WS_RE = re.compile(r"\s+")


class ChunkingConfigError(ValueError):
    """Raised for chunking parameters that cannot make progress."""


@dataclass(frozen=True)
class ChunkingConfig:
    window_size: int = DEFAULT_WINDOW_SIZE
    overlap: int = DEFAULT_OVERLAP

    def validate(self) -> None:
        if self.window_size <= 0:
            raise ChunkingConfigError(f"window_size must be > 0 (got {self.window_size})")
        if self.overlap < 0:
            raise ChunkingConfigError(f"overlap must be >= 0 (got {self.overlap})")
        if self.overlap >= self.window_size:
            raise ChunkingConfigError(
                f"overlap ({self.overlap}) must be smaller than window_size ({self.window_size})"
            )


def normalize_whitespace(text: str) -> str:
    return _WS_RE.sub(" ", text or "").strip()


def chunk_text(
    text: str,
    window_size: int = DEFAULT_WINDOW_SIZE,
    overlap: int = DEFAULT_OVERLAP,
) -> List[str]:
    """Split *text* into overlapping, word-aligned chunks.

    Raises:
        ChunkingConfigError: if ``overlap >= window_size`` or either value is
            out of range.  Checked before any text is touched.
    """
    ChunkingConfig(window_size, overlap).validate()

    cleaned = normalize_whitespace(text)
    length = len(cleaned)
    chunks: List[str] = []
    start = 0
    while start < length:
        end = min(start + window_size, length)
        if end < length:
            # Last space in (start, end]; a space at ``end`` itself is a clean cut.
            last_space = cleaned.rfind(" ", start + 1, end + 1)
            if last_space > start:
                end = last_space
        piece = cleaned[start:end].strip()
        if piece:
            chunks.append(piece)
        if end >= length:
            break
        next_start = end - overlap
        if next_start <= start:
            next_start = end
        start = next_start
    return chunks


def chunk_with_config(text: str, config: ChunkingConfig) -> List[str]:
    return chunk_text(text, window_size=config.window_size, overlap=config.overlap)
