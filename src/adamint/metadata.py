"""
Transaction message metadata (CIP-20).

Messages are attached under label 674 as ``{"msg": [chunk, ...]}``. The
ledger limits metadata strings to 64 bytes, so longer messages are split
into chunks of at most 64 characters, breaking between words whenever
possible.
"""

from __future__ import annotations

from typing import Any

from adamint.constants import MESSAGE_METADATA_LABEL, METADATA_CHUNK_SIZE


def _split_word(word: str, size: int) -> list[str]:
    return [word[i : i + size] for i in range(0, len(word), size)]


def chunk_message(text: str, size: int = METADATA_CHUNK_SIZE) -> list[str]:
    """
    Split text into chunks of at most ``size`` characters.

    Text that already fits is returned verbatim as a single chunk. Otherwise
    words are packed greedily, separated by single spaces. A word longer
    than ``size`` is cut into ``size``-character pieces which are then
    packed like ordinary words.
    """
    if len(text) <= size:
        return [text]

    chunks: list[str] = []
    current: list[str] = []
    length = 0

    for word in text.split():
        for piece in _split_word(word, size) if len(word) > size else [word]:
            needed = len(piece) + (1 if current else 0)
            if length + needed <= size:
                current.append(piece)
                length += needed
            else:
                chunks.append(" ".join(current))
                current = [piece]
                length = len(piece)

    if current:
        chunks.append(" ".join(current))
    return chunks


def message_metadata(message: str | None) -> dict[str, Any] | None:
    """Metadata record for an optional transaction message."""
    if message is None:
        return None
    return {MESSAGE_METADATA_LABEL: {"msg": chunk_message(message)}}


def oversized_strings(metadata: Any, limit: int = METADATA_CHUNK_SIZE) -> list[str]:
    """Return every string in a metadata tree longer than ``limit`` UTF-8 bytes."""
    if isinstance(metadata, str):
        return [metadata] if len(metadata.encode("utf-8")) > limit else []
    if isinstance(metadata, dict):
        return [s for v in metadata.values() for s in oversized_strings(v, limit)]
    if isinstance(metadata, list | tuple):
        return [s for v in metadata for s in oversized_strings(v, limit)]
    return []
