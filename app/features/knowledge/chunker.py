"""
Sentence-aligned chunking for documentation pages.

Chunks are built greedily from whole sentences so that no sentence is ever
split across two chunks. Tiny leftovers (stray headings, whitespace) are
dropped.
"""

import re
import hashlib
import logging
from typing import List

logger = logging.getLogger("Javari.Knowledge.Chunker")

TARGET_CHUNK_CHARS = 500
MIN_CHUNK_CHARS = 20
CHARS_PER_TOKEN = 4  # Conservative estimate

# A run of non-terminators followed by terminators, or a trailing fragment
_SENTENCE_PATTERN = re.compile(r"[^.!?]+(?:[.!?]+|$)")


def estimate_tokens(text: str) -> int:
    """Rough token count estimate."""
    return len(text) // CHARS_PER_TOKEN


def content_hash(text: str) -> str:
    """sha256 of the text, used to detect unchanged re-ingestion."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def split_sentences(text: str) -> List[str]:
    """
    Split text on `.`, `!` and `?` terminators.

    Text without any terminator comes back as a single sentence, and a
    fragment after the last terminator is kept as the final sentence.
    """
    sentences = []
    for match in _SENTENCE_PATTERN.findall(text):
        sentence = match.strip()
        if sentence:
            sentences.append(sentence)
    return sentences


def chunk_text(text: str, target_size: int = TARGET_CHUNK_CHARS) -> List[str]:
    """
    Chunk text into sentence-respecting segments of about `target_size` chars.

    Sentences are appended to a running buffer (joined by a single space)
    until the next one would push it past `target_size`; the buffer is then
    emitted and a new one starts with that sentence. A single sentence longer
    than `target_size` becomes its own chunk. Chunks shorter than 20
    characters are dropped.

    Args:
        text: Document body
        target_size: Soft upper bound on chunk length in characters

    Returns:
        Ordered list of chunk strings; empty for empty input
    """
    if not text or not text.strip():
        return []

    chunks: List[str] = []
    buffer = ""

    for sentence in split_sentences(text):
        candidate = f"{buffer} {sentence}" if buffer else sentence
        if len(candidate) > target_size and buffer:
            chunks.append(buffer)
            buffer = sentence
        else:
            buffer = candidate

    if buffer:
        chunks.append(buffer)

    kept = [chunk for chunk in chunks if len(chunk) >= MIN_CHUNK_CHARS]
    if len(kept) < len(chunks):
        logger.debug(f"Dropped {len(chunks) - len(kept)} chunks under {MIN_CHUNK_CHARS} chars")

    return kept
