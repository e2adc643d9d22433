"""Sentence-aligned chunker.

Text is split after each terminal ``.``, ``!`` or ``?`` (the punctuation stays
with its sentence). Sentences are accumulated greedily, joined by a single
space, until the next one would push the buffer past ``max_length``. A sentence
longer than ``max_length`` on its own is emitted whole; it is never split
mid-sentence. Chunks shorter than ``min_length`` are dropped as noise.
"""

from __future__ import annotations

import re

_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")

DEFAULT_MAX_LENGTH = 1000
DEFAULT_MIN_LENGTH = 50


class SentenceChunker:
    """Split text into bounded, sentence-aligned chunks."""

    def __init__(
        self, max_length: int = DEFAULT_MAX_LENGTH, min_length: int = DEFAULT_MIN_LENGTH
    ) -> None:
        if max_length < 1:
            raise ValueError("max_length must be >= 1")
        if min_length < 0:
            raise ValueError("min_length must be >= 0")
        self.max_length = max_length
        self.min_length = min_length

    def chunk(self, text: str) -> list[str]:
        """Return the chunks of *text* in document order; ``[]`` for blank input."""
        chunks: list[str] = []
        buffer = ""
        for sentence in split_sentences(text):
            if not buffer:
                buffer = sentence
            elif len(buffer) + 1 + len(sentence) <= self.max_length:
                buffer = f"{buffer} {sentence}"
            else:
                chunks.append(buffer)
                buffer = sentence
        if buffer:
            chunks.append(buffer)
        return [c for c in chunks if len(c) >= self.min_length]


def split_sentences(text: str) -> list[str]:
    """Split *text* after terminal punctuation; trailing text without one is kept."""
    return [s.strip() for s in _SENTENCE_END.split(text.strip()) if s.strip()]


def chunk(
    text: str, max_length: int = DEFAULT_MAX_LENGTH, min_length: int = DEFAULT_MIN_LENGTH
) -> list[str]:
    """Shorthand for ``SentenceChunker(max_length, min_length).chunk(text)``."""
    return SentenceChunker(max_length, min_length).chunk(text)
