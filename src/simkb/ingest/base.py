"""Base chunker interface and the fixed word-window fallback."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass

from simkb.errors import ValidationError

DEFAULT_CHUNK_TOKENS = 800
DEFAULT_OVERLAP_TOKENS = 200


@dataclass(frozen=True)
class Segment:
    """A chunk of text before it is attached to a source."""

    content: str
    tokens: int


class BaseChunker(ABC):
    """Abstract base for all chunkers.

    Subclasses implement ``chunk()`` and may use ``_split_fixed_window()``
    as their fallback path.

    Token counting is a whitespace word count, not a model tokenizer; chunk
    sizes therefore differ from what the embedding provider will count.
    """

    def __init__(
        self,
        chunk_tokens: int = DEFAULT_CHUNK_TOKENS,
        overlap_tokens: int = DEFAULT_OVERLAP_TOKENS,
    ) -> None:
        if chunk_tokens < 1:
            raise ValidationError(
                "invalid_chunk_tokens", f"chunk_tokens must be >= 1, got {chunk_tokens}"
            )
        if overlap_tokens < 0:
            raise ValidationError(
                "invalid_overlap_tokens", f"overlap_tokens must be >= 0, got {overlap_tokens}"
            )
        self.chunk_tokens = chunk_tokens
        self.overlap_tokens = overlap_tokens

    @abstractmethod
    def chunk(self, text: str) -> list[Segment]:
        """Split *text* into ordered segments."""

    @staticmethod
    def count_tokens(text: str) -> int:
        """Whitespace word count: trim, collapse runs, split, count."""
        return len(to_words(text))

    def _split_fixed_window(self, text: str) -> list[Segment]:
        """Split *text* into word windows of ``chunk_tokens`` with overlap.

        The window advances by ``chunk_tokens - overlap_tokens`` words; when
        that would not move forward the next window starts where this one ended.
        """
        words = to_words(text)
        if not words:
            return []

        segments: list[Segment] = []
        start = 0
        while start < len(words):
            end = min(start + self.chunk_tokens, len(words))
            window = words[start:end]
            segments.append(Segment(content=" ".join(window), tokens=len(window)))
            if end >= len(words):
                break
            next_start = end - self.overlap_tokens
            start = next_start if next_start > start else end
        return segments


def to_words(text: str | None) -> list[str]:
    """Whitespace-normalised word list ([] for empty or blank text)."""
    if not text:
        return []
    return text.split()


_CONTROL_RE = re.compile(r"[^\S\n\t ]|[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_INLINE_SPACE_RE = re.compile(r"[ \t]+")


def normalize_text(text: str | None) -> str:
    """Clean extracted text before chunking.

    Drops control characters and exotic whitespace, collapses runs of
    spaces/tabs, trims every line and removes blank lines.
    """
    if not text:
        return ""
    cleaned = _INLINE_SPACE_RE.sub(" ", _CONTROL_RE.sub("", text.replace("\r\n", "\n")))
    lines = [line.strip() for line in cleaned.split("\n")]
    return "\n".join(line for line in lines if line)
