"""Sentence-aware chunker with trailing-word overlap.

Strategy:
1. Split the text into sentences (runs ending in . ! ? ;), punctuation kept.
2. Pack whole sentences into a chunk while the word budget allows.
3. Seed each following chunk with the last ``overlap_tokens`` words of the
   previous one; drop the seed if seed + sentence would not fit.
4. Fall back to fixed word windows when no sentence is found or a chunk
   comes out empty.
"""

from __future__ import annotations

import logging
import re

from simkb.ingest.base import BaseChunker, Segment, to_words

logger = logging.getLogger(__name__)

_SENTENCE_RE = re.compile(r"[^.!?;]+[.!?;]+|[^.!?;]+$")
_INLINE_SPACE_RE = re.compile(r"[ \t]+")


def split_sentences(text: str | None) -> list[str]:
    """Split *text* into sentences, keeping terminal punctuation.

    Example:
        "Hello world. How are you? Fine!" -> ["Hello world.", "How are you?", "Fine!"]
    """
    if not text:
        return []
    normalized = _INLINE_SPACE_RE.sub(" ", text.replace("\r\n", "\n")).strip()
    return [s.strip() for s in _SENTENCE_RE.findall(normalized)]


class SentenceChunker(BaseChunker):
    """Greedy sentence packing under a word budget (default 800 / 200 overlap)."""

    def chunk(self, text: str) -> list[Segment]:
        if not text or not text.strip():
            return []

        sentences = split_sentences(text)
        if not sentences:
            logger.debug("No sentence boundaries found; using fixed windows")
            return self._split_fixed_window(text)

        segments = self._pack(sentences)
        if any(not s.content or s.tokens <= 0 for s in segments):
            logger.debug("Sentence packing produced an empty chunk; using fixed windows")
            return self._split_fixed_window(text)
        return segments

    def _pack(self, sentences: list[str]) -> list[Segment]:
        segments: list[Segment] = []
        current = ""
        current_tokens = 0
        seed: list[str] = []

        for sentence in sentences:
            sentence_tokens = self.count_tokens(sentence)

            if current_tokens + sentence_tokens <= self.chunk_tokens:
                current = f"{current} {sentence}" if current else sentence
                current_tokens += sentence_tokens
                continue

            if current_tokens > 0:
                segments.append(Segment(content=current.strip(), tokens=current_tokens))
                seed = self._tail_words(current)

            if seed:
                current = f"{' '.join(seed)} {sentence}".strip()
                current_tokens = self.count_tokens(current)
                if current_tokens > self.chunk_tokens:
                    current = sentence
                    current_tokens = sentence_tokens
            else:
                current = sentence
                current_tokens = sentence_tokens

        if current_tokens > 0:
            segments.append(Segment(content=current.strip(), tokens=current_tokens))
        return segments

    def _tail_words(self, text: str) -> list[str]:
        """The last ``overlap_tokens`` words of *text* (all of them if shorter)."""
        if self.overlap_tokens <= 0:
            return []
        words = to_words(text)
        return words[-self.overlap_tokens :]


def chunk_text(
    text: str,
    chunk_tokens: int | None = None,
    overlap_tokens: int | None = None,
) -> list[Segment]:
    """Convenience wrapper: SentenceChunker with optional per-call sizes."""
    kwargs: dict[str, int] = {}
    if chunk_tokens is not None:
        kwargs["chunk_tokens"] = chunk_tokens
    if overlap_tokens is not None:
        kwargs["overlap_tokens"] = overlap_tokens
    return SentenceChunker(**kwargs).chunk(text)
