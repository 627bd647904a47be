"""simkb ingest pipeline — segmenter and embedding adapter."""

from simkb.ingest.base import BaseChunker, Segment
from simkb.ingest.embedder import Embedder, EmbeddingConfig, LiteLLMEmbedder, align_embeddings
from simkb.ingest.sentence import SentenceChunker, chunk_text, split_sentences

__all__ = [
    "BaseChunker",
    "Segment",
    "SentenceChunker",
    "chunk_text",
    "split_sentences",
    "Embedder",
    "EmbeddingConfig",
    "LiteLLMEmbedder",
    "align_embeddings",
]
