"""
Embedding Pipeline - vectors for a chunk set the cache did not have
--------------------------------------------------------------------
    chunks (cache miss, checked by the retriever)
      |
      v
    embedder.embed_texts() in batches  --any batch fails-->  None (keyword-only)
      |
      v
    VectorCache.save()  ->  EmbeddedChunk[]

Provider failures never propagate: semantic search is an enhancement, so the
caller gets None and carries on with keyword scoring.
"""
from __future__ import annotations

import time
from typing import Callable, Optional, Sequence

import numpy as np
from loguru import logger

from context_engine.chunking.schemas import Chunk, EmbeddedChunk
from context_engine.embedding.cache import VectorCache
from context_engine.embedding.embedder import EmbeddingProvider, l2_normalise

BATCH_SIZE = 32
MAX_EMBED_CHARS = 512
PROGRESS_EVERY = 50

ProgressCallback = Callable[[int, int], None]


def embed_chunks(
    chunks: Sequence[Chunk],
    embedder: EmbeddingProvider,
    batch_size: int = BATCH_SIZE,
    max_chars: int = MAX_EMBED_CHARS,
    on_progress: Optional[ProgressCallback] = None,
) -> Optional[np.ndarray]:
    """
    Embed every chunk (section + content, truncated to max_chars).

    Returns:
        (len(chunks), dims) float32 array, or None if any batch failed.
    """
    total = len(chunks)
    if total == 0:
        return np.empty((0, embedder.dimensions), dtype=np.float32)

    logger.info(f"[Embedding] Embedding {total} chunks...")
    start = time.perf_counter()
    parts: list[np.ndarray] = []
    next_report = PROGRESS_EVERY

    for i in range(0, total, batch_size):
        batch = chunks[i: i + batch_size]
        texts = [c.embedding_text(max_chars) for c in batch]
        try:
            vectors = np.asarray(embedder.embed_texts(texts), dtype=np.float32)
        except Exception as exc:
            logger.warning(
                f"[Embedding] Batch {i // batch_size + 1} failed ({exc}); "
                "semantic search disabled for this session"
            )
            return None
        if vectors.shape != (len(batch), embedder.dimensions):
            logger.warning(
                f"[Embedding] Provider returned shape {vectors.shape}, expected "
                f"({len(batch)}, {embedder.dimensions}); semantic search disabled"
            )
            return None
        parts.append(vectors)

        done = min(i + batch_size, total)
        if on_progress is not None:
            on_progress(done, total)
        if done >= next_report or done == total:
            logger.info(f"[Embedding] Embedded {done}/{total} chunks")
            next_report = (done // PROGRESS_EVERY + 1) * PROGRESS_EVERY

    logger.info(f"[Embedding] Done in {time.perf_counter() - start:.1f}s")
    return l2_normalise(np.concatenate(parts, axis=0))


def compute_and_cache(
    chunks: Sequence[Chunk],
    embedder: EmbeddingProvider,
    cache: Optional[VectorCache],
    batch_size: int = BATCH_SIZE,
    max_chars: int = MAX_EMBED_CHARS,
    on_progress: Optional[ProgressCallback] = None,
) -> Optional[list[EmbeddedChunk]]:
    """Embed from scratch and persist the result for the next start-up."""
    vectors = embed_chunks(chunks, embedder, batch_size, max_chars, on_progress)
    if vectors is None:
        return None
    if cache is not None:
        cache.save(chunks, vectors)
    return [EmbeddedChunk(chunk=c, vector=v) for c, v in zip(chunks, vectors)]

