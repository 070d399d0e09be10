"""
FAISS Vector Index
-------------------
Wraps faiss.IndexFlatIP (inner product == cosine similarity after L2
normalisation).  The retriever needs a semantic score for *every* chunk so it
can fuse it with the keyword score, so the index is queried with
k = ntotal and the scores are scattered back into chunk order.

The index is rebuilt in memory from the vector cache on each session; it is
never persisted itself (the cache file is the single source of truth).
"""
from __future__ import annotations

from typing import Sequence

import faiss
import numpy as np
from loguru import logger

from context_engine.chunking.schemas import Chunk, EmbeddedChunk


class SemanticIndex:
    """Dense index over one chunk set, rows aligned with `chunks`."""

    def __init__(self, dimensions: int) -> None:
        self.dimensions = dimensions
        self.faiss_index: faiss.IndexFlatIP = faiss.IndexFlatIP(dimensions)
        self.chunks: list[Chunk] = []

    @classmethod
    def from_embedded(cls, embedded: Sequence[EmbeddedChunk]) -> "SemanticIndex":
        if not embedded:
            raise ValueError("Cannot build a semantic index from an empty chunk set")
        matrix = np.stack([ec.vector for ec in embedded])
        index = cls(dimensions=int(matrix.shape[1]))
        index.build([ec.chunk for ec in embedded], matrix)
        return index

    def build(self, chunks: Sequence[Chunk], embeddings: np.ndarray) -> None:
        """
        Populate the index from chunks and their pre-computed embeddings.

        Args:
            chunks: Chunk objects, in retrieval order.
            embeddings: Float32 array of shape (len(chunks), dimensions).
        """
        if len(chunks) != len(embeddings):
            raise ValueError(
                f"Mismatch: {len(chunks)} chunks vs {len(embeddings)} embeddings"
            )
        embeddings_f32 = np.ascontiguousarray(embeddings, dtype=np.float32)
        self.faiss_index.reset()
        self.faiss_index.add(embeddings_f32)
        self.chunks = list(chunks)
        logger.debug(f"[SemanticIndex] Built: {self.faiss_index.ntotal} vectors")

    def similarities(self, query_vec: np.ndarray) -> np.ndarray:
        """
        Cosine similarity of `query_vec` against every chunk.

        Returns: float32 array of length len(chunks), aligned with chunk order.
        """
        scores = np.zeros(len(self.chunks), dtype=np.float32)
        if self.faiss_index.ntotal == 0:
            return scores
        qv = np.ascontiguousarray(np.asarray(query_vec, dtype=np.float32).reshape(1, -1))
        distances, indices = self.faiss_index.search(qv, self.faiss_index.ntotal)
        for score, idx in zip(distances[0], indices[0]):
            if idx >= 0:
                scores[idx] = score
        return scores

    @property
    def is_built(self) -> bool:
        return self.faiss_index.ntotal > 0
