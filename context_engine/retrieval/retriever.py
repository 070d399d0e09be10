"""
Hybrid Retriever
-----------------
Owns the session's chunk set and answers queries by fusing keyword and
semantic relevance:

    reindex(documents)
        |
        v
    chunk + de-duplicate  ->  KeywordRanker          keyword_ready = True
        |
        v
    VectorCache.load()  --hit-->  SemanticIndex      semantic_ready = True
        | miss
        v
    background thread: embed -> cache.save -> queue.put((generation, vectors))

    search(query)
        |
        v
    drain queue (non-blocking)  ->  install vectors of the current generation
        |
        v
    keyword scores  (+ cosine similarities if semantic_ready)
        |
        v
    final = w_kw * kw / max(kw) + w_sem * clamp(cos, 0, 1)

Queries never wait for embeddings: until the background job reports back,
search is keyword-only.  A reindex bumps the generation counter so results
from a superseded job are dropped when they arrive.
"""
from __future__ import annotations

import queue
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Sequence

import numpy as np
from langsmith import traceable
from loguru import logger

from context_engine.chunking.chunker import Chunker
from context_engine.chunking.schemas import Chunk, EmbeddedChunk, SearchResult
from context_engine.config import Settings
from context_engine.embedding.cache import VectorCache
from context_engine.embedding.embedder import EmbeddingProvider, build_embedder
from context_engine.embedding.faiss_index import SemanticIndex
from context_engine.embedding.pipeline import compute_and_cache
from context_engine.ingest import chunk_documents
from context_engine.retrieval.keyword import KeywordRanker
from context_engine.schemas import Document, IndexStats, SearchMode


@dataclass
class _EmbeddingUpdate:
    generation: int
    embedded: Optional[list[EmbeddedChunk]]


class HybridRetriever:
    """
    Keyword + semantic retrieval over one chunk set.

    Args:
        embedder:         Embedding provider; None = keyword-only session.
        cache:            Vector cache; None disables persistence.
        chunker:          Chunker used by reindex().
        top_k:            Default number of results.
        keyword_weight:   Fusion weight of the normalised keyword score.
        semantic_weight:  Fusion weight of the cosine similarity.
        background:       Embed in a daemon thread (True) or inline (False).
        ranker_options:   Extra KeywordRanker kwargs (k1, heading_boost, ...).
    """

    def __init__(
        self,
        embedder: Optional[EmbeddingProvider] = None,
        cache: Optional[VectorCache] = None,
        chunker: Optional[Chunker] = None,
        top_k: int = 5,
        keyword_weight: float = 0.4,
        semantic_weight: float = 0.6,
        background: bool = True,
        batch_size: int = 32,
        max_chars: int = 512,
        ranker_options: Optional[dict] = None,
    ) -> None:
        if min(keyword_weight, semantic_weight) < 0 or abs(keyword_weight + semantic_weight - 1.0) > 1e-6:
            raise ValueError("keyword_weight and semantic_weight must be >= 0 and sum to 1.0")

        self.embedder = embedder
        self.cache = cache
        self.chunker = chunker or Chunker()
        self.top_k = top_k
        self.keyword_weight = keyword_weight
        self.semantic_weight = semantic_weight
        self.background = background
        self.batch_size = batch_size
        self.max_chars = max_chars
        self.ranker_options = ranker_options or {}

        self.chunks: list[Chunk] = []
        self.ranker: Optional[KeywordRanker] = None
        self.semantic_index: Optional[SemanticIndex] = None
        self.index_stats = IndexStats()

        self.keyword_ready = False
        self.semantic_ready = False
        self._generation = 0
        self._updates: "queue.Queue[_EmbeddingUpdate]" = queue.Queue()
        self._worker: Optional[threading.Thread] = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        embedder: Optional[EmbeddingProvider] = None,
    ) -> "HybridRetriever":
        """Wire a retriever from config; builds the configured embedder unless one is given."""
        if embedder is None:
            embedder = build_embedder(
                settings.embedding.provider,
                model=settings.embedding.model,
                dimensions=settings.embedding.dimensions,
                batch_size=settings.embedding.batch_size,
            )
        return cls(
            embedder=embedder,
            cache=VectorCache(settings.cache.file),
            chunker=Chunker(
                max_tokens=settings.chunking.max_tokens,
                overlap_lines=settings.chunking.overlap_lines,
                encoding=settings.chunking.encoding,
            ),
            top_k=settings.retrieval.top_k,
            keyword_weight=settings.retrieval.keyword_weight,
            semantic_weight=settings.retrieval.semantic_weight,
            background=settings.retrieval.background_embedding,
            batch_size=settings.embedding.batch_size,
            max_chars=settings.embedding.max_chars,
            ranker_options=settings.ranking.model_dump(),
        )

    # --- Indexing -----------------------------------------------------------------

    def reindex(self, documents: Iterable[Document], background: Optional[bool] = None) -> int:
        """Chunk `documents` and rebuild both indexes. Returns the chunk count."""
        chunks, stats = chunk_documents(documents, self.chunker)
        count = self.index_chunks(chunks, background=background)
        self.index_stats = stats
        return count

    def index_chunks(self, chunks: Sequence[Chunk], background: Optional[bool] = None) -> int:
        """
        Install an already-chunked collection.

        Keyword search is available as soon as this returns.  Semantic search
        becomes available immediately on a cache hit, otherwise once the
        embedding job finishes.
        """
        self._generation += 1
        self.chunks = list(chunks)
        self.index_stats = IndexStats(chunks=len(self.chunks))
        self.ranker = KeywordRanker(self.chunks, **self.ranker_options)
        self.semantic_index = None
        self.semantic_ready = False
        self.keyword_ready = True
        logger.info(
            f"[Retriever] Keyword search ready ({len(self.chunks)} chunks, "
            f"generation {self._generation})"
        )

        if not self.chunks:
            return 0
        if self.embedder is None:
            logger.info("[Retriever] No embedding provider -- keyword search only")
            return len(self.chunks)

        if self.cache is not None:
            cached = self.cache.load(self.chunks)
            if cached and self._install_vectors(cached):
                logger.info(
                    f"[Retriever] Semantic search ready from cache ({len(cached)} vectors)"
                )
                return len(self.chunks)

        run_in_background = self.background if background is None else background
        generation = self._generation
        if run_in_background:
            self._worker = threading.Thread(
                target=self._embedding_job,
                args=(generation, list(self.chunks)),
                daemon=True,
                name=f"embed-gen-{generation}",
            )
            self._worker.start()
        else:
            self._embedding_job(generation, self.chunks)
            self._poll_updates()
        return len(self.chunks)

    def _embedding_job(self, generation: int, chunks: list[Chunk]) -> None:
        """Runs off the query path; hands its result back through the queue only."""
        try:
            embedded = compute_and_cache(
                chunks,
                self.embedder,
                self.cache,
                batch_size=self.batch_size,
                max_chars=self.max_chars,
            )
        except Exception:
            logger.exception("[Retriever] Embedding job crashed -- keyword search only")
            embedded = None
        self._updates.put(_EmbeddingUpdate(generation=generation, embedded=embedded))

    def _poll_updates(self) -> None:
        while True:
            try:
                update = self._updates.get_nowait()
            except queue.Empty:
                return
            if update.generation != self._generation:
                logger.debug(
                    f"[Retriever] Dropping embeddings for superseded generation {update.generation}"
                )
                continue
            if update.embedded is None:
                logger.warning("[Retriever] Embeddings unavailable -- keyword search only this session")
                continue
            if self._install_vectors(update.embedded):
                logger.info(f"[Retriever] Semantic search ready ({len(update.embedded)} vectors)")

    def _install_vectors(self, embedded: list[EmbeddedChunk]) -> bool:
        index = SemanticIndex.from_embedded(embedded)
        if self.embedder is not None and index.dimensions != self.embedder.dimensions:
            logger.warning(
                f"[Retriever] Vector size {index.dimensions} does not match provider "
                f"({self.embedder.dimensions}) -- ignoring these vectors"
            )
            return False
        self.semantic_index = index
        self.semantic_ready = True
        return True

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the background embedding job finishes. For CLIs and tests, not queries."""
        if self._worker is not None:
            self._worker.join(timeout)
        self._poll_updates()
        return self.semantic_ready

    # --- Search -------------------------------------------------------------------

    @traceable(name="retrieve", run_type="retriever")
    def search(
        self,
        query: str,
        top_k: Optional[int] = None,
        mode: SearchMode | str = SearchMode.HYBRID,
        now: Optional[datetime] = None,
    ) -> list[SearchResult]:
        """
        Rank chunks for `query`.

        Args:
            query: Free-text query.
            top_k: Number of results (default: self.top_k). <= 0 returns [].
            mode:  "hybrid" (default), "keyword", or "semantic".
            now:   Reference time for recency decay (default: current UTC time).

        Returns:
            SearchResults sorted by fused score, then keyword score, then
            chunk order.
        """
        self._poll_updates()
        top_k = self.top_k if top_k is None else top_k
        mode = SearchMode(mode)

        if top_k <= 0 or not query.strip() or not self.keyword_ready or self.ranker is None:
            return []
        if mode is SearchMode.SEMANTIC and not self.semantic_ready:
            logger.warning("[Retriever] Semantic search unavailable -- embeddings not loaded")
            return []

        logger.debug(f"[Retriever] Query: {query[:80]!r} | mode={mode.value}")
        keyword = self.ranker.scores(query, now=now)
        semantic = np.zeros(len(self.chunks), dtype=np.float64)

        use_semantic = mode is not SearchMode.KEYWORD and self.semantic_ready
        if use_semantic:
            query_vec = self._embed_query(query)
            if query_vec is None:
                if mode is SearchMode.SEMANTIC:
                    return []
                use_semantic = False
            else:
                semantic = np.clip(self.semantic_index.similarities(query_vec), 0.0, 1.0).astype(np.float64)

        if not use_semantic:
            w_kw, w_sem = 1.0, 0.0
        elif mode is SearchMode.SEMANTIC:
            w_kw, w_sem = 0.0, 1.0
        else:
            w_kw, w_sem = self.keyword_weight, self.semantic_weight

        kw_max = float(keyword.max()) if len(keyword) else 0.0
        keyword_norm = keyword / kw_max if kw_max > 0 else np.zeros_like(keyword)
        final = w_kw * keyword_norm + w_sem * semantic

        candidates = np.flatnonzero(final > 0)
        ranked = sorted(candidates, key=lambda i: (-final[i], -keyword[i], i))[:top_k]
        results = [
            SearchResult(
                chunk=self.chunks[i],
                score=float(final[i]),
                keyword_score=float(keyword[i]),
                semantic_score=float(semantic[i]),
            )
            for i in ranked
        ]

        if not use_semantic:
            label = "keyword"
        else:
            label = "semantic" if w_kw == 0 else "hybrid"
        if results:
            logger.info(
                f"[Retriever] {len(results)} results | mode={label} | top score: {results[0].score:.4f}"
            )
        else:
            logger.info(f"[Retriever] No results | mode={label}")
        return results

    def _embed_query(self, query: str) -> Optional[np.ndarray]:
        try:
            vector = np.asarray(self.embedder.embed_query(query), dtype=np.float32)
        except Exception as exc:
            logger.warning(f"[Retriever] Query embedding failed ({exc}) -- keyword scores only")
            return None
        if vector.shape != (self.semantic_index.dimensions,):
            logger.warning(f"[Retriever] Query vector has shape {vector.shape} -- keyword scores only")
            return None
        return vector

    # --- Maintenance --------------------------------------------------------------

    def clear_cache(self) -> bool:
        return self.cache.clear() if self.cache is not None else False

    def stats(self) -> dict:
        return {
            "generation": self._generation,
            "documents": self.index_stats.documents,
            "chunks": len(self.chunks),
            "sources": len({c.source for c in self.chunks}),
            "duplicates_removed": self.index_stats.duplicates_removed,
            "keyword_ready": self.keyword_ready,
            "semantic_ready": self.semantic_ready,
            "cache_file": str(self.cache.path) if self.cache is not None else None,
            "cache_exists": self.cache.exists if self.cache is not None else False,
        }
