"""
Embedding Providers
--------------------
The retriever treats embedding as a black box: text in, fixed-length vector
out.  Anything with `dimensions`, `embed_texts()` and `embed_query()` works
(see EmbeddingProvider); two concrete providers ship here:

  - OpenAIEmbedder: text-embedding-3-small with `dimensions=384`, batched,
    retried via tenacity, traced via LangSmith.
  - LocalEmbedder: sentence-transformers all-MiniLM-L6-v2 (384 dims natively),
    runs offline once the model is downloaded.  Needs the `local` extra.

Both return L2-normalised float32 vectors so cosine similarity == inner
product.
"""
from __future__ import annotations

import os
import time
from typing import Optional, Protocol, runtime_checkable

import numpy as np
from langsmith import traceable
from loguru import logger
from openai import OpenAI
from tenacity import retry, stop_after_attempt, wait_exponential

OPENAI_MODEL = "text-embedding-3-small"
LOCAL_MODEL = "sentence-transformers/all-MiniLM-L6-v2"
DIMENSIONS = 384
BATCH_SIZE = 32


@runtime_checkable
class EmbeddingProvider(Protocol):
    dimensions: int

    def embed_texts(self, texts: list[str]) -> np.ndarray:
        """Return an (len(texts), dimensions) float32 array."""
        ...

    def embed_query(self, text: str) -> np.ndarray:
        """Return a (dimensions,) float32 array."""
        ...


def l2_normalise(matrix: np.ndarray) -> np.ndarray:
    """Row-wise L2 normalisation; zero rows stay zero."""
    matrix = np.asarray(matrix, dtype=np.float32)
    norms = np.linalg.norm(matrix, axis=-1, keepdims=True)
    norms = np.where(norms == 0, 1, norms)  # avoid div-by-zero
    return (matrix / norms).astype(np.float32)


def _safe_texts(texts: list[str]) -> list[str]:
    # Providers reject empty input; a single space embeds to a neutral vector
    return [t if t.strip() else " " for t in texts]


class OpenAIEmbedder:
    """
    L2-normalised embeddings from the OpenAI embeddings API.

    `dimensions` is passed through to the API (text-embedding-3-* models
    support shortened outputs), keeping vectors at the 384 dims the cache
    and FAISS index expect.
    """

    def __init__(
        self,
        model: str = OPENAI_MODEL,
        dimensions: int = DIMENSIONS,
        batch_size: int = BATCH_SIZE,
        api_key: Optional[str] = None,
    ) -> None:
        self.model = model
        self.dimensions = dimensions
        self.batch_size = batch_size
        self._client = OpenAI(api_key=api_key or os.getenv("OPENAI_API_KEY"))
        self.total_tokens_used: int = 0
        self.total_api_calls: int = 0

    @traceable(name="embed_texts", run_type="embedding")
    def embed_texts(self, texts: list[str]) -> np.ndarray:
        if not texts:
            return np.empty((0, self.dimensions), dtype=np.float32)

        all_embeddings: list[list[float]] = []
        for i in range(0, len(texts), self.batch_size):
            batch = texts[i: i + self.batch_size]
            embeddings, tokens = self._embed_batch(batch)
            all_embeddings.extend(embeddings)
            self.total_tokens_used += tokens
            self.total_api_calls += 1

        return l2_normalise(np.array(all_embeddings, dtype=np.float32))

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        reraise=True,
    )
    def _embed_batch(self, texts: list[str]) -> tuple[list[list[float]], int]:
        """Call the OpenAI Embeddings API for a single batch."""
        start = time.perf_counter()
        response = self._client.embeddings.create(
            model=self.model,
            input=_safe_texts(texts),
            dimensions=self.dimensions,
        )
        elapsed = time.perf_counter() - start

        embeddings = [item.embedding for item in sorted(response.data, key=lambda x: x.index)]
        tokens_used = response.usage.total_tokens
        logger.debug(f"[Embedder] API call: {len(texts)} texts, {tokens_used} tokens, {elapsed:.2f}s")
        return embeddings, tokens_used

    def embed_query(self, text: str) -> np.ndarray:
        return self.embed_texts([text])[0]


class LocalEmbedder:
    """
    sentence-transformers model running in-process.

    The import is deferred to construction so the package (and keyword
    search) works without torch installed.
    """

    def __init__(
        self,
        model: str = LOCAL_MODEL,
        batch_size: int = BATCH_SIZE,
        device: Optional[str] = None,
    ) -> None:
        from sentence_transformers import SentenceTransformer

        logger.info(f"[Embedder] Loading local embedding model: {model}...")
        start = time.perf_counter()
        self.model_name = model
        self.batch_size = batch_size
        self._model = SentenceTransformer(model, device=device)
        self.dimensions = int(self._model.get_sentence_embedding_dimension())
        logger.info(
            f"[Embedder] Model loaded ({self.dimensions} dims) "
            f"in {time.perf_counter() - start:.1f}s"
        )

    def embed_texts(self, texts: list[str]) -> np.ndarray:
        if not texts:
            return np.empty((0, self.dimensions), dtype=np.float32)
        vectors = self._model.encode(
            _safe_texts(texts),
            batch_size=self.batch_size,
            convert_to_numpy=True,
            normalize_embeddings=True,
            show_progress_bar=False,
        )
        return l2_normalise(vectors)

    def embed_query(self, text: str) -> np.ndarray:
        return self.embed_texts([text])[0]


def build_embedder(
    provider: str,
    model: Optional[str] = None,
    dimensions: int = DIMENSIONS,
    batch_size: int = BATCH_SIZE,
) -> Optional[EmbeddingProvider]:
    """
    Construct the configured provider, or None for keyword-only operation.

    Construction failures (missing API key, model download error, torch not
    installed) are logged and turn semantic search off for the session.
    """
    if provider == "none":
        return None
    try:
        if provider == "local":
            return LocalEmbedder(model=model or LOCAL_MODEL, batch_size=batch_size)
        return OpenAIEmbedder(model=model or OPENAI_MODEL, dimensions=dimensions, batch_size=batch_size)
    except Exception as exc:
        logger.warning(f"[Embedder] Embeddings unavailable (keyword search only): {exc}")
        return None
