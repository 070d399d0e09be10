"""
Embedding Vector Cache
-----------------------
Persists chunk vectors to disk so a restart with unchanged sources skips the
whole embedding step (model load + per-chunk inference) and semantic search
is ready in milliseconds.

Validity is decided by a fingerprint: SHA-256 over every chunk's
(source, section, content) in order, NUL-separated so that "a"+"bc" and
"ab"+"c" hash differently.  Any change to any chunk, or to their order,
invalidates the whole entry -- there is no partial reuse.

File layout (single JSON document, written with orjson):
    {
      "fingerprint": "<sha256 hex>",
      "format_version": 3,
      "chunk_count": N,
      "dimensions": 384,
      "created_at": "...",
      "chunk_keys": [{"source", "section", "line_start", "line_end"}, ...],
      "vectors": [[...], ...]
    }

Every read problem (missing file, corrupt JSON, old format, stale
fingerprint) is a CacheMiss, never an exception: losing the cache only costs
recomputation time.
"""
from __future__ import annotations

import hashlib
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Sequence, Union

import numpy as np
from loguru import logger

from context_engine.chunking.schemas import Chunk, EmbeddedChunk
from context_engine.utils.helpers import atomic_write_bytes, dump_json, expand_path, load_json

CACHE_VERSION = 3
DEFAULT_CACHE_FILE = Path("~/.contextengine/embedding-cache.json")


@dataclass(frozen=True)
class CacheMiss:
    """Sentinel returned by VectorCache.load() when vectors must be recomputed."""

    reason: str

    def __bool__(self) -> bool:
        return False


LoadResult = Union[list[EmbeddedChunk], CacheMiss]


def fingerprint(chunks: Sequence[Chunk]) -> str:
    """Order-sensitive SHA-256 over (source, section, content) of every chunk."""
    hasher = hashlib.sha256()
    for chunk in chunks:
        key = f"{chunk.source}\0{chunk.section}\0{chunk.content}\0"
        hasher.update(key.encode("utf-8", errors="surrogatepass"))
    return hasher.hexdigest()


class VectorCache:
    """
    On-disk cache for one chunk set's embedding vectors.

    Usage:
        cache = VectorCache("~/.contextengine/embedding-cache.json")
        hit = cache.load(chunks)
        if not hit:
            vectors = embedder.embed_texts(...)
            cache.save(chunks, vectors)
    """

    def __init__(self, path: str | Path = DEFAULT_CACHE_FILE) -> None:
        self.path = expand_path(path)

    @staticmethod
    def fingerprint(chunks: Sequence[Chunk]) -> str:
        return fingerprint(chunks)

    @property
    def exists(self) -> bool:
        return self.path.is_file()

    # --- Read ---------------------------------------------------------------------

    def load(self, chunks: Sequence[Chunk]) -> LoadResult:
        """
        Return vectors paired positionally with `chunks`, or a CacheMiss.

        A hit requires: file present and parseable, matching format version,
        matching fingerprint, and exactly one vector per chunk.
        """
        if not chunks:
            return self._miss("empty chunk set")
        if not self.path.is_file():
            return self._miss("no cache file", level="DEBUG")

        start = time.perf_counter()
        try:
            entry = load_json(self.path)
        except (OSError, ValueError) as exc:
            return self._miss(f"cache read failed: {exc}", level="WARNING")

        if not isinstance(entry, dict):
            return self._miss("cache file is not a JSON object", level="WARNING")
        if entry.get("format_version") != CACHE_VERSION:
            return self._miss("cache version mismatch")
        if entry.get("fingerprint") != fingerprint(chunks):
            return self._miss("cache stale (chunks changed)")
        if entry.get("chunk_count") != len(chunks):
            return self._miss("cache count mismatch")

        try:
            vectors = np.asarray(entry["vectors"], dtype=np.float32)
        except (KeyError, TypeError, ValueError) as exc:
            return self._miss(f"cache vectors unreadable: {exc}", level="WARNING")
        if vectors.ndim != 2 or vectors.shape[0] != len(chunks):
            return self._miss(f"cache vectors have shape {vectors.shape}", level="WARNING")

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"[VectorCache] Loaded {len(chunks)} cached embeddings "
            f"({vectors.shape[1]} dims) in {elapsed_ms:.0f}ms"
        )
        return [EmbeddedChunk(chunk=c, vector=v) for c, v in zip(chunks, vectors)]

    # --- Write --------------------------------------------------------------------

    def save(self, chunks: Sequence[Chunk], vectors: np.ndarray) -> bool:
        """
        Replace the cache file with `vectors` for `chunks`.

        Returns False (and logs) when the file cannot be written; a failed
        save must never break the session that just computed the vectors.
        """
        matrix = np.ascontiguousarray(vectors, dtype=np.float32)
        if matrix.ndim != 2 or matrix.shape[0] != len(chunks):
            raise ValueError(
                f"Mismatch: {len(chunks)} chunks vs vectors of shape {matrix.shape}"
            )
        if not chunks:
            logger.debug("[VectorCache] Nothing to save (empty chunk set)")
            return False

        entry = {
            "fingerprint": fingerprint(chunks),
            "format_version": CACHE_VERSION,
            "chunk_count": len(chunks),
            "dimensions": int(matrix.shape[1]),
            "created_at": datetime.now(timezone.utc),
            "chunk_keys": [
                {
                    "source": c.source,
                    "section": c.section,
                    "line_start": c.line_start,
                    "line_end": c.line_end,
                }
                for c in chunks
            ],
            "vectors": matrix,
        }
        try:
            payload = dump_json(entry)
            atomic_write_bytes(self.path, payload)
        except (OSError, TypeError) as exc:
            logger.warning(f"[VectorCache] Cache write failed: {exc}")
            return False

        logger.info(
            f"[VectorCache] Saved {len(chunks)} embeddings to cache "
            f"({round(len(payload) / 1024)} KB) -> {self.path}"
        )
        return True

    def clear(self) -> bool:
        """Delete the cache file. Returns True if a file was removed."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.warning(f"[VectorCache] Cache clear failed: {exc}")
            return False
        logger.info(f"[VectorCache] Cleared {self.path}")
        return True

    # --- Internals ----------------------------------------------------------------

    @staticmethod
    def _miss(reason: str, level: str = "INFO") -> CacheMiss:
        logger.log(level, f"[VectorCache] Miss: {reason} -- will re-embed")
        return CacheMiss(reason)
