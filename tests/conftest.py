"""Shared fixtures: a deterministic offline embedder and small corpora."""
from __future__ import annotations

import hashlib
import re
import threading
from datetime import datetime, timezone
from typing import Optional

import numpy as np
import pytest

from context_engine.chunking.schemas import Chunk
from context_engine.embedding.cache import VectorCache
from context_engine.embedding.embedder import l2_normalise
from context_engine.schemas import Document, DocumentFormat

DIMS = 384
_WORD_RE = re.compile(r"\w+")


class FakeEmbedder:
    """
    Bag-of-words hashing embedder.

    Texts sharing words get a positive cosine similarity, which is all the
    retriever tests need.  `fail` makes every call raise; `gate` blocks the
    first embed_texts() call until the event is set.
    """

    def __init__(
        self,
        dimensions: int = DIMS,
        fail: bool = False,
        fail_queries: bool = False,
        gate: Optional[threading.Event] = None,
    ) -> None:
        self.dimensions = dimensions
        self.fail = fail
        self.fail_queries = fail_queries
        self.gate = gate
        self.calls = 0
        self.started = threading.Event()
        self.texts_seen = 0

    def _vector(self, text: str) -> np.ndarray:
        vec = np.zeros(self.dimensions, dtype=np.float32)
        for word in _WORD_RE.findall(text.lower()):
            slot = int(hashlib.sha1(word.encode("utf-8")).hexdigest(), 16) % self.dimensions
            vec[slot] += 1.0
        return vec

    def embed_texts(self, texts: list[str]) -> np.ndarray:
        self.calls += 1
        self.started.set()
        if self.gate is not None and self.calls == 1:
            self.gate.wait(timeout=10)
        if self.fail:
            raise RuntimeError("embedding service unavailable")
        self.texts_seen += len(texts)
        if not texts:
            return np.empty((0, self.dimensions), dtype=np.float32)
        return l2_normalise(np.stack([self._vector(t) for t in texts]))

    def embed_query(self, text: str) -> np.ndarray:
        if self.fail or self.fail_queries:
            raise RuntimeError("embedding service unavailable")
        return l2_normalise(self._vector(text).reshape(1, -1))[0]


def make_chunk(
    content: str,
    section: str = "",
    source: str = "test.md",
    line_start: int = 1,
    indexed_at: Optional[datetime] = None,
) -> Chunk:
    return Chunk(
        source=source,
        section=section,
        content=content,
        line_start=line_start,
        line_end=line_start + content.count("\n"),
        indexed_at=indexed_at,
    )


@pytest.fixture
def stack_chunks() -> list[Chunk]:
    """Five one-line chunks, one per topic."""
    return [
        make_chunk("Express rate limiting with express-rate-limit middleware", "## Security", line_start=1),
        make_chunk("React components use JSX syntax for rendering UI elements", "## Frontend", line_start=3),
        make_chunk("PostgreSQL database with connection pooling via pgBouncer", "## Database", line_start=5),
        make_chunk("Containers orchestrated with compose for local dev", "## Docker", line_start=7),
        make_chunk("ESLint configuration with TypeScript parser for code quality", "## Tooling", line_start=9),
    ]


@pytest.fixture
def cache(tmp_path) -> VectorCache:
    return VectorCache(tmp_path / "cache" / "embedding-cache.json")


@pytest.fixture
def guide_doc() -> Document:
    text = "\n".join(
        [
            "# Deployment Guide",
            "This guide covers shipping the service.",
            "Read it before your first release.",
            "Ask in the ops channel when stuck.",
            "Releases happen every Tuesday.",
            "",
            "## Docker",
            "Build the image with docker build.",
            "Tag it with the release version.",
            "Push it to the internal registry.",
            "Run the smoke test container.",
            "",
            "## Rollback",
            "Redeploy the previous tag.",
            "Verify the health endpoint.",
            "Post a note in the incident log.",
            "Page the on-call engineer if needed.",
        ]
    )
    return Document(
        source="docs/deploy.md",
        text=text,
        format=DocumentFormat.MARKDOWN,
        modified_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )
