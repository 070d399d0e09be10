"""
Chunk schema - the atomic unit that gets scored, embedded and cached.

A Chunk traces back to its parent Document by `source` and an inclusive,
1-based line range, so every search result can be cited precisely.
"""
from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import numpy as np
from pydantic import BaseModel, ConfigDict, computed_field, field_validator, model_validator


class Chunk(BaseModel):
    """
    A single retrievable text window produced from a Document.

    Chunks are immutable: the retriever, ranker and cache all key off the
    same objects for the lifetime of a session.
    """

    model_config = ConfigDict(frozen=True)

    # Provenance
    source: str                          # Owning Document.source
    section: str = ""                    # Heading path, e.g. "# Guide > ## Docker"

    # Content
    content: str                         # Text of lines line_start..line_end
    line_start: int                      # 1-based, inclusive
    line_end: int                        # 1-based, inclusive

    # Recency signal (None = no decay)
    indexed_at: Optional[datetime] = None

    @field_validator("content")
    @classmethod
    def _content_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("chunk content must not be blank")
        return value

    @model_validator(mode="after")
    def _line_range(self) -> "Chunk":
        if self.line_start < 1 or self.line_end < self.line_start:
            raise ValueError(
                f"invalid line range {self.line_start}-{self.line_end} for {self.source}"
            )
        return self

    @computed_field
    @property
    def content_hash(self) -> str:
        """Truncated SHA-256 of content, used for cross-document de-duplication."""
        return hashlib.sha256(self.content.encode("utf-8", errors="surrogatepass")).hexdigest()[:16]

    @property
    def location(self) -> str:
        return f"{self.source}:{self.line_start}-{self.line_end}"

    def embedding_text(self, max_chars: int = 512) -> str:
        """Text handed to the embedding provider: heading path + body, truncated."""
        text = f"{self.section}\n{self.content}" if self.section else self.content
        return text[:max_chars]


@dataclass
class EmbeddedChunk:
    """A Chunk paired with its L2-normalised embedding vector."""

    chunk: Chunk
    vector: np.ndarray


@dataclass
class SearchResult:
    """
    One ranked hit.

    `score` is the fused score used for ordering; the component scores are
    kept for display and debugging (keyword_score is the raw, un-normalised
    ranker output).
    """

    chunk: Chunk
    score: float
    keyword_score: float = 0.0
    semantic_score: float = 0.0

    def to_dict(self) -> dict:
        return {
            "source": self.chunk.source,
            "section": self.chunk.section,
            "line_start": self.chunk.line_start,
            "line_end": self.chunk.line_end,
            "score": round(self.score, 6),
            "keyword_score": round(self.keyword_score, 6),
            "semantic_score": round(self.semantic_score, 6),
            "content": self.chunk.content,
        }
