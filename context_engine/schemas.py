"""
Core Pydantic schemas for the Context Engine.

Documents arrive from a source provider (a file reader, an ops collector, a
test fixture) and are only ever read by the core.  Everything downstream of a
Document is a Chunk -- see context_engine.chunking.schemas.
"""
from __future__ import annotations

import hashlib
from datetime import datetime
from enum import Enum
from pathlib import PurePath
from typing import Optional

from pydantic import BaseModel, Field, computed_field


# --- Enumerations ------------------------------------------------------------

MARKDOWN_SUFFIXES = {".md", ".markdown", ".mdx"}
CODE_SUFFIXES = {".py", ".ts", ".tsx", ".js", ".jsx", ".mjs", ".mts", ".cjs"}


class DocumentFormat(str, Enum):
    """Structural hint that selects the chunking strategy."""

    MARKDOWN = "markdown"        # Split on headings
    PLAIN = "plain"              # Line windows only
    CODE = "code"                # Split on top-level functions / classes

    @classmethod
    def from_path(cls, path: str | PurePath) -> "DocumentFormat":
        suffix = PurePath(path).suffix.lower()
        if suffix in MARKDOWN_SUFFIXES:
            return cls.MARKDOWN
        if suffix in CODE_SUFFIXES:
            return cls.CODE
        return cls.PLAIN


class SearchMode(str, Enum):
    HYBRID = "hybrid"
    KEYWORD = "keyword"
    SEMANTIC = "semantic"


# --- Core Document Model ------------------------------------------------------

class Document(BaseModel):
    """
    A single source document as handed over by the source provider.

    `source` is the identifier carried by every chunk for citations.
    `modified_at` becomes the chunks' `indexed_at` and drives recency decay;
    leave it unset when the provider has no trustworthy timestamp.
    """

    source: str
    text: str
    format: DocumentFormat = DocumentFormat.MARKDOWN
    modified_at: Optional[datetime] = None

    @computed_field
    @property
    def checksum(self) -> str:
        """SHA-256 of text, logged on ingest so re-reads of an unchanged file are easy to spot."""
        return hashlib.sha256(self.text.encode("utf-8", errors="surrogatepass")).hexdigest()

    @computed_field
    @property
    def line_count(self) -> int:
        return len(self.text.splitlines())

    @property
    def name(self) -> str:
        """Last path component of the source, used as a fallback section label."""
        return PurePath(self.source).name or self.source


class IndexStats(BaseModel):
    """Summary of one reindex pass."""

    documents: int = 0
    chunks: int = 0
    duplicates_removed: int = 0
    by_format: dict[str, int] = Field(default_factory=dict)
