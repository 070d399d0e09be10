"""
Ingest - Documents in, de-duplicated Chunks out
-------------------------------------------------
`chunk_documents()` is what a reindex runs: chunk every document in order and
drop chunks whose content hash was already seen (the same runbook copied
into two projects should not take two result slots).

`load_documents()` turns an explicit list of file paths into Documents.  It
does not discover anything -- callers decide which files are indexed.
"""
from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from loguru import logger

from context_engine.chunking.chunker import Chunker
from context_engine.chunking.schemas import Chunk
from context_engine.schemas import Document, DocumentFormat, IndexStats


def chunk_documents(
    documents: Iterable[Document],
    chunker: Optional[Chunker] = None,
) -> tuple[list[Chunk], IndexStats]:
    """
    Chunk all documents, keeping the first occurrence of each content hash.

    Returns:
        (chunks in document/line order, IndexStats summary)
    """
    chunker = chunker or Chunker()
    stats = IndexStats()
    seen: set[str] = set()
    chunks: list[Chunk] = []

    for doc in documents:
        stats.documents += 1
        stats.by_format[doc.format.value] = stats.by_format.get(doc.format.value, 0) + 1
        produced = 0
        for chunk in chunker.iter_chunks(doc):
            if chunk.content_hash in seen:
                stats.duplicates_removed += 1
                continue
            seen.add(chunk.content_hash)
            chunks.append(chunk)
            produced += 1
        logger.debug(f"[Ingest] Indexed: {doc.source} ({produced} chunks, sha256 {doc.checksum[:12]})")

    stats.chunks = len(chunks)
    if stats.duplicates_removed:
        logger.info(f"[Ingest] Deduplicated: {stats.duplicates_removed} duplicate chunks removed")
    logger.info(f"[Ingest] Total: {stats.chunks} chunks from {stats.documents} documents")
    return chunks, stats


def load_documents(
    paths: Iterable[str | Path],
    format_override: Optional[DocumentFormat] = None,
) -> list[Document]:
    """
    Read each path into a Document.  Missing or unreadable files are skipped
    with a warning.  The file's mtime becomes `modified_at`.
    """
    docs: list[Document] = []
    for raw_path in paths:
        path = Path(raw_path).expanduser()
        if not path.is_file():
            logger.warning(f"[Ingest] Skipping missing: {path}")
            continue
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
            modified_at = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
        except OSError as exc:
            logger.warning(f"[Ingest] Skipping {path}: {exc}")
            continue
        docs.append(
            Document(
                source=str(path),
                text=text,
                format=format_override or DocumentFormat.from_path(path),
                modified_at=modified_at,
            )
        )
    logger.info(f"[Ingest] Loaded {len(docs)} documents")
    return docs
