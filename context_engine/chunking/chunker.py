"""
Context Engine - Structure-Aware Chunker
-----------------------------------------
Turns one Document into an ordered sequence of Chunks that can each be
retrieved on their own.  The Document's `format` tag selects how the text is
cut into sections:

  - MARKDOWN: split at heading lines.  The section label is the heading path
      ("# Guide > ## Docker") so a hit on a sub-heading still carries its
      parents.  Headings inside fenced code blocks are ignored.  A heading with
      no body is folded into the section that follows it.

  - PLAIN: the whole document is one section.

  - CODE: top-level functions / classes become their own sections; code
      between them becomes "module" sections (see code_blocks.py).  Falls back
      to PLAIN when no blocks are found.

Every section is then:

  1. trimmed of blank lines at both ends, so `content` is exactly the text of
     lines `line_start..line_end`;
  2. split into line-aligned windows when it exceeds MAX_TOKENS.  A single
     line longer than the ceiling becomes its own oversized window; content
     is never truncated or dropped;
  3. prefixed with the previous section's last OVERLAP_LINES non-empty lines
     (line_start moves back to cover them) so text straddling a boundary is
     findable from both sides.

Chunking is a pure function of (text, format, config): re-running it yields
an identical sequence.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Iterator

import tiktoken
from loguru import logger

from context_engine.chunking.code_blocks import find_blocks
from context_engine.chunking.schemas import Chunk
from context_engine.schemas import Document, DocumentFormat


# ── Constants ─────────────────────────────────────────────────────────────────

MAX_TOKENS = 400          # Window ceiling per chunk
OVERLAP_LINES = 4         # Non-empty lines carried over from the previous chunk
ENCODING = "cl100k_base"

_HEADING_RE = re.compile(r"^(#{1,6})\s+(.+)")
_FENCE_RE = re.compile(r"^\s*(```|~~~)")
_LINE_SPLIT_RE = re.compile(r"\r?\n")


@dataclass(frozen=True)
class _Segment:
    section: str
    start: int      # 0-based line index, inclusive
    end: int        # 0-based line index, exclusive


def split_lines(text: str) -> list[str]:
    """Split on LF / CRLF only, so line numbers match what editors show."""
    return _LINE_SPLIT_RE.split(text)


def _trim(lines: list[str], start: int, end: int) -> tuple[int, int]:
    """Narrow [start, end) to exclude blank lines at both edges."""
    while start < end and not lines[start].strip():
        start += 1
    while end > start and not lines[end - 1].strip():
        end -= 1
    return start, end


# ── Main Chunker ──────────────────────────────────────────────────────────────

class Chunker:
    """
    Applies the format-specific split, size windows and overlap.

    Usage:
        chunker = Chunker()
        chunks = chunker.chunk_document(doc)
        for chunk in chunker.iter_chunks(doc): ...
    """

    def __init__(
        self,
        max_tokens: int = MAX_TOKENS,
        overlap_lines: int = OVERLAP_LINES,
        encoding: str = ENCODING,
    ) -> None:
        if max_tokens < 1:
            raise ValueError("max_tokens must be positive")
        if overlap_lines < 0:
            raise ValueError("overlap_lines must be >= 0")
        self.max_tokens = max_tokens
        self.overlap_lines = overlap_lines
        self._enc = tiktoken.get_encoding(encoding)

    def count_tokens(self, text: str) -> int:
        return len(self._enc.encode(text, disallowed_special=()))

    # --- Public API -------------------------------------------------------------

    def iter_chunks(self, doc: Document) -> Iterator[Chunk]:
        """Lazily yield the chunks of one document, in line order."""
        if not doc.text.strip():
            return

        lines = split_lines(doc.text)
        try:
            segments = self._segments(doc, lines)
        except Exception as exc:
            logger.warning(
                f"[Chunker] {doc.source}: {doc.format.value} split failed ({exc}); "
                "falling back to a single chunk"
            )
            yield self._whole(doc, lines)
            return

        previous: _Segment | None = None
        for segment in segments:
            start = segment.start
            if previous is not None and self.overlap_lines > 0:
                start = min(start, self._overlap_start(lines, previous))
            yield Chunk(
                source=doc.source,
                section=segment.section,
                content="\n".join(lines[start: segment.end]),
                line_start=start + 1,
                line_end=segment.end,
                indexed_at=doc.modified_at,
            )
            previous = segment

    def chunk_document(self, doc: Document) -> list[Chunk]:
        chunks = list(self.iter_chunks(doc))
        logger.debug(
            f"[Chunker] {doc.source} | {doc.format.value} | "
            f"{doc.line_count} lines -> {len(chunks)} chunk(s)"
        )
        return chunks

    def chunk_batch(self, docs: Iterable[Document]) -> list[Chunk]:
        """Chunk several documents. Returns a flat list; overlap never crosses documents."""
        all_chunks: list[Chunk] = []
        for doc in docs:
            all_chunks.extend(self.chunk_document(doc))
        return all_chunks

    # --- Section splitting ------------------------------------------------------

    def _segments(self, doc: Document, lines: list[str]) -> list[_Segment]:
        if doc.format is DocumentFormat.MARKDOWN:
            sections = self._markdown_sections(doc, lines)
        elif doc.format is DocumentFormat.CODE:
            sections = self._code_sections(doc, lines)
        else:
            sections = [_Segment(doc.name, 0, len(lines))]

        segments: list[_Segment] = []
        for section in sections:
            start, end = _trim(lines, section.start, section.end)
            if start >= end:
                continue
            for w_start, w_end in self._windows(lines, start, end):
                w_start, w_end = _trim(lines, w_start, w_end)
                if w_start < w_end:
                    segments.append(_Segment(section.section, w_start, w_end))
        return segments

    def _markdown_sections(self, doc: Document, lines: list[str]) -> list[_Segment]:
        # (label, heading line index); None marks the preamble
        raw: list[tuple[str, int | None]] = [(doc.name, None)]
        stack: list[str] = []
        in_fence = False

        for i, line in enumerate(lines):
            if _FENCE_RE.match(line):
                in_fence = not in_fence
                continue
            if in_fence:
                continue
            match = _HEADING_RE.match(line)
            if not match:
                continue
            level = len(match.group(1))
            del stack[level - 1:]
            stack.append(f"{match.group(1)} {match.group(2).strip()}")
            raw.append((" > ".join(stack), i))

        sections: list[_Segment] = []
        pending_start: int | None = None
        for idx, (label, heading) in enumerate(raw):
            start = 0 if heading is None else heading
            end = raw[idx + 1][1] if idx + 1 < len(raw) else len(lines)
            if pending_start is not None:
                start = pending_start
            body_start = start if heading is None else heading + 1
            body_blank = all(not line.strip() for line in lines[body_start:end])

            if heading is not None and body_blank and idx + 1 < len(raw):
                pending_start = start
                continue
            pending_start = None
            sections.append(_Segment(label, start, end))
        return sections

    def _code_sections(self, doc: Document, lines: list[str]) -> list[_Segment]:
        blocks = find_blocks(lines, doc.source)
        if not blocks:
            return [_Segment(doc.name, 0, len(lines))]

        module_label = f"{doc.name} > module"
        sections: list[_Segment] = []
        cursor = 0
        for block in blocks:
            if block.start > cursor:
                sections.append(_Segment(module_label, cursor, block.start))
            sections.append(_Segment(f"{doc.name} > {block.kind} {block.name}", block.start, block.end))
            cursor = block.end
        if cursor < len(lines):
            sections.append(_Segment(module_label, cursor, len(lines)))
        return sections

    # --- Size windows -----------------------------------------------------------

    def _windows(self, lines: list[str], start: int, end: int) -> Iterator[tuple[int, int]]:
        """Line-aligned windows of at most max_tokens (oversized single lines excepted)."""
        if self.count_tokens("\n".join(lines[start:end])) <= self.max_tokens:
            yield start, end
            return

        window_start = start
        used = 0
        for i in range(start, end):
            cost = self.count_tokens(lines[i]) + 1
            if i > window_start and used + cost > self.max_tokens:
                yield window_start, i
                window_start = i
                used = 0
            used += cost
        yield window_start, end

    # --- Overlap / fallback -----------------------------------------------------

    def _overlap_start(self, lines: list[str], previous: _Segment) -> int:
        non_empty = [i for i in range(previous.start, previous.end) if lines[i].strip()]
        return non_empty[-self.overlap_lines:][0]

    def _whole(self, doc: Document, lines: list[str]) -> Chunk:
        start, end = _trim(lines, 0, len(lines))
        return Chunk(
            source=doc.source,
            section=doc.name,
            content="\n".join(lines[start:end]),
            line_start=start + 1,
            line_end=end,
            indexed_at=doc.modified_at,
        )
