"""Tests for document loading and de-duplicated chunking."""

from datetime import timezone

from context_engine.chunking.chunker import Chunker
from context_engine.ingest import chunk_documents, load_documents
from context_engine.schemas import Document, DocumentFormat


class TestChunkDocuments:

    def test_duplicates_across_documents_are_dropped(self, guide_doc) -> None:
        copy = guide_doc.model_copy(update={"source": "mirror/deploy.md"})
        chunks, stats = chunk_documents([guide_doc, copy])
        assert stats.documents == 2
        assert stats.chunks == len(chunks) == 3
        assert stats.duplicates_removed == 3
        assert {c.source for c in chunks} == {"docs/deploy.md"}

    def test_stats_by_format(self, guide_doc) -> None:
        plain = Document(source="status.txt", text="all systems green", format=DocumentFormat.PLAIN)
        _, stats = chunk_documents([guide_doc, plain], Chunker())
        assert stats.by_format == {"markdown": 1, "plain": 1}

    def test_order_is_preserved(self, guide_doc) -> None:
        other = Document(source="b.md", text="# B\nSecond document.")
        chunks, _ = chunk_documents([other, guide_doc])
        assert chunks[0].source == "b.md"
        assert [c.line_start for c in chunks[1:]] == sorted(c.line_start for c in chunks[1:])

    def test_lone_surrogate_does_not_break_hashing(self) -> None:
        doc = Document(source="notes.txt", text="first line\nbad \ud800 byte\n", format=DocumentFormat.PLAIN)
        assert len(doc.checksum) == 64
        chunks, stats = chunk_documents([doc])
        assert stats.chunks == len(chunks) >= 1
        assert "\ud800" in chunks[0].content


class TestLoadDocuments:

    def test_reads_files_and_guesses_format(self, tmp_path) -> None:
        md = tmp_path / "guide.md"
        md.write_text("# Guide\nhello", encoding="utf-8")
        py = tmp_path / "tool.py"
        py.write_text("x = 1\n", encoding="utf-8")
        txt = tmp_path / "notes.log"
        txt.write_text("plain notes", encoding="utf-8")

        docs = load_documents([md, py, txt])
        assert [d.format for d in docs] == [
            DocumentFormat.MARKDOWN,
            DocumentFormat.CODE,
            DocumentFormat.PLAIN,
        ]
        assert docs[0].source == str(md)
        assert docs[0].text == "# Guide\nhello"
        assert docs[0].modified_at.tzinfo == timezone.utc

    def test_missing_files_are_skipped(self, tmp_path) -> None:
        real = tmp_path / "real.md"
        real.write_text("# Real", encoding="utf-8")
        docs = load_documents([tmp_path / "ghost.md", real, tmp_path])
        assert [d.source for d in docs] == [str(real)]

    def test_format_override(self, tmp_path) -> None:
        f = tmp_path / "README.md"
        f.write_text("# not split", encoding="utf-8")
        docs = load_documents([f], format_override=DocumentFormat.PLAIN)
        assert docs[0].format is DocumentFormat.PLAIN


class TestDocumentFormat:

    def test_from_path(self) -> None:
        assert DocumentFormat.from_path("a/b/README.MD") is DocumentFormat.MARKDOWN
        assert DocumentFormat.from_path("src/app.tsx") is DocumentFormat.CODE
        assert DocumentFormat.from_path("Makefile") is DocumentFormat.PLAIN

    def test_document_helpers(self) -> None:
        doc = Document(source="docs/guide.md", text="a\nb\n")
        assert doc.name == "guide.md"
        assert doc.line_count == 2
        assert len(doc.checksum) == 64
