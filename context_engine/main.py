"""
Context Engine - CLI Entry Point
---------------------------------
Typer commands around the retrieval core.  Files to index are always named
explicitly; the CLI does not go looking for them.

Usage:
    python -m context_engine.main index docs/*.md              # chunk + embed + cache
    python -m context_engine.main search "docker" docs/*.md    # hybrid search
    python -m context_engine.main search "docker" docs/*.md --mode keyword --json
    python -m context_engine.main status                       # config + cache state
    python -m context_engine.main clear-cache
"""
from __future__ import annotations

import sys

# Windows cp1252 terminal fix: force UTF-8 so document text with emoji does
# not crash the Rich console renderer.
if sys.platform == "win32":
    sys.stdout.reconfigure(encoding="utf-8", errors="replace")
    sys.stderr.reconfigure(encoding="utf-8", errors="replace")

from pathlib import Path
from typing import List, Optional

import typer
from loguru import logger
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from context_engine.config import Settings, load_settings
from context_engine.embedding.cache import VectorCache
from context_engine.ingest import load_documents
from context_engine.retrieval.retriever import HybridRetriever
from context_engine.schemas import DocumentFormat, SearchMode
from context_engine.utils.helpers import dump_json, load_json, truncate_text
from context_engine.utils.logger import setup_logger

app = typer.Typer(
    name="context-engine",
    help="Context Engine - hybrid keyword + semantic search over project knowledge",
    add_completion=False,
)
console = Console()


# --- Helpers ------------------------------------------------------------------

def _bootstrap(config: Optional[str], keyword_only: bool = False) -> Settings:
    try:
        settings = load_settings(config)
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[red]Invalid configuration:[/red] {exc}")
        raise typer.Exit(2)
    if keyword_only:
        settings.embedding.provider = "none"
    setup_logger(settings.logging.level, settings.logging.file)
    return settings


def _build(settings: Settings, files: List[Path], fmt: Optional[DocumentFormat]) -> HybridRetriever:
    documents = load_documents(files, format_override=fmt)
    if not documents:
        console.print("[red]None of the given files could be read.[/red]")
        raise typer.Exit(1)
    retriever = HybridRetriever.from_settings(settings)
    with console.status(f"[cyan]Indexing {len(documents)} documents...[/cyan]"):
        retriever.reindex(documents, background=False)
    return retriever


def _print_results(query: str, results, mode: str) -> None:
    if not results:
        console.print(f'[yellow]No results found for: "{query}"[/yellow]')
        return

    table = Table(
        "No.", "Source", "Section", "Lines", "Score", "kw / sem",
        box=box.SIMPLE,
        show_header=True,
        header_style="bold dim",
    )
    for i, r in enumerate(results, start=1):
        table.add_row(
            str(i),
            truncate_text(r.chunk.source, 50),
            truncate_text(r.chunk.section, 45),
            f"{r.chunk.line_start}-{r.chunk.line_end}",
            f"{r.score:.3f}",
            f"{r.keyword_score:.2f} / {r.semantic_score:.2f}",
        )
    console.print(f'[bold]Search:[/bold] "{query}" | mode: {mode} | {len(results)} results')
    console.print(table)

    top = results[0]
    console.print(
        Panel(
            truncate_text(top.chunk.content, 1200),
            title=f"[bold green]#1[/bold green] {top.chunk.location}",
            border_style="green",
            expand=True,
        )
    )


# --- Commands -----------------------------------------------------------------

@app.command()
def index(
    files: List[Path] = typer.Argument(..., help="Files to index"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to config YAML"),
    fmt: Optional[DocumentFormat] = typer.Option(
        None, "--format", help="Force a format instead of guessing from the suffix"
    ),
) -> None:
    """
    Chunk and embed the given files, writing the vector cache.

    \b
    Steps:
      1. Read files (format from suffix: markdown / code / plain)
      2. Structure-aware chunking with 4-line overlap
      3. Embedding (skipped when the cache is still valid)
      4. Vector cache written atomically
    """
    settings = _bootstrap(config)
    retriever = _build(settings, files, fmt)
    stats = retriever.stats()

    console.print(
        Panel(
            "[bold green]Index ready[/bold green]\n\n"
            f"  Documents   : {stats['documents']:,}\n"
            f"  Chunks      : {stats['chunks']:,}\n"
            f"  Duplicates  : {stats['duplicates_removed']:,}\n"
            f"  Semantic    : {'ready' if stats['semantic_ready'] else 'unavailable'}\n"
            f"  Cache file  : {stats['cache_file']}",
            box=box.DOUBLE_EDGE,
            border_style="green",
            expand=False,
        )
    )


@app.command()
def search(
    query: str = typer.Argument(..., help="Free-text query"),
    files: List[Path] = typer.Argument(..., help="Files to search"),
    top_k: Optional[int] = typer.Option(None, "--top-k", "-k", help="Number of results"),
    mode: SearchMode = typer.Option(SearchMode.HYBRID, "--mode", "-m", help="hybrid | keyword | semantic"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to config YAML"),
    fmt: Optional[DocumentFormat] = typer.Option(None, "--format", help="Force a document format"),
    json_out: bool = typer.Option(False, "--json", help="Print results as JSON"),
) -> None:
    """Index the given files (cache-assisted) and run one query."""
    settings = _bootstrap(config, keyword_only=mode is SearchMode.KEYWORD)
    retriever = _build(settings, files, fmt)
    results = retriever.search(query, top_k=top_k, mode=mode)

    if json_out:
        typer.echo(dump_json([r.to_dict() for r in results]).decode("utf-8"))
        return
    if mode is SearchMode.KEYWORD or retriever.semantic_ready:
        effective = mode.value
    else:
        effective = "keyword (embeddings unavailable)"
    _print_results(query, results, effective)


@app.command()
def status(
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to config YAML"),
) -> None:
    """Show the effective configuration and the vector cache state."""
    settings = _bootstrap(config)
    cache = VectorCache(settings.cache.file)

    console.print()
    console.print("[bold]Context Engine[/bold]")
    console.print(f"  Embeddings : {settings.embedding.provider} ({settings.embedding.dimensions} dims)")
    console.print(
        f"  Weights    : keyword {settings.retrieval.keyword_weight} / "
        f"semantic {settings.retrieval.semantic_weight}"
    )
    console.print(f"  Half-life  : {settings.ranking.half_life_days} days")
    console.print(f"  Cache file : {cache.path}")

    if not cache.exists:
        console.print("  Cache      : [yellow]absent[/yellow]")
        return
    try:
        entry = load_json(cache.path)
        console.print(
            f"  Cache      : [green]{entry.get('chunk_count')} vectors[/green] "
            f"| v{entry.get('format_version')} | {entry.get('created_at')}"
        )
    except (OSError, ValueError, AttributeError) as exc:
        logger.debug(f"[CLI] Cache unreadable: {exc}")
        console.print("  Cache      : [red]unreadable (will be rebuilt on next index)[/red]")


@app.command("clear-cache")
def clear_cache(
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to config YAML"),
) -> None:
    """Delete the embedding vector cache."""
    settings = _bootstrap(config)
    if VectorCache(settings.cache.file).clear():
        console.print("[green][OK] Embedding cache cleared.[/green]")
    else:
        console.print("[dim]No cache file to clear.[/dim]")


# --- Entry Point --------------------------------------------------------------

if __name__ == "__main__":
    app()
