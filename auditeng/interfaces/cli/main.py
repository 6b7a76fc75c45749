"""
CLI Main - Typer-based command-line interface.

Usage:
    auditeng analyze path/to/request.json
    auditeng search "ground resistance above limit" --test-type GROUNDING
    auditeng seed-standards
    auditeng init
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import TYPE_CHECKING

import typer
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

if TYPE_CHECKING:
    from auditeng.adapters.faiss import FAISSVectorStore
    from auditeng.config import Settings
    from auditeng.domains.extraction.contracts import VisionModel
    from auditeng.domains.knowledge import RAGService

app = typer.Typer(
    name="auditeng",
    help="AuditEng - Compliance analysis for electrical test reports",
    add_completion=False,
)
console = Console()

_VERDICT_STYLES = {
    "APPROVED": "[bold green]APPROVED[/bold green]",
    "APPROVED_WITH_COMMENTS": "[bold yellow]APPROVED WITH COMMENTS[/bold yellow]",
    "REJECTED": "[bold red]REJECTED[/bold red]",
}

_SEVERITY_STYLES = {
    "CRITICAL": "bold red",
    "MAJOR": "red",
    "MINOR": "yellow",
}


def _build_vision_model(settings: Settings) -> VisionModel:
    """Vision adapter for the configured provider."""
    if settings.vision_provider == "gemini":
        from auditeng.adapters.gemini import GeminiConfig, GeminiVisionClient

        return GeminiVisionClient(
            GeminiConfig(
                temperature=settings.extraction_temperature,
                max_output_tokens=settings.extraction_max_tokens,
                timeout_seconds=settings.extraction_timeout_seconds,
                rate_limit_rpm=settings.gemini_rate_limit_rpm,
            )
        )

    from auditeng.adapters.openai import OpenAIVisionClient

    return OpenAIVisionClient(
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        max_tokens=settings.extraction_max_tokens,
        temperature=settings.extraction_temperature,
        timeout_seconds=settings.extraction_timeout_seconds,
    )


async def _open_knowledge(settings: Settings) -> tuple[RAGService, FAISSVectorStore]:
    """Load the knowledge index from disk, or start an empty one."""
    from auditeng.adapters.embeddings import SentenceTransformerEmbedder
    from auditeng.adapters.faiss import FAISSVectorStore
    from auditeng.domains.knowledge import RAGConfig, RAGService

    store = FAISSVectorStore(dimension=settings.embedding_dimension)
    index_path = Path(settings.knowledge_index_path)
    if (index_path / "faiss_index.bin").exists():
        await store.load(index_path)
    else:
        await store.initialize()

    embedder = SentenceTransformerEmbedder(settings.embedding_model, settings.embedding_max_tokens)
    return RAGService(embedder, store, RAGConfig.from_settings(settings)), store


@app.command()
def analyze(
    manifest: Path = typer.Argument(..., help="Path to JSON analysis request"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Output JSON path"),
    learn: bool = typer.Option(True, "--learn/--no-learn", help="Use and update the knowledge index"),
) -> None:
    """Analyze one test report described by a JSON manifest."""
    if not manifest.exists():
        console.print(f"[red]Error:[/red] File not found: {manifest}")
        raise typer.Exit(1)

    asyncio.run(_analyze_async(manifest, output, learn))


async def _analyze_async(manifest: Path, output: Path | None, learn: bool) -> None:
    """Async analysis implementation."""
    from auditeng.adapters.sqlite import SQLiteAnalysisRepository
    from auditeng.config import get_settings, setup_logging
    from auditeng.domains.analysis import AnalysisOrchestrator, AnalysisRequest, AnalysisStatus
    from auditeng.domains.extraction import BatchExtractor, ExtractionConfig, ResilientExtractionClient
    from auditeng.domains.validation import DateFormat

    settings = get_settings()
    setup_logging(settings.log_level, console)

    try:
        request = AnalysisRequest.model_validate_json(manifest.read_text())
    except ValueError as e:
        console.print(f"[red]Error:[/red] Invalid manifest: {e}")
        raise typer.Exit(1)

    repo = SQLiteAnalysisRepository(settings.db_path)
    await repo.initialize()
    model = _build_vision_model(settings)
    rag, store = await _open_knowledge(settings) if learn else (None, None)

    client = ResilientExtractionClient(model, ExtractionConfig.from_settings(settings))
    orchestrator = AnalysisOrchestrator(
        repo,
        BatchExtractor(client),
        rag=rag,
        date_format=DateFormat(settings.date_format),
    )

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        progress.add_task(f"Analyzing {request.filename or manifest.name}...", total=None)

        try:
            analysis_id = await orchestrator.create_and_process(request)
            analysis = await orchestrator.wait(analysis_id)
            await orchestrator.drain()
            if store is not None:
                await store.save(settings.knowledge_index_path)
        finally:
            await repo.close()
            close = getattr(model, "close", None)
            if close is not None:
                await close()

    if analysis.status is not AnalysisStatus.COMPLETED:
        console.print(f"[red]Analysis {analysis.status.value}:[/red] {analysis.error_message or ''}")
        raise typer.Exit(1)

    verdict = analysis.verdict.value if analysis.verdict else ""
    console.print(
        Panel(
            f"[bold]Verdict:[/bold] {_VERDICT_STYLES.get(verdict, verdict)}\n"
            f"[bold]Score:[/bold] {analysis.score}\n"
            f"[bold]Confidence:[/bold] {analysis.confidence or 0:.0%}\n"
            f"[dim]Tokens: {analysis.tokens_consumed}, cost: ${analysis.cost:.4f}[/dim]",
            title=f"Analysis {analysis.id}",
        )
    )

    if analysis.non_conformities:
        table = Table(title="Non-conformities")
        table.add_column("Code", style="cyan")
        table.add_column("Severity")
        table.add_column("Description")
        table.add_column("Corrective Action", style="dim")

        for nc in analysis.non_conformities:
            style = _SEVERITY_STYLES.get(nc.severity.value, "")
            table.add_row(nc.code, f"[{style}]{nc.severity.value}[/{style}]", nc.description, nc.corrective_action)

        console.print(table)

    if output:
        output.write_text(analysis.model_dump_json(indent=2))
        console.print(f"\n[green]Saved to:[/green] {output}")


@app.command()
def search(
    query: str = typer.Argument(..., help="Search query"),
    limit: int = typer.Option(5, "--limit", "-n", help="Number of results"),
    test_type: str | None = typer.Option(None, "--test-type", "-t", help="GROUNDING, MEGGER or THERMOGRAPHY"),
    company: str | None = typer.Option(None, "--company", "-c", help="Tenant id (global entries only if omitted)"),
    min_similarity: float = typer.Option(0.3, "--min-similarity", help="Similarity floor"),
) -> None:
    """Search the knowledge index."""
    asyncio.run(_search_async(query, limit, test_type, company, min_similarity))


async def _search_async(
    query: str,
    limit: int,
    test_type: str | None,
    company: str | None,
    min_similarity: float,
) -> None:
    """Async search implementation."""
    from auditeng.config import get_settings
    from auditeng.domains.knowledge import SearchFilters
    from auditeng.domains.validation.models import TestType

    settings = get_settings()

    try:
        parsed_type = TestType(test_type.upper()) if test_type else None
    except ValueError:
        console.print(f"[red]Error:[/red] Unknown test type: {test_type}")
        raise typer.Exit(1)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        progress.add_task("Searching...", total=None)

        try:
            rag, _ = await _open_knowledge(settings)
            results = await rag.search(
                query,
                SearchFilters(
                    test_type=parsed_type,
                    company_id=company,
                    limit=limit,
                    min_similarity=min_similarity,
                ),
            )
        except Exception as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)

    if not results:
        console.print(f"\n[yellow]No results for:[/yellow] {query}")
        return

    table = Table(title=f"Knowledge results for '{query}'")
    table.add_column("Similarity", style="green")
    table.add_column("Type", style="cyan")
    table.add_column("Test")
    table.add_column("Content")

    for result in results:
        first_line = result.content.splitlines()[0] if result.content else ""
        table.add_row(
            f"{result.similarity:.2f}",
            result.content_type.value,
            result.test_type.value if result.test_type else "-",
            first_line[:80],
        )

    console.print(table)


@app.command("seed-standards")
def seed_standards(
    test_type: str | None = typer.Option(None, "--test-type", "-t", help="Only criteria for one test type"),
    category: str | None = typer.Option(None, "--category", "-c", help="Only criteria of one category"),
) -> None:
    """Index the technical criteria corpus as global knowledge."""
    if test_type and category:
        console.print("[red]Error:[/red] Use either --test-type or --category, not both")
        raise typer.Exit(1)

    asyncio.run(_seed_async(test_type, category))


async def _seed_async(test_type: str | None, category: str | None) -> None:
    """Async seeding implementation."""
    from auditeng.config import get_settings, setup_logging
    from auditeng.domains.knowledge import CriteriaCategory, CriteriaIndexer
    from auditeng.domains.validation.models import TestType

    settings = get_settings()
    setup_logging(settings.log_level, console)

    try:
        parsed_type = TestType(test_type.upper()) if test_type else None
        parsed_category = CriteriaCategory(category.upper()) if category else None
    except ValueError:
        console.print(f"[red]Error:[/red] Unknown test type or category: {test_type or category}")
        raise typer.Exit(1)

    rag, store = await _open_knowledge(settings)
    indexer = CriteriaIndexer(rag)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task("Indexing criteria...", total=None)

        def on_progress(update) -> None:
            progress.update(
                task,
                total=update.total,
                completed=update.current,
                description=f"{update.criterion_id}: {update.title}",
            )

        if parsed_type is not None:
            summary = await indexer.index_by_test_type(parsed_type, on_progress)
        elif parsed_category is not None:
            summary = await indexer.index_by_category(parsed_category, on_progress)
        else:
            summary = await indexer.index_all(on_progress)

        await store.save(settings.knowledge_index_path)

    table = Table(title="Criteria Indexing")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Indexed", str(summary.indexed))
    table.add_row("Skipped (already present)", str(summary.skipped))
    table.add_row("Failed", str(summary.failed))
    table.add_row("Duration", f"{summary.duration_ms:.0f}ms")
    console.print(table)

    for error in summary.errors:
        console.print(f"[red]![/red] {error}")
    if not summary.success:
        raise typer.Exit(1)


@app.command()
def init(
    data_dir: Path | None = typer.Option(None, "--data", "-d", help="Data directory"),
) -> None:
    """Initialize AuditEng database and knowledge index."""
    asyncio.run(_init_async(data_dir))


async def _init_async(data_dir: Path | None) -> None:
    """Async initialization."""
    from auditeng.adapters.faiss import FAISSVectorStore
    from auditeng.adapters.sqlite import SQLiteAnalysisRepository
    from auditeng.config import get_settings

    settings = get_settings()
    data_path = data_dir or Path(settings.data_dir)
    db_path = data_path / Path(settings.db_path).name if data_dir else Path(settings.db_path)
    index_path = data_path / "indices" / "knowledge" if data_dir else Path(settings.knowledge_index_path)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task("Initializing...", total=3)

        progress.update(task, description="Creating directories...")
        data_path.mkdir(parents=True, exist_ok=True)
        index_path.mkdir(parents=True, exist_ok=True)
        progress.advance(task)

        progress.update(task, description="Initializing SQLite database...")
        repo = SQLiteAnalysisRepository(db_path)
        await repo.initialize()
        await repo.close()
        progress.advance(task)

        progress.update(task, description="Initializing FAISS index...")
        if not (index_path / "faiss_index.bin").exists():
            store = FAISSVectorStore(dimension=settings.embedding_dimension)
            await store.initialize()
            await store.save(index_path)
        progress.advance(task)

    console.print("\n[green]Initialization complete![/green]")
    console.print(f"[dim]Database: {db_path}[/dim]")
    console.print(f"[dim]Knowledge index: {index_path}[/dim]")


@app.command()
def version() -> None:
    """Show version information."""
    from auditeng import __version__

    console.print(f"AuditEng v{__version__}")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
