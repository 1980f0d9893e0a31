"""Command-line entry point for paragraph embedding maintenance."""

import asyncio
import json
import sys
from pathlib import Path

import typer

from story_backend.config import Config, get_config, set_config
from story_backend.logging import configure_logging
from story_backend.rebuild import RebuildProgress
from story_backend.service import create_paragraph_embedding_service

cli = typer.Typer(help="Story backend - paragraph embedding tools")


def _load_config(config_path: str, verbose: bool = False) -> Config:
    cfg = Config.load(Path(config_path)) if config_path else get_config()
    set_config(cfg)
    configure_logging("DEBUG" if verbose else None)
    return cfg


def _format_progress(info: RebuildProgress, last_story: str | None) -> str:
    percent = 100.0 if info.total == 0 else min(100.0, max(0.0, info.progress * 100))
    story_label = f" ({info.story_id})" if info.story_id != last_story else ""
    return f"[{info.completed}/{info.total}] {percent:6.1f}% processed message {info.message_id}{story_label}"


async def _run_rebuild(cfg: Config, story: str | None, progress_interval: int | None, force: bool) -> int:
    service = await create_paragraph_embedding_service(cfg)
    last_story: str | None = None

    def on_progress(info: RebuildProgress) -> None:
        nonlocal last_story
        typer.echo(_format_progress(info, last_story))
        last_story = info.story_id

    try:
        report = await service.rebuild_paragraph_embeddings(
            story_id=story,
            progress_interval=progress_interval,
            force=force,
            on_progress=on_progress,
        )
    finally:
        await service.close()

    typer.echo(
        f"Embeddings rebuilt: {report.refreshed} refreshed, {report.skipped} up to date, "
        f"{len(report.failed)} failed"
    )
    for failure in report.failed:
        sys.stderr.write(f"Warning: {failure.story_id}/{failure.message_id}: {failure.error}\n")
    return 1 if report.failed else 0


@cli.command()
def rebuild(
    story: str = typer.Option(None, "--story", help="Only rebuild embeddings for a specific story"),
    progress_interval: int = typer.Option(
        None, "--progress-interval", min=1, help="Report progress after processing this many messages"
    ),
    force: bool = typer.Option(False, "--force", help="Regenerate embeddings even when cached data is up to date"),
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    """Rebuild paragraph embeddings for messages."""
    cfg = _load_config(config, verbose)
    exit_code = asyncio.run(_run_rebuild(cfg, story, progress_interval, force))
    raise typer.Exit(exit_code)


async def _run_search(
    cfg: Config,
    story_id: str,
    query: str,
    limit: int,
    min_score: float | None,
    context: int,
) -> list[dict]:
    service = await create_paragraph_embedding_service(cfg)
    try:
        results = await service.search_paragraph_embeddings(
            query,
            story_id=story_id,
            limit=limit,
            min_score=min_score,
            context_paragraphs=context,
        )
    finally:
        await service.close()
    return [
        {
            "message_id": r.message_id,
            "paragraph_index": r.paragraph_index,
            "matching_paragraph": r.matching_paragraph,
            "score": r.score,
            "context": [{"paragraph_index": c.paragraph_index, "text": c.text} for c in r.context],
        }
        for r in results
    ]


@cli.command()
def search(
    story_id: str = typer.Argument(..., help="Story ID"),
    query: str = typer.Option(..., "-q", "--query", help="Free-text query"),
    limit: int = typer.Option(10, "--limit", help="Maximum number of results"),
    min_score: float = typer.Option(None, "--min-score", help="Minimum cosine similarity (-1 to 1)"),
    context: int = typer.Option(2, "--context", help="Neighbouring paragraphs to include on each side"),
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
) -> None:
    """Semantic search over a story's paragraphs."""
    if min_score is not None and not -1.0 <= min_score <= 1.0:
        raise typer.BadParameter("min-score must be a number between -1 and 1", param_hint="--min-score")
    if context < 0:
        raise typer.BadParameter("context must be a non-negative integer", param_hint="--context")

    cfg = _load_config(config)
    results = asyncio.run(_run_search(cfg, story_id, query, limit, min_score, context))
    typer.echo(json.dumps(
        {
            "story_id": story_id,
            "query": query,
            "limit": limit,
            "min_score": min_score,
            "results": results,
        },
        ensure_ascii=False,
        indent=2,
    ))


async def _run_refresh(cfg: Config, story_id: str, message_id: str) -> list[str] | None:
    service = await create_paragraph_embedding_service(cfg)
    try:
        message = await service.message_store.get_message(story_id, message_id)
        if message is None:
            return None
        return await service.refresh_paragraph_embeddings_for_message(
            story_id,
            message_id,
            message.content,
            is_query=message.is_query,
        )
    finally:
        await service.close()


@cli.command()
def refresh(
    story_id: str = typer.Argument(..., help="Story ID"),
    message_id: str = typer.Argument(..., help="Message ID"),
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
) -> None:
    """Re-split and re-embed one stored message."""
    cfg = _load_config(config)
    paragraphs = asyncio.run(_run_refresh(cfg, story_id, message_id))
    if paragraphs is None:
        sys.stderr.write(f"Error: message not found: {story_id}/{message_id}\n")
        raise typer.Exit(1)
    typer.echo(f"Refreshed {len(paragraphs)} paragraphs for message {message_id}")


@cli.command()
def version() -> None:
    """Show version information."""
    from story_backend import __version__
    typer.echo(f"story-backend v{__version__}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
