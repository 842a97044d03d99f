#!/usr/bin/env python3
"""j1-cache CLI: collect GitLab data into the integration cache and inspect it."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from j1_gitlab.cache_directory import WalkedFile, get_default_cache_directory, symlink, walk_directory
from j1_gitlab.collect import collect as run_collection, summarize_cache
from j1_gitlab.gitlab_client import GitlabClient, GitlabRequestError
from j1_gitlab.schemas import CollectionSummary
from j1_gitlab.settings import Settings, get_settings, reset_settings

console = Console()
cli = typer.Typer(help="Collect GitLab data into the .j1-integration cache and inspect it.")

LOGGER = logging.getLogger(__name__)


@dataclass
class CLISettings:
    settings: Settings
    cache_directory: Path


def _resolve_settings(cache_dir: Optional[Path], env_file: Optional[str] = None) -> CLISettings:
    if env_file:
        reset_settings()
        settings = get_settings(env_file)
    else:
        settings = get_settings()
    cache_directory = cache_dir or settings.cache.cache_directory or get_default_cache_directory()
    return CLISettings(settings=settings, cache_directory=cache_directory)


def _configure_logging(level: str, verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _build_client(settings: Settings) -> GitlabClient:
    return GitlabClient.from_settings(settings)


def _fail(message: str) -> None:
    console.print(f"[red]{escape(message)}[/]", soft_wrap=True)
    raise typer.Exit(code=1)


def _display_path(file_path: str, root: str) -> str:
    return file_path[len(root):] if file_path.startswith(root) else file_path


def _print_summary(summary: CollectionSummary) -> None:
    table = Table("Type", "Kind", "Count", title="Collection Summary")
    for type_name, count in sorted(summary.entities.items()):
        table.add_row(type_name, "entity", str(count))
    for type_name, count in sorted(summary.relationships.items()):
        table.add_row(type_name, "relationship", str(count))
    console.print(table)
    if summary.steps:
        console.print(f"[dim]steps: {', '.join(summary.steps)}[/]")


@cli.command()
def where(
    cache_dir: Optional[Path] = typer.Option(None, "--cache-dir", help="Override the cache directory"),
    env_file: Optional[str] = typer.Option(None, "--env-file", help="Load settings from this .env file"),
) -> None:
    """Print the cache directory commands operate on."""

    resolved = _resolve_settings(cache_dir, env_file)
    console.print(str(resolved.cache_directory), soft_wrap=True)


@cli.command()
def collect(
    cache_dir: Optional[Path] = typer.Option(None, "--cache-dir", help="Override the cache directory"),
    env_file: Optional[str] = typer.Option(None, "--env-file", help="Load settings from this .env file"),
    concurrency: Optional[int] = typer.Option(None, "--concurrency", min=1, help="Parallel GitLab requests"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Fetch users, groups, projects and merge requests into the cache."""

    resolved = _resolve_settings(cache_dir, env_file)
    settings = resolved.settings
    _configure_logging(settings.logging.level, verbose)
    if not settings.gitlab.token:
        _fail("GITLAB_TOKEN is not configured.")
    limit = concurrency or settings.gitlab.max_concurrency
    LOGGER.info("Collecting from %s into %s", settings.gitlab.base_url, resolved.cache_directory)

    async def _run() -> CollectionSummary:
        async with _build_client(settings) as client:
            return await run_collection(client, cache_directory=resolved.cache_directory, concurrency=limit)

    try:
        summary = asyncio.run(_run())
    except (GitlabRequestError, httpx.HTTPError) as exc:
        _fail(f"Collection failed: {exc}")
    except OSError as exc:
        _fail(f"Cache write failed: {exc}")
    console.print(f"[green]Collected into {resolved.cache_directory}[/]")
    _print_summary(summary)


@cli.command()
def walk(
    subtree: str = typer.Argument("graph", help="Cache-relative subtree to walk"),
    cache_dir: Optional[Path] = typer.Option(None, "--cache-dir", help="Override the cache directory"),
    env_file: Optional[str] = typer.Option(None, "--env-file", help="Load settings from this .env file"),
    raw: bool = typer.Option(False, "--raw", help="Print each file's content instead of a table"),
) -> None:
    """List (or dump) every file under a cache subtree, following index links."""

    resolved = _resolve_settings(cache_dir, env_file)
    files: list[WalkedFile] = []
    try:
        asyncio.run(walk_directory(path=subtree, iteratee=files.append, cache_directory=resolved.cache_directory))
    except OSError as exc:
        _fail(f"Walk failed: {exc}")

    files.sort(key=lambda entry: entry.file_path)
    root = str(resolved.cache_directory).rstrip("/") + "/"
    if raw:
        for entry in files:
            console.rule(escape(_display_path(entry.file_path, root)))
            console.print(entry.data, markup=False, highlight=False)
        return
    if not files:
        console.print("[dim]No files found.[/]")
        return
    table = Table("File", "Chars", title=f"{subtree} ({len(files)} files)")
    for entry in files:
        table.add_row(_display_path(entry.file_path, root), str(len(entry.data)))
    console.print(table)


@cli.command()
def link(
    source: str = typer.Argument(..., help="Cache-relative path of the existing artifact"),
    destination: str = typer.Argument(..., help="Cache-relative path of the new link"),
    cache_dir: Optional[Path] = typer.Option(None, "--cache-dir", help="Override the cache directory"),
    env_file: Optional[str] = typer.Option(None, "--env-file", help="Load settings from this .env file"),
) -> None:
    """Create an index symlink from DESTINATION to SOURCE."""

    resolved = _resolve_settings(cache_dir, env_file)
    try:
        created = asyncio.run(
            symlink(source_path=source, destination_path=destination, cache_directory=resolved.cache_directory)
        )
    except OSError as exc:
        _fail(f"Link failed: {exc}")
    console.print(f"[green]Linked {created} -> {os.readlink(created)}[/]")


@cli.command()
def summary(
    cache_dir: Optional[Path] = typer.Option(None, "--cache-dir", help="Override the cache directory"),
    env_file: Optional[str] = typer.Option(None, "--env-file", help="Load settings from this .env file"),
) -> None:
    """Count indexed entities per type."""

    resolved = _resolve_settings(cache_dir, env_file)
    try:
        counts = asyncio.run(summarize_cache(cache_directory=resolved.cache_directory))
    except FileNotFoundError:
        _fail(f"No entity index under {resolved.cache_directory}; run `collect` first.")
    table = Table("Type", "Count", title="Indexed Entities")
    for type_name, count in counts.items():
        table.add_row(type_name, str(count))
    console.print(table)


if __name__ == "__main__":  # pragma: no cover
    cli()
