"""Crawl commands: build an archive, list a page's references, check robots rules."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import List, Optional

import typer

from site_archiver.config import settings
from site_archiver.crawler import (
    ArchiveRun,
    ArchiveStreamError,
    CrawlRequest,
    RequestInvalid,
    start_run,
)
from site_archiver.crawler.extractor import extract_references
from site_archiver.crawler.fetcher import Fetcher
from site_archiver.crawler.models import FetchError
from site_archiver.crawler.policy import RobotsCache
from site_archiver.crawler.urls import is_web_url, normalize_url


async def _write_stream(run: ArchiveRun, path: Path) -> None:
    with path.open("wb") as fh:
        async for chunk in run.stream():
            fh.write(chunk)


def download(
    urls: List[str] = typer.Argument(..., help="Seed page URL(s)."),
    option: str = typer.Option(
        "assets", "--option", "-o", help="Crawl option: html | assets | full."
    ),
    output: Path = typer.Option(
        Path(settings.default_archive_name), "--output", "-O", help="Archive file to write."
    ),
    header: Optional[List[str]] = typer.Option(
        None, "--header", "-H", help="Extra 'Name: value' header sent with every fetch."
    ),
    show_log: bool = typer.Option(True, "--log/--no-log", help="Print the run log."),
) -> None:
    """Crawl the seed page(s) and write the ZIP archive to a file."""
    try:
        request = CrawlRequest.create(
            urls, option, "\n".join(header or []), max_seeds=settings.max_seeds
        )
    except RequestInvalid as exc:
        typer.echo(f"[download] {exc}", err=True)
        raise typer.Exit(2)

    run = start_run(request)
    typer.echo(
        f"[download] Run {run.run_id}: {len(request.seeds)} seed(s), "
        f"mode={request.mode.value}"
    )

    partial = output.with_name(output.name + ".part")
    try:
        asyncio.run(_write_stream(run, partial))
    except ArchiveStreamError as exc:
        partial.unlink(missing_ok=True)
        if show_log:
            for line in run.log.lines():
                typer.echo(f"  {line}")
        typer.echo(f"[download] Failed: {exc}", err=True)
        raise typer.Exit(1)
    partial.replace(output)

    if show_log:
        for line in run.log.lines():
            typer.echo(f"  {line}")
    meta = run.metadata
    typer.echo(
        f"[download] Wrote {output}  resources={meta.resources}  "
        f"log_lines={meta.log_lines}"
    )


def refs(
    url: str = typer.Argument(..., help="Page URL to fetch and inspect."),
) -> None:
    """Print the references a page would contribute to a crawl, in order."""
    if not is_web_url(url):
        typer.echo(f"[refs] Not an http(s) URL: {url!r}", err=True)
        raise typer.Exit(2)

    async def _fetch():
        async with Fetcher() as fetcher:
            return await fetcher.fetch(normalize_url(url))

    outcome = asyncio.run(_fetch())
    if isinstance(outcome, FetchError):
        typer.echo(f"[refs] {outcome}: {url}", err=True)
        raise typer.Exit(1)

    extraction = extract_references(outcome.body, outcome.final_url)
    if extraction.degraded:
        typer.echo(f"[refs] {extraction.degraded}", err=True)
    if not extraction.references:
        typer.echo("[refs] No references found.")
        return
    for reference in extraction.references:
        typer.echo(reference)


def robots(
    url: str = typer.Argument(..., help="URL to check against its origin's robots.txt."),
) -> None:
    """Report whether the generic crawler identity may fetch a URL."""
    if not is_web_url(url):
        typer.echo(f"[robots] Not an http(s) URL: {url!r}", err=True)
        raise typer.Exit(2)

    async def _check() -> bool:
        async with Fetcher() as fetcher:
            return await RobotsCache(fetcher).is_allowed(normalize_url(url))

    allowed = asyncio.run(_check())
    typer.echo(f"[robots] {'allowed' if allowed else 'excluded'}: {url}")
