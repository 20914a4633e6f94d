"""Site archiver CLI: entry-point for crawling and serving.

Usage:
    site-archiver --help

Commands:
    download  → crawl seed page(s) and write the ZIP archive to disk
    refs      → list the references extracted from one page
    robots    → check a URL against its origin's robots.txt
    serve     → run the HTTP API with uvicorn
"""

from __future__ import annotations

import logging

import typer

from cli.commands import crawl
from site_archiver.config import settings

app = typer.Typer(
    name="site-archiver",
    help="Crawl web pages and their same-origin assets into a ZIP archive.",
    no_args_is_help=True,
)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


app.command("download")(crawl.download)
app.command("refs")(crawl.refs)
app.command("robots")(crawl.robots)


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", help="Interface to bind."),
    port: int = typer.Option(8000, help="Port to listen on."),
    reload: bool = typer.Option(False, help="Reload on code changes."),
) -> None:
    """Run the HTTP API."""
    import uvicorn

    typer.echo(f"[serve] Listening on http://{host}:{port}")
    uvicorn.run("site_archiver.api.app:app", host=host, port=port, reload=reload)


# ---------------------------------------------------------------------------
# Entry-point
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    app()
