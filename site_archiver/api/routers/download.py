"""Archive download endpoint.

Routes
------
POST /download        Body: {"urls": [...], "option": "html|assets|full", ...}
GET  /runs/{run_id}   Counters and decision log of a recent run

The archive is streamed while the crawl is still running, so the counters
cannot travel as response headers.  The response carries ``X-Run-Id``
instead; once the stream has ended the counters and the full decision log
are available from ``GET /runs/{run_id}`` (and in the ZIP comment).
"""

from __future__ import annotations

import math
import re
from collections import OrderedDict
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from site_archiver.crawler import ArchiveRun, CrawlMode, CrawlRequest, start_run
from site_archiver.quota import identity_from

router = APIRouter()

_FILENAME_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class DownloadRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    urls: Optional[list[str]] = None
    url: Optional[str] = None
    option: str = "assets"
    download_linked: bool = Field(default=False, alias="downloadLinked")
    custom_header: Optional[str] = Field(default=None, alias="customHeader")
    zip_name: Optional[str] = Field(default=None, alias="zipName")

    def seed_urls(self) -> list[str]:
        if self.urls:
            return [u.strip() for u in self.urls if u and u.strip()]
        if self.url and self.url.strip():
            return [self.url.strip()]
        return []


class RunSummary(BaseModel):
    run_id: str
    state: str
    resources: int
    log_lines: int
    error: Optional[str] = None
    log: list[str]


# ---------------------------------------------------------------------------
# Run registry
# ---------------------------------------------------------------------------

class RunRegistry:
    """Keeps the most recent runs in memory so their logs can be read back."""

    def __init__(self, max_runs: int = 100) -> None:
        self.max_runs = max_runs
        self._runs: OrderedDict[str, ArchiveRun] = OrderedDict()

    def add(self, run: ArchiveRun) -> None:
        self._runs[run.run_id] = run
        while len(self._runs) > self.max_runs:
            self._runs.popitem(last=False)

    def get(self, run_id: str) -> Optional[ArchiveRun]:
        return self._runs.get(run_id)

    def __len__(self) -> int:
        return len(self._runs)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def archive_filename(zip_name: str | None, default: str) -> str:
    """Reduce a caller-supplied archive name to a safe ``*.zip`` file name."""
    name = _FILENAME_UNSAFE.sub("_", (zip_name or "").strip()).strip("._")
    if not name:
        return default
    if not name.lower().endswith(".zip"):
        name += ".zip"
    return name


def _client_identity(request: Request) -> str:
    host = request.client.host if request.client else None
    return identity_from(request.headers.get("x-forwarded-for"), host)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/download", response_model=None)
async def download(body: DownloadRequest, request: Request) -> StreamingResponse | JSONResponse:
    """Validate the request, consult the quota, then stream the archive.

    Invalid input is rejected with 400 before any fetch happens (raised as
    ``RequestInvalid`` and rendered by the app's exception handler).
    """
    cfg = request.app.state.settings
    mode = (
        CrawlMode.FULL_RECURSIVE
        if body.download_linked
        else CrawlMode.from_option(body.option)
    )
    crawl_request = CrawlRequest.create(
        body.seed_urls(), mode, body.custom_header, max_seeds=cfg.max_seeds
    )

    status = request.app.state.quota.consume(_client_identity(request))
    if not status.allowed:
        return JSONResponse(
            status_code=429,
            content={
                "error": "Rate limit exceeded. Please try again later.",
                "remaining": 0,
                "limit": status.limit,
            },
            headers={"Retry-After": str(math.ceil(status.reset_after))},
        )

    run = start_run(crawl_request, config=cfg)
    request.app.state.runs.add(run)

    filename = archive_filename(body.zip_name, cfg.default_archive_name)
    return StreamingResponse(
        run.stream(),
        media_type="application/zip",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "X-Run-Id": run.run_id,
            "X-Seed-Count": str(len(crawl_request.seeds)),
            "X-Quota-Remaining": str(status.remaining),
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/runs/{run_id}", response_model=RunSummary)
def get_run(run_id: str, request: Request) -> dict[str, Any]:
    """Return the counters and decision log of a recent run."""
    run = request.app.state.runs.get(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Run '{run_id}' not found")
    meta = run.metadata
    return {
        "run_id": run.run_id,
        "state": meta.state,
        "resources": meta.resources,
        "log_lines": meta.log_lines,
        "error": meta.error,
        "log": run.log.lines(),
    }
