"""FastAPI application factory.

State
-----
Each app instance carries its own settings, quota checker and run
registry on ``app.state``; nothing else is shared between requests.

Routers
-------
    /download     Start a run and stream the ZIP archive back
    /runs/{id}    Counters and decision log of a recent run
    /rate-limit   Remaining quota for the calling identity
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from site_archiver import __version__
from site_archiver.api.routers import download as download_router
from site_archiver.api.routers import rate_limit as rate_limit_router
from site_archiver.api.routers.download import RunRegistry
from site_archiver.config import Settings, settings
from site_archiver.crawler.errors import RequestInvalid
from site_archiver.quota import QuotaChecker, SlidingWindowQuota


def create_app(
    config: Settings | None = None,
    quota: QuotaChecker | None = None,
) -> FastAPI:
    """Return a fully-configured FastAPI application instance."""
    cfg = config or settings
    logging.basicConfig(
        level=cfg.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="Site Archiver API",
        description=(
            "Crawl one or more web pages together with their same-origin "
            "assets and stream the result back as a ZIP archive."
        ),
        version=__version__,
    )
    app.state.settings = cfg
    app.state.quota = quota or SlidingWindowQuota(cfg.quota_limit, cfg.quota_window_seconds)
    app.state.runs = RunRegistry()

    # Browser frontends read the run id to fetch the decision log afterwards.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition", "X-Run-Id", "X-Seed-Count"],
    )

    @app.exception_handler(RequestInvalid)
    async def _request_invalid(request: Request, exc: RequestInvalid) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": str(exc)})

    app.include_router(download_router.router, tags=["download"])
    app.include_router(rate_limit_router.router, tags=["rate-limit"])

    return app


# Module-level instance used by uvicorn:
#   uvicorn site_archiver.api.app:app --reload
app = create_app()
