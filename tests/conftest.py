"""Shared fixtures for the crawl-and-archive test suite.

``respx`` patches ``httpx`` at the transport layer so no test ever reaches
the network.  The router is created with ``assert_all_mocked=False``: any
request a test did not route (typically ``/robots.txt``) gets an empty 200
response, which the robots cache treats as "allow everything".
"""

from __future__ import annotations

import asyncio
import io
import zipfile
from dataclasses import replace
from typing import Callable

import pytest
import respx

from site_archiver.config import Settings
from site_archiver.crawler import ArchiveRun, CrawlRequest, start_run


def make_settings(**overrides) -> Settings:
    """Test settings: small worker pool, default limits unless overridden."""
    base = Settings(worker_count=3, quota_limit=5, log_level="WARNING")
    return replace(base, **overrides)


async def _collect(run: ArchiveRun) -> bytes:
    return b"".join([chunk async for chunk in run.stream()])


@pytest.fixture
def site():
    with respx.mock(assert_all_called=False, assert_all_mocked=False) as router:
        yield router


@pytest.fixture
def crawl() -> Callable[..., tuple[ArchiveRun, zipfile.ZipFile]]:
    """Run a crawl to completion and return the run and its opened archive."""

    def _crawl(urls, option: str = "assets", header: str | None = None, **overrides):
        config = make_settings(**overrides)
        request = CrawlRequest.create(urls, option, header, max_seeds=config.max_seeds)
        run = start_run(request, config=config)
        data = asyncio.run(_collect(run))
        return run, zipfile.ZipFile(io.BytesIO(data))

    return _crawl


@pytest.fixture
def test_settings() -> Settings:
    return make_settings()
