"""Exception hierarchy for the crawl-and-archive engine.

Only conditions that stop a run (or stop it from starting) are exceptions.
Per-candidate policy denials and fetch failures are plain values
(:class:`~site_archiver.crawler.models.Decision`,
:class:`~site_archiver.crawler.models.FetchError`) that the controller logs
and moves past.
"""

from __future__ import annotations


class CrawlError(Exception):
    """Base class for every error raised by the engine."""


class RequestInvalid(CrawlError):
    """The request was rejected before any fetch was attempted."""


class ArchiveFault(CrawlError):
    """The archive writer could not append an entry; fatal for the run."""


class PathCollision(ArchiveFault):
    """Two entries resolved to the same archive path."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Archive path already written: {path}")
        self.path = path


class Cancelled(CrawlError):
    """The caller aborted the run before it finished."""


class ArchiveStreamError(CrawlError):
    """Raised to the stream consumer when the run failed mid-stream.

    The bytes received so far do not form a complete archive.
    """
