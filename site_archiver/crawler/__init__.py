from site_archiver.crawler.errors import (
    ArchiveFault,
    ArchiveStreamError,
    Cancelled,
    CrawlError,
    PathCollision,
    RequestInvalid,
)
from site_archiver.crawler.models import CrawlMode, CrawlRequest, RunMetadata
from site_archiver.crawler.run import ArchiveRun, start_run

__all__ = [
    "ArchiveFault",
    "ArchiveRun",
    "ArchiveStreamError",
    "Cancelled",
    "CrawlError",
    "CrawlMode",
    "CrawlRequest",
    "PathCollision",
    "RequestInvalid",
    "RunMetadata",
    "start_run",
]
