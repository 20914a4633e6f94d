"""Site archiver: crawl one or more pages and stream them back as a ZIP.

Public re-exports so callers can write::

    from site_archiver import CrawlMode, CrawlRequest, start_run
"""

from site_archiver.crawler import CrawlMode, CrawlRequest, start_run

__all__ = ["CrawlMode", "CrawlRequest", "start_run", "__version__"]

__version__ = "0.1.0"
