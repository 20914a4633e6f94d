"""Centralised settings for the site archiver.

All runtime configuration is resolved here in one place.  Values can be
overridden via environment variables or a `.env` file in the project root
(loaded automatically when this module is imported).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the project root (one level up from this package)
_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_env_path, override=False)


@dataclass
class Settings:
    # ------------------------------------------------------------------
    # Request limits
    # ------------------------------------------------------------------
    max_seeds: int = field(
        default_factory=lambda: int(os.environ.get("ARCHIVER_MAX_SEEDS", "5"))
    )
    resource_ceiling: int = field(
        default_factory=lambda: int(os.environ.get("ARCHIVER_RESOURCE_CEILING", "1000"))
    )

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------
    fetch_timeout: float = field(
        default_factory=lambda: float(os.environ.get("ARCHIVER_FETCH_TIMEOUT", "15.0"))
    )
    robots_timeout: float = field(
        default_factory=lambda: float(os.environ.get("ARCHIVER_ROBOTS_TIMEOUT", "3.0"))
    )
    max_response_bytes: int = field(
        default_factory=lambda: int(
            os.environ.get("ARCHIVER_MAX_RESPONSE_BYTES", str(50 * 1024 * 1024))
        )
    )
    worker_count: int = field(
        default_factory=lambda: int(os.environ.get("ARCHIVER_WORKERS", "6"))
    )
    user_agent: str = field(
        default_factory=lambda: os.environ.get(
            "ARCHIVER_USER_AGENT", "Mozilla/5.0 (compatible; SiteArchiver/1.0)"
        )
    )
    # Identity matched against robots.txt groups; "*" is the generic crawler.
    robots_user_agent: str = field(
        default_factory=lambda: os.environ.get("ARCHIVER_ROBOTS_AGENT", "*")
    )

    # ------------------------------------------------------------------
    # Archive output
    # ------------------------------------------------------------------
    compression_level: int = field(
        default_factory=lambda: int(os.environ.get("ARCHIVER_COMPRESSION_LEVEL", "9"))
    )
    pipe_buffer_chunks: int = field(
        default_factory=lambda: int(os.environ.get("ARCHIVER_PIPE_BUFFER", "64"))
    )
    default_archive_name: str = field(
        default_factory=lambda: os.environ.get(
            "ARCHIVER_ARCHIVE_NAME", "website-download.zip"
        )
    )

    # ------------------------------------------------------------------
    # Per-identity quota
    # ------------------------------------------------------------------
    quota_limit: int = field(
        default_factory=lambda: int(os.environ.get("ARCHIVER_QUOTA_LIMIT", "5"))
    )
    quota_window_seconds: float = field(
        default_factory=lambda: float(os.environ.get("ARCHIVER_QUOTA_WINDOW", "86400"))
    )

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------
    log_level: str = field(
        default_factory=lambda: os.environ.get("ARCHIVER_LOG_LEVEL", "INFO")
    )


# Module-level singleton; import this everywhere:
#   from site_archiver.config import settings
settings = Settings()
