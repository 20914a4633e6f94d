"""Per-run decision log and resource counter.

Both objects live exactly as long as one run.  The :class:`RunLog` is the
caller-visible audit trail (what was fetched, skipped, failed or archived
and why); every record is mirrored to the ``logging`` module so server logs
carry the same information.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Optional

logger = logging.getLogger("site_archiver.crawler")


class LogKind(str, Enum):
    FETCH = "FETCH"
    SKIP = "SKIP"
    FAIL = "FAIL"
    SAVE = "SAVE"
    PARSE = "PARSE"
    LIMIT = "LIMIT"
    INFO = "INFO"
    ERROR = "ERROR"


_LEVELS = {
    LogKind.FAIL: logging.WARNING,
    LogKind.PARSE: logging.WARNING,
    LogKind.LIMIT: logging.WARNING,
    LogKind.ERROR: logging.ERROR,
}


@dataclass(frozen=True)
class LogRecord:
    kind: LogKind
    message: str
    url: Optional[str] = None
    reason: Optional[str] = None

    def __str__(self) -> str:
        return f"[{self.kind.value}] {self.message}"


class RunLog:
    """Append-only, ordered sequence of decision records for one run."""

    def __init__(self, run_id: str = "") -> None:
        self.run_id = run_id
        self._records: list[LogRecord] = []
        self._frozen = False

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------
    def add(
        self,
        kind: LogKind,
        message: str,
        *,
        url: str | None = None,
        reason: str | None = None,
    ) -> LogRecord:
        record = LogRecord(kind=kind, message=message, url=url, reason=reason)
        if self._frozen:
            # The run is over; keep server logs but leave the audit trail intact.
            logger.debug("[%s] late log record dropped: %s", self.run_id, record)
            return record
        self._records.append(record)
        logger.log(_LEVELS.get(kind, logging.INFO), "[%s] %s", self.run_id, record)
        return record

    def fetching(self, url: str) -> LogRecord:
        return self.add(LogKind.FETCH, url, url=url)

    def skipped(self, url: str, reason: str) -> LogRecord:
        return self.add(LogKind.SKIP, f"{reason}: {url}", url=url, reason=reason)

    def failed(self, url: str, reason: str) -> LogRecord:
        return self.add(LogKind.FAIL, f"{reason}: {url}", url=url, reason=reason)

    def archived(self, url: str, path: str) -> LogRecord:
        return self.add(LogKind.SAVE, f"{url} -> {path}", url=url)

    def degraded(self, url: str, reason: str) -> LogRecord:
        return self.add(LogKind.PARSE, f"{reason}: {url}", url=url, reason=reason)

    def info(self, message: str) -> LogRecord:
        return self.add(LogKind.INFO, message)

    def freeze(self) -> None:
        self._frozen = True

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------
    @property
    def frozen(self) -> bool:
        return self._frozen

    def records(self) -> list[LogRecord]:
        return list(self._records)

    def lines(self) -> list[str]:
        return [str(r) for r in self._records]

    def with_reason(self, reason: str) -> list[LogRecord]:
        return [r for r in self._records if r.reason == reason]

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[LogRecord]:
        return iter(list(self._records))


class ResourceCounter:
    """Run-scoped count of archived resources, bounded by a ceiling.

    Admission reserves a slot so concurrent fetches can never push the
    archived count past the ceiling; a failed fetch releases its slot and a
    successful archive commits it.
    """

    def __init__(self, ceiling: int) -> None:
        self.ceiling = ceiling
        self.archived = 0
        self.pending = 0

    @property
    def at_ceiling(self) -> bool:
        return self.archived + self.pending >= self.ceiling

    def reserve(self) -> None:
        if self.at_ceiling:
            raise RuntimeError("resource ceiling already reached")
        self.pending += 1

    def release(self) -> None:
        self.pending = max(self.pending - 1, 0)

    def commit(self) -> None:
        self.pending = max(self.pending - 1, 0)
        self.archived += 1
