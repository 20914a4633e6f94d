"""Bounded byte channel between the archive writer and the stream consumer.

The writer side awaits ``send`` and is suspended while the buffer is full,
so a slow consumer slows the whole crawl down instead of letting archive
bytes pile up in memory.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from site_archiver.config import settings
from site_archiver.crawler.errors import ArchiveStreamError, Cancelled
from site_archiver.crawler.models import RunMetadata

_END = object()


@dataclass(frozen=True)
class _Failure:
    error: BaseException


class OutputPipe:
    """Single-producer, single-consumer stream of archive chunks.

    The producer calls :meth:`send` for every chunk, then exactly one of
    :meth:`close` (archive complete) or :meth:`fail` (archive incomplete).
    The consumer iterates :meth:`chunks`; a failed run surfaces there as
    :class:`ArchiveStreamError` after the chunks already delivered.
    """

    def __init__(self, max_chunks: int | None = None) -> None:
        size = max_chunks if max_chunks is not None else settings.pipe_buffer_chunks
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max(size, 1))
        self._finished = False
        self._abandoned = False
        self.metadata: Optional[RunMetadata] = None
        self.bytes_sent = 0

    @property
    def abandoned(self) -> bool:
        return self._abandoned

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------
    async def send(self, chunk: bytes) -> None:
        """Queue *chunk*, waiting while the buffer is full.

        Raises:
            Cancelled: the consumer went away; nobody will read the chunk.
        """
        if self._abandoned:
            raise Cancelled("Stream consumer disconnected")
        if self._finished:
            raise RuntimeError("Pipe already closed")
        if chunk:
            await self._queue.put(chunk)

    async def close(self, metadata: RunMetadata) -> None:
        """Mark the stream complete; every chunk sent so far will be delivered."""
        self.metadata = metadata
        if self._finished or self._abandoned:
            return
        self._finished = True
        await self._queue.put(_END)

    def fail(self, error: BaseException, metadata: RunMetadata | None = None) -> None:
        """Terminate the stream with *error*.

        Never blocks: when the buffer is full the undelivered chunks are
        dropped, since they belong to an archive that will not be completed.
        """
        if metadata is not None:
            self.metadata = metadata
        if self._finished or self._abandoned:
            return
        self._finished = True
        if self._queue.full():
            self._discard_buffered()
        self._queue.put_nowait(_Failure(error))

    def abandon(self) -> None:
        """Consumer side gave up; unblock the producer and drop buffered bytes."""
        self._abandoned = True
        self._discard_buffered()

    def _discard_buffered(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------
    async def chunks(self) -> AsyncIterator[bytes]:
        while True:
            item = await self._queue.get()
            if item is _END:
                return
            if isinstance(item, _Failure):
                raise ArchiveStreamError(
                    f"Archive stream aborted: {item.error}"
                ) from item.error
            self.bytes_sent += len(item)
            yield item
