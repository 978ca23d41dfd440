"""Staging of source bytes into retryable parts.

The source is a single sequential stream, so ``PartReader`` must be driven
by one caller at a time. Each part is copied into a buffer checked out of a
``BufferPool``; the pool's capacity bounds how many parts can be staged at
once, which throttles the reader when uploads fall behind.
"""

from __future__ import annotations

import asyncio
import inspect
import io
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, Protocol

from s3parts.checksum import PartChecksum
from s3parts.errors import ObjectTooLarge, SourceReadError, UnexpectedEOF
from s3parts.models import PartSpec

logger = logging.getLogger(__name__)

# Streaming chunk size: 64 KB
_CHUNK_SIZE = 64 * 1024


class AsyncSource(Protocol):
    """A sequential byte source."""

    async def read(self, size: int) -> bytes:
        """Return up to ``size`` bytes; ``b""`` at end of stream."""
        ...


class _SyncReader:
    """Adapts a blocking binary file-like object."""

    def __init__(self, fileobj: Any) -> None:
        self._fileobj = fileobj

    async def read(self, size: int) -> bytes:
        data = self._fileobj.read(size)
        if isinstance(data, str):
            raise TypeError("source must be opened in binary mode")
        return data or b""


class _AsyncReader:
    """Adapts an object whose ``read`` is a coroutine function."""

    def __init__(self, fileobj: Any) -> None:
        self._fileobj = fileobj

    async def read(self, size: int) -> bytes:
        return (await self._fileobj.read(size)) or b""


class _IterableReader:
    """Adapts an async iterable of byte chunks."""

    def __init__(self, iterable: AsyncIterable[bytes]) -> None:
        self._iterator = iterable.__aiter__()
        self._pending = b""
        self._exhausted = False

    async def read(self, size: int) -> bytes:
        while not self._pending and not self._exhausted:
            try:
                self._pending = bytes(await self._iterator.__anext__())
            except StopAsyncIteration:
                self._exhausted = True
        chunk, self._pending = self._pending[:size], self._pending[size:]
        return chunk


def as_source(source: Any) -> AsyncSource:
    """Wrap bytes, file-like objects and async iterables as an AsyncSource.

    Raises:
        TypeError: If ``source`` is none of the supported kinds.
    """
    if isinstance(source, (bytes, bytearray, memoryview)):
        return _SyncReader(io.BytesIO(bytes(source)))
    read = getattr(source, "read", None)
    if read is not None:
        if inspect.iscoroutinefunction(read):
            return _AsyncReader(source)
        return _SyncReader(source)
    if hasattr(source, "__aiter__"):
        return _IterableReader(source)
    raise TypeError(f"Unsupported upload source: {type(source).__name__}")


class BufferPool:
    """A bounded pool of reusable part buffers.

    ``acquire`` waits while ``capacity`` buffers are checked out. Buffers
    grow as data is copied in and are cleared on release, so a small upload
    never allocates a full part size.

    Attributes:
        capacity: Maximum number of buffers checked out at once.
        in_use: Buffers currently checked out.
        peak_in_use: Highest value ``in_use`` has reached.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self.in_use = 0
        self.peak_in_use = 0
        self._free: list[bytearray] = []
        self._slots = asyncio.Semaphore(capacity)

    async def acquire(self) -> bytearray:
        await self._slots.acquire()
        buffer = self._free.pop() if self._free else bytearray()
        self.in_use += 1
        self.peak_in_use = max(self.peak_in_use, self.in_use)
        return buffer

    def release(self, buffer: bytearray) -> None:
        buffer.clear()
        self._free.append(buffer)
        self.in_use -= 1
        self._slots.release()


@dataclass
class StagedPart:
    """One part's bytes, held exclusively by a single worker.

    Attributes:
        spec: The part number, offset and size.
        data: The staged bytes (exactly ``spec.size`` long).
        is_last: True if no data follows this part.
        checksum: Digests of ``data``, once computed.
    """

    spec: PartSpec
    data: bytearray
    is_last: bool
    checksum: PartChecksum | None = None
    _pool: BufferPool | None = field(default=None, repr=False)

    def release(self) -> None:
        """Return the buffer to its pool. Idempotent."""
        if self._pool is not None:
            pool, self._pool = self._pool, None
            pool.release(self.data)


class PartReader:
    """Reads a source stream one part at a time.

    Args:
        source: Anything accepted by ``as_source``.
        part_size: Size of every part except possibly the last.
        total_size: Declared stream size, or None to read until exhaustion.
        pool: Buffer pool bounding the staged parts.
        max_parts: Highest part number that may be produced.
    """

    def __init__(
        self,
        source: Any,
        part_size: int,
        total_size: int | None,
        pool: BufferPool,
        max_parts: int = 10000,
    ) -> None:
        if part_size < 1:
            raise ValueError("part_size must be positive")
        self._source = as_source(source)
        self.part_size = part_size
        self.total_size = total_size
        self.max_parts = max_parts
        self._pool = pool
        self._next_number = 1
        self._offset = 0
        self._carry = b""
        self._done = False

    @property
    def bytes_read(self) -> int:
        return self._offset

    async def next_part(self) -> StagedPart | None:
        """Stage the next part.

        Returns:
            The staged part, or None once the last part has been returned.

        Raises:
            SourceReadError: If the source raised while being read.
            UnexpectedEOF: If the stream ended before the declared size.
            ObjectTooLarge: If the stream needs more than ``max_parts`` parts.
        """
        if self._done:
            return None
        if self._next_number > self.max_parts:
            raise ObjectTooLarge(
                f"Stream exceeds {self.max_parts} parts of {self.part_size} bytes"
            )

        if self.total_size is not None:
            want = min(self.part_size, self.total_size - self._offset)
        else:
            want = self.part_size

        buffer = await self._pool.acquire()
        try:
            await self._fill(buffer, want)
            if self.total_size is not None:
                if len(buffer) < want:
                    raise UnexpectedEOF(self._offset + len(buffer), self.total_size)
                is_last = self._offset + len(buffer) >= self.total_size
            elif len(buffer) < want:
                is_last = True
            else:
                # A full part: look one byte ahead so an exactly-full final
                # part is not followed by an empty one.
                self._carry = await self._read(1)
                is_last = not self._carry
        except BaseException:
            self._pool.release(buffer)
            raise

        if not is_last and self._next_number >= self.max_parts:
            self._pool.release(buffer)
            raise ObjectTooLarge(
                f"Stream exceeds {self.max_parts} parts of {self.part_size} bytes"
            )

        spec = PartSpec(part_number=self._next_number, offset=self._offset, size=len(buffer))
        self._next_number += 1
        self._offset += len(buffer)
        self._done = is_last
        logger.debug(
            "Staged part %d (%d bytes, last=%s)", spec.part_number, spec.size, is_last
        )
        return StagedPart(spec=spec, data=buffer, is_last=is_last, _pool=self._pool)

    async def _fill(self, buffer: bytearray, want: int) -> None:
        if self._carry:
            buffer += self._carry
            self._carry = b""
        while len(buffer) < want:
            chunk = await self._read(min(_CHUNK_SIZE, want - len(buffer)))
            if not chunk:
                return
            buffer += chunk

    async def _read(self, size: int) -> bytes:
        try:
            return await self._source.read(size)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise SourceReadError(f"Reading the source failed: {exc}") from exc
