"""Data model types for s3parts uploads.

These dataclasses represent the multipart upload entities tracked by the
coordinator (sessions, planned parts, part results) and the records returned
by list operations and completed uploads.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Protocol, Union


class UploadState(str, Enum):
    """Lifecycle states of an upload session."""

    PLANNING = "Planning"
    IN_PROGRESS = "InProgress"
    COMPLETING = "Completing"
    COMPLETED = "Completed"
    ABORTED = "Aborted"
    FAILED = "Failed"


@dataclass(frozen=True)
class PartSpec:
    """The plan for one part.

    Attributes:
        part_number: 1-based part number.
        offset: Byte offset of the part within the logical stream.
        size: Expected length of the part in bytes.
    """

    part_number: int
    offset: int
    size: int

    @property
    def end(self) -> int:
        return self.offset + self.size


@dataclass
class PartResult:
    """The outcome of uploading one part.

    Attributes:
        part_number: 1-based part number.
        etag: Unquoted ETag returned by the server.
        size: Number of bytes sent.
        checksum: Base64 part checksum for the selected algorithm, if any.
    """

    part_number: int
    etag: str
    size: int
    checksum: str | None = None


@dataclass
class ObjectPart:
    """A part already stored on the server, as returned by ListParts."""

    part_number: int
    etag: str
    size: int
    last_modified: str = ""


@dataclass
class MultipartUploadInfo:
    """An incomplete multipart upload, as returned by ListMultipartUploads."""

    key: str
    upload_id: str
    initiated: str = ""


@dataclass
class ObjectDescriptor:
    """The object produced by a successful upload.

    Attributes:
        bucket: The bucket name.
        key: The object key.
        etag: Unquoted ETag of the object.
        size: Total bytes uploaded.
        version_id: Version id if the bucket is versioned.
        checksum: Whole-object checksum value, if one was computed.
        checksum_type: "COMPOSITE" or "FULL_OBJECT" for multipart uploads.
        upload_id: The multipart upload id; None for a direct PUT.
        part_count: Number of parts (1 for a direct PUT).
    """

    bucket: str
    key: str
    etag: str
    size: int
    version_id: str | None = None
    checksum: str | None = None
    checksum_type: str | None = None
    upload_id: str | None = None
    part_count: int = 1


@dataclass
class UploadSession:
    """One in-flight multipart upload.

    ``parts`` is written by several workers; mutate it only through
    ``record`` while holding ``lock``.
    """

    upload_id: str
    bucket: str
    key: str
    part_size: int
    total_size: int | None = None
    state: UploadState = UploadState.PLANNING
    parts: dict[int, PartResult] = field(default_factory=dict)
    bytes_uploaded: int = 0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    async def record(self, result: PartResult) -> None:
        async with self.lock:
            self.parts[result.part_number] = result
            self.bytes_uploaded += result.size


class ProgressSink(Protocol):
    """Receives byte counts as parts finish uploading."""

    def update(self, nbytes: int) -> None: ...


ProgressTarget = Union[ProgressSink, Callable[[int], None], None]


def report_progress(sink: ProgressTarget, nbytes: int) -> None:
    """Forward ``nbytes`` to a progress sink or plain callable."""
    if sink is None:
        return
    update = getattr(sink, "update", None)
    if callable(update):
        update(nbytes)
    else:
        sink(nbytes)


class CancelToken:
    """A caller-owned cancellation signal shared with an upload."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()
