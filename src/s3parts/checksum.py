"""Integrity checksums for part and whole-object uploads.

The engine computes a digest per part (independently, so parts can be
hashed in parallel) and derives the whole-object checksum according to the
algorithm's composition rule:

    COMPOSITE    the object checksum is the digest of the concatenated raw
                 part digests, rendered ``<base64>-<part count>``.
    FULL_OBJECT  the object checksum is the digest of the object bytes, so
                 parts must be folded in ascending part-number order.

The rule is a lookup keyed by algorithm (``COMPOSITION``); nothing assumes
one rule for every algorithm.

CRC32C and CRC64NVME have no hashlib/zlib implementation, so they are
table-driven here with the same ``update``/``digest`` interface as hashlib.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import threading
import zlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

EMPTY_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


class ChecksumAlgorithm(str, Enum):
    """Checksum algorithms selectable for an upload."""

    NONE = "none"
    MD5 = "md5"
    CRC32 = "crc32"
    CRC32C = "crc32c"
    CRC64NVME = "crc64nvme"
    SHA256 = "sha256"

    @classmethod
    def _missing_(cls, value: object) -> "ChecksumAlgorithm | None":
        if isinstance(value, str):
            lowered = value.lower()
            for member in cls:
                if member.value == lowered:
                    return member
        return None

    @property
    def header(self) -> str | None:
        """The ``x-amz-checksum-*`` header carrying this algorithm's value."""
        if self in (ChecksumAlgorithm.NONE, ChecksumAlgorithm.MD5):
            return None
        return f"x-amz-checksum-{self.value}"

    @property
    def xml_element(self) -> str | None:
        """The element name used for this checksum in CompleteMultipartUpload."""
        return _XML_ELEMENTS.get(self)


class ChecksumType(str, Enum):
    """How an object checksum is derived from its parts."""

    COMPOSITE = "COMPOSITE"
    FULL_OBJECT = "FULL_OBJECT"


COMPOSITION: dict[ChecksumAlgorithm, ChecksumType] = {
    ChecksumAlgorithm.MD5: ChecksumType.COMPOSITE,
    ChecksumAlgorithm.CRC32: ChecksumType.COMPOSITE,
    ChecksumAlgorithm.CRC32C: ChecksumType.COMPOSITE,
    ChecksumAlgorithm.SHA256: ChecksumType.COMPOSITE,
    ChecksumAlgorithm.CRC64NVME: ChecksumType.FULL_OBJECT,
}

_XML_ELEMENTS = {
    ChecksumAlgorithm.CRC32: "ChecksumCRC32",
    ChecksumAlgorithm.CRC32C: "ChecksumCRC32C",
    ChecksumAlgorithm.CRC64NVME: "ChecksumCRC64NVME",
    ChecksumAlgorithm.SHA256: "ChecksumSHA256",
}


class Hasher(Protocol):
    """The subset of the hashlib interface the engine relies on."""

    def update(self, data: bytes | bytearray | memoryview) -> None: ...

    def digest(self) -> bytes: ...


# ---------------------------------------------------------------------------
# CRC implementations
# ---------------------------------------------------------------------------


def _reflected_table(poly: int, width: int) -> list[int]:
    table = []
    for byte in range(256):
        crc = byte
        for _ in range(8):
            crc = (crc >> 1) ^ poly if crc & 1 else crc >> 1
        table.append(crc & ((1 << width) - 1))
    return table


_CRC32C_TABLE = _reflected_table(0x82F63B78, 32)
_CRC64NVME_TABLE = _reflected_table(0x9A6C9329AC4BC9B5, 64)


class _ReflectedCRC:
    """Byte-at-a-time reflected CRC with all-ones init and final xor."""

    width = 32
    table: list[int] = []

    def __init__(self, data: bytes = b"") -> None:
        self._mask = (1 << self.width) - 1
        self._crc = self._mask
        if data:
            self.update(data)

    def update(self, data: bytes | bytearray | memoryview) -> None:
        crc = self._crc
        table = self.table
        for byte in bytes(data):
            crc = table[(crc ^ byte) & 0xFF] ^ (crc >> 8)
        self._crc = crc

    def value(self) -> int:
        return self._crc ^ self._mask

    def digest(self) -> bytes:
        return self.value().to_bytes(self.width // 8, "big")

    def hexdigest(self) -> str:
        return self.digest().hex()


class CRC32C(_ReflectedCRC):
    """CRC-32C (Castagnoli)."""

    width = 32
    table = _CRC32C_TABLE


class CRC64NVME(_ReflectedCRC):
    """CRC-64/NVME."""

    width = 64
    table = _CRC64NVME_TABLE


class CRC32:
    """CRC-32 (IEEE) on top of ``zlib.crc32``."""

    def __init__(self, data: bytes = b"") -> None:
        self._crc = 0
        if data:
            self.update(data)

    def update(self, data: bytes | bytearray | memoryview) -> None:
        self._crc = zlib.crc32(data, self._crc)

    def value(self) -> int:
        return self._crc

    def digest(self) -> bytes:
        return self._crc.to_bytes(4, "big")

    def hexdigest(self) -> str:
        return self.digest().hex()


def new_hasher(algorithm: ChecksumAlgorithm) -> Hasher:
    """Create a fresh hasher for ``algorithm``.

    Raises:
        ValueError: For ``ChecksumAlgorithm.NONE``.
    """
    if algorithm is ChecksumAlgorithm.MD5:
        return hashlib.md5()
    if algorithm is ChecksumAlgorithm.SHA256:
        return hashlib.sha256()
    if algorithm is ChecksumAlgorithm.CRC32:
        return CRC32()
    if algorithm is ChecksumAlgorithm.CRC32C:
        return CRC32C()
    if algorithm is ChecksumAlgorithm.CRC64NVME:
        return CRC64NVME()
    raise ValueError(f"No hasher for checksum algorithm {algorithm.value!r}")


def b64(data: bytes) -> str:
    """Base64-encode a raw digest for an HTTP header or XML element."""
    return base64.b64encode(data).decode("ascii")


def composite_etag(etags: list[str]) -> str:
    """Compute the S3 multipart ETag from the ordered part ETags.

    The composite ETag is the MD5 of the concatenated binary part MD5s,
    followed by a dash and the part count.

    Args:
        etags: Part ETags (quoted or bare hex), in ascending part order.

    Returns:
        The unquoted composite ETag, e.g. ``"abc123...-3"``.
    """
    binary_md5s = b""
    for etag in etags:
        binary_md5s += binascii.unhexlify(etag.strip('"'))
    return f"{hashlib.md5(binary_md5s).hexdigest()}-{len(etags)}"


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PartChecksum:
    """Digests computed for one part.

    Attributes:
        part_number: The 1-based part number.
        size: Number of bytes hashed.
        algorithm: The selected checksum algorithm.
        raw: Raw digest for ``algorithm`` (None when NONE).
        md5: Raw MD5 of the part, when computed.
        sha256_hex: Hex SHA-256 payload hash for request signing, when computed.
    """

    part_number: int
    size: int
    algorithm: ChecksumAlgorithm
    raw: bytes | None = None
    md5: bytes | None = None
    sha256_hex: str | None = None

    @property
    def value(self) -> str | None:
        """Base64 value of the selected checksum."""
        return b64(self.raw) if self.raw is not None else None

    @property
    def md5_hex(self) -> str | None:
        return self.md5.hex() if self.md5 is not None else None

    def headers(self, content_md5: bool = False) -> dict[str, str]:
        """Request headers carrying this part's checksums."""
        headers: dict[str, str] = {}
        header = self.algorithm.header
        if header is not None and self.raw is not None:
            headers[header] = b64(self.raw)
        if self.md5 is not None and (content_md5 or self.algorithm is ChecksumAlgorithm.MD5):
            headers["Content-MD5"] = b64(self.md5)
        return headers


@dataclass(frozen=True)
class ObjectChecksum:
    """The whole-object checksum of a completed upload."""

    algorithm: ChecksumAlgorithm
    checksum_type: ChecksumType
    value: str
    part_count: int = 1


@dataclass
class ChecksumEngine:
    """Computes per-part digests and the whole-object checksum.

    ``update`` is safe to call from several threads. For FULL_OBJECT
    algorithms parts are folded into the running digest in ascending part
    order; out-of-order parts are held until the contiguous prefix is
    available. Callers that can guarantee order (the serialized part reader)
    should check ``requires_ordered_updates`` and call ``update`` while
    reading, which keeps the pending table empty.

    Attributes:
        algorithm: The selected checksum algorithm.
        content_sha256: Compute the SHA-256 payload hash used for signing.
        content_md5: Compute a per-part MD5 (Content-MD5 or resume matching).
    """

    algorithm: ChecksumAlgorithm = ChecksumAlgorithm.NONE
    content_sha256: bool = True
    content_md5: bool = False
    _parts: dict[int, bytes] = field(default_factory=dict, init=False)
    _whole: Hasher | None = field(default=None, init=False)
    _next_fold: int = field(default=1, init=False)
    _pending: dict[int, bytes] = field(default_factory=dict, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    def __post_init__(self) -> None:
        if self.composition is ChecksumType.FULL_OBJECT:
            self._whole = new_hasher(self.algorithm)

    @property
    def composition(self) -> ChecksumType | None:
        return COMPOSITION.get(self.algorithm)

    @property
    def requires_ordered_updates(self) -> bool:
        return self.composition is ChecksumType.FULL_OBJECT

    def part_checksum(self, part_number: int, data: bytes | bytearray | memoryview) -> PartChecksum:
        """Hash one part without touching the object-level state."""
        raw = md5 = sha256_hex = None
        if self.algorithm is not ChecksumAlgorithm.NONE:
            hasher = new_hasher(self.algorithm)
            hasher.update(data)
            raw = hasher.digest()
        if self.algorithm is ChecksumAlgorithm.MD5:
            md5 = raw
        elif self.content_md5:
            md5 = hashlib.md5(data).digest()
        if self.algorithm is ChecksumAlgorithm.SHA256 and self.content_sha256:
            sha256_hex = raw.hex() if raw is not None else None
        elif self.content_sha256:
            sha256_hex = hashlib.sha256(data).hexdigest()
        return PartChecksum(
            part_number=part_number,
            size=len(data),
            algorithm=self.algorithm,
            raw=raw,
            md5=md5,
            sha256_hex=sha256_hex,
        )

    def update(self, part_number: int, data: bytes | bytearray | memoryview) -> PartChecksum:
        """Hash one part and record it for the object checksum."""
        checksum = self.part_checksum(part_number, data)
        if checksum.raw is None:
            return checksum
        with self._lock:
            self._parts[part_number] = checksum.raw
            if self._whole is not None:
                if part_number == self._next_fold:
                    self._whole.update(data)
                    self._next_fold += 1
                    self._drain_pending()
                elif part_number > self._next_fold:
                    self._pending[part_number] = bytes(data)
        return checksum

    def _drain_pending(self) -> None:
        while self._next_fold in self._pending:
            self._whole.update(self._pending.pop(self._next_fold))
            self._next_fold += 1

    def finalize(self, part_count: int | None = None) -> ObjectChecksum | None:
        """Compose the whole-object checksum.

        Args:
            part_count: Expected number of parts; defaults to the number of
                parts recorded.

        Returns:
            The object checksum, or None when no algorithm was selected.

        Raises:
            ValueError: If recorded parts are not contiguous from 1.
        """
        if self.algorithm is ChecksumAlgorithm.NONE:
            return None
        with self._lock:
            count = part_count if part_count is not None else len(self._parts)
            missing = [n for n in range(1, count + 1) if n not in self._parts]
            if missing or self._pending:
                raise ValueError(f"Cannot finalize checksum, missing parts {missing}")
            if self.composition is ChecksumType.FULL_OBJECT:
                return ObjectChecksum(
                    algorithm=self.algorithm,
                    checksum_type=ChecksumType.FULL_OBJECT,
                    value=b64(self._whole.digest()),
                    part_count=count,
                )
            hasher = new_hasher(self.algorithm)
            for number in range(1, count + 1):
                hasher.update(self._parts[number])
            digest = hasher.digest()
        if self.algorithm is ChecksumAlgorithm.MD5:
            value = f"{digest.hex()}-{count}"
        else:
            value = f"{b64(digest)}-{count}"
        return ObjectChecksum(
            algorithm=self.algorithm,
            checksum_type=ChecksumType.COMPOSITE,
            value=value,
            part_count=count,
        )

    def initiate_headers(self) -> dict[str, str]:
        """Headers announcing the checksum algorithm on CreateMultipartUpload."""
        header = self.algorithm.header
        if header is None:
            return {}
        return {
            "x-amz-checksum-algorithm": self.algorithm.value.upper(),
            "x-amz-checksum-type": self.composition.value,
        }
