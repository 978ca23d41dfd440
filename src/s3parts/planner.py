"""Part planning for multipart uploads.

Given the total size (or None when unknown), an optional requested part
size and the server's protocol limits, ``plan`` decides between a single
direct PUT and a multipart upload, and fixes the part size for the whole
session.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterator
from dataclasses import dataclass

from s3parts.config import ProtocolLimits
from s3parts.errors import InvalidPartSize, ObjectTooLarge
from s3parts.models import PartSpec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PartPlan:
    """The shape of an upload.

    Attributes:
        direct_put: True when the object should be sent with one PUT.
        part_size: Size of every part except possibly the last.
        total_size: Known total size, or None when the stream length is unknown.
        max_parts: The ceiling the reader must enforce for unknown sizes.
    """

    direct_put: bool
    part_size: int
    total_size: int | None
    max_parts: int

    @property
    def part_count(self) -> int | None:
        """Number of parts for a known size; None when unknown."""
        if self.total_size is None:
            return None
        if self.direct_put:
            return 1
        return max(1, math.ceil(self.total_size / self.part_size))

    @property
    def last_part_size(self) -> int | None:
        """Size of the final part for a known size; None when unknown."""
        count = self.part_count
        if count is None:
            return None
        return self.total_size - (count - 1) * self.part_size

    def parts(self) -> Iterator[PartSpec]:
        """Yield every PartSpec of a known-size plan.

        Raises:
            ValueError: If the total size is unknown.
        """
        if self.total_size is None:
            raise ValueError("Parts of an unknown-size upload are discovered while reading")
        count = self.part_count
        for number in range(1, count + 1):
            offset = (number - 1) * self.part_size
            size = self.last_part_size if number == count else self.part_size
            yield PartSpec(part_number=number, offset=offset, size=size)


def _round_up(value: int, granularity: int) -> int:
    return math.ceil(value / granularity) * granularity


def default_part_size(total_size: int | None, limits: ProtocolLimits) -> int:
    """Choose the smallest part size that fits ``total_size`` in ``max_parts``.

    For an unknown size the part size must cover the maximum object size,
    since it cannot grow once the first part is sent.
    """
    target = limits.max_object_size if total_size is None else total_size
    size = _round_up(math.ceil(target / limits.max_parts), limits.part_size_granularity)
    return min(max(size, limits.min_part_size), limits.max_part_size)


def plan(
    total_size: int | None,
    requested_part_size: int | None = None,
    limits: ProtocolLimits | None = None,
) -> PartPlan:
    """Plan an upload.

    Args:
        total_size: Total object size in bytes, or None if unknown.
        requested_part_size: Caller-supplied part size, or None to derive one.
        limits: Protocol limits; AWS S3 defaults when omitted.

    Returns:
        The PartPlan for the upload.

    Raises:
        InvalidPartSize: If the requested part size is outside
            ``[min_part_size, max_part_size]``, or too small to cover
            ``total_size`` within ``max_parts`` parts.
        ObjectTooLarge: If ``total_size`` exceeds the maximum object size.
        ValueError: If ``total_size`` is negative.
    """
    limits = limits or ProtocolLimits()

    if total_size is not None and total_size < 0:
        raise ValueError(f"total_size must be zero or greater, got {total_size}")

    if requested_part_size is not None:
        if not limits.min_part_size <= requested_part_size <= limits.max_part_size:
            raise InvalidPartSize(
                f"Part size {requested_part_size} is outside "
                f"[{limits.min_part_size}, {limits.max_part_size}]"
            )

    if total_size is not None:
        if total_size > limits.max_object_size:
            raise ObjectTooLarge(
                f"Object size {total_size} exceeds the maximum {limits.max_object_size}"
            )
        if total_size == 0 or total_size < limits.single_put_threshold:
            return PartPlan(
                direct_put=True,
                part_size=max(total_size, 1),
                total_size=total_size,
                max_parts=1,
            )

    if requested_part_size is not None:
        part_size = requested_part_size
        if total_size is not None and math.ceil(total_size / part_size) > limits.max_parts:
            raise InvalidPartSize(
                f"Part size {part_size} needs {math.ceil(total_size / part_size)} parts "
                f"for {total_size} bytes; the maximum is {limits.max_parts}"
            )
    else:
        part_size = default_part_size(total_size, limits)
        if total_size is not None and math.ceil(total_size / part_size) > limits.max_parts:
            raise ObjectTooLarge(
                f"Object size {total_size} cannot fit in {limits.max_parts} parts "
                f"of at most {limits.max_part_size} bytes"
            )

    result = PartPlan(
        direct_put=False,
        part_size=part_size,
        total_size=total_size,
        max_parts=limits.max_parts,
    )
    logger.debug(
        "Planned multipart upload: total_size=%s part_size=%d part_count=%s",
        total_size,
        part_size,
        result.part_count,
    )
    return result
