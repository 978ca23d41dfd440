"""Tests for upload planning."""

import math

import pytest

from s3parts.config import GiB, MiB, TiB, ProtocolLimits
from s3parts.errors import InvalidPartSize, ObjectTooLarge, PlanningError
from s3parts.planner import default_part_size, plan


class TestDirectPut:
    """Sizes below the single-PUT threshold take one request."""

    def test_zero_bytes(self):
        """A zero-length known source is a single empty PUT."""
        result = plan(0)
        assert result.direct_put
        assert result.part_count == 1
        assert result.last_part_size == 0

    def test_just_below_threshold(self):
        result = plan(5 * MiB - 1)
        assert result.direct_put

    def test_at_threshold_is_multipart(self):
        """Exactly the threshold uses a one-part multipart upload."""
        result = plan(5 * MiB)
        assert not result.direct_put
        assert result.part_size == 5 * MiB
        assert result.part_count == 1
        assert result.last_part_size == 5 * MiB


class TestPartSizing:
    """Tests for default and requested part sizes."""

    def test_two_parts(self):
        result = plan(10 * MiB, requested_part_size=5 * MiB)
        assert result.part_count == 2
        assert [spec.size for spec in result.parts()] == [5 * MiB, 5 * MiB]

    def test_default_for_small_object_is_min_part(self):
        assert plan(64 * MiB).part_size == 5 * MiB

    def test_default_for_max_object_fits_max_parts(self):
        """The default part size for 5 TiB keeps the part count within 10000."""
        result = plan(5 * TiB)
        assert result.part_size % (5 * MiB) == 0
        assert result.part_count <= 10000
        assert math.ceil(5 * TiB / (result.part_size - 5 * MiB)) > 10000

    def test_unknown_size_covers_max_object(self):
        """An unknown size gets a part size big enough for the largest object."""
        result = plan(None)
        assert not result.direct_put
        assert result.part_count is None
        assert result.max_parts == 10000
        assert result.part_size * 10000 >= 5 * TiB
        assert result.part_size == default_part_size(None, ProtocolLimits())

    def test_unknown_size_uses_requested(self):
        assert plan(None, requested_part_size=8 * MiB).part_size == 8 * MiB

    def test_custom_granularity(self):
        limits = ProtocolLimits(
            min_part_size=1 * MiB,
            single_put_threshold=1 * MiB,
            part_size_granularity=1 * MiB,
            max_parts=10,
        )
        assert plan(25 * MiB, limits=limits).part_size == 3 * MiB


class TestPartitioning:
    """parts() yields a contiguous partition of the object."""

    def test_partition_is_contiguous(self):
        total = 12 * MiB + 3
        result = plan(total, requested_part_size=5 * MiB)
        specs = list(result.parts())
        assert [spec.part_number for spec in specs] == [1, 2, 3]
        offset = 0
        for spec in specs:
            assert spec.offset == offset
            offset = spec.end
        assert offset == total
        assert specs[-1].size == 2 * MiB + 3
        assert all(spec.size >= 5 * MiB for spec in specs[:-1])

    def test_parts_of_unknown_size_raise(self):
        with pytest.raises(ValueError):
            list(plan(None).parts())


class TestPlanningErrors:
    """Invalid requests fail before any network call."""

    def test_part_size_below_minimum(self):
        """A requested part size below the minimum is rejected."""
        with pytest.raises(InvalidPartSize):
            plan(100 * MiB, requested_part_size=1 * MiB)

    def test_part_size_above_maximum(self):
        with pytest.raises(InvalidPartSize):
            plan(100 * GiB, requested_part_size=6 * GiB)

    def test_part_size_too_small_for_object(self):
        """20480 parts of 5 MiB would exceed max_parts."""
        with pytest.raises(InvalidPartSize):
            plan(100 * GiB, requested_part_size=5 * MiB)

    def test_object_too_large(self):
        with pytest.raises(ObjectTooLarge):
            plan(5 * TiB + 1)

    def test_planning_errors_share_a_base(self):
        with pytest.raises(PlanningError):
            plan(None, requested_part_size=1)

    def test_negative_size(self):
        with pytest.raises(ValueError):
            plan(-1)


class TestProtocolLimits:
    """Tests for ProtocolLimits validation."""

    def test_defaults_match_s3(self):
        limits = ProtocolLimits()
        assert limits.min_part_size == 5 * MiB
        assert limits.max_part_size == 5 * GiB
        assert limits.max_parts == 10000
        assert limits.max_object_size == 5 * TiB

    def test_min_above_max_rejected(self):
        with pytest.raises(ValueError):
            ProtocolLimits(min_part_size=10 * GiB)
