"""Tests for bucket name and object key validation."""

import pytest

from s3parts.errors import InvalidArgument, InvalidBucketName, InvalidObjectName
from s3parts.validation import validate_bucket_name, validate_object_key


class TestValidateBucketName:
    """Tests for validate_bucket_name()."""

    # -- Valid names ----------------------------------------------------------

    def test_valid_simple(self):
        validate_bucket_name("my-bucket")

    def test_valid_length_bounds(self):
        validate_bucket_name("abc")
        validate_bucket_name("a" * 63)

    def test_valid_with_dots(self):
        validate_bucket_name("my.bucket.name")

    # -- Invalid names --------------------------------------------------------

    def test_too_short(self):
        with pytest.raises(InvalidBucketName):
            validate_bucket_name("ab")

    def test_too_long(self):
        with pytest.raises(InvalidBucketName):
            validate_bucket_name("a" * 64)

    def test_uppercase(self):
        with pytest.raises(InvalidBucketName):
            validate_bucket_name("MyBucket")

    def test_ip_address(self):
        """Names formatted as IP addresses are rejected."""
        with pytest.raises(InvalidBucketName):
            validate_bucket_name("192.168.1.1")

    def test_adjacent_dots_and_hyphens(self):
        for name in ("my..bucket", "my.-bucket", "my-.bucket"):
            with pytest.raises(InvalidBucketName):
                validate_bucket_name(name)

    def test_is_an_invalid_argument(self):
        with pytest.raises(InvalidArgument):
            validate_bucket_name("")


class TestValidateObjectKey:
    """Tests for validate_object_key()."""

    def test_valid_keys(self):
        validate_object_key("a")
        validate_object_key("dir/sub dir/файл.txt")
        validate_object_key("k" * 1024)

    def test_empty(self):
        with pytest.raises(InvalidObjectName):
            validate_object_key("")

    def test_too_long_in_bytes(self):
        """The limit applies to the UTF-8 encoding, not the character count."""
        with pytest.raises(InvalidObjectName):
            validate_object_key("é" * 513)

    def test_lone_surrogate(self):
        with pytest.raises(InvalidObjectName):
            validate_object_key("bad\udcffkey")
