"""Client-side input validation for s3parts.

Bucket and key checks run before any request is signed, so an obviously
bad destination fails without touching the network.

Each function raises an appropriate ``InvalidArgument`` subclass on invalid
input.
"""

import re

from s3parts.errors import InvalidBucketName, InvalidObjectName

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# S3 bucket naming rules:
#   - 3-63 characters
#   - lowercase letters, digits, hyphens, and periods
#   - must start and end with a letter or digit
#   - must not be formatted as an IP address
#   - no consecutive periods ("..") allowed

_BUCKET_RE = re.compile(r"^[a-z0-9][a-z0-9.\-]{1,61}[a-z0-9]$")
_IP_RE = re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}$")

_MAX_KEY_BYTES = 1024


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def validate_bucket_name(name: str) -> None:
    """Validate an S3 bucket name against AWS naming rules.

    Args:
        name: The candidate bucket name.

    Raises:
        InvalidBucketName: If the name violates any S3 bucket naming rule.
    """
    if not name or not name.strip():
        raise InvalidBucketName(name)

    if len(name) < 3 or len(name) > 63:
        raise InvalidBucketName(name)

    if not _BUCKET_RE.match(name):
        raise InvalidBucketName(name)

    if _IP_RE.match(name):
        raise InvalidBucketName(name)

    if ".." in name or ".-" in name or "-." in name:
        raise InvalidBucketName(name)


def validate_object_key(key: str) -> None:
    """Validate an S3 object key.

    Args:
        key: The object key string.

    Raises:
        InvalidObjectName: If the key is empty or exceeds 1024 bytes when
            UTF-8 encoded.
    """
    if not key or not key.strip():
        raise InvalidObjectName("Object key cannot be empty.")

    try:
        encoded = key.encode("utf-8")
    except UnicodeEncodeError:
        raise InvalidObjectName("Object key is not valid UTF-8.")

    if len(encoded) > _MAX_KEY_BYTES:
        raise InvalidObjectName(
            f"Object key is {len(encoded)} bytes; the maximum is {_MAX_KEY_BYTES}."
        )
