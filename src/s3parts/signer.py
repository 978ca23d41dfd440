"""AWS Signature Version 4 request signing for s3parts.

Implements header-based SigV4 signing of outgoing requests. The coordinator
only depends on the ``SigningMaterial`` capability; ``SigV4Signer`` is the
implementation used with static credentials.

References:
    - https://docs.aws.amazon.com/AmazonS3/latest/API/sig-v4-authenticating-requests.html
"""

import hashlib
import hmac
import logging
import re
import urllib.parse
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Mapping, Protocol

logger = logging.getLogger(__name__)

# Constants
ALGORITHM = "AWS4-HMAC-SHA256"
KEY_PREFIX = "AWS4"
SCOPE_TERMINATOR = "aws4_request"
SERVICE_NAME = "s3"
UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"

# Headers that proxies and HTTP stacks are free to rewrite
_UNSIGNED_HEADERS = frozenset(
    {"authorization", "user-agent", "content-length", "expect", "connection", "accept-encoding"}
)


@dataclass(frozen=True)
class Credentials:
    """Static access credentials."""

    access_key: str
    secret_key: str
    session_token: str = ""

    @property
    def anonymous(self) -> bool:
        return not self.access_key or not self.secret_key


class SigningMaterial(Protocol):
    """Anything that can produce the signing headers for a request."""

    def sign(
        self,
        method: str,
        path: str,
        query: Mapping[str, str],
        headers: Mapping[str, str],
        payload_hash: str,
    ) -> dict[str, str]:
        """Return the headers to add to the request."""
        ...


class SigV4Signer:
    """Signs outgoing requests with AWS Signature Version 4.

    Attributes:
        credentials: The credentials used to sign.
        region: The region placed in the credential scope.
        service: The service placed in the credential scope.
    """

    def __init__(
        self, credentials: Credentials, region: str = "us-east-1", service: str = SERVICE_NAME
    ) -> None:
        self.credentials = credentials
        self.region = region
        self.service = service
        # Signing key cache: (date, region, service) -> signing_key bytes
        self._signing_key_cache: dict[tuple[str, str, str], bytes] = {}

    def sign(
        self,
        method: str,
        path: str,
        query: Mapping[str, str],
        headers: Mapping[str, str],
        payload_hash: str,
        now: datetime | None = None,
    ) -> dict[str, str]:
        """Compute the SigV4 headers for a request.

        Args:
            method: HTTP method (uppercase).
            path: The request path, not yet URI-encoded.
            query: Query parameters (a value of "" renders as ``name=``).
            headers: Request headers; must include ``host``.
            payload_hash: SHA-256 hex digest of the body or UNSIGNED-PAYLOAD.
            now: Signing time, defaults to the current UTC time.

        Returns:
            Headers to merge into the request: ``x-amz-date``,
            ``x-amz-content-sha256``, ``Authorization`` and, with temporary
            credentials, ``x-amz-security-token``. Empty for anonymous
            credentials.
        """
        if self.credentials.anonymous:
            return {}

        now = now or datetime.now(timezone.utc)
        amz_date = now.strftime("%Y%m%dT%H%M%SZ")
        date_stamp = amz_date[:8]

        added = {"x-amz-date": amz_date, "x-amz-content-sha256": payload_hash}
        if self.credentials.session_token:
            added["x-amz-security-token"] = self.credentials.session_token

        all_headers = {name.lower(): value for name, value in headers.items()}
        all_headers.update(added)
        signed_headers = sorted(
            name for name in all_headers if name not in _UNSIGNED_HEADERS
        )

        canonical_request = self._build_canonical_request(
            method=method,
            uri=path,
            query=query,
            headers=all_headers,
            signed_headers=signed_headers,
            payload_hash=payload_hash,
        )
        logger.debug("Canonical request:\n%s", canonical_request)
        scope = f"{date_stamp}/{self.region}/{self.service}/{SCOPE_TERMINATOR}"
        string_to_sign = self._build_string_to_sign(amz_date, scope, canonical_request)
        signing_key = self._derive_signing_key(date_stamp)
        signature = hmac.new(
            signing_key, string_to_sign.encode("utf-8"), hashlib.sha256
        ).hexdigest()

        added["Authorization"] = (
            f"{ALGORITHM} Credential={self.credentials.access_key}/{scope}, "
            f"SignedHeaders={';'.join(signed_headers)}, Signature={signature}"
        )
        return added

    # -- Canonical request construction ----------------------------------------

    def _build_canonical_request(
        self,
        method: str,
        uri: str,
        query: Mapping[str, str],
        headers: dict[str, str],
        signed_headers: list[str],
        payload_hash: str,
    ) -> str:
        """Build the canonical request string.

        Args:
            method: HTTP method (uppercase).
            uri: The request URI path.
            query: Query parameters.
            headers: Request headers with lowercase names.
            signed_headers: Sorted lowercase names of the signed headers.
            payload_hash: SHA-256 hex digest or UNSIGNED-PAYLOAD.

        Returns:
            The canonical request string.
        """
        canonical_headers = "".join(
            f"{name}:{_trim_header_value(headers[name])}\n" for name in signed_headers
        )
        parts = [
            method,
            uri_encode_path(uri),
            canonical_query_string(query),
            canonical_headers,
            ";".join(signed_headers),
            payload_hash,
        ]
        return "\n".join(parts)

    # -- String to sign --------------------------------------------------------

    def _build_string_to_sign(self, timestamp: str, scope: str, canonical_request: str) -> str:
        """Build the string to sign.

        Args:
            timestamp: ISO 8601 timestamp (YYYYMMDDTHHMMSSZ).
            scope: Credential scope (YYYYMMDD/region/s3/aws4_request).
            canonical_request: The assembled canonical request string.

        Returns:
            The string to sign.
        """
        canonical_hash = hashlib.sha256(canonical_request.encode("utf-8")).hexdigest()
        return f"{ALGORITHM}\n{timestamp}\n{scope}\n{canonical_hash}"

    # -- Signing key derivation ------------------------------------------------

    def _derive_signing_key(self, date: str) -> bytes:
        """Derive the signing key, cached per (date, region, service)."""
        cache_key = (date, self.region, self.service)
        cached = self._signing_key_cache.get(cache_key)
        if cached is not None:
            return cached

        signing_key = derive_signing_key(
            self.credentials.secret_key, date, self.region, self.service
        )
        if len(self._signing_key_cache) > 16:
            self._signing_key_cache.clear()
        self._signing_key_cache[cache_key] = signing_key
        return signing_key


# ---------------------------------------------------------------------------
# Module-level utility functions
# ---------------------------------------------------------------------------


def derive_signing_key(secret_key: str, date: str, region: str, service: str) -> bytes:
    """Derive the SigV4 signing key via the HMAC-SHA256 chain.

    Args:
        secret_key: The secret access key.
        date: Date string (YYYYMMDD).
        region: AWS region.
        service: AWS service name.

    Returns:
        The 32-byte signing key.
    """
    k_date = hmac.new(
        (KEY_PREFIX + secret_key).encode("utf-8"),
        date.encode("utf-8"),
        hashlib.sha256,
    ).digest()
    k_region = hmac.new(k_date, region.encode("utf-8"), hashlib.sha256).digest()
    k_service = hmac.new(k_region, service.encode("utf-8"), hashlib.sha256).digest()
    return hmac.new(k_service, SCOPE_TERMINATOR.encode("utf-8"), hashlib.sha256).digest()


def _uri_encode(s: str, encode_slash: bool = True) -> str:
    """S3-compatible URI encoding.

    Characters A-Z, a-z, 0-9, '-', '_', '.', '~' are not encoded.
    All other characters are percent-encoded with uppercase hex.
    Spaces become %20 (not +).
    """
    safe = "-_.~" if encode_slash else "-_.~/"
    return urllib.parse.quote(s, safe=safe)


def uri_encode_path(path: str) -> str:
    """URI-encode a path, preserving forward slashes."""
    if not path:
        return "/"
    result = _uri_encode(path, encode_slash=False)
    if not result.startswith("/"):
        result = "/" + result
    return result


def canonical_query_string(query: Mapping[str, str]) -> str:
    """Build the canonical query string.

    Parameters are sorted by encoded name, then value. Parameters with no
    value use an empty value (e.g. ``uploads=``).
    """
    encoded = sorted(
        (_uri_encode(name), _uri_encode(str(value))) for name, value in query.items()
    )
    return "&".join(f"{name}={value}" for name, value in encoded)


def _trim_header_value(value: str) -> str:
    """Strip a header value and collapse sequential spaces."""
    return re.sub(r" +", " ", str(value).strip())
