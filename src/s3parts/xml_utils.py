"""S3 XML request rendering and response parsing helpers for s3parts."""

from __future__ import annotations

import xml.etree.ElementTree as ET
from xml.sax.saxutils import escape as _sax_escape

from s3parts.errors import S3Error
from s3parts.models import MultipartUploadInfo, ObjectPart, PartResult

S3_NS = "http://s3.amazonaws.com/doc/2006-03-01/"


def _escape_xml(value: str) -> str:
    """Escape special XML characters in a string value.

    Args:
        value: The raw string to escape.

    Returns:
        The XML-safe escaped string.
    """
    return _sax_escape(str(value))


def _strip_ns(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _findtext(element: ET.Element, name: str, default: str = "") -> str:
    """Find a direct child's text, with or without the S3 namespace."""
    for child in element:
        if _strip_ns(child.tag) == name:
            return child.text or default
    return default


def _findall(element: ET.Element, name: str) -> list[ET.Element]:
    return [child for child in element if _strip_ns(child.tag) == name]


def _parse(body: bytes) -> ET.Element:
    try:
        return ET.fromstring(body)
    except ET.ParseError as exc:
        raise S3Error(
            code="MalformedXML",
            message=f"Could not parse response body: {exc}",
            http_status=200,
        ) from exc


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


def render_complete_multipart_upload(
    parts: list[PartResult], checksum_element: str | None = None
) -> str:
    """Render a CompleteMultipartUpload request body.

    Args:
        parts: Uploaded parts, already sorted by part number.
        checksum_element: Element name for per-part checksums
            (e.g. ``ChecksumCRC32C``), or None to omit them.

    Returns:
        An XML string for CompleteMultipartUpload.
    """
    body = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        f'<CompleteMultipartUpload xmlns="{S3_NS}">',
    ]
    for part in parts:
        body.append("<Part>")
        body.append(f"<PartNumber>{part.part_number}</PartNumber>")
        body.append(f"<ETag>{_escape_xml(quote_etag(part.etag))}</ETag>")
        if checksum_element and part.checksum:
            body.append(
                f"<{checksum_element}>{_escape_xml(part.checksum)}</{checksum_element}>"
            )
        body.append("</Part>")
    body.append("</CompleteMultipartUpload>")
    return "\n".join(body)


def quote_etag(etag: str) -> str:
    """Return the ETag wrapped in double quotes."""
    return '"' + etag.strip('"') + '"'


def unquote_etag(etag: str) -> str:
    """Return the ETag without surrounding double quotes."""
    return etag.strip('"')


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


def is_error_document(body: bytes) -> bool:
    """Return True if ``body`` is an S3 ``<Error>`` document."""
    head = body.lstrip()[:256]
    if not head.startswith(b"<"):
        return False
    try:
        root = ET.fromstring(body)
    except ET.ParseError:
        return False
    return _strip_ns(root.tag) == "Error"


def parse_error(body: bytes, http_status: int, resource: str = "") -> S3Error:
    """Parse an S3 XML error response body into an ``S3Error``.

    Bodies that are empty or not XML (HEAD responses, proxies) produce an
    error whose code is derived from the HTTP status.

    Args:
        body: The raw response body.
        http_status: The HTTP status of the response.
        resource: The resource path the request targeted.

    Returns:
        The S3Error describing the failure.
    """
    try:
        root = ET.fromstring(body) if body else None
    except ET.ParseError:
        root = None
    if root is None or _strip_ns(root.tag) != "Error":
        return S3Error(
            code=_STATUS_CODES.get(http_status, f"HTTP{http_status}"),
            message=body.decode("utf-8", "replace")[:512] or f"HTTP status {http_status}",
            http_status=http_status,
            resource=resource,
        )
    known = {"Code", "Message", "Resource", "RequestId"}
    extra = {
        _strip_ns(child.tag): child.text or ""
        for child in root
        if _strip_ns(child.tag) not in known
    }
    return S3Error(
        code=_findtext(root, "Code", "UnknownError"),
        message=_findtext(root, "Message"),
        http_status=http_status,
        request_id=_findtext(root, "RequestId"),
        resource=_findtext(root, "Resource", resource),
        extra_fields=extra,
    )


_STATUS_CODES = {
    301: "PermanentRedirect",
    307: "TemporaryRedirect",
    400: "BadRequest",
    403: "AccessDenied",
    404: "NotFound",
    405: "MethodNotAllowed",
    409: "Conflict",
    429: "SlowDown",
    500: "InternalError",
    501: "NotImplemented",
    503: "ServiceUnavailable",
}


def parse_initiate_multipart_upload(body: bytes) -> str:
    """Parse InitiateMultipartUploadResult and return the upload id.

    Raises:
        S3Error: If the document carries no UploadId.
    """
    root = _parse(body)
    upload_id = _findtext(root, "UploadId")
    if not upload_id:
        raise S3Error(
            code="MalformedXML",
            message="InitiateMultipartUploadResult has no UploadId",
            http_status=200,
        )
    return upload_id


def parse_complete_multipart_upload(body: bytes) -> dict[str, str]:
    """Parse CompleteMultipartUploadResult.

    Returns:
        A dict with ``etag``, ``location``, ``bucket``, ``key`` and any
        ``Checksum*`` values (keyed by element name) and ``checksum_type``.
    """
    root = _parse(body)
    result = {
        "etag": unquote_etag(_findtext(root, "ETag")),
        "location": _findtext(root, "Location"),
        "bucket": _findtext(root, "Bucket"),
        "key": _findtext(root, "Key"),
        "checksum_type": _findtext(root, "ChecksumType"),
    }
    for child in root:
        name = _strip_ns(child.tag)
        if name.startswith("Checksum") and name != "ChecksumType":
            result[name] = child.text or ""
    return result


def parse_list_parts(body: bytes) -> tuple[list[ObjectPart], bool, int]:
    """Parse ListPartsResult.

    Returns:
        A tuple of (parts, is_truncated, next_part_number_marker).
    """
    root = _parse(body)
    parts = [
        ObjectPart(
            part_number=int(_findtext(elem, "PartNumber", "0")),
            etag=unquote_etag(_findtext(elem, "ETag")),
            size=int(_findtext(elem, "Size", "0")),
            last_modified=_findtext(elem, "LastModified"),
        )
        for elem in _findall(root, "Part")
    ]
    truncated = _findtext(root, "IsTruncated", "false").lower() == "true"
    marker = int(_findtext(root, "NextPartNumberMarker", "0") or 0)
    return parts, truncated, marker


def parse_list_multipart_uploads(
    body: bytes,
) -> tuple[list[MultipartUploadInfo], bool, str, str]:
    """Parse ListMultipartUploadsResult.

    Returns:
        A tuple of (uploads, is_truncated, next_key_marker,
        next_upload_id_marker).
    """
    root = _parse(body)
    uploads = [
        MultipartUploadInfo(
            key=_findtext(elem, "Key"),
            upload_id=_findtext(elem, "UploadId"),
            initiated=_findtext(elem, "Initiated"),
        )
        for elem in _findall(root, "Upload")
    ]
    truncated = _findtext(root, "IsTruncated", "false").lower() == "true"
    return (
        uploads,
        truncated,
        _findtext(root, "NextKeyMarker"),
        _findtext(root, "NextUploadIdMarker"),
    )
