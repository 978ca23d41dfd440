"""Low-level S3 client for s3parts.

``S3Client`` exposes the individual S3 calls the upload engine relies on
(direct PUT, the multipart lifecycle and the two list operations) and the
high-level ``upload``/``fput_object`` entry points that hand off to the
``UploadCoordinator``. Requests use path-style addressing:
``{endpoint}/{bucket}/{key}``.
"""

from __future__ import annotations

import hashlib
import logging
import os
import time
from typing import TYPE_CHECKING, Any, AsyncIterator, Mapping
from urllib.parse import urlsplit

from s3parts import metrics
from s3parts.checksum import EMPTY_SHA256
from s3parts.config import S3PartsConfig
from s3parts.coordinator import UploadCoordinator
from s3parts.errors import AbortFailed, S3Error, S3PartsError, TransientNetworkError
from s3parts.models import MultipartUploadInfo, ObjectDescriptor, ObjectPart, PartResult
from s3parts.retry import RetryPolicy
from s3parts.signer import (
    Credentials,
    SigningMaterial,
    SigV4Signer,
    canonical_query_string,
    uri_encode_path,
)
from s3parts.transport import HTTPRequest, HTTPResponse, HttpxTransport, Transport
from s3parts.validation import validate_bucket_name, validate_object_key
from s3parts.xml_utils import (
    is_error_document,
    parse_complete_multipart_upload,
    parse_error,
    parse_initiate_multipart_upload,
    parse_list_multipart_uploads,
    parse_list_parts,
    render_complete_multipart_upload,
    unquote_etag,
)

if TYPE_CHECKING:
    from s3parts.config import UploadOptions
    from s3parts.models import CancelToken

logger = logging.getLogger(__name__)

__version__ = "0.1.0"


class S3Client:
    """An S3-compatible client owning its configuration and connections.

    Args:
        config: Client configuration; defaults are used when omitted.
        transport: Request executor; an ``HttpxTransport`` by default.
        signer: Signing capability; SigV4 with the configured credentials
            by default.
    """

    def __init__(
        self,
        config: S3PartsConfig | None = None,
        *,
        transport: Transport | None = None,
        signer: SigningMaterial | None = None,
    ) -> None:
        self.config = config or S3PartsConfig()
        client_cfg = self.config.client
        self.transport = transport or HttpxTransport(timeout=client_cfg.timeout)
        self.signer = signer or SigV4Signer(
            Credentials(
                access_key=client_cfg.access_key,
                secret_key=client_cfg.secret_key,
                session_token=client_cfg.session_token,
            ),
            region=client_cfg.region,
        )
        self.retry = RetryPolicy.from_config(self.config.retry)

        parts = urlsplit(client_cfg.endpoint)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ValueError(f"Invalid endpoint: {client_cfg.endpoint!r}")
        self._base_url = f"{parts.scheme}://{parts.netloc}"
        self._host = parts.netloc

        self.user_agent = f"s3parts/{__version__}"
        if client_cfg.app_info:
            self.user_agent += f" {client_cfg.app_info}"

        if self.config.observability.metrics:
            metrics.init_metrics()

    async def __aenter__(self) -> "S3Client":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Release the transport's connections."""
        await self.transport.close()

    # -- Request execution ------------------------------------------------------

    async def _execute(
        self,
        method: str,
        bucket: str,
        key: str = "",
        *,
        query: Mapping[str, str] | None = None,
        headers: Mapping[str, str] | None = None,
        body: bytes | bytearray | memoryview = b"",
        payload_hash: str | None = None,
        operation: str,
    ) -> HTTPResponse:
        """Sign and send one request.

        Args:
            method: HTTP method.
            bucket: Target bucket.
            key: Target object key, or "" for bucket-level requests.
            query: Query parameters.
            headers: Extra request headers.
            body: Request payload.
            payload_hash: SigV4 payload hash; computed from ``body`` if None.
            operation: Operation name for logs and metrics.

        Returns:
            The response, for any 2xx status.

        Raises:
            S3Error: For non-2xx responses.
            TransientNetworkError: For connection-level failures.
        """
        query = dict(query or {})
        path = f"/{bucket}/{key}" if key else f"/{bucket}"
        url = self._base_url + uri_encode_path(path)
        if query:
            url += "?" + canonical_query_string(query)

        request_headers = {"host": self._host, "user-agent": self.user_agent}
        for name, value in (headers or {}).items():
            request_headers[name.lower()] = value
        if payload_hash is None:
            payload_hash = hashlib.sha256(body).hexdigest() if body else EMPTY_SHA256
        request_headers.update(
            self.signer.sign(method, path, query, request_headers, payload_hash)
        )

        start = time.monotonic()
        try:
            response = await self.transport.send(
                HTTPRequest(method=method, url=url, headers=request_headers, body=body)
            )
        except TransientNetworkError:
            metrics.record_request(operation, "network_error")
            raise
        duration_ms = round((time.monotonic() - start) * 1000, 2)
        metrics.record_request(operation, response.status)
        logger.debug(
            "%s %s -> %d",
            operation,
            path,
            response.status,
            extra={"operation": operation, "status": response.status, "duration_ms": duration_ms},
        )
        if not 200 <= response.status < 300:
            raise parse_error(response.body, response.status, resource=path)
        return response

    # -- Object calls -----------------------------------------------------------

    async def put_object(
        self,
        bucket: str,
        key: str,
        data: bytes | bytearray | memoryview,
        *,
        headers: Mapping[str, str] | None = None,
        payload_hash: str | None = None,
    ) -> ObjectDescriptor:
        """Upload an object with a single PUT.

        Returns:
            An ObjectDescriptor carrying the ETag and version id.
        """
        validate_bucket_name(bucket)
        validate_object_key(key)
        response = await self._execute(
            "PUT",
            bucket,
            key,
            headers=headers,
            body=data,
            payload_hash=payload_hash,
            operation="PutObject",
        )
        return ObjectDescriptor(
            bucket=bucket,
            key=key,
            etag=unquote_etag(response.header("etag")),
            size=len(data),
            version_id=response.header("x-amz-version-id") or None,
        )

    async def create_multipart_upload(
        self, bucket: str, key: str, *, headers: Mapping[str, str] | None = None
    ) -> str:
        """Initiate a multipart upload and return its upload id."""
        validate_bucket_name(bucket)
        validate_object_key(key)
        response = await self._execute(
            "POST",
            bucket,
            key,
            query={"uploads": ""},
            headers=headers,
            operation="CreateMultipartUpload",
        )
        return parse_initiate_multipart_upload(response.body)

    async def upload_part(
        self,
        bucket: str,
        key: str,
        upload_id: str,
        part_number: int,
        data: bytes | bytearray | memoryview,
        *,
        headers: Mapping[str, str] | None = None,
        payload_hash: str | None = None,
    ) -> str:
        """Upload one part and return its unquoted ETag.

        Raises:
            S3Error: If the server rejects the part or omits the ETag.
        """
        response = await self._execute(
            "PUT",
            bucket,
            key,
            query={"partNumber": str(part_number), "uploadId": upload_id},
            headers=headers,
            body=data,
            payload_hash=payload_hash,
            operation="UploadPart",
        )
        etag = unquote_etag(response.header("etag"))
        if not etag:
            raise S3Error(
                code="InvalidResponse",
                message=f"UploadPart response for part {part_number} has no ETag",
                http_status=response.status,
            )
        return etag

    async def complete_multipart_upload(
        self,
        bucket: str,
        key: str,
        upload_id: str,
        parts: list[PartResult],
        *,
        checksum_element: str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> dict[str, str]:
        """Complete a multipart upload.

        The server may answer ``200 OK`` and still report a failure in the
        body; such a response raises like any other error.

        Returns:
            The parsed CompleteMultipartUploadResult plus ``version_id``.
        """
        body = render_complete_multipart_upload(parts, checksum_element).encode("utf-8")
        request_headers = {"content-type": "application/xml"}
        request_headers.update(headers or {})
        response = await self._execute(
            "POST",
            bucket,
            key,
            query={"uploadId": upload_id},
            headers=request_headers,
            body=body,
            operation="CompleteMultipartUpload",
        )
        if is_error_document(response.body):
            raise parse_error(response.body, response.status, resource=f"/{bucket}/{key}")
        result = parse_complete_multipart_upload(response.body)
        result["version_id"] = response.header("x-amz-version-id")
        if not result["etag"]:
            result["etag"] = unquote_etag(response.header("etag"))
        return result

    async def abort_multipart_upload(self, bucket: str, key: str, upload_id: str) -> None:
        """Abort a multipart upload, discarding its parts.

        Raises:
            AbortFailed: If the abort request failed.
        """
        try:
            await self._execute(
                "DELETE",
                bucket,
                key,
                query={"uploadId": upload_id},
                operation="AbortMultipartUpload",
            )
        except S3PartsError as exc:
            raise AbortFailed(upload_id, exc) from exc
        logger.info("Aborted multipart upload %s", upload_id, extra={"upload_id": upload_id})

    async def iter_parts(
        self,
        bucket: str,
        key: str,
        upload_id: str,
        *,
        page_size: int = 1000,
        cancel: CancelToken | None = None,
    ) -> AsyncIterator[ObjectPart]:
        """Yield the parts uploaded so far, fetching one page at a time.

        Iteration stops early once ``cancel`` is set.
        """
        marker = 0
        while cancel is None or not cancel.cancelled:
            query = {"uploadId": upload_id, "max-parts": str(page_size)}
            if marker:
                query["part-number-marker"] = str(marker)
            response = await self._execute(
                "GET", bucket, key, query=query, operation="ListParts"
            )
            page, truncated, marker = parse_list_parts(response.body)
            for part in page:
                yield part
            if not truncated or not marker:
                return

    async def list_parts(
        self, bucket: str, key: str, upload_id: str, *, page_size: int = 1000
    ) -> list[ObjectPart]:
        """List every part uploaded so far."""
        return [
            part async for part in self.iter_parts(bucket, key, upload_id, page_size=page_size)
        ]

    async def iter_multipart_uploads(
        self,
        bucket: str,
        prefix: str = "",
        *,
        page_size: int = 1000,
        cancel: CancelToken | None = None,
    ) -> AsyncIterator[MultipartUploadInfo]:
        """Yield incomplete multipart uploads under ``prefix``, one page at a time.

        Iteration stops early once ``cancel`` is set.
        """
        validate_bucket_name(bucket)
        key_marker = upload_id_marker = ""
        while cancel is None or not cancel.cancelled:
            query = {"uploads": "", "max-uploads": str(page_size)}
            if prefix:
                query["prefix"] = prefix
            if key_marker:
                query["key-marker"] = key_marker
            if upload_id_marker:
                query["upload-id-marker"] = upload_id_marker
            response = await self._execute(
                "GET", bucket, query=query, operation="ListMultipartUploads"
            )
            page, truncated, key_marker, upload_id_marker = parse_list_multipart_uploads(
                response.body
            )
            for upload in page:
                yield upload
            if not truncated or not (key_marker or upload_id_marker):
                return

    async def list_multipart_uploads(
        self, bucket: str, prefix: str = "", *, page_size: int = 1000
    ) -> list[MultipartUploadInfo]:
        """List every incomplete multipart upload under ``prefix``."""
        return [
            upload
            async for upload in self.iter_multipart_uploads(bucket, prefix, page_size=page_size)
        ]

    # -- High-level uploads -----------------------------------------------------

    async def upload(
        self,
        bucket: str,
        key: str,
        source: Any,
        size: int | None = None,
        options: UploadOptions | None = None,
        cancel: CancelToken | None = None,
    ) -> ObjectDescriptor:
        """Upload ``source`` as ``bucket/key``; see ``UploadCoordinator.upload``."""
        return await UploadCoordinator(self).upload(
            bucket, key, source, size=size, options=options, cancel=cancel
        )

    async def fput_object(
        self,
        bucket: str,
        key: str,
        file_path: str | os.PathLike[str],
        options: UploadOptions | None = None,
        cancel: CancelToken | None = None,
    ) -> ObjectDescriptor:
        """Upload the file at ``file_path``, using its size for planning."""
        size = os.stat(file_path).st_size
        with open(file_path, "rb") as fh:
            return await self.upload(bucket, key, fh, size=size, options=options, cancel=cancel)
