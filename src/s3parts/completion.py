"""Assembly of the part manifest and the CompleteMultipartUpload call."""

from __future__ import annotations

import dataclasses
import logging
from typing import TYPE_CHECKING

from s3parts.checksum import ChecksumAlgorithm, ChecksumType, ObjectChecksum
from s3parts.errors import CompletionFailed, IncompleteManifest, S3PartsError
from s3parts.models import ObjectDescriptor, PartResult, UploadSession, UploadState
from s3parts.retry import RetryPolicy

if TYPE_CHECKING:
    from s3parts.client import S3Client

logger = logging.getLogger(__name__)


class CompletionAssembler:
    """Builds the ordered manifest and completes the upload.

    The completion call is retried at most once, whatever the configured
    attempt count for parts.

    Args:
        client: The client used to send the completion request.
        retry: The shared retry policy.
    """

    def __init__(self, client: S3Client, retry: RetryPolicy) -> None:
        self.client = client
        self.retry = dataclasses.replace(retry, max_attempts=min(retry.max_attempts, 2))

    def build_manifest(self, session: UploadSession) -> list[PartResult]:
        """Return the recorded parts sorted by part number.

        Raises:
            IncompleteManifest: If the part numbers are not contiguous from 1.
        """
        numbers = sorted(session.parts)
        highest = numbers[-1] if numbers else 1
        missing = [n for n in range(1, highest + 1) if n not in session.parts]
        if missing:
            raise IncompleteManifest(missing, session.upload_id)
        return [session.parts[n] for n in numbers]

    async def complete(
        self, session: UploadSession, object_checksum: ObjectChecksum | None = None
    ) -> ObjectDescriptor:
        """Send CompleteMultipartUpload for ``session``.

        Args:
            session: The upload; every part must be recorded.
            object_checksum: The locally computed whole-object checksum.

        Returns:
            The descriptor of the completed object.

        Raises:
            IncompleteManifest: If a part is missing.
            CompletionFailed: If the completion call failed after its retry.
        """
        manifest = self.build_manifest(session)
        session.state = UploadState.COMPLETING

        checksum_element = None
        headers: dict[str, str] = {}
        if object_checksum is not None:
            checksum_element = object_checksum.algorithm.xml_element
            header = object_checksum.algorithm.header
            if object_checksum.checksum_type is ChecksumType.FULL_OBJECT and header:
                headers[header] = object_checksum.value
                headers["x-amz-checksum-type"] = ChecksumType.FULL_OBJECT.value

        try:
            result = await self.retry.call(
                self.client.complete_multipart_upload,
                session.bucket,
                session.key,
                session.upload_id,
                manifest,
                checksum_element=checksum_element,
                headers=headers,
                operation="CompleteMultipartUpload",
                log_extra={"upload_id": session.upload_id},
            )
        except S3PartsError as exc:
            session.state = UploadState.FAILED
            raise CompletionFailed(exc, session.upload_id) from exc

        session.state = UploadState.COMPLETED
        descriptor = ObjectDescriptor(
            bucket=session.bucket,
            key=session.key,
            etag=result["etag"],
            size=sum(part.size for part in manifest),
            version_id=result.get("version_id") or None,
            upload_id=session.upload_id,
            part_count=len(manifest),
        )
        if object_checksum is not None:
            descriptor.checksum = (
                result.get(checksum_element or "") or object_checksum.value
            )
            descriptor.checksum_type = (
                result.get("checksum_type") or object_checksum.checksum_type.value
            )
            if (
                object_checksum.algorithm is ChecksumAlgorithm.MD5
                and descriptor.etag != object_checksum.value
            ):
                # Expected with SSE-KMS/SSE-C, where ETags are not MD5s.
                logger.warning(
                    "Object ETag %s does not match the computed multipart ETag %s",
                    descriptor.etag,
                    object_checksum.value,
                    extra={"upload_id": session.upload_id},
                )
        return descriptor
