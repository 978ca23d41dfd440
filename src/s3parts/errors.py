"""Error definitions for s3parts.

Two families live here: ``S3Error`` for error documents returned by the
server, and the upload engine's own taxonomy (planning, source, part,
completion, abort and cancellation failures). Everything derives from
``S3PartsError`` so callers can catch the library as a whole.
"""

from __future__ import annotations


class S3PartsError(Exception):
    """Base class for every error raised by s3parts.

    Attributes:
        code: Short machine-readable error code.
        message: Human-readable error description.
        abort_error: The error raised by the best-effort abort that followed
            this error, if that abort failed.
    """

    code = "S3PartsError"
    abort_error: AbortFailed | None = None

    def __init__(self, message: str = "", code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class S3Error(S3PartsError):
    """An error document returned by an S3-compatible server.

    Attributes:
        code: The S3 error code string (e.g. "NoSuchUpload", "SlowDown").
        message: Human-readable error description.
        http_status: The HTTP status code of the response.
        request_id: The server-assigned request id, if any.
        resource: The resource named in the error document, if any.
        extra_fields: Any other elements found in the error document.
    """

    def __init__(
        self,
        code: str,
        message: str,
        http_status: int = 400,
        request_id: str = "",
        resource: str = "",
        extra_fields: dict[str, str] | None = None,
    ) -> None:
        """Initialize the S3 error.

        Args:
            code: S3 error code.
            message: Error description.
            http_status: HTTP status code (default 400).
            request_id: Request id reported by the server.
            resource: Resource reported by the server.
            extra_fields: Optional extra XML fields.
        """
        super().__init__(message, code=code)
        self.http_status = http_status
        self.request_id = request_id
        self.resource = resource
        self.extra_fields = extra_fields or {}

    def __str__(self) -> str:
        return f"{self.code} ({self.http_status}): {self.message}"


# -- Input validation ---------------------------------------------------------


class InvalidArgument(S3PartsError):
    """An invalid argument was provided."""

    code = "InvalidArgument"


class InvalidBucketName(InvalidArgument):
    """The specified bucket name is not valid."""

    code = "InvalidBucketName"

    def __init__(self, bucket: str = "") -> None:
        super().__init__(f"The specified bucket is not valid: {bucket!r}")
        self.bucket = bucket


class InvalidObjectName(InvalidArgument):
    """The specified object key is not valid."""

    code = "InvalidObjectName"

    def __init__(self, message: str = "The specified object key is not valid.") -> None:
        super().__init__(message)


# -- Planning -----------------------------------------------------------------


class PlanningError(S3PartsError):
    """The upload could not be planned; no network call was made."""

    code = "PlanningError"


class InvalidPartSize(PlanningError):
    """The requested part size is outside the protocol bounds."""

    code = "InvalidPartSize"


class ObjectTooLarge(PlanningError):
    """The object exceeds the maximum size reachable within protocol limits."""

    code = "ObjectTooLarge"


# -- Source -------------------------------------------------------------------


class SourceReadError(S3PartsError):
    """Reading the input stream failed. The stream cannot be replayed."""

    code = "SourceReadError"


class UnexpectedEOF(SourceReadError):
    """The input stream ended before the declared size was read."""

    code = "UnexpectedEOF"

    def __init__(self, read: int, expected: int) -> None:
        super().__init__(
            f"Stream ended after {read} bytes, expected {expected} bytes."
        )
        self.read = read
        self.expected = expected


# -- Network and upload lifecycle ----------------------------------------------


class TransientNetworkError(S3PartsError):
    """A connection-level failure that is worth retrying."""

    code = "TransientNetworkError"


class UploadFailed(S3PartsError):
    """Base class for errors that end a multipart upload.

    Attributes:
        upload_id: The multipart upload the error belongs to, if any.
    """

    code = "UploadFailed"

    def __init__(self, message: str = "", upload_id: str | None = None) -> None:
        super().__init__(message)
        self.upload_id = upload_id


class PartUploadFailed(UploadFailed):
    """A part could not be uploaded after exhausting its retries."""

    code = "PartUploadFailed"

    def __init__(
        self, part_number: int, cause: BaseException, upload_id: str | None = None
    ) -> None:
        super().__init__(f"Part {part_number} failed to upload: {cause}", upload_id)
        self.part_number = part_number
        self.cause = cause


class IncompleteManifest(UploadFailed):
    """Completion was attempted with missing or duplicate part numbers."""

    code = "IncompleteManifest"

    def __init__(self, missing: list[int], upload_id: str | None = None) -> None:
        super().__init__(f"Part manifest is missing part numbers {missing}", upload_id)
        self.missing = missing


class CompletionFailed(UploadFailed):
    """The completion call failed after its permitted retry."""

    code = "CompletionFailed"

    def __init__(self, cause: BaseException, upload_id: str | None = None) -> None:
        super().__init__(f"Completing upload failed: {cause}", upload_id)
        self.cause = cause


class UploadCancelled(UploadFailed):
    """The caller cancelled the upload."""

    code = "Cancelled"


class AbortFailed(S3PartsError):
    """The abort-multipart-upload call failed; manual cleanup may be needed."""

    code = "AbortFailed"

    def __init__(self, upload_id: str, cause: BaseException) -> None:
        super().__init__(f"Aborting upload {upload_id} failed: {cause}")
        self.upload_id = upload_id
        self.cause = cause
