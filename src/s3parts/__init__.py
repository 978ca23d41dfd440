"""s3parts: multipart uploads to S3-compatible object storage."""

from s3parts.checksum import ChecksumAlgorithm, ChecksumEngine, ChecksumType
from s3parts.client import S3Client, __version__
from s3parts.config import (
    ClientConfig,
    ProtocolLimits,
    RetryConfig,
    S3PartsConfig,
    UploadOptions,
    load_config,
)
from s3parts.coordinator import UploadCoordinator
from s3parts.errors import (
    AbortFailed,
    CompletionFailed,
    IncompleteManifest,
    InvalidPartSize,
    ObjectTooLarge,
    PartUploadFailed,
    PlanningError,
    S3Error,
    S3PartsError,
    SourceReadError,
    UnexpectedEOF,
    UploadCancelled,
    UploadFailed,
)
from s3parts.models import CancelToken, ObjectDescriptor, PartResult, PartSpec, UploadState
from s3parts.planner import PartPlan, plan

__all__ = [
    "__version__",
    "AbortFailed",
    "CancelToken",
    "ChecksumAlgorithm",
    "ChecksumEngine",
    "ChecksumType",
    "ClientConfig",
    "CompletionFailed",
    "IncompleteManifest",
    "InvalidPartSize",
    "load_config",
    "ObjectDescriptor",
    "ObjectTooLarge",
    "PartPlan",
    "PartResult",
    "PartSpec",
    "PartUploadFailed",
    "plan",
    "PlanningError",
    "ProtocolLimits",
    "RetryConfig",
    "S3Client",
    "S3Error",
    "S3PartsConfig",
    "S3PartsError",
    "SourceReadError",
    "UnexpectedEOF",
    "UploadCancelled",
    "UploadCoordinator",
    "UploadFailed",
    "UploadOptions",
    "UploadState",
]
