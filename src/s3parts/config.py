"""Configuration loading and Pydantic models for s3parts."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

from s3parts.checksum import ChecksumAlgorithm

KiB = 1024
MiB = 1024 * KiB
GiB = 1024 * MiB
TiB = 1024 * GiB


class ClientConfig(BaseModel):
    """Endpoint and credential configuration."""

    endpoint: str = "http://127.0.0.1:9000"
    region: str = "us-east-1"
    access_key: str = ""
    secret_key: str = ""
    session_token: str = ""
    timeout: float = 60.0
    app_info: str = ""


class ProtocolLimits(BaseModel):
    """Server-imposed multipart limits.

    Defaults match AWS S3. Compatible servers may differ, so every limit is
    configurable.
    """

    min_part_size: int = 5 * MiB
    max_part_size: int = 5 * GiB
    max_parts: int = 10000
    max_object_size: int = 5 * TiB
    single_put_threshold: int = 5 * MiB
    part_size_granularity: int = 5 * MiB

    @model_validator(mode="after")
    def _check_bounds(self) -> "ProtocolLimits":
        if self.min_part_size <= 0 or self.max_parts <= 0:
            raise ValueError("min_part_size and max_parts must be positive")
        if self.min_part_size > self.max_part_size:
            raise ValueError("min_part_size must not exceed max_part_size")
        if self.single_put_threshold > self.max_part_size:
            raise ValueError("single_put_threshold must not exceed max_part_size")
        if self.part_size_granularity <= 0:
            raise ValueError("part_size_granularity must be positive")
        return self


class RetryConfig(BaseModel):
    """Retry policy parameters shared by all idempotent calls."""

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = 0.2
    max_delay: float = 10.0
    jitter: bool = True


class UploadOptions(BaseModel):
    """Per-upload options recognized by the upload coordinator."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    part_size: int | None = None
    concurrency: int = Field(default=4, ge=1)
    checksum_algorithm: ChecksumAlgorithm = ChecksumAlgorithm.NONE
    disable_content_hash: bool = False
    send_content_md5: bool = False
    abort_on_failure: bool = True
    resume: bool = False
    content_type: str = "application/octet-stream"
    metadata: dict[str, str] = Field(default_factory=dict)
    abort_timeout: float = 10.0
    progress: Any = None


class LoggingConfig(BaseModel):
    """Logging output configuration."""

    level: str = "INFO"
    format: str = "text"


class ObservabilityConfig(BaseModel):
    """Prometheus metrics toggle."""

    metrics: bool = False


class S3PartsConfig(BaseModel):
    """Top-level s3parts configuration."""

    client: ClientConfig = Field(default_factory=ClientConfig)
    upload: UploadOptions = Field(default_factory=UploadOptions)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    limits: ProtocolLimits = Field(default_factory=ProtocolLimits)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


def _parse_client(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the client section from YAML data.

    Handles nested structure: client.credentials.access_key -> access_key
    """
    if data is None:
        return {}
    result: dict[str, Any] = {
        key: data[key]
        for key in ("endpoint", "region", "timeout", "app_info")
        if key in data
    }
    credentials = data.get("credentials")
    if isinstance(credentials, dict):
        result["access_key"] = credentials.get("access_key", "")
        result["secret_key"] = credentials.get("secret_key", "")
        result["session_token"] = credentials.get("session_token", "")
    return result


def _parse_upload(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the upload section from YAML data.

    Sizes may be given as integers or strings like "16MiB".
    """
    if data is None:
        return {}
    result = dict(data)
    if result.get("part_size") is not None:
        result["part_size"] = parse_size(result["part_size"])
    if "checksum" in result:
        result["checksum_algorithm"] = result.pop("checksum")
    return result


def _parse_limits(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the limits section from YAML data."""
    if data is None:
        return {}
    return {
        key: value if key == "max_parts" else parse_size(value)
        for key, value in data.items()
    }


def _parse_logging(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the logging section from YAML data."""
    if data is None:
        return {}
    return {
        "level": data.get("level", "INFO"),
        "format": data.get("format", "text"),
    }


_SIZE_UNITS = {
    "": 1,
    "b": 1,
    "kib": KiB,
    "mib": MiB,
    "gib": GiB,
    "tib": TiB,
    "kb": 1000,
    "mb": 1000**2,
    "gb": 1000**3,
    "tb": 1000**4,
}


def parse_size(value: int | str) -> int:
    """Parse a byte size such as ``16777216``, ``"16MiB"`` or ``"5 GB"``.

    Raises:
        ValueError: If the value is not a recognized size.
    """
    if isinstance(value, int):
        return value
    text = str(value).strip().lower().replace(" ", "")
    digits = text.rstrip("abcdefghijklmnopqrstuvwxyz")
    unit = text[len(digits):]
    if not digits or unit not in _SIZE_UNITS:
        raise ValueError(f"Invalid size: {value!r}")
    return int(float(digits) * _SIZE_UNITS[unit])


def load_config(path: Path) -> S3PartsConfig:
    """Load an S3PartsConfig from a YAML file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        A fully populated S3PartsConfig validated by Pydantic.

    Raises:
        FileNotFoundError: If the config file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
    """
    with open(path, "r") as fh:
        raw: dict[str, Any] = yaml.safe_load(fh) or {}

    return S3PartsConfig(
        client=ClientConfig(**_parse_client(raw.get("client"))),
        upload=UploadOptions(**_parse_upload(raw.get("upload"))),
        retry=RetryConfig(**(raw.get("retry") or {})),
        limits=ProtocolLimits(**_parse_limits(raw.get("limits"))),
        logging=LoggingConfig(**_parse_logging(raw.get("logging"))),
        observability=ObservabilityConfig(**(raw.get("observability") or {})),
    )
