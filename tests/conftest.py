"""Shared pytest fixtures for s3parts tests.

Uploads run against the in-memory S3 app in ``fake_s3`` through httpx's
ASGI transport, so every request is signed, sent and parsed for real
without a network. Protocol limits are shrunk to KiB sizes to keep the
payloads small.
"""

from __future__ import annotations

import pytest
from httpx import ASGITransport

from fake_s3 import FakeS3State, create_app
from s3parts.client import S3Client
from s3parts.config import ClientConfig, ProtocolLimits, RetryConfig, S3PartsConfig
from s3parts.errors import TransientNetworkError
from s3parts.transport import HTTPRequest, HTTPResponse, HttpxTransport

KiB = 1024

# Part sizing used by most upload tests
MIN_PART = 5 * KiB


@pytest.fixture
def limits() -> ProtocolLimits:
    return ProtocolLimits(
        min_part_size=MIN_PART,
        max_part_size=64 * KiB,
        max_parts=100,
        max_object_size=100 * 64 * KiB,
        single_put_threshold=MIN_PART,
        part_size_granularity=MIN_PART,
    )


@pytest.fixture
def config(limits: ProtocolLimits) -> S3PartsConfig:
    """A config pointing at the fake server, with instant retries."""
    return S3PartsConfig(
        client=ClientConfig(
            endpoint="http://testserver",
            access_key="test",
            secret_key="test-secret",
        ),
        retry=RetryConfig(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=False),
        limits=limits,
    )


@pytest.fixture
def s3_state() -> FakeS3State:
    return FakeS3State(min_part_size=MIN_PART)


@pytest.fixture
def transport(s3_state: FakeS3State) -> HttpxTransport:
    return HttpxTransport(transport=ASGITransport(app=create_app(s3_state)))


@pytest.fixture
async def s3_client(config: S3PartsConfig, transport: HttpxTransport) -> S3Client:
    """Create an S3Client wired to the fake server."""
    async with S3Client(config, transport=transport) as client:
        yield client


class FlakyTransport:
    """Wraps a transport and fails chosen requests with connection errors.

    ``failures`` maps an operation predicate name ("UploadPart",
    "PutObject", ...) to the number of sends that should fail.
    """

    def __init__(self, inner: HttpxTransport, failures: dict[str, int]) -> None:
        self.inner = inner
        self.failures = dict(failures)
        self.sent: list[str] = []

    @staticmethod
    def operation(request: HTTPRequest) -> str:
        if request.method == "PUT":
            return "UploadPart" if "partNumber=" in request.url else "PutObject"
        if request.method == "POST":
            return "CreateMultipartUpload" if "uploads=" in request.url else "CompleteMultipartUpload"
        if request.method == "DELETE":
            return "AbortMultipartUpload"
        return "List"

    async def send(self, request: HTTPRequest) -> HTTPResponse:
        operation = self.operation(request)
        self.sent.append(operation)
        if self.failures.get(operation, 0) > 0:
            self.failures[operation] -= 1
            raise TransientNetworkError("connection reset by peer")
        return await self.inner.send(request)

    async def close(self) -> None:
        await self.inner.close()


@pytest.fixture
async def flaky_client(config: S3PartsConfig, transport: HttpxTransport):
    """Factory for clients whose transport drops chosen requests.

    Usage: ``client, flaky = flaky_client(UploadPart=2)``.
    """
    clients: list[S3Client] = []

    def factory(**failures: int) -> tuple[S3Client, FlakyTransport]:
        flaky = FlakyTransport(transport, failures)
        client = S3Client(config, transport=flaky)
        clients.append(client)
        return client, flaky

    yield factory
    for client in clients:
        await client.close()
