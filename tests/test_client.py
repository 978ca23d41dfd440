"""Tests for the low-level S3 client calls against the fake server."""

import hashlib

import pytest

from conftest import MIN_PART
from fake_s3 import composite_etag
from s3parts.client import S3Client
from s3parts.config import ClientConfig, S3PartsConfig
from s3parts.errors import AbortFailed, InvalidBucketName, S3Error
from s3parts.models import CancelToken, PartResult


def _md5(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


async def _upload_parts(client: S3Client, upload_id: str, *chunks: bytes) -> list[PartResult]:
    results = []
    for number, chunk in enumerate(chunks, start=1):
        etag = await client.upload_part("bucket", "key", upload_id, number, chunk)
        results.append(PartResult(number, etag, len(chunk)))
    return results


class TestClientSetup:
    def test_invalid_endpoint(self):
        config = S3PartsConfig(client=ClientConfig(endpoint="ftp://example.com"))
        with pytest.raises(ValueError):
            S3Client(config)

    def test_user_agent_includes_app_info(self):
        config = S3PartsConfig(client=ClientConfig(app_info="backup/2.0"))
        client = S3Client(config)
        assert client.user_agent.startswith("s3parts/")
        assert client.user_agent.endswith(" backup/2.0")


class TestPutObject:
    async def test_put_object(self, s3_client, s3_state):
        descriptor = await s3_client.put_object("bucket", "docs/a.txt", b"hello")
        assert descriptor.etag == _md5(b"hello")
        assert descriptor.size == 5
        assert descriptor.version_id is None
        assert s3_state.objects[("bucket", "docs/a.txt")].data == b"hello"

    async def test_requests_are_signed(self, s3_client, s3_state):
        await s3_client.put_object("bucket", "key", b"data")
        headers = s3_state.requests[0].headers
        assert headers["authorization"].startswith("AWS4-HMAC-SHA256 Credential=test/")
        assert headers["x-amz-content-sha256"] == hashlib.sha256(b"data").hexdigest()
        assert headers["user-agent"].startswith("s3parts/")

    async def test_key_with_special_characters(self, s3_client, s3_state):
        await s3_client.put_object("bucket", "a dir/ünïcode+key.txt", b"x")
        assert ("bucket", "a dir/ünïcode+key.txt") in s3_state.objects

    async def test_invalid_bucket_sends_nothing(self, s3_client, s3_state):
        with pytest.raises(InvalidBucketName):
            await s3_client.put_object("Bad_Bucket", "key", b"x")
        assert s3_state.requests == []

    async def test_server_error_raises(self, s3_client, s3_state):
        s3_state.add_fault("PutObject", status=403, code="AccessDenied")
        with pytest.raises(S3Error) as exc_info:
            await s3_client.put_object("bucket", "key", b"x")
        assert exc_info.value.code == "AccessDenied"
        assert exc_info.value.http_status == 403
        assert exc_info.value.request_id == "fake-request-id"

    async def test_mismatched_checksum_header_rejected(self, s3_client, s3_state):
        with pytest.raises(S3Error) as exc_info:
            await s3_client.put_object(
                "bucket", "key", b"data", headers={"x-amz-checksum-crc64nvme": "AAAAAAAAAAA="}
            )
        assert exc_info.value.code == "BadDigest"
        assert ("bucket", "key") not in s3_state.objects


class TestMultipartLifecycle:
    async def test_create_upload_complete(self, s3_client, s3_state):
        part1, part2 = b"a" * MIN_PART, b"b" * 10
        upload_id = await s3_client.create_multipart_upload("bucket", "key")
        assert upload_id in s3_state.uploads

        parts = await _upload_parts(s3_client, upload_id, part1, part2)
        assert [part.etag for part in parts] == [_md5(part1), _md5(part2)]

        result = await s3_client.complete_multipart_upload("bucket", "key", upload_id, parts)
        assert result["etag"] == composite_etag([_md5(part1), _md5(part2)])
        assert result["version_id"] == "v1"
        assert s3_state.objects[("bucket", "key")].data == part1 + part2

    async def test_upload_part_unknown_upload(self, s3_client):
        with pytest.raises(S3Error) as exc_info:
            await s3_client.upload_part("bucket", "key", "missing", 1, b"x")
        assert exc_info.value.code == "NoSuchUpload"
        assert exc_info.value.http_status == 404

    async def test_complete_error_in_ok_response(self, s3_client, s3_state):
        """A 200 response carrying an error document is a failure."""
        upload_id = await s3_client.create_multipart_upload("bucket", "key")
        parts = await _upload_parts(s3_client, upload_id, b"only part")
        s3_state.add_fault("CompleteMultipartUpload", code="InternalError", in_body=True)
        with pytest.raises(S3Error) as exc_info:
            await s3_client.complete_multipart_upload("bucket", "key", upload_id, parts)
        assert exc_info.value.code == "InternalError"
        assert ("bucket", "key") not in s3_state.objects

    async def test_complete_rejects_small_parts(self, s3_client):
        upload_id = await s3_client.create_multipart_upload("bucket", "key")
        parts = await _upload_parts(s3_client, upload_id, b"tiny", b"tail")
        with pytest.raises(S3Error) as exc_info:
            await s3_client.complete_multipart_upload("bucket", "key", upload_id, parts)
        assert exc_info.value.code == "EntityTooSmall"

    async def test_abort(self, s3_client, s3_state):
        upload_id = await s3_client.create_multipart_upload("bucket", "key")
        await s3_client.abort_multipart_upload("bucket", "key", upload_id)
        assert upload_id not in s3_state.uploads

    async def test_abort_unknown_upload(self, s3_client):
        with pytest.raises(AbortFailed) as exc_info:
            await s3_client.abort_multipart_upload("bucket", "key", "missing")
        assert exc_info.value.upload_id == "missing"
        assert isinstance(exc_info.value.cause, S3Error)
        assert exc_info.value.cause.code == "NoSuchUpload"


class TestListing:
    async def test_list_parts_paginates(self, s3_client, s3_state):
        upload_id = await s3_client.create_multipart_upload("bucket", "key")
        await _upload_parts(s3_client, upload_id, b"1" * MIN_PART, b"2" * MIN_PART, b"3")

        parts = await s3_client.list_parts("bucket", "key", upload_id, page_size=1)
        assert [part.part_number for part in parts] == [1, 2, 3]
        assert [part.size for part in parts] == [MIN_PART, MIN_PART, 1]
        assert parts[2].etag == _md5(b"3")
        assert len(s3_state.requests_for("ListParts")) == 3

    async def test_list_multipart_uploads_paginates(self, s3_client, s3_state):
        first = await s3_client.create_multipart_upload("bucket", "logs/a")
        second = await s3_client.create_multipart_upload("bucket", "logs/b")
        await s3_client.create_multipart_upload("bucket", "other")

        uploads = await s3_client.list_multipart_uploads("bucket", "logs/", page_size=1)
        assert [(upload.key, upload.upload_id) for upload in uploads] == [
            ("logs/a", first),
            ("logs/b", second),
        ]
        assert all(upload.initiated for upload in uploads)
        assert len(s3_state.requests_for("ListMultipartUploads")) == 2

    async def test_iteration_stops_when_cancelled(self, s3_client, s3_state):
        upload_id = await s3_client.create_multipart_upload("bucket", "key")
        await _upload_parts(s3_client, upload_id, b"1" * MIN_PART, b"2")
        cancel = CancelToken()

        seen = []
        async for part in s3_client.iter_parts(
            "bucket", "key", upload_id, page_size=1, cancel=cancel
        ):
            seen.append(part.part_number)
            cancel.cancel()
        assert seen == [1]
        assert len(s3_state.requests_for("ListParts")) == 1


class TestNetworkRetry:
    async def test_transient_errors_are_retried(self, flaky_client, s3_state):
        client, flaky = flaky_client(PutObject=2)
        descriptor = await client.retry.call(client.put_object, "bucket", "key", b"abc")
        assert descriptor.etag == _md5(b"abc")
        assert flaky.sent == ["PutObject"] * 3
        assert len(s3_state.requests_for("PutObject")) == 1
