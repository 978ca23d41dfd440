"""Multipart upload orchestration.

``UploadCoordinator.upload`` drives one upload through its lifecycle::

    PLANNING -> IN_PROGRESS -> COMPLETING -> COMPLETED
                     |              |
                     +-> FAILED ----+-> ABORTED

A fixed number of worker tasks share one ``PartReader``. A worker takes the
reader lock, stages the next part into a pooled buffer, releases the lock
and uploads the part while the next worker reads. Parts finish in any order;
the completion manifest is sorted by part number.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any

from s3parts import metrics
from s3parts.checksum import ChecksumEngine, PartChecksum
from s3parts.completion import CompletionAssembler
from s3parts.config import ProtocolLimits, UploadOptions
from s3parts.errors import (
    AbortFailed,
    IncompleteManifest,
    PartUploadFailed,
    S3PartsError,
    UnexpectedEOF,
    UploadCancelled,
)
from s3parts.models import (
    CancelToken,
    ObjectDescriptor,
    ObjectPart,
    PartResult,
    UploadSession,
    UploadState,
    report_progress,
)
from s3parts.planner import PartPlan, plan
from s3parts.reader import BufferPool, PartReader, StagedPart
from s3parts.retry import RetryPolicy
from s3parts.signer import UNSIGNED_PAYLOAD
from s3parts.validation import validate_bucket_name, validate_object_key

if TYPE_CHECKING:
    from s3parts.client import S3Client

logger = logging.getLogger(__name__)


class UploadCoordinator:
    """Runs uploads for one client.

    Args:
        client: The client whose S3 calls are used.
        limits: Protocol limits; the client's configured limits by default.
        retry: Retry policy; the client's policy by default.
    """

    def __init__(
        self,
        client: S3Client,
        limits: ProtocolLimits | None = None,
        retry: RetryPolicy | None = None,
    ) -> None:
        self.client = client
        self.limits = limits or client.config.limits
        self.retry = retry or client.retry
        self.assembler = CompletionAssembler(client, self.retry)

    async def upload(
        self,
        bucket: str,
        key: str,
        source: Any,
        size: int | None = None,
        options: UploadOptions | None = None,
        cancel: CancelToken | None = None,
    ) -> ObjectDescriptor:
        """Upload ``source`` as ``bucket/key``.

        Args:
            bucket: Target bucket.
            key: Target object key.
            source: Bytes, a binary file-like object, an object with an
                ``async read(n)`` method, or an async iterable of bytes.
            size: Total size in bytes, or None to read until exhaustion.
            options: Upload options; the client's configured defaults when
                omitted.
            cancel: Token the caller may set to stop the upload.

        Returns:
            The descriptor of the stored object.

        Raises:
            InvalidBucketName: If ``bucket`` is not a valid bucket name.
            InvalidObjectName: If ``key`` is not a valid object key.
            PlanningError: If the upload cannot fit the protocol limits.
            SourceReadError: If reading ``source`` failed.
            PartUploadFailed: If a part failed after its retries.
            CompletionFailed: If the completion call failed.
            UploadCancelled: If ``cancel`` was set.
        """
        options = options or self.client.config.upload
        validate_bucket_name(bucket)
        validate_object_key(key)
        part_plan = plan(size, options.part_size, self.limits)

        engine = ChecksumEngine(
            algorithm=options.checksum_algorithm,
            content_sha256=not options.disable_content_hash,
            content_md5=options.send_content_md5 or options.resume,
        )
        log_extra = {"bucket": bucket, "key": key}
        start = time.monotonic()
        try:
            if cancel is not None and cancel.cancelled:
                raise UploadCancelled("Upload cancelled before it started")
            if part_plan.direct_put:
                descriptor = await self._until_cancelled(
                    self._upload_direct(bucket, key, source, part_plan, options, engine),
                    cancel,
                )
            else:
                descriptor = await self._upload_multipart(
                    bucket, key, source, part_plan, options, engine, cancel
                )
        except (UploadCancelled, asyncio.CancelledError):
            metrics.record_upload("cancelled")
            raise
        except Exception:
            metrics.record_upload("failed")
            raise

        metrics.record_upload("completed")
        logger.info(
            "Uploaded %s/%s (%d bytes, %d parts)",
            bucket,
            key,
            descriptor.size,
            descriptor.part_count,
            extra={
                **log_extra,
                "upload_id": descriptor.upload_id,
                "duration_ms": round((time.monotonic() - start) * 1000, 2),
            },
        )
        return descriptor

    # -- Single PUT -------------------------------------------------------------

    async def _upload_direct(
        self,
        bucket: str,
        key: str,
        source: Any,
        part_plan: PartPlan,
        options: UploadOptions,
        engine: ChecksumEngine,
    ) -> ObjectDescriptor:
        reader = PartReader(
            source, part_plan.part_size, part_plan.total_size, BufferPool(1), max_parts=1
        )
        staged = await reader.next_part()
        try:
            return await self._put_staged(bucket, key, staged, options, engine)
        finally:
            staged.release()

    async def _put_staged(
        self,
        bucket: str,
        key: str,
        staged: StagedPart,
        options: UploadOptions,
        engine: ChecksumEngine,
    ) -> ObjectDescriptor:
        checksum = staged.checksum or await asyncio.to_thread(
            engine.update, 1, staged.data
        )
        headers = self._object_headers(options)
        headers.update(checksum.headers(content_md5=options.send_content_md5))
        descriptor = await self.retry.call(
            self.client.put_object,
            bucket,
            key,
            staged.data,
            headers=headers,
            payload_hash=self._payload_hash(checksum, options),
            operation="PutObject",
            log_extra={"bucket": bucket, "key": key},
        )
        metrics.record_bytes(staged.spec.size)
        report_progress(options.progress, staged.spec.size)
        if checksum.value is not None:
            descriptor.checksum = checksum.value
            descriptor.checksum_type = "FULL_OBJECT"
        return descriptor

    # -- Multipart --------------------------------------------------------------

    async def _upload_multipart(
        self,
        bucket: str,
        key: str,
        source: Any,
        part_plan: PartPlan,
        options: UploadOptions,
        engine: ChecksumEngine,
        cancel: CancelToken | None,
    ) -> ObjectDescriptor:
        reader = PartReader(
            source,
            part_plan.part_size,
            part_plan.total_size,
            BufferPool(options.concurrency),
            max_parts=part_plan.max_parts,
        )
        read_lock = asyncio.Lock()

        first: StagedPart | None = None
        if part_plan.total_size is None:
            # An unknown-size source that fits in one part goes as one PUT.
            first = await self._until_cancelled(
                self._stage(reader, read_lock, engine, cancel), cancel
            )
            if first is None:
                raise UploadCancelled("Upload cancelled before it started")
            if first.is_last:
                try:
                    return await self._until_cancelled(
                        self._put_staged(bucket, key, first, options, engine), cancel
                    )
                finally:
                    first.release()

        try:
            session, existing = await self._open_session(bucket, key, part_plan, options, engine)
        except BaseException:
            if first is not None:
                first.release()
            raise

        try:
            await self._run_workers(
                session, reader, read_lock, first, options, engine, existing, cancel
            )
            if part_plan.total_size is not None and reader.bytes_read != part_plan.total_size:
                raise UnexpectedEOF(reader.bytes_read, part_plan.total_size)
            self.assembler.build_manifest(session)
            try:
                object_checksum = engine.finalize(len(session.parts))
            except ValueError as exc:
                raise IncompleteManifest([], session.upload_id) from exc
        except UploadCancelled as exc:
            exc.upload_id = session.upload_id
            session.state = UploadState.FAILED
            await self._abort(session, options, exc)
            raise
        except asyncio.CancelledError:
            session.state = UploadState.FAILED
            await self._abort(session, options, None)
            raise
        except Exception as exc:
            session.state = UploadState.FAILED
            logger.error(
                "Upload %s failed after %d bytes: %s",
                session.upload_id,
                session.bytes_uploaded,
                exc,
                extra={"bucket": bucket, "key": key, "upload_id": session.upload_id},
            )
            if options.abort_on_failure:
                await self._abort(session, options, exc)
            raise

        # A failed completion is left for the caller to retry or abort.
        try:
            return await self._until_cancelled(
                self.assembler.complete(session, object_checksum), cancel, session.upload_id
            )
        except UploadCancelled as exc:
            session.state = UploadState.FAILED
            await self._abort(session, options, exc)
            raise

    async def _open_session(
        self,
        bucket: str,
        key: str,
        part_plan: PartPlan,
        options: UploadOptions,
        engine: ChecksumEngine,
    ) -> tuple[UploadSession, dict[int, ObjectPart]]:
        """Initiate an upload, or with ``resume`` reuse the newest incomplete one."""
        existing: dict[int, ObjectPart] = {}
        upload_id = None
        if options.resume:
            uploads = [
                upload
                for upload in await self.client.list_multipart_uploads(bucket, prefix=key)
                if upload.key == key
            ]
            if uploads:
                upload_id = max(uploads, key=lambda upload: upload.initiated).upload_id
                parts = await self.client.list_parts(bucket, key, upload_id)
                existing = {part.part_number: part for part in parts}
                logger.info(
                    "Resuming upload %s with %d uploaded parts",
                    upload_id,
                    len(existing),
                    extra={"bucket": bucket, "key": key, "upload_id": upload_id},
                )

        if upload_id is None:
            headers = self._object_headers(options)
            headers.update(engine.initiate_headers())
            upload_id = await self.retry.call(
                self.client.create_multipart_upload,
                bucket,
                key,
                headers=headers,
                operation="CreateMultipartUpload",
                log_extra={"bucket": bucket, "key": key},
            )
            logger.debug(
                "Initiated upload %s",
                upload_id,
                extra={"bucket": bucket, "key": key, "upload_id": upload_id},
            )

        session = UploadSession(
            upload_id=upload_id,
            bucket=bucket,
            key=key,
            part_size=part_plan.part_size,
            total_size=part_plan.total_size,
            state=UploadState.IN_PROGRESS,
        )
        return session, existing

    async def _stage(
        self,
        reader: PartReader,
        read_lock: asyncio.Lock,
        engine: ChecksumEngine,
        cancel: CancelToken | None,
    ) -> StagedPart | None:
        """Stage the next part under the reader lock; None when done or cancelled."""
        async with read_lock:
            if cancel is not None and cancel.cancelled:
                return None
            staged = await reader.next_part()
            if staged is not None and engine.requires_ordered_updates:
                # Whole-object digests must see the parts in order.
                try:
                    staged.checksum = await asyncio.to_thread(
                        engine.update, staged.spec.part_number, staged.data
                    )
                except BaseException:
                    staged.release()
                    raise
            return staged

    async def _run_workers(
        self,
        session: UploadSession,
        reader: PartReader,
        read_lock: asyncio.Lock,
        first: StagedPart | None,
        options: UploadOptions,
        engine: ChecksumEngine,
        existing: dict[int, ObjectPart],
        cancel: CancelToken | None,
    ) -> None:
        pending_first = [first] if first is not None else []

        async def worker() -> None:
            while True:
                if pending_first:
                    staged = pending_first.pop()
                else:
                    staged = await self._stage(reader, read_lock, engine, cancel)
                if staged is None:
                    return
                try:
                    result = await self._upload_part(session, staged, options, engine, existing)
                finally:
                    staged.release()
                await session.record(result)
                report_progress(options.progress, result.size)

        async def collect() -> None:
            running = set(workers)
            while running:
                done, running = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    exc = task.exception()
                    if exc is not None:
                        raise exc

        workers = [
            asyncio.create_task(worker(), name=f"s3parts-part-worker-{n}")
            for n in range(options.concurrency)
        ]
        try:
            await self._until_cancelled(collect(), cancel, session.upload_id)
            if cancel is not None and cancel.cancelled:
                raise UploadCancelled("Upload cancelled", session.upload_id)
        finally:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            if first is not None:
                first.release()

    async def _until_cancelled(
        self, awaitable: Any, cancel: CancelToken | None, upload_id: str | None = None
    ) -> Any:
        """Await ``awaitable``, cancelling it if ``cancel`` is set first.

        Raises:
            UploadCancelled: If ``cancel`` was set before ``awaitable`` finished.
        """
        if cancel is None:
            return await awaitable
        task = asyncio.ensure_future(awaitable)
        watcher = asyncio.create_task(cancel.wait())
        try:
            await asyncio.wait({task, watcher}, return_when=asyncio.FIRST_COMPLETED)
            if not task.done():
                raise UploadCancelled("Upload cancelled", upload_id)
            return task.result()
        finally:
            task.cancel()
            watcher.cancel()
            await asyncio.gather(task, watcher, return_exceptions=True)

    async def _upload_part(
        self,
        session: UploadSession,
        staged: StagedPart,
        options: UploadOptions,
        engine: ChecksumEngine,
        existing: dict[int, ObjectPart],
    ) -> PartResult:
        number = staged.spec.part_number
        checksum: PartChecksum = staged.checksum or await asyncio.to_thread(
            engine.update, number, staged.data
        )

        prior = existing.get(number)
        if prior is not None and prior.size == staged.spec.size and prior.etag == checksum.md5_hex:
            logger.debug(
                "Part %d already uploaded; skipping",
                number,
                extra={"upload_id": session.upload_id, "part_number": number},
            )
            return PartResult(number, prior.etag, prior.size, checksum.value)

        log_extra = {"upload_id": session.upload_id, "part_number": number}
        start = time.monotonic()
        try:
            etag = await self.retry.call(
                self.client.upload_part,
                session.bucket,
                session.key,
                session.upload_id,
                number,
                staged.data,
                headers=checksum.headers(content_md5=options.send_content_md5),
                payload_hash=self._payload_hash(checksum, options),
                operation="UploadPart",
                log_extra=log_extra,
            )
        except S3PartsError as exc:
            raise PartUploadFailed(number, exc, session.upload_id) from exc

        metrics.record_bytes(staged.spec.size)
        logger.debug(
            "Uploaded part %d (%d bytes)",
            number,
            staged.spec.size,
            extra={**log_extra, "duration_ms": round((time.monotonic() - start) * 1000, 2)},
        )
        return PartResult(number, etag, staged.spec.size, checksum.value)

    async def _abort(
        self, session: UploadSession, options: UploadOptions, cause: S3PartsError | None
    ) -> None:
        """Best-effort abort bounded by ``options.abort_timeout``.

        A failed abort is logged and attached to ``cause`` as ``abort_error``.
        """
        try:
            await asyncio.wait_for(
                self.client.abort_multipart_upload(
                    session.bucket, session.key, session.upload_id
                ),
                timeout=options.abort_timeout,
            )
        except AbortFailed as exc:
            abort_error = exc
        except asyncio.TimeoutError:
            abort_error = AbortFailed(
                session.upload_id,
                TimeoutError(f"abort timed out after {options.abort_timeout}s"),
            )
        else:
            session.state = UploadState.ABORTED
            return

        logger.error(
            "Could not abort upload %s; its parts may need manual cleanup: %s",
            session.upload_id,
            abort_error,
            extra={"bucket": session.bucket, "key": session.key, "upload_id": session.upload_id},
        )
        if isinstance(cause, S3PartsError):
            cause.abort_error = abort_error

    @staticmethod
    def _object_headers(options: UploadOptions) -> dict[str, str]:
        headers = {"content-type": options.content_type}
        for name, value in options.metadata.items():
            if not name.lower().startswith("x-amz-meta-"):
                name = f"x-amz-meta-{name}"
            headers[name.lower()] = value
        return headers

    @staticmethod
    def _payload_hash(checksum: PartChecksum, options: UploadOptions) -> str:
        if options.disable_content_hash or checksum.sha256_hex is None:
            return UNSIGNED_PAYLOAD
        return checksum.sha256_hex
