"""Pipeline orchestrator: storage event -> extraction -> record store.

Every item of a triggering event is processed independently as one task of
a cooperative asyncio batch, run on a fresh event loop per event. Blocking
storage calls run in worker threads so they never stall the loop.

An item's failure is converted into an error record and reported in the
batch result; it never aborts its siblings or the batch.
"""

from __future__ import annotations

import asyncio
import logging
import traceback
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from urllib.parse import unquote_plus

from invoice_pipeline.errors import ParseError
from invoice_pipeline.keys import error_ticket_id, resolve_ticket_id
from invoice_pipeline.models import (
    ERROR_STATUS,
    BatchResult,
    ItemOutcome,
    ItemState,
    ObjectRef,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from invoice_pipeline.extraction import Extractor
    from invoice_pipeline.models import Blob
    from invoice_pipeline.records import RecordStore
    from invoice_pipeline.store import BlobStore

logger = logging.getLogger(__name__)

ERROR_STACK_LIMIT = 1000


def parse_storage_event(event: dict[str, Any]) -> list[ObjectRef]:
    """Return the (bucket, key) of every record in an S3 creation event.

    Keys arrive URL-encoded with spaces as '+'.
    """
    records = event.get("Records") if isinstance(event, dict) else None
    if not isinstance(records, list):
        msg = "Storage event has no Records list"
        raise ParseError(msg)

    refs: list[ObjectRef] = []
    for index, record in enumerate(records):
        try:
            bucket = record["s3"]["bucket"]["name"]
            key = unquote_plus(record["s3"]["object"]["key"])
        except (KeyError, TypeError) as e:
            msg = f"Malformed storage event record at index {index}: {e!r}"
            raise ParseError(msg) from e
        refs.append(ObjectRef(bucket=bucket, key=key))
    return refs


def build_error_record(
    ref: ObjectRef,
    error: BaseException,
    ticket_id: str,
    at: datetime,
    blob: Blob | None = None,
) -> dict[str, Any]:
    """Degraded record describing a failed item."""
    stack = "".join(
        traceback.format_exception(type(error), error, error.__traceback__)
    )
    return {
        "TicketId": ticket_id,
        "Status": ERROR_STATUS,
        "S3Bucket": ref.bucket,
        "S3Key": ref.key,
        "ErrorDetails": str(error),
        "ErrorStack": stack[:ERROR_STACK_LIMIT] or None,
        "FileSize": blob.content_length if blob else None,
        "FileContentType": blob.content_type if blob else None,
        "Timestamp": at.isoformat(),
    }


class Pipeline:
    """Wires blob storage, extraction and the record store together."""

    def __init__(
        self,
        blobs: BlobStore,
        extractor: Extractor,
        records: RecordStore,
        *,
        max_workers: int = 8,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.blobs = blobs
        self.extractor = extractor
        self.records = records
        self.max_workers = max_workers
        self._clock = clock or (lambda: datetime.now(tz=UTC))

    def process_event(self, event: dict[str, Any]) -> BatchResult:
        """Process every object named in a storage event.

        Raises ParseError only for a malformed event; item failures are
        reported in the result. Must be called outside a running event loop.
        """
        refs = parse_storage_event(event)
        if not refs:
            logger.info("Storage event has no records to process")
            return BatchResult()

        logger.info("Received %d object(s) to process", len(refs))
        outcomes = asyncio.run(self.process_refs(refs))

        result = BatchResult(outcomes=outcomes)
        if result.failed:
            logger.warning(
                "%d of %d object(s) failed processing: %s",
                len(result.failed),
                len(outcomes),
                [o.key for o in result.failed],
            )
        else:
            logger.info("All %d object(s) processed successfully", len(outcomes))
        return result

    async def process_refs(self, refs: list[ObjectRef]) -> list[ItemOutcome]:
        """Process refs concurrently, at most max_workers at a time.

        Outcomes are returned in the order of refs.
        """
        limit = asyncio.Semaphore(self.max_workers)

        async def _bounded(ref: ObjectRef) -> ItemOutcome:
            async with limit:
                return await self.process_item(ref)

        return list(await asyncio.gather(*(_bounded(ref) for ref in refs)))

    async def process_item(self, ref: ObjectRef) -> ItemOutcome:
        """Fetch, extract and persist one object; never raises."""
        state = ItemState.IDLE
        blob: Blob | None = None
        try:
            state = ItemState.FETCHING
            logger.info("Processing %s", ref.uri)
            blob = await asyncio.to_thread(self.blobs.get, ref.bucket, ref.key)
            logger.info("Loaded %s (%d bytes)", ref.key, len(blob.data))

            state = ItemState.EXTRACTING
            extracted = await self.extractor.extract(blob.data, ref)

            ticket_id = resolve_ticket_id(
                extracted.get("invoiceId"), ref.key, self._clock()
            )
            await asyncio.to_thread(
                self.records.put, {**extracted, "TicketId": ticket_id}
            )
        except Exception as e:
            logger.exception("Failed to process %s while %s", ref.uri, state.value)
            return await self._record_failure(ref, e, blob)

        logger.info("Saved %s as TicketId %s", ref.key, ticket_id)
        return ItemOutcome(
            key=ref.key,
            success=True,
            ticket_id=ticket_id,
            state=ItemState.PERSISTED,
        )

    async def _record_failure(
        self, ref: ObjectRef, error: Exception, blob: Blob | None
    ) -> ItemOutcome:
        """Write an error record for a failed item, best effort."""
        now = self._clock()
        ticket_id = error_ticket_id(ref.key, now)
        state = ItemState.FAILED
        try:
            await asyncio.to_thread(
                self.records.put, build_error_record(ref, error, ticket_id, now, blob)
            )
        except Exception:
            logger.critical(
                "Failed to save error record %s for %s",
                ticket_id,
                ref.key,
                exc_info=True,
            )
        else:
            state = ItemState.ERROR_PERSISTED
            logger.info("Error record %s saved for %s", ticket_id, ref.key)

        return ItemOutcome(
            key=ref.key,
            success=False,
            ticket_id=ticket_id,
            state=state,
            error=str(error),
        )
