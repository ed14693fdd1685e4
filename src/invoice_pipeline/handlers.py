"""AWS Lambda entry points.

One handler per function:
  - ``ingest_email``: S3 event for a raw SES message -> PDF attachments in S3.
  - ``process_attachments``: S3 event for stored PDFs -> extraction -> DynamoDB.
  - ``query_invoices``: API Gateway proxy event -> record lookups.

Configuration is validated and clients are constructed once per process, on
the first invocation, then reused by later invocations of the same
execution environment. LOG_LEVEL is applied at the start of every invocation.
A ConfigurationError becomes a server-misconfiguration response instead of a
per-request error.
"""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from typing import Any

from invoice_pipeline import clients, config
from invoice_pipeline.api import QueryService, build_response
from invoice_pipeline.errors import ConfigurationError, ParseError
from invoice_pipeline.extraction import InvoiceExtractor
from invoice_pipeline.ingest import MailIngestor
from invoice_pipeline.pipeline import Pipeline, parse_storage_event
from invoice_pipeline.records import DynamoRecordStore
from invoice_pipeline.store import S3BlobStore

logger = logging.getLogger()


def configure_logging() -> None:
    """Apply LOG_LEVEL to the root logger."""
    logger.setLevel(config.get_log_level())


@lru_cache(maxsize=1)
def get_ingestor() -> MailIngestor:
    bucket = config.get_attachment_bucket()
    return MailIngestor(S3BlobStore(clients.get_s3_client()), bucket)


@lru_cache(maxsize=1)
def get_pipeline() -> Pipeline:
    extraction_config = config.get_extraction_config()
    table = clients.get_dynamodb_table(config.get_table_name())
    return Pipeline(
        S3BlobStore(clients.get_s3_client()),
        InvoiceExtractor.from_config(extraction_config),
        DynamoRecordStore(table),
        max_workers=config.get_max_workers(),
    )


@lru_cache(maxsize=1)
def get_query_service() -> QueryService:
    table = clients.get_dynamodb_table(config.get_table_name())
    return QueryService(DynamoRecordStore(table))


def _plain_response(status_code: int, body: dict[str, Any]) -> dict[str, Any]:
    return {"statusCode": status_code, "body": json.dumps(body)}


def ingest_email(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """Store the PDF attachments of raw emails written to S3 by SES."""
    try:
        configure_logging()
        ingestor = get_ingestor()
    except ConfigurationError as e:
        logger.error("Server configuration error: %s", e)
        return _plain_response(500, {"message": f"Server configuration error: {e}"})

    logger.info("Mail ingest event received: %s", json.dumps(event, default=str))

    try:
        refs = parse_storage_event(event)
    except ParseError as e:
        logger.error("Invalid mail ingest event: %s", e)
        return _plain_response(400, {"message": f"Invalid event: {e}"})

    stored: list[str] = []
    try:
        for ref in refs:
            written = ingestor.ingest_object(ref.bucket, ref.key)
            stored.extend(r.key for r in written)
    except Exception as e:
        logger.exception("Error processing email")
        return _plain_response(500, {"message": f"Error processing email: {e}"})

    message = f"Processed {len(refs)} email(s), uploaded {len(stored)} PDF(s)."
    return _plain_response(200, {"message": message, "keys": stored})


def process_attachments(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """Extract and persist every PDF named in an S3 creation event."""
    try:
        configure_logging()
        pipeline = get_pipeline()
    except ConfigurationError as e:
        logger.error("Server configuration error: %s", e)
        return _plain_response(500, {"message": f"Server configuration error: {e}"})

    logger.info("Received S3 event: %s", json.dumps(event, default=str))

    try:
        result = pipeline.process_event(event)
    except Exception as e:
        logger.exception("Critical error in process_attachments handler")
        return _plain_response(
            500,
            {"message": "Critical error during S3 event processing.", "error": str(e)},
        )

    return _plain_response(200, result.to_dict())


def query_invoices(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """Serve GET /invoices/{ticketId} and GET /invoices."""
    try:
        configure_logging()
        service = get_query_service()
    except ConfigurationError as e:
        logger.error("Server configuration error: %s", e)
        return build_response(500, {"error": "Server configuration error."})

    logger.info("API Gateway event received: %s", json.dumps(event, default=str))
    return service.handle(event)
