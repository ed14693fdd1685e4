"""Record store abstraction and DynamoDB implementation."""

from __future__ import annotations

import json
import logging
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Protocol

from botocore.exceptions import BotoCoreError, ClientError

from invoice_pipeline.errors import NotFoundError, StoreError
from invoice_pipeline.models import PutResult

if TYPE_CHECKING:
    from mypy_boto3_dynamodb.service_resource import Table

logger = logging.getLogger(__name__)

PARTITION_KEY = "TicketId"


class RecordStore(Protocol):
    """Protocol for invoice record persistence keyed by TicketId."""

    def put(self, record: dict[str, Any]) -> PutResult: ...

    def get_by_id(self, ticket_id: str) -> dict[str, Any]: ...

    def scan_all(self) -> list[dict[str, Any]]: ...


class DynamoRecordStore:
    """DynamoDB implementation of RecordStore.

    Writes are unconditional upserts. ``scan_all`` reads the whole table into
    memory; it is unbounded and unsuitable for large tables.
    """

    def __init__(self, table: Table) -> None:
        self.table = table

    def put(self, record: dict[str, Any]) -> PutResult:
        """Upsert *record* by its TicketId."""
        ticket_id = record.get(PARTITION_KEY)
        if not isinstance(ticket_id, str) or not ticket_id:
            msg = f"Record has no usable {PARTITION_KEY}: {ticket_id!r}"
            raise StoreError(msg)

        try:
            item = to_dynamo_item(record)
            self.table.put_item(Item=item)
        except (ClientError, BotoCoreError, TypeError, ValueError) as e:
            logger.error("Error saving %s to %s: %s", ticket_id, self.table.name, e)
            msg = f"Failed to save record {ticket_id}: {e}"
            raise StoreError(msg) from e

        logger.info("Saved record %s to %s", ticket_id, self.table.name)
        return PutResult(success=True, id=ticket_id)

    def get_by_id(self, ticket_id: str) -> dict[str, Any]:
        """Return the record stored under *ticket_id*.

        Raises NotFoundError when there is none.
        """
        try:
            response = self.table.get_item(Key={PARTITION_KEY: ticket_id})
        except (ClientError, BotoCoreError) as e:
            msg = f"Failed to read record {ticket_id}: {e}"
            raise StoreError(msg) from e

        item = response.get("Item")
        if not item:
            msg = f"Invoice with TicketId {ticket_id} not found."
            raise NotFoundError(msg)
        return dict(item)

    def scan_all(self) -> list[dict[str, Any]]:
        """Return every record in the table."""
        items: list[dict[str, Any]] = []
        kwargs: dict[str, Any] = {}
        try:
            while True:
                response = self.table.scan(**kwargs)
                items.extend(response.get("Items", []))
                last_key = response.get("LastEvaluatedKey")
                if not last_key:
                    break
                kwargs["ExclusiveStartKey"] = last_key
        except (ClientError, BotoCoreError) as e:
            msg = f"Failed to scan {self.table.name}: {e}"
            raise StoreError(msg) from e

        logger.info("Scanned %d records from %s", len(items), self.table.name)
        return items


def to_dynamo_item(record: dict[str, Any]) -> dict[str, Any]:
    """Convert floats to Decimal, which is all DynamoDB accepts for numbers."""
    return json.loads(
        json.dumps(record, default=json_default), parse_float=Decimal
    )  # type: ignore[no-any-return]


def json_default(value: object) -> object:
    """``json.dumps`` hook rendering DynamoDB Decimals as JSON numbers."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    msg = f"Object of type {type(value).__name__} is not JSON serializable"
    raise TypeError(msg)
