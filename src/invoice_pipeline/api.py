"""Read-only query service over API Gateway proxy events."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from invoice_pipeline.errors import NotFoundError
from invoice_pipeline.records import json_default

if TYPE_CHECKING:
    from invoice_pipeline.records import RecordStore

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET,OPTIONS",
    "Access-Control-Allow-Headers": (
        "Content-Type,X-Amz-Date,Authorization,X-Api-Key,X-Amz-Security-Token"
    ),
}

COLLECTION_PATH = "/invoices"
SUPPORTED_SHAPES = "/invoices/{ticketId} or /invoices?list=all"
SCAN_WARNING = "Full scan executed. Results are not paginated."


def build_response(status_code: int, body: Any) -> dict[str, Any]:
    """API Gateway proxy response with JSON body and CORS headers."""
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "application/json", **CORS_HEADERS},
        "body": json.dumps(body, default=json_default),
    }


def request_method(event: dict[str, Any]) -> str:
    """HTTP method of a REST (v1) or HTTP API (v2) proxy event."""
    method = event.get("httpMethod")
    if not method:
        method = event.get("requestContext", {}).get("http", {}).get("method", "")
    return str(method).upper()


def request_path(event: dict[str, Any]) -> str:
    path = event.get("path") or event.get("rawPath") or ""
    return str(path).rstrip("/") or "/"


class QueryService:
    """Translate lookup and list requests into record store reads."""

    def __init__(self, records: RecordStore) -> None:
        self.records = records

    def handle(self, event: dict[str, Any]) -> dict[str, Any]:
        method = request_method(event)
        path = request_path(event)
        logger.info("API request: %s %s", method, path)

        if method == "OPTIONS":
            return build_response(200, {"message": "CORS preflight successful"})
        if method != "GET":
            return build_response(405, {"error": f"Unsupported method: {method}"})

        path_params = event.get("pathParameters") or {}
        query_params = event.get("queryStringParameters") or {}
        try:
            ticket_id = path_params.get("ticketId")
            if ticket_id:
                return self.get_invoice(ticket_id)
            if path.endswith(COLLECTION_PATH) or query_params.get("list") == "all":
                return self.list_invoices()
        except Exception as e:
            logger.exception("Error processing API request")
            return build_response(
                500, {"error": "Internal server error.", "details": str(e)}
            )

        return build_response(
            400,
            {"error": f"Invalid request path or parameters. Try {SUPPORTED_SHAPES}"},
        )

    def get_invoice(self, ticket_id: str) -> dict[str, Any]:
        logger.info("Fetching invoice by TicketId: %s", ticket_id)
        try:
            record = self.records.get_by_id(ticket_id)
        except NotFoundError:
            return build_response(
                404, {"error": f"Invoice with TicketId {ticket_id} not found."}
            )
        return build_response(200, record)

    def list_invoices(self) -> dict[str, Any]:
        """Return every record. Unbounded: unsuitable for large tables."""
        logger.info("Fetching all invoices with a full table scan")
        items = self.records.scan_all()
        return build_response(
            200, {"items": items, "count": len(items), "message": SCAN_WARNING}
        )
