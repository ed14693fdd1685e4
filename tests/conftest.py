"""Shared test fixtures."""

from __future__ import annotations

import itertools
import json
import threading
from datetime import UTC, datetime
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import TYPE_CHECKING, Any

import boto3
import pytest
from moto import mock_aws

from invoice_pipeline.models import InvoiceData

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

REGION = "us-east-1"
MAIL_BUCKET = "raw-mail-bucket"
ATTACHMENT_BUCKET = "email-attachments-bucket"
TABLE_NAME = "InvoiceTable"
FIXED_NOW = datetime(2025, 6, 15, 10, 30, 0, tzinfo=UTC)


@pytest.fixture
def aws_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    """Point boto3 at fake credentials so nothing can reach real AWS."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")  # pragma: allowlist secret
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", REGION)
    monkeypatch.setenv("AWS_REGION", REGION)


@pytest.fixture
def aws(aws_credentials: None) -> Iterator[None]:
    """Run the test inside moto's in-memory AWS."""
    with mock_aws():
        yield


@pytest.fixture
def s3_client(aws: None) -> Any:
    """Provide a moto S3 client with the mail and attachment buckets."""
    client = boto3.client("s3", region_name=REGION)
    client.create_bucket(Bucket=MAIL_BUCKET)
    client.create_bucket(Bucket=ATTACHMENT_BUCKET)
    return client


@pytest.fixture
def invoice_table(aws: None) -> Any:
    """Provide a moto DynamoDB table keyed by TicketId."""
    dynamodb = boto3.resource("dynamodb", region_name=REGION)
    return dynamodb.create_table(
        TableName=TABLE_NAME,
        KeySchema=[{"AttributeName": "TicketId", "KeyType": "HASH"}],
        AttributeDefinitions=[{"AttributeName": "TicketId", "AttributeType": "S"}],
        BillingMode="PAY_PER_REQUEST",
    )


@pytest.fixture
def sample_invoice() -> InvoiceData:
    """Provide a minimal valid invoice, as the model would return it."""
    return InvoiceData.model_validate(
        {
            "invoiceId": "INV-42",
            "invoiceDate": "2024-03-01",
            "customerDetails": {"name": "Globex GmbH"},
            "vendorDetails": {"name": "Acme Corp", "vatId": "DE123456789"},
            "lineItems": [
                {
                    "description": "Consulting",
                    "quantity": 2,
                    "unitPrice": 40.0,
                    "totalAmount": 80.0,
                },
                {"description": "Travel", "totalAmount": 4.03},
            ],
            "currency": "EUR",
            "subTotal": 84.03,
            "taxDetails": {
                "description": "VAT 19%",
                "taxRatePercent": 19,
                "taxAmount": 15.97,
            },
            "grandTotal": 100.0,
        }
    )


@pytest.fixture
def make_email() -> Callable[..., bytes]:
    """Return a builder for raw multipart emails with attachments."""

    def _make_email(
        *,
        subject: str = "Invoice March",
        sender: str = "billing@acme.example",
        message_id: str | None = "<M1@acme.example>",
        attachments: list[tuple[str | None, str, bytes]] | None = None,
    ) -> bytes:
        msg = MIMEMultipart("mixed")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = "invoices@example.com"
        msg["Date"] = "Sat, 01 Mar 2024 09:00:00 +0000"
        if message_id:
            msg["Message-ID"] = message_id
        msg.attach(MIMEText("Please find the invoice attached.", "plain"))

        for filename, content_type, data in attachments or []:
            _maintype, subtype = content_type.split("/", 1)
            att = MIMEApplication(data, subtype)
            if filename:
                att.add_header("Content-Disposition", "attachment", filename=filename)
            else:
                att.add_header("Content-Disposition", "attachment")
            att.replace_header("Content-Type", content_type)
            msg.attach(att)
        return msg.as_bytes()

    return _make_email


def s3_event(bucket: str, *keys: str) -> dict[str, Any]:
    """Build an S3 ObjectCreated event for *keys*."""
    return {
        "Records": [
            {
                "eventSource": "aws:s3",
                "eventName": "ObjectCreated:Put",
                "s3": {"bucket": {"name": bucket}, "object": {"key": key}},
            }
            for key in keys
        ]
    }


@pytest.fixture
def storage_event() -> Callable[..., dict[str, Any]]:
    """Return the S3 event builder."""
    return s3_event


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def attachment_bucket() -> str:
    return ATTACHMENT_BUCKET


@pytest.fixture
def mail_bucket() -> str:
    return MAIL_BUCKET


class _GeminiHandler(BaseHTTPRequestHandler):
    """Answers every generateContent call with the next numbered invoice."""

    protocol_version = "HTTP/1.1"
    invoice: dict[str, Any] = {}
    counter: itertools.count[int] = itertools.count(1)
    requests: list[str] = []

    def do_POST(self) -> None:
        self.rfile.read(int(self.headers.get("Content-Length", 0)))
        self.requests.append(self.path)
        invoice = {**self.invoice, "invoiceId": f"INV-{next(self.counter)}"}
        body = json.dumps(
            {
                "candidates": [
                    {
                        "content": {
                            "role": "model",
                            "parts": [{"text": json.dumps(invoice)}],
                        },
                        "finishReason": "STOP",
                        "index": 0,
                    }
                ],
                "usageMetadata": {
                    "promptTokenCount": 10,
                    "candidatesTokenCount": 20,
                    "totalTokenCount": 30,
                },
                "modelVersion": "gemini-2.0-flash",
            }
        ).encode()
        self.send_response(200)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args: Any) -> None:
        pass


@pytest.fixture
def gemini_endpoint(sample_invoice: InvoiceData) -> Iterator[ThreadingHTTPServer]:
    """Run a local keep-alive Gemini API stand-in on a free port.

    Each response carries the sample invoice under a fresh id (INV-1, INV-2,
    ...); request paths are collected on ``RequestHandlerClass.requests``.
    """
    handler = type(
        "GeminiHandler",
        (_GeminiHandler,),
        {
            "invoice": sample_invoice.model_dump(mode="json", by_alias=True),
            "counter": itertools.count(1),
            "requests": [],
        },
    )
    server = ThreadingHTTPServer(("127.0.0.1", 0), handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()
    thread.join()


@pytest.fixture
def gemini_url(gemini_endpoint: ThreadingHTTPServer) -> str:
    return f"http://127.0.0.1:{gemini_endpoint.server_port}"
