"""Mail ingestor: store the PDF attachments of a raw email."""

from __future__ import annotations

import hashlib
import logging
from datetime import UTC, datetime
from email import message_from_bytes
from email.header import decode_header
from typing import TYPE_CHECKING, cast

from invoice_pipeline.errors import ParseError
from invoice_pipeline.keys import attachment_key, default_attachment_filename
from invoice_pipeline.models import Attachment, StoredAttachmentRef

if TYPE_CHECKING:
    from collections.abc import Callable
    from email.message import Message

    from invoice_pipeline.store import BlobStore

logger = logging.getLogger(__name__)


class MailIngestor:
    """Extract PDF attachments from raw messages into the attachment bucket."""

    def __init__(
        self,
        blobs: BlobStore,
        bucket: str,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.blobs = blobs
        self.bucket = bucket
        self._clock = clock or (lambda: datetime.now(tz=UTC))

    def ingest(
        self, raw_message: bytes, message_id: str | None = None
    ) -> list[StoredAttachmentRef]:
        """Store every PDF attachment of *raw_message*.

        Returns the refs written, in attachment order. A parse or storage
        failure fails the whole call; blobs already written stay written.
        """
        msg = parse_message(raw_message)
        message_id = message_id or get_message_id(msg)

        logger.info(
            "Processing email %s: subject=%r from=%r",
            message_id,
            decode_header_value(msg.get("Subject")),
            decode_header_value(msg.get("From")),
        )

        attachments = extract_attachments(msg)
        logger.info("Found %d attachment(s) in %s", len(attachments), message_id)

        stored: list[StoredAttachmentRef] = []
        for att in attachments:
            if not att.is_pdf:
                logger.info(
                    "Skipping non-PDF attachment: %s (type: %s)",
                    att.filename,
                    att.content_type,
                )
                continue

            filename = att.filename or default_attachment_filename(
                message_id, self._clock()
            )
            key = attachment_key(message_id, filename)
            logger.info(
                "Uploading PDF attachment %s to s3://%s/%s", filename, self.bucket, key
            )
            self.blobs.put(self.bucket, key, att.data, att.content_type)
            stored.append(
                StoredAttachmentRef(
                    bucket=self.bucket,
                    key=key,
                    content_type=att.content_type,
                    size=len(att.data),
                )
            )

        if stored:
            logger.info("%d PDF attachment(s) stored for %s", len(stored), message_id)
        else:
            logger.info("No PDF attachments found in %s", message_id)
        return stored

    def ingest_object(
        self, bucket: str, key: str, message_id: str | None = None
    ) -> list[StoredAttachmentRef]:
        """Fetch a raw message from object storage and ingest it.

        SES stores raw mail under its message id, so the last key segment is
        used as the message id unless one is given.
        """
        logger.info("Fetching raw email from s3://%s/%s", bucket, key)
        blob = self.blobs.get(bucket, key)
        return self.ingest(blob.data, message_id or key.rsplit("/", 1)[-1])


def parse_message(raw_message: bytes) -> Message:
    """Parse raw RFC 822 bytes into a Message."""
    if not isinstance(raw_message, (bytes, bytearray)):
        msg = f"Raw message must be bytes, got {type(raw_message).__name__}"
        raise ParseError(msg)
    if not raw_message.strip():
        msg = "Raw message is empty"
        raise ParseError(msg)

    message = message_from_bytes(bytes(raw_message))
    if not message.keys() and not message.get_payload():
        msg = "Raw message has neither headers nor body"
        raise ParseError(msg)
    return message


def get_message_id(msg: Message) -> str:
    """Extract a unique identifier for the message.

    Uses the Message-ID header (without angle brackets) if present; falls
    back to a hash of subject + date + sender.
    """
    message_id = msg.get("Message-ID")
    if message_id and message_id.strip().strip("<>").strip():
        return message_id.strip().strip("<>").strip()

    subject = msg.get("Subject", "")
    date = msg.get("Date", "")
    sender = msg.get("From", "")
    key = f"{subject}|{date}|{sender}"
    return hashlib.sha256(key.encode()).hexdigest()


def decode_header_value(value: str | None) -> str:
    """Decode an RFC 2047 encoded header value."""
    if not value:
        return ""
    parts = decode_header(value)
    decoded_parts: list[str] = []
    for data, charset in parts:
        if isinstance(data, bytes):
            decoded_parts.append(data.decode(charset or "utf-8", errors="replace"))
        else:
            decoded_parts.append(data)
    return "".join(decoded_parts)


def extract_attachments(msg: Message) -> list[Attachment]:
    """Walk the MIME tree and collect attachment parts in message order.

    A part is an attachment if it has a filename or an explicit
    ``attachment`` disposition.
    """
    attachments: list[Attachment] = []
    try:
        for part in msg.walk():
            if part.get_content_maintype() == "multipart":
                continue

            filename = part.get_filename()
            if filename:
                filename = decode_header_value(filename)
            disposition = str(part.get("Content-Disposition", ""))
            if not filename and "attachment" not in disposition.lower():
                continue

            raw_payload = part.get_payload(decode=True)
            if raw_payload is None:
                continue

            attachments.append(
                Attachment(
                    filename=filename or None,
                    content_type=part.get_content_type(),
                    data=cast("bytes", raw_payload),
                )
            )
    except (LookupError, ValueError) as e:
        msg_text = f"Malformed MIME structure: {e}"
        raise ParseError(msg_text) from e
    return attachments
