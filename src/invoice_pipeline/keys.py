"""Storage key and record id derivation.

Pure functions shared by the ingestor and both orchestrator paths so the
fallback and error id formats live in one place.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]")

ATTACHMENT_PREFIX = "attachments"
FALLBACK_PREFIX = "fallback"
ERROR_PREFIX = "error"

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def epoch_millis(at: datetime) -> int:
    """Milliseconds since the Unix epoch. Naive datetimes are taken as UTC."""
    if at.tzinfo is None:
        at = at.replace(tzinfo=UTC)
    return (at - _EPOCH) // timedelta(milliseconds=1)


def sanitize_filename(filename: str) -> str:
    """Replace every character outside [A-Za-z0-9_.-] with an underscore."""
    return _UNSAFE_FILENAME_CHARS.sub("_", filename)


def default_attachment_filename(message_id: str, at: datetime) -> str:
    """Filename for an attachment that declared none."""
    return f"attachment-{message_id}-{epoch_millis(at)}.pdf"


def attachment_key(message_id: str, filename: str) -> str:
    """Storage key for an attachment: attachments/<messageId>/<safeFilename>."""
    return f"{ATTACHMENT_PREFIX}/{message_id}/{sanitize_filename(filename)}"


def derive_ticket_id(prefix: str, source_key: str, at: datetime | None = None) -> str:
    """Generated record id: <prefix>-<sourceKey>-<epochMillis>."""
    at = at or datetime.now(tz=UTC)
    return f"{prefix}-{source_key}-{epoch_millis(at)}"


def resolve_ticket_id(
    invoice_id: object, source_key: str, at: datetime | None = None
) -> str:
    """Use the extracted invoice id when usable, else a fallback id."""
    if isinstance(invoice_id, str) and invoice_id.strip():
        return invoice_id
    return derive_ticket_id(FALLBACK_PREFIX, source_key, at)


def error_ticket_id(source_key: str, at: datetime | None = None) -> str:
    """Record id for an error record."""
    return derive_ticket_id(ERROR_PREFIX, source_key, at)
