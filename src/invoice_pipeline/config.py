"""Configuration via environment variables."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

from invoice_pipeline.errors import ConfigurationError

load_dotenv()

DEFAULT_TABLE_NAME = "InvoiceTable"
DEFAULT_LLM_MODEL = "gemini-2.0-flash"
DEFAULT_MAX_WORKERS = 8


@dataclass(frozen=True)
class ExtractionConfig:
    """Inference backend configuration."""

    api_key: str
    model: str = DEFAULT_LLM_MODEL
    base_url: str | None = None


def get_attachment_bucket() -> str:
    """Return the ATTACHMENT_BUCKET_NAME where PDF attachments are stored."""
    bucket = os.environ.get("ATTACHMENT_BUCKET_NAME")
    if not bucket:
        msg = "ATTACHMENT_BUCKET_NAME environment variable is required"
        raise ConfigurationError(msg)
    return bucket


def get_table_name() -> str:
    """Return the INVOICE_TABLE_NAME, defaulting to InvoiceTable."""
    return os.environ.get("INVOICE_TABLE_NAME") or DEFAULT_TABLE_NAME


def get_gemini_api_key() -> str:
    """Return the GEMINI_API_KEY from the environment."""
    key = os.environ.get("GEMINI_API_KEY")
    if not key:
        msg = "GEMINI_API_KEY environment variable is required"
        raise ConfigurationError(msg)
    return key


def get_llm_model() -> str:
    """Return the Gemini model identifier.

    Defaults to gemini-2.0-flash.
    """
    return os.environ.get("LLM_MODEL") or DEFAULT_LLM_MODEL


def get_gemini_base_url() -> str | None:
    """Return GEMINI_BASE_URL, or None for the public Gemini endpoint."""
    return os.environ.get("GEMINI_BASE_URL") or None


def get_extraction_config() -> ExtractionConfig:
    """Build extraction configuration from environment variables.

    Required: GEMINI_API_KEY
    Optional: LLM_MODEL (default gemini-2.0-flash), GEMINI_BASE_URL
    """
    return ExtractionConfig(
        api_key=get_gemini_api_key(),
        model=get_llm_model(),
        base_url=get_gemini_base_url(),
    )


def get_max_workers() -> int:
    """Return MAX_WORKERS, the number of items a batch processes at once."""
    raw = os.environ.get("MAX_WORKERS", str(DEFAULT_MAX_WORKERS))
    try:
        workers = int(raw)
    except ValueError:
        msg = f"MAX_WORKERS must be an integer, got {raw!r}"
        raise ConfigurationError(msg) from None
    if workers < 1:
        msg = f"MAX_WORKERS must be at least 1, got {workers}"
        raise ConfigurationError(msg)
    return workers


def get_log_level() -> str:
    """Return LOG_LEVEL, upper-cased, defaulting to INFO.

    Raises ConfigurationError for a name the logging module does not know.
    """
    level = (os.environ.get("LOG_LEVEL") or "INFO").upper()
    if level not in logging.getLevelNamesMapping():
        msg = f"LOG_LEVEL must be a logging level name, got {level!r}"
        raise ConfigurationError(msg)
    return level


def get_aws_region() -> str | None:
    """Return AWS_REGION, or None to let boto3 resolve it."""
    return os.environ.get("AWS_REGION") or None
