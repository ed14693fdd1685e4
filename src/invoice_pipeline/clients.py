"""boto3 client factory.

Clients are built once per process by the handlers and passed into each
component, so tests can hand in moto-backed clients instead.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import boto3
import botocore.config

from invoice_pipeline.config import get_aws_region

if TYPE_CHECKING:
    from mypy_boto3_dynamodb.service_resource import Table
    from mypy_boto3_s3 import S3Client

logger = logging.getLogger(__name__)

# At most one attempt per call; failures surface to the caller as-is.
BOTO_CONFIG_SINGLE_ATTEMPT = botocore.config.Config(
    retries={"max_attempts": 1, "mode": "standard"}
)


def get_s3_client() -> S3Client:
    """Create an S3 client in the configured region."""
    region = get_aws_region()
    if not region:
        logger.warning("AWS_REGION not set, boto3 will attempt to resolve it.")
    return boto3.client("s3", region_name=region, config=BOTO_CONFIG_SINGLE_ATTEMPT)


def get_dynamodb_table(table_name: str) -> Table:
    """Return the DynamoDB Table resource for *table_name*."""
    dynamodb = boto3.resource(
        "dynamodb", region_name=get_aws_region(), config=BOTO_CONFIG_SINGLE_ATTEMPT
    )
    return dynamodb.Table(table_name)
