"""CLI entry point for invoice-pipeline."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import click

from invoice_pipeline import handlers
from invoice_pipeline.errors import PipelineError
from invoice_pipeline.models import ObjectRef
from invoice_pipeline.records import json_default

_FILE = click.Path(exists=True, dir_okay=False, path_type=Path)


def _echo_json(data: object) -> None:
    click.echo(json.dumps(data, indent=2, default=json_default))


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """Invoice Pipeline: extract invoices from emailed PDFs."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.argument("eml_file", type=_FILE)
@click.option("--message-id", help="Message id to store attachments under.")
def ingest(eml_file: Path, message_id: str | None) -> None:
    """Store the PDF attachments of a raw email file."""
    try:
        refs = handlers.get_ingestor().ingest(eml_file.read_bytes(), message_id)
    except PipelineError as e:
        raise click.ClickException(str(e)) from e
    for ref in refs:
        click.echo(f"s3://{ref.bucket}/{ref.key}")
    click.echo(f"{len(refs)} PDF attachment(s) stored.")


@cli.command()
@click.argument("pdf_file", type=_FILE)
def extract(pdf_file: Path) -> None:
    """Extract invoice fields from a local PDF and print them."""
    try:
        extractor = handlers.get_pipeline().extractor
        record = asyncio.run(
            extractor.extract(
                pdf_file.read_bytes(), ObjectRef(bucket="local", key=pdf_file.name)
            )
        )
    except PipelineError as e:
        raise click.ClickException(str(e)) from e
    _echo_json(record)


@cli.command()
@click.argument("bucket")
@click.argument("key")
def process(bucket: str, key: str) -> None:
    """Run the full pipeline for one stored PDF."""
    try:
        pipeline = handlers.get_pipeline()
    except PipelineError as e:
        raise click.ClickException(str(e)) from e
    outcome = asyncio.run(pipeline.process_item(ObjectRef(bucket=bucket, key=key)))
    _echo_json(outcome.to_dict())
    if not outcome.success:
        raise SystemExit(1)


@cli.command()
@click.argument("ticket_id")
def show(ticket_id: str) -> None:
    """Show a stored invoice record."""
    try:
        record = handlers.get_query_service().records.get_by_id(ticket_id)
    except PipelineError as e:
        raise click.ClickException(str(e)) from e
    _echo_json(record)


@cli.command(name="list")
def list_records() -> None:
    """List every stored invoice record (full table scan)."""
    try:
        items = handlers.get_query_service().records.scan_all()
    except PipelineError as e:
        raise click.ClickException(str(e)) from e
    _echo_json({"items": items, "count": len(items)})
