"""LLM-based invoice extraction using pydantic-ai."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from functools import partial
from typing import TYPE_CHECKING, Any, Protocol

from pydantic import ValidationError
from pydantic_ai import Agent, BinaryContent, NativeOutput
from pydantic_ai.exceptions import (
    AgentRunError,
    ContentFilterError,
    UnexpectedModelBehavior,
    UserError,
)
from pydantic_ai.models.google import GoogleModel
from pydantic_ai.providers.google import GoogleProvider

from invoice_pipeline.errors import ExtractionError
from invoice_pipeline.models import InvoiceData

if TYPE_CHECKING:
    from collections.abc import Callable

    from pydantic_ai.models import Model

    from invoice_pipeline.config import ExtractionConfig
    from invoice_pipeline.models import ObjectRef

logger = logging.getLogger(__name__)

PDF_MEDIA_TYPE = "application/pdf"

_INSTRUCTIONS = """\
You are an intelligent document processing AI. Analyze the provided invoice \
PDF and extract its information. Strictly adhere to the provided JSON schema \
for your response.

- Ensure all monetary values are plain numbers (e.g. 123.45), never formatted strings.
- Parse dates to 'YYYY-MM-DD' format. For example, '1. März 2024' should \
become '2024-03-01'.
- If a field is not present or cannot be reliably determined, use null where \
the schema allows it.
- For line items, extract each distinct item with its description, quantity, \
unit price (before tax), and total amount (before tax).
- The 'subTotal' is the sum of line item totals before any tax.
- The 'grandTotal' is the final amount payable, including all taxes.
- The 'currency' is the currency code (e.g. EUR, USD) or symbol used in the invoice.\
"""


class Extractor(Protocol):
    """Capability boundary for turning a PDF into an invoice record."""

    async def extract(
        self, pdf_data: bytes, provenance: ObjectRef
    ) -> dict[str, Any]: ...


def create_extraction_agent(config: ExtractionConfig) -> Agent[None, InvoiceData]:
    """Create a Gemini-backed pydantic-ai Agent for invoice extraction.

    The provider owns its HTTP client, which is bound to the event loop that
    first uses it, so an agent must not outlive the loop it ran on.
    """
    provider = GoogleProvider(api_key=config.api_key, base_url=config.base_url)
    return agent_for_model(GoogleModel(config.model, provider=provider))


def agent_for_model(model: Model) -> Agent[None, InvoiceData]:
    """Wrap *model* in an invoice extraction Agent.

    Output is constrained natively to the InvoiceData schema and retries are
    disabled so each extraction makes exactly one model request.
    """
    return Agent(
        model,
        output_type=NativeOutput(InvoiceData),
        instructions=_INSTRUCTIONS,
        retries=0,
    )


class InvoiceExtractor:
    """Extractor backed by a Gemini pydantic-ai agent.

    Takes an agent factory rather than an agent: every extraction builds a
    fresh agent and enters it for the duration of one run, so its HTTP
    client is opened and closed on the running event loop. Without a factory
    every call fails with ExtractionError.
    """

    def __init__(
        self,
        agent_factory: Callable[[], Agent[None, InvoiceData]] | None,
        *,
        engine: str,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.agent_factory = agent_factory
        self.engine = engine
        self._clock = clock or (lambda: datetime.now(tz=UTC))

    @classmethod
    def from_config(cls, config: ExtractionConfig) -> InvoiceExtractor:
        return cls(
            partial(create_extraction_agent, config), engine=engine_tag(config.model)
        )

    async def extract(self, pdf_data: bytes, provenance: ObjectRef) -> dict[str, Any]:
        """Extract a structured invoice record from PDF bytes.

        The result carries provenance, engine and timestamp fields but no
        TicketId; assigning one is the caller's job.
        """
        if self.agent_factory is None:
            msg = "Extraction model is not configured (check GEMINI_API_KEY)"
            raise ExtractionError(msg)

        logger.info(
            "Starting %s extraction for %s (%d bytes)",
            self.engine,
            provenance.uri,
            len(pdf_data),
        )
        invoice = await self._run(pdf_data, provenance)

        record = invoice.to_record()
        record["S3Bucket"] = provenance.bucket
        record["S3Key"] = provenance.key
        record["processingEngine"] = self.engine
        record["extractionTimestamp"] = self._clock().isoformat()

        if not (invoice.invoice_id or "").strip():
            logger.warning(
                "Invoice ID not extracted for %s; a fallback id will be used",
                provenance.key,
            )
        return record

    async def _run(self, pdf_data: bytes, provenance: ObjectRef) -> InvoiceData:
        prompt = [
            "Extract the invoice fields from this PDF.",
            BinaryContent(data=pdf_data, media_type=PDF_MEDIA_TYPE),
        ]
        try:
            agent = self.agent_factory()  # type: ignore[misc]
            async with agent:
                result: Any = await agent.run(prompt)
        except ContentFilterError as e:
            msg = (
                f"Extraction blocked for document {provenance.key}. "
                f"Reason: {e.message}"
            )
            raise ExtractionError(msg, reason=e.message) from e
        except UnexpectedModelBehavior as e:
            msg = f"Invalid response for document {provenance.key}: {e.message}"
            raise ExtractionError(msg) from e
        except (AgentRunError, UserError) as e:
            msg = f"Extraction failed for document {provenance.key}: {e}"
            raise ExtractionError(msg) from e

        output = result.output
        if output is None:
            msg = f"Empty response for document {provenance.key}"
            raise ExtractionError(msg)
        if isinstance(output, InvoiceData):
            return output
        try:
            if isinstance(output, (str, bytes)):
                return InvoiceData.model_validate_json(output)
            return InvoiceData.model_validate(output)
        except ValidationError as e:
            msg = f"Response for {provenance.key} does not match InvoiceData: {e}"
            raise ExtractionError(msg) from e


def engine_tag(model: str) -> str:
    """Engine-version tag stored on each record."""
    return f"Gemini:{model}"
