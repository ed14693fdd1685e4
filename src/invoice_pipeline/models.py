"""Domain and extraction models for invoice processing."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

SCHEMA_VERSION = "2024-06"

ERROR_STATUS = "Error-ProcessingFailed"


@dataclass
class Attachment:
    """An email attachment."""

    filename: str | None
    content_type: str
    data: bytes

    @property
    def is_pdf(self) -> bool:
        """True for a PDF content type or a .pdf filename, case-insensitive."""
        if self.content_type.lower() == "application/pdf":
            return True
        return (self.filename or "").lower().endswith(".pdf")


@dataclass(frozen=True)
class ObjectRef:
    """Address of a blob in object storage."""

    bucket: str
    key: str

    @property
    def uri(self) -> str:
        return f"s3://{self.bucket}/{self.key}"


@dataclass
class Blob:
    """Blob content fetched from object storage."""

    data: bytes
    content_type: str | None = None
    content_length: int | None = None


@dataclass(frozen=True)
class StoredAttachmentRef:
    """An attachment written to object storage by the mail ingestor."""

    bucket: str
    key: str
    content_type: str
    size: int


@dataclass(frozen=True)
class PutResult:
    """Outcome of a record store write."""

    success: bool
    id: str


class _SchemaModel(BaseModel):
    """Base for extraction schema models: camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CustomerDetails(_SchemaModel):
    """Details of the customer being billed."""

    name: str = Field(description="Full name of the customer or company.")
    address: str | None = Field(
        default=None, description="Full billing address of the customer."
    )
    vat_id: str | None = Field(
        default=None, description="Customer's VAT ID, if available."
    )
    contact_person: str | None = Field(
        default=None, description="Contact person at the customer, if available."
    )


class VendorDetails(_SchemaModel):
    """Details of the vendor issuing the invoice."""

    name: str = Field(description="Full name of the vendor company.")
    address: str | None = Field(default=None, description="Full address of the vendor.")
    vat_id: str | None = Field(default=None, description="Vendor's VAT ID.")
    phone: str | None = Field(default=None, description="Vendor's phone number.")
    email: str | None = Field(default=None, description="Vendor's email address.")
    website: str | None = Field(default=None, description="Vendor's website.")


class LineItem(_SchemaModel):
    """A single item or service on the invoice."""

    description: str = Field(description="Description of the item or service.")
    quantity: float | None = Field(default=None, description="Quantity of the item.")
    unit_price: float | None = Field(
        default=None,
        description="Price per unit, without VAT/tax (e.g., 130.00 from '130,00 €').",
    )
    total_amount: float | None = Field(
        default=None,
        description="Total amount for this line item, without VAT/tax.",
    )


class TaxDetails(_SchemaModel):
    """Details about taxes."""

    description: str | None = Field(
        default=None, description="Description of the tax (e.g., 'VAT 19%')."
    )
    tax_rate_percent: float | None = Field(
        default=None,
        description="Tax rate applied in percent (e.g., 19 from 'VAT 19%').",
    )
    tax_amount: float | None = Field(
        default=None,
        description="Total amount of tax (e.g., 72.41 from 'VAT 19% 72,41 €').",
    )


class BankDetails(_SchemaModel):
    """Vendor's bank details for payment."""

    iban: str | None = Field(default=None, description="Vendor's IBAN.")
    bic: str | None = Field(default=None, description="Vendor's BIC/SWIFT code.")
    bank_name: str | None = Field(default=None, description="Name of the bank.")


class InvoiceData(_SchemaModel):
    """Structured invoice fields extracted from a PDF by the LLM.

    This is the schema sent to the inference backend and the shape every
    extracted record is validated against.
    """

    invoice_id: str | None = Field(
        description=(
            "The unique identifier for the invoice (e.g., Invoice No, Document No)."
        ),
    )
    customer_id: str | None = Field(
        default=None, description="The customer's number or ID, if available."
    )
    invoice_date: date = Field(
        description=(
            "Date the invoice was issued, in YYYY-MM-DD format "
            "(e.g., '2024-03-01' from '1. März 2024')."
        ),
    )
    due_date: date | None = Field(
        default=None,
        description=(
            "Date the payment is due, in YYYY-MM-DD format. "
            "Infer if possible (e.g., if 'immediate', use invoiceDate)."
        ),
    )
    customer_details: CustomerDetails
    vendor_details: VendorDetails
    line_items: list[LineItem] = Field(
        description="List of items or services detailed in the invoice."
    )
    currency: str = Field(
        description=(
            "Currency code (e.g., EUR, USD) or symbol (€, $) found in the invoice."
        )
    )
    sub_total: float | None = Field(
        default=None,
        description="Total amount before taxes (e.g., 381.12 from 'Total 381,12 €').",
    )
    tax_details: TaxDetails | None = None
    grand_total: float = Field(
        description=(
            "The final amount due, including all taxes "
            "(e.g., 453.53 from 'Gross Amount incl. VAT 453,53 €')."
        ),
    )
    payment_terms: str | None = Field(
        default=None,
        description="Payment terms (e.g., 'Immediate payment without discount').",
    )
    bank_details: BankDetails | None = None
    notes: str | None = Field(
        default=None,
        description="Any other relevant notes or comments from the invoice.",
    )

    def to_record(self) -> dict[str, Any]:
        """Dump as a JSON-compatible dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


class ItemState(str, Enum):
    """Lifecycle of a single item within a pipeline batch."""

    IDLE = "Idle"
    FETCHING = "Fetching"
    EXTRACTING = "Extracting"
    PERSISTED = "Persisted"
    FAILED = "Failed"
    ERROR_PERSISTED = "ErrorPersisted"


@dataclass
class ItemOutcome:
    """Result of processing one stored object."""

    key: str
    success: bool
    ticket_id: str
    state: ItemState
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "success": self.success,
            "key": self.key,
            "ticketId": self.ticket_id,
            "state": self.state.value,
        }
        if self.error is not None:
            result["error"] = self.error
        return result


@dataclass
class BatchResult:
    """Collected outcomes of one triggering event, in event order."""

    outcomes: list[ItemOutcome] = field(default_factory=list)

    @property
    def failed(self) -> list[ItemOutcome]:
        return [o for o in self.outcomes if not o.success]

    @property
    def succeeded(self) -> list[ItemOutcome]:
        return [o for o in self.outcomes if o.success]

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": "Processing completed.",
            "processed": len(self.outcomes),
            "failed": len(self.failed),
            "results": [o.to_dict() for o in self.outcomes],
        }
