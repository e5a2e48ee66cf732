"""Invoice domain models.

All amounts are stored in cents (integer) to avoid floating point issues.
$10.00 = 1000 cents. Subtotal, total, amount paid and amount due are derived
from line items, discount and payments, never stored separately.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from core.models.payment import Payment
from core.money import from_cents, line_amount_cents


class InvoiceStatus(str, Enum):
    """Invoice lifecycle status."""

    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class LineItemCreate(BaseModel):
    """A billable line as entered: rate in decimal currency, quantity may be fractional (hours)."""

    description: str = Field(..., min_length=1, max_length=500)
    rate: Decimal = Field(..., ge=0)
    quantity: Decimal = Field(Decimal(1), gt=0)


class LineItem(BaseModel):
    """A line item as stored on an invoice."""

    description: str
    rate_cents: int = Field(..., ge=0)
    quantity: Decimal = Field(..., gt=0)
    amount_cents: int = Field(..., ge=0)

    model_config = {"frozen": True, "from_attributes": True}

    @model_validator(mode="after")
    def check_amount(self) -> "LineItem":
        """amount_cents must be rate * quantity rounded to the cent."""
        expected = line_amount_cents(self.rate_cents, self.quantity)
        if self.amount_cents != expected:
            raise ValueError(
                f"amount_cents {self.amount_cents} does not match "
                f"rate_cents * quantity ({expected})"
            )
        return self


class InvoiceCreate(BaseModel):
    """Data required to create a draft invoice."""

    client_id: UUID
    client_name: str = Field(..., min_length=1, max_length=200)
    client_email: str | None = Field(None, max_length=320)
    title: str | None = Field(None, max_length=200)
    line_items: list[LineItemCreate] = Field(..., min_length=1)
    discount: Decimal = Field(Decimal(0), ge=0)
    currency: str | None = Field(None, min_length=3, max_length=3)
    due_date: date | None = None
    notes: str | None = Field(None, max_length=2000)

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: str | None) -> str | None:
        if v is None:
            return v
        if not v.isalpha():
            raise ValueError("currency must be an ISO 4217 code")
        return v.upper()


class InvoiceUpdate(BaseModel):
    """
    Changes to a draft invoice. Only fields that are set are applied.

    Invoice number and currency are fixed at creation and cannot be sent.
    """

    client_id: UUID | None = None
    client_name: str | None = Field(None, min_length=1, max_length=200)
    client_email: str | None = Field(None, max_length=320)
    title: str | None = Field(None, max_length=200)
    line_items: list[LineItemCreate] | None = Field(None, min_length=1)
    discount: Decimal | None = Field(None, ge=0)
    due_date: date | None = None
    notes: str | None = Field(None, max_length=2000)

    model_config = {"extra": "forbid"}


class InvoiceTotals(BaseModel):
    """Monetary summary of one invoice, in cents."""

    subtotal_cents: int
    discount_cents: int
    total_amount_cents: int
    amount_paid_cents: int
    amount_due_cents: int

    def as_decimals(self) -> dict[str, Decimal]:
        """Decimal view keyed without the _cents suffix, for presentation."""
        return {
            "subtotal": from_cents(self.subtotal_cents),
            "discount": from_cents(self.discount_cents),
            "total_amount": from_cents(self.total_amount_cents),
            "amount_paid": from_cents(self.amount_paid_cents),
            "amount_due": from_cents(self.amount_due_cents),
        }


class Invoice(BaseModel):
    """
    Full invoice entity as stored.

    Mutated only through core.ledger, which always returns a new instance.
    `version` is the optimistic-concurrency counter checked by the store.
    """

    id: UUID
    account_id: UUID
    invoice_number: str
    client_id: UUID
    client_name: str
    client_email: str | None = None
    title: str | None = None
    status: InvoiceStatus
    currency: str
    line_items: list[LineItem]
    discount_cents: int = Field(0, ge=0)
    due_date: date
    payments: list[Payment] = Field(default_factory=list)
    notes: str | None = None
    issued_at: datetime | None = None
    sent_at: datetime | None = None
    viewed_at: datetime | None = None
    paid_at: datetime | None = None
    cancelled_at: datetime | None = None
    version: int = Field(0, ge=0)
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @model_validator(mode="after")
    def check_balances(self) -> "Invoice":
        """Discount cannot exceed subtotal; payments cannot exceed total."""
        if self.discount_cents > self.subtotal_cents:
            raise ValueError("discount cannot exceed subtotal")
        if self.amount_paid_cents > self.total_amount_cents:
            raise ValueError("payments exceed invoice total")
        return self

    @property
    def subtotal_cents(self) -> int:
        return sum(item.amount_cents for item in self.line_items)

    @property
    def total_amount_cents(self) -> int:
        return self.subtotal_cents - self.discount_cents

    @property
    def amount_paid_cents(self) -> int:
        return sum(payment.amount_cents for payment in self.payments)

    @property
    def amount_due_cents(self) -> int:
        """Remaining balance in cents, never negative."""
        return max(self.total_amount_cents - self.amount_paid_cents, 0)
