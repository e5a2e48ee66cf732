"""Payment domain models.

Payments are stored in cents (integer). A Payment is immutable once
recorded; corrections are new payments, never edits.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class PaymentMethod(str, Enum):
    """How the money arrived. The gateway itself is not modelled."""

    STRIPE = "stripe"
    RAZORPAY = "razorpay"
    PAYPAL = "paypal"
    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"
    OTHER = "other"


class PaymentRequest(BaseModel):
    """
    A proposed payment as submitted by the UI or API.

    Amount is a decimal in invoice currency; method is a raw string so an
    unknown method is reported as a ledger error rather than a schema error.
    """

    amount: Decimal
    method: str
    transaction_id: str | None = Field(None, max_length=255)
    notes: str | None = Field(None, max_length=2000)


class Payment(BaseModel):
    """A recorded payment. Never modified after creation."""

    id: UUID
    amount_cents: int = Field(..., gt=0)
    method: PaymentMethod
    transaction_id: str | None = None
    notes: str | None = None
    recorded_at: datetime

    model_config = {"frozen": True, "from_attributes": True}
