"""
Domain events for the invoice ledger.

Immutable event objects published after an invoice change has been saved.
Delivery work (emailing the invoice, sending a receipt, rendering a
document) hangs off these events so it can never block or fail the write
that produced them.

Events carry the saved Invoice so handlers don't need to re-fetch state.
"""

from dataclasses import dataclass, field
from datetime import datetime
from uuid import uuid4

from core.models import Invoice, Payment
from utils.timezone import now_utc


@dataclass(frozen=True, kw_only=True)
class LedgerEvent:
    """Base class for all ledger events."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=now_utc)


@dataclass(frozen=True, kw_only=True)
class InvoiceEvent(LedgerEvent):
    """Something happened to an invoice."""
    invoice: Invoice


@dataclass(frozen=True, kw_only=True)
class InvoiceCreated(InvoiceEvent):
    """A draft invoice was created."""


@dataclass(frozen=True, kw_only=True)
class InvoiceUpdated(InvoiceEvent):
    """A draft invoice was edited."""


@dataclass(frozen=True, kw_only=True)
class InvoiceDeleted(InvoiceEvent):
    """A draft invoice was deleted. `invoice` is its last saved state."""


@dataclass(frozen=True, kw_only=True)
class InvoiceSent(InvoiceEvent):
    """Invoice was issued or re-sent to the client."""


@dataclass(frozen=True, kw_only=True)
class InvoiceViewed(InvoiceEvent):
    """Client opened the invoice for the first time."""


@dataclass(frozen=True, kw_only=True)
class PaymentRecorded(InvoiceEvent):
    """A payment was applied. `invoice` is the state after the payment."""
    payment: Payment


@dataclass(frozen=True, kw_only=True)
class InvoicePaid(InvoiceEvent):
    """The last payment brought the balance to zero."""
    payment: Payment


@dataclass(frozen=True, kw_only=True)
class InvoiceCancelled(InvoiceEvent):
    """Invoice was cancelled."""
