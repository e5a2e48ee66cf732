"""Core domain models."""

from core.models.payment import Payment, PaymentMethod, PaymentRequest
from core.models.invoice import (
    Invoice,
    InvoiceCreate,
    InvoiceStatus,
    InvoiceTotals,
    InvoiceUpdate,
    LineItem,
    LineItemCreate,
)

__all__ = [
    # Payment
    "Payment", "PaymentMethod", "PaymentRequest",
    # Invoice
    "Invoice", "InvoiceCreate", "InvoiceStatus", "InvoiceTotals", "InvoiceUpdate",
    "LineItem", "LineItemCreate",
]
