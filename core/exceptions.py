"""Typed exceptions for ledger failures.

Every rejection is a per-request outcome: the invoice is left unchanged and
the caller gets a specific kind it can turn into a user-facing message.
`code` is the machine-readable kind carried into API error envelopes.
"""

from uuid import UUID


class LedgerError(Exception):
    """Base class for invoice ledger errors."""

    code = "LEDGER_ERROR"


class InvoiceNotFoundError(LedgerError, ValueError):
    """Invoice does not exist, or belongs to another account."""

    code = "NOT_FOUND"

    def __init__(self, invoice_id: UUID):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice {invoice_id} not found")


class PaymentError(LedgerError):
    """A payment request was rejected."""


class InvoiceCancelledError(PaymentError):
    """Invoice is cancelled. Cancelled invoices are terminal."""

    code = "INVOICE_CANCELLED"


class InvoiceNotSentError(PaymentError):
    """Invoice is still a draft and cannot accept payment or views."""

    code = "INVOICE_NOT_SENT"


class InvalidAmountError(PaymentError):
    """Payment amount is zero, negative, or finer than one cent."""

    code = "INVALID_AMOUNT"


class AmountExceedsDueError(PaymentError):
    """Payment amount is larger than the remaining balance."""

    code = "AMOUNT_EXCEEDS_DUE"

    def __init__(self, amount_cents: int, amount_due_cents: int):
        self.amount_cents = amount_cents
        self.amount_due_cents = amount_due_cents
        super().__init__("Payment amount cannot exceed the amount due")


class InvalidMethodError(PaymentError):
    """Payment method is not one of the supported methods."""

    code = "INVALID_METHOD"


class InvoiceNotDraftError(LedgerError):
    """Only draft invoices can be edited or deleted."""

    code = "INVOICE_NOT_DRAFT"


class InvoiceAlreadyPaidError(LedgerError):
    """Invoice is fully paid and can no longer be cancelled."""

    code = "INVOICE_ALREADY_PAID"


class ConcurrentModificationError(LedgerError):
    """
    Invoice changed between load and save.

    Raised by the store. The caller reloads and retries the whole
    validate-and-apply sequence.
    """

    code = "CONCURRENT_MODIFICATION"

    def __init__(self, invoice_id: UUID, expected_version: int):
        self.invoice_id = invoice_id
        self.expected_version = expected_version
        super().__init__(
            f"Invoice {invoice_id} was modified concurrently "
            f"(expected version {expected_version})"
        )
