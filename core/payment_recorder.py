"""
Payment recording.

Validates a proposed payment against an invoice's current state and, if
valid, produces the updated invoice. Checks run in a fixed order and the
first failure wins:

    cancelled -> draft -> amount > 0 -> amount <= due -> known method

An over-large payment is rejected outright; there is no partial application
and no credit balance.
"""

import logging
from datetime import datetime
from uuid import UUID, uuid4

from core import ledger
from core.exceptions import (
    AmountExceedsDueError,
    InvalidAmountError,
    InvalidMethodError,
    PaymentError,
)
from core.models import Invoice, Payment, PaymentMethod, PaymentRequest
from core.money import to_cents_exact
from core.store import InvoiceStore
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


def record_payment(invoice: Invoice, request: PaymentRequest, now: datetime) -> Invoice:
    """
    Apply a payment request to an invoice.

    Args:
        invoice: Current invoice state
        request: Proposed payment
        now: Recording time, in the account's business timezone

    Returns:
        New invoice with the payment appended and status re-evaluated.
        The input invoice is untouched whether or not this succeeds.

    Raises:
        InvoiceCancelledError: Invoice is cancelled
        InvoiceNotSentError: Invoice is still a draft
        InvalidAmountError: Amount is not positive or finer than one cent
        AmountExceedsDueError: Amount is more than the remaining balance
        InvalidMethodError: Method is not a supported payment method
    """
    ledger.ensure_payable(invoice)

    try:
        amount_cents = to_cents_exact(request.amount)
    except ValueError as e:
        raise InvalidAmountError(str(e))

    if amount_cents <= 0:
        raise InvalidAmountError("Payment amount must be greater than zero")

    amount_due = invoice.amount_due_cents
    if amount_cents > amount_due:
        raise AmountExceedsDueError(amount_cents, amount_due)

    try:
        method = PaymentMethod(request.method)
    except ValueError:
        valid = ", ".join(m.value for m in PaymentMethod)
        raise InvalidMethodError(
            f"Unknown payment method '{request.method}'. Valid methods: {valid}"
        )

    payment = Payment(
        id=uuid4(),
        amount_cents=amount_cents,
        method=method,
        transaction_id=request.transaction_id,
        notes=request.notes,
        recorded_at=now,
    )

    return ledger.apply_payment(invoice, payment, now)


class PaymentRecorder:
    """
    Load, validate, apply and persist one payment.

    Writes at most once per call and never retries. A concurrent writer
    surfaces as ConcurrentModificationError from the store; retrying is the
    caller's decision.
    """

    def __init__(self, store: InvoiceStore):
        self.store = store

    def record(
        self,
        invoice_id: UUID,
        request: PaymentRequest,
        now: datetime | None = None,
    ) -> Invoice:
        """
        Record a payment against a stored invoice.

        Args:
            invoice_id: Invoice UUID
            request: Proposed payment
            now: Recording time (defaults to current UTC time)

        Returns:
            The saved invoice

        Raises:
            InvoiceNotFoundError: Invoice does not exist
            PaymentError: Any validation failure (nothing is written)
            ConcurrentModificationError: Invoice changed since it was loaded
        """
        now = now or now_utc()
        return self.apply(self.store.load(invoice_id), request, now)

    def apply(self, invoice: Invoice, request: PaymentRequest, now: datetime) -> Invoice:
        """
        Validate a payment against an already loaded invoice and persist it.

        The save only lands if the stored invoice is still exactly `invoice`,
        so the result is always derived from the state that was validated.

        Raises:
            PaymentError: Any validation failure (nothing is written)
            ConcurrentModificationError: Invoice changed since it was loaded
        """
        try:
            updated = record_payment(invoice, request, now)
        except PaymentError as e:
            logger.warning(f"Rejected payment on {invoice.invoice_number}: {e.code} ({e})")
            raise

        self.store.save(updated)

        logger.info(
            f"Recorded payment of {updated.payments[-1].amount_cents} cents "
            f"on {updated.invoice_number}, status {updated.status.value}"
        )
        return updated
