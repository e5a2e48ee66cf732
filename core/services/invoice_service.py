"""
Invoice service for billing and payments.

Account-scoped entry point for the API layer. Every read re-evaluates the
invoice status at the current time in the account's business timezone;
every write goes load -> ledger transition -> versioned save -> audit ->
event. Payments are applied through PaymentRecorder and retried here when
another writer changed the invoice in between.
"""

import logging
from datetime import date, datetime, timedelta
from uuid import UUID

from core import ledger
from core.audit import AuditLogger, AuditAction, describe_transition
from core.config import LedgerConfig
from core.delivery import InvoiceDelivery
from core.event_bus import EventBus
from core.events import (
    InvoiceCancelled,
    InvoiceCreated,
    InvoiceDeleted,
    InvoicePaid,
    InvoiceSent,
    InvoiceUpdated,
    InvoiceViewed,
    PaymentRecorded,
)
from core.exceptions import ConcurrentModificationError, InvoiceNotFoundError
from core.models import Invoice, InvoiceCreate, InvoiceStatus, InvoiceUpdate, PaymentRequest
from core.money import average_cents
from core.payment_recorder import PaymentRecorder
from core.store import InvoiceStore
from utils.account_context import get_current_account_id
from utils.timezone import local_day_start, now_utc, to_local

UNPAID_STATUSES = frozenset({
    InvoiceStatus.SENT, InvoiceStatus.VIEWED,
    InvoiceStatus.PARTIALLY_PAID, InvoiceStatus.OVERDUE,
})

logger = logging.getLogger(__name__)


class InvoiceService:
    """Service for invoice operations."""

    def __init__(
        self,
        store: InvoiceStore,
        audit: AuditLogger,
        event_bus: EventBus,
        delivery: InvoiceDelivery,
        config: LedgerConfig | None = None,
    ):
        self.store = store
        self.audit = audit
        self.event_bus = event_bus
        self.delivery = delivery
        self.config = config or LedgerConfig()
        self.recorder = PaymentRecorder(store)

    def _now(self) -> datetime:
        """Current time in the account's business timezone."""
        return to_local(now_utc(), self.config.timezone)

    def _generate_invoice_number(self, account_id: UUID, now: datetime) -> str:
        """
        Generate the next invoice number for an account.

        Format: INV-YYYY-NNNN where NNNN is the account's invoice counter,
        allocated atomically by the store so concurrent creates never collide.
        """
        sequence = self.store.next_sequence(account_id)
        return f"{self.config.invoice_number_prefix}-{now.year}-{sequence:04d}"

    def _load_owned(self, invoice_id: UUID) -> Invoice:
        """Load an invoice of the current account; others are not found."""
        invoice = self.store.load(invoice_id)
        if invoice.account_id != get_current_account_id():
            raise InvoiceNotFoundError(invoice_id)
        return invoice

    def create(self, data: InvoiceCreate) -> Invoice:
        """
        Create a draft invoice.

        Args:
            data: Client, line items, discount and terms

        Returns:
            Created invoice in DRAFT status

        Raises:
            ValueError: If amounts are finer than a cent or discount exceeds subtotal
        """
        account_id = get_current_account_id()
        now = self._now()

        invoice = ledger.build_invoice(
            data,
            account_id=account_id,
            invoice_number=self._generate_invoice_number(account_id, now),
            now=now,
            config=self.config,
        )
        self.store.insert(invoice)

        self.audit.log_change(
            invoice_id=invoice.id,
            action=AuditAction.CREATE,
            changes={"created": invoice.model_dump(mode="json")}
        )
        logger.info(f"Created invoice {invoice.invoice_number} for client {invoice.client_id}")

        self.event_bus.publish(InvoiceCreated(invoice=invoice))
        return invoice

    def get_by_id(self, invoice_id: UUID) -> Invoice:
        """
        Get invoice by ID with its status evaluated now.

        Raises:
            InvoiceNotFoundError: If missing or owned by another account
        """
        return ledger.refresh(self._load_owned(invoice_id), self._now())

    def update(self, invoice_id: UUID, data: InvoiceUpdate) -> Invoice:
        """
        Edit a draft invoice.

        Raises:
            InvoiceNotFoundError: If missing
            InvoiceNotDraftError: If already sent or cancelled
            ValueError: If amounts are finer than a cent or discount exceeds subtotal
        """
        current = self._load_owned(invoice_id)
        updated = ledger.revise_draft(current, data, self._now())
        self.store.save(updated)

        self.audit.log_change(
            invoice_id=invoice_id,
            action=AuditAction.UPDATE,
            changes=describe_transition(current, updated)
        )
        logger.info(f"Updated draft invoice {updated.invoice_number}")

        self.event_bus.publish(InvoiceUpdated(invoice=updated))
        return updated

    def delete(self, invoice_id: UUID) -> None:
        """
        Delete a draft invoice. Its number is not reused.

        Raises:
            InvoiceNotFoundError: If missing
            InvoiceNotDraftError: If already sent or cancelled
            ConcurrentModificationError: If it changed while being deleted
        """
        current = self._load_owned(invoice_id)
        ledger.ensure_draft(current)
        self.store.delete(current)

        self.audit.log_change(
            invoice_id=invoice_id,
            action=AuditAction.DELETE,
            changes={"deleted": current.model_dump(mode="json")}
        )
        logger.info(f"Deleted draft invoice {current.invoice_number}")

        self.event_bus.publish(InvoiceDeleted(invoice=current))

    def send(self, invoice_id: UUID) -> Invoice:
        """
        Send (or re-send) an invoice to its client.

        Raises:
            InvoiceNotFoundError: If missing
            InvoiceCancelledError: If cancelled
        """
        current = self._load_owned(invoice_id)
        updated = ledger.mark_sent(current, self._now())
        self.store.save(updated)

        self.audit.log_change(
            invoice_id=invoice_id,
            action=AuditAction.SEND,
            changes=describe_transition(current, updated)
        )
        logger.info(f"Sent invoice {updated.invoice_number}")

        self.event_bus.publish(InvoiceSent(invoice=updated))
        return updated

    def mark_viewed(self, invoice_id: UUID) -> Invoice:
        """
        Record that the client opened the invoice.

        Only the first view is recorded; later views return the invoice as is.

        Raises:
            InvoiceNotFoundError: If missing
            InvoiceNotSentError: If still a draft
        """
        current = self._load_owned(invoice_id)
        now = self._now()
        updated = ledger.mark_viewed(current, now)
        if updated is current:
            return ledger.refresh(current, now)

        self.store.save(updated)
        self.audit.log_change(
            invoice_id=invoice_id,
            action=AuditAction.VIEW,
            changes=describe_transition(current, updated)
        )

        self.event_bus.publish(InvoiceViewed(invoice=updated))
        return updated

    def cancel(self, invoice_id: UUID) -> Invoice:
        """
        Cancel an invoice. Recorded payments are kept.

        Raises:
            InvoiceNotFoundError: If missing
            InvoiceAlreadyPaidError: If fully paid
        """
        current = self._load_owned(invoice_id)
        updated = ledger.cancel(current, self._now())
        if updated is current:
            return current

        self.store.save(updated)
        self.audit.log_change(
            invoice_id=invoice_id,
            action=AuditAction.CANCEL,
            changes=describe_transition(current, updated)
        )
        logger.info(f"Cancelled invoice {updated.invoice_number}")

        self.event_bus.publish(InvoiceCancelled(invoice=updated))
        return updated

    def record_payment(self, invoice_id: UUID, request: PaymentRequest) -> Invoice:
        """
        Record a payment on an invoice.

        Reloads and retries when a concurrent write wins the version check,
        up to config.max_conflict_retries attempts. Validation failures are
        never retried.

        Args:
            invoice_id: Invoice UUID
            request: Amount, method and optional reference

        Returns:
            Updated invoice (status may become PARTIALLY_PAID or PAID)

        Raises:
            InvoiceNotFoundError: If missing
            PaymentError: If the payment is rejected
            ConcurrentModificationError: If every attempt lost a race
        """
        attempts = self.config.max_conflict_retries

        for attempt in range(1, attempts + 1):
            current = self._load_owned(invoice_id)
            try:
                updated = self.recorder.apply(current, request, self._now())
                break
            except ConcurrentModificationError:
                if attempt == attempts:
                    logger.error(
                        f"Giving up on payment for invoice {invoice_id} "
                        f"after {attempts} conflicting attempts"
                    )
                    raise
                logger.warning(
                    f"Concurrent update on invoice {invoice_id}, "
                    f"retrying payment ({attempt}/{attempts})"
                )

        payment = updated.payments[-1]
        changes = describe_transition(current, updated)
        changes["payment"] = payment.model_dump(mode="json")
        self.audit.log_change(
            invoice_id=invoice_id,
            action=AuditAction.PAYMENT,
            changes=changes
        )

        self.event_bus.publish(PaymentRecorded(invoice=updated, payment=payment))
        if updated.status == InvoiceStatus.PAID:
            self.event_bus.publish(InvoicePaid(invoice=updated, payment=payment))

        return updated

    def _issued_range(
        self, from_date: date | None, to_date: date | None
    ) -> tuple[datetime | None, datetime | None]:
        """Inclusive local issue dates as a [start, end) UTC instant range."""
        if from_date and to_date and from_date > to_date:
            raise ValueError("from_date must not be after to_date")

        tz = self.config.timezone
        start = local_day_start(from_date, tz) if from_date else None
        end = local_day_start(to_date + timedelta(days=1), tz) if to_date else None
        return start, end

    def _evaluated(self, now: datetime, limit: int | None = None, **filters) -> list[Invoice]:
        invoices = self.store.list_for_account(get_current_account_id(), limit=limit, **filters)
        return [ledger.refresh(inv, now) for inv in invoices]

    def list_invoices(
        self,
        client_id: UUID | None = None,
        status: InvoiceStatus | None = None,
        overdue: bool = False,
        from_date: date | None = None,
        to_date: date | None = None,
        limit: int = 50,
    ) -> list[Invoice]:
        """
        List the account's invoices, newest first, statuses evaluated now.

        Status and overdue depend on the current time, so they are applied
        to every stored match before `limit` is.

        Args:
            client_id: Only this client's invoices
            status: Only invoices currently in this status
            overdue: Only invoices with a balance past their due date
                (includes partially paid ones)
            from_date: Only invoices issued on or after this local date
            to_date: Only invoices issued on or before this local date
            limit: Maximum results
        """
        now = self._now()
        issued_from, issued_before = self._issued_range(from_date, to_date)
        time_filtered = status is not None or overdue

        invoices = self._evaluated(
            now,
            limit=None if time_filtered else limit,
            client_id=client_id,
            issued_from=issued_from,
            issued_before=issued_before,
        )

        if status is not None:
            invoices = [inv for inv in invoices if inv.status == status]
        if overdue:
            invoices = [inv for inv in invoices if ledger.is_overdue(inv, now)]
        return invoices[:limit]

    def list_unpaid(self, limit: int = 50) -> list[Invoice]:
        """Issued invoices with a balance, soonest due first."""
        invoices = [inv for inv in self._evaluated(self._now()) if inv.status in UNPAID_STATUSES]
        invoices.sort(key=lambda inv: inv.due_date)
        return invoices[:limit]

    def summarize(self, invoices: list[Invoice]) -> dict:
        """
        Totals across a list of invoices, in cents.

        Cancelled invoices count toward total_invoices only.
        """
        now = self._now()
        active = [inv for inv in invoices if inv.status != InvoiceStatus.CANCELLED]
        return {
            "total_invoices": len(invoices),
            "total_amount_cents": sum(inv.total_amount_cents for inv in active),
            "total_paid_cents": sum(inv.amount_paid_cents for inv in active),
            "total_outstanding_cents": sum(inv.amount_due_cents for inv in active),
            "overdue_count": sum(1 for inv in active if ledger.is_overdue(inv, now)),
        }

    def stats(self, period_days: int = 30) -> dict:
        """
        Overview of invoices created in the last `period_days` days.

        Money totals and the average skip cancelled invoices, as summarize()
        does; status_breakdown counts every invoice under its status now.
        """
        if period_days < 1:
            raise ValueError("period must be at least one day")

        now = self._now()
        invoices = self._evaluated(now, created_from=now - timedelta(days=period_days))
        summary = self.summarize(invoices)
        active = sum(1 for inv in invoices if inv.status != InvoiceStatus.CANCELLED)

        breakdown: dict[str, dict[str, int]] = {}
        for inv in invoices:
            entry = breakdown.setdefault(inv.status.value, {"count": 0, "amount_cents": 0})
            entry["count"] += 1
            entry["amount_cents"] += inv.total_amount_cents

        return {
            "period_days": period_days,
            **summary,
            "avg_amount_cents": average_cents(summary["total_amount_cents"], active),
            "status_breakdown": breakdown,
        }

    def is_overdue(self, invoice: Invoice) -> bool:
        """Whether the invoice has a balance past its due date right now."""
        return ledger.is_overdue(invoice, self._now())

    def render_document(self, invoice_id: UUID) -> bytes:
        """Rendered invoice document for download."""
        return self.delivery.generate_document(self.get_by_id(invoice_id))
