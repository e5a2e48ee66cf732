"""Tests for InvoiceService with an in-memory store."""

import threading

import pytest
from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import Mock
from uuid import uuid4

from core import ledger
from core.audit import AuditAction
from core.config import LedgerConfig
from core.events import (
    InvoiceCancelled,
    InvoiceCreated,
    InvoiceDeleted,
    InvoiceEvent,
    InvoicePaid,
    InvoiceSent,
    InvoiceUpdated,
    InvoiceViewed,
    PaymentRecorded,
)
from core.exceptions import (
    AmountExceedsDueError,
    ConcurrentModificationError,
    InvoiceAlreadyPaidError,
    InvoiceCancelledError,
    InvoiceNotDraftError,
    InvoiceNotFoundError,
    InvoiceNotSentError,
)
from core.models import InvoiceStatus, InvoiceUpdate, LineItemCreate, PaymentRequest
from core.services.invoice_service import InvoiceService
from core.store import InMemoryInvoiceStore
from utils.account_context import account_context
from utils.timezone import now_utc, to_local


def _pay(amount: str, method: str = "bank_transfer") -> PaymentRequest:
    return PaymentRequest(amount=Decimal(amount), method=method)


@pytest.fixture
def published(event_bus):
    """Every event published on the bus, in order."""
    events = []
    event_bus.subscribe(InvoiceEvent, events.append)
    return events


@pytest.fixture
def draft(as_account, invoice_service, invoice_create):
    return invoice_service.create(invoice_create)


@pytest.fixture
def sent(invoice_service, draft):
    return invoice_service.send(draft.id)


@pytest.fixture
def overdue_sent(as_account, invoice_service, invoice_create):
    data = invoice_create.model_copy(update={"due_date": now_utc().date() - timedelta(days=3)})
    return invoice_service.send(invoice_service.create(data).id)


# =============================================================================
# CREATE
# =============================================================================


class TestCreate:

    def test_creates_draft(self, as_account, invoice_service, invoice_create, account_id):
        invoice = invoice_service.create(invoice_create)

        assert invoice.status == InvoiceStatus.DRAFT
        assert invoice.account_id == account_id
        assert invoice.total_amount_cents == 100000
        assert invoice.currency == "USD"

    def test_invoice_numbers_sequential_per_account(
        self, invoice_service, invoice_create, account_id, account_b_id
    ):
        year = now_utc().year
        with account_context(account_id):
            first = invoice_service.create(invoice_create)
            second = invoice_service.create(invoice_create)
        with account_context(account_b_id):
            other = invoice_service.create(invoice_create)

        assert first.invoice_number == f"INV-{year}-0001"
        assert second.invoice_number == f"INV-{year}-0002"
        assert other.invoice_number == f"INV-{year}-0001"

    def test_concurrent_creates_get_distinct_numbers(
        self, invoice_service, invoice_create, account_id, store
    ):
        barrier = threading.Barrier(12)
        numbers = []
        errors = []
        results_lock = threading.Lock()

        def create():
            with account_context(account_id):
                barrier.wait()
                try:
                    invoice = invoice_service.create(invoice_create)
                except ValueError as e:
                    with results_lock:
                        errors.append(e)
                    return
                with results_lock:
                    numbers.append(invoice.invoice_number)

        threads = [threading.Thread(target=create) for _ in range(12)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(set(numbers)) == 12
        assert len(store.list_for_account(account_id)) == 12

    def test_custom_prefix(self, as_account, store, audit, event_bus, delivery, invoice_create):
        service = InvoiceService(
            store, audit, event_bus, delivery, LedgerConfig(invoice_number_prefix="ACME")
        )

        assert service.create(invoice_create).invoice_number.startswith("ACME-")

    def test_audits_and_publishes(self, as_account, invoice_service, invoice_create, audit, published):
        invoice = invoice_service.create(invoice_create)

        audit.log_change.assert_called_once()
        kwargs = audit.log_change.call_args.kwargs
        assert kwargs["invoice_id"] == invoice.id
        assert kwargs["action"] == AuditAction.CREATE
        assert isinstance(published[0], InvoiceCreated)

    def test_requires_account_context(self, invoice_service, invoice_create):
        with pytest.raises(RuntimeError, match="No account context"):
            invoice_service.create(invoice_create)

    def test_discount_above_subtotal(self, as_account, invoice_service, invoice_create, store, account_id):
        data = invoice_create.model_copy(update={"discount": Decimal("2000")})

        with pytest.raises(ValueError, match="Discount"):
            invoice_service.create(data)

        assert store.list_for_account(account_id) == []


# =============================================================================
# DRAFT EDITING
# =============================================================================


class TestUpdateDraft:

    def test_update_fields(self, invoice_service, draft, audit, published):
        updated = invoice_service.update(draft.id, InvoiceUpdate(
            title="April retainer",
            discount=Decimal("100.00"),
            line_items=[LineItemCreate(description="Design", rate=Decimal("500.00"), quantity=Decimal("3"))],
        ))

        assert updated.title == "April retainer"
        assert updated.total_amount_cents == 140000
        assert updated.invoice_number == draft.invoice_number
        assert updated.currency == draft.currency
        assert updated.version == draft.version + 1
        assert invoice_service.get_by_id(draft.id).total_amount_cents == 140000

        kwargs = audit.log_change.call_args.kwargs
        assert kwargs["action"] == AuditAction.UPDATE
        assert kwargs["changes"]["title"] == {"old": "March retainer", "new": "April retainer"}
        assert isinstance(published[-1], InvoiceUpdated)

    def test_unset_fields_untouched(self, invoice_service, draft):
        updated = invoice_service.update(draft.id, InvoiceUpdate(notes="Net 15"))

        assert updated.notes == "Net 15"
        assert updated.client_name == draft.client_name
        assert updated.line_items == draft.line_items
        assert updated.due_date == draft.due_date

    def test_sent_invoice_cannot_be_edited(self, invoice_service, sent):
        with pytest.raises(InvoiceNotDraftError):
            invoice_service.update(sent.id, InvoiceUpdate(title="Changed"))

    def test_discount_above_subtotal_rejected(self, invoice_service, draft):
        with pytest.raises(ValueError, match="discount"):
            invoice_service.update(draft.id, InvoiceUpdate(discount=Decimal("5000")))

        assert invoice_service.get_by_id(draft.id).version == draft.version

    def test_clearing_required_field_rejected(self, invoice_service, draft):
        with pytest.raises(ValueError):
            invoice_service.update(draft.id, InvoiceUpdate(client_name=None))

    def test_other_account_cannot_edit(self, invoice_service, draft, as_account_b):
        with pytest.raises(InvoiceNotFoundError):
            invoice_service.update(draft.id, InvoiceUpdate(title="Mine now"))


class TestDeleteDraft:

    def test_delete(self, invoice_service, draft, audit, published):
        invoice_service.delete(draft.id)

        with pytest.raises(InvoiceNotFoundError):
            invoice_service.get_by_id(draft.id)
        assert audit.log_change.call_args.kwargs["action"] == AuditAction.DELETE
        assert isinstance(published[-1], InvoiceDeleted)

    def test_sent_invoice_cannot_be_deleted(self, invoice_service, sent):
        with pytest.raises(InvoiceNotDraftError):
            invoice_service.delete(sent.id)

        assert invoice_service.get_by_id(sent.id).status == InvoiceStatus.SENT

    def test_number_not_reused(self, invoice_service, draft, invoice_create):
        invoice_service.delete(draft.id)

        again = invoice_service.create(invoice_create)

        assert again.invoice_number != draft.invoice_number

    def test_other_account_cannot_delete(self, invoice_service, draft, as_account_b):
        with pytest.raises(InvoiceNotFoundError):
            invoice_service.delete(draft.id)


# =============================================================================
# LIFECYCLE
# =============================================================================


class TestSend:

    def test_send_draft(self, invoice_service, draft, published):
        sent = invoice_service.send(draft.id)

        assert sent.status == InvoiceStatus.SENT
        assert sent.issued_at is not None
        assert invoice_service.get_by_id(draft.id).version == 1
        assert isinstance(published[-1], InvoiceSent)

    def test_resend(self, invoice_service, sent):
        resent = invoice_service.send(sent.id)

        assert resent.issued_at == sent.issued_at
        assert resent.version == sent.version + 1

    def test_send_cancelled_rejected(self, invoice_service, draft):
        invoice_service.cancel(draft.id)

        with pytest.raises(InvoiceCancelledError):
            invoice_service.send(draft.id)

    def test_audit_records_status_change(self, invoice_service, draft, audit):
        invoice_service.send(draft.id)

        kwargs = audit.log_change.call_args.kwargs
        assert kwargs["action"] == AuditAction.SEND
        assert kwargs["changes"]["status"] == {"old": "draft", "new": "sent"}


class TestMarkViewed:

    def test_first_view(self, invoice_service, sent, published):
        viewed = invoice_service.mark_viewed(sent.id)

        assert viewed.status == InvoiceStatus.VIEWED
        assert isinstance(published[-1], InvoiceViewed)

    def test_repeat_view_writes_nothing(self, invoice_service, sent, audit, published):
        first = invoice_service.mark_viewed(sent.id)
        audit.log_change.reset_mock()
        published.clear()

        again = invoice_service.mark_viewed(sent.id)

        assert again.version == first.version
        assert again.viewed_at == first.viewed_at
        audit.log_change.assert_not_called()
        assert published == []

    def test_draft_rejected(self, invoice_service, draft):
        with pytest.raises(InvoiceNotSentError):
            invoice_service.mark_viewed(draft.id)


class TestCancel:

    def test_cancel(self, invoice_service, sent, published):
        cancelled = invoice_service.cancel(sent.id)

        assert cancelled.status == InvoiceStatus.CANCELLED
        assert isinstance(published[-1], InvoiceCancelled)

    def test_cancel_twice_is_noop(self, invoice_service, sent, audit):
        first = invoice_service.cancel(sent.id)
        audit.log_change.reset_mock()

        again = invoice_service.cancel(sent.id)

        assert again.version == first.version
        audit.log_change.assert_not_called()

    def test_paid_cannot_be_cancelled(self, invoice_service, sent):
        invoice_service.record_payment(sent.id, _pay("1000.00"))

        with pytest.raises(InvoiceAlreadyPaidError):
            invoice_service.cancel(sent.id)


# =============================================================================
# PAYMENTS
# =============================================================================


class TestRecordPayment:

    def test_partial_then_full(self, invoice_service, overdue_sent, published):
        assert invoice_service.get_by_id(overdue_sent.id).status == InvoiceStatus.OVERDUE

        partial = invoice_service.record_payment(overdue_sent.id, _pay("400.00"))
        assert partial.status == InvoiceStatus.PARTIALLY_PAID
        assert partial.amount_due_cents == 60000

        with pytest.raises(AmountExceedsDueError):
            invoice_service.record_payment(overdue_sent.id, _pay("700.00"))

        paid = invoice_service.record_payment(overdue_sent.id, _pay("600.00"))
        assert paid.status == InvoiceStatus.PAID
        assert paid.amount_due_cents == 0

        kinds = [type(e) for e in published]
        assert kinds[-3:] == [PaymentRecorded, PaymentRecorded, InvoicePaid]

    def test_audit_includes_payment(self, invoice_service, sent, audit):
        invoice_service.record_payment(sent.id, _pay("250.00", method="paypal"))

        kwargs = audit.log_change.call_args.kwargs
        assert kwargs["action"] == AuditAction.PAYMENT
        assert kwargs["changes"]["payment"]["amount_cents"] == 25000
        assert kwargs["changes"]["payment"]["method"] == "paypal"
        assert kwargs["changes"]["amount_paid_cents"] == {"old": 0, "new": 25000}

    def test_rejection_not_audited(self, invoice_service, sent, audit, published):
        audit.log_change.reset_mock()
        published.clear()

        with pytest.raises(AmountExceedsDueError):
            invoice_service.record_payment(sent.id, _pay("5000"))

        audit.log_change.assert_not_called()
        assert published == []

    def test_draft_rejected(self, invoice_service, draft):
        with pytest.raises(InvoiceNotSentError):
            invoice_service.record_payment(draft.id, _pay("10"))

    def test_retries_after_conflict(self, as_account, audit, event_bus, delivery, make_invoice):
        store = InMemoryInvoiceStore()
        invoice = make_invoice(due_date=date(2099, 1, 1))
        store.insert(invoice)
        real_save = store.save
        attempts = []

        def flaky_save(inv):
            attempts.append(inv.version)
            if len(attempts) == 1:
                raise ConcurrentModificationError(inv.id, inv.version - 1)
            real_save(inv)

        store.save = flaky_save
        service = InvoiceService(store, audit, event_bus, delivery, LedgerConfig())

        updated = service.record_payment(invoice.id, _pay("100.00"))

        assert attempts == [1, 1]
        assert updated.amount_paid_cents == 10000
        assert store.load(invoice.id).amount_paid_cents == 10000
        audit.log_change.assert_called_once()

    def test_audit_diff_uses_state_the_payment_was_applied_to(
        self, as_account, audit, event_bus, delivery, make_invoice, make_payment, now
    ):
        store = InMemoryInvoiceStore()
        invoice = make_invoice(due_date=date(2099, 1, 1))
        store.insert(invoice)
        real_load, real_save = store.load, store.save
        loads = []

        def counting_load(invoice_id):
            loads.append(invoice_id)
            return real_load(invoice_id)

        def racing_save(inv):
            if len(loads) == 1:
                # Another writer lands a payment first
                real_save(ledger.apply_payment(real_load(inv.id), make_payment(30000), now))
            real_save(inv)

        store.load = counting_load
        store.save = racing_save
        service = InvoiceService(store, audit, event_bus, delivery, LedgerConfig())

        updated = service.record_payment(invoice.id, _pay("100.00"))

        assert len(loads) == 2
        assert updated.amount_paid_cents == 40000
        changes = audit.log_change.call_args.kwargs["changes"]
        assert changes["amount_paid_cents"] == {"old": 30000, "new": 40000}

    def test_gives_up_after_max_attempts(self, as_account, audit, event_bus, delivery, make_invoice):
        invoice = make_invoice(due_date=date(2099, 1, 1))
        store = Mock(spec=InMemoryInvoiceStore)
        store.load.return_value = invoice
        store.save.side_effect = ConcurrentModificationError(invoice.id, 0)
        service = InvoiceService(
            store, audit, event_bus, delivery, LedgerConfig(max_conflict_retries=2)
        )

        with pytest.raises(ConcurrentModificationError):
            service.record_payment(invoice.id, _pay("100.00"))

        assert store.save.call_count == 2
        audit.log_change.assert_not_called()


# =============================================================================
# READS
# =============================================================================


class TestReads:

    def test_get_other_accounts_invoice_not_found(self, invoice_service, draft, as_account_b):
        with pytest.raises(InvoiceNotFoundError):
            invoice_service.get_by_id(draft.id)

    def test_get_missing(self, as_account, invoice_service):
        with pytest.raises(InvoiceNotFoundError):
            invoice_service.get_by_id(uuid4())

    def test_get_evaluates_status_now(self, invoice_service, overdue_sent):
        loaded = invoice_service.get_by_id(overdue_sent.id)

        assert loaded.status == InvoiceStatus.OVERDUE
        assert invoice_service.is_overdue(loaded) is True

    def test_list_filters(self, as_account, invoice_service, invoice_create, draft, overdue_sent):
        other_client = invoice_create.model_copy(update={"client_id": uuid4()})
        invoice_service.create(other_client)

        assert len(invoice_service.list_invoices()) == 3
        assert len(invoice_service.list_invoices(client_id=other_client.client_id)) == 1
        assert [i.id for i in invoice_service.list_invoices(status=InvoiceStatus.DRAFT)] != []
        assert [i.id for i in invoice_service.list_invoices(overdue=True)] == [overdue_sent.id]

    def test_overdue_filter_includes_partially_paid(self, invoice_service, overdue_sent):
        invoice_service.record_payment(overdue_sent.id, _pay("100.00"))

        overdue = invoice_service.list_invoices(overdue=True)
        assert [i.status for i in overdue] == [InvoiceStatus.PARTIALLY_PAID]

    def test_status_filters_apply_before_limit(
        self, as_account, invoice_service, invoice_create, overdue_sent
    ):
        # Newer current invoices would fill a limit taken before filtering
        for _ in range(3):
            invoice_service.send(invoice_service.create(invoice_create).id)

        overdue = invoice_service.list_invoices(overdue=True, limit=2)
        by_status = invoice_service.list_invoices(status=InvoiceStatus.OVERDUE, limit=2)

        assert [i.id for i in overdue] == [overdue_sent.id]
        assert [i.id for i in by_status] == [overdue_sent.id]
        assert len(invoice_service.list_invoices(status=InvoiceStatus.SENT, limit=2)) == 2

    def test_list_unpaid_limit_applies_after_filter(
        self, as_account, invoice_service, invoice_create, overdue_sent
    ):
        for _ in range(3):
            invoice_service.create(invoice_create)

        assert [i.id for i in invoice_service.list_unpaid(limit=1)] == [overdue_sent.id]

    def test_issue_date_range(self, as_account, invoice_service, invoice_create, sent):
        invoice_service.create(invoice_create)
        today = to_local(now_utc(), invoice_service.config.timezone).date()

        in_range = invoice_service.list_invoices(from_date=today, to_date=today)
        before = invoice_service.list_invoices(to_date=today - timedelta(days=1))
        after = invoice_service.list_invoices(from_date=today + timedelta(days=1))

        assert [i.id for i in in_range] == [sent.id]
        assert before == []
        assert after == []

    def test_issue_date_range_reversed(self, as_account, invoice_service):
        with pytest.raises(ValueError, match="from_date"):
            invoice_service.list_invoices(
                from_date=date(2026, 3, 2), to_date=date(2026, 3, 1)
            )

    def test_list_unpaid_sorted_by_due_date(
        self, as_account, invoice_service, invoice_create, overdue_sent, sent
    ):
        paid = invoice_service.send(invoice_service.create(invoice_create).id)
        invoice_service.record_payment(paid.id, _pay("1000.00"))

        unpaid = invoice_service.list_unpaid()

        assert [i.id for i in unpaid] == [overdue_sent.id, sent.id]

    def test_summarize_excludes_cancelled_amounts(self, invoice_service, sent, overdue_sent):
        invoice_service.record_payment(sent.id, _pay("250.00"))
        invoice_service.cancel(overdue_sent.id)

        summary = invoice_service.summarize(invoice_service.list_invoices())

        assert summary == {
            "total_invoices": 2,
            "total_amount_cents": 100000,
            "total_paid_cents": 25000,
            "total_outstanding_cents": 75000,
            "overdue_count": 0,
        }

    def test_render_document_delegates_to_delivery(self, invoice_service, sent, delivery):
        delivery.generate_document.return_value = b"INVOICE"

        assert invoice_service.render_document(sent.id) == b"INVOICE"
        assert delivery.generate_document.call_args.args[0].id == sent.id


class TestStats:

    def test_overview(self, as_account, invoice_service, invoice_create, sent, overdue_sent):
        invoice_service.record_payment(sent.id, _pay("250.00"))
        invoice_service.cancel(invoice_service.create(invoice_create).id)

        stats = invoice_service.stats()

        assert stats["period_days"] == 30
        assert stats["total_invoices"] == 3
        assert stats["total_amount_cents"] == 200000
        assert stats["total_paid_cents"] == 25000
        assert stats["total_outstanding_cents"] == 175000
        assert stats["overdue_count"] == 1
        assert stats["avg_amount_cents"] == 100000
        assert stats["status_breakdown"] == {
            "partially_paid": {"count": 1, "amount_cents": 100000},
            "overdue": {"count": 1, "amount_cents": 100000},
            "cancelled": {"count": 1, "amount_cents": 100000},
        }

    def test_period_excludes_older_invoices(
        self, as_account, invoice_service, store, make_invoice, sent
    ):
        store.insert(make_invoice(
            invoice_number="INV-OLD-0001",
            created_at=now_utc() - timedelta(days=40),
        ))

        assert invoice_service.stats(period_days=30)["total_invoices"] == 1
        assert invoice_service.stats(period_days=60)["total_invoices"] == 2

    def test_empty(self, as_account, invoice_service):
        stats = invoice_service.stats()

        assert stats["total_invoices"] == 0
        assert stats["avg_amount_cents"] == 0
        assert stats["status_breakdown"] == {}

    def test_period_must_be_positive(self, as_account, invoice_service):
        with pytest.raises(ValueError, match="period"):
            invoice_service.stats(period_days=0)


class TestInvoiceCreateLines:

    def test_fractional_quantities(self, as_account, invoice_service, invoice_create):
        data = invoice_create.model_copy(update={"line_items": [
            LineItemCreate(description="Consulting", rate=Decimal("95.00"), quantity=Decimal("2.25")),
        ]})

        invoice = invoice_service.create(data)

        assert invoice.total_amount_cents == 21375
