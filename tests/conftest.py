"""Shared test fixtures for the invoice ledger test suite."""

import os
import pytest
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from unittest.mock import Mock
from uuid import UUID, uuid4

from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
# override=True ensures .env takes precedence over shell env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

# Reset vault client singleton to pick up env vars
import clients.vault_client as vault_module
vault_module._vault_client_instance = None
vault_module._secret_cache.clear()

from core.audit import AuditLogger
from core.config import LedgerConfig
from core.delivery import EmailInvoiceDelivery
from core.event_bus import EventBus
from core.models import (
    Invoice,
    InvoiceCreate,
    InvoiceStatus,
    LineItem,
    LineItemCreate,
    Payment,
    PaymentMethod,
)
from core.money import line_amount_cents
from core.services.invoice_service import InvoiceService
from core.store import InMemoryInvoiceStore
from utils.account_context import account_context, clear_current_account_id


# =============================================================================
# TEST ACCOUNT CONSTANTS
# =============================================================================

# Primary test account - use for single-account tests
TEST_ACCOUNT_ID = UUID("00000000-0000-0000-0000-000000000001")

# Secondary test account - use for isolation tests
TEST_ACCOUNT_B_ID = UUID("00000000-0000-0000-0000-000000000002")

TEST_CLIENT_ID = UUID("00000000-0000-0000-0000-0000000000c1")

# Fixed clock for pure ledger tests: 15 March 2026, midday UTC
TEST_NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# ACCOUNT CONTEXT FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_account_context():
    """Ensure clean account context before and after each test."""
    clear_current_account_id()
    yield
    clear_current_account_id()


@pytest.fixture
def account_id() -> UUID:
    """The primary test account's ID."""
    return TEST_ACCOUNT_ID


@pytest.fixture
def account_b_id() -> UUID:
    """The secondary test account's ID (for isolation tests)."""
    return TEST_ACCOUNT_B_ID


@pytest.fixture
def as_account(account_id):
    """Act as the primary test account."""
    with account_context(account_id):
        yield account_id


@pytest.fixture
def as_account_b(account_b_id):
    """Act as the secondary test account."""
    with account_context(account_b_id):
        yield account_b_id


# =============================================================================
# DOMAIN FACTORIES — in-memory, no DB needed
# =============================================================================


@pytest.fixture
def now() -> datetime:
    return TEST_NOW


@pytest.fixture
def make_invoice(account_id):
    """
    Factory for stored-shape invoices.

    Defaults to a sent USD 1,000.00 invoice that fell due the day before
    TEST_NOW, with no payments.
    """

    def _make(
        rate_cents: int = 100000,
        quantity: Decimal = Decimal(1),
        discount_cents: int = 0,
        status: InvoiceStatus = InvoiceStatus.SENT,
        due_date: date = date(2026, 3, 14),
        payments: list[Payment] | None = None,
        **overrides,
    ) -> Invoice:
        issued = None if status == InvoiceStatus.DRAFT else TEST_NOW
        fields = dict(
            id=uuid4(),
            account_id=account_id,
            invoice_number="INV-2026-0001",
            client_id=TEST_CLIENT_ID,
            client_name="Acme Studio",
            client_email="billing@acme.test",
            title="March retainer",
            status=status,
            currency="USD",
            line_items=[LineItem(
                description="Design work",
                rate_cents=rate_cents,
                quantity=quantity,
                amount_cents=line_amount_cents(rate_cents, quantity),
            )],
            discount_cents=discount_cents,
            due_date=due_date,
            payments=payments or [],
            issued_at=issued,
            sent_at=issued,
            version=0,
            created_at=TEST_NOW,
            updated_at=TEST_NOW,
        )
        fields.update(overrides)
        return Invoice(**fields)

    return _make


@pytest.fixture
def make_payment():
    """Factory for recorded payments."""

    def _make(
        amount_cents: int,
        method: PaymentMethod = PaymentMethod.BANK_TRANSFER,
        **overrides,
    ) -> Payment:
        fields = dict(
            id=uuid4(),
            amount_cents=amount_cents,
            method=method,
            transaction_id=None,
            notes=None,
            recorded_at=TEST_NOW,
        )
        fields.update(overrides)
        return Payment(**fields)

    return _make


@pytest.fixture
def invoice_create() -> InvoiceCreate:
    """One USD 1,000.00 line, default terms."""
    return InvoiceCreate(
        client_id=TEST_CLIENT_ID,
        client_name="Acme Studio",
        client_email="billing@acme.test",
        title="March retainer",
        line_items=[LineItemCreate(description="Design work", rate=Decimal("1000.00"))],
    )


# =============================================================================
# SERVICE FIXTURES — in-memory store, mocked audit and delivery
# =============================================================================


@pytest.fixture
def ledger_config() -> LedgerConfig:
    return LedgerConfig()


@pytest.fixture
def store() -> InMemoryInvoiceStore:
    return InMemoryInvoiceStore()


@pytest.fixture
def audit():
    return Mock(spec=AuditLogger)


@pytest.fixture
def delivery():
    return Mock(spec=EmailInvoiceDelivery)


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def invoice_service(store, audit, event_bus, delivery, ledger_config) -> InvoiceService:
    return InvoiceService(store, audit, event_bus, delivery, ledger_config)


# =============================================================================
# DATABASE FIXTURES
# =============================================================================


@pytest.fixture(scope="session")
def db():
    """Session-scoped PostgresClient. Skips when Vault is not configured."""
    if not os.getenv("VAULT_ADDR"):
        pytest.skip("VAULT_ADDR not set; PostgreSQL tests need a database")

    from clients.postgres_client import PostgresClient
    from clients.vault_client import get_database_url

    client = PostgresClient(get_database_url())
    yield client
    client.close()
