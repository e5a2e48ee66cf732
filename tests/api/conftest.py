"""API test fixtures — account-scoped TestClient over in-memory services."""

import pytest
from starlette.testclient import TestClient

from api.app import create_app


# =============================================================================
# SERVICES DICT
# =============================================================================


@pytest.fixture
def services(invoice_service):
    return {
        "invoice": invoice_service,
    }


# =============================================================================
# APP & CLIENT FIXTURES
# =============================================================================


@pytest.fixture
def app(services):
    """FastAPI app with account middleware, error handlers, and data/actions routes."""
    return create_app(services)


@pytest.fixture
def client(app, account_id):
    """Test client acting as the primary test account."""
    return TestClient(
        app,
        raise_server_exceptions=False,
        headers={"X-Account-ID": str(account_id)},
    )


@pytest.fixture
def client_b(app, account_b_id):
    """Test client acting as the secondary test account."""
    return TestClient(
        app,
        raise_server_exceptions=False,
        headers={"X-Account-ID": str(account_b_id)},
    )


@pytest.fixture
def unauthed_client(app):
    """Test client without an account header."""
    return TestClient(app, raise_server_exceptions=False)


# =============================================================================
# TEST DATA FIXTURES
# =============================================================================


@pytest.fixture
def sample_invoice(as_account, invoice_service, invoice_create):
    """A sent USD 1,000.00 invoice."""
    return invoice_service.send(invoice_service.create(invoice_create).id)


@pytest.fixture
def draft_invoice(as_account, invoice_service, invoice_create):
    return invoice_service.create(invoice_create)
