"""FastAPI application assembly."""

import logging

from fastapi import FastAPI

from api.actions import create_actions_router
from api.data import create_data_router
from api.errors import register_error_handlers
from api.middleware import AccountContextMiddleware, RequestIDMiddleware
from clients.email_client import EmailGatewayClient
from clients.postgres_client import PostgresClient
from clients.vault_client import get_database_url, get_email_config
from core.audit import AuditLogger
from core.config import LedgerConfig
from core.delivery import EmailInvoiceDelivery
from core.event_bus import EventBus
from core.handlers.invoice_delivery_handler import register_delivery_handlers
from core.postgres_store import PostgresInvoiceStore
from core.services.invoice_service import InvoiceService

logger = logging.getLogger(__name__)


def configure_logging(level: int | str = logging.INFO) -> None:
    """Process-wide logging setup. Library modules only create loggers."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_services(config: LedgerConfig | None = None) -> dict:
    """
    Wire production services from Vault-held secrets.

    Creates the ledger tables if missing.
    """
    postgres = PostgresClient(get_database_url())
    store = PostgresInvoiceStore(postgres)
    store.ensure_schema()
    audit = AuditLogger(postgres)
    audit.ensure_schema()

    delivery = EmailInvoiceDelivery(EmailGatewayClient(**get_email_config()))
    event_bus = EventBus()
    register_delivery_handlers(event_bus, delivery)

    return {
        "invoice": InvoiceService(store, audit, event_bus, delivery, config),
    }


def create_app(services: dict) -> FastAPI:
    """FastAPI app with account context, error handlers, and data/actions routes."""
    app = FastAPI(title="Invoice Ledger")
    app.add_middleware(AccountContextMiddleware)
    # Added last so it runs first and the 401 response carries the request id
    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)

    app.include_router(create_data_router(services), prefix="/api")
    app.include_router(create_actions_router(services), prefix="/api")

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    logger.info("Invoice ledger API ready")
    return app
