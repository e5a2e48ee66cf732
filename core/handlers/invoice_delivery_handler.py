"""
Handlers that deliver invoices and receipts.

On InvoiceSent, emails the invoice document to the client.
On PaymentRecorded, emails a receipt for that payment.
"""

import logging
from typing import Callable

from core.delivery import InvoiceDelivery
from core.event_bus import EventBus
from core.events import InvoiceSent, PaymentRecorded

logger = logging.getLogger(__name__)


def handle_invoice_sent(delivery: InvoiceDelivery) -> Callable:
    """
    Factory that returns an InvoiceSent handler.

    Args:
        delivery: InvoiceDelivery implementation

    Returns:
        Handler callable that sends the invoice to the client
    """

    def handler(event: InvoiceSent):
        delivery.send_invoice(event.invoice)
        logger.info(f"Delivered invoice {event.invoice.invoice_number}")

    return handler


def handle_payment_recorded(delivery: InvoiceDelivery) -> Callable:
    """
    Factory that returns a PaymentRecorded handler.

    Args:
        delivery: InvoiceDelivery implementation

    Returns:
        Handler callable that sends a payment receipt
    """

    def handler(event: PaymentRecorded):
        delivery.send_receipt(event.invoice, event.payment)

    return handler


def register_delivery_handlers(event_bus: EventBus, delivery: InvoiceDelivery) -> None:
    """Subscribe the delivery handlers to the bus."""
    event_bus.subscribe(InvoiceSent, handle_invoice_sent(delivery))
    event_bus.subscribe(PaymentRecorded, handle_payment_recorded(delivery))
