"""
Event bus for ledger events.

Synchronous in-process pub/sub. Handlers execute immediately in the same
thread as the publisher. Handler errors are logged but never propagate:
the invoice write has already been saved, and delivery failures must not
turn a recorded payment into a failed request.
"""

import logging
from typing import Callable

from core.events import LedgerEvent

logger = logging.getLogger(__name__)


class EventBus:
    """
    In-process event bus keyed by event class.

    A handler subscribed to a base class (e.g. InvoiceEvent) also receives
    every subclass. Handlers run in subscription order within each class,
    most specific class first.
    """

    def __init__(self):
        self._subscribers: dict[type[LedgerEvent], list[Callable]] = {}

    def subscribe(self, event_type: type[LedgerEvent], callback: Callable) -> None:
        """
        Subscribe to events of a class and its subclasses.

        Args:
            event_type: Event class to subscribe to (e.g. InvoicePaid)
            callback: Function called with the event instance
        """
        self._subscribers.setdefault(event_type, []).append(callback)

    def publish(self, event: LedgerEvent) -> None:
        """
        Publish an event to every matching subscriber.

        Args:
            event: LedgerEvent instance to publish
        """
        event_name = type(event).__name__

        for event_type in type(event).__mro__:
            for callback in self._subscribers.get(event_type, []):
                try:
                    callback(event)
                except Exception:
                    logger.exception(
                        "Handler %s failed for %s (event_id=%s)",
                        getattr(callback, "__name__", repr(callback)),
                        event_name,
                        event.event_id,
                    )
