import logging

from common.events import INVOICE_EVENTS, PAYMENT_EVENTS, USER_EVENTS, Envelope, LowStockAlert, decode_event
from common.kafka.events_config import *
from notification import templates
from notification.mailer import Mailer

NOTIFICATION_EVENTS = {
    **PAYMENT_EVENTS,
    **INVOICE_EVENTS,
    **USER_EVENTS,
    EVENT_LOW_STOCK_ALERT: LowStockAlert,
}

TEMPLATES = {
    EVENT_PAYMENT_INITIALIZED: templates.payment_initialized,
    EVENT_PAYMENT_COMPLETED: templates.payment_completed,
    EVENT_PAYMENT_FAILED: templates.payment_failed,
    EVENT_INVOICE_CREATED: templates.invoice_created,
    EVENT_INVOICE_UPDATED: templates.invoice_updated,
    EVENT_USER_REGISTERED: templates.user_registered,
    EVENT_PASSWORD_RESET_REQUESTED: templates.password_reset_requested,
    EVENT_LOW_STOCK_ALERT: templates.low_stock_alert,
}


def event_type_of(event: Envelope) -> str:
    return type(event).__struct_config__.tag


class NotificationDispatcher:
    """Renders each event with its template and hands the result to the mailer."""

    def __init__(self, mailer: Mailer, logger=None):
        self.mailer = mailer
        self.logger = logger or logging.getLogger("notification-service")

    async def dispatch(self, raw: bytes):
        event = decode_event(raw, NOTIFICATION_EVENTS)
        event_type = event_type_of(event)
        self.logger.info(f"Received {event_type} eventId={event.event_id}")

        email = TEMPLATES[event_type](event)
        if not email.to:
            self.logger.warning(f"Cannot send {event_type} email for eventId={event.event_id}: recipient is missing")
            return
        await self.mailer.send(email)
