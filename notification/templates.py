"""Plain-text bodies for every customer and operations notification."""
import os

from msgspec import Struct

from common.events import (InvoiceEvent, LowStockAlert, PaymentEvent, UserEvent)

SIGNATURE = "ShopShoes Team"
RESET_PASSWORD_URL = os.environ.get("RESET_PASSWORD_URL", "http://localhost:3000/reset-password")
OPS_EMAIL = os.environ.get("OPS_EMAIL")


class Email(Struct):
    to: str | None
    subject: str
    body: str


def _customer(event) -> str:
    return event.customer_name or "Customer"


def _user(event: UserEvent) -> str:
    return event.full_name or event.username or "Customer"


def payment_initialized(event: PaymentEvent) -> Email:
    return Email(
        event.customer_email,
        f"Payment Initiated - Order #{event.invoice_id}",
        f"Dear {_customer(event)},\n\n"
        f"We have received your payment request for order #{event.invoice_id}.\n"
        f"Amount: {event.amount}\n"
        f"Payment Method: {event.payment_method}\n\n"
        "Your payment is being processed. We will notify you once it's completed.\n\n"
        "Thank you for shopping with us!\n"
        f"{SIGNATURE}",
    )


def payment_completed(event: PaymentEvent) -> Email:
    return Email(
        event.customer_email,
        f"Payment Confirmed - Order #{event.invoice_id}",
        f"Dear {_customer(event)},\n\n"
        f"Your payment for order #{event.invoice_id} has been successfully processed.\n"
        f"Amount: {event.amount}\n"
        f"Payment Method: {event.payment_method}\n"
        f"Transaction ID: {event.transaction_id}\n\n"
        "Thank you for your purchase!\n"
        f"{SIGNATURE}",
    )


def payment_failed(event: PaymentEvent) -> Email:
    return Email(
        event.customer_email,
        f"Payment Failed - Order #{event.invoice_id}",
        f"Dear {_customer(event)},\n\n"
        f"We're sorry, but your payment for order #{event.invoice_id} could not be processed.\n"
        f"Amount: {event.amount}\n"
        f"Payment Method: {event.payment_method}\n"
        f"Error: {event.error_message or 'Unknown error'}\n\n"
        "Please try again or contact our customer support for assistance.\n\n"
        f"{SIGNATURE}",
    )


def invoice_created(event: InvoiceEvent) -> Email:
    items = "".join(f"- Product {i.product_id} x{i.quantity}: ${i.price:.2f}\n" for i in event.items)
    return Email(
        event.customer_email,
        f"Your Order #{event.invoice_id} has been placed",
        f"Dear {_customer(event)},\n\n"
        "Thank you for your order!\n\n"
        f"Order #{event.invoice_id}\n"
        f"Date: {event.created_at}\n"
        f"Total Amount: ${event.total_amount or 0:.2f}\n\n"
        f"Items:\n{items}\n"
        "Please proceed to payment to complete your order.\n\n"
        f"{SIGNATURE}",
    )


def invoice_updated(event: InvoiceEvent) -> Email:
    return Email(
        event.customer_email,
        f"Order #{event.invoice_id} Status Update",
        f"Dear {_customer(event)},\n\n"
        f"Your order #{event.invoice_id} has been updated. The current status is: {event.status}\n\n"
        "Order Details:\n"
        f"Date: {event.created_at}\n"
        f"Total Amount: ${event.total_amount or 0:.2f}\n\n"
        "If you have any questions, please contact our customer support.\n\n"
        f"{SIGNATURE}",
    )


def user_registered(event: UserEvent) -> Email:
    return Email(
        event.email,
        "Welcome to ShopShoes!",
        f"Dear {_user(event)},\n\n"
        "Welcome to ShopShoes! We're excited to have you as a new customer.\n\n"
        "Your account has been successfully created. You can now log in and start shopping.\n\n"
        f"Username: {event.username}\n\n"
        "Thank you for joining us!\n"
        f"{SIGNATURE}",
    )


def password_reset_requested(event: UserEvent) -> Email:
    return Email(
        event.email,
        "Password Reset Request",
        f"Dear {_user(event)},\n\n"
        "We received a request to reset your password. To reset your password, click on the link below:\n\n"
        f"{RESET_PASSWORD_URL}?token={event.reset_token}\n\n"
        f"This link will expire on {event.token_expiry}.\n\n"
        "If you did not request a password reset, please ignore this email or contact our support team.\n\n"
        f"{SIGNATURE}",
    )


def low_stock_alert(event: LowStockAlert) -> Email:
    name = event.product_name or f"Product {event.product_id}"
    return Email(
        OPS_EMAIL,
        f"Low Stock Alert - {name}",
        f"{name} (ID {event.product_id}) is at or below its reorder level.\n\n"
        f"Current quantity: {event.quantity}\n"
        f"Reorder level: {event.reorder_level}\n"
        f"Previous quantity: {event.previous_quantity if event.previous_quantity is not None else 'n/a'}\n\n"
        "Please restock soon.\n"
        f"{SIGNATURE}",
    )
