CART_EVENTS_TOPIC = "cart.events"

INVOICE_EVENTS_TOPIC = "invoice.events"
EMAIL_INVOICE_TOPIC = "email.invoice.events"

PAYMENT_EVENTS_TOPIC = "payment.events"
INVOICE_PAYMENT_TOPIC = "invoice.payment.events"
EMAIL_PAYMENT_TOPIC = "email.payment.events"

PRODUCT_ORDER_TOPIC = "product.order"
PRODUCT_INVENTORY_TOPIC = "product.inventory"
EMAIL_INVENTORY_TOPIC = "email.inventory.events"

EMAIL_AUTH_TOPIC = "email.auth.events"

DEAD_LETTER_SUFFIX = ".dlq"

# Fan-out per event family: every event of the family is published to each topic
CART_TOPICS = (CART_EVENTS_TOPIC,)
INVOICE_TOPICS = (INVOICE_EVENTS_TOPIC, EMAIL_INVOICE_TOPIC)
PAYMENT_TOPICS = (PAYMENT_EVENTS_TOPIC, INVOICE_PAYMENT_TOPIC, EMAIL_PAYMENT_TOPIC)
ORDER_TOPICS = (PRODUCT_ORDER_TOPIC,)
INVENTORY_TOPICS = (PRODUCT_INVENTORY_TOPIC,)
LOW_STOCK_TOPICS = (PRODUCT_INVENTORY_TOPIC, EMAIL_INVENTORY_TOPIC)

EMAIL_TOPICS = (EMAIL_PAYMENT_TOPIC, EMAIL_INVOICE_TOPIC, EMAIL_AUTH_TOPIC, EMAIL_INVENTORY_TOPIC)


def dead_letter_topic(topic: str) -> str:
    return f"{topic}{DEAD_LETTER_SUFFIX}"
