# ------------------------------------------
# Cart events (cart.events)
# ------------------------------------------
EVENT_CART_CREATED              = "CART_CREATED"             # First line added to a user's cart
EVENT_CART_UPDATED              = "CART_UPDATED"             # Line added, changed or removed
EVENT_CART_CLEARED              = "CART_CLEARED"             # Cart emptied on request
EVENT_CART_CHECKOUT             = "CART_CHECKOUT"            # Cart converted into an invoice

# ------------------------------------------
# Invoice events (invoice.events, email.invoice.events)
# ------------------------------------------
EVENT_INVOICE_CREATED           = "INVOICE_CREATED"          # Invoice persisted from a cart snapshot
EVENT_INVOICE_UPDATED           = "INVOICE_UPDATED"          # Invoice status or items changed

# ------------------------------------------
# Payment events (payment.events, invoice.payment.events, email.payment.events)
# ------------------------------------------
EVENT_PAYMENT_INITIALIZED       = "PAYMENT_INITIALIZED"      # Gateway session created, transaction PENDING
EVENT_PAYMENT_COMPLETED         = "PAYMENT_COMPLETED"        # Verified callback reported success
EVENT_PAYMENT_FAILED            = "PAYMENT_FAILED"           # Verified callback reported failure

# ------------------------------------------
# Order events (product.order)
# ------------------------------------------
EVENT_ORDER_CREATED             = "ORDER_CREATED"            # Stock to be taken for a new order
EVENT_ORDER_PLACED              = "ORDER_PLACED"             # Same effect as ORDER_CREATED
EVENT_ORDER_CANCELLED           = "ORDER_CANCELLED"          # Stock to be given back

# ------------------------------------------
# Inventory events (product.inventory, email.inventory.events)
# ------------------------------------------
EVENT_INVENTORY_CHANGED         = "INVENTORY_CHANGED"        # Summary of applied quantity changes
EVENT_LOW_STOCK_ALERT           = "LOW_STOCK_ALERT"          # Product crossed down to its reorder level

# ------------------------------------------
# User lifecycle events (email.auth.events, produced by the auth service)
# ------------------------------------------
EVENT_USER_REGISTERED           = "USER_REGISTERED"
EVENT_PASSWORD_RESET_REQUESTED  = "PASSWORD_RESET_REQUESTED"
