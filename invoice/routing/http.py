from decimal import Decimal

from msgspec import Struct
from quart import request

from common.auth import ROLE_ADMIN, principal_from_headers, require_role, require_self_or_admin
from common.http.responses import json_body, ok
from invoice.app_instance import app
from invoice.invoice_logic import CartLine, InvoiceLogic

logic: InvoiceLogic | None = None


class CreateInvoiceRequest(Struct, kw_only=True, rename="camel"):
    user_id: int | None = None
    ship_address: str | None = None
    items: list[CartLine] = []
    total_amount: Decimal | None = None
    customer_name: str | None = None


class StatusRequest(Struct, kw_only=True, rename="camel"):
    status: str
    transaction_id: str | None = None


class ItemUpdateRequest(Struct, kw_only=True, rename="camel"):
    quantity: int | None = None
    price: Decimal | None = None


def init(invoice_logic: InvoiceLogic):
    global logic
    logic = invoice_logic


@app.post('/invoices/create-from-cart')
async def create_from_cart():
    principal = principal_from_headers(request.headers)
    body: CreateInvoiceRequest = await json_body(CreateInvoiceRequest)
    if body.user_id is not None:
        require_self_or_admin(principal, body.user_id)
    invoice, created = await logic.create_from_cart(
        body.user_id,
        body.ship_address,
        body.items,
        body.total_amount,
        idempotency_key=request.headers.get("Idempotency-Key"),
        customer_email=principal.email,
        customer_name=body.customer_name,
    )
    if created:
        return ok(invoice, "Invoice created", 201)
    return ok(invoice, "Invoice already created")


@app.get('/invoices/<int:invoice_id>')
async def get_invoice(invoice_id: int):
    principal = principal_from_headers(request.headers)
    invoice = await logic.get_invoice(invoice_id)
    require_self_or_admin(principal, invoice.user_id)
    return ok(invoice)


@app.get('/invoices/user/<int:user_id>')
async def list_for_user(user_id: int):
    require_self_or_admin(principal_from_headers(request.headers), user_id)
    return ok(await logic.list_for_user(user_id))


@app.get('/invoices/status/<status>')
async def list_by_status(status: str):
    require_role(principal_from_headers(request.headers), ROLE_ADMIN)
    return ok(await logic.list_by_status(status.upper()))


@app.put('/invoices/<int:invoice_id>/status')
async def update_status(invoice_id: int):
    require_role(principal_from_headers(request.headers), ROLE_ADMIN)
    body: StatusRequest = await json_body(StatusRequest)
    invoice, changed = await logic.update_status(invoice_id, body.status.upper(), body.transaction_id)
    return ok(invoice, "Invoice status updated" if changed else "Invoice status unchanged")


@app.patch('/invoices/<int:invoice_id>/items/<int:item_id>')
async def update_item(invoice_id: int, item_id: int):
    require_role(principal_from_headers(request.headers), ROLE_ADMIN)
    body: ItemUpdateRequest = await json_body(ItemUpdateRequest)
    return ok(await logic.update_item(invoice_id, item_id, body.quantity, body.price), "Invoice item updated")


@app.delete('/invoices/<int:invoice_id>')
async def delete_invoice(invoice_id: int):
    require_role(principal_from_headers(request.headers), ROLE_ADMIN)
    await logic.delete_invoice(invoice_id)
    return ok(None, f"Invoice {invoice_id} deleted")
