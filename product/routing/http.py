from decimal import Decimal

from msgspec import Struct
from quart import request

from common.auth import ROLE_ADMIN, principal_from_headers, require_role
from common.errors import ValidationError
from common.http.responses import json_body, ok
from product.app_instance import app
from product.inventory_logic import DEFAULT_REORDER_LEVEL, InventoryLedger

logic: InventoryLedger | None = None


class CreateProductRequest(Struct, kw_only=True, rename="camel"):
    name: str
    price: Decimal
    quantity: int = 0
    reorder_level: int = DEFAULT_REORDER_LEVEL
    category: str | None = None


class InventoryRequest(Struct, kw_only=True, rename="camel"):
    quantity: int | None = None
    delta: int | None = None


class ReorderLevelRequest(Struct, kw_only=True, rename="camel"):
    reorder_level: int


def init(ledger: InventoryLedger):
    global logic
    logic = ledger


@app.post('/products')
async def create_product():
    require_role(principal_from_headers(request.headers), ROLE_ADMIN)
    body: CreateProductRequest = await json_body(CreateProductRequest)
    product = await logic.create_product(body.name, body.price, body.quantity, body.reorder_level, body.category)
    return ok(product, "Product created", 201)


@app.get('/products/low-stock')
async def low_stock_products():
    require_role(principal_from_headers(request.headers), ROLE_ADMIN)
    return ok(await logic.low_stock_products())


@app.get('/products/<int:product_id>')
async def get_product(product_id: int):
    return ok(await logic.get_product(product_id))


@app.patch('/products/<int:product_id>/inventory')
async def update_inventory(product_id: int):
    """Absolute ``{"quantity": n}`` (admin) or relative ``{"delta": n}`` update.

    A delta may carry an ``Idempotency-Key`` header; repeating the key is a no-op.
    """
    principal = principal_from_headers(request.headers)
    body: InventoryRequest = await json_body(InventoryRequest)
    if (body.quantity is None) == (body.delta is None):
        raise ValidationError("Exactly one of quantity or delta is required")

    idempotency_key = None
    if body.quantity is not None:
        require_role(principal, ROLE_ADMIN)
        change = await logic.set_quantity(product_id, body.quantity)
    else:
        idempotency_key = request.headers.get("Idempotency-Key")
        change = await logic.apply_delta(product_id, body.delta, idempotency_key)
    await logic.publish_alerts([change], idempotency_key)
    return ok(change, "Inventory updated")


@app.patch('/products/<int:product_id>/reorder-level')
async def update_reorder_level(product_id: int):
    require_role(principal_from_headers(request.headers), ROLE_ADMIN)
    body: ReorderLevelRequest = await json_body(ReorderLevelRequest)
    product = await logic.update_reorder_level(product_id, body.reorder_level)
    return ok(product, "Reorder level updated")
