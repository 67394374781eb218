from msgspec import Struct
from quart import request

from common.auth import principal_from_headers
from common.http.responses import json_body, ok
from cart.app_instance import app
from cart.cart_logic import CartLogic

logic: CartLogic | None = None


class AddItemRequest(Struct, kw_only=True, rename="camel"):
    product_id: int
    quantity: int


class QuantityRequest(Struct, kw_only=True, rename="camel"):
    quantity: int


class CheckoutRequest(Struct, kw_only=True, rename="camel"):
    ship_address: str | None = None


def init(cart_logic: CartLogic):
    global logic
    logic = cart_logic


@app.get('/cart')
async def get_cart():
    return ok(await logic.get_or_create_cart(principal_from_headers(request.headers)))


@app.post('/cart/items')
async def add_item():
    principal = principal_from_headers(request.headers)
    body: AddItemRequest = await json_body(AddItemRequest)
    return ok(await logic.add_to_cart(principal, body.product_id, body.quantity), "Item added to cart")


@app.put('/cart/items/<int:product_id>')
async def update_item(product_id: int):
    principal = principal_from_headers(request.headers)
    body: QuantityRequest = await json_body(QuantityRequest)
    return ok(await logic.update_quantity(principal, product_id, body.quantity), "Cart updated")


@app.delete('/cart/items/<int:product_id>')
async def remove_item(product_id: int):
    principal = principal_from_headers(request.headers)
    return ok(await logic.remove_from_cart(principal, product_id), "Item removed from cart")


@app.delete('/cart')
async def clear_cart():
    return ok(await logic.clear_cart(principal_from_headers(request.headers)), "Cart cleared")


@app.post('/checkout/<int:cart_id>')
async def checkout(cart_id: int):
    principal = principal_from_headers(request.headers)
    body: CheckoutRequest = await json_body(CheckoutRequest)
    result = await logic.checkout(principal, cart_id, body.ship_address)
    return ok(result, "Checkout completed successfully")
