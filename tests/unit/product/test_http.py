import unittest
from decimal import Decimal
from unittest.mock import AsyncMock, patch

from quart.testing import QuartClient

import product.routing.http as http
from common.errors import NotFoundError
from product.app_instance import app
from product.inventory_logic import ProductValue, QuantityChange

ADMIN = {"X-User-Id": "1", "X-User-Roles": "ADMIN"}
USER = {"X-User-Id": "2", "X-User-Roles": "USER"}


def change(previous=10, new=8):
    return QuantityChange(product_id=3, previous_quantity=previous, new_quantity=new,
                          delta=new - previous, reorder_level=5)


class TestHttp(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.test_client: QuartClient = app.test_client()

    async def test_create_product_requires_admin(self):
        with patch("product.routing.http.logic", new_callable=AsyncMock) as mock_logic:
            response = await self.test_client.post("/products", json={"name": "Runner", "price": "10.00"},
                                                   headers=USER)

            self.assertEqual(response.status_code, 403)
            mock_logic.create_product.assert_not_called()

    async def test_create_product(self):
        with patch("product.routing.http.logic", new_callable=AsyncMock) as mock_logic:
            mock_logic.create_product.return_value = ProductValue(product_id=3, name="Runner",
                                                                  price=Decimal("10.00"), quantity=4)

            response = await self.test_client.post("/products",
                                                   json={"name": "Runner", "price": "10.00", "quantity": 4},
                                                   headers=ADMIN)
            data = await response.get_json()

            self.assertEqual(response.status_code, 201)
            self.assertEqual(data["data"]["productId"], 3)
            self.assertEqual(data["data"]["price"], "10.00")
            mock_logic.create_product.assert_called_once_with("Runner", Decimal("10.00"), 4, 5, None)

    async def test_get_missing_product(self):
        with patch("product.routing.http.logic", new_callable=AsyncMock) as mock_logic:
            mock_logic.get_product.side_effect = NotFoundError("Product: 9 not found!")

            response = await self.test_client.get("/products/9")
            data = await response.get_json()

            self.assertEqual(response.status_code, 404)
            self.assertEqual(data["status"], "error")
            self.assertEqual(data["message"], "Product: 9 not found!")

    async def test_delta_update_forwards_idempotency_key(self):
        with patch("product.routing.http.logic", new_callable=AsyncMock) as mock_logic:
            mock_logic.apply_delta.return_value = change()

            response = await self.test_client.patch("/products/3/inventory", json={"delta": -2},
                                                    headers={**USER, "Idempotency-Key": "checkout-7:3"})
            data = await response.get_json()

            self.assertEqual(response.status_code, 200)
            self.assertEqual(data["data"]["newQuantity"], 8)
            mock_logic.apply_delta.assert_called_once_with(3, -2, "checkout-7:3")
            mock_logic.publish_alerts.assert_called_once_with([change()], "checkout-7:3")

    async def test_absolute_quantity_requires_admin(self):
        with patch("product.routing.http.logic", new_callable=AsyncMock) as mock_logic:
            response = await self.test_client.patch("/products/3/inventory", json={"quantity": 2}, headers=USER)

            self.assertEqual(response.status_code, 403)
            mock_logic.set_quantity.assert_not_called()

    async def test_quantity_and_delta_are_exclusive(self):
        with patch("product.routing.http.logic", new_callable=AsyncMock) as mock_logic:
            for body in ({"quantity": 2, "delta": 1}, {}):
                response = await self.test_client.patch("/products/3/inventory", json=body, headers=ADMIN)

                self.assertEqual(response.status_code, 400)
            mock_logic.set_quantity.assert_not_called()
            mock_logic.apply_delta.assert_not_called()

    async def test_low_stock_listing(self):
        with patch("product.routing.http.logic", new_callable=AsyncMock) as mock_logic:
            mock_logic.low_stock_products.return_value = [
                ProductValue(product_id=3, name="Runner", price=Decimal("10.00"), quantity=1)]

            response = await self.test_client.get("/products/low-stock", headers=ADMIN)
            data = await response.get_json()

            self.assertEqual([p["productId"] for p in data["data"]], [3])

    async def test_missing_identity_is_unauthorized(self):
        response = await self.test_client.patch("/products/3/reorder-level", json={"reorderLevel": 2})

        self.assertEqual(response.status_code, 401)
