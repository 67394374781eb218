import unittest
from decimal import Decimal
from unittest.mock import AsyncMock, patch

from quart.testing import QuartClient

import invoice.routing.http as http
from common.errors import InvalidTransitionError
from invoice.app_instance import app
from invoice.invoice_logic import STATUS_PAID, STATUS_PENDING, CartLine, InvoiceItemValue, InvoiceValue

USER = {"X-User-Id": "42", "X-User-Roles": "USER", "X-User-Email": "buyer@example.com"}
ADMIN = {"X-User-Id": "1", "X-User-Roles": "ADMIN"}


def invoice(user_id=42, status=STATUS_PENDING):
    return InvoiceValue(invoice_id=7, user_id=user_id, ship_address="1 Main St", status=status,
                        total_amount=Decimal("25.00"),
                        items=[InvoiceItemValue(item_id=1, product_id=1, quantity=2, price=Decimal("10.00"),
                                                subtotal=Decimal("20.00"))])


class TestHttp(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.test_client: QuartClient = app.test_client()

    async def test_create_from_cart(self):
        body = {"userId": 42, "shipAddress": "1 Main St",
                "items": [{"productId": 1, "quantity": 2, "price": "10.00"}]}

        with patch("invoice.routing.http.logic", new_callable=AsyncMock) as mock_logic:
            mock_logic.create_from_cart.return_value = (invoice(), True)

            response = await self.test_client.post("/invoices/create-from-cart", json=body,
                                                   headers={**USER, "Idempotency-Key": "checkout-3-abc"})
            data = await response.get_json()

            self.assertEqual(response.status_code, 201)
            self.assertEqual(data["data"]["invoiceId"], 7)
            self.assertEqual(data["data"]["totalAmount"], "25.00")
            mock_logic.create_from_cart.assert_called_once_with(
                42, "1 Main St", [CartLine(product_id=1, quantity=2, price=Decimal("10.00"))], None,
                idempotency_key="checkout-3-abc", customer_email="buyer@example.com", customer_name=None)

    async def test_replayed_creation_is_200(self):
        with patch("invoice.routing.http.logic", new_callable=AsyncMock) as mock_logic:
            mock_logic.create_from_cart.return_value = (invoice(), False)

            response = await self.test_client.post("/invoices/create-from-cart",
                                                   json={"userId": 42, "shipAddress": "x"}, headers=USER)

            self.assertEqual(response.status_code, 200)

    async def test_cannot_invoice_for_another_user(self):
        with patch("invoice.routing.http.logic", new_callable=AsyncMock) as mock_logic:
            response = await self.test_client.post("/invoices/create-from-cart",
                                                   json={"userId": 99, "shipAddress": "x"}, headers=USER)

            self.assertEqual(response.status_code, 403)
            mock_logic.create_from_cart.assert_not_called()

    async def test_get_someone_elses_invoice_is_forbidden(self):
        with patch("invoice.routing.http.logic", new_callable=AsyncMock) as mock_logic:
            mock_logic.get_invoice.return_value = invoice(user_id=99)

            response = await self.test_client.get("/invoices/7", headers=USER)

            self.assertEqual(response.status_code, 403)

    async def test_admin_status_update(self):
        with patch("invoice.routing.http.logic", new_callable=AsyncMock) as mock_logic:
            mock_logic.update_status.return_value = (invoice(status=STATUS_PAID), True)

            response = await self.test_client.put("/invoices/7/status", json={"status": "paid"}, headers=ADMIN)
            data = await response.get_json()

            self.assertEqual(response.status_code, 200)
            self.assertEqual(data["data"]["status"], STATUS_PAID)
            mock_logic.update_status.assert_called_once_with(7, STATUS_PAID, None)

    async def test_rejected_transition_is_409(self):
        with patch("invoice.routing.http.logic", new_callable=AsyncMock) as mock_logic:
            mock_logic.update_status.side_effect = InvalidTransitionError("PAID is terminal")

            response = await self.test_client.put("/invoices/7/status", json={"status": "PENDING"},
                                                  headers=ADMIN)
            data = await response.get_json()

            self.assertEqual(response.status_code, 409)
            self.assertEqual(data["errorCode"], "INVALID_TRANSITION")

    async def test_status_listing_requires_admin(self):
        with patch("invoice.routing.http.logic", new_callable=AsyncMock):
            response = await self.test_client.get("/invoices/status/PENDING", headers=USER)

            self.assertEqual(response.status_code, 403)
