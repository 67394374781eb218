import unittest
from decimal import Decimal
from unittest.mock import AsyncMock, patch

from quart.testing import QuartClient

import payment.routing.http as http
from common.auth import Principal
from common.errors import SecurityError
from payment.app_instance import app
from payment.payment_logic import CallbackResult, PaymentSession, PaymentTransaction

USER = {"X-User-Id": "42", "X-User-Roles": "USER", "X-User-Email": "buyer@example.com",
        "Authorization": "Bearer t"}


class TestHttp(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.test_client: QuartClient = app.test_client()

    async def test_create_payment(self):
        with patch("payment.routing.http.logic", new_callable=AsyncMock) as mock_logic:
            mock_logic.create_payment_session.return_value = PaymentSession(
                payment_url="https://gateway.test/pay?x=1", transaction_id="12345678", invoice_id=7,
                amount=Decimal("25.00"), bank_code="NCB")

            response = await self.test_client.post("/payments/create",
                                                   json={"invoiceId": 7, "amount": "25.00"}, headers=USER)
            data = await response.get_json()

            self.assertEqual(response.status_code, 200)
            self.assertEqual(data["data"]["paymentUrl"], "https://gateway.test/pay?x=1")
            self.assertEqual(data["data"]["transactionId"], "12345678")
            principal = mock_logic.create_payment_session.call_args.args[0]
            self.assertIsInstance(principal, Principal)
            self.assertEqual(principal.user_id, 42)
            self.assertEqual(mock_logic.create_payment_session.call_args.args[1:3], (7, Decimal("25.00")))

    async def test_create_payment_with_bad_body(self):
        with patch("payment.routing.http.logic", new_callable=AsyncMock) as mock_logic:
            response = await self.test_client.post("/payments/create", json={"amount": "25.00"}, headers=USER)

            self.assertEqual(response.status_code, 400)
            mock_logic.create_payment_session.assert_not_called()

    async def test_callback_passes_query_parameters(self):
        with patch("payment.routing.http.logic", new_callable=AsyncMock) as mock_logic:
            mock_logic.handle_callback.return_value = CallbackResult(status="SUCCESS", invoice_id=7,
                                                                     transaction_id="12345678")

            response = await self.test_client.get(
                "/payments/callback?invoiceId=7&vnp_TxnRef=12345678&vnp_SecureHash=abc")
            data = await response.get_json()

            self.assertEqual(response.status_code, 200)
            self.assertEqual(data["message"], "Payment processed successfully")
            mock_logic.handle_callback.assert_called_once_with(
                {"invoiceId": "7", "vnp_TxnRef": "12345678", "vnp_SecureHash": "abc"})

    async def test_callback_with_bad_signature(self):
        with patch("payment.routing.http.logic", new_callable=AsyncMock) as mock_logic:
            mock_logic.handle_callback.side_effect = SecurityError("Invalid transaction signature")

            response = await self.test_client.get("/payments/callback?invoiceId=7&vnp_TxnRef=1")
            data = await response.get_json()

            self.assertEqual(response.status_code, 400)
            self.assertEqual(data["errorCode"], "INVALID_SIGNATURE")

    async def test_payment_status(self):
        with patch("payment.routing.http.logic", new_callable=AsyncMock) as mock_logic:
            mock_logic.get_status.return_value = PaymentTransaction(transaction_id="12345678", invoice_id=7,
                                                                    status="PAID")

            response = await self.test_client.get("/payments/status/7", headers=USER)
            data = await response.get_json()

            self.assertEqual(data["data"]["status"], "PAID")
            self.assertEqual(mock_logic.get_status.call_args.args[0], 7)
