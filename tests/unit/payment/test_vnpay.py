import unittest
from datetime import datetime, timezone
from decimal import Decimal
from urllib.parse import parse_qsl, urlsplit

from payment import vnpay
from payment.vnpay import VNPayConfig

CONFIG = VNPayConfig(tmn_code="TESTCODE", hash_secret="SECRET", pay_url="https://gateway.test/pay",
                     return_url="https://shop.test/payments/callback")


def params_of(url: str) -> dict[str, str]:
    return dict(parse_qsl(urlsplit(url).query))


class TestVNPay(unittest.TestCase):

    def test_canonical_query_sorts_and_skips_empty_values(self):
        query = vnpay.canonical_query({"vnp_b": "x y", "vnp_a": "1~2*", "vnp_c": ""})

        self.assertEqual(query, "vnp_a=1%7E2*&vnp_b=x+y")

    def test_signature_is_hmac_sha512_hex(self):
        signature = vnpay.sign(CONFIG, {"vnp_Amount": "2500"})

        self.assertEqual(len(signature), 128)
        self.assertEqual(signature, vnpay.hmac_sha512("SECRET", "vnp_Amount=2500"))

    def test_payment_params(self):
        now = datetime(2026, 1, 1, 0, 0, tzinfo=timezone.utc)

        params = vnpay.payment_params(CONFIG, 7, Decimal("25.00"), "12345678", now=now)

        self.assertEqual(params["vnp_Amount"], "2500")
        self.assertEqual(params["vnp_TxnRef"], "12345678")
        self.assertEqual(params["vnp_BankCode"], "NCB")
        self.assertEqual(params["vnp_ReturnUrl"], "https://shop.test/payments/callback?invoiceId=7")
        self.assertEqual(params["vnp_CreateDate"], "20260101070000")
        self.assertEqual(params["vnp_ExpireDate"], "20260101071500")

    def test_built_url_verifies(self):
        params = vnpay.payment_params(CONFIG, 7, Decimal("25.00"), "12345678", order_info="Order #7 ~ shoes")

        url = vnpay.build_payment_url(CONFIG, params)

        self.assertTrue(url.startswith("https://gateway.test/pay?"))
        received = params_of(url)
        self.assertEqual(received["vnp_OrderInfo"], "Order #7 ~ shoes")
        self.assertTrue(vnpay.verify_signature(CONFIG, received))

    def test_tampered_amount_fails_verification(self):
        received = params_of(vnpay.build_payment_url(
            CONFIG, vnpay.payment_params(CONFIG, 7, Decimal("25.00"), "12345678")))

        received["vnp_Amount"] = "100"

        self.assertFalse(vnpay.verify_signature(CONFIG, received))

    def test_any_altered_character_fails_verification(self):
        received = params_of(vnpay.build_payment_url(
            CONFIG, vnpay.payment_params(CONFIG, 7, Decimal("25.00"), "12345678")))

        for name in sorted(set(received) - vnpay.UNSIGNED_FIELDS):
            value = received[name]
            for position, char in enumerate(value):
                altered = value[:position] + ("1" if char != "1" else "2") + value[position + 1:]
                with self.subTest(name=name, position=position):
                    self.assertFalse(vnpay.verify_signature(CONFIG, {**received, name: altered}))

    def test_signature_ignores_invoice_id_and_hash_type(self):
        params = {"vnp_TxnRef": "12345678", "vnp_ResponseCode": "00"}
        params[vnpay.SECURE_HASH_FIELD] = vnpay.sign(CONFIG, params).upper()
        params["vnp_SecureHashType"] = "HmacSHA512"
        params["invoiceId"] = "7"

        self.assertTrue(vnpay.verify_signature(CONFIG, params))

    def test_missing_signature(self):
        self.assertFalse(vnpay.verify_signature(CONFIG, {"vnp_TxnRef": "12345678"}))

    def test_success_needs_both_codes(self):
        self.assertTrue(vnpay.is_success({"vnp_ResponseCode": "00", "vnp_TransactionStatus": "00"}))
        self.assertFalse(vnpay.is_success({"vnp_ResponseCode": "00", "vnp_TransactionStatus": "02"}))
        self.assertFalse(vnpay.is_success({"vnp_ResponseCode": "24"}))

    def test_random_reference(self):
        reference = vnpay.random_txn_ref()

        self.assertEqual(len(reference), 8)
        self.assertTrue(reference.isdigit())
