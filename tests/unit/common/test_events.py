import json
import unittest
from decimal import Decimal

from common.errors import MalformedEventError, UnknownEventError
from common.events import (ORDER_EVENTS, PAYMENT_EVENTS, OrderCancelled, OrderItem, OrderPlaced, PaymentCompleted,
                           decode_event, encode_event)


class TestEvents(unittest.TestCase):

    def test_encoded_event_carries_envelope_in_camel_case(self):
        event = PaymentCompleted(transaction_id="12345678", invoice_id=7, status="PAID", amount=Decimal("25.00"))

        payload = json.loads(encode_event(event))

        self.assertEqual(payload["eventType"], "PAYMENT_COMPLETED")
        self.assertEqual(payload["eventId"], event.event_id)
        self.assertIn("eventTime", payload)
        self.assertEqual(payload["invoiceId"], 7)
        self.assertEqual(payload["transactionId"], "12345678")

    def test_decode_picks_variant_from_event_type(self):
        raw = json.dumps({
            "eventId": "e-1",
            "eventType": "ORDER_CANCELLED",
            "eventTime": "2026-01-01T00:00:00Z",
            "invoiceId": 3,
            "items": [{"productId": 1, "quantity": 2}],
        }).encode()

        event = decode_event(raw, ORDER_EVENTS)

        self.assertIsInstance(event, OrderCancelled)
        self.assertEqual(event.event_id, "e-1")
        self.assertEqual(event.items, [OrderItem(product_id=1, quantity=2)])

    def test_encode_then_decode_keeps_explicit_event_id(self):
        event = OrderPlaced(event_id="checkout-9", invoice_id=9, items=[OrderItem(product_id=4, quantity=1)])

        decoded = decode_event(encode_event(event), ORDER_EVENTS)

        self.assertIsInstance(decoded, OrderPlaced)
        self.assertEqual(decoded.event_id, "checkout-9")

    def test_missing_event_type_is_malformed(self):
        raw = json.dumps({"eventId": "e-1", "items": []}).encode()

        with self.assertRaises(MalformedEventError):
            decode_event(raw, ORDER_EVENTS)

    def test_missing_items_is_malformed(self):
        raw = json.dumps({"eventId": "e-1", "eventType": "ORDER_CREATED"}).encode()

        with self.assertRaises(MalformedEventError):
            decode_event(raw, ORDER_EVENTS)

    def test_invalid_json_is_malformed(self):
        with self.assertRaises(MalformedEventError):
            decode_event(b"{not json", ORDER_EVENTS)

    def test_non_object_payload_is_malformed(self):
        with self.assertRaises(MalformedEventError):
            decode_event(b"[1, 2]", ORDER_EVENTS)

    def test_type_of_another_family_is_unknown(self):
        raw = json.dumps({"eventType": "ORDER_CREATED", "items": []}).encode()

        with self.assertRaises(UnknownEventError) as ctx:
            decode_event(raw, PAYMENT_EVENTS)
        self.assertEqual(ctx.exception.event_type, "ORDER_CREATED")
