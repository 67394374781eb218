import asyncio
import unittest

import aiohttp

from common.auth import Principal, principal_from_headers
from common.errors import ConflictError, NotFoundError, TransientDependencyError, UnauthorizedError, ValidationError
from common.http.client import ServiceClient, unwrap
from common.retry import RetryPolicy
from tests.fakes import no_sleep


class FakeResponse:
    def __init__(self, status, body):
        self.status = status
        self.body = body

    async def json(self, content_type=None):
        return self.body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    closed = False

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def request(self, method, url, json=None, headers=None):
        self.calls.append((method, url, json, headers))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def client(session) -> ServiceClient:
    return ServiceClient("invoice-service", "http://invoice/", policy=RetryPolicy(max_attempts=3, sleep=no_sleep),
                         session=session)


class TestServiceClient(unittest.IsolatedAsyncioTestCase):

    async def test_forwards_principal_credentials(self):
        session = FakeSession(FakeResponse(200, {"status": "ok", "data": {"invoiceId": 1}}))
        principal = Principal(user_id=5, roles=frozenset({"USER"}), token="Bearer abc", email="a@b.c")

        body = await client(session).post("/invoices", principal, json={"x": 1}, headers={"Idempotency-Key": "k"})

        self.assertEqual(unwrap(body), {"invoiceId": 1})
        method, url, json, headers = session.calls[0]
        self.assertEqual((method, url, json), ("POST", "http://invoice/invoices", {"x": 1}))
        self.assertEqual(headers["Authorization"], "Bearer abc")
        self.assertEqual(headers["X-User-Id"], "5")
        self.assertEqual(headers["Idempotency-Key"], "k")

    async def test_server_errors_are_retried(self):
        session = FakeSession(FakeResponse(503, None), aiohttp.ClientConnectionError("reset"),
                              FakeResponse(200, {"data": 1}))

        body = await client(session).get("/invoices/1")

        self.assertEqual(unwrap(body), 1)
        self.assertEqual(len(session.calls), 3)

    async def test_timeouts_exhaust_into_transient_error(self):
        session = FakeSession(asyncio.TimeoutError(), asyncio.TimeoutError(), asyncio.TimeoutError())

        with self.assertRaises(TransientDependencyError):
            await client(session).get("/invoices/1")
        self.assertEqual(len(session.calls), 3)

    async def test_client_errors_are_not_retried(self):
        cases = [(404, NotFoundError), (409, ConflictError), (401, UnauthorizedError), (400, ValidationError)]
        for status, error in cases:
            with self.subTest(status=status):
                session = FakeSession(FakeResponse(status, {"status": "error", "message": "nope"}))

                with self.assertRaises(error) as ctx:
                    await client(session).get("/invoices/1")
                self.assertEqual(ctx.exception.message, "nope")
                self.assertEqual(len(session.calls), 1)


class TestPrincipal(unittest.TestCase):

    def test_built_from_gateway_headers(self):
        principal = principal_from_headers({"X-User-Id": "12", "X-User-Roles": "user, admin",
                                            "Authorization": "Bearer t", "X-User-Email": "u@x.io"})

        self.assertEqual(principal.user_id, 12)
        self.assertTrue(principal.is_admin)
        self.assertEqual(principal.token, "Bearer t")
        self.assertEqual(principal.email, "u@x.io")

    def test_missing_user_is_unauthorized(self):
        with self.assertRaises(UnauthorizedError):
            principal_from_headers({})
