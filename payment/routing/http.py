from decimal import Decimal

from msgspec import Struct
from quart import request

from common.auth import principal_from_headers
from common.http.responses import json_body, ok
from payment.app_instance import app
from payment.payment_logic import PaymentLogic

logic: PaymentLogic | None = None


class PaymentRequest(Struct, kw_only=True, rename="camel"):
    invoice_id: int
    amount: Decimal
    bank_code: str | None = None
    return_url: str | None = None
    description: str | None = None
    language: str | None = None


def init(payment_logic: PaymentLogic):
    global logic
    logic = payment_logic


@app.post('/payments/create')
async def create_payment():
    principal = principal_from_headers(request.headers)
    body: PaymentRequest = await json_body(PaymentRequest)
    session = await logic.create_payment_session(principal, body.invoice_id, body.amount, body.bank_code,
                                                 body.return_url, body.description, body.language)
    return ok(session, "Successfully created payment URL")


@app.get('/payments/callback')
async def payment_callback():
    # Called by the gateway redirect; authenticity comes from the signature, not headers
    result = await logic.handle_callback(request.args.to_dict())
    message = "Payment processed successfully" if result.status == "SUCCESS" else "Payment failed"
    return ok(result, message)


@app.get('/payments/status/<int:invoice_id>')
async def payment_status(invoice_id: int):
    principal = principal_from_headers(request.headers)
    return ok(await logic.get_status(invoice_id, principal), "Payment status retrieved successfully")
