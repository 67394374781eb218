"""VNPay redirect protocol: signed payment URLs and callback verification.

The signature is an HMAC-SHA512 over the parameters sorted by name and
joined as ``name=value`` pairs with ``&``, where values are form-encoded
(space as ``+``, ``*`` kept, ``~`` as ``%7E``). Empty values are left out of
both the hash data and the query string.
"""
import hashlib
import hmac
import os
import secrets
import string
from datetime import datetime, timedelta, timezone
from urllib.parse import quote_plus

from msgspec import Struct

from common.money import to_minor_units

SECURE_HASH_FIELD = "vnp_SecureHash"
UNSIGNED_FIELDS = frozenset({SECURE_HASH_FIELD, "vnp_SecureHashType", "invoiceId"})

SUCCESS_CODE = "00"
DEFAULT_BANK_CODE = "NCB"
DEFAULT_LOCALE = "vn"
SESSION_TTL = timedelta(minutes=15)
GATEWAY_TZ = timezone(timedelta(hours=7))
DATE_FORMAT = "%Y%m%d%H%M%S"


class VNPayConfig(Struct, kw_only=True):
    tmn_code: str
    hash_secret: str
    pay_url: str
    return_url: str
    version: str = "2.1.0"
    command: str = "pay"

    @classmethod
    def from_env(cls) -> "VNPayConfig":
        return cls(
            tmn_code=os.environ.get("VNPAY_TMN_CODE", ""),
            hash_secret=os.environ.get("VNPAY_HASH_SECRET", ""),
            pay_url=os.environ.get("VNPAY_PAY_URL", "https://sandbox.vnpayment.vn/paymentv2/vpcpay.html"),
            return_url=os.environ.get("VNPAY_RETURN_URL", "http://localhost:8000/payments/callback"),
            version=os.environ.get("VNPAY_VERSION", "2.1.0"),
        )


def gateway_quote(value: str) -> str:
    return quote_plus(value, safe="*").replace("~", "%7E")


def canonical_query(params: dict[str, str]) -> str:
    return "&".join(f"{gateway_quote(name)}={gateway_quote(params[name])}"
                    for name in sorted(params) if params[name])


def hmac_sha512(secret: str, data: str) -> str:
    return hmac.new(secret.encode("utf-8"), data.encode("utf-8"), hashlib.sha512).hexdigest()


def sign(config: VNPayConfig, params: dict[str, str]) -> str:
    return hmac_sha512(config.hash_secret, canonical_query(params))


def random_txn_ref(length: int = 8) -> str:
    return "".join(secrets.choice(string.digits) for _ in range(length))


def gateway_time(now: datetime | None = None) -> datetime:
    return (now or datetime.now(timezone.utc)).astimezone(GATEWAY_TZ)


def payment_params(config: VNPayConfig, invoice_id: int, amount, txn_ref: str,
                   bank_code: str | None = None, return_url: str | None = None,
                   order_info: str | None = None, locale: str | None = None,
                   now: datetime | None = None) -> dict[str, str]:
    created = gateway_time(now)
    return {
        "vnp_Version": config.version,
        "vnp_Command": config.command,
        "vnp_TmnCode": config.tmn_code,
        "vnp_Amount": str(to_minor_units(amount)),
        "vnp_CurrCode": "VND",
        "vnp_BankCode": bank_code or DEFAULT_BANK_CODE,
        "vnp_TxnRef": txn_ref,
        "vnp_OrderInfo": order_info or f"Thanh toan don hang:{invoice_id}",
        "vnp_OrderType": "other",
        "vnp_Locale": locale or DEFAULT_LOCALE,
        "vnp_ReturnUrl": f"{return_url or config.return_url}?invoiceId={invoice_id}",
        "vnp_CreateDate": created.strftime(DATE_FORMAT),
        "vnp_ExpireDate": (created + SESSION_TTL).strftime(DATE_FORMAT),
    }


def build_payment_url(config: VNPayConfig, params: dict[str, str]) -> str:
    return f"{config.pay_url}?{canonical_query(params)}&{SECURE_HASH_FIELD}={sign(config, params)}"


def verify_signature(config: VNPayConfig, params: dict[str, str]) -> bool:
    received = params.get(SECURE_HASH_FIELD)
    if not received:
        return False
    signed = {k: v for k, v in params.items() if k not in UNSIGNED_FIELDS}
    return hmac.compare_digest(sign(config, signed).lower(), received.lower())


def is_success(params: dict[str, str]) -> bool:
    return params.get("vnp_ResponseCode") == SUCCESS_CODE and params.get("vnp_TransactionStatus") == SUCCESS_CODE
