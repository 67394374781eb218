import logging

import msgspec
from quart import Quart, jsonify, request
from werkzeug.exceptions import HTTPException

from common.errors import ServiceError, ValidationError


def ok(data=None, message: str = "OK", status: int = 200):
    return jsonify({
        "status": "ok",
        "message": message,
        "data": msgspec.to_builtins(data),
    }), status


def error(message: str, status: int, error_code: str | None = None):
    body = {"status": "error", "message": message, "data": None}
    if error_code:
        body["errorCode"] = error_code
    return jsonify(body), status


async def json_body(struct_type: type):
    """Decode the request body into ``struct_type``; shape errors become a 400."""
    raw = await request.get_data()
    try:
        return msgspec.json.decode(raw or b"{}", type=struct_type)
    except (msgspec.ValidationError, msgspec.DecodeError) as e:
        raise ValidationError(f"Invalid request body: {e}")


def register_error_handlers(app: Quart):
    @app.errorhandler(ServiceError)
    async def handle_service_error(e: ServiceError):
        if e.status_code >= 500:
            app.logger.warning(f"{request.method} {request.path} failed: {e.error_code}: {e.message}")
        return error(e.message or e.error_code, e.status_code, e.error_code)

    @app.errorhandler(HTTPException)
    async def handle_http_error(e: HTTPException):
        return error(e.description or e.name, e.code or 500)

    @app.errorhandler(Exception)
    async def handle_unexpected(e: Exception):
        logging.exception(f"Unhandled error on {request.method} {request.path}")
        return error("Internal server error", 500, "INTERNAL_ERROR")
