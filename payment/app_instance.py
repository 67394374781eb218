from quart import Quart

from common.http.responses import register_error_handlers

app = Quart("payment-service")
register_error_handlers(app)
