from quart import Quart

from common.http.responses import register_error_handlers

app = Quart("cart-service")
register_error_handlers(app)
