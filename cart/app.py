import logging

from common.config import redis_from_env, service_url
from common.http.client import ServiceClient
from common.otlp_grcp_config import adopt_hypercorn_logger, configure_logging, configure_telemetry
from cart.app_instance import app
from cart.cart_logic import CartLogic
import cart.routing.http as http
from cart.routing.kafka import Kafka

configure_logging()
configure_telemetry('cart-service')

db = redis_from_env()
product_client = ServiceClient("product-service", service_url("product", "http://localhost:8003"))
invoice_client = ServiceClient("invoice-service", service_url("invoice", "http://localhost:8001"))
cart_logic = CartLogic(db, product_client, invoice_client, logger=app.logger)
http.init(cart_logic)
kafka = Kafka(app.logger)


@app.before_serving
async def startup():
    app.logger.info("Starting Cart Service")
    await kafka.init()


@app.after_serving
async def shutdown():
    app.logger.info("Stopping Cart Service")
    await kafka.close()
    await product_client.close()
    await invoice_client.close()
    await db.aclose()


if __name__ == '__main__':
    app.run(host="0.0.0.0", port=8000, debug=True)
    app.logger.setLevel(logging.INFO)
else:
    adopt_hypercorn_logger(app)
