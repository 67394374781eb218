import logging

from common.config import redis_from_env, service_url
from common.http.client import ServiceClient
from common.otlp_grcp_config import adopt_hypercorn_logger, configure_logging, configure_telemetry
from payment.app_instance import app
from payment.payment_logic import PaymentLogic
from payment.vnpay import VNPayConfig
import payment.routing.http as http
from payment.routing.kafka import Kafka

configure_logging()
configure_telemetry('payment-service')

db = redis_from_env()
invoice_client = ServiceClient("invoice-service", service_url("invoice", "http://localhost:8001"))
payment_logic = PaymentLogic(db, invoice_client, VNPayConfig.from_env(), logger=app.logger)
http.init(payment_logic)
kafka = Kafka(app.logger)


@app.before_serving
async def startup():
    app.logger.info("Starting Payment Service")
    await kafka.init()


@app.after_serving
async def shutdown():
    app.logger.info("Stopping Payment Service")
    await kafka.close()
    await invoice_client.close()
    await db.aclose()


if __name__ == '__main__':
    app.run(host="0.0.0.0", port=8000, debug=True)
    app.logger.setLevel(logging.INFO)
else:
    adopt_hypercorn_logger(app)
