import logging

from common.config import redis_from_env
from common.otlp_grcp_config import adopt_hypercorn_logger, configure_logging, configure_telemetry
from invoice.app_instance import app
from invoice.invoice_logic import InvoiceLogic
import invoice.routing.http as http
from invoice.routing.kafka import Kafka

configure_logging()
configure_telemetry('invoice-service')

db = redis_from_env()
invoice_logic = InvoiceLogic(db, logger=app.logger)
http.init(invoice_logic)
kafka = Kafka(app.logger, invoice_logic)


@app.before_serving
async def startup():
    app.logger.info("Starting Invoice Service")
    await kafka.init()


@app.after_serving
async def shutdown():
    app.logger.info("Stopping Invoice Service")
    await kafka.close()
    await db.aclose()


if __name__ == '__main__':
    app.run(host="0.0.0.0", port=8000, debug=True)
    app.logger.setLevel(logging.INFO)
else:
    adopt_hypercorn_logger(app)
