import logging

from common.config import redis_from_env
from common.otlp_grcp_config import adopt_hypercorn_logger, configure_logging, configure_telemetry
from product.app_instance import app
from product.inventory_logic import InventoryLedger
import product.routing.http as http
from product.routing.kafka import Kafka

configure_logging()
configure_telemetry('product-service')

db = redis_from_env()
ledger = InventoryLedger(db, logger=app.logger)
http.init(ledger)
kafka = Kafka(app.logger, ledger)


@app.before_serving
async def startup():
    app.logger.info("Starting Product Service")
    await kafka.init()


@app.after_serving
async def shutdown():
    app.logger.info("Stopping Product Service")
    await kafka.close()
    await db.aclose()


if __name__ == '__main__':
    app.run(host="0.0.0.0", port=8000, debug=True)
    app.logger.setLevel(logging.INFO)
else:
    adopt_hypercorn_logger(app)
