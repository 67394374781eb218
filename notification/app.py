import logging

from quart import Quart

from common.http.responses import register_error_handlers
from common.otlp_grcp_config import adopt_hypercorn_logger, configure_logging, configure_telemetry
from notification.dispatcher import NotificationDispatcher
from notification.mailer import Mailer
from notification.routing.kafka import Kafka

configure_logging()
configure_telemetry('notification-service')

app = Quart("notification-service")
register_error_handlers(app)

dispatcher = NotificationDispatcher(Mailer.from_env(), logger=app.logger)
kafka = Kafka(app.logger, dispatcher)


@app.before_serving
async def startup():
    app.logger.info("Starting Notification Service")
    await kafka.init()


@app.after_serving
async def shutdown():
    app.logger.info("Stopping Notification Service")
    await kafka.close()


if __name__ == '__main__':
    app.run(host="0.0.0.0", port=8000, debug=True)
    app.logger.setLevel(logging.INFO)
else:
    adopt_hypercorn_logger(app)
