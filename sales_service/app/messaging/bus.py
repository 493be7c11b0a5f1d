import json
import logging
import threading
import time

import pika

from .. import config

logger = logging.getLogger(__name__)


class EventPublisher:
    """
    Publishes sales events (``sale.created``, ``sale.returned``, ``stock.restocked``)
    to a RabbitMQ topic exchange.

    Events are sent after the database commit and are best-effort: a broker
    outage is logged and never undoes a sale. Publishing is disabled when no
    broker host is configured.
    """

    def __init__(self, host=None, exchange_name=None, exchange_type="topic"):
        self.host = host if host is not None else config.RABBITMQ_HOST
        self.exchange_name = exchange_name or config.EVENTS_EXCHANGE
        self.exchange_type = exchange_type
        self.connection = None
        self.channel = None
        self._lock = threading.Lock()
        self._retry_after = 0.0

    @property
    def enabled(self):
        return bool(self.host)

    def connect(self):
        """Establishes a connection to RabbitMQ, retrying a bounded number of times."""
        credentials = pika.PlainCredentials(config.RABBITMQ_USER, config.RABBITMQ_PASSWORD)
        parameters = pika.ConnectionParameters(host=self.host, credentials=credentials)
        attempts = max(1, config.RABBITMQ_CONNECT_ATTEMPTS)
        for attempt in range(1, attempts + 1):
            try:
                self.connection = pika.BlockingConnection(parameters)
                self.channel = self.connection.channel()
                # Declare the exchange (durable ensures it survives restarts)
                self.channel.exchange_declare(
                    exchange=self.exchange_name,
                    exchange_type=self.exchange_type,
                    durable=True,
                )
                logger.info("Connected to RabbitMQ exchange %s on %s", self.exchange_name, self.host)
                return
            except pika.exceptions.AMQPConnectionError:
                if attempt == attempts:
                    raise
                logger.warning(
                    "RabbitMQ not ready (attempt %s/%s), retrying in %ss",
                    attempt, attempts, config.RABBITMQ_RETRY_SECONDS,
                )
                time.sleep(config.RABBITMQ_RETRY_SECONDS)

    def publish(self, routing_key, message):
        """
        Publishes ``message`` (a dict) with the given routing key.
        Returns True when the broker accepted the message.

        Safe to call from several request threads: the connection and channel
        are only touched while holding the publisher's lock.
        """
        if not self.enabled:
            logger.debug("Event publishing disabled, dropping %s", routing_key)
            return False

        with self._lock:
            if time.monotonic() < self._retry_after:
                logger.warning("RabbitMQ unavailable, dropping event %s", routing_key)
                return False
            try:
                # Reconnect if the connection was lost
                if not self.connection or self.connection.is_closed:
                    self.connect()
                self.channel.basic_publish(
                    exchange=self.exchange_name,
                    routing_key=routing_key,
                    body=json.dumps(message, default=str),
                    properties=pika.BasicProperties(
                        delivery_mode=2,  # Make message persistent
                        content_type="application/json",
                    ),
                )
            except pika.exceptions.AMQPError:
                logger.exception("Failed to publish event %s", routing_key)
                self.connection = None
                self.channel = None
                self._retry_after = time.monotonic() + config.RABBITMQ_COOLDOWN_SECONDS
                return False

        logger.info("Sent event %s", routing_key)
        return True

    def close(self):
        """Closes the connection cleanly."""
        with self._lock:
            if self.connection and not self.connection.is_closed:
                self.connection.close()
            self.connection = None
            self.channel = None


_publisher = None
_publisher_lock = threading.Lock()


def get_publisher():
    """FastAPI dependency returning the process-wide publisher."""
    global _publisher
    with _publisher_lock:
        if _publisher is None:
            _publisher = EventPublisher()
    return _publisher


def sale_created_event(sale):
    return {
        "order_id": sale.order_id,
        "cashier_id": sale.cashier_id,
        "customer_id": sale.customer_id,
        "channel": sale.channel.value,
        "payment_method": sale.payment_method.value,
        "total": str(sale.total),
        "created_at": sale.created_at.isoformat(),
        "lines": [
            {"variant_id": line.variant_id, "quantity": line.quantity, "line_total": str(line.line_total)}
            for line in sale.lines
        ],
    }


def sale_returned_event(sale_return):
    return {
        "return_id": sale_return.return_id,
        "order_id": sale_return.order_id,
        "refund_total": str(sale_return.refund_total),
        "lines": [{"variant_id": line.variant_id, "quantity": line.quantity} for line in sale_return.lines],
    }


def stock_restocked_event(variant, quantity):
    return {"variant_id": variant.id, "sku": variant.sku, "quantity": quantity, "stock": variant.stock}
