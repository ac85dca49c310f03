import json
import logging
import os
import threading
from typing import Callable, Optional

import pika

logger = logging.getLogger(__name__)


class OrderChangeConsumer:
    """
    Listens to the store's order.* change notifications and hands each one
    to `on_change(routing_key, event)`.

    A lost connection is re-established after a fixed delay until `stop()`
    is called; periodic polling keeps the storefront correct in between.
    """

    def __init__(
        self,
        on_change: Callable[[str, dict], None],
        host: Optional[str] = None,
        exchange: str = "events",
        binding_key: str = "order.*",
        reconnect_delay: float = 5,
    ):
        self.on_change = on_change
        self.host = host or os.getenv("RABBITMQ_HOST", "rabbitmq")
        self.exchange = exchange
        self.binding_key = binding_key
        self.reconnect_delay = reconnect_delay
        self.connection = None
        self.channel = None
        self._stopping = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def connect(self):
        """Connects to RabbitMQ and binds a private queue to the order events."""
        credentials = pika.PlainCredentials('guest', 'guest')
        parameters = pika.ConnectionParameters(
            self.host, credentials=credentials, heartbeat=600, blocked_connection_timeout=300
        )
        self.connection = pika.BlockingConnection(parameters)
        self.channel = self.connection.channel()
        self.channel.exchange_declare(exchange=self.exchange, exchange_type='topic', durable=True)

        # Exclusive queue: each storefront client gets its own copy of every event.
        result = self.channel.queue_declare(queue='', exclusive=True)
        queue_name = result.method.queue
        self.channel.queue_bind(exchange=self.exchange, queue=queue_name, routing_key=self.binding_key)
        self.channel.basic_consume(queue=queue_name, on_message_callback=self.callback, auto_ack=True)
        logger.info("Order change consumer connected to RabbitMQ!")

    def callback(self, ch, method, properties, body):
        try:
            event = json.loads(body)
        except ValueError:
            event = {}
        routing_key = method.routing_key
        logger.info(" [x] Order change received: %s -> %s", routing_key, event)
        try:
            self.on_change(routing_key, event if isinstance(event, dict) else {})
        except Exception:
            logger.exception("Error handling order change %s", routing_key)

    def start_listening(self):
        """Consumes until stopped, reconnecting after failures."""
        while not self._stopping.is_set():
            try:
                self.connect()
                if self._stopping.is_set():
                    break
                logger.info(" [*] Waiting for order changes...")
                self.channel.start_consuming()
            except pika.exceptions.AMQPError as e:
                if self._stopping.is_set():
                    break
                logger.warning("Order change feed lost (%s), retrying in %s seconds...", e, self.reconnect_delay)
                self._stopping.wait(self.reconnect_delay)
            finally:
                self._close()

    def _close(self):
        if self.connection is not None and not self.connection.is_closed:
            try:
                self.connection.close()
            except pika.exceptions.AMQPError as e:
                logger.debug("Ignoring error while closing connection: %s", e)
        self.connection = None
        self.channel = None

    def start(self):
        """Runs the consumer in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stopping.clear()
        self._thread = threading.Thread(target=self.start_listening, name="order-changes", daemon=True)
        self._thread.start()

    def stop(self, join: bool = True):
        self._stopping.set()
        connection, channel = self.connection, self.channel
        if connection is not None and channel is not None and not connection.is_closed:
            connection.add_callback_threadsafe(channel.stop_consuming)
        if join and self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=5)
        self._thread = None
