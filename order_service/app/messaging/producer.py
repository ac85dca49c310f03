import json
import logging
import os
import time

import pika

logger = logging.getLogger(__name__)


class RabbitMQProducer:
    """
    Publishes change notifications for the orders table.

    Connects lazily on the first publish, so the store keeps serving reads and
    writes while RabbitMQ is still booting. A failed publish is logged and
    dropped: the database write already happened and polling clients will
    still pick it up.
    """

    def __init__(self, exchange_name="events", exchange_type="topic", connect_attempts=None, retry_delay=5):
        self.exchange_name = exchange_name
        self.exchange_type = exchange_type
        self.host = os.getenv("RABBITMQ_HOST", "rabbitmq")
        if connect_attempts is None:
            connect_attempts = int(os.getenv("RABBITMQ_CONNECT_ATTEMPTS", "3"))
        self.connect_attempts = connect_attempts
        self.retry_delay = retry_delay
        self.connection = None
        self.channel = None

    def connect(self):
        """Establishes a connection to RabbitMQ, retrying a bounded number of times."""
        for attempt in range(1, self.connect_attempts + 1):
            try:
                credentials = pika.PlainCredentials('guest', 'guest')
                parameters = pika.ConnectionParameters(
                    host=self.host,
                    credentials=credentials,
                    heartbeat=600,
                    blocked_connection_timeout=300,
                )
                self.connection = pika.BlockingConnection(parameters)
                self.channel = self.connection.channel()

                # Declare the exchange (durable ensures it survives restarts)
                self.channel.exchange_declare(
                    exchange=self.exchange_name,
                    exchange_type=self.exchange_type,
                    durable=True
                )
                logger.info("Connected to RabbitMQ exchange %s", self.exchange_name)
                return True
            except pika.exceptions.AMQPConnectionError:
                logger.warning(
                    "RabbitMQ not ready (attempt %d/%d), retrying in %s seconds...",
                    attempt, self.connect_attempts, self.retry_delay,
                )
                if attempt < self.connect_attempts:
                    time.sleep(self.retry_delay)
        return False

    def publish(self, routing_key, message):
        """
        Publishes a message to the exchange with a specific routing key.

        Args:
            routing_key (str): The topic key (e.g. 'order.created', 'order.updated').
            message (dict): The data payload to send.

        Returns:
            bool: whether the message was handed to the broker.
        """
        # Reconnect if the connection was lost
        if not self.connection or self.connection.is_closed:
            if not self.connect():
                logger.error("Dropping event '%s': RabbitMQ unavailable", routing_key)
                return False

        try:
            self.channel.basic_publish(
                exchange=self.exchange_name,
                routing_key=routing_key,
                body=json.dumps(message),
                properties=pika.BasicProperties(
                    delivery_mode=2,  # Make message persistent
                    content_type='application/json'
                )
            )
            logger.info(" [x] Sent event '%s': %s", routing_key, message)
            return True
        except pika.exceptions.AMQPError as e:
            logger.error("Failed to publish '%s': %s", routing_key, e)
            self.connection = None
            return False

    def close(self):
        """Closes the connection cleanly."""
        if self.connection and not self.connection.is_closed:
            self.connection.close()


def publish_order_event(producer, event, order_id, status):
    """Publishes order.<event>; consumers only learn that the row changed."""
    return producer.publish(
        routing_key=f"order.{event}",
        message={"order_id": order_id, "status": status},
    )
