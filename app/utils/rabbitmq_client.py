import functools
import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import pika
from pika.exceptions import AMQPError

from app.core.config import MessagingSettings
from app.core.constants import ATTEMPT_HEADER, FAILURE_HEADER
from app.domain.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def connection_parameters(settings: MessagingSettings) -> pika.URLParameters:
    params = pika.URLParameters(settings.rabbitmq_url)
    params.socket_timeout = settings.socket_timeout
    params.blocked_connection_timeout = settings.blocked_connection_timeout
    params.heartbeat = settings.heartbeat
    return params


def message_properties(headers: Optional[dict] = None) -> pika.BasicProperties:
    return pika.BasicProperties(
        content_type="application/json",
        delivery_mode=pika.DeliveryMode.Persistent,
        headers=headers or None,
    )


class RabbitMQPublisherWrapper:
    """Publishes JSON messages to durable queues on the default exchange.

    Safe to share between request handlers: the channel is guarded by a lock
    and re-opened lazily after a connection failure. Publishing never raises;
    the return value tells whether the broker confirmed the message.
    """

    def __init__(self, settings: MessagingSettings, connection_factory: Callable = pika.BlockingConnection):
        self._params = connection_parameters(settings)
        self._connection_factory = connection_factory
        self._lock = threading.Lock()
        self._conn = None
        self._chan = None
        self._declared: set[str] = set()

    def _channel(self):
        if self._chan is None or self._chan.is_closed:
            self._conn = self._connection_factory(self._params)
            self._chan = self._conn.channel()
            self._chan.confirm_delivery()
            self._declared.clear()
        return self._chan

    def _reset(self) -> None:
        try:
            if self._conn is not None and self._conn.is_open:
                self._conn.close()
        except AMQPError:
            pass
        self._conn = None
        self._chan = None

    def publish(self, queue_name: str, message: dict) -> bool:
        return self.publish_raw(queue_name, json.dumps(message).encode("utf-8"))

    def publish_raw(self, queue_name: str, body: bytes, headers: Optional[dict] = None) -> bool:
        with self._lock:
            # one reconnect, then give up
            for attempt in (1, 2):
                try:
                    chan = self._channel()
                    if queue_name not in self._declared:
                        chan.queue_declare(queue=queue_name, durable=True)
                        self._declared.add(queue_name)
                    chan.basic_publish(
                        exchange="",
                        routing_key=queue_name,
                        body=body,
                        properties=message_properties(headers),
                    )
                    return True
                except AMQPError as e:
                    logger.error(f"Failed to publish to {queue_name} (attempt {attempt}): {e!r}")
                    self._reset()
        return False

    def close(self) -> None:
        with self._lock:
            self._reset()


class Disposition(str, Enum):
    ACK = "ack"
    REQUEUE = "requeue"
    DEAD_LETTER = "dead_letter"


@dataclass
class Delivery:
    """What to do with a consumed message once its handler is done."""

    disposition: Disposition
    body: Optional[bytes] = None  # replacement body when re-publishing
    reason: Optional[str] = None


MessageHandler = Callable[[bytes, int], Delivery]


class RabbitMQWorker:
    """Blocking consumer with manual acks and a bounded handler pool.

    Messages are acknowledged only once the handler has settled them: after
    success, after re-publishing to a delay queue for another attempt, or
    after moving them to the dead-letter queue. With ``concurrency == 1`` handlers run inline
    on the connection thread; otherwise up to ``concurrency`` messages are
    in flight (prefetch enforces the bound) and acks are marshalled back to
    the connection thread.
    """

    def __init__(
        self,
        settings: MessagingSettings,
        handler: MessageHandler,
        concurrency: int = 1,
        connection=None,
    ):
        self._queue = settings.image_queue
        self._dead_letter_queue = settings.dead_letter_queue
        self._retry_delay = settings.retry_delay_seconds
        self._retry_delay_max = settings.retry_delay_max_seconds
        self._delay_queues: set[str] = set()
        self._handler = handler
        self._concurrency = concurrency
        self._executor = (
            ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix="image-worker")
            if concurrency > 1
            else None
        )
        try:
            self._conn = connection or pika.BlockingConnection(connection_parameters(settings))
            self._chan = self._conn.channel()
            self._chan.queue_declare(queue=self._queue, durable=True)
            self._chan.queue_declare(queue=self._dead_letter_queue, durable=True)
            self._chan.basic_qos(prefetch_count=concurrency)
            self._chan.basic_consume(self._queue, self._on_message, auto_ack=False)
        except AMQPError as e:
            raise ConfigurationError("RabbitMQ consumer", repr(e))

    # ------------------------------------------------------------------
    @staticmethod
    def attempt_of(properties) -> int:
        headers = getattr(properties, "headers", None) or {}
        try:
            return max(1, int(headers.get(ATTEMPT_HEADER, 1)))
        except (TypeError, ValueError):
            return 1

    def retry_delay_ms(self, attempt: int) -> int:
        """Wait before redelivering an item that just failed ``attempt``."""
        delay = min(self._retry_delay * 2 ** (attempt - 1), self._retry_delay_max)
        return int(delay * 1000)

    def _retry_queue(self, ch, attempt: int) -> str:
        """Delay queue for ``attempt``; expired messages dead-letter back to the work queue."""
        ttl = self.retry_delay_ms(attempt)
        if ttl <= 0:
            return self._queue
        name = f"{self._queue}.retry.{ttl}ms"
        if name not in self._delay_queues:
            ch.queue_declare(
                queue=name,
                durable=True,
                arguments={
                    "x-message-ttl": ttl,
                    "x-dead-letter-exchange": "",
                    "x-dead-letter-routing-key": self._queue,
                },
            )
            self._delay_queues.add(name)
        return name

    def _on_message(self, ch, method, properties, body):
        attempt = self.attempt_of(properties)
        if self._executor is None:
            self._settle(ch, method, body, attempt, self._run_handler(body, attempt))
            return
        self._executor.submit(self._run_threaded, ch, method, body, attempt)

    def _run_threaded(self, ch, method, body, attempt):
        delivery = self._run_handler(body, attempt)
        self._conn.add_callback_threadsafe(
            functools.partial(self._settle, ch, method, body, attempt, delivery)
        )

    def _run_handler(self, body: bytes, attempt: int) -> Optional[Delivery]:
        try:
            return self._handler(body, attempt)
        except Exception:
            logger.exception(f"Unhandled error in handler for message on {self._queue}")
            return None

    def _settle(self, ch, method, body: bytes, attempt: int, delivery: Optional[Delivery]) -> None:
        if delivery is None:
            ch.basic_nack(method.delivery_tag, requeue=False)
            return

        payload = delivery.body if delivery.body is not None else body

        if delivery.disposition is Disposition.REQUEUE:
            ch.basic_publish(
                exchange="",
                routing_key=self._retry_queue(ch, attempt),
                body=payload,
                properties=message_properties({ATTEMPT_HEADER: attempt + 1}),
            )
        elif delivery.disposition is Disposition.DEAD_LETTER:
            ch.basic_publish(
                exchange="",
                routing_key=self._dead_letter_queue,
                body=payload,
                properties=message_properties(
                    {ATTEMPT_HEADER: attempt, FAILURE_HEADER: delivery.reason or "unknown"}
                ),
            )
        ch.basic_ack(method.delivery_tag)

    # ------------------------------------------------------------------
    def start(self):
        logger.info(f"Consuming from {self._queue} with concurrency={self._concurrency}")
        try:
            self._chan.start_consuming()
        finally:
            self._drain()

    def stop(self):
        """Stop consuming; safe to call from a signal handler or another thread."""
        self._conn.add_callback_threadsafe(self._chan.stop_consuming)

    def _drain(self):
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            # flush acks queued by the pool threads
            if self._conn.is_open:
                self._conn.process_data_events(time_limit=0)
        if self._conn.is_open:
            self._conn.close()
