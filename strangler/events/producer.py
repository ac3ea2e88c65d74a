"""Kafka producer for the events service.

Key points:

1) One producer, created once and shared
The underlying librdkafka producer is thread-safe, so a single EventPublisher
is built at startup and handed to every request handler through app state.

2) Delivery acknowledgement
`produce()` only queues the message locally. We flush after each produce and
inspect the delivery report, so the HTTP handler only answers 201 once the
broker has confirmed the write.

3) No message key
Messages are spread across partitions by the default partitioner. There is no
per-entity ordering guarantee.
"""

from __future__ import annotations

from typing import Any, Optional

from confluent_kafka import KafkaException, Producer

from strangler.logs import get_logger

from .config import EventsSettings

LOG = get_logger(__name__)


class PublishError(RuntimeError):
    """The broker did not accept a message."""


def create_producer(settings: EventsSettings) -> Producer:
    """Create and configure a Confluent Kafka Producer."""
    conf: dict[str, Any] = {
        "bootstrap.servers": settings.bootstrap_servers,
        # Keeps librdkafka's internal retries from writing duplicates.
        "enable.idempotence": True,
    }
    return Producer(conf)


class EventPublisher:
    def __init__(self, settings: EventsSettings, producer: Optional[Producer] = None) -> None:
        self.settings = settings
        self.producer = producer if producer is not None else create_producer(settings)

    def publish(self, topic: str, payload: bytes) -> None:
        """Write one message to `topic` and block until it is acknowledged.

        Raises:
            PublishError: the message was refused, failed delivery, or was not
                acknowledged within `publish_timeout` seconds.
        """
        report: dict[str, Any] = {}

        def _delivery_report(err, msg) -> None:
            report["err"] = err
            if err is None:
                report["partition"] = msg.partition()
                report["offset"] = msg.offset()

        try:
            self.producer.produce(topic=topic, value=payload, callback=_delivery_report)
        except (BufferError, KafkaException) as exc:
            raise PublishError(f"Failed to queue message for {topic}: {exc}") from exc

        self.producer.flush(self.settings.publish_timeout)

        if "err" not in report:
            raise PublishError(f"No delivery report for {topic} within {self.settings.publish_timeout}s")
        if report["err"] is not None:
            raise PublishError(f"Delivery to {topic} failed: {report['err']}")

        LOG.debug(
            "Delivered message",
            extra={"topic": topic, "partition": report["partition"], "offset": report["offset"]},
        )

    def close(self) -> None:
        remaining = self.producer.flush(self.settings.publish_timeout)
        if remaining:
            LOG.warning("Producer closed with undelivered messages", extra={"remaining": remaining})
