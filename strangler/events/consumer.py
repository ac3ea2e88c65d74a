"""Kafka consumer loops for the events service.

High-level flow, one thread per topic:
    poll -> log topic/partition/offset/key/value -> poll again

Important Kafka concepts used here:

1) Consumer groups
- All loops share KAFKA_GROUP_ID, so extra replicas of this service split the
  partitions between them.

2) Offsets
- Offsets are auto-committed by the client in the background. A crash between
  a read and the next commit means the message is delivered again
  (at-least-once).

3) Failures
- A read error ends the loop for that topic only. The other topics and the
  HTTP server keep running in degraded mode.
- Setting CONSUMER_MAX_RESTARTS > 0 restarts a failed loop with exponential
  backoff instead.
"""

from __future__ import annotations

from threading import Event, Thread
from typing import Any, Callable, Iterable, Optional

from confluent_kafka import Consumer, KafkaException

from strangler.logs import get_logger

from .config import TOPICS, EventsSettings

LOG = get_logger(__name__)

ConsumerFactory = Callable[[EventsSettings], Consumer]


def create_consumer(settings: EventsSettings) -> Consumer:
    """Create and configure a Confluent Kafka Consumer.

    - auto.offset.reset=earliest: a brand new group starts at the beginning
      of the topic instead of only seeing new events.
    - enable.auto.commit is left on; nothing here acknowledges messages
      explicitly.
    """
    conf: dict[str, Any] = {
        "bootstrap.servers": settings.bootstrap_servers,
        "group.id": settings.group_id,
        "auto.offset.reset": "earliest",
    }
    return Consumer(conf)


def _decode(raw: Optional[bytes]) -> Optional[str]:
    if raw is None:
        return None
    return raw.decode("utf-8", errors="replace")


def consume_topic(
    topic: str,
    settings: EventsSettings,
    stop_event: Event,
    consumer_factory: ConsumerFactory = create_consumer,
    poll_timeout: float = 1.0,
) -> bool:
    """Read and log messages from `topic` until stopped or a read fails.

    Returns:
        True if the loop ended because of a read error, False if it was
        stopped through `stop_event`.
    """
    consumer = consumer_factory(settings)
    try:
        consumer.subscribe([topic])
        LOG.info("Consumer started", extra={"topic": topic, "group_id": settings.group_id})

        while not stop_event.is_set():
            try:
                msg = consumer.poll(poll_timeout)
            except KafkaException as exc:
                LOG.error("Error reading message", extra={"topic": topic, "error": str(exc)})
                return True

            if msg is None:
                continue

            if msg.error():
                LOG.error("Error reading message", extra={"topic": topic, "error": str(msg.error())})
                return True

            LOG.info(
                "Received message",
                extra={
                    "topic": msg.topic(),
                    "partition": msg.partition(),
                    "offset": msg.offset(),
                    "key": _decode(msg.key()),
                    "value": _decode(msg.value()),
                },
            )
        return False
    finally:
        consumer.close()
        LOG.info("Consumer closed", extra={"topic": topic})


def supervise_topic(
    topic: str,
    settings: EventsSettings,
    stop_event: Event,
    consumer_factory: ConsumerFactory = create_consumer,
    poll_timeout: float = 1.0,
) -> None:
    """Run consume_topic, restarting it up to `consumer_max_restarts` times.

    Exceptions never leave this function; a dead loop is only logged.
    """
    restarts = 0
    while True:
        try:
            failed = consume_topic(topic, settings, stop_event, consumer_factory, poll_timeout)
        except Exception:
            LOG.exception("Consumer loop crashed", extra={"topic": topic})
            failed = True

        if not failed or stop_event.is_set():
            return
        if restarts >= settings.consumer_max_restarts:
            LOG.error("Consumer loop stopped", extra={"topic": topic, "restarts": restarts})
            return

        delay = settings.consumer_restart_backoff * (2**restarts)
        restarts += 1
        LOG.warning(
            "Restarting consumer loop",
            extra={"topic": topic, "attempt": restarts, "delay_seconds": delay},
        )
        # Returns early if shutdown is requested during the backoff.
        if stop_event.wait(delay):
            return


class ConsumerPool:
    """One daemon thread per topic, started together and stopped together."""

    def __init__(
        self,
        settings: EventsSettings,
        topics: Iterable[str] = TOPICS,
        consumer_factory: ConsumerFactory = create_consumer,
        poll_timeout: float = 1.0,
    ) -> None:
        self.settings = settings
        self.topics = tuple(topics)
        self.consumer_factory = consumer_factory
        self.poll_timeout = poll_timeout
        self.stop_event = Event()
        self.threads: dict[str, Thread] = {}

    def start(self) -> None:
        for topic in self.topics:
            thread = Thread(
                target=supervise_topic,
                args=(topic, self.settings, self.stop_event, self.consumer_factory, self.poll_timeout),
                name=f"consumer-{topic}",
                daemon=True,
            )
            self.threads[topic] = thread
            thread.start()

    def alive_topics(self) -> list[str]:
        return [topic for topic, thread in self.threads.items() if thread.is_alive()]

    def stop(self) -> None:
        self.stop_event.set()

    def join(self, timeout: Optional[float] = None) -> None:
        for thread in self.threads.values():
            thread.join(timeout)
