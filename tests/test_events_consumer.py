import logging
from threading import Event

import pytest
from confluent_kafka import KafkaError, KafkaException

from strangler.events.config import EventsSettings
from strangler.events.consumer import ConsumerPool, consume_topic, create_consumer, supervise_topic

from .kafka_fakes import FakeConsumer, FakeMessage

SETTINGS = EventsSettings()


def stop_after(n: int, consumer: FakeConsumer, stop_event: Event):
    """Wrap poll so the loop stops once `n` polls have happened."""
    poll = consumer.poll

    def _poll(timeout=None):
        if consumer.polls + 1 >= n:
            stop_event.set()
        return poll(timeout)

    consumer.poll = _poll
    return consumer


def test_messages_are_logged(caplog: pytest.LogCaptureFixture) -> None:
    stop_event = Event()
    consumer = FakeConsumer([FakeMessage("movie-events", b'{"movie_id":1}', partition=2, offset=41)])
    stop_after(3, consumer, stop_event)

    with caplog.at_level(logging.INFO, logger="strangler"):
        failed = consume_topic("movie-events", SETTINGS, stop_event, lambda s: consumer, poll_timeout=0)

    assert failed is False
    assert consumer.subscribed == ["movie-events"]
    assert consumer.closed
    received = [r for r in caplog.records if r.getMessage() == "Received message"]
    assert len(received) == 1
    assert received[0].topic == "movie-events"
    assert received[0].partition == 2
    assert received[0].offset == 41
    assert received[0].key is None
    assert received[0].value == '{"movie_id":1}'


def test_error_message_ends_loop() -> None:
    consumer = FakeConsumer(
        [
            FakeMessage("user-events", None, error=KafkaError(KafkaError.UNKNOWN_TOPIC_OR_PART)),
            FakeMessage("user-events", b"never read"),
        ]
    )
    failed = consume_topic("user-events", SETTINGS, Event(), lambda s: consumer, poll_timeout=0)
    assert failed is True
    assert consumer.closed
    assert len(consumer.messages) == 1


def test_kafka_exception_ends_loop() -> None:
    consumer = FakeConsumer([KafkaException(KafkaError(KafkaError._TRANSPORT))])
    assert consume_topic("payment-events", SETTINGS, Event(), lambda s: consumer, poll_timeout=0) is True
    assert consumer.closed


def test_failed_loop_is_not_restarted_by_default() -> None:
    created = []

    def factory(settings):
        consumer = FakeConsumer([KafkaException(KafkaError(KafkaError._TRANSPORT))])
        created.append(consumer)
        return consumer

    supervise_topic("movie-events", SETTINGS, Event(), factory, poll_timeout=0)
    assert len(created) == 1


def test_supervised_loop_restarts_with_backoff() -> None:
    settings = EventsSettings(consumer_max_restarts=2, consumer_restart_backoff=0.001)
    created = []

    def factory(settings):
        consumer = FakeConsumer([KafkaException(KafkaError(KafkaError._TRANSPORT))])
        created.append(consumer)
        return consumer

    supervise_topic("movie-events", settings, Event(), factory, poll_timeout=0)
    assert len(created) == 3


def test_one_failing_topic_does_not_stop_the_others() -> None:
    consumers = {
        "movie-events": FakeConsumer(),
        "user-events": FakeConsumer([FakeMessage("user-events", None, error=KafkaError(KafkaError._TRANSPORT))]),
        "payment-events": FakeConsumer(),
    }
    pool = ConsumerPool(SETTINGS, consumer_factory=lambda s: _TopicConsumer(consumers), poll_timeout=0.01)
    pool.start()
    try:
        pool.threads["user-events"].join(timeout=2)
        assert not pool.threads["user-events"].is_alive()
        assert sorted(pool.alive_topics()) == ["movie-events", "payment-events"]
    finally:
        pool.stop()
        pool.join(timeout=2)
    assert pool.alive_topics() == []
    assert all(c.closed for c in consumers.values())


class _TopicConsumer:
    """Consumer proxy that picks the real fake once `subscribe` names the topic."""

    def __init__(self, consumers) -> None:
        self._consumers = consumers
        self._target = None

    def subscribe(self, topics) -> None:
        self._target = self._consumers[topics[0]]
        self._target.subscribe(topics)

    def poll(self, timeout=None):
        return self._target.poll(timeout)

    def close(self) -> None:
        self._target.close()


def test_create_consumer_uses_shared_group(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = {}

    class Recording:
        def __init__(self, conf) -> None:
            captured.update(conf)

    monkeypatch.setattr("strangler.events.consumer.Consumer", Recording)
    create_consumer(EventsSettings(kafka_brokers=("a:9092", "b:9092")))
    assert captured["group.id"] == "cinemaabyss-events-consumer-group"
    assert captured["bootstrap.servers"] == "a:9092,b:9092"
    assert captured["auto.offset.reset"] == "earliest"


def test_consumer_is_closed_when_subscribe_fails() -> None:
    created = []

    class BrokenSubscribe(FakeConsumer):
        def subscribe(self, topics) -> None:
            raise KafkaException(KafkaError(KafkaError._TRANSPORT))

    def factory(settings):
        consumer = BrokenSubscribe()
        created.append(consumer)
        return consumer

    settings = EventsSettings(consumer_max_restarts=2, consumer_restart_backoff=0.001)
    supervise_topic("movie-events", settings, Event(), factory, poll_timeout=0)
    assert len(created) == 3
    assert all(c.closed for c in created)
