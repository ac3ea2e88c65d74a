import pytest
from confluent_kafka import KafkaError

from strangler.events.config import EventsSettings
from strangler.events.producer import EventPublisher, PublishError

from .kafka_fakes import FakeProducer

SETTINGS = EventsSettings(publish_timeout=0.1)


def test_publish_writes_unkeyed_message() -> None:
    producer = FakeProducer()
    EventPublisher(SETTINGS, producer).publish("movie-events", b'{"movie_id":1}')
    assert producer.produced == [{"topic": "movie-events", "value": b'{"movie_id":1}', "key": None}]


def test_publish_raises_on_delivery_error() -> None:
    producer = FakeProducer(fail_with=KafkaError(KafkaError._MSG_TIMED_OUT))
    with pytest.raises(PublishError):
        EventPublisher(SETTINGS, producer).publish("user-events", b"{}")


def test_publish_raises_without_acknowledgement() -> None:
    with pytest.raises(PublishError):
        EventPublisher(SETTINGS, FakeProducer(ack=False)).publish("payment-events", b"{}")


def test_publish_raises_when_queue_is_full() -> None:
    class FullProducer(FakeProducer):
        def produce(self, *args, **kwargs) -> None:
            raise BufferError("Local: Queue full")

    with pytest.raises(PublishError):
        EventPublisher(SETTINGS, FullProducer()).publish("movie-events", b"{}")
